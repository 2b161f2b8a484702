"""
Payment ledger.

Rows are append-only: a settled payment is never edited, a refund is a new
row with status "refunded" pointing at the payment it returns money from.
Reservation.payment_status is recomputed from the rows after every write.

External providers are never called while a transaction is open. An
online payment is written as "initiated", the provider is called under a
time box, and a second transaction records the outcome.
"""
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from lodgecore import config
from lodgecore.database.conexion import unit_of_work
from lodgecore.errors import (
    InvalidTransition,
    LodgeError,
    NotFoundError,
    OverpaymentError,
    PaymentProviderError,
    ValidationError,
)
from lodgecore.models.core import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    FailureReason,
    Reservation,
    ReservationStatus,
    MANUAL_METHODS,
    utc_now,
)
from lodgecore.providers.base import InitiatePaymentRequest, call_with_timeout
from lodgecore.providers.registry import ProviderRegistry, build_default_registry
from lodgecore.services.inventory_service import InventoryService
from lodgecore.services.reservation_service import ReservationService, required_deposit
from lodgecore.utils.audit import record_audit
from lodgecore.utils.ledger import summarize_ledger, derive_payment_status
from lodgecore.utils.logging_utils import log_event, log_failure
from lodgecore.utils.money import to_money, ZERO

P = PaymentStatus

PAYMENT_TRANSITIONS: Dict[str, frozenset] = {
    P.INITIATED.value: frozenset({P.PENDING.value, P.PAID.value, P.FAILED.value}),
    P.PENDING.value: frozenset({P.PAID.value, P.FAILED.value}),
    P.PAID.value: frozenset(),
    P.FAILED.value: frozenset(),
    P.REFUNDED.value: frozenset(),
}

# No new money may be taken for these
CLOSED_FOR_PAYMENT = (ReservationStatus.CANCELLED.value, ReservationStatus.NO_SHOW.value)

_default_registry: Optional[ProviderRegistry] = None


def default_registry() -> ProviderRegistry:
    global _default_registry
    if _default_registry is None:
        _default_registry = build_default_registry()
    return _default_registry


class PaymentService:

    # ========== HELPERS ==========

    @staticmethod
    def ledger_rows(db: Session, reservation_id: int) -> List[Payment]:
        return (
            db.query(Payment)
            .filter(Payment.reservation_id == reservation_id)
            .order_by(Payment.id)
            .populate_existing()
            .all()
        )

    @staticmethod
    def set_status(db: Session, payment: Payment, target: str, **values) -> None:
        """
        Compare-and-swap on Payment.status. Settled, failed and refunded rows
        are final; any attempt to move them raises InvalidTransition.
        """
        current = payment.status
        if target not in PAYMENT_TRANSITIONS.get(current, frozenset()):
            raise InvalidTransition(current, target)
        result = db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == current)
            .values(status=target, updated_at=utc_now(), **values)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise InvalidTransition(current, target, "payment was modified concurrently")

    @staticmethod
    def refresh_payment_status(db: Session, reservation: Reservation, actor: Optional[str] = None) -> str:
        """
        Recomputes Reservation.payment_status from the ledger and confirms a
        pending reservation once the required deposit is covered. Does not commit.
        """
        db.flush()
        payments = PaymentService.ledger_rows(db, reservation.id)
        reservation.payment_status = derive_payment_status(reservation.total_amount, payments)

        net_paid = summarize_ledger(payments).net_paid
        if (
            reservation.status == ReservationStatus.PENDING.value
            and net_paid > ZERO
            and net_paid >= required_deposit(reservation.total_amount)
        ):
            ReservationService.apply_transition(
                db, reservation, ReservationStatus.CONFIRMED.value, actor=actor, reason="Deposit received"
            )
        db.flush()
        return reservation.payment_status

    @staticmethod
    def _get_payment(db: Session, tenant_id: int, payment_id: int) -> Payment:
        payment = db.query(Payment).filter(Payment.id == payment_id, Payment.tenant_id == tenant_id).first()
        if not payment:
            raise NotFoundError(f"Payment {payment_id} not found", {"payment_id": payment_id})
        return payment

    @staticmethod
    def list_payments(db: Session, tenant_id: int, reservation_id: int) -> List[Payment]:
        ReservationService.get_reservation(db, tenant_id, reservation_id)
        return PaymentService.ledger_rows(db, reservation_id)

    # ========== RECORD ==========

    @staticmethod
    def record_payment(
        db: Session,
        tenant_id: int,
        reservation_id: int,
        amount,
        method,
        *,
        allow_overpay: bool,
        providers: Optional[ProviderRegistry] = None,
        actor: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Payment:
        """
        Records money against a reservation.

        cash / pay_at_lodge settle immediately. Every other method goes through
        its provider: initiated -> pending (then confirm_payment) or -> failed.
        The balance guard counts net paid plus in-flight attempts, so the
        ledger can never end up above the reservation total unless
        allow_overpay is set (tips, extras).
        """
        InventoryService.get_active_tenant(db, tenant_id)
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Payment amount must be positive", {"amount": str(amount)})
        try:
            method = PaymentMethod(method).value
        except ValueError as e:
            raise ValidationError(f"Unknown payment method '{method}'") from e

        registry = providers or default_registry()
        provider = registry.get(method)
        manual = method in MANUAL_METHODS

        # Phase 1: guard + ledger row
        try:
            with unit_of_work(db):
                reservation = ReservationService.lock_reservation(db, tenant_id, reservation_id)
                if reservation.status in CLOSED_FOR_PAYMENT:
                    raise ValidationError(
                        f"Reservation {reservation.booking_reference} is {reservation.status}",
                        {"status": reservation.status},
                    )

                summary = summarize_ledger(PaymentService.ledger_rows(db, reservation.id))
                outstanding = to_money(reservation.total_amount) - summary.net_paid - summary.in_flight
                if amount > outstanding and not allow_overpay:
                    raise OverpaymentError(amount, max(outstanding, ZERO))

                payment = Payment(
                    tenant_id=tenant_id,
                    reservation_id=reservation.id,
                    amount=amount,
                    method=method,
                    status=P.INITIATED.value,
                    provider=provider.name,
                    description=description,
                    created_by=actor,
                )
                db.add(payment)
                db.flush()

                if manual:
                    # desk payment: the manual provider only issues a receipt reference
                    receipt = provider.initiate_payment(InitiatePaymentRequest(
                        amount=amount,
                        currency=config.PAYMENT_CURRENCY,
                        reference=reservation.booking_reference,
                        method=method,
                        description=description,
                    ))
                    PaymentService.set_status(
                        db, payment, P.PAID.value, transaction_ref=receipt.transaction_ref, paid_at=utc_now()
                    )

                record_audit(db, tenant_id, "payment", payment.id, "PAYMENT", actor,
                             f"{method} {amount} for {reservation.booking_reference}",
                             {"status": payment.status, "amount": str(amount), "allow_overpay": allow_overpay})
                PaymentService.refresh_payment_status(db, reservation, actor)
                reference = reservation.booking_reference
                payment_id = payment.id
        except LodgeError as e:
            log_failure("payments", actor, "Payment rejected", f"reservation={reservation_id}, {e.message}")
            raise

        if manual:
            log_event("payments", actor, "Payment recorded", f"reference={reference}, method={method}, amount={amount}")
            return payment

        # Phase 2: provider call outside any transaction
        request = InitiatePaymentRequest(
            amount=amount,
            currency=config.PAYMENT_CURRENCY,
            reference=reference,
            method=method,
            description=description or f"Booking {reference}",
            callback_url=config.PAYMENT_CALLBACK_URL,
        )
        outcome = {}
        try:
            result = call_with_timeout(provider.name, lambda: provider.initiate_payment(request))
            if result.success:
                outcome["status"] = result.status if result.status in (P.PENDING.value, P.PAID.value) else P.PENDING.value
                outcome["transaction_ref"] = result.transaction_ref
            else:
                outcome["status"] = P.FAILED.value
                outcome["failure_reason"] = FailureReason.DECLINED.value
                outcome["transaction_ref"] = result.transaction_ref
        except PaymentProviderError as e:
            log_failure("payments", actor, "Provider transport failure", f"reference={reference}, {e.message}")
            outcome = {"status": P.FAILED.value, "failure_reason": FailureReason.TRANSPORT_ERROR.value}

        # Phase 3: record the outcome
        with unit_of_work(db):
            reservation = ReservationService.lock_reservation(db, tenant_id, reservation_id)
            payment = db.query(Payment).filter(Payment.id == payment_id).populate_existing().one()
            target = outcome.pop("status")
            if target == P.PAID.value:
                outcome["paid_at"] = utc_now()
            PaymentService.set_status(db, payment, target, **outcome)
            record_audit(db, tenant_id, "payment", payment.id, "PAYMENT_RESULT", actor, None,
                         {"status": target, "failure_reason": payment.failure_reason})
            PaymentService.refresh_payment_status(db, reservation, actor)

        log_event("payments", actor, f"Payment {target}",
                  f"reference={reference}, method={method}, amount={amount}, provider={provider.name}")
        return payment

    # ========== CONFIRM ==========

    @staticmethod
    def confirm_payment(
        db: Session,
        tenant_id: int,
        transaction_ref: str,
        providers: Optional[ProviderRegistry] = None,
        actor: Optional[str] = None,
    ) -> Payment:
        """
        Webhook / verification poll: asks the provider about a pending payment
        and settles it. Provider transport errors propagate; the payment stays
        pending and can be confirmed later.
        """
        InventoryService.get_active_tenant(db, tenant_id)
        payment = db.query(Payment).filter(
            Payment.tenant_id == tenant_id,
            Payment.transaction_ref == transaction_ref,
            Payment.refund_of_id.is_(None),
        ).first()
        if not payment:
            raise NotFoundError(f"No payment with transaction reference {transaction_ref}")
        if payment.status == P.PAID.value:
            return payment
        if payment.status != P.PENDING.value:
            raise InvalidTransition(payment.status, P.PAID.value)

        registry = providers or default_registry()
        provider = registry.get(payment.method)
        payment_id, reservation_id = payment.id, payment.reservation_id
        db.rollback()

        result = call_with_timeout(provider.name, lambda: provider.verify_payment(transaction_ref))
        if result.status not in (P.PAID.value, P.FAILED.value):
            log_event("payments", actor, "Payment still pending", f"transaction_ref={transaction_ref}")
            return PaymentService._get_payment(db, tenant_id, payment_id)

        with unit_of_work(db):
            reservation = ReservationService.lock_reservation(db, tenant_id, reservation_id)
            payment = db.query(Payment).filter(Payment.id == payment_id).populate_existing().one()
            if payment.status == P.PENDING.value:
                if result.status == P.PAID.value:
                    PaymentService.set_status(db, payment, P.PAID.value, paid_at=utc_now())
                else:
                    PaymentService.set_status(db, payment, P.FAILED.value, failure_reason=FailureReason.DECLINED.value)
                record_audit(db, tenant_id, "payment", payment.id, "PAYMENT_CONFIRM", actor, None,
                             {"status": payment.status, "transaction_ref": transaction_ref})
                PaymentService.refresh_payment_status(db, reservation, actor)

        log_event("payments", actor, f"Payment confirmation: {result.status}", f"transaction_ref={transaction_ref}")
        return payment

    # ========== REFUND ==========

    @staticmethod
    def _refundable(db: Session, original: Payment) -> Decimal:
        refunds = db.query(Payment).filter(
            Payment.refund_of_id == original.id,
            Payment.status == P.REFUNDED.value,
        ).all()
        return to_money(original.amount) - sum((to_money(r.amount) for r in refunds), ZERO)

    @staticmethod
    def refund(
        db: Session,
        tenant_id: int,
        payment_id: int,
        amount=None,
        providers: Optional[ProviderRegistry] = None,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Payment:
        """
        Returns money from a paid payment as a new "refunded" ledger row.
        amount defaults to everything still refundable on that payment; the
        refunds of one payment never add up to more than its amount.
        """
        InventoryService.get_active_tenant(db, tenant_id)
        original = PaymentService._get_payment(db, tenant_id, payment_id)
        if original.status != P.PAID.value or original.is_refund():
            raise InvalidTransition(original.status, P.REFUNDED.value, "only paid payments can be refunded")

        refundable = PaymentService._refundable(db, original)
        amount = refundable if amount is None else to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Nothing left to refund on this payment", {"refundable": str(refundable)})
        if amount > refundable:
            raise ValidationError(
                f"Refund of {amount} exceeds refundable amount {refundable}",
                {"amount": str(amount), "refundable": str(refundable)},
            )

        method, transaction_ref = original.method, original.transaction_ref
        reservation_id = original.reservation_id
        refund_ref = transaction_ref
        registry = providers or default_registry()
        provider = registry.get(method)
        db.rollback()

        if method not in MANUAL_METHODS:
            result = call_with_timeout(provider.name, lambda: provider.refund_payment(transaction_ref, amount))
            if not result.success:
                log_failure("payments", actor, "Refund refused by provider", f"payment={payment_id}, {result.message}")
                raise PaymentProviderError(provider.name, result.message or "Refund refused by provider")
            refund_ref = result.transaction_ref or transaction_ref

        with unit_of_work(db):
            reservation = ReservationService.lock_reservation(db, tenant_id, reservation_id)
            original = db.query(Payment).filter(Payment.id == payment_id).populate_existing().one()
            if amount > PaymentService._refundable(db, original):
                raise ValidationError("Payment was refunded concurrently", {"payment_id": payment_id})

            refund_row = Payment(
                tenant_id=tenant_id,
                reservation_id=reservation_id,
                amount=amount,
                method=method,
                status=P.REFUNDED.value,
                provider=provider.name,
                transaction_ref=refund_ref,
                refund_of_id=original.id,
                description=reason,
                created_by=actor,
                paid_at=utc_now(),
            )
            db.add(refund_row)
            db.flush()
            record_audit(db, tenant_id, "payment", refund_row.id, "REFUND", actor,
                         f"Refund of {amount} on payment {payment_id}",
                         {"refund_of_id": payment_id, "amount": str(amount), "reason": reason})
            PaymentService.refresh_payment_status(db, reservation, actor)
            reference = reservation.booking_reference

        log_event("payments", actor, "Refund recorded", f"reference={reference}, payment={payment_id}, amount={amount}")
        return refund_row
