"""
Tests for the payment ledger: recording, provider outcomes, confirmation and refunds
"""
import random
import time
from datetime import date
from decimal import Decimal

import pytest

from conftest import insert_reservation
from lodgecore import config
from lodgecore.errors import (
    InvalidTransition,
    NotFoundError,
    OverpaymentError,
    PaymentProviderError,
    ValidationError,
)
from lodgecore.models.core import Payment, PaymentMethod, Reservation
from lodgecore.providers.base import PaymentInitResult, PaymentVerifyResult, RefundResult
from lodgecore.schemas.payments import PaymentRead
from lodgecore.services.payment_service import PaymentService
from lodgecore.utils.ledger import summarize_ledger


@pytest.fixture
def pending_id(db, lodge):
    """Pending Deluxe stay, 2 nights at $100 = $200"""
    return insert_reservation(db, lodge.tenant_id, lodge.deluxe_id, "pending")


def _pay(db, lodge, reservation_id, amount, method=PaymentMethod.CASH, providers=None, allow_overpay=False):
    return PaymentService.record_payment(
        db, lodge.tenant_id, reservation_id, Decimal(amount), method,
        allow_overpay=allow_overpay, providers=providers,
    )


def _reservation(db, reservation_id):
    return db.get(Reservation, reservation_id)


class TestManualPayments:

    def test_full_cash_payment_confirms(self, db, lodge, providers, pending_id):
        payment = _pay(db, lodge, pending_id, "200", providers=providers)

        assert payment.status == "paid"
        assert payment.transaction_ref.startswith("MANUAL-")
        assert payment.paid_at is not None
        reservation = _reservation(db, pending_id)
        assert reservation.payment_status == "paid"
        assert reservation.status == "confirmed"

    def test_partial_payment_leaves_reservation_pending(self, db, lodge, providers, pending_id):
        _pay(db, lodge, pending_id, "80", providers=providers)

        reservation = _reservation(db, pending_id)
        assert reservation.payment_status == "partially_paid"
        assert reservation.status == "pending"

    def test_deposit_percent_confirms_on_half(self, db, lodge, providers, pending_id, monkeypatch):
        monkeypatch.setattr(config, "REQUIRED_DEPOSIT_PERCENT", Decimal("50"))
        _pay(db, lodge, pending_id, "100", providers=providers)

        reservation = _reservation(db, pending_id)
        assert reservation.payment_status == "partially_paid"
        assert reservation.status == "confirmed"

    def test_payment_audited(self, db, lodge, providers, pending_id):
        from lodgecore.models.core import AuditEvent
        payment = _pay(db, lodge, pending_id, "50", providers=providers)
        events = db.query(AuditEvent).filter(
            AuditEvent.entity_type == "payment", AuditEvent.entity_id == payment.id
        ).all()
        assert [e.action for e in events] == ["PAYMENT"]


class TestBalanceGuard:

    def test_overpayment_rejected(self, db, lodge, providers, pending_id):
        _pay(db, lodge, pending_id, "150", providers=providers)

        with pytest.raises(OverpaymentError) as exc:
            _pay(db, lodge, pending_id, "60", providers=providers)
        assert exc.value.details["outstanding"] == "50.00"
        assert db.query(Payment).count() == 1

    def test_overpayment_allowed_explicitly(self, db, lodge, providers, pending_id):
        _pay(db, lodge, pending_id, "200", providers=providers)
        tip = _pay(db, lodge, pending_id, "20", providers=providers, allow_overpay=True)

        assert tip.status == "paid"
        assert _reservation(db, pending_id).payment_status == "paid"

    def test_allow_overpay_has_no_default(self, db, lodge, providers, pending_id):
        with pytest.raises(TypeError):
            PaymentService.record_payment(
                db, lodge.tenant_id, pending_id, Decimal("10"), PaymentMethod.CASH, providers=providers
            )

    def test_in_flight_payment_counts_against_balance(self, db, lodge, providers, pending_id):
        _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)

        with pytest.raises(OverpaymentError):
            _pay(db, lodge, pending_id, "1", providers=providers)

    def test_non_positive_amount_rejected(self, db, lodge, providers, pending_id):
        with pytest.raises(ValidationError):
            _pay(db, lodge, pending_id, "0", providers=providers)

    def test_cancelled_reservation_takes_no_money(self, db, lodge, providers):
        reservation_id = insert_reservation(db, lodge.tenant_id, lodge.deluxe_id, "cancelled")
        with pytest.raises(ValidationError):
            _pay(db, lodge, reservation_id, "10", providers=providers)

    def test_unavailable_method_rejected(self, db, lodge, pending_id):
        from lodgecore.providers.manual import ManualPaymentProvider
        from lodgecore.providers.registry import ProviderRegistry
        cash_only = ProviderRegistry({PaymentMethod.CASH: ManualPaymentProvider()})
        with pytest.raises(ValidationError):
            _pay(db, lodge, pending_id, "10", method=PaymentMethod.MOBILE_MONEY, providers=cash_only)

    def test_unknown_reservation(self, db, lodge, providers):
        with pytest.raises(NotFoundError):
            _pay(db, lodge, 9999, "10", providers=providers)


class TestProviderPayments:

    def test_card_payment_goes_pending_then_confirmed(self, db, lodge, providers, card_provider, pending_id):
        payment = _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)

        assert payment.status == "pending"
        assert payment.transaction_ref == "pi_test_1"
        assert payment.provider == "fake-card"
        assert _reservation(db, pending_id).payment_status == "pending"
        request = card_provider.initiate_payment.call_args[0][0]
        assert request.amount == Decimal("200.00")

        confirmed = PaymentService.confirm_payment(db, lodge.tenant_id, "pi_test_1", providers=providers)

        assert confirmed.status == "paid"
        card_provider.verify_payment.assert_called_once_with("pi_test_1")
        reservation = _reservation(db, pending_id)
        assert reservation.payment_status == "paid"
        assert reservation.status == "confirmed"

    def test_confirming_paid_payment_is_idempotent(self, db, lodge, providers, card_provider, pending_id):
        _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)
        PaymentService.confirm_payment(db, lodge.tenant_id, "pi_test_1", providers=providers)
        again = PaymentService.confirm_payment(db, lodge.tenant_id, "pi_test_1", providers=providers)

        assert again.status == "paid"
        assert card_provider.verify_payment.call_count == 1

    def test_confirm_still_pending(self, db, lodge, providers, card_provider, pending_id):
        card_provider.verify_payment.return_value = PaymentVerifyResult(success=False, status="pending")
        _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)

        payment = PaymentService.confirm_payment(db, lodge.tenant_id, "pi_test_1", providers=providers)
        assert payment.status == "pending"

    def test_confirm_unknown_reference(self, db, lodge, providers):
        with pytest.raises(NotFoundError):
            PaymentService.confirm_payment(db, lodge.tenant_id, "pi_missing", providers=providers)

    def test_provider_paid_immediately(self, db, lodge, providers, card_provider, pending_id):
        card_provider.initiate_payment.return_value = PaymentInitResult(
            success=True, transaction_ref="pi_now", status="paid"
        )
        payment = _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)
        assert payment.status == "paid"
        assert _reservation(db, pending_id).status == "confirmed"

    def test_decline_records_failed_attempt(self, db, lodge, providers, card_provider, pending_id):
        card_provider.initiate_payment.return_value = PaymentInitResult(
            success=False, status="failed", message="card declined"
        )
        payment = _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)

        assert payment.status == "failed"
        assert payment.failure_reason == "declined"
        reservation = _reservation(db, pending_id)
        assert reservation.payment_status == "failed"
        assert reservation.status == "pending"

    def test_failed_attempt_can_be_retried(self, db, lodge, providers, card_provider, pending_id):
        card_provider.initiate_payment.return_value = PaymentInitResult(
            success=False, status="failed", message="card declined"
        )
        _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)
        retry = _pay(db, lodge, pending_id, "200", providers=providers)

        assert retry.status == "paid"
        assert db.query(Payment).count() == 2
        assert _reservation(db, pending_id).payment_status == "paid"

    def test_transport_error_recorded_as_failed(self, db, lodge, providers, card_provider, pending_id):
        card_provider.initiate_payment.side_effect = PaymentProviderError("fake-card", "connection reset")
        payment = _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)

        assert payment.status == "failed"
        assert payment.failure_reason == "transport_error"
        assert _reservation(db, pending_id).payment_status == "failed"

    def test_unexpected_provider_exception_recorded_as_failed(self, db, lodge, providers, card_provider, pending_id):
        card_provider.initiate_payment.side_effect = ConnectionError("socket reset")
        payment = _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)

        assert [p.status for p in db.query(Payment).all()] == ["failed"]
        assert payment.failure_reason == "transport_error"
        assert _reservation(db, pending_id).payment_status == "failed"
        read = PaymentRead.model_validate(payment)
        assert read.status == "failed"
        assert read.failure_reason == "transport_error"

        # nothing left in flight, the full balance can still be paid
        retry = _pay(db, lodge, pending_id, "200", providers=providers)
        assert retry.status == "paid"

    def test_unexpected_exception_on_confirm_leaves_payment_pending(
        self, db, lodge, providers, card_provider, pending_id
    ):
        _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)
        card_provider.verify_payment.side_effect = ConnectionError("socket reset")

        with pytest.raises(PaymentProviderError):
            PaymentService.confirm_payment(db, lodge.tenant_id, "pi_test_1", providers=providers)
        assert db.query(Payment).one().status == "pending"

    def test_provider_timeout_recorded_as_transport_error(
        self, db, lodge, providers, card_provider, pending_id, monkeypatch
    ):
        monkeypatch.setattr(config, "PAYMENT_PROVIDER_TIMEOUT_SECONDS", 0.05)
        card_provider.initiate_payment.side_effect = lambda request: time.sleep(0.5)

        payment = _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)

        assert payment.status == "failed"
        assert payment.failure_reason == "transport_error"

    def test_settled_payment_is_final(self, db, lodge, providers, pending_id):
        payment = _pay(db, lodge, pending_id, "200", providers=providers)
        with pytest.raises(InvalidTransition):
            PaymentService.set_status(db, payment, "pending")


class TestRefunds:

    def test_partial_then_remaining(self, db, lodge, providers, pending_id):
        payment = _pay(db, lodge, pending_id, "200", providers=providers)
        payment_id = payment.id

        first = PaymentService.refund(db, lodge.tenant_id, payment_id, Decimal("50"), providers=providers)
        assert first.status == "refunded"
        assert first.refund_of_id == payment_id
        assert first.amount == Decimal("50.00")
        assert _reservation(db, pending_id).payment_status == "partially_paid"

        rest = PaymentService.refund(db, lodge.tenant_id, payment_id, providers=providers, reason="stay cancelled")
        assert rest.amount == Decimal("150.00")
        assert _reservation(db, pending_id).payment_status == "refunded"

        with pytest.raises(ValidationError):
            PaymentService.refund(db, lodge.tenant_id, payment_id, providers=providers)

    def test_refund_cannot_exceed_original(self, db, lodge, providers, pending_id):
        payment = _pay(db, lodge, pending_id, "100", providers=providers)
        with pytest.raises(ValidationError):
            PaymentService.refund(db, lodge.tenant_id, payment.id, Decimal("100.01"), providers=providers)

    def test_refund_row_cannot_be_refunded(self, db, lodge, providers, pending_id):
        payment = _pay(db, lodge, pending_id, "100", providers=providers)
        refund_row = PaymentService.refund(db, lodge.tenant_id, payment.id, Decimal("10"), providers=providers)
        with pytest.raises(InvalidTransition):
            PaymentService.refund(db, lodge.tenant_id, refund_row.id, providers=providers)

    def test_refund_of_pending_payment_rejected(self, db, lodge, providers, pending_id):
        payment = _pay(db, lodge, pending_id, "100", method=PaymentMethod.CARD, providers=providers)
        with pytest.raises(InvalidTransition):
            PaymentService.refund(db, lodge.tenant_id, payment.id, providers=providers)

    def test_card_refund_goes_through_provider(self, db, lodge, providers, card_provider, pending_id):
        _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)
        payment = PaymentService.confirm_payment(db, lodge.tenant_id, "pi_test_1", providers=providers)

        refund_row = PaymentService.refund(db, lodge.tenant_id, payment.id, Decimal("75"), providers=providers)

        card_provider.refund_payment.assert_called_once_with("pi_test_1", Decimal("75.00"))
        assert refund_row.transaction_ref == "re_test_1"

    def test_provider_refusal_writes_nothing(self, db, lodge, providers, card_provider, pending_id):
        card_provider.refund_payment.return_value = RefundResult(success=False, status="failed", message="too old")
        _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)
        payment = PaymentService.confirm_payment(db, lodge.tenant_id, "pi_test_1", providers=providers)

        with pytest.raises(PaymentProviderError):
            PaymentService.refund(db, lodge.tenant_id, payment.id, providers=providers)
        assert db.query(Payment).filter(Payment.refund_of_id.isnot(None)).count() == 0

    def test_unexpected_provider_exception_on_refund_writes_nothing(
        self, db, lodge, providers, card_provider, pending_id
    ):
        card_provider.refund_payment.side_effect = ConnectionError("socket reset")
        _pay(db, lodge, pending_id, "200", method=PaymentMethod.CARD, providers=providers)
        payment = PaymentService.confirm_payment(db, lodge.tenant_id, "pi_test_1", providers=providers)

        with pytest.raises(PaymentProviderError):
            PaymentService.refund(db, lodge.tenant_id, payment.id, providers=providers)
        assert db.query(Payment).filter(Payment.refund_of_id.isnot(None)).count() == 0
        assert db.get(Payment, payment.id).status == "paid"


class TestLedgerInvariant:

    def test_random_sequence_never_goes_negative(self, db, lodge, providers):
        reservation_id = insert_reservation(
            db, lodge.tenant_id, lodge.deluxe_id, "confirmed",
            check_in=date(2025, 4, 1), check_out=date(2025, 4, 6),
        )
        rng = random.Random(20250301)
        paid_ids = []

        for _ in range(40):
            if paid_ids and rng.random() < 0.4:
                payment_id = rng.choice(paid_ids)
                amount = Decimal(rng.randint(1, 120))
                try:
                    PaymentService.refund(db, lodge.tenant_id, payment_id, amount, providers=providers)
                except ValidationError:
                    pass
            else:
                amount = Decimal(rng.randint(1, 150))
                try:
                    payment = _pay(db, lodge, reservation_id, amount, providers=providers)
                except OverpaymentError:
                    continue
                paid_ids.append(payment.id)

            rows = PaymentService.list_payments(db, lodge.tenant_id, reservation_id)
            summary = summarize_ledger(rows)
            assert summary.net_paid >= 0
            assert summary.net_paid <= Decimal("500.00")
            for original in (r for r in rows if r.id in paid_ids):
                refunded = sum((r.amount for r in rows if r.refund_of_id == original.id), Decimal("0"))
                assert refunded <= original.amount
