"""
Pure ledger arithmetic. No session access, so it can run on any list of
Payment rows (loaded, freshly flushed, or test doubles).
"""
from collections import namedtuple
from decimal import Decimal
from typing import Iterable

from lodgecore.models.core import PaymentStatus, ReservationPaymentStatus
from lodgecore.utils.money import to_money, ZERO

LedgerSummary = namedtuple("LedgerSummary", ["paid", "refunded", "in_flight", "net_paid"])

IN_FLIGHT = (PaymentStatus.INITIATED.value, PaymentStatus.PENDING.value)


def summarize_ledger(payments: Iterable) -> LedgerSummary:
    paid = refunded = in_flight = ZERO
    for p in payments:
        amount = to_money(p.amount)
        if p.status == PaymentStatus.REFUNDED.value:
            refunded += amount
        elif p.status == PaymentStatus.PAID.value:
            paid += amount
        elif p.status in IN_FLIGHT:
            in_flight += amount
    return LedgerSummary(paid, refunded, in_flight, paid - refunded)


def derive_payment_status(total_amount: Decimal, payments: Iterable) -> str:
    """
    Projection of the ledger onto Reservation.payment_status.

    paid            net paid covers the total
    refunded        money was returned and nothing is left
    pending         an attempt is still in flight
    partially_paid  some money is held but not enough
    failed          the latest attempt failed and nothing ever settled
    unpaid          nothing happened yet
    """
    payments = list(payments)
    total = to_money(total_amount)
    summary = summarize_ledger(payments)

    if summary.paid > ZERO and summary.net_paid >= total:
        return ReservationPaymentStatus.PAID.value
    if summary.refunded > ZERO and summary.net_paid <= ZERO:
        return ReservationPaymentStatus.REFUNDED.value
    if summary.in_flight > ZERO:
        return ReservationPaymentStatus.PENDING.value
    if summary.net_paid > ZERO:
        return ReservationPaymentStatus.PARTIALLY_PAID.value

    attempts = sorted((p for p in payments if p.status != PaymentStatus.REFUNDED.value), key=lambda p: p.id or 0)
    if attempts and attempts[-1].status == PaymentStatus.FAILED.value and summary.paid == ZERO:
        return ReservationPaymentStatus.FAILED.value
    return ReservationPaymentStatus.UNPAID.value
