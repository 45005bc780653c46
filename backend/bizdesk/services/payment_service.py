# Overview: Service-layer operations for sale payments; keeps paid totals and status derived from the balance.

"""
Payment Service

INVARIANTS:
- Sale.total_paid_cents == Σ SalePayment.amount_cents for the sale.
- balance = total_amount - total_paid never goes below zero: a payment
  larger than the remaining balance is refused.
- Status is derived, never chosen by the caller (derive_status).
  "cancelled" is terminal and only set by sales_service.cancel_sale.
"""

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import Sale, SalePayment, Client
from ..models.sales import PAYMENT_METHODS
from ..validation import ServiceError, ValidationError, require_amount_cents, require_choice
from bizdesk.time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update, run_in_transaction
from . import notification_service


logger = logging.getLogger(__name__)


class PaymentError(ServiceError):
    """Raised for payment operation errors."""


def derive_status(total_amount_cents: int, total_paid_cents: int) -> str:
    """
    completed iff the balance is settled, partially_paid iff something was
    paid, otherwise pending.
    """
    if total_amount_cents - total_paid_cents <= 0:
        return "completed"
    if total_paid_cents > 0:
        return "partially_paid"
    return "pending"


def recalculate_payments(sale: Sale) -> None:
    """Recompute total_paid_cents and status from the sale's payments (no commit)."""
    sale.total_paid_cents = sum(p.amount_cents for p in sale.payments)
    if sale.status != "cancelled":
        sale.status = derive_status(sale.total_amount_cents, sale.total_paid_cents)


def _get_sale_locked(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise PaymentError("Sale not found", status_code=404)
    return sale


def validate_payment_input(amount_cents, method) -> tuple[int, str]:
    try:
        amount = require_amount_cents(amount_cents)
        method = require_choice(method or "cash", PAYMENT_METHODS, "payment method")
    except ValidationError as e:
        raise PaymentError(str(e))
    return amount, method


def attach_payment(sale: Sale, amount_cents: int, method: str, *, user_id: int | None, payment_date=None) -> SalePayment:
    """
    Append a payment to a sale and re-derive its status (no commit).

    Raises PaymentError when the amount exceeds the remaining balance.
    """
    balance = sale.total_amount_cents - sale.total_paid_cents
    if amount_cents > balance:
        raise PaymentError(
            "Payment amount exceeds the remaining balance",
            details={"balance_cents": max(0, balance)},
        )

    payment = SalePayment(
        amount_cents=amount_cents,
        method=method,
        payment_date=payment_date or utcnow(),
        user_id=user_id,
    )
    sale.payments.append(payment)
    recalculate_payments(sale)
    return payment


def add_payment(
    sale_id: int,
    amount_cents,
    method,
    *,
    user_id: int | None = None,
    payment_date=None,
) -> Sale:
    """Record a payment against a sale. Emits a payment_recorded event after commit."""
    def _op():
        sale = _get_sale_locked(sale_id)
        if sale.status == "cancelled":
            raise PaymentError("Cannot add a payment to a cancelled sale")
        amount, checked_method = validate_payment_input(amount_cents, method)
        payment = attach_payment(sale, amount, checked_method, user_id=user_id, payment_date=payment_date)
        return sale, payment

    sale, payment = run_in_transaction(_op)
    logger.info(
        "Payment %s of %s cents recorded on sale %s (balance %s)",
        payment.id, payment.amount_cents, sale.id, sale.balance_cents,
    )
    notification_service.notify_payment_recorded(sale, payment)
    return sale


def delete_payment(sale_id: int, payment_id: int) -> Sale:
    def _op():
        sale = _get_sale_locked(sale_id)
        payment = db.session.query(SalePayment).filter_by(id=payment_id, sale_id=sale.id).first()
        if not payment:
            raise PaymentError("Payment not found", status_code=404)
        sale.payments.remove(payment)
        recalculate_payments(sale)
        return sale

    sale = run_in_transaction(_op)
    logger.info("Payment %s removed from sale %s", payment_id, sale_id)
    return sale


def list_payments_in_range(start, end) -> list[dict]:
    """Payments with their sale and client, newest first."""
    rows = (
        db.session.query(SalePayment, Sale, Client)
        .join(Sale, SalePayment.sale_id == Sale.id)
        .join(Client, Sale.client_id == Client.id)
        .filter(SalePayment.payment_date >= start, SalePayment.payment_date <= end)
        .order_by(SalePayment.payment_date.desc(), SalePayment.id.desc())
        .all()
    )
    return [
        {
            **payment.to_dict(),
            "sale": {
                "id": sale.id,
                "sale_date": to_utc_z(sale.sale_date),
                "status": sale.status,
                "total_amount_cents": sale.total_amount_cents,
            },
            "client": client.to_summary(),
        }
        for payment, sale, client in rows
    ]


def payment_method_totals(start=None, end=None) -> dict[str, dict]:
    """{method: {count, total_cents}} over payments, optionally within a date range."""
    query = db.session.query(
        SalePayment.method,
        func.count(SalePayment.id),
        func.coalesce(func.sum(SalePayment.amount_cents), 0),
    )
    if start is not None:
        query = query.filter(SalePayment.payment_date >= start)
    if end is not None:
        query = query.filter(SalePayment.payment_date <= end)
    rows = query.group_by(SalePayment.method).all()
    return {method: {"count": int(count), "total_cents": int(total)} for method, count, total in rows}
