# Overview: Service-layer operations for bank; per-user deposit/withdraw ledger.

"""
Bank Service

WHY: Each user keeps a simple cash ledger. The balance is derived, never
stored: Σ deposits - Σ withdrawals over the user's transactions.

INVARIANT: A withdrawal can never take the balance below zero. Writes for a
user are serialized on that user's row, so the balance check and the insert
cannot interleave with another withdrawal.
"""

from sqlalchemy import case, func

from ..extensions import db
from ..models import BankTransaction, User
from ..models.finance import BANK_TRANSACTION_TYPES
from ..validation import ServiceError, require_amount_cents
from .concurrency import lock_for_update, run_in_transaction


class BankError(ServiceError):
    """Raised for bank ledger errors."""


LABEL_MAX_LENGTH = 200


def get_balance_cents(user_id: int) -> int:
    signed = case(
        (BankTransaction.type == "deposit", BankTransaction.amount_cents),
        else_=-BankTransaction.amount_cents,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(BankTransaction.user_id == user_id)
        .scalar()
    )
    return int(total or 0)


def list_transactions(
    user_id: int,
    *,
    tx_type: str | None = None,
    start=None,
    end=None,
    search: str | None = None,
) -> list[BankTransaction]:
    query = db.session.query(BankTransaction).filter(BankTransaction.user_id == user_id)
    if tx_type:
        if tx_type not in BANK_TRANSACTION_TYPES:
            raise BankError(f"Invalid type. Must be one of: {', '.join(BANK_TRANSACTION_TYPES)}")
        query = query.filter(BankTransaction.type == tx_type)
    if start is not None:
        query = query.filter(BankTransaction.created_at >= start)
    if end is not None:
        query = query.filter(BankTransaction.created_at <= end)
    if search and search.strip():
        query = query.filter(BankTransaction.label.ilike(f"%{search.strip()}%"))
    return query.order_by(BankTransaction.created_at.desc(), BankTransaction.id.desc()).all()


def record_transaction(user_id: int, tx_type, amount_cents, label) -> BankTransaction:
    """
    Record a deposit or a withdrawal for the user.

    Raises BankError (400) for an invalid type, a non-positive amount, an
    empty or over-long label, or a withdrawal larger than the balance.
    """
    if tx_type not in BANK_TRANSACTION_TYPES:
        raise BankError(f"Invalid type. Must be one of: {', '.join(BANK_TRANSACTION_TYPES)}")

    amount = require_amount_cents(amount_cents)

    label = str(label or "").strip()
    if not label:
        raise BankError("Label is required")
    if len(label) > LABEL_MAX_LENGTH:
        raise BankError(f"Label cannot exceed {LABEL_MAX_LENGTH} characters")

    def _op():
        owner = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if owner is None:
            raise BankError("User not found", status_code=404)

        if tx_type == "withdraw":
            balance = get_balance_cents(user_id)
            if amount > balance:
                raise BankError("Insufficient balance for this withdrawal", details={"balance": balance})

        transaction = BankTransaction(user_id=user_id, type=tx_type, amount_cents=amount, label=label)
        db.session.add(transaction)
        return transaction

    return run_in_transaction(_op)
