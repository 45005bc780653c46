from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z, utcnow


EXPENSE_CATEGORIES = ("rent", "utilities", "salaries", "supplies", "other")
EXPENSE_PAYMENT_METHODS = ("cash", "card", "debit", "transfer")
BANK_TRANSACTION_TYPES = ("deposit", "withdraw")


class Expense(db.Model):
    __tablename__ = "expenses"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        db.Index("ix_expenses_category_date", "category", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(32), nullable=False)
    date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    payment_method = db.Column(db.String(32), nullable=False, default="cash")

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    updated_by = db.relationship("User", foreign_keys=[updated_by_user_id])

    def to_dict(self, *, include_audit: bool = False) -> dict:
        data = {
            "id": self.id,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "category": self.category,
            "date": to_utc_z(self.date),
            "payment_method": self.payment_method,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_audit:
            data["created_by"] = self.created_by.to_summary() if self.created_by else None
            data["updated_by"] = self.updated_by.to_summary() if self.updated_by else None
        return data


class BankTransaction(db.Model):
    """
    Per-user bank ledger entry.

    The balance is never stored: it is Σ deposits - Σ withdrawals over the
    user's rows (see bank_service.get_balance_cents).
    """
    __tablename__ = "bank_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 1", name="ck_bank_transactions_amount_positive"),
        db.Index("ix_bank_transactions_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    label = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "label": self.label,
            "created_at": to_utc_z(self.created_at),
        }
