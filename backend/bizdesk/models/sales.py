from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z, utcnow


SALE_STATUSES = ("pending", "partially_paid", "completed", "cancelled")
PAYMENT_METHODS = ("cash", "MobileMoney", "credit")
DELIVERY_STATUSES = ("pending", "delivered", "not_delivered")
REMINDER_STATUSES = ("pending", "sent", "cancelled")


def bps_to_percent(bps: int | None) -> float:
    return round((bps or 0) / 100, 2)


class Sale(db.Model):
    """
    Sale document: a client, product lines, payments and derived state.

    DERIVED STATE (never set directly by callers):
    - total_amount_cents: sum of line revenue
    - total_paid_cents: sum of payments
    - status: pending / partially_paid / completed from the balance;
      cancelled is terminal and only set by sales_service.cancel_sale
    - profit snapshot: totals of the per-line snapshot taken at save time
    - period_*: calendar buckets of sale_date for profit analytics

    stock_deducted records whether the lines' quantities are currently
    taken out of Product.stock, so deletion/cancellation never restores
    stock twice.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("total_amount_cents >= 0", name="ck_sales_total_non_negative"),
        db.CheckConstraint("total_paid_cents >= 0", name="ck_sales_paid_non_negative"),
        db.Index("ix_sales_status_date", "status", "sale_date"),
        db.Index("ix_sales_period_year_month", "period_year", "period_month"),
        db.Index("ix_sales_period_week_year_week", "period_week_year", "period_week"),
        db.Index("ix_sales_reminder", "reminder_is_set", "reminder_status", "reminder_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    note = db.Column(db.String(500), nullable=True)

    # Payment tracking (all amounts in cents)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    stock_deducted = db.Column(db.Boolean, nullable=False, default=False)

    # Profit snapshot
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_profit_cents = db.Column(db.Integer, nullable=False, default=0)
    profit_margin_bps = db.Column(db.Integer, nullable=False, default=0)
    profit_category = db.Column(db.String(16), nullable=False, default="low", index=True)

    # Period buckets of sale_date
    period_year = db.Column(db.Integer, nullable=True)
    period_month = db.Column(db.Integer, nullable=True)
    # ISO week and the ISO year it belongs to (late December can be week 1)
    period_week_year = db.Column(db.Integer, nullable=True)
    period_week = db.Column(db.Integer, nullable=True)
    period_day = db.Column(db.Integer, nullable=True)
    period_quarter = db.Column(db.Integer, nullable=True)

    # Delivery
    delivery_status = db.Column(db.String(16), nullable=False, default="pending")
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_note = db.Column(db.String(500), nullable=True)

    # Payment reminder
    reminder_is_set = db.Column(db.Boolean, nullable=False, default=False)
    reminder_date = db.Column(db.DateTime(timezone=True), nullable=True)
    reminder_note = db.Column(db.String(200), nullable=True)
    reminder_status = db.Column(db.String(16), nullable=True)
    reminder_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reminder_sent_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Cancellation audit trail
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    cancel_reason = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", backref=db.backref("sales", lazy="dynamic"))
    user = db.relationship("User", foreign_keys=[user_id])
    reminder_sent_by = db.relationship("User", foreign_keys=[reminder_sent_by_user_id])
    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleLine.id",
    )
    payments = db.relationship(
        "SalePayment",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SalePayment.id",
    )
    modifications = db.relationship(
        "SaleModification",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleModification.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_cents(self) -> int:
        return self.total_amount_cents - self.total_paid_cents

    def reminder_dict(self) -> dict:
        return {
            "is_set": self.reminder_is_set,
            "reminder_date": to_utc_z(self.reminder_date),
            "reminder_note": self.reminder_note or "",
            "status": self.reminder_status,
            "sent_at": to_utc_z(self.reminder_sent_at),
            "sent_by": self.reminder_sent_by.to_summary() if self.reminder_sent_by else None,
        }

    def to_dict(self, *, include_details: bool = True) -> dict:
        data = {
            "id": self.id,
            "client": self.client.to_summary() if self.client else None,
            "user": self.user.to_summary() if self.user else None,
            "sale_date": to_utc_z(self.sale_date),
            "note": self.note,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "total_paid_cents": self.total_paid_cents,
            "balance_cents": max(0, self.balance_cents),
            "stock_deducted": self.stock_deducted,
            "profit": {
                "total_cost_cents": self.total_cost_cents,
                "total_profit_cents": self.total_profit_cents,
                "profit_margin_bps": self.profit_margin_bps,
                "profit_margin": bps_to_percent(self.profit_margin_bps),
                "category": self.profit_category,
            },
            "period": {
                "year": self.period_year,
                "month": self.period_month,
                "week_year": self.period_week_year,
                "week": self.period_week,
                "day": self.period_day,
                "quarter": self.period_quarter,
            },
            "delivery": {
                "status": self.delivery_status,
                "date": to_utc_z(self.delivery_date),
                "note": self.delivery_note,
            },
            "payment_reminder": self.reminder_dict(),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_details:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [payment.to_dict() for payment in self.payments]
            data["modification_history"] = [mod.to_dict() for mod in self.modifications]
        return data


class SaleLine(db.Model):
    """
    Product line with its profit snapshot.

    cost_price_cents is copied from the product when the line is written so
    later cost changes never rewrite historical profit.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_sale_lines_quantity_positive"),
        db.CheckConstraint("price_at_sale_cents >= 0", name="ck_sale_lines_price_non_negative"),
        db.UniqueConstraint("sale_id", "product_id", name="uq_sale_lines_sale_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(100), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price_at_sale_cents = db.Column(db.Integer, nullable=False)

    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    profit_cents = db.Column(db.Integer, nullable=False, default=0)
    profit_margin_bps = db.Column(db.Integer, nullable=False, default=0)

    sale = db.relationship("Sale", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price_at_sale_cents": self.price_at_sale_cents,
            "cost_price_cents": self.cost_price_cents,
            "revenue_cents": self.revenue_cents,
            "cost_cents": self.cost_cents,
            "profit_cents": self.profit_cents,
            "profit_margin_bps": self.profit_margin_bps,
            "profit_margin": bps_to_percent(self.profit_margin_bps),
        }


class SalePayment(db.Model):
    """Money received against a sale. Amounts are always positive."""
    __tablename__ = "sale_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_sale_payments_amount_positive"),
        db.Index("ix_sale_payments_date", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False, default="cash")
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    sale = db.relationship("Sale", back_populates="payments")
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "payment_date": to_utc_z(self.payment_date),
            "user": self.user.to_summary() if self.user else None,
        }


class SaleModification(db.Model):
    """Audit entry appended each time a sale's lines are edited."""
    __tablename__ = "sale_modifications"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    note = db.Column(db.String(500), nullable=True)
    old_total_cents = db.Column(db.Integer, nullable=False)
    new_total_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", back_populates="modifications")
    user = db.relationship("User")
    lines = db.relationship(
        "SaleModificationLine",
        back_populates="modification",
        cascade="all, delete-orphan",
        order_by="SaleModificationLine.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user": self.user.to_summary() if self.user else None,
            "date": to_utc_z(self.created_at),
            "note": self.note,
            "old_total_cents": self.old_total_cents,
            "new_total_cents": self.new_total_cents,
            "changes": [line.to_dict() for line in self.lines],
        }


class SaleModificationLine(db.Model):
    __tablename__ = "sale_modification_lines"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    modification_id = db.Column(
        db.Integer, db.ForeignKey("sale_modifications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, nullable=False)
    product_name = db.Column(db.String(100), nullable=True)
    # 0 when the product was added or removed by the edit
    old_quantity = db.Column(db.Integer, nullable=False, default=0)
    new_quantity = db.Column(db.Integer, nullable=False, default=0)
    old_price_cents = db.Column(db.Integer, nullable=False, default=0)
    new_price_cents = db.Column(db.Integer, nullable=False, default=0)

    modification = db.relationship("SaleModification", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "old_quantity": self.old_quantity,
            "new_quantity": self.new_quantity,
            "old_price_cents": self.old_price_cents,
            "new_price_cents": self.new_price_cents,
        }


class DeletedSale(db.Model):
    """
    Archive of hard-deleted sales.

    sale_snapshot is the full Sale.to_dict() taken just before deletion,
    so the record stays readable after products/clients change.
    """
    __tablename__ = "deleted_sales"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, nullable=False, index=True)
    sale_snapshot = db.Column(db.JSON, nullable=False)
    deletion_reason = db.Column(db.String(500), nullable=True)
    deleted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    deleted_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "sale_snapshot": self.sale_snapshot,
            "deletion_reason": self.deletion_reason,
            "deleted_by": self.deleted_by.to_summary() if self.deleted_by else None,
            "deleted_at": to_utc_z(self.deleted_at),
        }
