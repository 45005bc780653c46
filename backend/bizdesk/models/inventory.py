from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z, utcnow


PRODUCT_ACTIVITY_TYPES = ("creation", "stock_update", "price_update", "sale", "return", "view", "adjustment")

DEFAULT_SUPPLIER_NAME = "Non défini"
DEFAULT_MIN_STOCK_LEVEL = 5


class Product(db.Model):
    """
    Product master data with on-hand stock.

    STOCK DESIGN:
    - Product.stock is the authoritative on-hand quantity.
    - It never goes negative (CHECK constraint + service validation).
    - Every change goes through inventory_service.adjust_stock, which also
      appends a ProductActivity row, so the activity log explains the number.

    PRICING:
    - price_cents is the default selling price; a sale may override it
      per line but never below cost_price_cents.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
        db.CheckConstraint("cost_price_cents >= 0", name="ck_products_cost_non_negative"),
        db.Index("ix_products_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    slug = db.Column(db.String(160), nullable=False, unique=True)
    name = db.Column(db.String(100), nullable=False, index=True)
    description = db.Column(db.String(500), nullable=False)
    category = db.Column(db.String(100), nullable=False)
    image = db.Column(db.String(500), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=DEFAULT_MIN_STOCK_LEVEL)

    supplier_name = db.Column(db.String(120), nullable=False, default=DEFAULT_SUPPLIER_NAME)
    supplier_phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    updated_by = db.relationship("User", foreign_keys=[updated_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.stock}>"

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock_level

    @property
    def unit_profit_cents(self) -> int:
        return self.price_cents - self.cost_price_cents

    @property
    def profit_margin(self) -> float:
        """Markup over cost, in percent."""
        if not self.cost_price_cents:
            return 0.0
        return round((self.price_cents - self.cost_price_cents) / self.cost_price_cents * 100, 2)

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "category": self.category,
            "price_cents": self.price_cents,
            "stock": self.stock,
        }

    def to_dict(self, *, include_audit: bool = False) -> dict:
        data = {
            "id": self.id,
            "sku": self.sku,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "image": self.image,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "stock": self.stock,
            "min_stock_level": self.min_stock_level,
            "supplier_name": self.supplier_name,
            "supplier_phone": self.supplier_phone,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "unit_profit_cents": self.unit_profit_cents,
            "profit_margin": self.profit_margin,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_audit:
            data["created_by"] = self.created_by.to_summary() if self.created_by else None
            data["updated_by"] = self.updated_by.to_summary() if self.updated_by else None
        return data


class ProductActivity(db.Model):
    """
    Append-only log of everything that happened to a product.

    old_value/new_value are stored as strings: stock counts for stock
    movements, cents for price changes.
    """
    __tablename__ = "product_activities"
    __table_args__ = (
        db.Index("ix_product_activities_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(200), nullable=False)
    old_value = db.Column(db.String(64), nullable=True)
    new_value = db.Column(db.String(64), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship(
        "Product",
        backref=db.backref("activities", lazy="dynamic", cascade="all, delete-orphan"),
    )
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "description": self.description,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "user": self.user.to_summary() if self.user else None,
            "created_at": to_utc_z(self.created_at),
        }
