# Overview: Service-layer operations for inventory; the single choke point for stock changes.

"""
Stock Invariants (authoritative)

- Product.stock is the on-hand quantity and never goes negative.
- Every change to Product.stock goes through adjust_stock(), which appends
  a ProductActivity row in the same DB transaction. Nothing here commits:
  callers own the transaction (see concurrency.run_in_transaction).
- Reaching zero or the product's min_stock_level logs a warning.
"""

import logging

from ..extensions import db
from ..models import Product, ProductActivity
from ..models.inventory import PRODUCT_ACTIVITY_TYPES
from ..validation import ServiceError
from .concurrency import lock_for_update


logger = logging.getLogger(__name__)


class InsufficientStockError(ServiceError):
    """Raised when a stock change would leave a product below zero."""

    def __init__(self, product: Product, requested: int):
        super().__init__(
            f"Insufficient stock for {product.name} ({product.stock} available)",
            details={"product_id": product.id, "available": product.stock, "requested": requested},
        )


def get_product_for_update(product_id: int) -> Product | None:
    return lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()


def log_activity(
    product: Product,
    activity_type: str,
    description: str,
    *,
    old_value=None,
    new_value=None,
    user_id: int | None = None,
) -> ProductActivity:
    """Append a ProductActivity row (no commit)."""
    if activity_type not in PRODUCT_ACTIVITY_TYPES:
        raise ValueError(f"Unknown activity type: {activity_type}")
    activity = ProductActivity(
        product=product,
        type=activity_type,
        description=(description or "")[:200],
        old_value=None if old_value is None else str(old_value),
        new_value=None if new_value is None else str(new_value),
        user_id=user_id,
    )
    db.session.add(activity)
    return activity


def adjust_stock(
    product: Product,
    delta: int,
    *,
    activity_type: str,
    description: str,
    user_id: int | None = None,
) -> int:
    """
    Apply delta to product.stock and log it. Returns the new stock.

    Raises InsufficientStockError if the result would be negative.
    """
    if delta == 0:
        return product.stock

    old_stock = product.stock
    new_stock = old_stock + delta
    if new_stock < 0:
        raise InsufficientStockError(product, -delta)

    product.stock = new_stock
    log_activity(
        product,
        activity_type,
        description,
        old_value=old_stock,
        new_value=new_stock,
        user_id=user_id,
    )
    warn_if_low_stock(product)
    return new_stock


def warn_if_low_stock(product: Product) -> None:
    if product.stock == 0:
        logger.warning("Product %s (%s) is out of stock", product.id, product.name)
    elif product.stock <= product.min_stock_level:
        logger.warning(
            "Product %s (%s) is low on stock: %s left (minimum %s)",
            product.id, product.name, product.stock, product.min_stock_level,
        )
