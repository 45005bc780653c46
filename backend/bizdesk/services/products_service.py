# Overview: Service-layer operations for products; catalogue CRUD, per-product stats and the stock dashboard.

"""
Products Service

- Slugs and SKUs come from identifier_service.
- Stock edits made through update_product go through
  inventory_service.adjust_stock like every other stock change.
- A product referenced by any sale line cannot be deleted: sale history
  keeps its lines.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, ProductActivity, Sale, SaleLine
from ..models.inventory import DEFAULT_MIN_STOCK_LEVEL, DEFAULT_SUPPLIER_NAME
from ..validation import ConflictError, ServiceError
from bizdesk.time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update, run_in_transaction
from .identifier_service import generate_sku, normalize_sku, unique_product_slug
from .inventory_service import adjust_stock, log_activity
from .profit_service import margin_bps
from ..models.sales import bps_to_percent


STATS_RANGES = {"day": 1, "week": 7, "month": 30, "year": 365, "all": None}
COVERAGE_WINDOW_DAYS = 30
GOOD_STOCK_LEVEL = 20


class ProductError(ServiceError):
    """Raised for product operation errors."""


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise ProductError("Product not found", status_code=404)
    return product


def list_products(*, search: str | None = None, category: str | None = None, low_stock: bool = False) -> list[Product]:
    query = db.session.query(Product)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(db.or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
    if category:
        query = query.filter(Product.category == category)
    if low_stock:
        query = query.filter(Product.stock <= Product.min_stock_level)
    return query.order_by(Product.stock.desc(), Product.id.asc()).all()


def create_product(patch: dict, *, user_id: int | None = None) -> Product:
    patch = dict(patch)
    sku = patch.pop("sku", None)
    if sku:
        sku = normalize_sku(sku)
        if db.session.query(Product.id).filter(Product.sku == sku).first():
            raise ConflictError("SKU already exists")

    def _op():
        product = Product(**patch)
        product.sku = sku or generate_sku()
        product.slug = unique_product_slug(product.name)
        if product.supplier_name is None:
            product.supplier_name = DEFAULT_SUPPLIER_NAME
        if product.min_stock_level is None:
            product.min_stock_level = DEFAULT_MIN_STOCK_LEVEL
        product.created_by_user_id = user_id
        product.updated_by_user_id = user_id
        db.session.add(product)
        db.session.flush()
        log_activity(
            product,
            "creation",
            f"Product created with {product.stock or 0} unit(s) in stock",
            new_value=product.stock or 0,
            user_id=user_id,
        )
        return product

    try:
        return run_in_transaction(_op)
    except IntegrityError:
        raise ConflictError("SKU or slug already exists")


def update_product(product_id: int, patch: dict, *, user_id: int | None = None) -> Product:
    """
    Partial update.

    Price changes log price_update; stock changes go through adjust_stock
    (stock_update); a name change regenerates the slug.
    """
    patch = dict(patch)
    if "sku" in patch and patch["sku"]:
        patch["sku"] = normalize_sku(patch["sku"])
        clash = db.session.query(Product.id).filter(Product.sku == patch["sku"], Product.id != product_id).first()
        if clash:
            raise ConflictError("SKU already exists")

    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if not product:
            raise ProductError("Product not found", status_code=404)

        new_stock = patch.pop("stock", None)
        if new_stock is not None:
            if new_stock < 0:
                raise ProductError("Stock cannot be negative")
            adjust_stock(
                product,
                new_stock - product.stock,
                activity_type="stock_update",
                description=f"Stock changed from {product.stock} to {new_stock}",
                user_id=user_id,
            )

        if "price_cents" in patch and patch["price_cents"] != product.price_cents:
            log_activity(
                product,
                "price_update",
                f"Price changed from {product.price_cents} to {patch['price_cents']}",
                old_value=product.price_cents,
                new_value=patch["price_cents"],
                user_id=user_id,
            )

        if "name" in patch and patch["name"] != product.name:
            product.slug = unique_product_slug(patch["name"], exclude_id=product.id)

        for key, value in patch.items():
            setattr(product, key, value)
        product.updated_by_user_id = user_id
        return product

    try:
        return run_in_transaction(_op)
    except IntegrityError:
        raise ConflictError("SKU or slug already exists")


def delete_product(product_id: int) -> None:
    def _op():
        product = get_product(product_id)
        used = db.session.query(SaleLine.id).filter(SaleLine.product_id == product.id).first()
        if used:
            raise ProductError("Cannot delete a product that appears in sales")
        db.session.query(ProductActivity).filter_by(product_id=product.id).delete()
        db.session.delete(product)

    run_in_transaction(_op)


def never_sold_products() -> list[Product]:
    sold = select(SaleLine.product_id).distinct()
    return (
        db.session.query(Product)
        .filter(Product.id.notin_(sold))
        .order_by(Product.price_cents.desc(), Product.id.asc())
        .all()
    )


def _range_start(range_key: str, now):
    if range_key not in STATS_RANGES:
        raise ProductError(f"Invalid range. Must be one of: {', '.join(STATS_RANGES)}")
    days = STATS_RANGES[range_key]
    return None if days is None else now - timedelta(days=days)


def _line_rows(product_id: int, start=None):
    query = (
        db.session.query(Sale.id, Sale.sale_date, SaleLine.quantity, SaleLine.revenue_cents, SaleLine.profit_cents)
        .join(Sale, SaleLine.sale_id == Sale.id)
        .filter(SaleLine.product_id == product_id, Sale.status != "cancelled")
    )
    if start is not None:
        query = query.filter(Sale.sale_date >= start)
    return query.order_by(Sale.sale_date.asc()).all()


def _metrics(rows) -> dict:
    units = sum(r.quantity for r in rows)
    revenue = sum(r.revenue_cents for r in rows)
    profit = sum(r.profit_cents for r in rows)
    return {
        "orders": len({r.id for r in rows}),
        "units": units,
        "revenue_cents": revenue,
        "profit_cents": profit,
        "last_sale_date": max((r.sale_date for r in rows), default=None),
    }


def product_stats(product_id: int, range_key: str = "month", *, now=None) -> dict:
    product = get_product(product_id)
    now = now or utcnow()
    start = _range_start(range_key, now)

    period_rows = _line_rows(product.id, start)
    lifetime_rows = period_rows if start is None else _line_rows(product.id)
    period = _metrics(period_rows)
    lifetime = _metrics(lifetime_rows)

    if start is None:
        first = min((r.sale_date for r in lifetime_rows), default=None)
        period_days = max((now - first).days, 1) if first else COVERAGE_WINDOW_DAYS
    else:
        period_days = max((now - start).days, 1)
    average_daily_units = period["units"] / period_days if period["units"] else 0
    coverage_days = round(product.stock / average_daily_units, 1) if average_daily_units else None
    sell_through_base = period["units"] + product.stock
    sell_through = round(period["units"] / sell_through_base * 100, 2) if sell_through_base else 0.0

    daily = defaultdict(lambda: {"units": 0, "revenue_cents": 0, "orders": 0})
    for row in period_rows:
        day = daily[row.sale_date.date().isoformat()]
        day["units"] += row.quantity
        day["revenue_cents"] += row.revenue_cents
        day["orders"] += 1

    activities = product.activities.order_by(ProductActivity.created_at.desc(), ProductActivity.id.desc()).limit(10).all()

    units = lifetime["units"]
    return {
        "product": product.to_dict(),
        "range": range_key,
        "period": {**period, "last_sale_date": to_utc_z(period["last_sale_date"])},
        "lifetime": {**lifetime, "last_sale_date": to_utc_z(lifetime["last_sale_date"])},
        "average_selling_price_cents": lifetime["revenue_cents"] // units if units else 0,
        "profit_per_unit_cents": lifetime["profit_cents"] // units if units else 0,
        "cost_per_unit_cents": product.cost_price_cents,
        "last_sale_date": to_utc_z(lifetime["last_sale_date"]),
        "inventory": {
            "stock": product.stock,
            "stock_value_cents": product.stock * product.cost_price_cents,
            "coverage_days": coverage_days,
            "sell_through_rate": sell_through,
        },
        "activities": [a.to_dict() for a in activities],
        "trend": [{"date": day, **values} for day, values in sorted(daily.items())],
    }


def _sales_window(start, end):
    query = db.session.query(Sale).filter(Sale.status != "cancelled", Sale.sale_date <= end)
    if start is not None:
        query = query.filter(Sale.sale_date >= start)
    return query


def product_dashboard(range_key: str = "month", *, now=None) -> dict:
    now = now or utcnow()
    start = _range_start(range_key, now)
    products = db.session.query(Product).all()
    never_sold = never_sold_products()

    window = _sales_window(start, now)
    sales_count = window.count()
    sales_value, profit = window.with_entities(
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
        func.coalesce(func.sum(Sale.total_profit_cents), 0),
    ).one()

    trend = "stable"
    if sales_count and start is not None:
        previous = _sales_window(start - (now - start), start - timedelta(microseconds=1)).count()
        if sales_count > previous * 1.2:
            trend = "up"
        elif sales_count < previous * 0.8:
            trend = "down"

    top_selling_query = (
        db.session.query(SaleLine.product_id, func.max(SaleLine.product_name), func.sum(SaleLine.quantity))
        .join(Sale, SaleLine.sale_id == Sale.id)
        .filter(Sale.status != "cancelled", Sale.sale_date <= now)
    )
    if start is not None:
        top_selling_query = top_selling_query.filter(Sale.sale_date >= start)
    top_selling = (
        top_selling_query.group_by(SaleLine.product_id)
        .order_by(func.sum(SaleLine.quantity).desc())
        .limit(5)
        .all()
    )

    def _summaries(items, limit=10):
        return [p.to_summary() for p in items[:limit]]

    low = sorted((p for p in products if 0 < p.stock <= p.min_stock_level), key=lambda p: p.stock)
    out = sorted((p for p in products if p.stock == 0), key=lambda p: -p.price_cents)
    critical = sorted((p for p in products if p.stock == 1), key=lambda p: -p.price_cents)
    expensive = sorted((p for p in products if p.price_cents > 0), key=lambda p: -p.price_cents)
    with_cost = [p for p in products if p.cost_price_cents > 0]
    top_margin = sorted(with_cost, key=lambda p: -p.profit_margin)

    categories = defaultdict(int)
    for p in products:
        categories[p.category or "Uncategorized"] += 1

    return {
        "range": range_key,
        "period": {"start": to_utc_z(start), "end": to_utc_z(now)},
        "total_products": len(products),
        "total_stock_value_cents": sum(p.stock * p.cost_price_cents for p in products),
        "total_sales_value_cents": int(sales_value),
        "total_profit_cents": int(profit),
        "sales_count": sales_count,
        "sales_trend": trend,
        "low_stock_products": _summaries(low),
        "out_of_stock_products": _summaries(out),
        "critical_stock_products": _summaries(critical),
        "never_sold_products": _summaries(never_sold),
        "most_expensive_products": _summaries(expensive, 5),
        "top_selling_products": [
            {"product_id": pid, "name": name, "sold": int(qty)} for pid, name, qty in top_selling
        ],
        "top_margin_products": [
            {"product_id": p.id, "name": p.name, "margin": p.profit_margin} for p in top_margin[:5]
        ],
        "counters": {
            "low_stock": len(low),
            "medium_stock": len([p for p in products if p.min_stock_level < p.stock < GOOD_STOCK_LEVEL]),
            "good_stock": len([p for p in products if p.stock >= GOOD_STOCK_LEVEL]),
            "zero_stock": len(out),
            "never_sold": len(never_sold),
        },
        "average_margin": round(sum(p.profit_margin for p in with_cost) / len(with_cost), 2) if with_cost else 0.0,
        "average_sale_margin": bps_to_percent(margin_bps(int(profit), int(sales_value))),
        "category_distribution": [
            {"category": name, "count": count}
            for name, count in sorted(categories.items(), key=lambda item: -item[1])
        ],
    }
