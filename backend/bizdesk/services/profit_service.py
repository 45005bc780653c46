# Overview: Service-layer operations for profit; line snapshots, sale totals and profit analytics.

"""
Profit Service

SNAPSHOT RULES (taken whenever a sale's lines are written):
- line revenue = price_at_sale × quantity
- line cost    = cost_price (copied from the product at that moment) × quantity
- line profit  = revenue - cost
- margin       = profit / revenue, stored in basis points (0 when revenue is 0)
- sale totals are the sums of the lines; profit_category buckets the
  sale margin: >= 50 % excellent, >= 30 % high, >= 15 % medium, else low

Analytics read the snapshot, never the current Product.cost_price_cents,
so editing a product's cost does not rewrite past profit.
"""

from sqlalchemy import case, func, select

from ..extensions import db
from ..models import Sale, SaleLine, Product
from ..models.sales import bps_to_percent
from bizdesk.time_utils import period_fields


PROFIT_CATEGORY_THRESHOLDS_BPS = (
    (5000, "excellent"),
    (3000, "high"),
    (1500, "medium"),
)

# Stored period columns that make up each analytics bucket
PERIOD_KEYS = {
    "day": ("period_year", "period_month", "period_day"),
    "week": ("period_week_year", "period_week"),
    "month": ("period_year", "period_month"),
    "quarter": ("period_year", "period_quarter"),
    "year": ("period_year",),
}


def margin_bps(profit_cents: int, revenue_cents: int) -> int:
    if not revenue_cents:
        return 0
    return int(round(profit_cents * 10000 / revenue_cents))


def profit_category(margin: int) -> str:
    for threshold, name in PROFIT_CATEGORY_THRESHOLDS_BPS:
        if margin >= threshold:
            return name
    return "low"


def snapshot_line(line: SaleLine, cost_price_cents: int) -> None:
    line.cost_price_cents = cost_price_cents
    line.revenue_cents = line.price_at_sale_cents * line.quantity
    line.cost_cents = cost_price_cents * line.quantity
    line.profit_cents = line.revenue_cents - line.cost_cents
    line.profit_margin_bps = margin_bps(line.profit_cents, line.revenue_cents)


def apply_sale_snapshot(sale: Sale) -> None:
    """Roll line snapshots up to the sale and stamp its period buckets (no commit)."""
    sale.total_amount_cents = sum(line.revenue_cents for line in sale.lines)
    sale.total_cost_cents = sum(line.cost_cents for line in sale.lines)
    sale.total_profit_cents = sale.total_amount_cents - sale.total_cost_cents
    sale.profit_margin_bps = margin_bps(sale.total_profit_cents, sale.total_amount_cents)
    sale.profit_category = profit_category(sale.profit_margin_bps)
    for key, value in period_fields(sale.sale_date).items():
        setattr(sale, key, value)


def _filtered_sales(*, start=None, end=None, category=None, min_profit=None, max_profit=None):
    query = db.session.query(Sale).filter(Sale.status != "cancelled")
    if start is not None:
        query = query.filter(Sale.sale_date >= start)
    if end is not None:
        query = query.filter(Sale.sale_date <= end)
    if category:
        query = query.filter(Sale.profit_category == category)
    if min_profit is not None:
        query = query.filter(Sale.total_profit_cents >= min_profit)
    if max_profit is not None:
        query = query.filter(Sale.total_profit_cents <= max_profit)
    return query


def profit_analytics(
    *,
    period: str = "month",
    start=None,
    end=None,
    category: str | None = None,
    min_profit: int | None = None,
    max_profit: int | None = None,
) -> dict:
    if period not in PERIOD_KEYS:
        raise ValueError(f"Invalid period. Must be one of: {', '.join(PERIOD_KEYS)}")

    base = _filtered_sales(start=start, end=end, category=category, min_profit=min_profit, max_profit=max_profit)
    sale_ids = base.with_entities(Sale.id).subquery()

    key_cols = [getattr(Sale, name) for name in PERIOD_KEYS[period]]
    period_rows = (
        base.with_entities(
            *key_cols,
            func.sum(Sale.total_amount_cents),
            func.sum(Sale.total_profit_cents),
            func.sum(Sale.total_cost_cents),
            func.count(Sale.id),
            func.avg(Sale.total_profit_cents),
            func.avg(Sale.profit_margin_bps),
        )
        .group_by(*key_cols)
        .order_by(*key_cols)
        .all()
    )
    width = len(key_cols)
    period_analytics = []
    for row in period_rows:
        key = {name.replace("period_", ""): value for name, value in zip(PERIOD_KEYS[period], row[:width])}
        total_sales, total_profit, total_cost, count, avg_profit, avg_margin = row[width:]
        period_analytics.append({
            "period": key,
            "total_sales_cents": int(total_sales or 0),
            "total_profit_cents": int(total_profit or 0),
            "total_cost_cents": int(total_cost or 0),
            "sales_count": int(count),
            "average_profit_cents": int(round(avg_profit or 0)),
            "average_margin": round((avg_margin or 0) / 100, 2),
        })

    top_products = (
        db.session.query(
            SaleLine.product_id,
            func.max(SaleLine.product_name),
            func.sum(SaleLine.quantity),
            func.sum(SaleLine.revenue_cents),
            func.sum(SaleLine.cost_cents),
            func.sum(SaleLine.profit_cents),
        )
        .filter(SaleLine.sale_id.in_(select(sale_ids.c.id)))
        .group_by(SaleLine.product_id)
        .order_by(func.sum(SaleLine.profit_cents).desc())
        .limit(10)
        .all()
    )

    totals = base.with_entities(
        func.coalesce(func.sum(Sale.total_profit_cents), 0),
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
        func.count(Sale.id),
        func.avg(Sale.total_profit_cents),
        func.avg(Sale.profit_margin_bps),
        func.coalesce(func.sum(case((Sale.total_profit_cents > 0, 1), else_=0)), 0),
    ).one()
    total_profit, total_revenue, sale_count, avg_profit, avg_margin, profitable = totals

    by_category = (
        db.session.query(
            Product.category,
            func.sum(SaleLine.quantity),
            func.sum(SaleLine.revenue_cents),
            func.sum(SaleLine.profit_cents),
        )
        .join(Product, SaleLine.product_id == Product.id)
        .filter(SaleLine.sale_id.in_(select(sale_ids.c.id)))
        .group_by(Product.category)
        .order_by(func.sum(SaleLine.profit_cents).desc())
        .all()
    )

    return {
        "period": period,
        "period_analytics": period_analytics,
        "top_products": [
            {
                "product_id": product_id,
                "product_name": name,
                "quantity": int(qty or 0),
                "revenue_cents": int(revenue or 0),
                "cost_cents": int(cost or 0),
                "profit_cents": int(profit or 0),
                "profit_margin": bps_to_percent(margin_bps(int(profit or 0), int(revenue or 0))),
            }
            for product_id, name, qty, revenue, cost, profit in top_products
        ],
        "general_stats": {
            "total_profit_cents": int(total_profit),
            "total_revenue_cents": int(total_revenue),
            "sales_count": int(sale_count),
            "average_profit_cents": int(round(avg_profit or 0)),
            "average_margin": round((avg_margin or 0) / 100, 2),
            "profitable_sales": int(profitable),
        },
        "profit_by_category": [
            {
                "category": category_name,
                "quantity": int(qty or 0),
                "revenue_cents": int(revenue or 0),
                "profit_cents": int(profit or 0),
                "profit_margin": bps_to_percent(margin_bps(int(profit or 0), int(revenue or 0))),
            }
            for category_name, qty, revenue, profit in by_category
        ],
    }


def profit_report(*, start=None, end=None) -> dict:
    """Per-product quantity, revenue, cost, profit and margin over non-cancelled sales."""
    query = (
        db.session.query(
            SaleLine.product_id,
            func.max(SaleLine.product_name),
            func.sum(SaleLine.quantity),
            func.sum(SaleLine.revenue_cents),
            func.sum(SaleLine.cost_cents),
            func.sum(SaleLine.profit_cents),
        )
        .join(Sale, SaleLine.sale_id == Sale.id)
        .filter(Sale.status != "cancelled")
    )
    if start is not None:
        query = query.filter(Sale.sale_date >= start)
    if end is not None:
        query = query.filter(Sale.sale_date <= end)
    rows = query.group_by(SaleLine.product_id).order_by(func.sum(SaleLine.profit_cents).desc()).all()

    products = []
    totals = {"quantity": 0, "revenue_cents": 0, "cost_cents": 0, "profit_cents": 0}
    for product_id, name, qty, revenue, cost, profit in rows:
        entry = {
            "product_id": product_id,
            "product_name": name,
            "quantity": int(qty or 0),
            "revenue_cents": int(revenue or 0),
            "cost_cents": int(cost or 0),
            "profit_cents": int(profit or 0),
        }
        entry["profit_margin"] = bps_to_percent(margin_bps(entry["profit_cents"], entry["revenue_cents"]))
        for key in totals:
            totals[key] += entry[key]
        products.append(entry)

    totals["profit_margin"] = bps_to_percent(margin_bps(totals["profit_cents"], totals["revenue_cents"]))
    return {"products": products, "totals": totals}
