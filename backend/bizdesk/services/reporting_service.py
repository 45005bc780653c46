# Overview: Service-layer operations for reporting; sales statistics, dashboards and best days.

"""
Reporting Service

All sales figures exclude cancelled sales unless a breakdown is by status.
Money is reported in integer cents. Day buckets are computed in Python
from the stored UTC datetimes, which keeps the queries portable across
SQLite and server databases.
"""

from collections import defaultdict
from datetime import timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Expense, Sale, SaleLine, SalePayment
from ..models.sales import SALE_STATUSES
from bizdesk.time_utils import end_of_day, start_of_day, utcnow
from .payment_service import payment_method_totals


DASHBOARD_RANGES = {"7days": 7, "30days": 30, "90days": 90, "all": None}
BEST_DAY_RANGES = {"7days": 7, "30days": 30, "year": 365, "all": None}


def range_start(range_key: str, ranges: dict, *, now=None):
    """Start datetime for a named range; None means no lower bound. Raises ValueError on unknown keys."""
    if range_key not in ranges:
        raise ValueError(f"Invalid range. Must be one of: {', '.join(ranges)}")
    days = ranges[range_key]
    if days is None:
        return None
    return start_of_day((now or utcnow()) - timedelta(days=days - 1))


def _live_sales(start=None, end=None):
    query = db.session.query(Sale).filter(Sale.status != "cancelled")
    if start is not None:
        query = query.filter(Sale.sale_date >= start)
    if end is not None:
        query = query.filter(Sale.sale_date <= end)
    return query


def _products_sold(start=None, end=None) -> int:
    query = (
        db.session.query(func.coalesce(func.sum(SaleLine.quantity), 0))
        .join(Sale, SaleLine.sale_id == Sale.id)
        .filter(Sale.status != "cancelled")
    )
    if start is not None:
        query = query.filter(Sale.sale_date >= start)
    if end is not None:
        query = query.filter(Sale.sale_date <= end)
    return int(query.scalar() or 0)


def sales_stats() -> dict:
    total, paid, count = _live_sales().with_entities(
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
        func.coalesce(func.sum(Sale.total_paid_cents), 0),
        func.count(Sale.id),
    ).one()
    total, paid, count = int(total), int(paid), int(count)
    return {
        "total_sales": total,
        "total_paid": paid,
        "outstanding_balance": max(0, total - paid),
        "average_sale": total // count if count else 0,
        "total_products_sold": _products_sold(),
        "transaction_count": count,
    }


def status_stats(start=None, end=None) -> dict:
    query = db.session.query(
        Sale.status,
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
        func.coalesce(func.sum(Sale.total_paid_cents), 0),
    )
    if start is not None:
        query = query.filter(Sale.sale_date >= start)
    if end is not None:
        query = query.filter(Sale.sale_date <= end)
    rows = {status: (count, total, paid) for status, count, total, paid in query.group_by(Sale.status).all()}

    result = {}
    for status in SALE_STATUSES:
        count, total, paid = rows.get(status, (0, 0, 0))
        result[status] = {
            "count": int(count),
            "total_amount": int(total),
            "total_paid": int(paid),
            "outstanding": max(0, int(total) - int(paid)),
        }
    return result


def delivery_stats() -> dict:
    rows = (
        db.session.query(
            Sale.delivery_status,
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_amount_cents), 0),
        )
        .filter(Sale.status == "completed")
        .group_by(Sale.delivery_status)
        .all()
    )
    return {status: {"count": int(count), "total_amount": int(total)} for status, count, total in rows}


def _by_day(rows) -> dict:
    """{date: [total_cents, count]} from (datetime, amount_cents) pairs."""
    buckets = defaultdict(lambda: [0, 0])
    for when, amount in rows:
        bucket = buckets[when.date()]
        bucket[0] += int(amount or 0)
        bucket[1] += 1
    return buckets


def _best_of(buckets: dict) -> dict | None:
    if not buckets:
        return None
    day, (total, count) = max(buckets.items(), key=lambda item: (item[1][0], item[0]))
    return {"date": day.isoformat(), "total_amount": total, "count": count}


def best_days(range_key: str = "30days", *, now=None) -> dict:
    """Best day (highest total) for sales, payments and expenses within a range."""
    start = range_start(range_key, BEST_DAY_RANGES, now=now)

    sales = _live_sales(start=start).with_entities(Sale.sale_date, Sale.total_amount_cents)
    payments = db.session.query(SalePayment.payment_date, SalePayment.amount_cents)
    expenses = db.session.query(Expense.date, Expense.amount_cents)
    if start is not None:
        payments = payments.filter(SalePayment.payment_date >= start)
        expenses = expenses.filter(Expense.date >= start)

    return {
        "range": range_key,
        "sales": _best_of(_by_day(sales.all())),
        "payments": _best_of(_by_day(payments.all())),
        "expenses": _best_of(_by_day(expenses.all())),
    }


def _top_products(start=None, limit: int = 5) -> list[dict]:
    query = (
        db.session.query(
            SaleLine.product_id,
            func.max(SaleLine.product_name),
            func.sum(SaleLine.quantity),
            func.sum(SaleLine.revenue_cents),
        )
        .join(Sale, SaleLine.sale_id == Sale.id)
        .filter(Sale.status != "cancelled")
    )
    if start is not None:
        query = query.filter(Sale.sale_date >= start)
    rows = query.group_by(SaleLine.product_id).order_by(func.sum(SaleLine.quantity).desc()).limit(limit).all()
    return [
        {"product_id": pid, "product_name": name, "quantity": int(qty), "revenue_cents": int(revenue)}
        for pid, name, qty, revenue in rows
    ]


def _method_shares(totals: dict) -> dict:
    grand_total = sum(entry["total_cents"] for entry in totals.values())
    return {
        method: {
            **entry,
            "percentage": round(entry["total_cents"] / grand_total * 100, 2) if grand_total else 0.0,
        }
        for method, entry in totals.items()
    }


def daily_summary(day) -> dict:
    start, end = start_of_day(day), end_of_day(day)
    total, count = _live_sales(start, end).with_entities(
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
        func.count(Sale.id),
    ).one()
    payments = (
        db.session.query(SalePayment)
        .filter(SalePayment.payment_date >= start, SalePayment.payment_date <= end)
        .order_by(SalePayment.payment_date.asc())
        .all()
    )
    return {
        "date": start.date().isoformat(),
        "sales_count": int(count),
        "total_sales_cents": int(total),
        "payments": [p.to_dict() for p in payments],
        "payments_total_cents": sum(p.amount_cents for p in payments),
    }


def sales_dashboard(range_key: str = "30days", *, summary_date=None, now=None) -> dict:
    now = now or utcnow()
    start = range_start(range_key, DASHBOARD_RANGES, now=now)

    total, count = _live_sales(start=start).with_entities(
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
        func.count(Sale.id),
    ).one()
    total, count = int(total), int(count)

    trend = _by_day(_live_sales(start=start).with_entities(Sale.sale_date, Sale.total_amount_cents).all())
    all_time_methods = payment_method_totals()

    return {
        "range": range_key,
        "totals": {
            "total_sales_cents": total,
            "sales_count": count,
            "products_sold": _products_sold(start=start),
            "average_sale_cents": total // count if count else 0,
        },
        "top_products": _top_products(start=start),
        "sales_trend": [
            {"date": day.isoformat(), "total_cents": bucket[0], "count": bucket[1]}
            for day, bucket in sorted(trend.items())
        ],
        "payment_methods": _method_shares(payment_method_totals(start=start)),
        "status_stats": status_stats(start=start),
        "daily_summary": daily_summary(summary_date or now),
        "payments_summary": {
            "count": sum(entry["count"] for entry in all_time_methods.values()),
            "total_cents": sum(entry["total_cents"] for entry in all_time_methods.values()),
            "by_method": all_time_methods,
        },
        "best_days": best_days("all", now=now),
    }
