# Overview: Service-layer operations for sales; the sale lifecycle and its stock/profit consistency rules.

"""
Sales Service - sale lifecycle and stock/profit consistency

INVARIANTS:
- Stock is conserved: every unit a sale takes out of Product.stock is put
  back when the sale is deleted or cancelled, and an edit only applies the
  per-product difference between old and new quantities.
- Sale.stock_deducted says whether the lines are currently out of stock,
  so nothing is ever restored twice.
- A line's price may not be below the product's cost price.
- Totals, profit snapshot and status are always derived (profit_service,
  payment_service), never taken from the caller.
- Each operation below runs as ONE transaction (run_in_transaction): on
  any error nothing is written, including stock movements.
- The client's purchase metrics are refreshed inside the same transaction.
"""

import logging
from datetime import timedelta

from sqlalchemy import func, select

from ..extensions import db
from ..models import (
    Client,
    DeletedSale,
    Product,
    Sale,
    SaleLine,
    SaleModification,
    SaleModificationLine,
    SalePayment,
    User,
)
from ..models.sales import DELIVERY_STATUSES
from ..validation import ServiceError, ValidationError, coerce_int, coerce_datetime
from bizdesk.time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update, run_in_transaction
from .inventory_service import InsufficientStockError, adjust_stock, get_product_for_update
from .payment_service import PaymentError, attach_payment, recalculate_payments, validate_payment_input
from .profit_service import apply_sale_snapshot, snapshot_line
from .clients_service import refresh_purchase_metrics
from . import notification_service


logger = logging.getLogger(__name__)

REMINDER_LOOKAHEAD = timedelta(days=7)
MAX_NOTE_LENGTH = 500
MAX_REMINDER_NOTE_LENGTH = 200


class SaleError(ServiceError):
    """Raised for sale operation errors."""


# =============================================================================
# Line validation
# =============================================================================


def normalize_lines(raw_lines) -> list[dict]:
    """
    Validate the requested lines and merge duplicates.

    Returns [{product_id, quantity, price_cents}] in first-seen order;
    price_cents is None when the caller did not give one. Duplicate
    product ids are merged by summing quantities and must agree on price.
    """
    if not isinstance(raw_lines, list) or not raw_lines:
        raise SaleError("At least one product is required")

    merged: dict[int, dict] = {}
    for raw in raw_lines:
        if not isinstance(raw, dict):
            raise SaleError("Invalid product line")
        try:
            product_id = coerce_int(raw.get("product_id"), "product_id")
            quantity = coerce_int(raw.get("quantity"), "quantity")
            price = raw.get("price_cents")
            price = None if price is None else coerce_int(price, "price_cents")
        except ValidationError as e:
            raise SaleError(str(e))
        if quantity <= 0:
            raise SaleError("quantity must be a positive integer")
        if price is not None and price < 0:
            raise SaleError("price_cents must be a non-negative integer")

        if product_id in merged:
            entry = merged[product_id]
            if price is not None and entry["price_cents"] is not None and price != entry["price_cents"]:
                raise SaleError(f"Conflicting prices for product {product_id}")
            entry["quantity"] += quantity
            if entry["price_cents"] is None:
                entry["price_cents"] = price
        else:
            merged[product_id] = {"product_id": product_id, "quantity": quantity, "price_cents": price}
    return list(merged.values())


def _check_line(product: Product, quantity: int, price_cents: int, available: int, *, reject_zero_price: bool) -> None:
    if quantity > available:
        raise SaleError(
            f"Insufficient stock for {product.name} ({available} available)",
            details={"product_id": product.id, "available": available, "requested": quantity},
        )
    if reject_zero_price and price_cents <= 0:
        raise SaleError(f"Sale price must be greater than zero for {product.name}")
    if price_cents < product.cost_price_cents:
        raise SaleError(
            f"Sale price too low for {product.name} (min: {product.cost_price_cents})",
            details={"product_id": product.id, "min_price_cents": product.cost_price_cents},
        )


def _load_product(product_id: int) -> Product:
    product = get_product_for_update(product_id)
    if not product:
        raise SaleError(f"Product {product_id} not found", status_code=404)
    return product


def _clean_note(note, limit: int, name: str = "note"):
    if note is None:
        return None
    note = str(note).strip()
    if len(note) > limit:
        raise SaleError(f"{name} exceeds max length {limit}")
    return note or None


def _parse_optional_date(value, name: str):
    if value in (None, ""):
        return None
    try:
        return coerce_datetime(value, name)
    except ValidationError as e:
        raise SaleError(str(e))


def _get_sale_locked(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise SaleError("Sale not found", status_code=404)
    return sale


def _restore_stock(sale: Sale, *, description: str, user_id: int | None) -> None:
    if not sale.stock_deducted:
        return
    for line in sale.lines:
        product = get_product_for_update(line.product_id)
        if product is None:
            continue
        adjust_stock(product, line.quantity, activity_type="return", description=description, user_id=user_id)
    sale.stock_deducted = False


# =============================================================================
# Lifecycle
# =============================================================================


def create_sale(
    client_id,
    lines,
    *,
    user_id: int | None,
    note=None,
    reminder_date=None,
    reminder_note=None,
    initial_payment: dict | None = None,
    sale_date=None,
) -> Sale:
    """
    Create a sale, take its stock and snapshot its profit.

    initial_payment, when given, is {"amount_cents", "method"} and is
    recorded in the same transaction.
    """
    def _op():
        client = db.session.get(Client, client_id) if client_id is not None else None
        if not client:
            raise SaleError("Client not found", status_code=404)

        requested = normalize_lines(lines)
        when = _parse_optional_date(sale_date, "sale_date") or utcnow()
        reminder_at = _parse_optional_date(reminder_date, "reminder_date")

        sale = Sale(
            client=client,
            user_id=user_id,
            sale_date=when,
            note=_clean_note(note, MAX_NOTE_LENGTH),
            total_paid_cents=0,
            status="pending",
        )
        db.session.add(sale)

        products: dict[int, Product] = {}
        for item in requested:
            product = _load_product(item["product_id"])
            products[product.id] = product
            price = product.price_cents if item["price_cents"] is None else item["price_cents"]
            _check_line(product, item["quantity"], price, product.stock, reject_zero_price=False)

            line = SaleLine(
                product_id=product.id,
                product_name=product.name,
                quantity=item["quantity"],
                price_at_sale_cents=price,
            )
            snapshot_line(line, product.cost_price_cents)
            sale.lines.append(line)

        apply_sale_snapshot(sale)
        recalculate_payments(sale)
        db.session.flush()

        for line in sale.lines:
            adjust_stock(
                products[line.product_id],
                -line.quantity,
                activity_type="sale",
                description=f"Sold {line.quantity} unit(s) on sale #{sale.id}",
                user_id=user_id,
            )
        sale.stock_deducted = True

        if initial_payment:
            amount, method = validate_payment_input(initial_payment.get("amount_cents"), initial_payment.get("method"))
            attach_payment(sale, amount, method, user_id=user_id)

        if reminder_at is not None:
            sale.reminder_is_set = True
            sale.reminder_date = reminder_at
            sale.reminder_note = _clean_note(reminder_note, MAX_REMINDER_NOTE_LENGTH, "reminder_note")
            sale.reminder_status = "pending"

        refresh_purchase_metrics(client)
        return sale

    try:
        sale = run_in_transaction(_op)
    except (PaymentError, InsufficientStockError) as e:
        raise SaleError(str(e), status_code=e.status_code, details=e.details)

    logger.info(
        "Sale %s created for client %s: total %s cents, status %s",
        sale.id, sale.client_id, sale.total_amount_cents, sale.status,
    )
    notification_service.notify_sale_created(sale)
    return sale


def update_sale(sale_id: int, lines, *, user_id: int | None, note=None) -> Sale:
    """
    Replace a sale's lines.

    Stock is reconciled per product (old quantity back, new quantity out),
    the snapshot and status are recomputed, and a SaleModification covering
    every product in the old or new line set is appended.
    """
    def _op():
        sale = _get_sale_locked(sale_id)
        if sale.status == "cancelled":
            raise SaleError("Cannot modify a cancelled sale")

        requested = {item["product_id"]: item for item in normalize_lines(lines)}
        old_lines = {line.product_id: line for line in sale.lines}
        old_state = {pid: (line.quantity, line.price_at_sale_cents, line.product_name) for pid, line in old_lines.items()}
        old_total = sale.total_amount_cents

        products: dict[int, Product] = {}
        new_total = 0
        for product_id, item in requested.items():
            product = _load_product(product_id)
            products[product_id] = product
            old_qty = old_lines[product_id].quantity if product_id in old_lines and sale.stock_deducted else 0
            price = item["price_cents"]
            if price is None:
                # Kept lines keep their agreed price; new lines take the catalogue price
                kept = old_lines.get(product_id)
                price = kept.price_at_sale_cents if kept is not None else product.price_cents
            item["price_cents"] = price
            _check_line(product, item["quantity"], price, product.stock + old_qty, reject_zero_price=True)
            new_total += price * item["quantity"]

        if new_total < sale.total_paid_cents:
            raise SaleError(
                "New total cannot be lower than the amount already paid",
                details={"total_paid_cents": sale.total_paid_cents, "new_total_cents": new_total},
            )

        # Stock: apply the per-product difference
        if sale.stock_deducted:
            for product_id in set(old_lines) | set(requested):
                old_qty = old_lines[product_id].quantity if product_id in old_lines else 0
                new_qty = requested[product_id]["quantity"] if product_id in requested else 0
                delta = old_qty - new_qty
                if delta == 0:
                    continue
                product = products.get(product_id) or get_product_for_update(product_id)
                if product is None:
                    continue
                adjust_stock(
                    product,
                    delta,
                    activity_type="return" if delta > 0 else "sale",
                    description=f"Sale #{sale.id} modified",
                    user_id=user_id,
                )

        # Lines: mutate kept rows, drop removed ones, add new ones
        for product_id, line in old_lines.items():
            if product_id not in requested:
                sale.lines.remove(line)
        for product_id, item in requested.items():
            product = products[product_id]
            line = old_lines.get(product_id)
            if line is None:
                line = SaleLine(product_id=product_id)
                sale.lines.append(line)
            line.product_name = product.name
            line.quantity = item["quantity"]
            line.price_at_sale_cents = item["price_cents"]
            snapshot_line(line, product.cost_price_cents)

        if note is not None:
            sale.note = _clean_note(note, MAX_NOTE_LENGTH)

        apply_sale_snapshot(sale)
        recalculate_payments(sale)

        modification = SaleModification(
            user_id=user_id,
            note=_clean_note(note, MAX_NOTE_LENGTH),
            old_total_cents=old_total,
            new_total_cents=sale.total_amount_cents,
        )
        for product_id in sorted(set(old_state) | set(requested)):
            old_qty, old_price, old_name = old_state.get(product_id, (0, 0, None))
            item = requested.get(product_id)
            modification.lines.append(SaleModificationLine(
                product_id=product_id,
                product_name=products[product_id].name if product_id in products else old_name,
                old_quantity=old_qty,
                new_quantity=item["quantity"] if item else 0,
                old_price_cents=old_price,
                new_price_cents=item["price_cents"] if item else 0,
            ))
        sale.modifications.append(modification)

        refresh_purchase_metrics(sale.client)
        return sale

    try:
        sale = run_in_transaction(_op)
    except InsufficientStockError as e:
        raise SaleError(str(e), details=e.details)

    logger.info("Sale %s modified by user %s: new total %s cents", sale.id, user_id, sale.total_amount_cents)
    return sale


def delete_sale(sale_id: int, *, user_id: int | None, reason: str | None = None) -> DeletedSale:
    """Restore stock, archive a snapshot, then hard-delete the sale."""
    def _op():
        sale = _get_sale_locked(sale_id)
        client = sale.client
        _restore_stock(sale, description=f"Sale #{sale.id} deleted", user_id=user_id)

        archive = DeletedSale(
            sale_id=sale.id,
            sale_snapshot=sale.to_dict(),
            deletion_reason=_clean_note(reason, MAX_NOTE_LENGTH, "reason"),
            deleted_by_user_id=user_id,
        )
        db.session.add(archive)
        db.session.delete(sale)
        db.session.flush()

        refresh_purchase_metrics(client)
        return archive

    archive = run_in_transaction(_op)
    logger.info("Sale %s deleted by user %s", sale_id, user_id)
    return archive


def cancel_sale(sale_id: int, *, user_id: int | None, reason: str | None = None) -> Sale:
    """Return the sale's stock and mark it cancelled. Payments stay on record."""
    def _op():
        sale = _get_sale_locked(sale_id)
        if sale.status == "cancelled":
            raise SaleError("Sale is already cancelled")

        _restore_stock(sale, description=f"Sale #{sale.id} cancelled", user_id=user_id)
        sale.status = "cancelled"
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = user_id
        sale.cancel_reason = _clean_note(reason, MAX_NOTE_LENGTH, "reason")
        if sale.reminder_is_set and sale.reminder_status == "pending":
            sale.reminder_status = "cancelled"

        refresh_purchase_metrics(sale.client)
        return sale

    sale = run_in_transaction(_op)
    logger.info("Sale %s cancelled by user %s", sale.id, user_id)
    return sale


# =============================================================================
# Reminders and delivery
# =============================================================================


def _reminder_entry(sale: Sale) -> dict:
    return {
        "sale_id": sale.id,
        "client": sale.client.to_summary() if sale.client else None,
        "sale_date": to_utc_z(sale.sale_date),
        "status": sale.status,
        "total_amount_cents": sale.total_amount_cents,
        "total_paid": sale.total_paid_cents,
        "balance": max(0, sale.balance_cents),
        "payment_reminder": sale.reminder_dict(),
    }


def upcoming_reminders(*, now=None) -> dict:
    """
    Pending reminders on unpaid sales, split into overdue (date <= now) and
    upcoming (now < date <= now + 7 days), both sorted by date.
    """
    now = now or utcnow()
    sales = (
        db.session.query(Sale)
        .filter(
            Sale.reminder_is_set.is_(True),
            Sale.reminder_status == "pending",
            Sale.status.in_(("pending", "partially_paid")),
            Sale.reminder_date.isnot(None),
            Sale.reminder_date <= now + REMINDER_LOOKAHEAD,
        )
        .order_by(Sale.reminder_date.asc(), Sale.id.asc())
        .all()
    )
    return {
        "overdue": [_reminder_entry(s) for s in sales if s.reminder_date <= now],
        "upcoming": [_reminder_entry(s) for s in sales if s.reminder_date > now],
    }


def send_reminder(sale_id: int, *, user_id: int | None) -> Sale:
    def _op():
        sale = _get_sale_locked(sale_id)
        if not sale.reminder_is_set:
            raise SaleError("No payment reminder set for this sale", status_code=404)
        sale.reminder_status = "sent"
        sale.reminder_sent_at = utcnow()
        sale.reminder_sent_by_user_id = user_id
        return sale

    sale = run_in_transaction(_op)
    logger.info("Payment reminder for sale %s marked sent by user %s", sale.id, user_id)
    return sale


def set_reminder(sale_id: int, *, is_set, reminder_date=None, reminder_note=None) -> Sale:
    """Set (status pending) or unset (status cancelled) a sale's payment reminder."""
    def _op():
        sale = _get_sale_locked(sale_id)
        when = _parse_optional_date(reminder_date, "reminder_date")
        if is_set and when is not None:
            sale.reminder_is_set = True
            sale.reminder_date = when
            sale.reminder_note = _clean_note(reminder_note, MAX_REMINDER_NOTE_LENGTH, "reminder_note")
            sale.reminder_status = "pending"
            sale.reminder_sent_at = None
            sale.reminder_sent_by_user_id = None
        else:
            sale.reminder_is_set = False
            sale.reminder_status = "cancelled"
        return sale

    return run_in_transaction(_op)


def clear_reminder(sale_id: int) -> Sale:
    return set_reminder(sale_id, is_set=False)


def update_delivery(sale_id: int, *, delivery_status, delivery_note=None, delivery_date=None) -> Sale:
    """Delivery can only be tracked once the sale is fully paid."""
    def _op():
        sale = _get_sale_locked(sale_id)
        if delivery_status not in DELIVERY_STATUSES:
            raise SaleError(f"Invalid delivery status. Must be one of: {', '.join(DELIVERY_STATUSES)}")
        if sale.status != "completed":
            raise SaleError("Delivery can only be updated on completed sales")
        when = _parse_optional_date(delivery_date, "delivery_date")
        sale.delivery_status = delivery_status
        sale.delivery_note = _clean_note(delivery_note, MAX_NOTE_LENGTH, "delivery_note")
        if when is not None:
            sale.delivery_date = when
        elif delivery_status == "delivered":
            sale.delivery_date = utcnow()
        return sale

    return run_in_transaction(_op)


# =============================================================================
# Queries
# =============================================================================


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleError("Sale not found", status_code=404)
    return sale


def list_sales(
    *,
    client_id: int | None = None,
    status: str | None = None,
    start=None,
    end=None,
    payment_method: str | None = None,
) -> list[Sale]:
    query = db.session.query(Sale)
    if client_id is not None:
        query = query.filter(Sale.client_id == client_id)
    if status:
        query = query.filter(Sale.status == status)
    if start is not None:
        query = query.filter(Sale.sale_date >= start)
    if end is not None:
        query = query.filter(Sale.sale_date <= end)
    if payment_method:
        paid_with = select(SalePayment.sale_id).where(SalePayment.method == payment_method)
        query = query.filter(Sale.id.in_(paid_with))
    return query.order_by(Sale.sale_date.desc(), Sale.id.desc()).all()


def summarize_sales(sales: list[Sale]) -> dict:
    """Totals over the non-cancelled sales of a list."""
    live = [s for s in sales if s.status != "cancelled"]
    total = sum(s.total_amount_cents for s in live)
    paid = sum(s.total_paid_cents for s in live)
    return {
        "sales_count": len(live),
        "total_amount_cents": total,
        "total_paid_cents": paid,
        "outstanding_cents": sum(max(0, s.balance_cents) for s in live),
        "average_sale_cents": total // len(live) if live else 0,
        "last_sale_date": max((s.sale_date for s in live), default=None),
    }


def client_purchases(client_id: int) -> dict:
    client = db.session.get(Client, client_id)
    if not client:
        raise SaleError("Client not found", status_code=404)
    sales = list_sales(client_id=client_id)
    summary = summarize_sales(sales)
    return {
        "client": client,
        "sales": sales,
        "statistics": {
            "total_spent_cents": summary["total_amount_cents"],
            "purchase_count": summary["sales_count"],
            "last_purchase_date": summary["last_sale_date"],
            "average_purchase_cents": summary["average_sale_cents"],
        },
    }


def user_sales(user_id: int) -> dict:
    user = db.session.get(User, user_id)
    if not user:
        raise SaleError("User not found", status_code=404)
    sales = (
        db.session.query(Sale)
        .filter(Sale.user_id == user_id)
        .order_by(Sale.sale_date.desc(), Sale.id.desc())
        .all()
    )
    return {"user": user, "sales": sales, "statistics": summarize_sales(sales)}


def user_sales_stats(user_id: int) -> dict:
    total, paid, count = (
        db.session.query(
            func.coalesce(func.sum(Sale.total_amount_cents), 0),
            func.coalesce(func.sum(Sale.total_paid_cents), 0),
            func.count(Sale.id),
        )
        .filter(Sale.user_id == user_id, Sale.status != "cancelled")
        .one()
    )
    total, paid, count = int(total), int(paid), int(count)
    return {
        "sales_count": count,
        "total_amount_cents": total,
        "total_paid_cents": paid,
        "outstanding_cents": max(0, total - paid),
        "average_sale_cents": total // count if count else 0,
    }


def list_deleted_sales() -> list[DeletedSale]:
    return db.session.query(DeletedSale).order_by(DeletedSale.deleted_at.desc(), DeletedSale.id.desc()).all()
