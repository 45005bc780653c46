# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/bizdesk/routes/sales.py
"""
Sales API routes.

Lifecycle (create, update, delete, cancel), payments, reminders and
delivery, plus the sales statistics and profit analytics endpoints.

SECURITY: Every route requires authentication. Editing, deleting and
cancelling sales, removing payments and the statistics dashboards are
admin only.
"""

from datetime import timedelta

from flask import Blueprint, request, jsonify, current_app, g

from ..services import payment_service, profit_service, reporting_service, sales_service
from ..services.payment_service import PaymentError
from ..services.sales_service import SaleError
from ..validation import ValidationError, coerce_int, error_response, parse_date_arg
from ..decorators import require_auth, require_admin
from bizdesk.time_utils import parse_iso_datetime, to_utc_z, utcnow


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

SALE_ERRORS = (SaleError, PaymentError, ValidationError)


def _date_range(default_days: int):
    """start_date/end_date query args; a missing bound falls back to the last default_days."""
    start = parse_date_arg(request.args.get("start_date"), "start_date")
    end = parse_date_arg(request.args.get("end_date"), "end_date", end=True)
    now = utcnow()
    return start or now - timedelta(days=default_days), end or now


def _optional_int_arg(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return coerce_int(raw, name)


def _server_error(action: str):
    current_app.logger.exception("%s failed", action)
    return jsonify({"message": "Server error"}), 500


# =============================================================================
# LIFECYCLE
# =============================================================================

@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Body:
    - client_id: int (required)
    - products: [{product_id, quantity, price_cents?}] (required; "lines" also accepted)
    - note, sale_date, reminder_date, reminder_note (optional)
    - initial_payment: {amount_cents, method} (optional)
    """
    data = request.get_json(silent=True) or {}
    lines = data.get("products") if data.get("products") is not None else data.get("lines")

    try:
        client_id = coerce_int(data.get("client_id"), "client_id") if data.get("client_id") is not None else None
        sale = sales_service.create_sale(
            client_id,
            lines,
            user_id=g.current_user.id,
            note=data.get("note"),
            reminder_date=data.get("reminder_date"),
            reminder_note=data.get("reminder_note"),
            initial_payment=data.get("initial_payment") or None,
            sale_date=data.get("sale_date"),
        )
    except SALE_ERRORS as e:
        return error_response(e)
    except Exception:
        return _server_error("Sale creation")

    return jsonify(sale.to_dict()), 201


@sales_bp.get("")
@require_auth
def list_sales_route():
    """Query params: client, status, start_date, end_date, payment_method."""
    try:
        sales = sales_service.list_sales(
            client_id=_optional_int_arg("client"),
            status=request.args.get("status") or None,
            start=parse_date_arg(request.args.get("start_date"), "start_date"),
            end=parse_date_arg(request.args.get("end_date"), "end_date", end=True),
            payment_method=request.args.get("payment_method") or None,
        )
    except ValidationError as e:
        return error_response(e)
    return jsonify([sale.to_dict() for sale in sales]), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
    except SaleError as e:
        return error_response(e)
    return jsonify(sale.to_dict()), 200


@sales_bp.put("/<int:sale_id>")
@require_auth
@require_admin
def update_sale_route(sale_id: int):
    data = request.get_json(silent=True) or {}
    lines = data.get("products") if data.get("products") is not None else data.get("lines")
    try:
        sale = sales_service.update_sale(sale_id, lines, user_id=g.current_user.id, note=data.get("note"))
    except SALE_ERRORS as e:
        return error_response(e)
    except Exception:
        return _server_error("Sale update")
    return jsonify(sale.to_dict()), 200


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_admin
def delete_sale_route(sale_id: int):
    data = request.get_json(silent=True) or {}
    try:
        archive = sales_service.delete_sale(sale_id, user_id=g.current_user.id, reason=data.get("reason"))
    except SALE_ERRORS as e:
        return error_response(e)
    except Exception:
        return _server_error("Sale deletion")
    return jsonify({"message": "Sale removed", "archive": archive.to_dict()}), 200


@sales_bp.post("/<int:sale_id>/cancel")
@require_auth
@require_admin
def cancel_sale_route(sale_id: int):
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.cancel_sale(sale_id, user_id=g.current_user.id, reason=data.get("reason"))
    except SALE_ERRORS as e:
        return error_response(e)
    except Exception:
        return _server_error("Sale cancellation")
    return jsonify(sale.to_dict()), 200


# =============================================================================
# PAYMENTS
# =============================================================================

@sales_bp.post("/<int:sale_id>/payments")
@require_auth
def add_payment_route(sale_id: int):
    """Body: {amount_cents, method, payment_date?}"""
    data = request.get_json(silent=True) or {}
    try:
        payment_date = parse_iso_datetime(data.get("payment_date")) if data.get("payment_date") else None
    except ValueError:
        return jsonify({"message": "Invalid payment_date"}), 400

    try:
        sale = payment_service.add_payment(
            sale_id,
            data.get("amount_cents"),
            data.get("method"),
            user_id=g.current_user.id,
            payment_date=payment_date,
        )
    except SALE_ERRORS as e:
        return error_response(e)
    except Exception:
        return _server_error("Payment")
    return jsonify(sale.to_dict()), 201


@sales_bp.delete("/<int:sale_id>/payments/<int:payment_id>")
@require_auth
@require_admin
def delete_payment_route(sale_id: int, payment_id: int):
    try:
        sale = payment_service.delete_payment(sale_id, payment_id)
    except SALE_ERRORS as e:
        return error_response(e)
    except Exception:
        return _server_error("Payment deletion")
    return jsonify(sale.to_dict()), 200


@sales_bp.get("/payments/date-range")
@require_auth
def payments_in_range_route():
    """Payments with sale and client info; defaults to the last year."""
    try:
        start, end = _date_range(365)
    except ValidationError as e:
        return error_response(e)
    payments = payment_service.list_payments_in_range(start, end)
    return jsonify({
        "payments": payments,
        "total_cents": sum(p["amount_cents"] for p in payments),
        "start_date": to_utc_z(start),
        "end_date": to_utc_z(end),
    }), 200


# =============================================================================
# REMINDERS AND DELIVERY
# =============================================================================

@sales_bp.get("/reminders/upcoming")
@require_auth
def upcoming_reminders_route():
    return jsonify(sales_service.upcoming_reminders()), 200


@sales_bp.post("/<int:sale_id>/send-reminder")
@require_auth
def send_reminder_route(sale_id: int):
    try:
        sale = sales_service.send_reminder(sale_id, user_id=g.current_user.id)
    except SALE_ERRORS as e:
        return error_response(e)
    return jsonify({"message": "Reminder marked as sent", "payment_reminder": sale.reminder_dict()}), 200


@sales_bp.put("/<int:sale_id>/reminder")
@require_auth
def set_reminder_route(sale_id: int):
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.set_reminder(
            sale_id,
            is_set=bool(data.get("is_set")),
            reminder_date=data.get("reminder_date"),
            reminder_note=data.get("reminder_note"),
        )
    except SALE_ERRORS as e:
        return error_response(e)
    return jsonify(sale.to_dict()), 200


@sales_bp.delete("/<int:sale_id>/reminder")
@require_auth
def clear_reminder_route(sale_id: int):
    try:
        sale = sales_service.clear_reminder(sale_id)
    except SALE_ERRORS as e:
        return error_response(e)
    return jsonify(sale.to_dict()), 200


@sales_bp.put("/<int:sale_id>/delivery")
@require_auth
def update_delivery_route(sale_id: int):
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.update_delivery(
            sale_id,
            delivery_status=data.get("delivery_status"),
            delivery_note=data.get("delivery_note"),
            delivery_date=data.get("delivery_date"),
        )
    except SALE_ERRORS as e:
        return error_response(e)
    return jsonify(sale.to_dict()), 200


# =============================================================================
# QUERIES
# =============================================================================

@sales_bp.get("/date-range")
@require_auth
def sales_in_range_route():
    """Sales between start_date and end_date; defaults to the last 30 days."""
    try:
        start, end = _date_range(30)
    except ValidationError as e:
        return error_response(e)
    sales = sales_service.list_sales(start=start, end=end)
    return jsonify({
        "sales": [sale.to_dict() for sale in sales],
        "count": len(sales),
        "start_date": to_utc_z(start),
        "end_date": to_utc_z(end),
    }), 200


@sales_bp.get("/client/<int:client_id>")
@require_auth
def client_sales_route(client_id: int):
    try:
        result = sales_service.client_purchases(client_id)
    except SaleError as e:
        return error_response(e)
    stats = dict(result["statistics"])
    stats["last_purchase_date"] = to_utc_z(stats["last_purchase_date"])
    return jsonify({
        "client": result["client"].to_dict(),
        "sales": [sale.to_dict() for sale in result["sales"]],
        "statistics": stats,
    }), 200


@sales_bp.get("/user/<int:user_id>")
@require_auth
def user_sales_route(user_id: int):
    """The user themself or an admin."""
    if not g.current_user.is_admin and g.current_user.id != user_id:
        return jsonify({"message": "Not authorized to view these sales"}), 403
    try:
        result = sales_service.user_sales(user_id)
    except SaleError as e:
        return error_response(e)
    stats = dict(result["statistics"])
    stats["last_sale_date"] = to_utc_z(stats["last_sale_date"])
    return jsonify({
        "user": result["user"].to_dict(),
        "sales": [sale.to_dict(include_details=False) for sale in result["sales"]],
        "statistics": stats,
    }), 200


@sales_bp.get("/user-stats")
@require_auth
def user_stats_route():
    return jsonify(sales_service.user_sales_stats(g.current_user.id)), 200


@sales_bp.get("/deleted")
@require_auth
@require_admin
def deleted_sales_route():
    archive = sales_service.list_deleted_sales()
    return jsonify([entry.to_dict() for entry in archive]), 200


# =============================================================================
# STATISTICS
# =============================================================================

@sales_bp.get("/stats")
@require_auth
@require_admin
def sales_stats_route():
    return jsonify(reporting_service.sales_stats()), 200


@sales_bp.get("/stats/status")
@require_auth
@require_admin
def status_stats_route():
    try:
        start = parse_date_arg(request.args.get("start_date"), "start_date")
        end = parse_date_arg(request.args.get("end_date"), "end_date", end=True)
    except ValidationError as e:
        return error_response(e)
    return jsonify(reporting_service.status_stats(start, end)), 200


@sales_bp.get("/stats/delivery")
@require_auth
def delivery_stats_route():
    return jsonify(reporting_service.delivery_stats()), 200


@sales_bp.get("/dashboard-sale")
@require_auth
@require_admin
def dashboard_route():
    try:
        summary_date = parse_date_arg(request.args.get("summary_date"), "summary_date")
        result = reporting_service.sales_dashboard(request.args.get("range", "30days"), summary_date=summary_date)
    except ValidationError as e:
        return error_response(e)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400
    return jsonify(result), 200


@sales_bp.get("/best-days")
@require_auth
@require_admin
def best_days_route():
    try:
        return jsonify(reporting_service.best_days(request.args.get("range", "30days"))), 200
    except ValueError as e:
        return jsonify({"message": str(e)}), 400


@sales_bp.get("/profit-analytics")
@require_auth
def profit_analytics_route():
    """Query params: period, start_date, end_date, category, min_profit, max_profit."""
    try:
        result = profit_service.profit_analytics(
            period=request.args.get("period", "month"),
            start=parse_date_arg(request.args.get("start_date"), "start_date"),
            end=parse_date_arg(request.args.get("end_date"), "end_date", end=True),
            category=request.args.get("category") or None,
            min_profit=_optional_int_arg("min_profit"),
            max_profit=_optional_int_arg("max_profit"),
        )
    except ValidationError as e:
        return error_response(e)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400
    return jsonify(result), 200


@sales_bp.get("/profit-report")
@require_auth
def profit_report_route():
    try:
        result = profit_service.profit_report(
            start=parse_date_arg(request.args.get("start_date"), "start_date"),
            end=parse_date_arg(request.args.get("end_date"), "end_date", end=True),
        )
    except ValidationError as e:
        return error_response(e)
    return jsonify(result), 200
