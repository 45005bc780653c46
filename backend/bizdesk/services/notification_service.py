# Overview: Service-layer operations for notifications; push subscriptions and the notification event log.

"""
Notification Service

Stores browser push subscriptions and builds the payloads for sale and
payment events. Payloads are logged together with the number of admin
subscriptions that would receive them; this service never talks to a push
provider.
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from ..extensions import db
from ..models import PushSubscription, User
from ..validation import ServiceError
from bizdesk.time_utils import parse_iso_datetime, utcnow


logger = logging.getLogger(__name__)


class NotificationError(ServiceError):
    """Raised for subscription errors."""


def is_push_configured() -> bool:
    return bool(current_app.config.get("VAPID_PUBLIC_KEY"))


def get_public_key() -> str:
    if not is_push_configured():
        raise NotificationError("Push notifications are not configured", status_code=503)
    return current_app.config["VAPID_PUBLIC_KEY"]


def _parse_expiration(value):
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Browsers report expirationTime in epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise NotificationError("Invalid expiration_time")


def subscribe(user_id: int, subscription: dict | None, device: dict | None = None) -> tuple[PushSubscription, bool]:
    """
    Upsert a subscription by endpoint and bind it to user_id.

    Returns (subscription, created).
    """
    if not is_push_configured():
        raise NotificationError("Push notifications are not configured", status_code=503)

    subscription = subscription or {}
    endpoint = (subscription.get("endpoint") or "").strip()
    keys = subscription.get("keys") or {}
    p256dh = keys.get("p256dh")
    auth = keys.get("auth")
    if not endpoint or not p256dh or not auth:
        raise NotificationError("Subscription endpoint and keys are required")

    device = device or {}
    expiration = _parse_expiration(
        subscription.get("expiration_time", subscription.get("expirationTime"))
    )

    existing = db.session.query(PushSubscription).filter_by(endpoint=endpoint).first()
    created = existing is None
    record = existing or PushSubscription(endpoint=endpoint)
    record.user_id = user_id
    record.p256dh = p256dh
    record.auth = auth
    record.expiration_time = expiration
    record.device_platform = device.get("platform")
    record.device_user_agent = device.get("user_agent") or device.get("userAgent")
    record.device_language = device.get("language")
    record.updated_at = utcnow()
    if created:
        db.session.add(record)
    db.session.commit()
    return record, created


def unsubscribe(endpoint: str | None) -> int:
    if not endpoint:
        raise NotificationError("endpoint is required")
    removed = db.session.query(PushSubscription).filter_by(endpoint=endpoint).delete()
    db.session.commit()
    return removed


def admin_subscription_count() -> int:
    return (
        db.session.query(PushSubscription)
        .join(User, PushSubscription.user_id == User.id)
        .filter(User.is_admin.is_(True), User.is_active.is_(True))
        .count()
    )


def _format_amount(cents: int) -> str:
    return f"{cents / 100:,.2f}"


def build_sale_created_payload(sale) -> dict:
    client_name = sale.client.name if sale.client else "Client"
    return {
        "title": "New sale",
        "body": f"{client_name}: {_format_amount(sale.total_amount_cents)} "
                f"(paid {_format_amount(sale.total_paid_cents)})",
        "url": f"/sales/{sale.id}",
        "tag": f"sale-{sale.id}",
    }


def build_payment_recorded_payload(sale, payment) -> dict:
    client_name = sale.client.name if sale.client else "Client"
    return {
        "title": "Payment received",
        "body": f"{client_name} paid {_format_amount(payment.amount_cents)}, "
                f"remaining {_format_amount(max(0, sale.balance_cents))}",
        "url": f"/sales/{sale.id}",
        "tag": f"payment-{payment.id}",
    }


def _emit(event: str, payload: dict) -> dict:
    recipients = admin_subscription_count()
    logger.info("Notification %s for %s admin subscription(s): %s", event, recipients, payload["body"])
    return {"event": event, "recipients": recipients, "payload": payload}


def notify_sale_created(sale) -> dict:
    return _emit("sale_created", build_sale_created_payload(sale))


def notify_payment_recorded(sale, payment) -> dict:
    return _emit("payment_recorded", build_payment_recorded_payload(sale, payment))
