# Overview: Flask API routes for notifications; push subscription management.

from flask import Blueprint, request, g, jsonify

from ..services import notification_service
from ..services.notification_service import NotificationError
from ..validation import error_response
from ..decorators import require_auth


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("/public-key")
def public_key_route():
    try:
        return jsonify({"public_key": notification_service.get_public_key()}), 200
    except NotificationError as e:
        return error_response(e)


@notifications_bp.post("/subscribe")
@require_auth
def subscribe_route():
    """Body: {subscription: {endpoint, expiration_time, keys: {p256dh, auth}}, device}"""
    data = request.get_json(silent=True) or {}
    try:
        record, created = notification_service.subscribe(
            g.current_user.id,
            data.get("subscription"),
            data.get("device"),
        )
    except NotificationError as e:
        return error_response(e)
    return jsonify(record.to_dict()), 201 if created else 200


@notifications_bp.delete("/subscribe")
@require_auth
def unsubscribe_route():
    data = request.get_json(silent=True) or {}
    try:
        removed = notification_service.unsubscribe(data.get("endpoint"))
    except NotificationError as e:
        return error_response(e)
    return jsonify({"removed": removed}), 200
