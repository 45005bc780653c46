# Overview: Flask API routes for clients; CRUD, statistics and filtering.

from flask import Blueprint, request, g, jsonify, current_app

from ..models import Client
from ..services import clients_service
from ..services.clients_service import ClientError
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    ConflictError,
    coerce_int,
    error_response,
    parse_date_arg,
    validate_payload,
)
from ..decorators import require_auth, require_admin


CLIENT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "address"},
    required_on_create={"name", "email"},
)


clients_bp = Blueprint("clients", __name__, url_prefix="/api/clients")


def _int_arg(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return coerce_int(raw, name)


@clients_bp.get("")
@require_auth
def list_clients_route():
    clients = clients_service.list_clients(request.args.get("search"))
    return jsonify({"clients": [c.to_dict() for c in clients], "total": len(clients)}), 200


@clients_bp.post("")
@require_auth
def create_client_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Client, payload=payload, policy=CLIENT_POLICY, partial=False)
        client = clients_service.create_client(patch, user_id=g.current_user.id)
    except (ValidationError, ConflictError, ClientError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Client creation failed")
        return jsonify({"message": "Server error"}), 500
    return jsonify(client.to_dict()), 201


@clients_bp.get("/stats")
@require_auth
@require_admin
def client_stats_route():
    return jsonify(clients_service.client_stats()), 200


@clients_bp.get("/filter")
@require_auth
@require_admin
def filter_clients_route():
    try:
        clients = clients_service.filter_clients(
            min_total=_int_arg("min_total"),
            max_total=_int_arg("max_total"),
            min_purchases=_int_arg("min_purchases"),
            since=parse_date_arg(request.args.get("since"), "since"),
            inactive_days=_int_arg("inactive_days"),
        )
    except ValidationError as e:
        return error_response(e)
    return jsonify({"clients": [c.to_dict() for c in clients], "total": len(clients)}), 200


@clients_bp.get("/<int:client_id>")
@require_auth
def get_client_route(client_id: int):
    try:
        client = clients_service.get_client_refreshed(client_id)
    except ClientError as e:
        return error_response(e)
    return jsonify(client.to_dict()), 200


@clients_bp.put("/<int:client_id>")
@require_auth
@require_admin
def update_client_route(client_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Client, payload=payload, policy=CLIENT_POLICY, partial=True)
        client = clients_service.update_client(client_id, patch, user_id=g.current_user.id)
    except (ValidationError, ConflictError, ClientError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Client update failed")
        return jsonify({"message": "Server error"}), 500
    return jsonify(client.to_dict()), 200


@clients_bp.delete("/<int:client_id>")
@require_auth
@require_admin
def delete_client_route(client_id: int):
    try:
        clients_service.delete_client(client_id)
    except ClientError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Client deletion failed")
        return jsonify({"message": "Server error"}), 500
    return jsonify({"message": "Client removed"}), 200
