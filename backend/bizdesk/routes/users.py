# Overview: Flask API routes for users; login, registration, profile and admin user management.

# backend/bizdesk/routes/users.py
"""
User and authentication API routes

SECURITY FEATURES:
- Password strength validation on registration and password changes
- Account lockout after repeated failed attempts (423)
- Access windows enforced at login and on every request
- Session management with opaque bearer tokens
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..models import User
from ..services import auth_service, login_throttle_service, session_service
from ..services.auth_service import AuthError
from ..validation import ModelValidationPolicy, ValidationError, validate_payload, error_response
from ..decorators import bearer_token, require_auth, require_admin


USER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "email", "phone", "is_admin", "is_active",
        "access_control_enabled", "access_start", "access_end",
    },
    required_on_create={"name", "email"},
)

REGISTRATION_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone"},
    required_on_create={"name", "email"},
)

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _client_info():
    return request.remote_addr, request.headers.get("User-Agent")


def _split_password(payload: dict):
    payload = dict(payload)
    return payload.pop("password", None), payload


@users_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    Returns the user fields plus "token".
    401 bad credentials (remaining_attempts after a wrong password),
    423 locked (lock_until, remaining_minutes), 403 outside the access window.
    """
    data = request.get_json(silent=True) or {}
    ip_address, user_agent = _client_info()

    try:
        user, token = auth_service.login(
            data.get("email"),
            data.get("password"),
            ip_address=ip_address,
            user_agent=user_agent,
        )
    except AuthError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"message": "Server error"}), 500

    return jsonify({**user.to_dict(), "token": token}), 200


@users_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(bearer_token(), "User logout")
    return jsonify({"message": "Logged out successfully"}), 200


@users_bp.post("")
def register_route():
    """Public registration. Always creates a regular (non-admin) user."""
    password, payload = _split_password(request.get_json(silent=True) or {})
    payload.pop("is_admin", None)
    ip_address, user_agent = _client_info()

    try:
        patch = validate_payload(model=User, payload=payload, policy=REGISTRATION_POLICY, partial=False)
        user = auth_service.create_user(password=password, is_admin=False, **patch)
        _, token = session_service.create_session(user, user_agent=user_agent, ip_address=ip_address)
    except (AuthError, ValidationError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Registration failed")
        return jsonify({"message": "Server error"}), 500

    return jsonify({**user.to_dict(), "token": token}), 201


@users_bp.post("/admin")
@require_auth
@require_admin
def admin_create_user_route():
    """Admin creation of any user, including admins and access-window settings."""
    password, payload = _split_password(request.get_json(silent=True) or {})

    try:
        patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=False)
        user = auth_service.create_user(password=password, created_by=g.current_user, **patch)
    except (AuthError, ValidationError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("User creation failed")
        return jsonify({"message": "Server error"}), 500

    return jsonify(user.to_dict()), 201


@users_bp.get("")
@require_auth
@require_admin
def list_users_route():
    return jsonify([user.to_dict() for user in auth_service.list_users()]), 200


@users_bp.get("/profile")
@require_auth
def profile_route():
    return jsonify(g.current_user.to_dict()), 200


@users_bp.get("/me")
@require_auth
def me_route():
    return jsonify(g.current_user.to_dict()), 200


@users_bp.get("/stats")
@require_auth
@require_admin
def user_stats_route():
    return jsonify(auth_service.user_stats()), 200


@users_bp.get("/login-stats")
@require_auth
@require_admin
def login_stats_route():
    return jsonify(login_throttle_service.login_stats()), 200


@users_bp.get("/login-activity/<int:entry_id>")
@require_auth
@require_admin
def login_activity_route(entry_id: int):
    try:
        entry = auth_service.get_login_entry(entry_id)
    except AuthError as e:
        return error_response(e)
    return jsonify(entry.to_dict()), 200


@users_bp.get("/<int:user_id>")
@require_auth
def get_user_route(user_id: int):
    """Admins can read anyone; other users only themselves."""
    if not g.current_user.is_admin and g.current_user.id != user_id:
        return jsonify({"message": "Not authorized to view this user"}), 403
    try:
        user = auth_service.get_user(user_id)
    except AuthError as e:
        return error_response(e)
    return jsonify(user.to_dict()), 200


@users_bp.put("/<int:user_id>")
@require_auth
@require_admin
def update_user_route(user_id: int):
    password, payload = _split_password(request.get_json(silent=True) or {})

    try:
        patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=True)
        user = auth_service.update_user(user_id, patch, actor=g.current_user, password=password or None)
    except (AuthError, ValidationError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("User update failed")
        return jsonify({"message": "Server error"}), 500

    return jsonify(user.to_dict()), 200


@users_bp.delete("/<int:user_id>")
@require_auth
@require_admin
def delete_user_route(user_id: int):
    try:
        auth_service.delete_user(user_id, actor=g.current_user)
    except AuthError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("User deletion failed")
        return jsonify({"message": "Server error"}), 500

    return jsonify({"message": "User removed"}), 200
