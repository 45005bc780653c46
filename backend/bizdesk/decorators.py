# Overview: Request decorators for API routes (bearer-token auth and the admin gate).

from functools import wraps
from flask import request, jsonify, g

from .services import session_service
from .time_utils import utcnow


def _is_authenticated() -> bool:
    return getattr(g, 'current_user', None) is not None


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid session token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    Returns 403 when the user's access window is closed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"message": "Not authorized, no token"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"message": "Not authorized, invalid or expired token"}), 401

        if not context.user.is_within_access_window(utcnow()):
            return jsonify({"message": "Access is not allowed at this time"}), 403

        g.current_user = context.user
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Require an admin user. Must be stacked below @require_auth.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"message": "Not authorized"}), 401
        if not g.current_user.is_admin:
            return jsonify({"message": "Admin access required"}), 403
        return f(*args, **kwargs)

    return decorated_function
