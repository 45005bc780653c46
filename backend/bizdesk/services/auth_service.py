# Overview: Service-layer operations for auth; passwords, login flow and user management.

"""
Authentication Service

WHY: Every action must be attributable. Uses bcrypt for secure password
hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, 12 by default)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)
- Lockout counters managed separately (see login_throttle_service.py)
"""

import logging
import re
from datetime import timedelta

import bcrypt
from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import BankTransaction, LoginHistory, User
from ..validation import ServiceError
from bizdesk.time_utils import to_utc_z, utcnow
from . import login_throttle_service, session_service


logger = logging.getLogger(__name__)


class AuthError(ServiceError):
    """Raised for authentication and user management errors."""


class PasswordValidationError(AuthError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    WHY: Cost factor 12 provides good security/performance balance. Tests
    lower BCRYPT_ROUNDS to keep the suite fast.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    rounds = int(current_app.config.get("BCRYPT_ROUNDS", 12))
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    A malformed stored hash makes bcrypt raise ValueError; that counts as a
    mismatch.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


# =============================================================================
# LOGIN FLOW
# =============================================================================

def login(email: str, password: str, *, ip_address: str | None = None, user_agent: str | None = None):
    """
    Authenticate by email and password.

    Returns (user, plaintext_token). Raises AuthError with:
    - 401 for unknown email, wrong password or a deactivated account
      (remaining_attempts is included after a wrong password)
    - 423 while the account is locked (lock_until, remaining_minutes)
    - 403 outside the user's access window

    Every outcome is written to login_history.
    """
    email = (email or "").strip().lower()
    if not email or not password:
        raise AuthError("Email and password are required")

    def _fail(user, message, status_code, details=None):
        login_throttle_service.record_attempt(
            user=user,
            attempted_email=email,
            success=False,
            ip_address=ip_address,
            user_agent=user_agent,
            error=message,
        )
        raise AuthError(message, status_code=status_code, details=details)

    user = db.session.query(User).filter(func.lower(User.email) == email).first()
    if not user:
        _fail(None, "Invalid email or password", 401)

    now = utcnow()
    if login_throttle_service.is_locked(user, now=now):
        _fail(user, "Account is temporarily locked due to too many failed login attempts", 423, {
            "lock_until": to_utc_z(user.lock_until),
            "remaining_minutes": login_throttle_service.remaining_lock_minutes(user, now=now),
        })
    login_throttle_service.clear_expired_lock(user, now=now)

    if not verify_password(password, user.password_hash):
        remaining = login_throttle_service.register_failure(user, now=now)
        if remaining == 0:
            _fail(user, "Account is temporarily locked due to too many failed login attempts", 423, {
                "lock_until": to_utc_z(user.lock_until),
                "remaining_minutes": login_throttle_service.remaining_lock_minutes(user, now=now),
            })
        _fail(user, "Invalid email or password", 401, {"remaining_attempts": remaining})

    # Only reported once the password is proven
    if not user.is_active:
        _fail(user, "Account is deactivated", 401)

    if not user.is_within_access_window(now):
        _fail(user, "Access is not allowed at this time", 403)

    login_throttle_service.register_success(user, now=now)
    login_throttle_service.record_attempt(
        user=user,
        attempted_email=email,
        success=True,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    logger.info("User %s logged in", user.email)

    _, token = session_service.create_session(user, user_agent=user_agent, ip_address=ip_address)
    return user, token


# =============================================================================
# USER MANAGEMENT
# =============================================================================

def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise AuthError("User not found", status_code=404)
    return user


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.created_at.desc(), User.id.desc()).all()


def _email_taken(email: str, *, exclude_id: int | None = None) -> bool:
    query = db.session.query(User.id).filter(func.lower(User.email) == email)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


def _admin_count() -> int:
    return db.session.query(func.count(User.id)).filter(User.is_admin.is_(True)).scalar() or 0


def create_user(
    *,
    name: str,
    email: str,
    password: str,
    phone: str | None = None,
    is_admin: bool = False,
    is_active: bool = True,
    access_control_enabled: bool = False,
    access_start=None,
    access_end=None,
    created_by: User | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises AuthError (400) for a taken email and PasswordValidationError
    for a weak password.
    """
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name or not email or not password:
        raise AuthError("Name, email and password are required")

    if _email_taken(email):
        raise AuthError("A user with this email already exists")

    _check_access_window(access_control_enabled, access_start, access_end)

    user = User(
        name=name,
        email=email,
        phone=phone,
        password_hash=hash_password(password),
        is_admin=bool(is_admin),
        is_active=bool(is_active),
        access_control_enabled=bool(access_control_enabled),
        access_start=access_start,
        access_end=access_end,
        last_modified_by_user_id=created_by.id if created_by else None,
        last_modified_at=utcnow() if created_by else None,
    )
    db.session.add(user)
    db.session.commit()
    logger.info("Created user %s (admin=%s)", user.email, user.is_admin)
    return user


def _check_access_window(enabled, start, end) -> None:
    if enabled and start and end and start >= end:
        raise AuthError("access_start must be before access_end")


def update_user(user_id: int, patch: dict, *, actor: User, password: str | None = None) -> User:
    """
    Apply an admin edit to a user.

    INVARIANTS:
    - The last remaining admin cannot be demoted
    - A password change stamps password_modified_* and revokes every
      session of the edited user
    - last_modified_* is always stamped
    """
    user = get_user(user_id)
    patch = dict(patch)
    now = utcnow()

    if "email" in patch and patch["email"]:
        patch["email"] = patch["email"].lower()
        if _email_taken(patch["email"], exclude_id=user.id):
            raise AuthError("A user with this email already exists")

    if patch.get("is_admin") is False and user.is_admin and _admin_count() <= 1:
        raise AuthError("Cannot remove admin rights from the last admin")

    _check_access_window(
        patch.get("access_control_enabled", user.access_control_enabled),
        patch.get("access_start", user.access_start),
        patch.get("access_end", user.access_end),
    )

    for key, value in patch.items():
        setattr(user, key, value)

    if password:
        user.password_hash = hash_password(password)
        user.password_modified_by_user_id = actor.id
        user.password_modified_at = now
        session_service.revoke_all_user_sessions(user.id, "Password changed", commit=False)

    if patch.get("is_active") is False:
        session_service.revoke_all_user_sessions(user.id, "User account deactivated", commit=False)

    user.last_modified_by_user_id = actor.id
    user.last_modified_at = now
    db.session.commit()
    return user


def delete_user(user_id: int, *, actor: User) -> None:
    """
    Delete a user.

    Login history survives with user_id nulled, and audit references on
    other users are cleared. Sessions and push subscriptions go with the user.
    """
    user = get_user(user_id)
    if user.id == actor.id:
        raise AuthError("You cannot delete your own account")
    if user.is_admin and _admin_count() <= 1:
        raise AuthError("Cannot delete the last admin")

    db.session.query(LoginHistory).filter_by(user_id=user.id).update(
        {LoginHistory.user_id: None}, synchronize_session=False
    )
    db.session.query(User).filter_by(last_modified_by_user_id=user.id).update(
        {User.last_modified_by_user_id: None}, synchronize_session=False
    )
    db.session.query(User).filter_by(password_modified_by_user_id=user.id).update(
        {User.password_modified_by_user_id: None}, synchronize_session=False
    )
    db.session.query(BankTransaction).filter_by(user_id=user.id).delete(synchronize_session=False)

    db.session.delete(user)
    db.session.commit()
    logger.info("User %s deleted by %s", user.email, actor.email)


def user_stats() -> dict:
    since = utcnow() - timedelta(days=30)
    total = db.session.query(func.count(User.id)).scalar() or 0
    active = db.session.query(func.count(User.id)).filter(User.last_login_at >= since).scalar() or 0
    recent = db.session.query(User).order_by(User.created_at.desc(), User.id.desc()).limit(5).all()
    return {
        "total_users": int(total),
        "active_users": int(active),
        "admin_users": int(_admin_count()),
        "recent_users": [u.to_dict() for u in recent],
    }


def get_login_entry(entry_id: int) -> LoginHistory:
    entry = db.session.get(LoginHistory, entry_id)
    if not entry:
        raise AuthError("Login activity not found", status_code=404)
    return entry


def ensure_admin(*, name: str, email: str, password: str) -> tuple[User, bool]:
    """Idempotent admin bootstrap for the CLI. Returns (user, created)."""
    existing = db.session.query(User).filter(func.lower(User.email) == email.lower()).first()
    if existing:
        if not existing.is_admin:
            existing.is_admin = True
            db.session.commit()
        return existing, False
    return create_user(name=name, email=email, password=password, is_admin=True), True
