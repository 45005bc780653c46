"""
Login Throttling Service

WHY: Prevent brute-force password attacks by limiting failed login attempts.
After too many failures, the account is temporarily locked.

SECURITY FEATURES:
- Failed attempts are counted on the User row (login_attempts)
- MAX_FAILED_ATTEMPTS failures lock the account for LOCKOUT_DURATION
  (User.lock_until); an expired lock resets the counter
- Every attempt, successful or not, is written to login_history
- Clears failed count on successful login
"""

import logging
import math
from datetime import timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import LoginHistory, User
from bizdesk.time_utils import days_ago, utcnow


logger = logging.getLogger(__name__)

# Configuration constants
MAX_FAILED_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(minutes=15)


def record_attempt(
    *,
    user: User | None,
    attempted_email: str | None,
    success: bool,
    ip_address: str | None = None,
    user_agent: str | None = None,
    error: str | None = None,
) -> LoginHistory:
    entry = LoginHistory(
        user_id=user.id if user else None,
        attempted_email=attempted_email,
        success=success,
        ip_address=ip_address,
        device=(user_agent or "")[:255] or None,
        error=error,
    )
    db.session.add(entry)
    db.session.commit()
    return entry


def remaining_lock_minutes(user: User, *, now=None) -> int:
    now = now or utcnow()
    if not user.lock_until or user.lock_until <= now:
        return 0
    return math.ceil((user.lock_until - now).total_seconds() / 60)


def is_locked(user: User, *, now=None) -> bool:
    return remaining_lock_minutes(user, now=now) > 0


def clear_expired_lock(user: User, *, now=None) -> None:
    """An expired lock resets the attempt counter (no commit)."""
    now = now or utcnow()
    if user.lock_until and user.lock_until <= now:
        user.login_attempts = 0
        user.lock_until = None


def register_failure(user: User, *, now=None) -> int:
    """
    Count one failed password check. Returns attempts left before lockout
    (0 means the account is now locked).
    """
    now = now or utcnow()
    user.login_attempts = (user.login_attempts or 0) + 1
    if user.login_attempts >= MAX_FAILED_ATTEMPTS:
        user.lock_until = now + LOCKOUT_DURATION
        logger.warning("Account %s locked after %s failed login attempts", user.email, user.login_attempts)
    db.session.commit()
    return max(0, MAX_FAILED_ATTEMPTS - user.login_attempts)


def register_success(user: User, *, now=None) -> None:
    user.login_attempts = 0
    user.lock_until = None
    user.last_login_at = now or utcnow()
    db.session.commit()


def login_stats(*, days: int = 30) -> dict:
    since = days_ago(days)
    total = db.session.query(func.count(LoginHistory.id)).scalar() or 0
    recent = db.session.query(LoginHistory.success, func.count(LoginHistory.id)).filter(
        LoginHistory.created_at >= since
    ).group_by(LoginHistory.success).all()
    counts = {bool(success): int(count) for success, count in recent}
    latest = (
        db.session.query(LoginHistory)
        .order_by(LoginHistory.created_at.desc(), LoginHistory.id.desc())
        .limit(10)
        .all()
    )
    return {
        "total_logins": int(total),
        "successful_logins": counts.get(True, 0),
        "failed_logins": counts.get(False, 0),
        "period_days": days,
        "recent_activity": [entry.to_dict() for entry in latest],
    }
