# Overview: Service-layer operations for maintenance; retention cleanup run from the CLI.

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import LoginHistory, PushSubscription
from bizdesk.time_utils import utcnow


def cleanup_login_history(*, retention_days: int = 90) -> int:
    """Delete login history older than retention_days."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(LoginHistory).filter(
        LoginHistory.created_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def cleanup_expired_subscriptions() -> int:
    """Delete push subscriptions whose browser-declared expiration has passed."""
    deleted = db.session.query(PushSubscription).filter(
        PushSubscription.expiration_time.isnot(None),
        PushSubscription.expiration_time < utcnow(),
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
