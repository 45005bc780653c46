from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z, utcnow


class User(db.Model):
    """
    Staff accounts for authentication and attribution.

    WHY: Every sale, payment and stock movement is attributed to a user.
    Admins manage catalogue, staff and destructive operations; regular
    users record sales and payments.

    SECURITY:
    - login_attempts / lock_until implement the brute-force lockout
    - access_control_enabled + access_start/access_end restrict when the
      account may log in or use an existing session
    """
    __tablename__ = "users"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(32), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    last_modified_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    last_modified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    password_modified_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    password_modified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Lockout counters
    login_attempts = db.Column(db.Integer, nullable=False, default=0)
    lock_until = db.Column(db.DateTime(timezone=True), nullable=True)

    # Access window
    access_control_enabled = db.Column(db.Boolean, nullable=False, default=False)
    access_start = db.Column(db.DateTime(timezone=True), nullable=True)
    access_end = db.Column(db.DateTime(timezone=True), nullable=True)

    last_modified_by = db.relationship("User", foreign_keys=[last_modified_by_user_id], remote_side=[id])
    password_modified_by = db.relationship("User", foreign_keys=[password_modified_by_user_id], remote_side=[id])

    def is_within_access_window(self, now) -> bool:
        if not self.access_control_enabled:
            return True
        if self.access_start and now < self.access_start:
            return False
        if self.access_end and now > self.access_end:
            return False
        return True

    def to_summary(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone or "",
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
            "last_modified_by": self.last_modified_by.to_summary() if self.last_modified_by else None,
            "last_modified_at": to_utc_z(self.last_modified_at),
            "password_modified_by": self.password_modified_by.to_summary() if self.password_modified_by else None,
            "password_modified_at": to_utc_z(self.password_modified_at),
            "access_control_enabled": self.access_control_enabled,
            "access_start": to_utc_z(self.access_start),
            "access_end": to_utc_z(self.access_end),
        }


class SessionToken(db.Model):
    """
    Opaque bearer-token sessions.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 24-hour absolute timeout
    - 2-hour idle timeout
    - Revocable on logout, password change or account deletion
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True, cascade="all, delete-orphan"))


class LoginHistory(db.Model):
    """One row per login attempt, successful or not."""
    __tablename__ = "login_history"
    __table_args__ = (
        db.Index("ix_login_history_success_created", "success", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # Kept (nulled) when the user is deleted
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    ip_address = db.Column(db.String(64), nullable=True)
    device = db.Column(db.String(255), nullable=True)
    success = db.Column(db.Boolean, nullable=False, default=False)
    attempted_email = db.Column(db.String(255), nullable=True)
    error = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user": self.user.to_summary() if self.user else None,
            "ip_address": self.ip_address,
            "device": self.device,
            "success": self.success,
            "attempted_email": self.attempted_email,
            "error": self.error,
            "created_at": to_utc_z(self.created_at),
        }


class PushSubscription(db.Model):
    """
    Browser push subscription registered by a user's device.

    Endpoints are globally unique: re-subscribing the same browser from
    another account moves the subscription to that account.
    """
    __tablename__ = "push_subscriptions"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    endpoint = db.Column(db.String(1024), nullable=False, unique=True)
    expiration_time = db.Column(db.DateTime(timezone=True), nullable=True)
    p256dh = db.Column(db.String(255), nullable=False)
    auth = db.Column(db.String(255), nullable=False)

    device_platform = db.Column(db.String(64), nullable=True)
    device_user_agent = db.Column(db.String(255), nullable=True)
    device_language = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", backref=db.backref("push_subscriptions", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "endpoint": self.endpoint,
            "expiration_time": to_utc_z(self.expiration_time),
            "device": {
                "platform": self.device_platform,
                "user_agent": self.device_user_agent,
                "language": self.device_language,
            },
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
