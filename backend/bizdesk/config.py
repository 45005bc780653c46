# backend/bizdesk/config.py
from __future__ import annotations
import os


def _split_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


class Config:
    # Optional "SECRET_KEY" ("JWT_SECRET" also accepted), with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY") or os.environ.get("JWT_SECRET") or "dev-secret-key-change-me"

    # SQLite DB stored in backend/instance/bizdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = (
        os.environ.get("DATABASE_URL")
        or os.environ.get("DATABASE_URI")
        or "sqlite:///bizdesk.sqlite3"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    ENV = os.environ.get("APP_ENV") or os.environ.get("FLASK_ENV") or "production"
    # Adds a "stack" field to 500 responses
    EXPOSE_ERROR_DETAILS = ENV == "development"

    CORS_ORIGINS = _split_origins(
        os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
        )
    )

    # Web-push keys; subscriptions are refused with 503 while unset
    VAPID_PUBLIC_KEY = os.environ.get("VAPID_PUBLIC_KEY")
    VAPID_PRIVATE_KEY = os.environ.get("VAPID_PRIVATE_KEY")
    VAPID_SUBJECT = os.environ.get("VAPID_SUBJECT", "mailto:admin@bizdesk.local")

    # Cost factor for password hashing; tests lower it
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
