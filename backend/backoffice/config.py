# backend/backoffice/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/backoffice.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///backoffice.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Sessions
    SESSION_ABSOLUTE_HOURS = int(os.environ.get("SESSION_ABSOLUTE_HOURS", "24"))
    SESSION_IDLE_HOURS = int(os.environ.get("SESSION_IDLE_HOURS", "8"))

    # Inventory
    ALLOW_NEGATIVE_STOCK = _env_bool("ALLOW_NEGATIVE_STOCK", False)

    # Listing endpoints
    DEFAULT_PAGE_SIZE = int(os.environ.get("DEFAULT_PAGE_SIZE", "20"))
    MAX_PAGE_SIZE = int(os.environ.get("MAX_PAGE_SIZE", "200"))

    # Tiendanube e-commerce integration
    TIENDANUBE_API_BASE = os.environ.get("TIENDANUBE_API_BASE", "https://api.tiendanube.com/v1")
    TIENDANUBE_USER_AGENT = os.environ.get(
        "TIENDANUBE_USER_AGENT", "Backoffice (soporte@backoffice.local)"
    )
    TIENDANUBE_WEBHOOK_SECRET = os.environ.get("TIENDANUBE_WEBHOOK_SECRET")
    TIENDANUBE_MAX_RETRIES = int(os.environ.get("TIENDANUBE_MAX_RETRIES", "3"))
    TIENDANUBE_RETRY_BASE_DELAY = float(os.environ.get("TIENDANUBE_RETRY_BASE_DELAY", "0.6"))
    TIENDANUBE_TIMEOUT = float(os.environ.get("TIENDANUBE_TIMEOUT", "15"))
