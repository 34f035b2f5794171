# backend/protrack/config.py
from __future__ import annotations
import os


def _sqlite_engine_options(uri: str, busy_timeout: float) -> dict:
    # Writers wait on the SQLite lock instead of failing immediately
    if uri.startswith("sqlite"):
        return {"connect_args": {"timeout": busy_timeout}}
    return {}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in the instance folder by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///protrack.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SQLITE_BUSY_TIMEOUT = float(os.environ.get("SQLITE_BUSY_TIMEOUT", "15"))
    SQLALCHEMY_ENGINE_OPTIONS = _sqlite_engine_options(SQLALCHEMY_DATABASE_URI, SQLITE_BUSY_TIMEOUT)

    # Bounded retry for lock/optimistic-version conflicts
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "5"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.05"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Invoice header
    SHOP_NAME = os.environ.get("SHOP_NAME", "Surgical Prosthetics")
    SHOP_ADDRESS = os.environ.get("SHOP_ADDRESS", "123 Medical Plaza, Healthcare City")
    SHOP_PHONE = os.environ.get("SHOP_PHONE", "+1 234 567 8901")
    SHOP_EMAIL = os.environ.get("SHOP_EMAIL", "info@surgicalprosthetics.com")


def engine_options_for(uri: str, busy_timeout: float = Config.SQLITE_BUSY_TIMEOUT) -> dict:
    return _sqlite_engine_options(uri, busy_timeout)
