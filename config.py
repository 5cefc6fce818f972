#!/usr/bin/env python3
"""config.py

Settings for the ApnaRoom realtime server.

``server_config.json`` is plaintext JSON merged over get_default_settings();
environment variables win over both. Secrets (JWT key, DSN password, SMTP
password) are better kept in the environment; see secrets_policy.py.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from constants import (
    DEFAULT_DB_CONNECTION_STRING,
    DEFAULT_REDIS_URL,
    MAX_MESSAGE_LENGTH,
    MESSAGE_PREVIEW_LENGTH,
    PRESENCE_TTL_SECONDS,
    sanitize_postgres_dsn,
)
from secrets_policy import scrub_secrets_for_persist


def get_default_settings() -> Dict[str, Any]:
    """Return the defaults every settings file is merged over."""

    dsn = sanitize_postgres_dsn(
        os.getenv("DATABASE_URL")
        or os.getenv("DB_CONNECTION_STRING")
        or DEFAULT_DB_CONNECTION_STRING
    )

    return {
        # ── Core server ──────────────────────────────────────────────────
        "host": "0.0.0.0",
        "port": 5000,
        "debug": False,
        "frontend_url": "http://localhost:3000",
        "cors_allowed_origins": "http://localhost:3000",
        "enable_health_check_endpoint": True,
        "health_check_endpoint": "/health",

        # Secrets (server_init.py will generate/persist if missing)
        "secret_key": "",
        "jwt_secret": "",
        "access_token_minutes": 60 * 24 * 7,

        # ── Database ─────────────────────────────────────────────────────
        "database_url": dsn,
        "db_pool_min": 1,
        "db_pool_max": 10,
        "init_schema_on_start": True,

        # ── Redis / presence ─────────────────────────────────────────────
        "redis_url": os.getenv("REDIS_URL") or DEFAULT_REDIS_URL,
        "presence_ttl_seconds": PRESENCE_TTL_SECONDS,
        "presence_refresh_seconds": 3600,
        "socketio_message_queue": "",

        # ── Messaging ────────────────────────────────────────────────────
        "message_preview_length": MESSAGE_PREVIEW_LENGTH,
        "max_message_length": MAX_MESSAGE_LENGTH,
        "typing_debounce_seconds": 2,

        # ── Matching ─────────────────────────────────────────────────────
        "reset_match_status_on_rescore": True,

        # ── Rate limiting ────────────────────────────────────────────────
        "api_rate_limit": "300 per minute",
        "rate_limit_storage_uri": "memory://",

        # ── Email (offline message notifications) ────────────────────────
        "smtp_enabled": False,
        "smtp_host": "",
        "smtp_port": 587,
        "smtp_username": "",
        "smtp_password": "",
        "smtp_from": "ApnaRoom <no-reply@localhost>",
        "smtp_use_starttls": True,
        "smtp_use_ssl": False,

        # ── Logging ──────────────────────────────────────────────────────
        "log_level": "INFO",
        "log_file_path": "logs/server.log",
    }


def load_settings(path: Path) -> dict:
    """Load settings from JSON over the defaults. Returns defaults if missing."""
    settings = get_default_settings()
    if not path.exists():
        return settings

    try:
        with path.open("r", encoding="utf-8") as fp:
            loaded = json.load(fp)
    except (OSError, ValueError) as exc:
        logging.warning("Could not parse %s as JSON: %s", path, exc)
        # Back up the broken file so generated secrets can be persisted into a
        # fresh one.
        ts = datetime.now().strftime("%Y%m%d-%H%M%S")
        bad_path = path.with_suffix(path.suffix + f".bad-{ts}")
        try:
            path.rename(bad_path)
            logging.warning("Backed up invalid settings file to: %s", bad_path)
        except OSError as e2:
            logging.warning("Could not back up invalid settings file: %s", e2)
        return settings

    if not isinstance(loaded, dict):
        logging.warning("Ignoring %s: top level is not an object", path)
        return settings
    settings.update(loaded)
    return settings


def save_settings(path: Path, settings: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # If APNAROOM_PERSIST_SECRETS=0, do not write secrets into the file.
    to_save = scrub_secrets_for_persist(settings)
    with path.open("w", encoding="utf-8") as fp:
        json.dump(to_save, fp, indent=2)


def _bool_env(*names: str) -> bool | None:
    for n in names:
        v = os.getenv(n)
        if v is None:
            continue
        v = v.strip().lower()
        if v in ("1", "true", "yes", "y", "on"):
            return True
        if v in ("0", "false", "no", "n", "off"):
            return False
    return None


def _str_env(*names: str) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v.strip()
    return None


def _int_env(*names: str) -> int | None:
    v = _str_env(*names)
    if v is None:
        return None
    try:
        return int(v)
    except ValueError:
        logging.warning("Ignoring non-integer value for %s: %r", names[0], v)
        return None


# settings key -> env var names (first set wins)
_STR_OVERRIDES = {
    "secret_key": ("SECRET_KEY",),
    "jwt_secret": ("JWT_SECRET_KEY", "APNAROOM_JWT_SECRET"),
    "redis_url": ("REDIS_URL", "APNAROOM_REDIS_URL"),
    "frontend_url": ("FRONTEND_URL", "APNAROOM_FRONTEND_URL"),
    "cors_allowed_origins": ("APNAROOM_CORS_ORIGINS", "CORS_ORIGINS"),
    "socketio_message_queue": ("APNAROOM_SOCKETIO_MESSAGE_QUEUE",),
    "log_level": ("APNAROOM_LOG_LEVEL", "LOG_LEVEL"),
    "smtp_host": ("APNAROOM_SMTP_HOST", "SMTP_HOST"),
    "smtp_username": ("APNAROOM_SMTP_USERNAME", "SMTP_USERNAME", "SMTP_USER"),
    "smtp_password": ("APNAROOM_SMTP_PASSWORD", "SMTP_PASSWORD", "SMTP_PASS"),
    "smtp_from": ("APNAROOM_SMTP_FROM", "SMTP_FROM"),
}

_INT_OVERRIDES = {
    "port": ("APNAROOM_PORT", "PORT"),
    "presence_ttl_seconds": ("APNAROOM_PRESENCE_TTL_SECONDS",),
    "smtp_port": ("APNAROOM_SMTP_PORT", "SMTP_PORT"),
}

_BOOL_OVERRIDES = {
    "debug": ("APNAROOM_DEBUG",),
    "smtp_enabled": ("APNAROOM_SMTP_ENABLED", "SMTP_ENABLED"),
    "smtp_use_starttls": ("APNAROOM_SMTP_STARTTLS", "SMTP_STARTTLS"),
    "smtp_use_ssl": ("APNAROOM_SMTP_SSL", "SMTP_SSL"),
    "reset_match_status_on_rescore": ("APNAROOM_RESET_MATCH_STATUS",),
}


def apply_env_overrides(settings: dict) -> None:
    """Apply env overrides for secrets and runtime deployment."""

    # Prefer DB env vars for safety.
    db = os.getenv("DB_CONNECTION_STRING") or os.getenv("DATABASE_URL")
    if db:
        settings["database_url"] = str(sanitize_postgres_dsn(db))

    for key, names in _STR_OVERRIDES.items():
        v = _str_env(*names)
        if v is not None:
            settings[key] = v

    for key, names in _INT_OVERRIDES.items():
        v = _int_env(*names)
        if v is not None:
            settings[key] = v

    for key, names in _BOOL_OVERRIDES.items():
        v = _bool_env(*names)
        if v is not None:
            settings[key] = v
