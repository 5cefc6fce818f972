#!/usr/bin/env python3
"""
server_init.py
Initialises and runs the ApnaRoom realtime server (Flask + Flask-SocketIO).

create_app() builds every collaborator once (store, presence store,
connection registry, room directory, notifier, messaging engine, matcher)
and hands the same instances to the HTTP blueprints and the socket handlers.
Tests inject fakes for the store and the presence store.
"""

from __future__ import annotations

import json
import os
import logging

# Socket.IO async mode
# - Default: threading (long-polling + simple-websocket)
# - Override with: APNAROOM_SOCKETIO_ASYNC=eventlet (needs the eventlet extra)
APNAROOM_SOCKETIO_ASYNC = os.environ.get("APNAROOM_SOCKETIO_ASYNC", "threading").strip().lower()
if APNAROOM_SOCKETIO_ASYNC == "eventlet":
    import eventlet  # type: ignore

    eventlet.monkey_patch()

import secrets
import sys
from datetime import timedelta, datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException

from constants import APP_VERSION, get_db_connection_string, redact_postgres_dsn, postgres_dsn_parts, sanitize_postgres_dsn
from database import PostgresStore, get_db_identity, init_database, init_db_pool
from emailer import send_template_email
from errors import AppError
from janitor import start_presence_keepalive
from matching import MatchService
from messaging import MessagingEngine
from notifications import OfflineNotifier
from presence import PresenceStore, create_redis_client
from realtime.events import ErrorEvent
from realtime.state import ConnectionRegistry, RoomDirectory
from routes_chat import chat_bp
from routes_matching import matching_bp
from secrets_policy import persist_secrets_enabled, scrub_secrets_for_persist


def _get_socketio_message_queue(settings: Dict[str, Any]) -> Optional[str]:
    """Resolve the Socket.IO message queue URL.

    Priority:
      1) APNAROOM_SOCKETIO_MESSAGE_QUEUE
      2) server_config.json -> socketio_message_queue

    Unset means single-process broadcasts (no queue).
    """
    v = (os.environ.get("APNAROOM_SOCKETIO_MESSAGE_QUEUE") or "").strip()
    if v:
        return v
    v = str(settings.get("socketio_message_queue") or "").strip()
    return v or None


def _normalize_cors_origins(val):
    if val is None:
        return None
    if isinstance(val, str):
        raw = val.strip()
        if not raw:
            return None
        if "," in raw:
            items = [x.strip() for x in raw.split(",") if x.strip()]
            return items or None
        return raw
    if isinstance(val, (list, tuple, set)):
        items = [str(x).strip() for x in val if str(x).strip()]
        return items or None
    return None


def _log_startup_banner(settings: Dict[str, Any], settings_file: Optional[Path] | None) -> None:
    """Log a boot banner that makes 'wrong DB / wrong config' obvious."""
    cfg_path = Path(settings_file) if settings_file else None
    dsn = get_db_connection_string(settings)
    parts = postgres_dsn_parts(dsn)

    logging.info("==================== ApnaRoom Boot ====================")
    logging.info("ApnaRoom version: %s", APP_VERSION)
    logging.info(
        "Settings file: %s (exists=%s)",
        str(cfg_path) if cfg_path else "<none>",
        bool(cfg_path and cfg_path.exists()),
    )
    logging.info(
        "Configured DB: host=%s port=%s db=%s user=%s",
        parts.get("host"), parts.get("port"), parts.get("db"), parts.get("user"),
    )
    logging.info("Configured DSN: %s", redact_postgres_dsn(dsn))
    logging.info("=======================================================")


def _open_store(settings: Dict[str, Any]) -> PostgresStore:
    if settings.get("database_url"):
        settings["database_url"] = str(sanitize_postgres_dsn(str(settings["database_url"])))
    init_db_pool(
        minconn=int(settings.get("db_pool_min", 1)),
        maxconn=int(settings.get("db_pool_max", 10)),
        dsn=str(settings.get("database_url")) if settings.get("database_url") else None,
    )
    if bool(settings.get("init_schema_on_start", True)):
        init_database()

    ident = get_db_identity()
    logging.info(
        "Connected DB: user=%s db=%s server=%s:%s",
        ident.get("current_user"),
        ident.get("current_database"),
        ident.get("server_addr"),
        ident.get("server_port"),
    )
    return PostgresStore()


def create_app(
    settings: Dict[str, Any],
    limiter: Optional[Limiter] | None = None,
    settings_file: Optional[Path] | None = None,
    *,
    store=None,
    presence: Optional[PresenceStore] = None,
    notifier_spawn=None,
    email_sender=None,
) -> tuple[Flask, SocketIO]:
    """Create and configure the Flask + Socket.IO application.

    This function does **not** start a server. It is safe to import from a
    Gunicorn `wsgi.py` module.

    ``store``/``presence`` default to PostgreSQL and Redis built from
    ``settings``. ``notifier_spawn`` defaults to Socket.IO background tasks and
    ``email_sender`` to SMTP (emailer.send_template_email).
    """

    settings_file = Path(settings_file) if isinstance(settings_file, str) else settings_file

    # ───── Flask App Core ─────
    app = Flask(__name__)
    app.config["APNAROOM_SETTINGS_FILE"] = str(settings_file) if settings_file else None
    app.config["APNAROOM_SETTINGS"] = settings

    app.secret_key = _ensure_secret_key(settings, settings_file)

    app.config.update(
        SECRET_KEY=app.secret_key,
        JWT_SECRET_KEY=_ensure_jwt_secret(settings, settings_file),
        # Bearer tokens only: the SPA sends Authorization headers, the socket
        # sends the same token in its handshake.
        JWT_TOKEN_LOCATION=["headers"],
        JWT_ACCESS_TOKEN_EXPIRES=timedelta(minutes=int(settings.get("access_token_minutes", 60 * 24 * 7))),
    )
    JWTManager(app)

    # ───── CORS ─────
    cors_origins = _normalize_cors_origins(settings.get("cors_allowed_origins"))
    if cors_origins is not None:
        CORS(app, origins=cors_origins, resources={r"/api/*": {}})

    # ───── Rate limiting ─────
    storage_uri = settings.get("rate_limit_storage_uri") or "memory://"
    if limiter is None:
        default_limit = settings.get("api_rate_limit") or "300 per minute"
        limiter = Limiter(
            key_func=get_remote_address,
            storage_uri=storage_uri,
            default_limits=[default_limit],
        )
    limiter.init_app(app)
    app.config["APNAROOM_LIMITER"] = limiter

    if store is None:
        _log_startup_banner(settings, settings_file)
        store = _open_store(settings)

    if presence is None:
        presence = PresenceStore(
            create_redis_client(settings.get("redis_url")),
            ttl_seconds=int(settings.get("presence_ttl_seconds", 24 * 60 * 60)),
        )

    # ───── SocketIO Setup ─────
    message_queue = _get_socketio_message_queue(settings)
    async_mode = "eventlet" if APNAROOM_SOCKETIO_ASYNC == "eventlet" else "threading"
    app.config["APNAROOM_SOCKETIO_ASYNC_MODE"] = async_mode

    socketio = SocketIO(
        app,
        async_mode=async_mode,
        cors_allowed_origins=cors_origins,
        logger=False,
        engineio_logger=False,
        ping_interval=20,
        ping_timeout=15,
        message_queue=message_queue,
    )
    if message_queue:
        logging.info("[socketio] message queue: %s", message_queue)
    app.config["APNAROOM_SOCKETIO"] = socketio

    # ───── Shared collaborators ─────
    registry = ConnectionRegistry()
    rooms = RoomDirectory(socketio)
    notifier = OfflineNotifier(
        store,
        settings,
        spawn=notifier_spawn or socketio.start_background_task,
        sender=email_sender or send_template_email,
    )
    engine = MessagingEngine(store, registry, rooms, notifier, settings)
    services = SimpleNamespace(
        settings=settings,
        store=store,
        presence=presence,
        registry=registry,
        rooms=rooms,
        notifier=notifier,
        engine=engine,
        matches=MatchService(store, settings),
    )
    app.config["APNAROOM_SERVICES"] = services

    # ───── Error envelope ─────
    @app.errorhandler(AppError)
    def _handle_app_error(e: AppError):
        if e.status_code >= 500:
            logging.error("%s %s failed: %s", request.method, request.path, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def _handle_http_error(e: HTTPException):
        message = "Route not found" if e.code == 404 else (e.description or e.name)
        return jsonify({"success": False, "message": message}), e.code

    @socketio.on_error_default
    def _socketio_default_error_handler(e):
        sid = getattr(request, "sid", None)
        logging.exception("Socket.IO handler error: %s", e)
        if sid:
            rooms.send(sid, ErrorEvent(message="Internal server error"))

    # ───── Routes ─────
    app.register_blueprint(chat_bp)
    app.register_blueprint(matching_bp)

    if settings.get("enable_health_check_endpoint", True):
        endpoint = settings.get("health_check_endpoint") or "/health"

        @app.route(endpoint, methods=["GET"])
        @limiter.exempt
        def health_check():
            # Minimal health payload. Avoid leaking config.
            db_ok = store.ping()
            return (
                jsonify(
                    {
                        "status": "ok" if db_ok else "degraded",
                        "db": "ok" if db_ok else "down",
                        "connections": len(registry),
                        "version": APP_VERSION,
                        "time": datetime.now(timezone.utc).isoformat(),
                    }
                ),
                200 if db_ok else 503,
            )

    from socket_handlers import register_socketio_handlers
    register_socketio_handlers(socketio, settings, services)

    return app, socketio


def run_web_server(
    settings: Dict[str, Any],
    limiter: Optional[Limiter] | None = None,
    settings_file: Optional[Path] | None = None,
) -> None:
    """Bootstrap the Flask-SocketIO app, attach blueprints & handlers, then run it."""

    app, socketio = create_app(settings, limiter=limiter, settings_file=settings_file)

    # ───── Run Server (dev / single-process) ─────
    host = settings.get("host") or "0.0.0.0"
    port = int(settings.get("port") or 5000)
    debug = bool(settings.get("debug") or False)

    logging.info("Starting ApnaRoom server on http://%s:%s (debug=%s)", host, port, debug)

    # Presence keep-alive. Under Gunicorn each worker refreshes its own sockets.
    start_presence_keepalive(socketio, app.config["APNAROOM_SERVICES"], settings)

    class _SocketIOAccessFilter(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:
            return "/socket.io/" not in record.getMessage()

    # Long-polling is noisy; keep werkzeug's access log readable.
    logging.getLogger("werkzeug").addFilter(_SocketIOAccessFilter())

    threading_mode = app.config.get("APNAROOM_SOCKETIO_ASYNC_MODE") == "threading"
    run_kwargs = {"allow_unsafe_werkzeug": True} if threading_mode else {}
    socketio.run(
        app,
        host=host,
        port=port,
        debug=debug,
        use_reloader=bool(debug and threading_mode),
        log_output=False,
        **run_kwargs,
    )


# ───── Helpers ─────
def _ensure_secret_key(
    settings: Dict[str, Any],
    settings_file: Optional[Path],
) -> str:
    key = settings.get("secret_key") or os.getenv("SECRET_KEY")
    if key:
        return str(key)

    key = secrets.token_urlsafe(64)
    settings["secret_key"] = key
    if _persist_generated_key(settings, settings_file):
        logging.info("secret_key generated and saved to settings.")
    else:
        logging.warning("Generated a one-off secret_key (NOT saved).")
    return key


def _ensure_jwt_secret(
    settings: Dict[str, Any],
    settings_file: Optional[Path],
) -> str:
    # Prefer explicit config, then env var. Only persist if we *generated* it
    # and secret persistence is enabled.
    key = settings.get("jwt_secret")
    if key:
        return str(key)

    env_key = os.getenv("JWT_SECRET_KEY")
    if env_key and str(env_key).strip():
        return str(env_key).strip()

    key = secrets.token_hex(32)
    settings["jwt_secret"] = key
    if _persist_generated_key(settings, settings_file):
        logging.info("jwt_secret generated and saved to settings.")
    else:
        logging.warning("Generated a one-off jwt_secret (NOT saved). Tokens will not survive a restart.")
    return key


def _persist_generated_key(settings: Dict[str, Any], settings_file: Optional[Path]) -> bool:
    # If persistence is disabled, never write secrets into server_config.json.
    if not persist_secrets_enabled():
        return False
    if not settings_file:
        return False
    if settings_file.suffix.lower() != ".json":
        logging.warning("Unsupported settings file format: %s", settings_file)
        return False

    existing: dict | None = None
    if settings_file.exists():
        try:
            with settings_file.open("r", encoding="utf-8") as fp:
                existing = json.load(fp)
        except (OSError, ValueError):
            existing = None

        # Back up an unreadable file instead of overwriting it.
        if existing is None:
            ts = datetime.now().strftime("%Y%m%d-%H%M%S")
            bad_path = settings_file.with_suffix(settings_file.suffix + f".bad-{ts}")
            try:
                settings_file.rename(bad_path)
                logging.warning("Backed up invalid settings file to: %s", bad_path)
            except OSError as exc:
                logging.warning("Could not back up invalid settings file: %s", exc)
                return False

    merged = dict(existing or {})
    merged.update(scrub_secrets_for_persist(settings))
    try:
        with settings_file.open("w", encoding="utf-8") as fp:
            json.dump(merged, fp, indent=2)
    except OSError as exc:
        print(f"Could not persist secrets to {settings_file}: {exc}", file=sys.stderr)
        return False
    return True
