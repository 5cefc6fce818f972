"""wsgi.py

Gunicorn entrypoint for ApnaRoom.

Run (example):
  APNAROOM_SOCKETIO_ASYNC=eventlet \
  APNAROOM_SOCKETIO_MESSAGE_QUEUE=redis://127.0.0.1:6379/0 \
  gunicorn -c gunicorn_conf.py wsgi:app

Notes:
- For multi-worker Socket.IO, a Redis message queue is required.
- Each worker runs its own presence keep-alive for the sockets it holds.
"""

from __future__ import annotations

import os

# ---- Ensure eventlet monkey_patch happens as early as possible ----
_async = (os.environ.get("APNAROOM_SOCKETIO_ASYNC", "threading") or "threading").strip().lower()
if _async == "eventlet":
    import eventlet  # type: ignore

    eventlet.monkey_patch()

from pathlib import Path

from config import apply_env_overrides, load_settings
from constants import CONFIG_FILE
from janitor import start_presence_keepalive
from main import configure_logging
from server_init import create_app


def _resolve_config_path() -> Path:
    # Prefer explicit env path when running under systemd.
    p = os.environ.get("APNAROOM_CONFIG") or CONFIG_FILE
    return Path(p)


_settings_path = _resolve_config_path()
_settings = load_settings(_settings_path)
apply_env_overrides(_settings)
configure_logging(_settings)

# Create the Flask app + Socket.IO integration.
app, socketio = create_app(_settings, limiter=None, settings_file=_settings_path)
start_presence_keepalive(socketio, app.config["APNAROOM_SERVICES"], _settings)

app.config["APNAROOM_GUNICORN"] = True
