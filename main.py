#!/usr/bin/env python3
"""main.py

ApnaRoom realtime server entrypoint (development / single process).

Settings come from ``server_config.json`` (plaintext JSON, see config.py) with
environment overrides on top. For Gunicorn use wsgi.py instead.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from config import apply_env_overrides, load_settings, save_settings
from constants import CONFIG_FILE


def configure_logging(settings: dict) -> None:
    """Root logger to log_file_path plus stdout; Socket.IO internals kept at WARNING."""
    level_name = str(settings.get("log_level") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = settings.get("log_format") or "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_path = settings.get("log_file_path")
    if log_path:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)
    for noisy in ("engineio.server", "socketio.server"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
    logging.info("Logging configured (level=%s, file=%s)", level_name, log_path or "-")


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="ApnaRoom realtime server")
    p.add_argument(
        "--config",
        default=os.environ.get("APNAROOM_CONFIG") or CONFIG_FILE,
        help="path to server config JSON",
    )
    p.add_argument("--write-config", action="store_true", help="write the merged settings file and exit")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    settings_path = Path(args.config)

    settings = load_settings(settings_path)
    apply_env_overrides(settings)

    if args.write_config:
        save_settings(settings_path, settings)
        print(f"Saved settings to {settings_path}")
        return

    configure_logging(settings)

    # Import late: server_init may monkey-patch for eventlet at import time.
    from server_init import run_web_server

    run_web_server(settings, limiter=None, settings_file=settings_path)


if __name__ == "__main__":
    main()
