"""gunicorn_conf.py

Gunicorn config for ApnaRoom (Flask-SocketIO on eventlet workers).

    gunicorn -c gunicorn_conf.py

Environment variables:
  APNAROOM_BIND=0.0.0.0:5000
  APNAROOM_WORKERS=1                (more than one needs the message queue below)
  APNAROOM_WORKER_CONNECTIONS=1000
  APNAROOM_GUNICORN_LOGLEVEL=info
  APNAROOM_GUNICORN_TIMEOUT=60
  APNAROOM_SOCKETIO_MESSAGE_QUEUE=redis://127.0.0.1:6379/0
"""

from __future__ import annotations

import os

wsgi_app = "wsgi:app"

# wsgi.py monkey-patches before importing anything else when this is set.
raw_env = ["APNAROOM_SOCKETIO_ASYNC=eventlet"]
worker_class = "eventlet"

bind = os.environ.get("APNAROOM_BIND", "0.0.0.0:5000")
workers = int(os.environ.get("APNAROOM_WORKERS", "1"))
worker_connections = int(os.environ.get("APNAROOM_WORKER_CONNECTIONS", "1000"))

# Sockets stay open for the whole chat session.
timeout = int(os.environ.get("APNAROOM_GUNICORN_TIMEOUT", "60"))
keepalive = int(os.environ.get("APNAROOM_GUNICORN_KEEPALIVE", "5"))

loglevel = os.environ.get("APNAROOM_GUNICORN_LOGLEVEL", "info")
accesslog = os.environ.get("APNAROOM_GUNICORN_ACCESSLOG", "-")
errorlog = os.environ.get("APNAROOM_GUNICORN_ERRORLOG", "-")

forwarded_allow_ips = os.environ.get("APNAROOM_FORWARDED_ALLOW_IPS", "127.0.0.1")


def when_ready(server):
    if workers > 1 and not os.environ.get("APNAROOM_SOCKETIO_MESSAGE_QUEUE"):
        server.log.warning(
            "%d workers without APNAROOM_SOCKETIO_MESSAGE_QUEUE: room broadcasts "
            "will not reach sockets held by other workers",
            workers,
        )
