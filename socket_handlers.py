#!/usr/bin/env python3
"""
socket_handlers.py

Socket.IO wiring for the ApnaRoom realtime gateway.

The handlers themselves live in realtime/*.py; this module builds the shared
context (collaborators plus a few helpers) and hands it to each of them.
"""

import logging
from types import SimpleNamespace

from errors import AppError
from realtime.events import ErrorEvent


def register_socketio_handlers(socketio, settings, services):
    """
    Registers all Socket.IO event handlers.

    ``services`` carries store, registry, rooms, presence and engine, as built
    by server_init.create_app.
    """
    registry = services.registry
    rooms = services.rooms

    def _session_for(sid: str):
        """Authenticated session behind ``sid`` (superseded sockets included)."""
        return registry.for_sid(sid)

    def _emit_error(sid: str, message: str) -> None:
        rooms.send(sid, ErrorEvent(message=message))

    def _fail(sid: str, event: str, err: AppError) -> None:
        logging.info("Socket event %s from %s refused: %s", event, sid, err.message)
        _emit_error(sid, err.message)

    ctx = SimpleNamespace(
        store=services.store,
        registry=registry,
        rooms=rooms,
        presence=services.presence,
        engine=services.engine,
        _session_for=_session_for,
        _emit_error=_emit_error,
        _fail=_fail,
    )

    from realtime import messages, presence, rooms as room_handlers
    presence.register(socketio, settings, ctx)
    room_handlers.register(socketio, settings, ctx)
    messages.register(socketio, settings, ctx)
    return ctx
