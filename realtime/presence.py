"""Socket.IO handlers: connection lifecycle and presence.

connect / disconnect / updateStatus.
"""

import logging
from datetime import datetime, timezone

from flask import request
from flask_socketio import ConnectionRefusedError

from errors import AppError, AuthenticationFailure
from realtime.events import UpdateStatus, UserOffline, UserStatusUpdate
from realtime.state import Session, user_room
from security import authenticate_token, token_from_handshake


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""
    registry = ctx.registry
    rooms = ctx.rooms
    presence = ctx.presence
    engine = ctx.engine

    @socketio.on("connect")
    def handle_connect(auth=None):
        sid = request.sid
        try:
            user = authenticate_token(token_from_handshake(auth, request.headers), ctx.store)
        except AuthenticationFailure as e:
            logging.info("Socket connect refused (%s): %s", sid, e.message)
            raise ConnectionRefusedError(e.message)
        except AppError as e:
            # store unavailable: refuse rather than admit an unverified socket
            logging.error("Socket connect failed (%s): %s", sid, e.message)
            raise ConnectionRefusedError("Authentication failed")

        previous = registry.register(Session(sid=sid, user=user))
        rooms.join(sid, user_room(user.id))
        presence.mark_online(user.id)

        if previous is not None and previous.sid != sid:
            logging.info("User %s reconnected (%s supersedes %s)", user.id, sid, previous.sid)
        logging.info("User connected: %s (%s) sid=%s", user.full_name, user.id, sid)

    @socketio.on("disconnect")
    def handle_disconnect(*args, **kwargs):
        # Socket.IO may pass a reason depending on version.
        sid = request.sid
        session = ctx._session_for(sid)
        if session is None:
            rooms.leave_all(sid)
            return

        user_id = session.user_id
        current = registry.unregister(user_id, sid)
        rooms.leave_all(sid)
        if current is None:
            logging.info("Superseded socket %s of user %s closed", sid, user_id)
            return

        now = datetime.now(timezone.utc)
        presence.mark_offline(user_id, now)
        engine.typing.forget_user(user_id)
        rooms.broadcast_all(UserOffline(user_id=user_id, timestamp=now), skip_sid=sid)
        logging.info("User disconnected: %s (%s)", session.user.full_name, user_id)

    @socketio.on("updateStatus")
    def handle_update_status(data=None):
        sid = request.sid
        if not registry.is_current(sid):
            return
        try:
            req = UpdateStatus.parse(data)
        except AppError as e:
            ctx._fail(sid, UpdateStatus.name, e)
            return

        session = ctx._session_for(sid)
        now = datetime.now(timezone.utc)
        session.status = req.status
        session.status_updated_at = now
        rooms.broadcast_all(
            UserStatusUpdate(user_id=session.user_id, status=req.status, timestamp=now),
            skip_sid=sid,
        )
