"""Socket.IO handlers: messages, read receipts and typing.

Payloads are parsed here; everything else is the messaging engine's job.
"""

import logging

from flask import request

from errors import AppError, PersistenceFailure
from realtime.events import MarkAsRead, SendMessage, Typing


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""
    engine = ctx.engine

    @socketio.on(SendMessage.name)
    def handle_send_message(data=None):
        sid = request.sid
        session = ctx._session_for(sid)
        if session is None:
            return
        try:
            req = SendMessage.parse(data, max_length=engine.max_length)
            message = engine.send_message(session.user, req)
        except PersistenceFailure as e:
            logging.error("sendMessage from user %s failed: %s", session.user_id, e.message)
            ctx._emit_error(sid, "Failed to send message")
            return
        except AppError as e:
            ctx._fail(sid, SendMessage.name, e)
            return
        logging.info(
            "Message %s sent by user %s in conversation %s",
            message.id,
            session.user_id,
            message.conversation_id,
        )

    @socketio.on(MarkAsRead.name)
    def handle_mark_as_read(data=None):
        sid = request.sid
        session = ctx._session_for(sid)
        if session is None:
            return
        try:
            req = MarkAsRead.parse(data)
            engine.mark_as_read(session.user, req, sid=sid)
        except PersistenceFailure as e:
            logging.error("markAsRead from user %s failed: %s", session.user_id, e.message)
            ctx._emit_error(sid, "Failed to mark messages as read")
        except AppError as e:
            ctx._fail(sid, MarkAsRead.name, e)

    @socketio.on(Typing.name)
    def handle_typing(data=None):
        sid = request.sid
        session = ctx._session_for(sid)
        if session is None:
            return
        try:
            req = Typing.parse(data)
        except AppError as e:
            ctx._fail(sid, Typing.name, e)
            return
        engine.typing_status(session.user, req, sid=sid)
