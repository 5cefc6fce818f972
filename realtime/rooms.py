"""Socket.IO handlers: conversation room membership."""

import logging

from flask import request

from errors import AppError
from realtime.events import JoinConversation, LeaveConversation
from realtime.state import conversation_room


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""
    rooms = ctx.rooms

    @socketio.on(JoinConversation.name)
    def handle_join_conversation(data=None):
        sid = request.sid
        session = ctx._session_for(sid)
        if session is None:
            return
        try:
            req = JoinConversation.parse(data)
        except AppError as e:
            ctx._fail(sid, JoinConversation.name, e)
            return
        # Membership is not checked here; sendMessage/markAsRead are.
        rooms.join(sid, conversation_room(req.conversation_id))
        logging.info("User %s joined conversation %s", session.user_id, req.conversation_id)

    @socketio.on(LeaveConversation.name)
    def handle_leave_conversation(data=None):
        sid = request.sid
        session = ctx._session_for(sid)
        if session is None:
            return
        try:
            req = LeaveConversation.parse(data)
        except AppError as e:
            ctx._fail(sid, LeaveConversation.name, e)
            return
        rooms.leave(sid, conversation_room(req.conversation_id))
        logging.info("User %s left conversation %s", session.user_id, req.conversation_id)
