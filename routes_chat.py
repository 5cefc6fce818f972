#!/usr/bin/env python3
"""routes_chat.py

Chat-related HTTP endpoints.

Notes:
  - Typing goes over Socket.IO only. Sending and read receipts have an HTTP
    form as well; both run through the same MessagingEngine as the socket
    handlers, so room members still get newMessage / messagesRead.
  - The rest covers what a client needs before and around a live session:
    its conversation list, creating a conversation, history and a peer's
    presence.
  - Conversation ids handed out here are what clients later pass to
    joinConversation.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from errors import NotFound, ValidationFailure
from permissions import current_user, login_required, services
from realtime.events import SendMessage


chat_bp = Blueprint("chat", __name__)

MAX_HISTORY_PAGE = 100


def _positive_int(val, field: str, *, required: bool = True):
    if val is None or val == "":
        if required:
            raise ValidationFailure(f"Invalid {field}")
        return None
    if isinstance(val, bool):
        raise ValidationFailure(f"Invalid {field}")
    try:
        out = int(str(val).strip())
    except ValueError:
        raise ValidationFailure(f"Invalid {field}") from None
    if out < 1:
        raise ValidationFailure(f"Invalid {field}")
    return out


@chat_bp.route("/api/conversations", methods=["GET"])
@login_required
def list_conversations():
    user = current_user()
    conversations = services().store.list_conversations(user.id)
    return jsonify({"success": True, "data": [c.to_dict(viewer_id=user.id) for c in conversations]})


@chat_bp.route("/api/conversations", methods=["POST"])
@login_required
def create_conversation():
    """Open (or fetch) the conversation between the caller and participantId.

    201 when a new row was created, 200 when the pair already had one.
    """
    user = current_user()
    svc = services()
    body = request.get_json(silent=True) or {}

    participant_id = _positive_int(body.get("participantId"), "participant ID")
    listing_id = _positive_int(body.get("listingId"), "listing ID", required=False)

    if participant_id == user.id:
        raise ValidationFailure("Cannot create conversation with yourself")
    if svc.store.get_user(participant_id) is None:
        raise NotFound("User not found")
    if listing_id is not None and svc.store.get_listing(listing_id) is None:
        raise NotFound("Listing not found")

    conversation, created = svc.store.create_conversation(user.id, participant_id, listing_id)
    payload = {
        "success": True,
        "data": conversation.to_dict(viewer_id=user.id),
        "message": "Conversation created successfully" if created else "Conversation already exists",
    }
    return jsonify(payload), (201 if created else 200)


@chat_bp.route("/api/conversations/<int:conversation_id>/messages", methods=["GET"])
@login_required
def conversation_messages(conversation_id: int):
    user = current_user()
    svc = services()
    conversation = svc.engine.participant_conversation(conversation_id, user.id)

    limit = _positive_int(request.args.get("limit"), "limit", required=False) or 50
    limit = min(limit, MAX_HISTORY_PAGE)
    before = _positive_int(request.args.get("before"), "before", required=False)

    messages = svc.store.list_messages(conversation.id, limit=limit, before_id=before)
    return jsonify({"success": True, "data": [m.to_dict() for m in messages]})


@chat_bp.route("/api/conversations/<int:conversation_id>/messages", methods=["POST"])
@login_required
def send_message(conversation_id: int):
    engine = services().engine
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        body = {}
    req = SendMessage.parse({**body, "conversationId": conversation_id}, max_length=engine.max_length)
    message = engine.send_message(current_user(), req)
    payload = {"success": True, "data": message.to_dict(), "message": "Message sent successfully"}
    return jsonify(payload), 201


@chat_bp.route("/api/conversations/<int:conversation_id>/read", methods=["PATCH"])
@login_required
def mark_conversation_read(conversation_id: int):
    updated = services().engine.mark_conversation_read(current_user(), conversation_id)
    return jsonify(
        {"success": True, "data": {"messageIds": updated}, "message": "Messages marked as read"}
    )


@chat_bp.route("/api/users/<int:user_id>/status", methods=["GET"])
@login_required
def user_status(user_id: int):
    svc = services()
    record = svc.presence.get_status(user_id)
    session = svc.registry.get(user_id)
    data = {
        "userId": user_id,
        "status": record.get("status"),
        "lastSeen": record.get("lastSeen"),
        "connected": session is not None,
    }
    if session is not None and session.status:
        data["customStatus"] = session.status
    return jsonify({"success": True, "data": data})
