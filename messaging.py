"""messaging.py

Messaging engine: validates, persists and fans out chat messages, read
receipts and typing pings.

A message moves through ``validated -> persisted -> broadcast``; nothing is
emitted until the store has returned the saved row, and a store failure
aborts the send before any other party sees it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from constants import MAX_MESSAGE_LENGTH, MESSAGE_PREVIEW_LENGTH
from errors import AuthorizationFailure, NotFound
from models import Conversation, Message, User
from realtime.events import (
    MarkAsRead,
    MessagesRead,
    NewMessage,
    NewMessageNotification,
    SendMessage,
    Typing,
    UserTyping,
    preview,
)
from realtime.state import ConnectionRegistry, RoomDirectory, TypingThrottle, conversation_room, user_room


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessagingEngine:
    def __init__(
        self,
        store,
        registry: ConnectionRegistry,
        rooms: RoomDirectory,
        notifier,
        settings: dict | None = None,
    ):
        settings = settings or {}
        self.store = store
        self.registry = registry
        self.rooms = rooms
        self.notifier = notifier
        self.preview_length = int(settings.get("message_preview_length") or MESSAGE_PREVIEW_LENGTH)
        self.max_length = int(settings.get("max_message_length") or MAX_MESSAGE_LENGTH)
        self.typing = TypingThrottle(float(settings.get("typing_debounce_seconds", 2.0) or 0.0))

    def participant_conversation(self, conversation_id: int, user_id: int) -> Conversation:
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")
        if not conversation.has_participant(user_id):
            raise AuthorizationFailure("Access denied")
        return conversation

    def send_message(self, sender: User, request: SendMessage) -> Message:
        """Persist a message and deliver it.

        Raises NotFound / AuthorizationFailure before anything is written, and
        PersistenceFailure if the store fails (nothing broadcast in that case).
        """
        conversation = self.participant_conversation(request.conversation_id, sender.id)

        message = self.store.insert_message(
            conversation.id, sender.id, request.content, request.message_type
        )
        sent_at = message.created_at or _utcnow()

        self.rooms.broadcast(
            conversation_room(conversation.id),
            NewMessage(
                id=message.id,
                conversation_id=conversation.id,
                sender_id=sender.id,
                sender_name=sender.full_name,
                content=message.content,
                message_type=message.message_type,
                timestamp=sent_at,
                read=message.read,
            ),
        )

        recipient_id = conversation.other_participant(sender.id)
        self.rooms.broadcast(
            user_room(recipient_id),
            NewMessageNotification(
                conversation_id=conversation.id,
                sender_name=sender.full_name,
                content=preview(message.content, self.preview_length),
                timestamp=sent_at,
            ),
        )

        if not self.registry.is_connected(recipient_id):
            logging.info(
                "User %s offline; queueing email for message %s in conversation %s",
                recipient_id,
                message.id,
                conversation.id,
            )
            self.notifier.notify_new_message(recipient_id, sender.full_name, message.content)

        return message

    def mark_as_read(self, reader: User, request: MarkAsRead, sid: str | None = None) -> list[int]:
        """Flag messages read and tell the rest of the room. Returns the ids updated."""
        conversation = self.participant_conversation(request.conversation_id, reader.id)
        updated = self.store.mark_messages_read(conversation.id, list(request.message_ids), reader.id)
        self.rooms.broadcast(
            conversation_room(conversation.id),
            MessagesRead(message_ids=request.message_ids, read_by=reader.id, timestamp=_utcnow()),
            skip_sid=sid,
        )
        return updated

    def mark_conversation_read(self, reader: User, conversation_id: int) -> list[int]:
        """Flag all of the peer's unread messages read (HTTP path).

        The room hears a ``messagesRead`` only when something changed.
        """
        conversation = self.participant_conversation(conversation_id, reader.id)
        updated = self.store.mark_conversation_read(conversation.id, reader.id)
        if updated:
            self.rooms.broadcast(
                conversation_room(conversation.id),
                MessagesRead(message_ids=tuple(updated), read_by=reader.id, timestamp=_utcnow()),
            )
        return updated

    def typing_status(self, user: User, request: Typing, sid: str | None = None) -> bool:
        """Relay a typing ping to the conversation room. Returns False if throttled."""
        if not self.typing.allow(user.id, request.conversation_id, request.is_typing):
            return False
        self.rooms.broadcast(
            conversation_room(request.conversation_id),
            UserTyping(
                user_id=user.id,
                user_name=user.full_name,
                is_typing=request.is_typing,
                conversation_id=request.conversation_id,
            ),
            skip_sid=sid,
        )
        return True
