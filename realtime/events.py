"""Socket.IO event variants (both directions).

Inbound payloads are parsed into frozen dataclasses at the gateway, so the
messaging engine never touches raw client dicts. Outbound events are built
from dataclasses too; ``to_payload()`` gives the camelCase wire shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Union

from constants import MAX_MESSAGE_LENGTH, MESSAGE_PREVIEW_LENGTH
from errors import ValidationFailure
from models import MESSAGE_TYPES


def preview(content: str, length: int = MESSAGE_PREVIEW_LENGTH) -> str:
    """Clamp content to ``length`` characters, marking the cut with '...'."""
    content = content or ""
    if len(content) > length:
        return content[:length] + "..."
    return content


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts else None


def _positive_int(val: Any, field: str) -> int:
    if isinstance(val, bool):
        raise ValidationFailure(f"Invalid {field}")
    try:
        out = int(str(val).strip())
    except (TypeError, ValueError):
        raise ValidationFailure(f"Invalid {field}") from None
    if out < 1:
        raise ValidationFailure(f"Invalid {field}")
    return out


def _as_dict(data: Any) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailure("Invalid payload")
    return data


def _conversation_ref(data: Any) -> int:
    """joinConversation/leaveConversation accept a bare id or {conversationId}."""
    if isinstance(data, dict):
        data = data.get("conversationId")
    if data is None or data == "":
        raise ValidationFailure("Missing conversationId")
    return _positive_int(data, "conversationId")


# ─────────────────────────────────────────────────────────────────────
# Client → server
# ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class JoinConversation:
    name: ClassVar[str] = "joinConversation"
    conversation_id: int

    @classmethod
    def parse(cls, data: Any) -> "JoinConversation":
        return cls(conversation_id=_conversation_ref(data))


@dataclass(frozen=True)
class LeaveConversation:
    name: ClassVar[str] = "leaveConversation"
    conversation_id: int

    @classmethod
    def parse(cls, data: Any) -> "LeaveConversation":
        return cls(conversation_id=_conversation_ref(data))


@dataclass(frozen=True)
class Typing:
    name: ClassVar[str] = "typing"
    conversation_id: int
    is_typing: bool

    @classmethod
    def parse(cls, data: Any) -> "Typing":
        data = _as_dict(data)
        if data.get("conversationId") in (None, ""):
            raise ValidationFailure("Missing conversationId")
        return cls(
            conversation_id=_positive_int(data.get("conversationId"), "conversationId"),
            is_typing=bool(data.get("isTyping", False)),
        )


@dataclass(frozen=True)
class SendMessage:
    name: ClassVar[str] = "sendMessage"
    conversation_id: int
    content: str
    message_type: str = "text"

    @classmethod
    def parse(cls, data: Any, max_length: int = MAX_MESSAGE_LENGTH) -> "SendMessage":
        data = _as_dict(data)
        conversation_id = data.get("conversationId")
        content = data.get("content")
        if conversation_id in (None, "") or content is None:
            raise ValidationFailure("Missing required fields")
        if not isinstance(content, str) or not content.strip():
            raise ValidationFailure("Message content must not be empty")
        content = content.strip()
        if len(content) > max_length:
            raise ValidationFailure(f"Message content too long (max {max_length})")
        message_type = data.get("messageType") or "text"
        if message_type not in MESSAGE_TYPES:
            raise ValidationFailure("Invalid message type")
        return cls(
            conversation_id=_positive_int(conversation_id, "conversationId"),
            content=content,
            message_type=message_type,
        )


@dataclass(frozen=True)
class MarkAsRead:
    name: ClassVar[str] = "markAsRead"
    conversation_id: int
    message_ids: tuple[int, ...]

    @classmethod
    def parse(cls, data: Any) -> "MarkAsRead":
        data = _as_dict(data)
        ids = data.get("messageIds")
        if data.get("conversationId") in (None, "") or not isinstance(ids, (list, tuple)):
            raise ValidationFailure("Missing required fields")
        # dedupe, keep client order
        parsed = tuple(dict.fromkeys(_positive_int(i, "messageIds") for i in ids))
        return cls(
            conversation_id=_positive_int(data.get("conversationId"), "conversationId"),
            message_ids=parsed,
        )


@dataclass(frozen=True)
class UpdateStatus:
    name: ClassVar[str] = "updateStatus"
    status: str

    @classmethod
    def parse(cls, data: Any) -> "UpdateStatus":
        if isinstance(data, dict):
            data = data.get("status")
        if data is None:
            raise ValidationFailure("Missing status")
        status = str(data).strip()
        if not status or len(status) > 64:
            raise ValidationFailure("Invalid status")
        return cls(status=status)


InboundEvent = Union[JoinConversation, LeaveConversation, Typing, SendMessage, MarkAsRead, UpdateStatus]

INBOUND_EVENTS = {
    cls.name: cls
    for cls in (JoinConversation, LeaveConversation, Typing, SendMessage, MarkAsRead, UpdateStatus)
}


# ─────────────────────────────────────────────────────────────────────
# Server → client
# ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NewMessage:
    name: ClassVar[str] = "newMessage"
    id: int
    conversation_id: int
    sender_id: int
    sender_name: str
    content: str
    message_type: str
    timestamp: datetime | None
    read: bool = False

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "senderId": self.sender_id,
            "senderName": self.sender_name,
            "content": self.content,
            "messageType": self.message_type,
            "timestamp": _iso(self.timestamp),
            "read": self.read,
        }


@dataclass(frozen=True)
class NewMessageNotification:
    name: ClassVar[str] = "newMessageNotification"
    conversation_id: int
    sender_name: str
    content: str
    timestamp: datetime | None

    def to_payload(self) -> dict:
        return {
            "conversationId": self.conversation_id,
            "senderName": self.sender_name,
            "content": self.content,
            "timestamp": _iso(self.timestamp),
        }


@dataclass(frozen=True)
class UserTyping:
    name: ClassVar[str] = "userTyping"
    user_id: int
    user_name: str
    is_typing: bool
    conversation_id: int

    def to_payload(self) -> dict:
        return {
            "userId": self.user_id,
            "userName": self.user_name,
            "isTyping": self.is_typing,
            "conversationId": self.conversation_id,
        }


@dataclass(frozen=True)
class MessagesRead:
    name: ClassVar[str] = "messagesRead"
    message_ids: tuple[int, ...]
    read_by: int
    timestamp: datetime

    def to_payload(self) -> dict:
        return {
            "messageIds": list(self.message_ids),
            "readBy": self.read_by,
            "timestamp": _iso(self.timestamp),
        }


@dataclass(frozen=True)
class UserStatusUpdate:
    name: ClassVar[str] = "userStatusUpdate"
    user_id: int
    status: str
    timestamp: datetime

    def to_payload(self) -> dict:
        return {"userId": self.user_id, "status": self.status, "timestamp": _iso(self.timestamp)}


@dataclass(frozen=True)
class UserOffline:
    name: ClassVar[str] = "userOffline"
    user_id: int
    timestamp: datetime

    def to_payload(self) -> dict:
        return {"userId": self.user_id, "timestamp": _iso(self.timestamp)}


@dataclass(frozen=True)
class ErrorEvent:
    name: ClassVar[str] = "error"
    message: str

    def to_payload(self) -> dict:
        return {"message": self.message}


OutboundEvent = Union[
    NewMessage,
    NewMessageNotification,
    UserTyping,
    MessagesRead,
    UserStatusUpdate,
    UserOffline,
    ErrorEvent,
]
