from datetime import datetime, timezone

import pytest

from errors import ValidationFailure
from realtime.events import (
    INBOUND_EVENTS,
    JoinConversation,
    MarkAsRead,
    MessagesRead,
    NewMessage,
    SendMessage,
    Typing,
    UpdateStatus,
    preview,
)


def test_preview_clamps_long_content():
    assert preview("x" * 60) == "x" * 50 + "..."
    assert preview("short") == "short"
    assert preview("y" * 50) == "y" * 50
    assert preview("abcdef", length=3) == "abc..."


@pytest.mark.parametrize("data", [123, "123", {"conversationId": 123}, {"conversationId": "123"}])
def test_join_accepts_bare_id_or_object(data):
    assert JoinConversation.parse(data).conversation_id == 123


@pytest.mark.parametrize("data", [None, "", {}, {"conversationId": 0}, "abc", True, -4])
def test_join_rejects_bad_ids(data):
    with pytest.raises(ValidationFailure):
        JoinConversation.parse(data)


def test_send_message_defaults_to_text():
    req = SendMessage.parse({"conversationId": 123, "content": "Is the room available?"})
    assert req == SendMessage(conversation_id=123, content="Is the room available?", message_type="text")


def test_send_message_validation_messages():
    with pytest.raises(ValidationFailure, match="Missing required fields"):
        SendMessage.parse({"content": "hi"})
    with pytest.raises(ValidationFailure, match="must not be empty"):
        SendMessage.parse({"conversationId": 1, "content": "   "})
    with pytest.raises(ValidationFailure, match="too long"):
        SendMessage.parse({"conversationId": 1, "content": "a" * 1001})
    with pytest.raises(ValidationFailure, match="Invalid message type"):
        SendMessage.parse({"conversationId": 1, "content": "hi", "messageType": "video"})
    with pytest.raises(ValidationFailure):
        SendMessage.parse("not a dict")


def test_send_message_limit_counts_trimmed_content():
    req = SendMessage.parse({"conversationId": 1, "content": "  " + "x" * 1000 + "   "})
    assert req.content == "x" * 1000


def test_send_message_honours_custom_limit():
    assert SendMessage.parse({"conversationId": 1, "content": "a" * 20}, max_length=20)
    with pytest.raises(ValidationFailure):
        SendMessage.parse({"conversationId": 1, "content": "a" * 21}, max_length=20)


def test_mark_as_read_dedupes_ids_in_order():
    req = MarkAsRead.parse({"conversationId": 5, "messageIds": [3, "1", 3, 2]})
    assert req.message_ids == (3, 1, 2)


def test_mark_as_read_requires_list():
    with pytest.raises(ValidationFailure):
        MarkAsRead.parse({"conversationId": 5, "messageIds": 3})
    with pytest.raises(ValidationFailure):
        MarkAsRead.parse({"conversationId": 5, "messageIds": [1, "x"]})


def test_typing_coerces_flag():
    assert Typing.parse({"conversationId": 9, "isTyping": 1}).is_typing is True
    assert Typing.parse({"conversationId": 9}).is_typing is False


def test_update_status_accepts_string_or_object():
    assert UpdateStatus.parse("away").status == "away"
    assert UpdateStatus.parse({"status": " busy "}).status == "busy"
    with pytest.raises(ValidationFailure):
        UpdateStatus.parse("")
    with pytest.raises(ValidationFailure):
        UpdateStatus.parse("x" * 65)


def test_inbound_registry_covers_client_events():
    assert set(INBOUND_EVENTS) == {
        "joinConversation",
        "leaveConversation",
        "typing",
        "sendMessage",
        "markAsRead",
        "updateStatus",
    }


def test_outbound_payloads_are_camel_case():
    ts = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    payload = NewMessage(
        id=1,
        conversation_id=123,
        sender_id=1,
        sender_name="Asha Rao",
        content="hello",
        message_type="text",
        timestamp=ts,
    ).to_payload()
    assert payload == {
        "id": 1,
        "conversationId": 123,
        "senderId": 1,
        "senderName": "Asha Rao",
        "content": "hello",
        "messageType": "text",
        "timestamp": ts.isoformat(),
        "read": False,
    }
    assert MessagesRead(message_ids=(4, 5), read_by=2, timestamp=ts).to_payload()["messageIds"] == [4, 5]
