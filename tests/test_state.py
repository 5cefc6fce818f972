from datetime import datetime
from types import SimpleNamespace

from models import User
from realtime.events import ErrorEvent, UserOffline
from realtime.state import (
    ConnectionRegistry,
    RoomDirectory,
    Session,
    TypingThrottle,
    conversation_room,
    user_room,
)


ASHA = User(id=1, email="asha@example.com", full_name="Asha Rao", user_type="seeker")


class RecordingServer:
    def __init__(self):
        self.calls = []

    def enter_room(self, sid, room, namespace="/"):
        self.calls.append(("enter", sid, room))

    def leave_room(self, sid, room, namespace="/"):
        self.calls.append(("leave", sid, room))


class RecordingSocketIO:
    def __init__(self):
        self.server = RecordingServer()
        self.emitted = []

    def emit(self, event, payload, to=None, skip_sid=None, namespace=None):
        self.emitted.append(SimpleNamespace(event=event, payload=payload, to=to, skip_sid=skip_sid))


def test_room_names():
    assert user_room(7) == "user:7"
    assert conversation_room(123) == "conversation:123"


def test_register_replaces_previous_session():
    reg = ConnectionRegistry()
    first = Session(sid="s1", user=ASHA)
    second = Session(sid="s2", user=ASHA)

    assert reg.register(first) is None
    assert reg.register(second) is first
    assert reg.get(1) is second
    assert len(reg) == 1
    assert reg.for_sid("s1") is first
    assert reg.is_current("s2")
    assert not reg.is_current("s1")


def test_superseded_socket_does_not_evict_newer_session():
    reg = ConnectionRegistry()
    reg.register(Session(sid="s1", user=ASHA))
    reg.register(Session(sid="s2", user=ASHA))

    assert reg.unregister(1, "s1") is None
    assert reg.is_connected(1)
    assert reg.for_sid("s1") is None

    assert reg.unregister(1, "s2").sid == "s2"
    assert not reg.is_connected(1)
    assert reg.online_user_ids() == []


def test_room_directory_mirrors_membership():
    sio = RecordingSocketIO()
    rooms = RoomDirectory(sio)
    rooms.join("s1", "conversation:1")
    rooms.join("s1", "user:1")
    rooms.join("s2", "conversation:1")

    assert rooms.members("conversation:1") == {"s1", "s2"}
    assert rooms.rooms_of("s1") == {"conversation:1", "user:1"}

    rooms.leave("s2", "conversation:1")
    assert rooms.members("conversation:1") == {"s1"}

    left = rooms.leave_all("s1")
    assert sorted(left) == ["conversation:1", "user:1"]
    assert rooms.members("conversation:1") == set()
    assert ("enter", "s2", "conversation:1") in sio.server.calls


def test_room_directory_emits_event_variants():
    sio = RecordingSocketIO()
    rooms = RoomDirectory(sio)
    ts = datetime(2026, 3, 1)

    rooms.broadcast("conversation:1", UserOffline(user_id=1, timestamp=ts), skip_sid="s1")
    rooms.send("s2", ErrorEvent(message="Access denied"))

    first, second = sio.emitted
    assert (first.event, first.to, first.skip_sid) == ("userOffline", "conversation:1", "s1")
    assert first.payload == {"userId": 1, "timestamp": ts.isoformat()}
    assert (second.event, second.to, second.payload) == ("error", "s2", {"message": "Access denied"})


def test_typing_throttle_drops_repeats_inside_window():
    now = [100.0]
    throttle = TypingThrottle(interval=2.0, clock=lambda: now[0])

    assert throttle.allow(1, 9, True)
    now[0] = 101.0
    assert not throttle.allow(1, 9, True)
    # other conversation, other user: independent
    assert throttle.allow(1, 10, True)
    assert throttle.allow(2, 9, True)
    # stop always passes and resets
    assert throttle.allow(1, 9, False)
    assert throttle.allow(1, 9, True)
    now[0] = 103.5
    assert throttle.allow(1, 9, True)


def test_typing_throttle_forget_user():
    throttle = TypingThrottle(interval=60.0, clock=lambda: 0.0)
    throttle.allow(1, 9, True)
    throttle.forget_user(1)
    assert throttle.allow(1, 9, True)
