"""Shared in-memory state for the Socket.IO handlers.

Nothing here is persisted: the registry and the room directory are rebuilt
from scratch every time the process starts. Both objects are created by the
app factory and handed to the handler modules and the messaging engine.

Writers: only the gateway handlers (connect/disconnect/join/leave) mutate
these. The messaging engine reads them to pick delivery targets.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from models import User


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def conversation_room(conversation_id: int) -> str:
    return f"conversation:{conversation_id}"


@dataclass
class Session:
    """One authenticated live socket."""

    sid: str
    user: User
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: Optional[str] = None
    status_updated_at: Optional[datetime] = None

    @property
    def user_id(self) -> int:
        return self.user.id


class ConnectionRegistry:
    """user id -> active Session. At most one session per user (last connect wins).

    Every authenticated socket is also indexed by sid, so a superseded socket
    can still be resolved to its user until it disconnects.
    """

    def __init__(self):
        self._by_user: dict[int, Session] = {}
        self._by_sid: dict[str, Session] = {}
        self._lock = threading.Lock()

    def register(self, session: Session) -> Optional[Session]:
        """Store ``session``; return the session it replaced, if any."""
        with self._lock:
            previous = self._by_user.get(session.user_id)
            self._by_user[session.user_id] = session
            self._by_sid[session.sid] = session
        return previous

    def unregister(self, user_id: int, sid: str) -> Optional[Session]:
        """Drop the user's session only if it is still ``sid``.

        A socket that was superseded by a newer connect must not evict the
        newer one when it finally closes.
        """
        with self._lock:
            self._by_sid.pop(sid, None)
            current = self._by_user.get(user_id)
            if current is None or current.sid != sid:
                return None
            del self._by_user[user_id]
        return current

    def get(self, user_id: int) -> Optional[Session]:
        with self._lock:
            return self._by_user.get(user_id)

    def for_sid(self, sid: str) -> Optional[Session]:
        with self._lock:
            return self._by_sid.get(sid)

    def is_current(self, sid: str) -> bool:
        """True if ``sid`` is the registered session of its user."""
        with self._lock:
            session = self._by_sid.get(sid)
            return session is not None and self._by_user.get(session.user_id) is session

    def is_connected(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._by_user

    def online_user_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._by_user)

    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._by_user.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_user)


class RoomDirectory:
    """Named fan-out groups of sockets.

    Membership is mirrored here so it can be inspected, while delivery goes
    through the Socket.IO server manager. With a message queue configured,
    Flask-SocketIO relays ``broadcast`` to sockets held by other processes.
    """

    def __init__(self, socketio, namespace: str = "/"):
        self._socketio = socketio
        self._namespace = namespace
        self._members: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def join(self, sid: str, room: str) -> None:
        self._socketio.server.enter_room(sid, room, namespace=self._namespace)
        with self._lock:
            self._members.setdefault(room, set()).add(sid)

    def leave(self, sid: str, room: str) -> None:
        self._socketio.server.leave_room(sid, room, namespace=self._namespace)
        self._forget(sid, room)

    def leave_all(self, sid: str) -> list[str]:
        """Forget every room ``sid`` was in (the server drops them itself on disconnect)."""
        with self._lock:
            rooms = [r for r, sids in self._members.items() if sid in sids]
        for room in rooms:
            self._forget(sid, room)
        return rooms

    def _forget(self, sid: str, room: str) -> None:
        with self._lock:
            sids = self._members.get(room)
            if not sids:
                return
            sids.discard(sid)
            if not sids:
                del self._members[room]

    def members(self, room: str) -> set[str]:
        with self._lock:
            return set(self._members.get(room) or ())

    def rooms_of(self, sid: str) -> set[str]:
        with self._lock:
            return {r for r, sids in self._members.items() if sid in sids}

    def broadcast(self, room: str, event, skip_sid: str | None = None) -> None:
        """Emit an outbound event variant to everyone in ``room``."""
        self._socketio.emit(
            event.name, event.to_payload(), to=room, skip_sid=skip_sid, namespace=self._namespace
        )

    def broadcast_all(self, event, skip_sid: str | None = None) -> None:
        self._socketio.emit(event.name, event.to_payload(), skip_sid=skip_sid, namespace=self._namespace)

    def send(self, sid: str, event) -> None:
        self._socketio.emit(event.name, event.to_payload(), to=sid, namespace=self._namespace)


class TypingThrottle:
    """Drops repeated "is typing" pings from the same user in the same
    conversation inside ``interval`` seconds. Stops are never dropped."""

    def __init__(self, interval: float = 2.0, clock=time.monotonic):
        self.interval = max(0.0, float(interval))
        self._clock = clock
        self._last: dict[tuple[int, int], float] = {}
        self._lock = threading.Lock()

    def allow(self, user_id: int, conversation_id: int, is_typing: bool) -> bool:
        key = (user_id, conversation_id)
        now = self._clock()
        with self._lock:
            if not is_typing:
                self._last.pop(key, None)
                return True
            last = self._last.get(key)
            if last is not None and (now - last) < self.interval:
                return False
            self._last[key] = now
            return True

    def forget_user(self, user_id: int) -> None:
        with self._lock:
            for key in [k for k in self._last if k[0] == user_id]:
                del self._last[key]
