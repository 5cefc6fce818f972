"""presence.py

Online/offline presence cache (Redis).

Each write stores the same JSON record under two keys, both with an expiry:

    user:<id>:status    {"status": "online", "lastSeen": "2026-..."}
    user:<id>:presence  (same payload)

Reads fall back to offline when the key is missing or expired. Redis errors
surface internally as TransientInfrastructureFailure; the public methods log
it and degrade (False on write, offline on read) so an outage can never block
a connect, a disconnect or a message send.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

import redis

from constants import DEFAULT_REDIS_URL, PRESENCE_TTL_SECONDS
from errors import TransientInfrastructureFailure


ONLINE = "online"
OFFLINE = "offline"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_redis_client(url: str | None) -> redis.Redis:
    """Lazy client; no connection is attempted until the first command."""
    return redis.Redis.from_url(
        url or DEFAULT_REDIS_URL,
        socket_connect_timeout=1,
        socket_timeout=1,
        health_check_interval=30,
        decode_responses=True,
    )


class PresenceStore:
    def __init__(self, client, ttl_seconds: int = PRESENCE_TTL_SECONDS):
        self._client = client
        self.ttl_seconds = max(1, int(ttl_seconds))

    @staticmethod
    def _keys(user_id: int) -> tuple[str, str]:
        return f"user:{user_id}:status", f"user:{user_id}:presence"

    def _write(self, user_id: int, record: str) -> None:
        try:
            for key in self._keys(user_id):
                self._client.setex(key, self.ttl_seconds, record)
        except redis.RedisError as e:
            raise TransientInfrastructureFailure(f"Presence cache unavailable: {e}") from e

    def _read(self, user_id: int):
        key, _ = self._keys(user_id)
        try:
            return self._client.get(key)
        except redis.RedisError as e:
            raise TransientInfrastructureFailure(f"Presence cache unavailable: {e}") from e

    def set_status(self, user_id: int, status: str, when: datetime | None = None) -> bool:
        """Write a presence record. Returns False (and logs) if Redis is unreachable."""
        record = json.dumps({"status": status, "lastSeen": (when or _utcnow()).isoformat()})
        try:
            self._write(user_id, record)
        except TransientInfrastructureFailure as e:
            logging.warning("Presence write failed for user %s (%s): %s", user_id, status, e)
            return False
        return True

    def mark_online(self, user_id: int) -> bool:
        return self.set_status(user_id, ONLINE)

    def mark_offline(self, user_id: int, when: datetime | None = None) -> bool:
        return self.set_status(user_id, OFFLINE, when=when)

    def get_status(self, user_id: int) -> dict:
        """Return {"status", "lastSeen"}; offline when absent, expired or unreadable."""
        offline = {"status": OFFLINE, "lastSeen": None}
        try:
            raw = self._read(user_id)
        except TransientInfrastructureFailure as e:
            logging.warning("Presence read failed for user %s: %s", user_id, e)
            return offline
        if not raw:
            return offline
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return offline
        if not isinstance(data, dict):
            return offline
        status = data.get("status") if data.get("status") in {ONLINE, OFFLINE} else OFFLINE
        return {"status": status, "lastSeen": data.get("lastSeen")}

    def is_online(self, user_id: int) -> bool:
        return self.get_status(user_id)["status"] == ONLINE
