import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from janitor import refresh_presence
from models import User
from presence import OFFLINE, ONLINE, PresenceStore
from realtime.state import ConnectionRegistry, Session


def test_online_record_written_under_both_keys(presence, fake_redis):
    assert presence.mark_online(7)

    status = json.loads(fake_redis.store["user:7:status"])
    assert status["status"] == ONLINE
    assert status["lastSeen"]
    assert fake_redis.store["user:7:presence"] == fake_redis.store["user:7:status"]
    assert fake_redis.ttls["user:7:status"] == 86400
    assert fake_redis.ttls["user:7:presence"] == 86400


def test_offline_record_carries_timestamp(presence):
    when = datetime(2026, 3, 1, 18, 30, tzinfo=timezone.utc)
    presence.mark_offline(7, when)
    assert presence.get_status(7) == {"status": OFFLINE, "lastSeen": when.isoformat()}
    assert not presence.is_online(7)


def test_missing_key_reads_offline(presence):
    assert presence.get_status(42) == {"status": OFFLINE, "lastSeen": None}


def test_unreadable_record_reads_offline(presence, fake_redis):
    fake_redis.store["user:9:status"] = "{not json"
    assert presence.get_status(9)["status"] == OFFLINE


@pytest.mark.parametrize("raw", ['"online"', "[1, 2]", "42", "null"])
def test_non_object_record_reads_offline(presence, fake_redis, raw):
    fake_redis.store["user:9:status"] = raw
    assert presence.get_status(9) == {"status": OFFLINE, "lastSeen": None}


def test_redis_outage_is_logged_not_raised(presence, fake_redis, caplog):
    fake_redis.fail = True
    assert presence.mark_online(7) is False
    assert presence.get_status(7)["status"] == OFFLINE
    assert "Presence write failed" in caplog.text


def test_ttl_is_configurable(fake_redis):
    PresenceStore(fake_redis, ttl_seconds=60).mark_online(1)
    assert fake_redis.ttls["user:1:status"] == 60


def test_keepalive_refreshes_registered_sessions(presence, fake_redis):
    registry = ConnectionRegistry()
    registry.register(Session(sid="s1", user=User(1, "a@example.com", "A", "seeker")))
    registry.register(Session(sid="s2", user=User(2, "b@example.com", "B", "lister")))

    services = SimpleNamespace(registry=registry, presence=presence)

    assert refresh_presence(services) == 2
    assert presence.is_online(1)
    assert presence.is_online(2)
