from contextlib import contextmanager
from datetime import datetime, timezone

import pytest

import database


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class ScriptedCursor:
    """Records statements and hands back canned results in order."""

    def __init__(self, results):
        self.results = list(results)
        self.statements: list[tuple[str, tuple]] = []
        self.rowcount = 0

    def execute(self, sql, params=()):
        self.statements.append((" ".join(sql.split()), tuple(params)))

    def fetchone(self):
        return self.results.pop(0)

    def fetchall(self):
        return self.results.pop(0)


@pytest.fixture
def scripted(monkeypatch):
    """Route PostgresStore through ScriptedCursor; returns the opened transactions."""
    transactions = []

    def _install(*results):
        cursor = ScriptedCursor(results)

        @contextmanager
        def _fake_cursor(action):
            transactions.append(action)
            yield cursor

        monkeypatch.setattr(database, "_cursor", _fake_cursor)
        return cursor

    _install.transactions = transactions
    return _install


def test_insert_message_touches_conversation_in_same_transaction(scripted):
    row = {
        "id": 5,
        "conversation_id": 123,
        "sender_id": 1,
        "content": "hello",
        "message_type": "text",
        "read_status": False,
        "created_at": T0,
    }
    cur = scripted(row)

    message = database.PostgresStore().insert_message(123, 1, "hello", "text")

    assert message.id == 5
    assert scripted.transactions == ["send message"]
    assert len(cur.statements) == 2
    assert cur.statements[0][0].startswith("INSERT INTO messages")
    assert cur.statements[1][0].startswith("UPDATE conversations SET last_message_at")
    assert cur.statements[1][1] == (T0, 123)


def test_list_matches_counts_rows_when_page_is_past_the_end(scripted):
    cur = scripted([], {"total_count": 3})

    page, total = database.PostgresStore().list_matches(seeker_id=1, offset=20, limit=10)

    assert page == []
    assert total == 3
    assert cur.statements[1][0].startswith("SELECT COUNT(*) AS total_count FROM matches m")
    assert cur.statements[1][1] == (None, None, None, None, 1)


def test_list_matches_takes_total_from_window_count(scripted):
    rows = [{"id": 1, "seeker_id": 1, "listing_id": 10, "compatibility_score": 88, "total_count": 4}]
    cur = scripted(rows)

    page, total = database.PostgresStore().list_matches(seeker_id=1)

    assert [m.id for m in page] == [1]
    assert total == 4
    assert len(cur.statements) == 1


def test_list_matches_first_page_empty_skips_count(scripted):
    cur = scripted([])

    assert database.PostgresStore().list_matches(lister_id=2) == ([], 0)
    assert len(cur.statements) == 1
