import itertools
from datetime import datetime, timedelta, timezone

import pytest
import redis

from errors import PersistenceFailure
from models import Conversation, Listing, Match, Message, SavedListing, SeekerPreferences, User
from presence import PresenceStore


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False

    def setex(self, key: str, ttl: int, value: str) -> bool:
        if self.fail:
            raise redis.ConnectionError("redis down")
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def get(self, key: str):
        if self.fail:
            raise redis.ConnectionError("redis down")
        return self.store.get(key)


class FakeStore:
    """In-memory stand-in for database.PostgresStore."""

    def __init__(self):
        self.users: dict[int, User] = {}
        self.listings: dict[int, Listing] = {}
        self.preferences: dict[int, SeekerPreferences] = {}
        self.conversations: dict[int, Conversation] = {}
        self.messages: dict[int, Message] = {}
        self.matches: dict[int, Match] = {}
        self.saved: dict[int, SavedListing] = {}
        self.fail_inserts = False
        self.healthy = True
        self._clock = itertools.count(1)

    def _now(self) -> datetime:
        return T0 + timedelta(seconds=next(self._clock))

    # seeding helpers
    def add_user(self, user_id, full_name, user_type="seeker", email=None, verification_status="verified"):
        user = User(
            id=user_id,
            email=email or f"user{user_id}@example.com",
            full_name=full_name,
            user_type=user_type,
            verification_status=verification_status,
        )
        self.users[user_id] = user
        return user

    def add_listing(self, listing_id, lister_id, location="Koramangala, Bangalore", rent=15000.0,
                    room_type="private", gender_preference="any"):
        listing = Listing(
            id=listing_id,
            lister_id=lister_id,
            location=location,
            rent_amount=rent,
            room_type=room_type,
            gender_preference=gender_preference,
            title=f"Listing {listing_id}",
        )
        self.listings[listing_id] = listing
        return listing

    def add_conversation(self, conversation_id, a, b, listing_id=None):
        conv = Conversation(id=conversation_id, participant1_id=a, participant2_id=b,
                            listing_id=listing_id, created_at=self._now())
        self.conversations[conversation_id] = conv
        return conv

    # store interface
    def ping(self):
        return self.healthy

    def get_user(self, user_id):
        return self.users.get(user_id)

    def get_listing(self, listing_id):
        return self.listings.get(listing_id)

    def get_seeker_preferences(self, user_id):
        return self.preferences.get(user_id)

    def get_conversation(self, conversation_id):
        return self.conversations.get(conversation_id)

    def find_conversation(self, a, b):
        for conv in self.conversations.values():
            if conv.participants == frozenset((a, b)):
                return conv
        return None

    def create_conversation(self, a, b, listing_id=None):
        existing = self.find_conversation(a, b)
        if existing is not None:
            return existing, False
        conv_id = max(self.conversations, default=0) + 1
        return self.add_conversation(conv_id, a, b, listing_id), True

    def list_conversations(self, user_id):
        mine = [c for c in self.conversations.values() if c.has_participant(user_id)]
        return sorted(mine, key=lambda c: (c.last_message_at or T0, c.id), reverse=True)

    def insert_message(self, conversation_id, sender_id, content, message_type):
        if self.fail_inserts:
            raise PersistenceFailure("Failed to send message")
        msg_id = max(self.messages, default=0) + 1
        msg = Message(
            id=msg_id,
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            created_at=self._now(),
        )
        self.messages[msg_id] = msg
        self.conversations[conversation_id].last_message_at = msg.created_at
        return msg

    def mark_messages_read(self, conversation_id, message_ids, reader_id):
        updated = []
        for mid in message_ids:
            msg = self.messages.get(mid)
            if msg is None or msg.conversation_id != conversation_id or msg.sender_id == reader_id:
                continue
            msg.read = True
            updated.append(mid)
        return updated

    def mark_conversation_read(self, conversation_id, reader_id):
        updated = []
        for msg in self.messages.values():
            if msg.conversation_id == conversation_id and msg.sender_id != reader_id and not msg.read:
                msg.read = True
                updated.append(msg.id)
        return sorted(updated)

    def list_messages(self, conversation_id, limit=50, before_id=None):
        rows = [m for m in self.messages.values() if m.conversation_id == conversation_id]
        if before_id is not None:
            rows = [m for m in rows if m.id < before_id]
        rows.sort(key=lambda m: m.id)
        return rows[-limit:]

    def upsert_match(self, seeker_id, listing_id, score, reset_status=True):
        for match in self.matches.values():
            if match.seeker_id == seeker_id and match.listing_id == listing_id:
                match.compatibility_score = round(float(score), 2)
                if reset_status:
                    match.status = "pending"
                match.updated_at = self._now()
                return match
        match_id = max(self.matches, default=0) + 1
        match = Match(
            id=match_id,
            seeker_id=seeker_id,
            listing_id=listing_id,
            compatibility_score=round(float(score), 2),
            created_at=self._now(),
        )
        self.matches[match_id] = match
        return match

    def get_match(self, match_id):
        return self.matches.get(match_id)

    def update_match_status(self, match_id, status):
        match = self.matches.get(match_id)
        if match is not None:
            match.status = status
        return match

    def list_matches(self, *, seeker_id=None, lister_id=None, offset=0, limit=10,
                     min_score=None, max_score=None):
        rows = list(self.matches.values())
        if seeker_id is not None:
            rows = [m for m in rows if m.seeker_id == seeker_id]
        if lister_id is not None:
            rows = [m for m in rows if self.listings[m.listing_id].lister_id == lister_id]
        if min_score is not None:
            rows = [m for m in rows if m.compatibility_score >= min_score]
        if max_score is not None:
            rows = [m for m in rows if m.compatibility_score <= max_score]
        rows.sort(key=lambda m: (-m.compatibility_score, m.id))
        return rows[offset:offset + limit], len(rows)

    def save_listing(self, user_id, listing_id):
        for saved in self.saved.values():
            if saved.user_id == user_id and saved.listing_id == listing_id:
                return None
        saved_id = max(self.saved, default=0) + 1
        saved = SavedListing(id=saved_id, user_id=user_id, listing_id=listing_id,
                             created_at=self._now(), listing=self.listings.get(listing_id))
        self.saved[saved_id] = saved
        return saved

    def unsave_listing(self, user_id, listing_id):
        for saved_id, saved in list(self.saved.items()):
            if saved.user_id == user_id and saved.listing_id == listing_id:
                del self.saved[saved_id]
                return True
        return False

    def list_saved_listings(self, user_id, *, offset=0, limit=10):
        rows = [s for s in self.saved.values() if s.user_id == user_id]
        rows.sort(key=lambda s: s.created_at, reverse=True)
        return rows[offset:offset + limit], len(rows)


class EmailOutbox:
    def __init__(self):
        self.sent: list[dict] = []
        self.result = (True, "sent")
        self.error: Exception | None = None

    def __call__(self, settings, *, to_email, template, data):
        self.sent.append({"to": to_email, "template": template, "data": data})
        if self.error is not None:
            raise self.error
        return self.result


def run_now(fn, *args, **kwargs):
    return fn(*args, **kwargs)


@pytest.fixture
def store():
    s = FakeStore()
    s.add_user(1, "Asha Rao", "seeker")
    s.add_user(2, "Vikram Shah", "lister")
    s.add_user(3, "Meera Iyer", "seeker")
    s.add_user(4, "Rejected Person", "seeker", verification_status="rejected")
    s.add_listing(10, lister_id=2)
    s.add_conversation(123, 1, 2, listing_id=10)
    return s


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def presence(fake_redis):
    return PresenceStore(fake_redis, ttl_seconds=86400)


@pytest.fixture
def outbox():
    return EmailOutbox()


@pytest.fixture
def settings():
    return {
        "secret_key": "test-secret",
        "jwt_secret": "test-jwt-secret-with-enough-length-0123456789",
        "frontend_url": "https://apnaroom.example",
        "typing_debounce_seconds": 2,
        "api_rate_limit": "10000 per minute",
        "cors_allowed_origins": None,
    }


@pytest.fixture
def app_and_socketio(settings, store, presence, outbox):
    from server_init import create_app

    app, socketio = create_app(
        settings,
        store=store,
        presence=presence,
        notifier_spawn=run_now,
        email_sender=outbox,
    )
    app.config["TESTING"] = True
    return app, socketio


@pytest.fixture
def app(app_and_socketio):
    return app_and_socketio[0]


@pytest.fixture
def socketio(app_and_socketio):
    return app_and_socketio[1]


@pytest.fixture
def services(app):
    return app.config["APNAROOM_SERVICES"]


@pytest.fixture
def token_for(app, store):
    from security import issue_access_token

    def _token(user_id):
        with app.app_context():
            return issue_access_token(store.users[user_id])

    return _token


@pytest.fixture
def auth_headers(token_for):
    def _headers(user_id):
        return {"Authorization": f"Bearer {token_for(user_id)}"}

    return _headers


@pytest.fixture
def connect(app, socketio, token_for):
    clients = []

    def _connect(user_id=None, **kwargs):
        if user_id is not None:
            kwargs.setdefault("auth", {"token": token_for(user_id)})
        client = socketio.test_client(app, **kwargs)
        clients.append(client)
        return client

    yield _connect
    for client in clients:
        if client.is_connected():
            client.disconnect()


@pytest.fixture
def received():
    """Drain a test client's inbox into [(name, payload)]."""

    def _received(client, name=None):
        out = []
        for item in client.get_received():
            if name is None or item["name"] == name:
                out.append((item["name"], item["args"][0] if item["args"] else None))
        return out

    return _received
