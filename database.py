#!/usr/bin/env python3
"""
ApnaRoom – database helpers (PostgreSQL)

• psycopg2 ThreadedConnectionPool (optional; falls back to direct connects)
• Idempotent schema bootstrap for the tables the realtime core touches:
  users, listings, seeker_preferences, conversations, messages, matches,
  saved_listings
• PostgresStore: the relational store handed to the messaging engine,
  the matcher and the HTTP routes

Account, listing and upload CRUD live elsewhere; this module only reads
users/listings/preferences and owns conversations/messages/matches/saved
listings writes.
"""

import logging
from contextlib import contextmanager

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from constants import get_db_connection_string, sanitize_postgres_dsn
from errors import PersistenceFailure
from models import Conversation, Listing, Match, Message, SavedListing, SeekerPreferences, User


# ----------------------------------------------------------------------
# Connection helpers
# ----------------------------------------------------------------------

# Optional global connection pool. Enabled by calling init_db_pool().
_POOL: ThreadedConnectionPool | None = None
_DSN: str | None = None


def init_db_pool(minconn: int = 1, maxconn: int = 10, dsn: str | None = None) -> None:
    """Initialise a global ThreadedConnectionPool.

    Safe to call multiple times (no-op after first init).
    """
    global _POOL
    if _POOL is not None:
        return

    global _DSN
    _DSN = str(sanitize_postgres_dsn(dsn or get_db_connection_string()))

    try:
        _POOL = ThreadedConnectionPool(
            minconn=int(minconn),
            maxconn=int(maxconn),
            dsn=_DSN,
        )
        logging.info("Postgres connection pool ready (min=%s max=%s)", minconn, maxconn)
    except psycopg2.Error as e:
        _POOL = None
        logging.warning("Could not initialise Postgres pool; falling back to direct connects: %s", e)


def close_db_pool() -> None:
    global _POOL
    if _POOL is not None:
        _POOL.closeall()
        _POOL = None


def _acquire_conn():
    """Acquire a connection either from the pool or by direct connect.

    Returns (conn, from_pool: bool)
    """
    if _POOL is not None:
        return _POOL.getconn(), True
    return psycopg2.connect(_DSN or get_db_connection_string()), False


def _release_conn(conn, from_pool: bool) -> None:
    if conn is None:
        return
    if _POOL is not None and from_pool:
        try:
            # Ensure a clean connection is returned to the pool.
            conn.rollback()
        except psycopg2.Error:
            pass
        _POOL.putconn(conn)
    else:
        conn.close()


@contextmanager
def _cursor(action: str):
    """Yield a RealDictCursor inside one transaction.

    Commits on success, rolls back on error. Any psycopg2 error is re-raised
    as PersistenceFailure carrying ``action`` so callers never see driver
    exceptions.
    """
    try:
        conn, from_pool = _acquire_conn()
    except psycopg2.Error as e:
        logging.error("DB connect failed during %s: %s", action, e)
        raise PersistenceFailure(f"Failed to {action}") from e
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            yield cur
        conn.commit()
    except psycopg2.Error as e:
        try:
            conn.rollback()
        except psycopg2.Error:
            pass
        logging.error("DB error during %s: %s", action, e)
        raise PersistenceFailure(f"Failed to {action}") from e
    finally:
        _release_conn(conn, from_pool)


# ----------------------------------------------------------------------
# Schema
# ----------------------------------------------------------------------
_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id BIGSERIAL PRIMARY KEY,
        email VARCHAR(255) UNIQUE NOT NULL,
        password_hash VARCHAR(255) NOT NULL,
        full_name VARCHAR(255) NOT NULL,
        user_type VARCHAR(20) NOT NULL CHECK (user_type IN ('seeker', 'lister')),
        verification_status VARCHAR(20) DEFAULT 'pending'
            CHECK (verification_status IN ('pending', 'verified', 'rejected')),
        email_verified BOOLEAN DEFAULT FALSE,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS listings (
        id BIGSERIAL PRIMARY KEY,
        lister_id BIGINT REFERENCES users(id) ON DELETE CASCADE,
        title VARCHAR(255) NOT NULL,
        location VARCHAR(255) NOT NULL,
        rent_amount DECIMAL(10, 2) NOT NULL,
        room_type VARCHAR(50) NOT NULL
            CHECK (room_type IN ('private', 'shared', 'studio', '1bhk', '2bhk', '3bhk')),
        gender_preference VARCHAR(20) CHECK (gender_preference IN ('any', 'male', 'female')),
        status VARCHAR(20) DEFAULT 'active' CHECK (status IN ('active', 'inactive', 'rented')),
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS seeker_preferences (
        id BIGSERIAL PRIMARY KEY,
        user_id BIGINT UNIQUE REFERENCES users(id) ON DELETE CASCADE,
        budget_min DECIMAL(10, 2),
        budget_max DECIMAL(10, 2),
        preferred_locations TEXT[],
        room_type_preference TEXT[],
        gender_preference VARCHAR(20) CHECK (gender_preference IN ('any', 'male', 'female')),
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS matches (
        id BIGSERIAL PRIMARY KEY,
        seeker_id BIGINT REFERENCES users(id) ON DELETE CASCADE,
        listing_id BIGINT REFERENCES listings(id) ON DELETE CASCADE,
        compatibility_score DECIMAL(5, 2)
            CHECK (compatibility_score >= 0 AND compatibility_score <= 100),
        status VARCHAR(20) DEFAULT 'pending'
            CHECK (status IN ('pending', 'accepted', 'rejected', 'expired')),
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        UNIQUE (seeker_id, listing_id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_matches_compatibility ON matches(compatibility_score DESC);",
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id BIGSERIAL PRIMARY KEY,
        participant1_id BIGINT REFERENCES users(id) ON DELETE CASCADE,
        participant2_id BIGINT REFERENCES users(id) ON DELETE CASCADE,
        listing_id BIGINT REFERENCES listings(id) ON DELETE SET NULL,
        last_message_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        CHECK (participant1_id != participant2_id)
    );
    """,
    # One row per unordered pair, whichever side created it.
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_conversations_pair
        ON conversations (LEAST(participant1_id, participant2_id),
                          GREATEST(participant1_id, participant2_id));
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id BIGSERIAL PRIMARY KEY,
        conversation_id BIGINT REFERENCES conversations(id) ON DELETE CASCADE,
        sender_id BIGINT REFERENCES users(id) ON DELETE CASCADE,
        content TEXT NOT NULL,
        message_type VARCHAR(20) DEFAULT 'text' CHECK (message_type IN ('text', 'image', 'file')),
        read_status BOOLEAN DEFAULT FALSE,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at DESC);",
    """
    CREATE TABLE IF NOT EXISTS saved_listings (
        id BIGSERIAL PRIMARY KEY,
        user_id BIGINT REFERENCES users(id) ON DELETE CASCADE,
        listing_id BIGINT REFERENCES listings(id) ON DELETE CASCADE,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        UNIQUE (user_id, listing_id)
    );
    """,
]


def init_database() -> None:
    """Create any missing tables/indexes. Idempotent."""
    with _cursor("initialise schema") as cur:
        for stmt in _SCHEMA:
            cur.execute(stmt)
    logging.info("Database schema verified (%d statements)", len(_SCHEMA))


def get_db_identity() -> dict:
    with _cursor("read db identity") as cur:
        cur.execute(
            """
            SELECT current_user, current_database(),
                   inet_server_addr()::text AS server_addr, inet_server_port() AS server_port;
            """
        )
        return dict(cur.fetchone() or {})


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------
class PostgresStore:
    """Relational store used by the realtime core and the HTTP routes.

    Every method runs in its own short transaction on a pooled connection, so
    the store is safe to call from Socket.IO handlers (no Flask request
    context required).
    """

    def ping(self) -> bool:
        try:
            with _cursor("ping database") as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        except PersistenceFailure:
            return False
        return True

    # ── users / listings / preferences (read-only) ────────────────────
    def get_user(self, user_id: int) -> User | None:
        with _cursor("fetch user") as cur:
            cur.execute(
                """
                SELECT id, email, full_name, user_type, verification_status
                  FROM users
                 WHERE id = %s;
                """,
                (user_id,),
            )
            row = cur.fetchone()
        return User.from_row(row) if row else None

    def get_listing(self, listing_id: int) -> Listing | None:
        with _cursor("fetch listing") as cur:
            cur.execute(
                """
                SELECT id, lister_id, title, location, rent_amount, room_type, gender_preference
                  FROM listings
                 WHERE id = %s;
                """,
                (listing_id,),
            )
            row = cur.fetchone()
        return Listing.from_row(row) if row else None

    def get_seeker_preferences(self, user_id: int) -> SeekerPreferences | None:
        with _cursor("fetch seeker preferences") as cur:
            cur.execute(
                """
                SELECT budget_min, budget_max, preferred_locations,
                       room_type_preference, gender_preference
                  FROM seeker_preferences
                 WHERE user_id = %s;
                """,
                (user_id,),
            )
            row = cur.fetchone()
        return SeekerPreferences.from_row(row) if row else None

    # ── conversations ─────────────────────────────────────────────────
    def get_conversation(self, conversation_id: int) -> Conversation | None:
        with _cursor("fetch conversation") as cur:
            cur.execute("SELECT * FROM conversations WHERE id = %s;", (conversation_id,))
            row = cur.fetchone()
        return Conversation.from_row(row) if row else None

    def find_conversation(self, user_a: int, user_b: int) -> Conversation | None:
        with _cursor("fetch conversation") as cur:
            cur.execute(
                """
                SELECT *
                  FROM conversations
                 WHERE (participant1_id = %s AND participant2_id = %s)
                    OR (participant1_id = %s AND participant2_id = %s)
                 LIMIT 1;
                """,
                (user_a, user_b, user_b, user_a),
            )
            row = cur.fetchone()
        return Conversation.from_row(row) if row else None

    def create_conversation(
        self, user_a: int, user_b: int, listing_id: int | None = None
    ) -> tuple[Conversation, bool]:
        """Return (conversation, created). An existing pair is returned as-is."""
        with _cursor("create conversation") as cur:
            cur.execute(
                """
                INSERT INTO conversations (participant1_id, participant2_id, listing_id)
                VALUES (%s, %s, %s)
                ON CONFLICT DO NOTHING
                RETURNING *;
                """,
                (user_a, user_b, listing_id),
            )
            row = cur.fetchone()
        if row:
            return Conversation.from_row(row), True
        existing = self.find_conversation(user_a, user_b)
        if existing is None:
            raise PersistenceFailure("Failed to create conversation")
        return existing, False

    def list_conversations(self, user_id: int) -> list[Conversation]:
        with _cursor("fetch conversations") as cur:
            cur.execute(
                """
                SELECT *
                  FROM conversations
                 WHERE participant1_id = %s OR participant2_id = %s
                 ORDER BY last_message_at DESC NULLS LAST, id DESC;
                """,
                (user_id, user_id),
            )
            rows = cur.fetchall() or []
        return [Conversation.from_row(r) for r in rows]

    # ── messages ──────────────────────────────────────────────────────
    def insert_message(
        self, conversation_id: int, sender_id: int, content: str, message_type: str
    ) -> Message:
        """Insert the message and bump the conversation's last_message_at.

        Both statements share one transaction: either the message exists and
        the conversation is touched, or neither happened.
        """
        with _cursor("send message") as cur:
            cur.execute(
                """
                INSERT INTO messages (conversation_id, sender_id, content, message_type)
                VALUES (%s, %s, %s, %s)
                RETURNING id, conversation_id, sender_id, content, message_type,
                          read_status, created_at;
                """,
                (conversation_id, sender_id, content, message_type),
            )
            row = cur.fetchone()
            cur.execute(
                """
                UPDATE conversations
                   SET last_message_at = %s, updated_at = NOW()
                 WHERE id = %s;
                """,
                (row["created_at"], conversation_id),
            )
        return Message.from_row(row)

    def mark_messages_read(
        self, conversation_id: int, message_ids: list[int], reader_id: int
    ) -> list[int]:
        """Flag messages read. Ids outside the conversation, or sent by the
        reader, are left alone. Returns the ids whose row matched."""
        if not message_ids:
            return []
        with _cursor("mark messages as read") as cur:
            cur.execute(
                """
                UPDATE messages
                   SET read_status = TRUE
                 WHERE conversation_id = %s
                   AND id = ANY(%s::bigint[])
                   AND sender_id <> %s
                RETURNING id;
                """,
                (conversation_id, list(message_ids), reader_id),
            )
            rows = cur.fetchall() or []
        return [int(r["id"]) for r in rows]

    def mark_conversation_read(self, conversation_id: int, reader_id: int) -> list[int]:
        """Flag every unread message the peer sent in this conversation."""
        with _cursor("mark messages as read") as cur:
            cur.execute(
                """
                UPDATE messages
                   SET read_status = TRUE
                 WHERE conversation_id = %s
                   AND sender_id <> %s
                   AND read_status = FALSE
                RETURNING id;
                """,
                (conversation_id, reader_id),
            )
            rows = cur.fetchall() or []
        return sorted(int(r["id"]) for r in rows)

    def list_messages(
        self, conversation_id: int, limit: int = 50, before_id: int | None = None
    ) -> list[Message]:
        """Most recent ``limit`` messages (optionally older than before_id), oldest first."""
        with _cursor("fetch messages") as cur:
            cur.execute(
                """
                SELECT id, conversation_id, sender_id, content, message_type,
                       read_status, created_at
                  FROM messages
                 WHERE conversation_id = %s
                   AND (%s::bigint IS NULL OR id < %s::bigint)
                 ORDER BY created_at DESC, id DESC
                 LIMIT %s;
                """,
                (conversation_id, before_id, before_id, int(limit)),
            )
            rows = cur.fetchall() or []
        return [Message.from_row(r) for r in reversed(rows)]

    # ── matches ───────────────────────────────────────────────────────
    def upsert_match(
        self, seeker_id: int, listing_id: int, score: float, reset_status: bool = True
    ) -> Match:
        with _cursor("save match") as cur:
            cur.execute(
                """
                INSERT INTO matches (seeker_id, listing_id, compatibility_score, status)
                VALUES (%s, %s, %s, 'pending')
                ON CONFLICT (seeker_id, listing_id) DO UPDATE
                   SET compatibility_score = EXCLUDED.compatibility_score,
                       status = CASE WHEN %s THEN 'pending' ELSE matches.status END,
                       updated_at = NOW()
                RETURNING *;
                """,
                (seeker_id, listing_id, round(float(score), 2), bool(reset_status)),
            )
            row = cur.fetchone()
        return Match.from_row(row)

    def get_match(self, match_id: int) -> Match | None:
        with _cursor("fetch match") as cur:
            cur.execute("SELECT * FROM matches WHERE id = %s;", (match_id,))
            row = cur.fetchone()
        return Match.from_row(row) if row else None

    def update_match_status(self, match_id: int, status: str) -> Match | None:
        with _cursor("update match status") as cur:
            cur.execute(
                """
                UPDATE matches
                   SET status = %s, updated_at = NOW()
                 WHERE id = %s
                RETURNING *;
                """,
                (status, match_id),
            )
            row = cur.fetchone()
        return Match.from_row(row) if row else None

    def list_matches(
        self,
        *,
        seeker_id: int | None = None,
        lister_id: int | None = None,
        offset: int = 0,
        limit: int = 10,
        min_score: float | None = None,
        max_score: float | None = None,
    ) -> tuple[list[Match], int]:
        """Matches for a seeker, or for every listing owned by a lister.

        Returns (page, total), highest score first.
        """
        where = ["(%s::numeric IS NULL OR m.compatibility_score >= %s::numeric)",
                 "(%s::numeric IS NULL OR m.compatibility_score <= %s::numeric)"]
        params: list = [min_score, min_score, max_score, max_score]
        if seeker_id is not None:
            where.append("m.seeker_id = %s")
            params.append(seeker_id)
        if lister_id is not None:
            where.append("l.lister_id = %s")
            params.append(lister_id)
        clause = " AND ".join(where)

        with _cursor("fetch matches") as cur:
            cur.execute(
                f"""
                SELECT m.*, COUNT(*) OVER () AS total_count
                  FROM matches m
                  JOIN listings l ON l.id = m.listing_id
                 WHERE {clause}
                 ORDER BY m.compatibility_score DESC, m.id ASC
                 OFFSET %s LIMIT %s;
                """,
                (*params, int(offset), int(limit)),
            )
            rows = cur.fetchall() or []
            if rows:
                total = int(rows[0]["total_count"])
            elif offset:
                # past the last page: the window count has no row to ride on
                cur.execute(
                    f"""
                    SELECT COUNT(*) AS total_count
                      FROM matches m
                      JOIN listings l ON l.id = m.listing_id
                     WHERE {clause};
                    """,
                    tuple(params),
                )
                total = int((cur.fetchone() or {}).get("total_count") or 0)
            else:
                total = 0
        return [Match.from_row(r) for r in rows], total

    # ── saved listings ────────────────────────────────────────────────
    def save_listing(self, user_id: int, listing_id: int) -> SavedListing | None:
        """Bookmark a listing. Returns None if the user had already saved it."""
        with _cursor("save listing") as cur:
            cur.execute(
                """
                INSERT INTO saved_listings (user_id, listing_id)
                VALUES (%s, %s)
                ON CONFLICT (user_id, listing_id) DO NOTHING
                RETURNING *;
                """,
                (user_id, listing_id),
            )
            row = cur.fetchone()
        return SavedListing.from_row(row) if row else None

    def unsave_listing(self, user_id: int, listing_id: int) -> bool:
        with _cursor("remove saved listing") as cur:
            cur.execute(
                "DELETE FROM saved_listings WHERE user_id = %s AND listing_id = %s;",
                (user_id, listing_id),
            )
            return cur.rowcount > 0

    def list_saved_listings(
        self, user_id: int, *, offset: int = 0, limit: int = 10
    ) -> tuple[list[SavedListing], int]:
        """A user's saved listings with the listing joined in, newest first."""
        with _cursor("fetch saved listings") as cur:
            cur.execute(
                """
                SELECT s.id, s.user_id, s.listing_id, s.created_at,
                       l.lister_id, l.title, l.location, l.rent_amount,
                       l.room_type, l.gender_preference
                  FROM saved_listings s
                  JOIN listings l ON l.id = s.listing_id
                 WHERE s.user_id = %s
                 ORDER BY s.created_at DESC, s.id DESC
                 OFFSET %s LIMIT %s;
                """,
                (user_id, int(offset), int(limit)),
            )
            rows = cur.fetchall() or []
            cur.execute(
                "SELECT COUNT(*) AS total_count FROM saved_listings WHERE user_id = %s;",
                (user_id,),
            )
            total = int((cur.fetchone() or {}).get("total_count") or 0)
        return [SavedListing.from_row(r) for r in rows], total
