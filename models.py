"""models.py

Plain records passed between the store, the messaging engine and the scorer.
Rows come back from PostgreSQL as dicts (RealDictCursor) and are turned into
these with the ``from_row`` constructors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


USER_TYPES = {"seeker", "lister"}
VERIFICATION_STATUSES = {"pending", "verified", "rejected"}
MESSAGE_TYPES = {"text", "image", "file"}
ROOM_TYPES = {"private", "shared", "studio", "1bhk", "2bhk", "3bhk"}
GENDER_PREFERENCES = {"any", "male", "female"}
MATCH_STATUSES = {"pending", "accepted", "rejected", "expired"}

# Statuses a lister may set by hand; "pending" is only ever written by scoring.
MATCH_DECISIONS = {"accepted", "rejected", "expired"}


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts else None


def _num(val) -> float | None:
    # NUMERIC columns arrive as Decimal
    if val is None:
        return None
    return float(val)


@dataclass(frozen=True)
class User:
    id: int
    email: str
    full_name: str
    user_type: str
    verification_status: str = "pending"

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "User":
        return cls(
            id=int(row["id"]),
            email=row["email"],
            full_name=row["full_name"],
            user_type=row["user_type"],
            verification_status=row.get("verification_status") or "pending",
        )


@dataclass
class Conversation:
    id: int
    participant1_id: int
    participant2_id: int
    listing_id: Optional[int] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Conversation":
        return cls(
            id=int(row["id"]),
            participant1_id=int(row["participant1_id"]),
            participant2_id=int(row["participant2_id"]),
            listing_id=int(row["listing_id"]) if row.get("listing_id") is not None else None,
            last_message_at=row.get("last_message_at"),
            created_at=row.get("created_at"),
        )

    @property
    def participants(self) -> frozenset[int]:
        return frozenset((self.participant1_id, self.participant2_id))

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.participant1_id, self.participant2_id)

    def other_participant(self, user_id: int) -> int:
        if user_id == self.participant1_id:
            return self.participant2_id
        return self.participant1_id

    def to_dict(self, viewer_id: int | None = None) -> dict:
        out = {
            "id": self.id,
            "participant1_id": self.participant1_id,
            "participant2_id": self.participant2_id,
            "listing_id": self.listing_id,
            "last_message_at": _iso(self.last_message_at),
            "created_at": _iso(self.created_at),
        }
        if viewer_id is not None:
            out["other_participant_id"] = self.other_participant(viewer_id)
        return out


@dataclass
class Message:
    id: int
    conversation_id: int
    sender_id: int
    content: str
    message_type: str = "text"
    read: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Message":
        return cls(
            id=int(row["id"]),
            conversation_id=int(row["conversation_id"]),
            sender_id=int(row["sender_id"]),
            content=row["content"],
            message_type=row.get("message_type") or "text",
            read=bool(row.get("read_status", False)),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender_id": self.sender_id,
            "content": self.content,
            "message_type": self.message_type,
            "read": self.read,
            "created_at": _iso(self.created_at),
        }


@dataclass
class SeekerPreferences:
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    preferred_locations: list[str] = field(default_factory=list)
    room_type_preference: list[str] = field(default_factory=list)
    gender_preference: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict[str, Any] | None) -> "SeekerPreferences":
        if not row:
            return cls()
        return cls(
            budget_min=_num(row.get("budget_min")),
            budget_max=_num(row.get("budget_max")),
            preferred_locations=list(row.get("preferred_locations") or []),
            room_type_preference=list(row.get("room_type_preference") or []),
            gender_preference=row.get("gender_preference"),
        )


@dataclass
class Listing:
    id: int
    lister_id: int
    location: str
    rent_amount: float
    room_type: str
    gender_preference: Optional[str] = None
    title: str = ""

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Listing":
        return cls(
            id=int(row["id"]),
            lister_id=int(row["lister_id"]),
            location=row.get("location") or "",
            rent_amount=_num(row.get("rent_amount")) or 0.0,
            room_type=row.get("room_type") or "",
            gender_preference=row.get("gender_preference"),
            title=row.get("title") or "",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lister_id": self.lister_id,
            "title": self.title,
            "location": self.location,
            "rent_amount": self.rent_amount,
            "room_type": self.room_type,
            "gender_preference": self.gender_preference,
        }


@dataclass
class Match:
    id: int
    seeker_id: int
    listing_id: int
    compatibility_score: float
    status: str = "pending"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Match":
        return cls(
            id=int(row["id"]),
            seeker_id=int(row["seeker_id"]),
            listing_id=int(row["listing_id"]),
            compatibility_score=_num(row.get("compatibility_score")) or 0.0,
            status=row.get("status") or "pending",
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seeker_id": self.seeker_id,
            "listing_id": self.listing_id,
            "compatibility_score": round(self.compatibility_score, 2),
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class SavedListing:
    """A seeker's bookmark on a listing; ``listing`` is filled on reads."""

    id: int
    user_id: int
    listing_id: int
    created_at: Optional[datetime] = None
    listing: Optional[Listing] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "SavedListing":
        listing = None
        if row.get("lister_id") is not None:
            listing = Listing.from_row({**row, "id": row["listing_id"]})
        return cls(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            listing_id=int(row["listing_id"]),
            created_at=row.get("created_at"),
            listing=listing,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "listing_id": self.listing_id,
            "created_at": _iso(self.created_at),
            "listing": self.listing.to_dict() if self.listing else None,
        }
