"""matching.py

Seeker/listing compatibility scoring and match persistence.

Score model (weights fixed):

    budget     0.40   100 - |avg(budget_min, budget_max) - rent| / avg * 100, floored at 0
    location   0.25   100 if any preferred location is a case-insensitive substring
    room type  0.20   100 if the listing's room type is preferred
    gender     0.15   100 if the seeker accepts "any" or the listing's preference

Only factors with inputs on both sides count, in the numerator and in the
denominator. With no evaluable factor the score is the neutral 50.
"""

from __future__ import annotations

import logging
import math

from errors import AuthorizationFailure, NotFound, ValidationFailure
from models import MATCH_DECISIONS, Listing, Match, SeekerPreferences, User


BUDGET_WEIGHT = 0.40
LOCATION_WEIGHT = 0.25
ROOM_TYPE_WEIGHT = 0.20
GENDER_WEIGHT = 0.15

NEUTRAL_SCORE = 50


def _budget_factor(prefs: SeekerPreferences, listing: Listing) -> float | None:
    if prefs.budget_min is None or prefs.budget_max is None:
        return None
    avg_budget = (prefs.budget_min + prefs.budget_max) / 2
    if avg_budget <= 0:
        return None
    diff = abs(avg_budget - listing.rent_amount)
    return max(0.0, 100 - (diff / avg_budget) * 100)


def _location_factor(prefs: SeekerPreferences, listing: Listing) -> float | None:
    wanted = [loc.strip().lower() for loc in prefs.preferred_locations if loc and loc.strip()]
    if not wanted:
        return None
    where = (listing.location or "").lower()
    return 100.0 if any(loc in where for loc in wanted) else 0.0


def _room_type_factor(prefs: SeekerPreferences, listing: Listing) -> float | None:
    if not prefs.room_type_preference:
        return None
    return 100.0 if listing.room_type in prefs.room_type_preference else 0.0


def _gender_factor(prefs: SeekerPreferences, listing: Listing) -> float | None:
    if not prefs.gender_preference or not listing.gender_preference:
        return None
    if prefs.gender_preference == "any" or prefs.gender_preference == listing.gender_preference:
        return 100.0
    return 0.0


FACTORS = (
    (_budget_factor, BUDGET_WEIGHT),
    (_location_factor, LOCATION_WEIGHT),
    (_room_type_factor, ROOM_TYPE_WEIGHT),
    (_gender_factor, GENDER_WEIGHT),
)


def calculate_compatibility_score(prefs: SeekerPreferences | None, listing: Listing) -> int:
    """Weighted, normalised 0-100 score. Pure and deterministic."""
    prefs = prefs or SeekerPreferences()
    total = 0.0
    weights = 0.0
    for factor, weight in FACTORS:
        value = factor(prefs, listing)
        if value is None:
            continue
        total += value * weight
        weights += weight

    if weights == 0:
        return NEUTRAL_SCORE

    # halves round up
    score = math.floor(total / weights + 0.5)
    return max(0, min(100, score))


class MatchService:
    def __init__(self, store, settings: dict | None = None):
        self.store = store
        self.settings = settings or {}

    def calculate(self, seeker_id: int, listing_id: int) -> tuple[Match, int]:
        """Score (seeker, listing) and upsert the match row."""
        listing = self.store.get_listing(listing_id)
        if listing is None:
            raise NotFound("Listing not found")
        if self.store.get_user(seeker_id) is None:
            raise NotFound("Seeker not found")

        prefs = self.store.get_seeker_preferences(seeker_id)
        score = calculate_compatibility_score(prefs, listing)

        reset = bool(self.settings.get("reset_match_status_on_rescore", True))
        match = self.store.upsert_match(seeker_id, listing_id, score, reset_status=reset)
        logging.info(
            "Match scored: seeker=%s listing=%s score=%s status=%s",
            seeker_id,
            listing_id,
            score,
            match.status,
        )
        return match, score

    def update_status(self, lister: User, match_id: int, status: str) -> Match:
        if status not in MATCH_DECISIONS:
            raise ValidationFailure("Invalid match status")
        match = self.store.get_match(match_id)
        if match is None:
            raise NotFound("Match not found")
        listing = self.store.get_listing(match.listing_id)
        if listing is None or listing.lister_id != lister.id:
            raise AuthorizationFailure("Unauthorized to update this match")
        updated = self.store.update_match_status(match_id, status)
        if updated is None:
            raise NotFound("Match not found")
        return updated

    def seeker_matches(self, seeker_id: int, *, page: int = 1, limit: int = 10,
                       min_score: float | None = None, max_score: float | None = None):
        return self.store.list_matches(
            seeker_id=seeker_id,
            offset=(page - 1) * limit,
            limit=limit,
            min_score=min_score,
            max_score=max_score,
        )

    def lister_matches(self, lister_id: int, *, page: int = 1, limit: int = 10,
                       min_score: float | None = None, max_score: float | None = None):
        return self.store.list_matches(
            lister_id=lister_id,
            offset=(page - 1) * limit,
            limit=limit,
            min_score=min_score,
            max_score=max_score,
        )

    def save_listing(self, seeker: User, listing_id: int):
        listing = self.store.get_listing(listing_id)
        if listing is None:
            raise NotFound("Listing not found")
        saved = self.store.save_listing(seeker.id, listing_id)
        if saved is None:
            raise ValidationFailure("Listing already saved")
        saved.listing = saved.listing or listing
        logging.info("Listing saved: seeker=%s listing=%s", seeker.id, listing_id)
        return saved

    def unsave_listing(self, seeker: User, listing_id: int) -> bool:
        """Idempotent: removing a listing that was never saved still succeeds."""
        return self.store.unsave_listing(seeker.id, listing_id)

    def saved_listings(self, seeker_id: int, *, page: int = 1, limit: int = 10):
        return self.store.list_saved_listings(seeker_id, offset=(page - 1) * limit, limit=limit)
