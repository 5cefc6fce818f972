#!/usr/bin/env python3
"""routes_matching.py

Compatibility scoring and match queries.

  POST  /api/matching/calculate           any authenticated user
  GET   /api/matching/seeker-matches      seekers
  POST  /api/matching/save                seekers
  DELETE /api/matching/unsave/<id>        seekers
  GET   /api/matching/saved               seekers
  GET   /api/matching/lister-matches      listers
  PATCH /api/matching/<match_id>/status   listers (own listings only)
"""

from __future__ import annotations

import math

from flask import Blueprint, jsonify, request

from errors import ValidationFailure
from permissions import current_user, login_required, require_user_type, services


matching_bp = Blueprint("matching", __name__, url_prefix="/api/matching")

MAX_PAGE_SIZE = 50


def _int_field(val, message: str, *, default=None, lo: int = 1, hi: int | None = None):
    if val is None or val == "":
        if default is None:
            raise ValidationFailure(message)
        return default
    if isinstance(val, bool):
        raise ValidationFailure(message)
    try:
        out = int(str(val).strip())
    except ValueError:
        raise ValidationFailure(message) from None
    if out < lo or (hi is not None and out > hi):
        raise ValidationFailure(message)
    return out


def _score_bound(val, message: str):
    if val is None or val == "":
        return None
    try:
        out = float(val)
    except ValueError:
        raise ValidationFailure(message) from None
    if math.isnan(out) or out < 0 or out > 100:
        raise ValidationFailure(message)
    return out


def _page_args() -> dict:
    return {
        "page": _int_field(request.args.get("page"), "Page must be a positive integer", default=1),
        "limit": _int_field(
            request.args.get("limit"),
            f"Limit must be between 1 and {MAX_PAGE_SIZE}",
            default=10,
            hi=MAX_PAGE_SIZE,
        ),
        "min_score": _score_bound(
            request.args.get("minCompatibility"), "Min compatibility must be between 0 and 100"
        ),
        "max_score": _score_bound(
            request.args.get("maxCompatibility"), "Max compatibility must be between 0 and 100"
        ),
    }


def _pagination(total: int, page: int, limit: int) -> dict:
    return {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if total else 0}


def _paged(matches, total: int, page: int, limit: int):
    return jsonify(
        {
            "success": True,
            "data": {
                "matches": [m.to_dict() for m in matches],
                "pagination": _pagination(total, page, limit),
            },
        }
    )


@matching_bp.route("/calculate", methods=["POST"])
@login_required
def calculate():
    body = request.get_json(silent=True) or {}
    seeker_id = _int_field(body.get("seekerId"), "Invalid seeker ID")
    listing_id = _int_field(body.get("listingId"), "Invalid listing ID")

    match, score = services().matches.calculate(seeker_id, listing_id)
    return jsonify({"success": True, "data": {"match": match.to_dict(), "compatibility_score": score}})


@matching_bp.route("/seeker-matches", methods=["GET"])
@require_user_type("seeker")
def seeker_matches():
    args = _page_args()
    matches, total = services().matches.seeker_matches(current_user().id, **args)
    return _paged(matches, total, args["page"], args["limit"])


@matching_bp.route("/save", methods=["POST"])
@require_user_type("seeker")
def save_listing():
    body = request.get_json(silent=True) or {}
    listing_id = _int_field(body.get("listingId"), "Invalid listing ID")
    saved = services().matches.save_listing(current_user(), listing_id)
    return jsonify({"success": True, "data": saved.to_dict(), "message": "Listing saved successfully"})


@matching_bp.route("/unsave/<int:listing_id>", methods=["DELETE"])
@require_user_type("seeker")
def unsave_listing(listing_id: int):
    services().matches.unsave_listing(current_user(), listing_id)
    return jsonify({"success": True, "message": "Listing removed from favorites"})


@matching_bp.route("/saved", methods=["GET"])
@require_user_type("seeker")
def saved_listings():
    page = _int_field(request.args.get("page"), "Page must be a positive integer", default=1)
    limit = _int_field(
        request.args.get("limit"), f"Limit must be between 1 and {MAX_PAGE_SIZE}", default=10, hi=MAX_PAGE_SIZE
    )
    saved, total = services().matches.saved_listings(current_user().id, page=page, limit=limit)
    return jsonify(
        {
            "success": True,
            "data": [s.to_dict() for s in saved],
            "pagination": _pagination(total, page, limit),
        }
    )


@matching_bp.route("/lister-matches", methods=["GET"])
@require_user_type("lister")
def lister_matches():
    args = _page_args()
    matches, total = services().matches.lister_matches(current_user().id, **args)
    return _paged(matches, total, args["page"], args["limit"])


@matching_bp.route("/<int:match_id>/status", methods=["PATCH"])
@require_user_type("lister")
def update_match_status(match_id: int):
    body = request.get_json(silent=True) or {}
    match = services().matches.update_status(current_user(), match_id, str(body.get("status") or ""))
    return jsonify({"success": True, "data": match.to_dict(), "message": "Match status updated successfully"})
