#!/usr/bin/env python3
"""security.py

Bearer-token authentication shared by the HTTP routes and the Socket.IO
handshake.

Tokens are Flask-JWT-Extended access tokens. The ``sub`` claim carries the
user id as a string; ``user_type`` rides along as an extra claim so clients
can read it without a round trip, but the server always re-reads the user
row and never trusts the claim for authorisation.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt import PyJWTError

from errors import AuthenticationFailure
from models import User


def issue_access_token(user: User, minutes: Optional[int] = None) -> str:
    """Mint an access token for ``user`` (needs an app context)."""
    expires = timedelta(minutes=int(minutes)) if minutes else None
    kwargs = {"expires_delta": expires} if expires else {}
    return create_access_token(
        identity=str(user.id),
        additional_claims={"user_type": user.user_type},
        **kwargs,
    )


def extract_bearer(header_value: Optional[str]) -> Optional[str]:
    """'Bearer <token>' -> '<token>'. Anything else -> None."""
    if not header_value:
        return None
    parts = str(header_value).strip().split(None, 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def token_from_handshake(auth, headers) -> Optional[str]:
    """Socket.IO: prefer ``auth={"token": ...}``, else the Authorization header."""
    if isinstance(auth, dict):
        token = auth.get("token")
        if token:
            return str(token)
    if headers is None:
        return None
    return extract_bearer(headers.get("Authorization"))


def user_id_from_token(token: Optional[str]) -> int:
    if not token:
        raise AuthenticationFailure("Authentication token required")
    try:
        claims = decode_token(token)
    except (JWTExtendedException, PyJWTError) as e:
        logging.info("Rejected token: %s", e)
        raise AuthenticationFailure("Invalid token") from None

    if claims.get("type") != "access":
        raise AuthenticationFailure("Invalid token")
    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationFailure("Invalid token") from None
    if user_id < 1:
        raise AuthenticationFailure("Invalid token")
    return user_id


def resolve_user(store, user_id: int) -> User:
    """Load the account behind a verified identity.

    Rejected accounts are treated exactly like missing ones.
    """
    user = store.get_user(user_id)
    if user is None or user.verification_status == "rejected":
        raise AuthenticationFailure("User not found")
    return user


def authenticate_token(token: Optional[str], store) -> User:
    """Verify ``token`` and return its user, or raise AuthenticationFailure."""
    return resolve_user(store, user_id_from_token(token))
