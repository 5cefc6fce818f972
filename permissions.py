#!/usr/bin/env python3
"""permissions.py

Route guards for the ApnaRoom HTTP API.

  - login_required: access JWT in the Authorization header, account loaded
    into ``g.current_user``
  - require_user_type: login_required plus a seeker/lister check

Guard failures raise AppError subclasses; the app-level error handler turns
them into the JSON envelope.
"""

from __future__ import annotations

import functools
from typing import Callable

from flask import current_app, g
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException, NoAuthorizationError
from jwt import PyJWTError

from errors import AuthenticationFailure, AuthorizationFailure
from models import User
from security import resolve_user


def services():
    """The collaborator bundle the app factory stored on the app."""
    return current_app.config["APNAROOM_SERVICES"]


def _verified_user_id() -> int:
    try:
        verify_jwt_in_request()
        identity = get_jwt_identity()
    except NoAuthorizationError:
        raise AuthenticationFailure("Authentication token required") from None
    except (JWTExtendedException, PyJWTError):
        raise AuthenticationFailure("Invalid token") from None
    try:
        return int(identity)
    except (TypeError, ValueError):
        raise AuthenticationFailure("Invalid token") from None


def current_user() -> User:
    user = g.get("current_user")
    if user is None:
        user = resolve_user(services().store, _verified_user_id())
        g.current_user = user
    return user


def login_required(func: Callable) -> Callable:
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        current_user()
        return func(*args, **kwargs)

    return wrapper


def require_user_type(*user_types: str) -> Callable:
    """Decorator: only accounts of the given type(s) may call the route."""
    allowed = set(user_types)

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            user = current_user()
            if user.user_type not in allowed:
                raise AuthorizationFailure(
                    f"Only {' or '.join(sorted(allowed))} accounts can do this"
                )
            return func(*args, **kwargs)

        return wrapper

    return decorator
