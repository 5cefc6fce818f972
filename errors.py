"""errors.py

Failure taxonomy shared by the HTTP routes and the Socket.IO handlers.

HTTP routes let these propagate to the Flask error handler registered in
server_init.py, which renders ``{"success": false, "message": ...}`` with the
matching status code. Socket.IO handlers catch them and emit an ``error``
event to the calling socket only.
"""

from __future__ import annotations


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"success": False, "message": self.message}


class AuthenticationFailure(AppError):
    """Bad, expired or missing credential."""

    status_code = 401


class AuthorizationFailure(AppError):
    """Caller is not a conversation participant / not the listing owner."""

    status_code = 403


class ValidationFailure(AppError):
    status_code = 400


class NotFound(AppError):
    status_code = 404


class PersistenceFailure(AppError):
    """The relational store rejected or failed a read/write."""

    status_code = 500


class TransientInfrastructureFailure(AppError):
    """Cache or mail relay unreachable.

    Raised by the presence cache on Redis errors and accepted from pluggable
    mail senders. Best-effort callers catch it and log."""

    status_code = 503
