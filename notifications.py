"""notifications.py

Deferred (email) notification for recipients with no live session.

Delivery is at-most-once and best-effort: the job runs as a background task
so the sender's handler never waits on SMTP, and every failure ends in a log
line rather than an exception.
"""

from __future__ import annotations

import logging
from typing import Callable

from constants import MESSAGE_PREVIEW_LENGTH
from emailer import send_template_email
from errors import AppError, TransientInfrastructureFailure
from realtime.events import preview


def _run_inline(fn, *args, **kwargs):
    return fn(*args, **kwargs)


class OfflineNotifier:
    def __init__(
        self,
        store,
        settings: dict,
        spawn: Callable | None = None,
        sender: Callable = send_template_email,
    ):
        self._store = store
        self._settings = settings
        self._spawn = spawn or _run_inline
        self._sender = sender

    def notify_new_message(self, recipient_id: int, sender_name: str, content: str) -> None:
        """Queue a "newMessage" email for recipient_id."""
        try:
            self._spawn(self._deliver_new_message, recipient_id, sender_name, content)
        except RuntimeError as e:
            logging.error("Could not schedule message email for user %s: %s", recipient_id, e)

    def _deliver_new_message(self, recipient_id: int, sender_name: str, content: str) -> bool:
        try:
            recipient = self._store.get_user(recipient_id)
        except AppError as e:
            logging.error("Message email skipped; recipient %s lookup failed: %s", recipient_id, e)
            return False
        if recipient is None:
            return False

        length = int(self._settings.get("message_preview_length") or MESSAGE_PREVIEW_LENGTH)
        base = str(self._settings.get("frontend_url") or "http://localhost:3000").rstrip("/")
        try:
            ok, info = self._sender(
                self._settings,
                to_email=recipient.email,
                template="newMessage",
                data={
                    "recipientName": recipient.full_name,
                    "senderName": sender_name,
                    "messagePreview": preview(content, length),
                    "chatLink": f"{base}/chat",
                },
            )
        except (TransientInfrastructureFailure, OSError) as e:
            logging.error("Offline message email to user %s failed: %s", recipient_id, e)
            return False
        if ok:
            logging.info("Offline message email sent to user %s", recipient_id)
        else:
            logging.warning("Offline message email to user %s not sent (%s)", recipient_id, info)
        return ok
