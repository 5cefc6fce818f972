#!/usr/bin/env python3
"""emailer.py

Minimal SMTP sender for transactional emails (offline message notices).

Design goals:
  - Never print email bodies to logs (they contain message previews).
  - If SMTP is not configured, we refuse to "send" and report not_configured.

Supported settings keys (any of these):
  smtp_enabled: bool
  smtp_host / smtp_server: str
  smtp_port: int
  smtp_username / smtp_user: str
  smtp_password / smtp_pass: str
  smtp_use_starttls / smtp_tls: bool (STARTTLS on port 587)
  smtp_use_ssl / smtp_ssl: bool (implicit TLS, typically port 465)
  smtp_from / from_email: str
"""

from __future__ import annotations

import logging
import os
import smtplib
from email.message import EmailMessage
from html import escape


def _get(settings: dict, *keys, default=None):
    for k in keys:
        if k in settings and settings[k] not in (None, ""):
            return settings[k]
    return default


def _env_flag(*names: str) -> bool | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and str(v).strip() != "":
            return str(v).strip().lower() in {"1", "true", "yes", "on"}
    return None


# ────────────────────────────────────────────────────────────
# Templates (keyed by name, rendered from a data dict)
# ────────────────────────────────────────────────────────────

def _new_message(data: dict) -> tuple[str, str, str]:
    subject = f"New message from {data['senderName']}"
    text = (
        f"Hi {data['recipientName']},\n\n"
        f"You have a new message from {data['senderName']} regarding your flatmate search.\n\n"
        f"\"{data['messagePreview']}\"\n\n"
        f"View the conversation and reply: {data['chatLink']}\n"
    )
    html = (
        f"<h2>Hi {escape(data['recipientName'])},</h2>"
        f"<p>You have a new message from <strong>{escape(data['senderName'])}</strong> "
        "regarding your flatmate search.</p>"
        f"<blockquote>{escape(data['messagePreview'])}</blockquote>"
        f"<p><a href=\"{escape(data['chatLink'])}\">View Conversation</a></p>"
        "<p>This is an automated email, please do not reply.</p>"
    )
    return subject, text, html


EMAIL_TEMPLATES = {
    "newMessage": _new_message,
}


def render_template(template: str, data: dict) -> tuple[str, str, str]:
    """Return (subject, text, html) for a named template."""
    try:
        builder = EMAIL_TEMPLATES[template]
    except KeyError:
        raise ValueError(f"Unknown email template: {template}") from None
    return builder(data)


# ────────────────────────────────────────────────────────────
# SMTP
# ────────────────────────────────────────────────────────────

def send_email(
    settings: dict,
    *,
    to_email: str,
    subject: str,
    body_text: str,
    body_html: str | None = None,
) -> tuple[bool, str]:
    """Send an email (plaintext, optionally with an HTML alternative).

    Returns (ok, info). If SMTP isn't configured, returns (False, "not_configured").
    """

    if not to_email:
        return False, "missing_to"

    # Prefer env vars for production (keeps secrets out of server_config.json)
    enabled = _env_flag("APNAROOM_SMTP_ENABLED", "SMTP_ENABLED")
    if enabled is None:
        enabled = bool(_get(settings, "smtp_enabled", default=False))

    host = os.getenv("APNAROOM_SMTP_HOST") or os.getenv("SMTP_HOST") or _get(settings, "smtp_host", "smtp_server")
    port = int(os.getenv("APNAROOM_SMTP_PORT") or os.getenv("SMTP_PORT") or _get(settings, "smtp_port", default=587) or 587)
    username = os.getenv("APNAROOM_SMTP_USERNAME") or os.getenv("SMTP_USERNAME") or _get(settings, "smtp_username", "smtp_user")
    password = os.getenv("APNAROOM_SMTP_PASSWORD") or os.getenv("SMTP_PASSWORD") or _get(settings, "smtp_password", "smtp_pass")

    starttls = _env_flag("APNAROOM_SMTP_STARTTLS", "SMTP_STARTTLS")
    if starttls is None:
        starttls = bool(_get(settings, "smtp_use_starttls", "smtp_tls", default=True))

    use_ssl = _env_flag("APNAROOM_SMTP_SSL", "SMTP_SSL")
    if use_ssl is None:
        use_ssl = bool(_get(settings, "smtp_use_ssl", "smtp_ssl", default=False))
    # Convenience: port 465 is typically implicit TLS (SMTP over SSL).
    if port == 465 and not starttls:
        use_ssl = True

    from_email = (
        os.getenv("APNAROOM_SMTP_FROM")
        or os.getenv("SMTP_FROM")
        or _get(settings, "smtp_from", "from_email", default="ApnaRoom <no-reply@localhost>")
    )

    if not enabled or not host or not username or not password:
        logging.error(
            "SMTP not configured/enabled; cannot send email (to=%s subject=%s)",
            to_email,
            subject,
        )
        return False, "not_configured"

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body_text)
    if body_html:
        msg.add_alternative(body_html, subtype="html")

    try:
        smtp_cls = smtplib.SMTP_SSL if use_ssl else smtplib.SMTP
        with smtp_cls(host, port, timeout=15) as smtp:
            smtp.ehlo()
            if starttls and not use_ssl:
                smtp.starttls()
                smtp.ehlo()
            smtp.login(username, password)
            smtp.send_message(msg)
        return True, "sent"
    except (smtplib.SMTPException, OSError) as e:
        # Do not log the body (contains the message preview).
        logging.warning(
            "SMTP send failed (%s:%s) to=%s subject=%s: %s",
            host,
            port,
            to_email,
            subject,
            e,
        )
        return False, f"smtp_error:{type(e).__name__}"


def send_template_email(settings: dict, *, to_email: str, template: str, data: dict) -> tuple[bool, str]:
    subject, text, html = render_template(template, data)
    return send_email(settings, to_email=to_email, subject=subject, body_text=text, body_html=html)
