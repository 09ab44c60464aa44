from __future__ import annotations

import html
import json
import logging
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from app.config import settings

LOGGER = logging.getLogger(__name__)


class EmailSendError(RuntimeError):
    pass


def send_otp_email(to_email: str, code: str, name: str) -> None:
    api_key = settings.email_api_key
    if not api_key:
        raise EmailSendError("Email API key is not configured")

    body = _build_body(
        name,
        code,
        ttl_seconds=settings.otp_ttl_seconds,
        max_attempts=settings.otp_max_attempts,
    )
    payload = json.dumps(
        {
            "api_key": api_key,
            "to": [to_email],
            "sender": settings.email_sender,
            "subject": settings.otp_email_subject,
            "html_body": body,
        }
    ).encode("utf-8")
    request = Request(
        settings.email_api_url,
        data=payload,
        headers={
            "Content-Type": "application/json",
            "X-Smtp2go-Api-Key": api_key,
        },
        method="POST",
    )

    try:
        with urlopen(request, timeout=settings.email_timeout_seconds) as response:
            response.read()
    except HTTPError as exc:
        error_body = exc.read().decode("utf-8", errors="replace")
        LOGGER.error("Email API error status=%s response=%s", exc.code, error_body)
        raise EmailSendError("Failed to send OTP email") from exc
    except (URLError, TimeoutError) as exc:
        raise EmailSendError("Failed to reach email API") from exc


def _build_body(name: str, code: str, ttl_seconds: int, max_attempts: int) -> str:
    minutes = max(1, ttl_seconds // 60)
    display_name = html.escape(name)
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h2>Welcome, {display_name}!</h2>"
        "<p>Your verification code is:</p>"
        '<div style="font-size: 32px; font-weight: bold; letter-spacing: 8px;">'
        f"{code}</div>"
        f"<p>This code expires in {minutes} minutes.</p>"
        f"<p>You have {max_attempts} attempts to enter the correct code.</p>"
        "<p>If you didn't request this code, please ignore this email or contact support.</p>"
        "</div>"
    )
