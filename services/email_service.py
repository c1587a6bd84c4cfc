from __future__ import annotations

import html
import logging
from typing import Tuple

import requests

from shared.config import get_email_settings

logger = logging.getLogger(__name__)


def email_enabled() -> bool:
    return bool(get_email_settings()["api_key"])


def _build_notification_email(title: str, message: str) -> Tuple[str, str]:
    safe_title = html.escape(title or "")
    safe_message = html.escape(message or "")
    body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #1e40af;">{safe_title}</h2>
  <p>{safe_message}</p>
  <hr style="margin: 20px 0; border: none; border-top: 1px solid #e5e7eb;">
  <p style="color: #6b7280; font-size: 14px;">
    This is an automated message from the Concinnity Platform.
  </p>
</div>
"""
    return title or "Notification", body


def send_notification_email(*, to_email: str, title: str, message: str) -> bool:
    """
    Send a notification email through Resend. Never raises; returns whether
    the provider accepted the message.
    """
    if not to_email:
        return False
    settings = get_email_settings()
    if not settings["api_key"]:
        logger.info("Resend disabled; skipping notification email to %s", to_email)
        return False

    subject, body = _build_notification_email(title, message)
    payload = {
        "from": settings["from_email"],
        "to": [to_email],
        "subject": subject,
        "html": body,
    }
    try:
        resp = requests.post(
            settings["api_url"],
            headers={"Authorization": f"Bearer {settings['api_key']}", "Content-Type": "application/json"},
            json=payload,
            timeout=10,
        )
        if resp.status_code >= 300:
            logger.warning("Resend send failed: %s %s", resp.status_code, resp.text)
            return False
        return True
    except requests.RequestException as exc:
        logger.warning("Resend request failed: %s", exc)
        return False
