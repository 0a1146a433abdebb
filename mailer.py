import logging
from typing import Optional, Protocol

import resend

from config import Settings
from errors import UpstreamError

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send_reset_code(self, email: str, code: str, valid_minutes: int) -> None:
        ...


class ResendMailer:
    def __init__(self, api_key: Optional[str], sender: str):
        self.api_key = (api_key or "").strip()
        self.sender = sender

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResendMailer":
        return cls(settings.resend_api_key, settings.mail_from)

    def send_reset_code(self, email: str, code: str, valid_minutes: int) -> None:
        if not self.api_key:
            raise UpstreamError("Email delivery is not configured")
        payload = {
            "from": self.sender,
            "to": [email],
            "subject": "Reset Your Password",
            "html": (
                "<h2>Password Reset Request</h2>"
                "<p>You requested to reset your password. Here is your verification code:</p>"
                '<h3 style="font-size: 24px; letter-spacing: 2px; background: #f4f4f4; '
                f'padding: 10px; text-align: center;">{code}</h3>'
                f"<p>This code will expire in {valid_minutes} minutes.</p>"
                "<p>If you didn't request this, you can safely ignore this email.</p>"
            ),
        }
        resend.api_key = self.api_key
        try:
            resend.Emails.send(payload)
        except Exception as e:
            logger.error("Reset email dispatch failed for %s: %s", email, e)
            raise UpstreamError("Failed to send reset code. Please try again later.", detail=str(e)) from e
