"""SMTP email sender service."""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from contractflow.core.config import Config, get_config

logger = logging.getLogger(__name__)


class EmailSender:
    """Service for sending transactional emails via SMTP."""

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or get_config()

    def send_email(self, to_email: str, subject: str, body: str, is_html: bool = False) -> bool:
        if self.config.EMAIL_SANDBOX_MODE:
            logger.info(
                "email.sandboxed",
                extra={"event": "email.sandboxed", "to_email": to_email},
            )
            return True

        if not self.config.SMTP_SERVER:
            logger.warning("email.smtp_not_configured", extra={"event": "email.smtp_not_configured"})
            return False

        try:
            message = MIMEMultipart("alternative")
            message["Subject"] = subject
            message["From"] = self.config.EMAIL_FROM
            message["To"] = to_email
            message.attach(MIMEText(body, "html" if is_html else "plain"))

            with smtplib.SMTP(self.config.SMTP_SERVER, self.config.SMTP_PORT) as server:
                server.starttls()
                if self.config.SMTP_USERNAME:
                    server.login(self.config.SMTP_USERNAME, self.config.SMTP_PASSWORD or "")
                server.send_message(message)
            return True
        except (smtplib.SMTPException, OSError):
            logger.exception("email.send_failed", extra={"event": "email.send_failed", "to_email": to_email})
            return False
