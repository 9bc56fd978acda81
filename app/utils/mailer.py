"""SMTP notification channel for email contacts."""

from __future__ import annotations

import asyncio
import smtplib
import ssl
from email.mime.text import MIMEText

from config import settings
from app.utils.logging import get_logger

logger = get_logger(__name__)

SUBJECT = "Reminder"


class EmailChannel:
    kind = "email"

    def __init__(
        self,
        server: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        from_email: str | None = None,
        timeout: int | None = None,
    ):
        self.smtp_server = server if server is not None else settings.SMTP_SERVER
        self.smtp_port = port if port is not None else settings.SMTP_PORT
        self.smtp_username = username if username is not None else settings.SMTP_USERNAME
        self.smtp_password = password if password is not None else settings.SMTP_PASSWORD
        self.from_email = from_email if from_email is not None else settings.SMTP_FROM_EMAIL
        self.timeout = timeout if timeout is not None else settings.SMTP_TIMEOUT_SECONDS

    def _build_message(self, to_email: str, body: str) -> MIMEText:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = SUBJECT
        msg["From"] = self.from_email or ""
        msg["To"] = to_email
        return msg

    def send_email(self, to_email: str, body: str) -> bool:
        if not self.smtp_server:
            logger.warning("email_dev_mode", to=to_email, body=body)
            return True

        msg = self._build_message(to_email, body)
        context = ssl.create_default_context()
        try:
            if self.smtp_port == 465:
                with smtplib.SMTP_SSL(
                    self.smtp_server, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    self._login_and_send(server, msg)
            else:
                with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    self._login_and_send(server, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("email_send_failed", to=to_email, error=str(exc))
            return False

        logger.info("email_sent", to=to_email)
        return True

    def _login_and_send(self, server: smtplib.SMTP, msg: MIMEText) -> None:
        if self.smtp_username and self.smtp_password:
            server.login(self.smtp_username, self.smtp_password)
        server.send_message(msg)

    async def send(self, address: str, message: str) -> bool:
        return await asyncio.to_thread(self.send_email, address, message)
