"""Mailer — async SMTP email sending via asyncio.to_thread."""

from __future__ import annotations

import asyncio
import smtplib
from email.mime.text import MIMEText


class Mailer:
    """Thin async wrapper around smtplib SMTP + STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        from_addr: str = "",
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_addr = from_addr or user

    async def send(self, to: str, subject: str, text_body: str) -> None:
        """Send a plain-text email via SMTP in a background thread."""
        await asyncio.to_thread(self._send_sync, to, subject, text_body)

    def _send_sync(self, to: str, subject: str, text_body: str) -> None:
        msg = MIMEText(text_body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.from_addr
        msg["To"] = to

        with smtplib.SMTP(self.host, self.port) as server:
            server.starttls()
            if self.user:
                server.login(self.user, self.password)
            server.sendmail(self.from_addr, [to], msg.as_string())
