from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Sequence

from terminbot.config import NotifierSettings
from terminbot.domain import Appointment

logger = logging.getLogger(__name__)

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


def build_message(settings: NotifierSettings, appointments: Sequence[Appointment]) -> EmailMessage:
    # Only the count goes into the mail; the site is the source of truth.
    msg = EmailMessage()
    msg["From"] = settings.from_addr
    msg["To"] = ", ".join(settings.to)
    msg["Subject"] = settings.subject
    msg.set_content(f"Hello!\nThere are {len(appointments)} new appointments on {settings.msg_url}!")
    return msg


class SmtpNotifier:
    def __init__(self, settings: NotifierSettings):
        self.settings = settings

    def _plain_auth(self, _challenge: bytes | None = None) -> str:
        # smtplib authobject callback; PLAIN sends everything up front.
        s = self.settings
        return f"{s.identity}\0{s.username}\0{s.password}"

    def notify(self, appointments: Sequence[Appointment]) -> None:
        """Send one mail about ``appointments``.

        SMTP and socket errors are raised as is; there is no retry here.
        """
        logger.info("Notifying about %d appointments", len(appointments))

        s = self.settings
        msg = build_message(s, appointments)
        smtp_host, smtp_port = s.server

        with smtplib.SMTP(smtp_host, smtp_port, timeout=s.timeout_seconds) as server:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls(context=ssl.create_default_context())
                server.ehlo()
            elif s.host not in _LOCAL_HOSTS:
                # Credentials only go over plain text to a local relay.
                raise smtplib.SMTPNotSupportedError("unencrypted connection")

            server.auth("PLAIN", self._plain_auth, initial_response_ok=True)
            server.send_message(msg, from_addr=s.from_addr, to_addrs=list(s.to))

        logger.info("Notification sent to %s", ", ".join(s.to))
