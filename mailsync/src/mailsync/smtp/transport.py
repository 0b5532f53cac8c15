"""Mail submission transports.

What:
  Define the :class:`MailTransport` protocol consumed by the outbox and an
  SMTP implementation built on :mod:`smtplib`.

Why:
  Submission is an external capability: the outbox only needs "send these
  bytes to these recipients" and a success flag. A protocol keeps tests free
  of sockets.

How:
  :class:`SmtpTransport` opens one connection per message, optionally
  upgrades it with STARTTLS and authenticates, then calls ``sendmail``.
  Failures are logged and reported as ``False``.

Interfaces:
  :class:`MailTransport`, :class:`SmtpTransport`.
"""
from __future__ import annotations

import smtplib
import ssl
from typing import Optional, Protocol, Sequence

from ..config.schema import SmtpSettings
from ..utils.logging import JsonLogger, get_logger


IMAP_USERNAME = "imap_username"
IMAP_PASSWORD = "imap_password"


class MailTransport(Protocol):
    def send(self, sender: str, recipients: Sequence[str], message: bytes) -> bool:
        ...


class SmtpTransport:
    """Submit messages through an SMTP relay."""

    def __init__(
        self,
        settings: SmtpSettings,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        logger: Optional[JsonLogger] = None,
    ):
        self._settings = settings
        self._username = username
        self._password = password
        self._logger = logger or get_logger("smtp.transport")

    @classmethod
    def from_settings(cls, settings: SmtpSettings, imap_username: str, imap_password: str) -> "SmtpTransport":
        """Create a transport, substituting the IMAP login where configured.

        The literal values ``imap_username`` and ``imap_password`` in the
        configuration stand for the credentials of the current session.
        """

        username = settings.username
        password = settings.password
        if username == IMAP_USERNAME:
            username = imap_username
        if password == IMAP_PASSWORD:
            password = imap_password
        return cls(settings, username=username, password=password)

    def send(self, sender: str, recipients: Sequence[str], message: bytes) -> bool:
        """Submit ``message`` and report whether the relay accepted it."""

        settings = self._settings
        try:
            with smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout_s) as client:
                if settings.starttls:
                    client.starttls(context=ssl.create_default_context())
                if self._username and self._password:
                    client.login(self._username, self._password)
                refused = client.sendmail(sender, list(recipients), message)
        except (smtplib.SMTPException, OSError) as exc:
            self._logger.error("smtp_send_failed", host=settings.host, error=str(exc))
            return False
        if refused:
            self._logger.warning("smtp_recipients_refused", refused=sorted(refused))
        self._logger.debug("smtp_sent", host=settings.host, recipients=len(recipients))
        return True
