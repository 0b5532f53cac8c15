"""Outgoing mail transport.

Interfaces:
  ``MailTransport`` (protocol) and ``SmtpTransport``.
"""

from .transport import MailTransport, SmtpTransport

__all__ = ["MailTransport", "SmtpTransport"]
