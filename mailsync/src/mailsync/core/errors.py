"""Error taxonomy and best-effort outcomes for the sync adapter.

What:
  Define the typed failures surfaced to the outer sync engine and the
  :class:`Outcome` record used for operations whose failure must not abort the
  primary action.

Why:
  The outer engine reacts differently to each class of failure: a stale folder
  token triggers a hierarchy resync, a missing message becomes a "not found"
  response, and a lost flag update is merely logged. Distinct types keep those
  reactions explicit.

How:
  A single :class:`MailSyncError` root with narrow subclasses; move failures
  carry a :class:`MoveFailure` reason.

Interfaces:
  :class:`MailSyncError`, :class:`FatalBackendError`,
  :class:`StoreUnavailableError`, :class:`StoreOperationError`,
  :class:`StaleFolderError`, :class:`MessageNotFoundError`,
  :class:`InvalidAttachmentError`, :class:`MailSubmissionError`,
  :class:`MoveError`, :class:`MoveFailure`, :class:`Outcome`.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class MailSyncError(Exception):
    """Base class for every error raised by mailsync."""


class FatalBackendError(MailSyncError):
    """A capability required at startup is missing; the session is aborted."""


class StoreUnavailableError(MailSyncError):
    """The mail store connection could not be (re-)established."""


class StoreOperationError(MailSyncError):
    """A single mail store command was rejected or failed in transit."""


class StaleFolderError(MailSyncError):
    """A folder token is unknown to the device mapping.

    The folder hierarchy changed since the client last synchronised it; the
    outer engine must request a full hierarchy resync.
    """

    def __init__(self, token: str):
        super().__init__(f"unknown folder token {token!r}")
        self.token = token


class MessageNotFoundError(MailSyncError):
    """The referenced message does not exist in its folder."""


class InvalidAttachmentError(MailSyncError):
    """An attachment reference is malformed or points at no attachment."""


class MailSubmissionError(MailSyncError):
    """The outgoing transport refused the composed document."""


class MoveFailure(str, Enum):
    SAME_SOURCE_AND_DEST = "same_source_and_dest"
    INVALID_SOURCE = "invalid_source"
    INVALID_DEST = "invalid_dest"
    CANNOT_MOVE = "cannot_move"


class MoveError(MailSyncError):
    """A message move was refused; ``reason`` tells the engine which status to send."""

    def __init__(self, reason: MoveFailure, message: str):
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True)
class Outcome:
    """Result of a best-effort action.

    What:
      Records whether an auxiliary step (flag marking, sent-copy append)
      succeeded or degraded, and why.

    Why:
      Such steps must never abort the primary action, but their failure must
      not vanish either. Callers log degraded outcomes and carry on.
    """

    action: str
    ok: bool
    reason: Optional[str] = None

    @classmethod
    def succeeded(cls, action: str) -> "Outcome":
        return cls(action=action, ok=True)

    @classmethod
    def degraded(cls, action: str, reason: str) -> "Outcome":
        return cls(action=action, ok=False, reason=reason)
