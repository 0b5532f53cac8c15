"""Core sync services built on top of the store session.

What:
  Group the folder token map, change sink, listings, MIME handling,
  composition, attachments, folder and message operations, search and the
  outbox.

Why:
  These services hold the translation between the device's view (tokens,
  ids, attachment references) and the store's view (paths and UIDs).

How:
  Only the error types are re-exported here; services are imported from
  their modules so that importing an error never pulls in the store session.

Interfaces:
  ``MailSyncError`` and its subclasses, ``MoveFailure`` and ``Outcome``.
"""

from .errors import (
    FatalBackendError,
    InvalidAttachmentError,
    MailSubmissionError,
    MailSyncError,
    MessageNotFoundError,
    MoveError,
    MoveFailure,
    Outcome,
    StaleFolderError,
    StoreOperationError,
    StoreUnavailableError,
)

__all__ = [
    "FatalBackendError",
    "InvalidAttachmentError",
    "MailSubmissionError",
    "MailSyncError",
    "MessageNotFoundError",
    "MoveError",
    "MoveFailure",
    "Outcome",
    "StaleFolderError",
    "StoreOperationError",
    "StoreUnavailableError",
]
