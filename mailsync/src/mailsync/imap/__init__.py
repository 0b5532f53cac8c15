"""Facade for the IMAP integration layer.

What:
  Surface :class:`~mailsync.imap.client.ImapConfig` and the
  :class:`~mailsync.imap.client.ImapStore` context manager used for every
  store interaction.

Why:
  A single session object owns selection state, reconnects and retries.
  Call sites that bypass it would lose those guarantees.

How:
  Re-exports the session and configuration classes. Search criteria and the
  folder hierarchy live in ``imap.search`` and ``imap.hierarchy``.

Interfaces:
  ``ImapConfig`` and ``ImapStore``.

Invariants & Safety:
  - Messages are addressed by UID only.
"""

from .client import ImapConfig, ImapStore

__all__ = ["ImapConfig", "ImapStore"]
