"""
Module: mailsync.__init__

What:
  Aggregate package exports for the mailsync backend, which presents an IMAP
  mailbox to mobile sync devices through stable folder tokens, change
  notifications, message listings and a submission path.

Why:
  The sync engine and operators import through a small set of namespaces.
  Keeping them explicit lets the internal layout change without touching
  entry points.

How:
  Provide an explicit ``__all__`` declaration that enumerates the public
  subpackages. The session facade lives in :mod:`mailsync.backend` and the
  operator commands in :mod:`mailsync.cli`.

Interfaces:
  - config: Runtime configuration and the per-device state store.
  - core: Folder tokens, change sink, listings, composition and submission.
  - imap: Store session, search criteria and folder hierarchy helpers.
  - smtp: Outgoing mail transport.
  - utils: Logging, identifiers, dates and MIME helpers.

Invariants:
  - Importing the package has no side effects; nothing connects to a server
    until :meth:`mailsync.backend.ImapSyncBackend.logon` is called.
"""

__all__ = [
    "config",
    "core",
    "imap",
    "smtp",
    "utils",
]
