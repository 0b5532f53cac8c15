"""Diff-friendly message summaries for a folder.

What:
  Produce :class:`MessageSummary` records (UID, receipt date, read and flagged
  state) for the messages of a folder, optionally limited to a cutoff date.

Why:
  The mobile engine diffs successive listings to decide what to download. It
  only needs a stable id, a version marker and two flags, which an overview
  fetch provides without touching message bodies.

How:
  A narrowing ``SINCE`` search shrinks the candidate set when a cutoff is
  given; the per-message internal date is then checked again because the
  server search works on whole days and local time zones.

Interfaces:
  :class:`MessageSummary`, :class:`MessageListing`.

Invariants & Safety:
  - Deleted messages are never listed.
  - With a cutoff, nothing strictly older than the cutoff is listed, and
    messages without a usable date are dropped.
  - Results are ordered by UID.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..imap.client import ImapStore, Overview
from ..imap.search import since_criteria
from ..utils.dates import to_utc
from ..utils.logging import JsonLogger, get_logger
from .errors import StoreOperationError
from .folder_map import FolderIdMap


@dataclass(frozen=True)
class MessageSummary:
    """Listing entry consumed by the diff engine.

    ``last_modified`` is the internal (receipt) date used as a version proxy.
    """

    message_id: int
    last_modified: Optional[datetime]
    is_read: bool
    is_flagged: bool

    @classmethod
    def from_overview(cls, overview: Overview) -> "MessageSummary":
        return cls(
            message_id=overview.uid,
            last_modified=overview.internal_date,
            is_read=overview.seen,
            is_flagged=overview.flagged,
        )


class MessageListing:
    """Enumerate and stat messages of a folder addressed by token."""

    def __init__(self, store: ImapStore, folder_map: FolderIdMap, *, logger: Optional[JsonLogger] = None):
        self._store = store
        self._folder_map = folder_map
        self._logger = logger or get_logger("core.listing")

    def list(self, token: str, cutoff: Optional[datetime] = None) -> List[MessageSummary]:
        """Return the summaries of the folder behind ``token``.

        What:
          Lists every message (no cutoff) or the messages received on or after
          ``cutoff``.

        Why:
          The ``SINCE`` search only reduces the number of overviews fetched; a
          failed search falls back to listing everything and relies on the
          per-message date check.

        Args:
          token: Folder token.
          cutoff: Oldest receipt date of interest, or ``None``.

        Returns:
          Summaries ordered by UID.

        Raises:
          StaleFolderError: When ``token`` is unknown.
          StoreOperationError: When the folder cannot be opened or fetched.
        """

        path = self._folder_map.resolve(token)
        if not self._store.reopen(path, force=True):
            raise StoreOperationError(f"cannot open folder {path}")
        threshold = to_utc(cutoff) if cutoff else None
        if threshold is None:
            uids = self._store.search(["ALL"])
        else:
            try:
                uids = self._store.search(since_criteria(threshold))
            except StoreOperationError as exc:
                self._logger.warning("listing_since_search_failed", folder=path, error=str(exc))
                uids = self._store.search(["ALL"])
        if not uids:
            return []

        summaries: List[MessageSummary] = []
        overviews = self._store.fetch_overviews(uids)
        for uid in sorted(overviews):
            overview = overviews[uid]
            if overview.deleted:
                continue
            if threshold is not None:
                if overview.internal_date is None or overview.internal_date < threshold:
                    continue
            summaries.append(MessageSummary.from_overview(overview))
        self._logger.debug("listing_done", folder=path, count=len(summaries))
        return summaries

    def stat(self, token: str, uid: int) -> Optional[MessageSummary]:
        """Return the summary of one message, or ``None`` when it does not exist."""

        path = self._folder_map.resolve(token)
        if not self._store.reopen(path):
            raise StoreOperationError(f"cannot open folder {path}")
        overview = self._store.fetch_overviews([uid]).get(uid)
        if overview is None:
            return None
        return MessageSummary.from_overview(overview)
