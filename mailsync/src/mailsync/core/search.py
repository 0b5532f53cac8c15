"""Server side mailbox search with paged results.

What:
  Run a body text search in one folder or across every known folder and
  return one page of hits as ``folderToken:uid`` long ids.

Why:
  Devices only hold the sync window locally; searching older mail has to
  happen on the store. Results are paged because devices request them in
  fixed size ranges.

How:
  :func:`~mailsync.imap.search.build_search_filter` renders the textual
  filter; each searched folder is selected and queried with the ``UTF-8``
  charset. Hits are concatenated in folder order before the requested range
  is cut out.

Interfaces:
  :class:`SearchQuery`, :class:`SearchHit`, :class:`SearchResult`,
  :class:`MailboxSearch`.

Invariants & Safety:
  - Deep searches only cover folders the device already knows a token for.
  - A folder that cannot be opened or searched is skipped with a warning.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Tuple

from ..imap.search import build_search_filter
from ..utils.logging import JsonLogger, get_logger
from .errors import StoreOperationError
from .session import BackendSession


DEFAULT_FOLDER = "INBOX"


@dataclass(frozen=True)
class SearchQuery:
    """Search request; ``range`` is ``"start-end"`` with inclusive bounds."""

    free_text: str
    folder_token: Optional[str] = None
    since: Optional[date] = None
    before: Optional[date] = None
    deep: bool = False
    range: Optional[str] = None


@dataclass(frozen=True)
class SearchHit:
    long_id: str
    folder_token: str
    message_id: int


@dataclass
class SearchResult:
    hits: List[SearchHit] = field(default_factory=list)
    total: int = 0
    range: str = ""


def parse_range(value: Optional[str], max_results: int) -> Tuple[int, int]:
    """Return inclusive ``(start, end)`` bounds for a ``"start-end"`` range.

    A missing or malformed range selects the first ``max_results`` hits.
    """

    default = (0, max_results - 1)
    if not value:
        return default
    pieces = value.split("-")
    if len(pieces) != 2:
        return default
    try:
        start, end = int(pieces[0]), int(pieces[1])
    except ValueError:
        return default
    if start < 0 or end < start:
        return default
    return start, end


class MailboxSearch:
    """Search provider for one session."""

    def __init__(self, session: BackendSession, *, logger: Optional[JsonLogger] = None):
        self._session = session
        self._logger = logger or get_logger("core.search")

    def _targets(self, query: SearchQuery) -> List[Tuple[str, str]]:
        folder_map = self._session.folder_map
        if query.deep:
            targets = []
            for entry in self._session.store.list_folders():
                token = folder_map.lookup(entry.name)
                if token is not None:
                    targets.append((token, entry.name))
            return targets
        token = query.folder_token or folder_map.tokenize(DEFAULT_FOLDER)
        return [(token, folder_map.resolve(token))]

    def search_mailbox(self, query: SearchQuery) -> SearchResult:
        """Run ``query`` and return the requested page of hits.

        What:
          Searches the target folders, counts every hit, and returns the hits
          inside the requested range together with the effective range.

        Args:
          query: Search request.

        Returns:
          :class:`SearchResult`; empty with ``total == 0`` when nothing matched.

        Raises:
          StaleFolderError: When a non-deep search names an unknown folder.
        """

        settings = self._session.config.sync
        criteria = build_search_filter(
            query.free_text,
            since=query.since,
            before=query.before,
            window_days=settings.search_window_days,
        )
        store = self._session.store
        found: List[SearchHit] = []
        for token, path in self._targets(query):
            if not store.reopen(path):
                continue
            try:
                uids = store.search(criteria, charset="UTF-8")
            except StoreOperationError as exc:
                self._logger.warning("search_folder_failed", folder=path, error=str(exc))
                continue
            self._logger.debug("search_folder_hits", folder=path, hits=len(uids))
            found.extend(SearchHit(long_id=f"{token}:{uid}", folder_token=token, message_id=uid) for uid in uids)

        total = len(found)
        if total == 0:
            return SearchResult()
        start, end = parse_range(query.range, settings.search_max_results)
        if start >= total:
            return SearchResult(total=total)
        last = min(end, total - 1)
        return SearchResult(hits=found[start : last + 1], total=total, range=f"{start}-{last}")
