"""Bidirectional mapping between mailbox paths and opaque folder tokens.

What:
  Hand out stable 16-hex-digit tokens for mailbox paths and resolve them back,
  persisting the mapping per device so tokens survive across sync requests.

Why:
  Mailbox paths are volatile (renames, vendor encodings) and may contain
  characters the sync protocol cannot carry. The mobile engine therefore only
  ever sees tokens; an unknown token means the client holds a stale hierarchy.

How:
  Both directions live in a :class:`~mailsync.config.schema.FolderMapState`.
  :meth:`FolderIdMap.tokenize` checks the reverse map first and, on a miss,
  generates a collision-checked token, inserts both directions, and saves the
  whole document inside one lock-protected critical section.

Interfaces:
  :class:`FolderIdMap`.

Invariants & Safety:
  - ``resolve(tokenize(path)) == path`` for every path tokenized so far.
  - Distinct paths never share a token; repeated tokenization is idempotent.
  - Two concurrent insertions for one device observe each other's writes.
"""
from __future__ import annotations

import threading
from typing import Dict, Optional

from ..config.schema import FolderMapState
from ..config.state_store import DeviceStateStore
from ..utils.ids import new_folder_token
from ..utils.logging import JsonLogger, get_logger
from .errors import StaleFolderError


class FolderIdMap:
    """Persistent path/token bijection for a single device.

    What:
      Wraps the device state document and exposes ``resolve``, ``lookup`` and
      ``tokenize``.

    Why:
      Every store operation starts by turning a client-supplied token into a
      path; centralising that step gives one place to raise
      :class:`StaleFolderError`.

    How:
      Loads the document eagerly at construction, persists on each new
      insertion, and rewrites it once more on :meth:`flush` at session end.
    """

    def __init__(self, store: DeviceStateStore, *, logger: Optional[JsonLogger] = None):
        self._store = store
        self._state = store.load()
        self._lock = threading.Lock()
        self._logger = logger or get_logger("core.folder_map")

    def resolve(self, token: str) -> str:
        """Return the mailbox path of ``token``.

        Raises:
          StaleFolderError: When the token was never issued to this device.
        """

        path = self._state.token_to_path.get(token)
        if path is None:
            raise StaleFolderError(token)
        return path

    def lookup(self, path: str) -> Optional[str]:
        """Return the token of ``path`` without issuing a new one."""

        return self._state.path_to_token.get(path)

    def tokenize(self, path: str) -> str:
        """Return the token for ``path``, creating and persisting it on first use.

        What:
          Looks the path up in the reverse map; on a miss draws a fresh token
          that is not already issued.

        Why:
          The insertion and the save must happen as one unit so a concurrent
          request on the same device cannot hand out a second token for the
          same path or lose an insertion.

        Args:
          path: Native mailbox path.

        Returns:
          The folder token for ``path``.
        """

        existing = self._state.path_to_token.get(path)
        if existing is not None:
            return existing
        with self._lock:
            existing = self._state.path_to_token.get(path)
            if existing is not None:
                return existing
            token = new_folder_token(self._state.token_to_path)
            self._state.token_to_path[token] = path
            self._state.path_to_token[path] = token
            self._store.save(self._state)
        self._logger.debug("folder_token_issued", token=token, folder=path)
        return token

    def snapshot(self) -> Dict[str, str]:
        """Return a copy of the ``token -> path`` direction."""

        return dict(self._state.token_to_path)

    def flush(self) -> None:
        """Write the current mapping to disk."""

        with self._lock:
            self._store.save(self._state)

    @property
    def state(self) -> FolderMapState:
        return self._state
