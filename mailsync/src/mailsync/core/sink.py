"""Polling change detector simulating push notifications.

What:
  Watch a set of folders and block until any of them changes or a timeout
  elapses, reporting the folder tokens whose composite counter moved.

Why:
  The mail store has no usable push channel across all servers, yet the mobile
  engine expects a long-poll style "wait for changes" call. Re-checking cheap
  ``STATUS`` counters at a fixed cadence approximates it.

How:
  :meth:`ChangeSink.arm` resolves tokens and resets their counters.
  :meth:`ChangeSink.poll` repeatedly selects each watched folder, issues a NOOP
  and a ``STATUS`` query, and compares the resulting
  :class:`CompositeCounter` with the previous observation. The clock and the
  sleep function are injectable so tests run instantly.

Interfaces:
  :class:`ChangeSink`, :class:`CompositeCounter`.

Invariants & Safety:
  - The first observation of a folder only seeds its counter.
  - A changed folder is reported once per poll and its counter is updated
    immediately, so a later change is seen by the next poll.
  - A poll with nothing armed still blocks for the whole timeout.
  - A failing status check is logged and skipped; it never aborts the poll.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..imap.client import ImapStore
from ..utils.logging import JsonLogger, get_logger
from .errors import StaleFolderError, StoreOperationError
from .folder_map import FolderIdMap


@dataclass(frozen=True)
class CompositeCounter:
    """Cheap change fingerprint of a folder."""

    messages: int
    recent: int
    unseen: int


class ChangeSink:
    """Blocking change detector over a set of armed folders.

    What:
      Keeps per-folder counters in memory and compares them on each pass.

    Why:
      Counters are per-process state; they are never persisted, so a new
      worker always starts from "unknown" and cannot report spurious changes.
    """

    def __init__(
        self,
        store: ImapStore,
        folder_map: FolderIdMap,
        *,
        interval_s: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[JsonLogger] = None,
    ):
        self._store = store
        self._folder_map = folder_map
        self._interval = interval_s
        self._clock = clock
        self._sleep = sleep
        self._logger = logger or get_logger("core.sink")
        self._watched: Dict[str, str] = {}
        self._counters: Dict[str, Optional[CompositeCounter]] = {}

    @property
    def armed(self) -> List[str]:
        return list(self._watched)

    def arm(self, token: str) -> bool:
        """Add the folder behind ``token`` to the watch set.

        Returns:
          ``True`` when the folder is watched afterwards, ``False`` when the
          token could not be resolved (the folder is skipped).
        """

        try:
            path = self._folder_map.resolve(token)
        except StaleFolderError:
            self._logger.debug("sink_arm_skipped", token=token)
            return False
        if token not in self._watched:
            self._watched[token] = path
            self._counters[token] = None
        return True

    def poll(self, timeout_s: float) -> List[str]:
        """Block until a watched folder changes or ``timeout_s`` elapses.

        What:
          Runs at least one pass over the watched folders, then keeps passing
          every ``interval_s`` seconds until something changed.

        Why:
          Returning early with nothing armed would turn the caller into a busy
          loop, so an empty watch set simply sleeps out the timeout.

        Args:
          timeout_s: Upper bound on the time spent blocking.

        Returns:
          Tokens of the folders that changed; empty when nothing did.
        """

        if not self._watched:
            self._sleep(timeout_s)
            return []
        deadline = self._clock() + timeout_s
        while True:
            changed = self._pass()
            remaining = deadline - self._clock()
            if changed or remaining <= 0:
                if changed:
                    self._logger.debug("sink_changes", folders=changed)
                return changed
            self._sleep(min(self._interval, remaining))

    def _pass(self) -> List[str]:
        changed: List[str] = []
        for token, path in self._watched.items():
            counter = self._observe(path)
            if counter is None:
                continue
            previous = self._counters.get(token)
            self._counters[token] = counter
            if previous is not None and previous != counter:
                changed.append(token)
        return changed

    def _observe(self, path: str) -> Optional[CompositeCounter]:
        try:
            self._store.reopen(path)
            self._store.check()
            status = self._store.status(path)
        except StoreOperationError as exc:
            self._logger.warning("sink_status_failed", folder=path, error=str(exc))
            return None
        return CompositeCounter(messages=status.messages, recent=status.recent, unseen=status.unseen)
