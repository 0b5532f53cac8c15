"""Stateful mail store session with reconnect and reopen guardrails.

What:
  Wrap the third-party ``imapclient`` library in a single-connection session
  that tracks the currently open folder, reconnects transparently, and exposes
  the narrow set of UID-based commands the sync adapter relies upon.

Why:
  The sync adapter treats the mail store as a black box, but direct use of
  ``imapclient`` exposes sharp edges: the "currently selected folder" cursor is
  hidden session state, dropped connections surface as a zoo of exceptions, and
  servers differ in MOVE support. Centralised guardrails keep every component
  on the same policy.

How:
  :class:`ImapStore` lazily connects in :meth:`ImapStore.__enter__`, remembers
  the selected folder, and reopens only when a different folder is requested
  (or a refresh is forced). Every command runs through :meth:`ImapStore._run`,
  which converts library errors into :class:`StoreOperationError` and performs
  exactly one reconnect-and-retry when the connection itself was lost.

Interfaces:
  :class:`ImapConfig`, :class:`ImapStore`, :class:`FolderEntry`,
  :class:`FolderStatus`, :class:`Overview`.

Invariants & Safety:
  - All message operations use UIDs; sequence numbers are never exposed.
  - Body fetches use ``BODY.PEEK[]`` so reading never sets ``\\Seen``.
  - A reconnect discards the selected-folder cursor; the folder is selected
    again before a retried command runs.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, TypeVar

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError

from ..config.schema import ImapSettings
from ..core.errors import StoreOperationError, StoreUnavailableError
from ..utils.dates import cleanup_date
from ..utils.logging import JsonLogger, get_logger


T = TypeVar("T")

_STORE_ERRORS = (IMAPClientError, OSError)
_STATUS_ITEMS = ["MESSAGES", "RECENT", "UNSEEN", "UIDNEXT"]
_OVERVIEW_ITEMS = ["UID", "FLAGS", "INTERNALDATE"]


def _text(value) -> str:
    return value.decode("utf-8", errors="replace") if isinstance(value, bytes) else str(value)


@dataclass
class ImapConfig:
    """Connection parameters for the mail store.

    Attributes:
      host: IMAP hostname.
      username: Login credential.
      password: Password or app-specific token.
      port: IMAP port (defaults to 993).
      ssl: Whether to use TLS.
    """

    host: str
    username: str
    password: str
    port: int = 993
    ssl: bool = True

    @classmethod
    def from_settings(cls, settings: ImapSettings, username: str, password: str) -> "ImapConfig":
        """Combine runtime settings with per-session credentials."""

        return cls(
            host=settings.host,
            username=username,
            password=password,
            port=settings.port,
            ssl=settings.ssl,
        )


@dataclass(frozen=True)
class FolderEntry:
    """One line of a ``LIST`` response."""

    name: str
    delimiter: Optional[str]
    flags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FolderStatus:
    """Counters returned by ``STATUS`` for a single folder."""

    messages: int
    recent: int
    unseen: int
    uidnext: int


@dataclass(frozen=True)
class Overview:
    """Lightweight per-message summary fetched without the body.

    Flags are stored lower-cased so membership checks are case-insensitive.
    """

    uid: int
    flags: FrozenSet[str]
    internal_date: Optional[datetime]

    @property
    def seen(self) -> bool:
        return "\\seen" in self.flags

    @property
    def flagged(self) -> bool:
        return "\\flagged" in self.flags

    @property
    def answered(self) -> bool:
        return "\\answered" in self.flags

    @property
    def deleted(self) -> bool:
        return "\\deleted" in self.flags


class ImapStore:
    """Context manager owning one ``imapclient.IMAPClient`` connection.

    What:
      Mediates folder selection, liveness checks, and UID-based commands for a
      single device session.

    Why:
      Every sync operation targets a folder; keeping the selection cursor in one
      place lets callers state *which* folder they need without caring whether
      it is already open.

    How:
      Connects in :meth:`connect`, caches the hierarchy delimiter reported by
      the first ``LIST`` entry, and funnels commands through :meth:`_run`.
      Soft failures (a folder that cannot be opened or created) are recorded in
      an error journal that the session drains at logoff.
    """

    def __init__(self, config: ImapConfig, *, logger: Optional[JsonLogger] = None):
        """Initialise the session without touching the network.

        Args:
          config: Connection parameters and credentials.
          logger: Optional structured logger override.
        """

        self._config = config
        self._client: Optional[IMAPClient] = None
        self._selected: Optional[str] = None
        self._delimiter: str = "."
        self._journal: List[str] = []
        self._logger = logger or get_logger("imap.store")

    def __enter__(self) -> "ImapStore":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Connection lifecycle ---------------------------------------------------
    def connect(self) -> None:
        """Open the connection, log in, and learn the hierarchy delimiter.

        What:
          Instantiates ``IMAPClient`` with the configured host and performs
          login.

        Why:
          Logon must fail loudly and early; later operations assume an
          authenticated connection.

        Raises:
          StoreUnavailableError: When the server is unreachable or rejects the
            credentials.
        """

        try:
            client = IMAPClient(self._config.host, port=self._config.port, ssl=self._config.ssl)
            client.login(self._config.username, self._config.password)
        except _STORE_ERRORS as exc:
            raise StoreUnavailableError(
                f"cannot connect as {self._config.username!r} on {self._config.host}: {exc}"
            ) from exc
        self._client = client
        self._selected = None
        self._delimiter = self._discover_delimiter()

    def close(self) -> None:
        """Log out and release the connection, tolerating a dead socket."""

        if self._client is None:
            return
        try:
            self._client.logout()
        except _STORE_ERRORS as exc:
            self._logger.debug("imap_logout_failed", error=str(exc))
        finally:
            self._client = None
            self._selected = None

    def reconnect(self) -> None:
        """Drop the current connection and establish a new one.

        The previously selected folder is selected again so a retried command
        runs against the same folder.

        Raises:
          StoreUnavailableError: When the new connection cannot be established.
        """

        previous = self._selected
        self.close()
        self.connect()
        self._logger.info("imap_reconnected", host=self._config.host)
        if previous is not None:
            self.reopen(previous)

    def ensure_alive(self) -> None:
        """Ping the server and reconnect once when the ping fails."""

        try:
            self.client.noop()
        except _STORE_ERRORS as exc:
            self._logger.warning("imap_liveness_failed", error=str(exc))
            self.reconnect()

    def _discover_delimiter(self) -> str:
        try:
            listing = self.client.list_folders()
        except _STORE_ERRORS as exc:
            self._logger.warning("imap_delimiter_unknown", error=str(exc))
            return "."
        for _flags, delimiter, _name in listing:
            if delimiter:
                return _text(delimiter)
            break
        return "."

    @property
    def client(self) -> IMAPClient:
        """Return the connected ``IMAPClient``.

        Raises:
          StoreUnavailableError: If accessed before :meth:`connect`.
        """

        if self._client is None:
            raise StoreUnavailableError("mail store not connected")
        return self._client

    @property
    def delimiter(self) -> str:
        return self._delimiter

    @property
    def selected(self) -> Optional[str]:
        return self._selected

    def drain_journal(self) -> List[str]:
        """Return and clear the soft failures recorded during the session."""

        entries, self._journal = self._journal, []
        return entries

    def _record(self, message: str) -> None:
        self._journal.append(message)

    def _run(self, command: str, call: Callable[[IMAPClient], T]) -> T:
        """Execute ``call`` against the client with the retry policy applied.

        What:
          Runs a single command, translating library errors into
          :class:`StoreOperationError`.

        Why:
          A lost connection is retried exactly once after a reconnect; any other
          failure is reported immediately without backoff.

        Args:
          command: Short command name used in logs and error messages.
          call: Callable receiving the live ``IMAPClient``.

        Returns:
          Whatever ``call`` returns.

        Raises:
          StoreOperationError: When the command fails (after the retry, if any).
          StoreUnavailableError: When the reconnect itself fails.
        """

        try:
            return call(self.client)
        except (IMAPClientAbortError, OSError) as exc:
            self._logger.warning("imap_connection_lost", command=command, error=str(exc))
            self.reconnect()
            try:
                return call(self.client)
            except _STORE_ERRORS as retry_exc:
                raise StoreOperationError(f"{command} failed after reconnect: {retry_exc}") from retry_exc
        except IMAPClientError as exc:
            raise StoreOperationError(f"{command} failed: {exc}") from exc

    # Folder commands --------------------------------------------------------
    def reopen(self, path: str, *, force: bool = False) -> bool:
        """Make ``path`` the selected folder unless it already is.

        What:
          Checks liveness, then selects ``path`` when it differs from the
          current selection or ``force`` is set.

        Why:
          Servers only refresh some counters on a fresh SELECT; listing passes
          ``force=True`` to see new arrivals.

        Args:
          path: Native mailbox path.
          force: Re-select even when ``path`` is already selected.

        Returns:
          ``True`` when ``path`` is selected afterwards, ``False`` when the
          server refused it (the failure is logged and journaled).

        Raises:
          StoreUnavailableError: When the liveness reconnect fails.
        """

        self.ensure_alive()
        if self._selected == path and not force:
            return True
        try:
            self.client.select_folder(path)
        except _STORE_ERRORS as exc:
            self._logger.warning("imap_reopen_failed", folder=path, error=str(exc))
            self._record(f"failed to open folder {path}: {exc}")
            return False
        self._selected = path
        return True

    def check(self) -> None:
        """Issue a NOOP so servers flush their cached folder status."""

        self._run("NOOP", lambda client: client.noop())

    def list_folders(self) -> List[FolderEntry]:
        """Return every folder visible to the login."""

        listing = self._run("LIST", lambda client: client.list_folders())
        entries: List[FolderEntry] = []
        for flags, delimiter, name in listing:
            entries.append(
                FolderEntry(
                    name=_text(name),
                    delimiter=_text(delimiter) if delimiter else None,
                    flags=tuple(_text(flag) for flag in flags or ()),
                )
            )
        return entries

    def folder_exists(self, path: str) -> bool:
        return bool(self._run("LIST", lambda client: client.folder_exists(path)))

    def create_folder(self, path: str) -> bool:
        """Create ``path``; failures are logged and reported as ``False``."""

        try:
            self._run("CREATE", lambda client: client.create_folder(path))
        except StoreOperationError as exc:
            self._logger.warning("imap_create_failed", folder=path, error=str(exc))
            self._record(f"failed to create folder {path}: {exc}")
            return False
        self._logger.debug("imap_folder_created", folder=path)
        return True

    def status(self, path: str) -> FolderStatus:
        """Return the ``STATUS`` counters of ``path``."""

        raw = self._run("STATUS", lambda client: client.folder_status(path, _STATUS_ITEMS))
        return FolderStatus(
            messages=int(raw.get(b"MESSAGES", 0)),
            recent=int(raw.get(b"RECENT", 0)),
            unseen=int(raw.get(b"UNSEEN", 0)),
            uidnext=int(raw.get(b"UIDNEXT", 0)),
        )

    # Message commands -------------------------------------------------------
    def search(self, criteria, charset: Optional[str] = None) -> List[int]:
        """Run a UID search in the selected folder and return sorted UIDs."""

        result = self._run("SEARCH", lambda client: client.search(criteria, charset))
        return sorted(int(uid) for uid in result)

    def fetch_overviews(self, uids: Sequence[int]) -> Dict[int, Overview]:
        """Fetch flags and internal dates for ``uids`` in the selected folder."""

        if not uids:
            return {}
        response = self._run("FETCH", lambda client: client.fetch(list(uids), _OVERVIEW_ITEMS))
        overviews: Dict[int, Overview] = {}
        for key, data in response.items():
            uid = data.get(b"UID", key)
            if uid is None:
                continue
            flags = frozenset(_text(flag).lower() for flag in data.get(b"FLAGS", ()))
            overviews[int(uid)] = Overview(
                uid=int(uid),
                flags=flags,
                internal_date=cleanup_date(data.get(b"INTERNALDATE")),
            )
        return overviews

    def fetch_raw(self, uid: int) -> Optional[bytes]:
        """Return the full header+body blob of ``uid`` without marking it seen."""

        response = self._run("FETCH", lambda client: client.fetch([uid], ["BODY.PEEK[]"]))
        for data in response.values():
            raw = data.get(b"BODY[]")
            if raw is not None:
                return bytes(raw)
        return None

    def add_flags(self, uids: Iterable[int], flags: Sequence[str]) -> None:
        targets = list(uids)
        self._run("STORE", lambda client: client.add_flags(targets, list(flags)))

    def remove_flags(self, uids: Iterable[int], flags: Sequence[str]) -> None:
        targets = list(uids)
        self._run("STORE", lambda client: client.remove_flags(targets, list(flags)))

    def expunge(self) -> None:
        self._run("EXPUNGE", lambda client: client.expunge())

    def delete(self, uid: int) -> None:
        """Flag ``uid`` as deleted and expunge the selected folder."""

        self.add_flags([uid], ["\\Deleted"])
        self.expunge()

    def move(self, uid: int, destination: str) -> None:
        """Move ``uid`` into ``destination``.

        What:
          Uses ``MOVE`` when the server advertises it, otherwise ``COPY``
          followed by flagging the source as deleted. The caller expunges.

        Args:
          uid: Message UID in the selected folder.
          destination: Native path of the target folder.
        """

        if self.client.has_capability("MOVE"):
            self._run("MOVE", lambda client: client.move([uid], destination))
            return
        self._run("COPY", lambda client: client.copy([uid], destination))
        self.add_flags([uid], ["\\Deleted"])

    def append(self, path: str, message: bytes, flags: Sequence[str] = ()) -> None:
        """Append ``message`` to ``path`` with the given flags."""

        self._run("APPEND", lambda client: client.append(path, message, flags=tuple(flags)))
