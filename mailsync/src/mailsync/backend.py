"""Session facade exposing every sync operation to the outer engine.

What:
  Provide :class:`ImapSyncBackend`, the object a sync worker drives for one
  device: logon and logoff, folder hierarchy, change notifications, listings,
  message reads and changes, attachment downloads, submission and search.

Why:
  The outer engine speaks in folder tokens and message ids and expects typed
  failures. Wiring the services behind one facade keeps that contract in a
  single place and keeps the per-device state on an explicit
  :class:`~mailsync.core.session.BackendSession`.

How:
  :meth:`ImapSyncBackend.logon` opens the store, loads the device's folder
  map and builds the services around the new session. Every other method
  delegates to a service. :meth:`ImapSyncBackend.logoff` reports the store's
  soft failures, closes the connection and flushes the folder map.

Interfaces:
  :class:`ImapSyncBackend`, :class:`BackendSession` (re-exported).

Invariants & Safety:
  - Operations before a successful logon raise
    :class:`~mailsync.core.errors.StoreUnavailableError`.
  - An unusable state directory is fatal; a refused login is not.
"""
from __future__ import annotations

import os
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from .config.loader import get_runtime_config
from .config.schema import RuntimeConfig, SmtpSettings
from .config.state_store import DeviceStateStore, StateStoreError
from .core.attachments import AttachmentData, AttachmentResolver
from .core.composer import MessageComposer
from .core.errors import FatalBackendError, StoreUnavailableError
from .core.folder_map import FolderIdMap
from .core.folders import FolderService, FolderStat, SyncFolder
from .core.listing import MessageListing, MessageSummary
from .core.messages import BodyRequest, MessageService, SyncMessage
from .core.outbox import Outbox, SendRequest, SendResult
from .core.search import MailboxSearch, SearchQuery, SearchResult
from .core.session import BackendSession
from .core.sink import ChangeSink
from .imap.client import ImapConfig, ImapStore
from .smtp.transport import MailTransport, SmtpTransport
from .utils.logging import JsonLogger, get_logger


TransportFactory = Callable[[SmtpSettings, str, str], MailTransport]

__all__ = ["BackendSession", "ImapSyncBackend"]


class ImapSyncBackend:
    """Sync backend for one device backed by an IMAP store.

    What:
      Owns the session and the services for the lifetime of a logon.

    Why:
      Sync workers are long lived and handle one device each; keeping all
      mutable state on this object (and its session) lets tests and workers
      create as many independent backends as they need.
    """

    def __init__(
        self,
        config: Optional[RuntimeConfig] = None,
        *,
        transport_factory: Optional[TransportFactory] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[JsonLogger] = None,
    ):
        self._config = config
        self._transport_factory = transport_factory or SmtpTransport.from_settings
        self._clock = clock
        self._sleep = sleep
        self._logger = logger or get_logger("backend")
        self._session: Optional[BackendSession] = None

    # Session lifecycle ------------------------------------------------------
    def logon(self, username: str, password: str, domain: str = "", device_id: str = "default") -> bool:
        """Authenticate and prepare the session for ``device_id``.

        What:
          Checks the state directory, connects to the store and loads the
          device's folder map.

        Why:
          A refused login is an ordinary outcome reported as ``False``. A state
          directory that cannot be written would silently lose folder tokens,
          so it aborts the session instead.

        Args:
          username: Store login.
          password: Store password.
          domain: Login domain, used for the default sender.
          device_id: Identifier of the device's folder map.

        Returns:
          ``True`` when the session is ready.

        Raises:
          FatalBackendError: When the state directory or the device state is
            unusable.
        """

        config = self._config or get_runtime_config()
        state_dir = Path(config.paths.state_dir).expanduser()
        try:
            state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FatalBackendError(f"state directory {state_dir} cannot be created: {exc}") from exc
        if not os.access(state_dir, os.W_OK):
            raise FatalBackendError(f"state directory {state_dir} is not writable")

        store = ImapStore(ImapConfig.from_settings(config.imap, username, password))
        try:
            store.connect()
        except StoreUnavailableError as exc:
            self._logger.error("logon_failed", user=username, host=config.imap.host, error=str(exc))
            return False
        try:
            folder_map = FolderIdMap(DeviceStateStore.for_device(state_dir, device_id))
        except StateStoreError as exc:
            store.close()
            raise FatalBackendError(str(exc)) from exc

        session = BackendSession(
            store=store,
            folder_map=folder_map,
            config=config,
            username=username,
            domain=domain,
            device_id=device_id,
        )
        composer = MessageComposer(inline_forward=config.sync.inline_forward)
        self._session = session
        self._folders = FolderService(session)
        self._listing = MessageListing(store, folder_map)
        self._messages = MessageService(session, composer)
        self._attachments = AttachmentResolver(store, folder_map)
        self._outbox = Outbox(session, self._transport_factory(config.smtp, username, password), composer)
        self._search = MailboxSearch(session)
        self._sink = ChangeSink(
            store,
            folder_map,
            interval_s=config.sync.sink_interval_s,
            clock=self._clock,
            sleep=self._sleep,
        )
        self._logger.info("logon_ok", user=username, host=config.imap.host, device=device_id)
        return True

    def logoff(self) -> None:
        """Report pending store errors, close the store and flush the folder map."""

        session = self._session
        if session is None:
            return
        for entry in session.store.drain_journal():
            if "fail" in entry.lower():
                self._logger.warning("store_reported", detail=entry)
            else:
                self._logger.debug("store_reported", detail=entry)
        session.store.close()
        session.folder_map.flush()
        self._session = None
        self._logger.info("logoff_ok", user=session.username, device=session.device_id)

    def _ready(self) -> None:
        if self._session is None:
            raise StoreUnavailableError("backend is not logged on")

    @property
    def session(self) -> BackendSession:
        self._ready()
        return self._session

    # Folders ----------------------------------------------------------------
    def get_folder_list(self) -> List[FolderStat]:
        self._ready()
        return self._folders.get_folder_list()

    def get_folder(self, token: str) -> SyncFolder:
        self._ready()
        return self._folders.get_folder(token)

    def stat_folder(self, token: str) -> FolderStat:
        self._ready()
        return self._folders.stat_folder(token)

    def get_waste_basket(self) -> Optional[str]:
        self._ready()
        return self._folders.get_waste_basket()

    def create_folder(self, parent_token: str, display_name: str) -> Optional[FolderStat]:
        self._ready()
        return self._folders.create_folder(parent_token, display_name)

    def rename_folder(self, token: str, display_name: str) -> Optional[FolderStat]:
        self._ready()
        return self._folders.rename_folder(token, display_name)

    def delete_folder(self, token: str) -> bool:
        self._ready()
        return self._folders.delete_folder(token)

    # Change notifications ---------------------------------------------------
    def has_changes_sink(self) -> bool:
        return True

    def changes_sink_initialize(self, token: str) -> bool:
        self._ready()
        return self._sink.arm(token)

    def changes_sink(self, timeout_s: Optional[float] = None) -> List[str]:
        session = self.session
        if timeout_s is None:
            timeout_s = session.config.sync.sink_timeout_s
        return self._sink.poll(timeout_s)

    # Listing and messages ---------------------------------------------------
    def get_message_list(self, token: str, cutoff: Optional[datetime] = None) -> List[MessageSummary]:
        self._ready()
        return self._listing.list(token, cutoff)

    def stat_message(self, token: str, uid: int) -> Optional[MessageSummary]:
        self._ready()
        return self._listing.stat(token, uid)

    def get_message(self, token: str, uid: int, request: Optional[BodyRequest] = None) -> SyncMessage:
        self._ready()
        return self._messages.get_message(token, uid, request)

    def set_read_flag(self, token: str, uid: int, read: bool) -> bool:
        self._ready()
        return self._messages.set_read_flag(token, uid, read)

    def set_star_flag(self, token: str, uid: int, flagged: bool) -> bool:
        self._ready()
        return self._messages.set_star_flag(token, uid, flagged)

    def change_message(self, token: str, uid: int, *, flagged: Optional[bool] = None) -> Optional[MessageSummary]:
        self._ready()
        return self._messages.change_message(token, uid, flagged=flagged)

    def delete_message(self, token: str, uid: int) -> bool:
        self._ready()
        return self._messages.delete_message(token, uid)

    def move_message(self, token: str, uid: int, destination_token: str) -> str:
        self._ready()
        return self._messages.move_message(token, uid, destination_token)

    # Attachments, submission and search -------------------------------------
    def get_attachment_data(self, reference: str) -> AttachmentData:
        self._ready()
        return self._attachments.fetch(reference)

    def send_mail(self, request: SendRequest) -> SendResult:
        self._ready()
        return self._outbox.send(request)

    def search_mailbox(self, query: SearchQuery) -> SearchResult:
        self._ready()
        return self._search.search_mailbox(query)
