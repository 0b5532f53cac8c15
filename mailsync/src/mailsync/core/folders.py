"""Folder hierarchy operations exposed to the sync engine.

What:
  List folders with their parent tokens and display names, describe a single
  folder including its type, locate the waste basket, and create folders.

Why:
  The engine builds the device's folder tree from these records. Special
  folders (inbox, sent, trash, drafts) need fixed names and types so that
  devices file sent mail and deleted items correctly.

How:
  One ``LIST`` call feeds a :class:`~mailsync.imap.hierarchy.FolderTree`,
  which answers parent lookups in memory. Special folders are recognised by
  :func:`~mailsync.imap.hierarchy.classify`; the tokens of the sent and trash
  folders are remembered on the session for the outbox and deletions.

Interfaces:
  :data:`ROOT_PARENT`, :class:`FolderStat`, :class:`SyncFolder`,
  :class:`FolderService`.

Invariants & Safety:
  - Folders matching an excluded pattern never appear in listings.
  - Top-level folders report :data:`ROOT_PARENT` as their parent.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from ..imap.hierarchy import FolderTree, FolderType, classify
from ..utils.logging import JsonLogger, get_logger
from .session import BackendSession


ROOT_PARENT = "0"
_INBOX = "inbox"


@dataclass(frozen=True)
class FolderStat:
    token: str
    parent_token: str
    display_name: str


@dataclass(frozen=True)
class SyncFolder:
    token: str
    parent_token: str
    display_name: str
    folder_type: FolderType

    def stat(self) -> FolderStat:
        return FolderStat(token=self.token, parent_token=self.parent_token, display_name=self.display_name)


class FolderService:
    """Folder operations for one session."""

    def __init__(self, session: BackendSession, *, logger: Optional[JsonLogger] = None):
        self._session = session
        self._logger = logger or get_logger("core.folders")

    def _tree(self) -> FolderTree:
        store = self._session.store
        return FolderTree.from_listing(store.list_folders(), store.delimiter)

    def is_excluded(self, path: str) -> bool:
        """Return whether ``path`` matches one of the excluded patterns."""

        lowered = path.lower()
        return any(pattern.lower() in lowered for pattern in self._session.config.imap.excluded_folders)

    def get_folder_list(self) -> List[FolderStat]:
        """Return every visible folder, in server listing order.

        Tokens are issued for folders seen for the first time.
        """

        store = self._session.store
        entries = store.list_folders()
        tree = FolderTree.from_listing(entries, store.delimiter)
        folders: List[FolderStat] = []
        for entry in entries:
            if self.is_excluded(entry.name):
                self._logger.debug("folder_excluded", folder=entry.name)
                continue
            folders.append(self._describe(entry.name, tree).stat())
        return folders

    def get_folder(self, token: str) -> SyncFolder:
        """Describe the folder behind ``token``.

        Raises:
          StaleFolderError: When ``token`` is unknown.
        """

        path = self._session.folder_map.resolve(token)
        return self._describe(path, self._tree())

    def stat_folder(self, token: str) -> FolderStat:
        return self.get_folder(token).stat()

    def _describe(self, path: str, tree: FolderTree) -> SyncFolder:
        session = self._session
        folder_map = session.folder_map
        token = folder_map.tokenize(path)
        kind = classify(path, session.config.imap.sent_folder)

        if kind.folder_type is FolderType.USER_MAIL:
            parent, display_name = tree.locate(path)
            parent_token = folder_map.tokenize(parent) if parent else ROOT_PARENT
        else:
            display_name = kind.display_name or path
            parent_token = folder_map.tokenize(path[: len(_INBOX)]) if kind.under_inbox else ROOT_PARENT
            if kind.folder_type is FolderType.SENT:
                session.sent_token = token
            elif kind.folder_type is FolderType.TRASH:
                session.waste_token = token
        return SyncFolder(token=token, parent_token=parent_token, display_name=display_name, folder_type=kind.folder_type)

    def get_waste_basket(self) -> Optional[str]:
        """Return the token of the trash folder, or ``None`` when there is none.

        What:
          Checks for a top-level ``Trash`` folder first and falls back to a full
          hierarchy listing, which remembers the trash token as a side effect.
        """

        session = self._session
        if session.waste_token is None:
            if session.store.folder_exists("Trash"):
                session.waste_token = session.folder_map.tokenize("Trash")
            else:
                self.get_folder_list()
        return session.waste_token

    def create_folder(self, parent_token: str, display_name: str) -> Optional[FolderStat]:
        """Create ``display_name`` below ``parent_token``.

        Args:
          parent_token: Token of the parent folder, or :data:`ROOT_PARENT`.
          display_name: Name of the new folder level.

        Returns:
          The new folder's stat, or ``None`` when the server refused it.

        Raises:
          StaleFolderError: When ``parent_token`` is unknown.
        """

        store = self._session.store
        if parent_token == ROOT_PARENT:
            path = display_name
        else:
            path = f"{self._session.folder_map.resolve(parent_token)}{store.delimiter}{display_name}"
        if not store.create_folder(path):
            return None
        self._logger.info("folder_created", folder=path)
        return self.stat_folder(self._session.folder_map.tokenize(path))

    def rename_folder(self, token: str, display_name: str) -> Optional[FolderStat]:
        """Renaming would change the path behind a token; it is refused."""

        self._logger.info("folder_rename_unsupported", token=token)
        return None

    def delete_folder(self, token: str) -> bool:
        self._logger.info("folder_delete_unsupported", token=token)
        return False
