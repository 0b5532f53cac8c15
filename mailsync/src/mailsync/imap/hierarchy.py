"""Folder hierarchy model built from a single ``LIST`` response.

What:
  Represent the mailbox namespace as a tree keyed by path segments and answer
  "who is my parent" and "what is my display name" questions without further
  round-trips. Also classify well-known folders (inbox, sent, trash, drafts).

Why:
  Mailbox names may contain the hierarchy delimiter inside a single level, and
  some servers list children whose intermediate levels are not selectable
  mailboxes. Walking up the tree until a real mailbox is found resolves both
  cases; probing the server once per ancestor would be slow.

How:
  :meth:`FolderTree.from_listing` inserts every listed path into a trie of
  segment nodes, marking the nodes that correspond to listed mailboxes.
  :meth:`FolderTree.locate` pops trailing segments into the display name until
  the remaining prefix is a real mailbox or a single segment.

Interfaces:
  :class:`FolderTree`, :class:`FolderType`, :func:`classify`.

Invariants & Safety:
  - A top-level folder has no parent (``None``); callers map that to the root
    token.
  - Display names of user folders never contain the leading parent path.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

from .client import FolderEntry


class FolderType(str, Enum):
    INBOX = "inbox"
    DRAFTS = "drafts"
    TRASH = "trash"
    SENT = "sent"
    USER_MAIL = "user_mail"


@dataclass
class _Node:
    children: Dict[str, "_Node"] = field(default_factory=dict)
    is_mailbox: bool = False


class FolderTree:
    """Trie of mailbox path segments.

    What:
      Holds the listed mailboxes for one delimiter and answers membership and
      parent queries.

    Why:
      Replaces repeated "is this a real folder" probes against the server with
      in-memory lookups over a listing taken once.
    """

    def __init__(self, delimiter: str):
        self.delimiter = delimiter or "."
        self._root = _Node()

    @classmethod
    def from_listing(cls, entries: Iterable[FolderEntry], delimiter: str) -> "FolderTree":
        tree = cls(delimiter)
        for entry in entries:
            tree.add(entry.name)
        return tree

    def add(self, path: str) -> None:
        node = self._root
        for segment in path.split(self.delimiter):
            node = node.children.setdefault(segment, _Node())
        node.is_mailbox = True

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        node = self._root
        for segment in path.split(self.delimiter):
            child = node.children.get(segment)
            if child is None:
                return False
            node = child
        return node.is_mailbox

    def locate(self, path: str) -> Tuple[Optional[str], str]:
        """Return ``(parent_path, display_name)`` for ``path``.

        What:
          Splits ``path`` on the delimiter and walks upwards until the remaining
          prefix is a listed mailbox or only one segment is left.

        Why:
          A level that is not itself a mailbox is folded into the display name,
          so ``A.B.C`` with only ``A`` listed becomes ``("A", "B.C")``.

        Args:
          path: Native mailbox path.

        Returns:
          Parent path (``None`` for top-level folders) and display name.
        """

        segments = path.split(self.delimiter)
        if len(segments) == 1:
            return None, path
        name = segments.pop()
        while True:
            parent = self.delimiter.join(segments)
            if len(segments) == 1 or parent in self:
                return parent, name
            name = f"{segments.pop()}{self.delimiter}{name}"

    def parent_of(self, path: str) -> Optional[str]:
        return self.locate(path)[0]

    def display_name(self, path: str) -> str:
        return self.locate(path)[1]


_TOP_LEVEL = {
    "inbox": (FolderType.INBOX, "Inbox"),
    "drafts": (FolderType.DRAFTS, "Drafts"),
    "trash": (FolderType.TRASH, "Trash"),
    "deleted messages": (FolderType.TRASH, "Trash"),
    "sent": (FolderType.SENT, "Sent"),
    "sent items": (FolderType.SENT, "Sent"),
}
_UNDER_INBOX = {
    "drafts": (FolderType.DRAFTS, "Drafts"),
    "trash": (FolderType.TRASH, "Trash"),
    "sent": (FolderType.SENT, "Sent"),
}


@dataclass(frozen=True)
class Classification:
    folder_type: FolderType
    display_name: Optional[str]
    under_inbox: bool = False


def classify(path: str, sent_folder: Optional[str] = None) -> Classification:
    """Map well-known mailbox names onto folder types.

    What:
      Recognises inbox, drafts, trash and sent folders at the top level and
      directly below ``INBOX`` (``INBOX.Sent`` or ``INBOX/Sent`` styles).

    Args:
      path: Native mailbox path.
      sent_folder: Configured sent folder path, compared case-insensitively.

    Returns:
      Classification with a fixed display name for special folders, or
      ``FolderType.USER_MAIL`` with no display name.
    """

    lowered = path.lower()
    if lowered in _TOP_LEVEL:
        folder_type, display = _TOP_LEVEL[lowered]
        return Classification(folder_type, display)
    if sent_folder and lowered == sent_folder.lower():
        return Classification(FolderType.SENT, "Sent")
    for separator in (".", "/"):
        prefix = f"inbox{separator}"
        if lowered.startswith(prefix) and lowered[len(prefix):] in _UNDER_INBOX:
            folder_type, display = _UNDER_INBOX[lowered[len(prefix):]]
            return Classification(folder_type, display, under_inbox=True)
    return Classification(FolderType.USER_MAIL, None)
