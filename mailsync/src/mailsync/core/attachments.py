"""Opaque attachment references and lazy attachment resolution.

What:
  Encode ``(folder token, message UID, part index)`` triples into the string
  handed to the mobile client, describe the attachments of a message at read
  time, and fetch the bytes of one attachment when the client asks for it.

Why:
  Clients download attachments in a separate request, possibly long after the
  message was read. The reference therefore has to carry everything needed to
  find the part again without any server-side session state.

How:
  References are the three fields joined by ``:``. Both the reader and the
  resolver enumerate parts with :meth:`MimeTree.flatten`, so an index issued
  during a read resolves to the same part later.

Interfaces:
  :class:`AttachmentRef`, :class:`AttachmentInfo`, :class:`AttachmentData`,
  :func:`describe_attachments`, :class:`AttachmentResolver`.

Invariants & Safety:
  - ``AttachmentRef.decode(ref.encode()) == ref`` for well-formed triples.
  - Malformed references and out-of-range indices raise
    :class:`InvalidAttachmentError`; they never crash the request.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from ..imap.client import ImapStore
from ..utils.logging import JsonLogger, get_logger
from ..utils.mime import parse_message, part_bytes
from .errors import InvalidAttachmentError, StaleFolderError
from .folder_map import FolderIdMap
from .mimetree import MimeNode, MimeTree


SEPARATOR = ":"
UNKNOWN_NAME = "unknown attachment"


@dataclass(frozen=True)
class AttachmentRef:
    """Address of one flattened part of a stored message."""

    folder_token: str
    message_id: int
    part_index: int

    def encode(self) -> str:
        return SEPARATOR.join((self.folder_token, str(self.message_id), str(self.part_index)))

    @classmethod
    def decode(cls, value: str) -> "AttachmentRef":
        """Parse ``folderToken:messageId:partIndex``.

        Raises:
          InvalidAttachmentError: When the field count is not three, a field is
            empty, or the numeric fields are not integers.
        """

        fields = value.split(SEPARATOR)
        if len(fields) != 3 or not all(fields):
            raise InvalidAttachmentError(f"malformed attachment reference {value!r}")
        token, message_id, part_index = fields
        try:
            return cls(folder_token=token, message_id=int(message_id), part_index=int(part_index))
        except ValueError as exc:
            raise InvalidAttachmentError(f"malformed attachment reference {value!r}") from exc


@dataclass(frozen=True)
class AttachmentInfo:
    """Attachment metadata exposed with a message read."""

    reference: str
    display_name: str
    content_type: str
    size: int
    content_id: Optional[str] = None
    is_inline: bool = False


@dataclass(frozen=True)
class AttachmentData:
    content_type: str
    data: bytes


def _display_name(node: MimeNode) -> str:
    part = node.part
    name = part.get_filename() or part.get_param("name")
    if not name:
        name = part.get("Content-Description")
    return str(name) if name else UNKNOWN_NAME


def describe_attachments(tree: MimeTree, folder_token: str, message_id: int) -> List[AttachmentInfo]:
    """List the attachments of a message together with their references.

    What:
      Walks the flattened part list and reports every part whose disposition
      is ``attachment``/``inline`` or whose main type is not ``text``.

    Why:
      The reference embeds the flattened position, so skipped parts (text
      bodies, containers) still consume an index.

    Args:
      tree: Decoded message.
      folder_token: Token of the folder holding the message.
      message_id: UID of the message.

    Returns:
      Attachment descriptions in flattened order.
    """

    infos: List[AttachmentInfo] = []
    for index, node in enumerate(tree.flatten()):
        if node.is_expanded_container or not node.is_attachment:
            continue
        content_id = node.part.get("Content-ID")
        infos.append(
            AttachmentInfo(
                reference=AttachmentRef(folder_token, message_id, index).encode(),
                display_name=_display_name(node),
                content_type=node.content_type,
                size=len(_node_bytes(node)),
                content_id=str(content_id).strip().strip("<>") if content_id else None,
                is_inline=node.disposition == "inline",
            )
        )
    return infos


def _node_bytes(node: MimeNode) -> bytes:
    if node.is_multipart:
        return node.part.as_bytes()
    return part_bytes(node.part)


class AttachmentResolver:
    """Resolve attachment references against the mail store.

    What:
      Turns a reference string back into the decoded bytes of a part.

    Why:
      Attachment downloads arrive as independent requests; the resolver
      re-fetches and re-flattens the message each time instead of caching.
    """

    def __init__(self, store: ImapStore, folder_map: FolderIdMap, *, logger: Optional[JsonLogger] = None):
        self._store = store
        self._folder_map = folder_map
        self._logger = logger or get_logger("core.attachments")

    def fetch(self, reference: str) -> AttachmentData:
        """Return the bytes and content type of the referenced part.

        Args:
          reference: Value previously produced by :func:`describe_attachments`.

        Returns:
          :class:`AttachmentData` for the part.

        Raises:
          InvalidAttachmentError: When the reference is malformed, its folder
            is unknown, the message is gone, or the index does not address an
            attachment.
        """

        ref = AttachmentRef.decode(reference)
        try:
            path = self._folder_map.resolve(ref.folder_token)
        except StaleFolderError as exc:
            raise InvalidAttachmentError(f"unknown folder in attachment reference {reference!r}") from exc
        if not self._store.reopen(path):
            raise InvalidAttachmentError(f"cannot open folder {path}")
        raw = self._store.fetch_raw(ref.message_id)
        if raw is None:
            raise InvalidAttachmentError(f"message {ref.message_id} not found in {path}")
        parts = MimeTree.from_message(parse_message(raw)).flatten()
        if not 0 <= ref.part_index < len(parts):
            raise InvalidAttachmentError(f"attachment index {ref.part_index} out of range")
        node = parts[ref.part_index]
        if node.is_expanded_container:
            raise InvalidAttachmentError(f"attachment index {ref.part_index} addresses a container")
        self._logger.debug("attachment_fetched", folder=path, uid=ref.message_id, index=ref.part_index)
        return AttachmentData(content_type=node.content_type, data=_node_bytes(node))
