"""Message materialisation and per-message store operations.

What:
  Turn a stored message into the :class:`SyncMessage` record sent to devices,
  and implement the flag, delete and move operations a device may request on
  a single message.

Why:
  Devices need decoded headers, a body in the format they prefer, and
  attachment references they can resolve later. Flag changes and moves must
  map onto UID based store commands while returning the identifiers the sync
  engine expects.

How:
  The message is fetched with ``BODY.PEEK[]``, parsed once into a
  :class:`~mailsync.core.mimetree.MimeTree`, and every derived field reads
  from that tree. Moves guess the destination UID from ``UIDNEXT`` before the
  move and re-apply the source flags on the guessed UID.

Interfaces:
  :class:`BodyPreference`, :class:`BodyRequest`, :class:`Importance`,
  :class:`SyncMessage`, :class:`MessageService`.

Invariants & Safety:
  - Reading a message never changes its ``\\Seen`` flag.
  - Attachment references are produced with the same part numbering the
    resolver uses.
  - The UID returned by a move is a prediction; concurrent appends to the
    destination can make it wrong.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from enum import Enum, IntEnum
from typing import List, Optional, Tuple

from ..utils.dates import cleanup_date
from ..utils.logging import JsonLogger, get_logger
from ..utils.mime import html_to_text, parse_message, to_crlf, truncate_utf8
from .attachments import AttachmentInfo, describe_attachments
from .composer import MessageComposer
from .errors import MessageNotFoundError, MoveError, MoveFailure, StaleFolderError, StoreOperationError
from .listing import MessageListing, MessageSummary
from .mimetree import MimeTree
from .session import BackendSession


_NON_DIGITS = re.compile(r"\D+")
_CLEARED_ON_MOVE = ["\\Seen", "\\Answered", "\\Flagged", "\\Deleted", "\\Draft"]


class BodyPreference(str, Enum):
    PLAIN = "plain"
    HTML = "html"
    MIME = "mime"


class Importance(IntEnum):
    LOW = 0
    NORMAL = 1
    HIGH = 2


@dataclass(frozen=True)
class BodyRequest:
    """Body options requested by the device.

    ``truncation`` and ``preview`` are byte budgets; ``None`` means unlimited
    body and no preview.
    """

    preference: BodyPreference = BodyPreference.PLAIN
    truncation: Optional[int] = None
    preview: Optional[int] = None


@dataclass
class SyncMessage:
    message_id: int
    subject: str
    sender: Optional[str]
    to: List[str]
    cc: List[str]
    reply_to: List[str]
    display_to: Optional[str]
    date_received: Optional[datetime]
    is_read: bool
    is_flagged: bool
    importance: Importance
    thread_topic: Optional[str]
    body: str
    body_type: BodyPreference
    truncated: bool = False
    preview: Optional[str] = None
    attachments: List[AttachmentInfo] = field(default_factory=list)


def importance_from_priority(value: Optional[str]) -> Importance:
    """Map an ``X-Priority`` value (1 highest, 5 lowest) to an importance."""

    digits = _NON_DIGITS.sub("", value or "")
    if not digits:
        return Importance.NORMAL
    priority = int(digits)
    if priority > 3:
        return Importance.LOW
    if priority == 3:
        return Importance.NORMAL
    return Importance.HIGH


def format_addresses(message: EmailMessage, name: str) -> Tuple[List[str], Optional[str]]:
    """Render the addresses of header ``name`` as ``"Name" <addr>`` strings.

    Returns:
      The rendered addresses and the first non-empty display name, if any.
      A header whose addresses cannot be parsed is returned verbatim.
    """

    header = message[name]
    if header is None:
        return [], None
    addresses = getattr(header, "addresses", ())
    if not addresses:
        return [str(header)], None
    rendered: List[str] = []
    first_name: Optional[str] = None
    for address in addresses:
        display_name = address.display_name or ""
        addr = address.addr_spec
        if first_name is None and display_name:
            first_name = display_name
        if not display_name or display_name == addr:
            rendered.append(addr)
        else:
            rendered.append(f'"{display_name}" <{addr}>')
    return rendered, first_name


class MessageService:
    """Per-message operations for one session."""

    def __init__(
        self,
        session: BackendSession,
        composer: Optional[MessageComposer] = None,
        *,
        logger: Optional[JsonLogger] = None,
    ):
        self._session = session
        self._composer = composer or MessageComposer(inline_forward=session.config.sync.inline_forward)
        self._listing = MessageListing(session.store, session.folder_map)
        self._logger = logger or get_logger("core.messages")

    def _open(self, token: str) -> str:
        path = self._session.folder_map.resolve(token)
        if not self._session.store.reopen(path):
            raise StoreOperationError(f"cannot open folder {path}")
        return path

    def get_message(self, token: str, uid: int, request: Optional[BodyRequest] = None) -> SyncMessage:
        """Materialise the message ``uid`` of folder ``token``.

        What:
          Builds headers, body, flags, importance and attachment descriptions.

        Why:
          An HTML preference without an HTML body falls back to plain text,
          and a missing plain body is rendered from the HTML, so devices
          always receive something readable.

        Args:
          token: Folder token.
          uid: Message UID.
          request: Body options; defaults to an untruncated plain body.

        Returns:
          The materialised :class:`SyncMessage`.

        Raises:
          StaleFolderError: When ``token`` is unknown.
          MessageNotFoundError: When the message does not exist.
        """

        request = request or BodyRequest()
        summary = self._listing.stat(token, uid)
        if summary is None:
            raise MessageNotFoundError(f"message {uid} not found")
        raw = self._session.store.fetch_raw(uid)
        if raw is None:
            raise MessageNotFoundError(f"message {uid} has no content")
        message = parse_message(raw)
        tree = MimeTree.from_message(message)

        body, body_type = self._render_body(raw, tree, request.preference)
        truncated = False
        if request.truncation is not None:
            body, truncated = truncate_utf8(body, request.truncation)
        preview = None
        if request.preview:
            plain = to_crlf(tree.extract_text("plain") or html_to_text(tree.extract_text("html")))
            preview, _ = truncate_utf8(plain, request.preview)

        to, to_name = format_addresses(message, "To")
        cc, cc_name = format_addresses(message, "Cc")
        reply_to, reply_name = format_addresses(message, "Reply-To")
        date_header = message["Date"]
        thread_topic = message["Thread-Topic"]
        attachments: List[AttachmentInfo] = []
        if body_type is not BodyPreference.MIME:
            attachments = describe_attachments(tree, token, uid)

        self._logger.debug("message_read", uid=uid, body_type=body_type.value, attachments=len(attachments))
        return SyncMessage(
            message_id=uid,
            subject=str(message["Subject"] or ""),
            sender=str(message["From"]) if message["From"] is not None else None,
            to=to,
            cc=cc,
            reply_to=reply_to,
            display_to=to_name or cc_name or reply_name,
            date_received=cleanup_date(str(date_header)) if date_header is not None else None,
            is_read=summary.is_read,
            is_flagged=summary.is_flagged,
            importance=importance_from_priority(message["X-Priority"]),
            thread_topic=str(thread_topic) if thread_topic is not None else None,
            body=body,
            body_type=body_type,
            truncated=truncated,
            preview=preview,
            attachments=attachments,
        )

    def _render_body(self, raw: bytes, tree: MimeTree, preference: BodyPreference) -> Tuple[str, BodyPreference]:
        if preference is BodyPreference.MIME:
            fixup = self._session.config.sync.mime_charset_fixup
            document = self._composer.normalize(raw, charset_fixup=fixup)
            return document.decode("utf-8", errors="replace"), BodyPreference.MIME
        html = to_crlf(tree.extract_text("html"))
        plain = tree.extract_text("plain")
        if not plain:
            plain = html_to_text(html)
        plain = to_crlf(plain)
        if preference is BodyPreference.HTML and html:
            return html, BodyPreference.HTML
        return plain, BodyPreference.PLAIN

    def stat_message(self, token: str, uid: int) -> Optional[MessageSummary]:
        return self._listing.stat(token, uid)

    def _set_flag(self, token: str, uid: int, flag: str, enabled: bool) -> bool:
        path = self._open(token)
        try:
            if enabled:
                self._session.store.add_flags([uid], [flag])
            else:
                self._session.store.remove_flags([uid], [flag])
        except StoreOperationError as exc:
            self._logger.warning("message_flag_failed", folder=path, uid=uid, flag=flag, error=str(exc))
            return False
        return True

    def set_read_flag(self, token: str, uid: int, read: bool) -> bool:
        """Set or clear ``\\Seen``; returns whether the store accepted it."""

        return self._set_flag(token, uid, "\\Seen", read)

    def set_star_flag(self, token: str, uid: int, flagged: bool) -> bool:
        """Set or clear ``\\Flagged``; returns whether the store accepted it."""

        return self._set_flag(token, uid, "\\Flagged", flagged)

    def change_message(self, token: str, uid: int, *, flagged: Optional[bool] = None) -> Optional[MessageSummary]:
        """Apply a device side change and return the message's new summary.

        Only the follow-up flag is carried over; other fields of a message
        are immutable on the store.
        """

        if flagged is not None:
            self.set_star_flag(token, uid, flagged)
        return self._listing.stat(token, uid)

    def delete_message(self, token: str, uid: int) -> bool:
        """Flag the message deleted and expunge the folder."""

        path = self._open(token)
        try:
            self._session.store.delete(uid)
        except StoreOperationError as exc:
            self._logger.warning("message_delete_failed", folder=path, uid=uid, error=str(exc))
            return False
        self._logger.debug("message_deleted", folder=path, uid=uid)
        return True

    def move_message(self, token: str, uid: int, destination_token: str) -> str:
        """Move a message and return its predicted UID in the destination.

        What:
          Reads the source flags, reads ``UIDNEXT`` of the destination, moves
          and expunges, then resets the flags of the guessed destination UID
          to the source flags.

        Why:
          The store does not report the UID assigned by a move (without
          UIDPLUS), but the device needs the new id immediately. The guess can
          be wrong under concurrent appends, in which case the message shows
          up twice on the device until the next full sync.

        Args:
          token: Source folder token.
          uid: Message UID in the source folder.
          destination_token: Destination folder token.

        Returns:
          The guessed destination UID as a string.

        Raises:
          MoveError: With the reason the engine reports to the device.
        """

        store = self._session.store
        try:
            source = self._session.folder_map.resolve(token)
        except StaleFolderError as exc:
            raise MoveError(MoveFailure.INVALID_SOURCE, str(exc)) from exc
        try:
            destination = self._session.folder_map.resolve(destination_token)
        except StaleFolderError as exc:
            raise MoveError(MoveFailure.INVALID_DEST, str(exc)) from exc
        if source == destination:
            raise MoveError(MoveFailure.SAME_SOURCE_AND_DEST, "destination folder is the source folder")

        if not store.reopen(source):
            raise MoveError(MoveFailure.INVALID_SOURCE, f"cannot open folder {source}")
        overview = store.fetch_overviews([uid]).get(uid)
        if overview is None:
            raise MoveError(MoveFailure.INVALID_SOURCE, f"message {uid} not found in {source}")
        try:
            new_uid = store.status(destination).uidnext
        except StoreOperationError as exc:
            raise MoveError(MoveFailure.INVALID_DEST, f"cannot stat destination {destination}: {exc}") from exc
        try:
            store.move(uid, destination)
            store.expunge()
        except StoreOperationError as exc:
            raise MoveError(MoveFailure.CANNOT_MOVE, f"cannot move message {uid}: {exc}") from exc
        if not store.reopen(destination):
            raise MoveError(MoveFailure.CANNOT_MOVE, f"cannot open destination {destination}")

        # Keywords are left as the server moved them; overview flags are lower-cased.
        flags = []
        if overview.seen:
            flags.append("\\Seen")
        if overview.flagged:
            flags.append("\\Flagged")
        if overview.answered:
            flags.append("\\Answered")
        try:
            store.remove_flags([new_uid], _CLEARED_ON_MOVE)
            if flags:
                store.add_flags([new_uid], flags)
        except StoreOperationError as exc:
            self._logger.warning("message_move_flags_failed", folder=destination, uid=new_uid, error=str(exc))
        self._logger.debug("message_moved", source=source, destination=destination, uid=uid, new_uid=new_uid)
        return str(new_uid)
