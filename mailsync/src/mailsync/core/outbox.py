"""Mail submission with source marking and sent-copy storage.

What:
  Accept a client supplied message, compose the final document, submit it
  through a :class:`~mailsync.smtp.transport.MailTransport`, mark the source
  message as answered or forwarded, and store a copy in the sent folder.

Why:
  Submission is the user visible action; everything around it (flags, the
  sent copy) is auxiliary and must never turn a delivered message into a
  reported failure.

How:
  Auxiliary steps return :class:`~mailsync.core.errors.Outcome` values that
  are logged when degraded. The sent folder is probed in a fixed order: the
  remembered sent token, the configured path (created on demand), then
  ``INBOX.Sent``, ``Sent`` and ``Sent Items``.

Interfaces:
  :class:`SendRequest`, :class:`SendResult`, :class:`Outbox`.

Invariants & Safety:
  - ``Bcc`` is used for routing only and never transmitted or stored.
  - A message without any recipient is refused before contacting the relay.
  - The source is marked answered or forwarded only after the relay accepted
    the message, not when it is fetched for composing. A refused submission
    leaves the source flags untouched, so the device can retry without the
    original already showing as replied.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import getaddresses
from typing import Iterator, List, Optional, Tuple

from ..imap.client import ImapStore
from ..smtp.transport import MailTransport
from ..utils.logging import JsonLogger, get_logger
from ..utils.mime import parse_message
from .composer import ComposeMode, MessageComposer
from .errors import MailSubmissionError, Outcome, StaleFolderError, StoreOperationError
from .session import BackendSession


SENT_FALLBACKS = ("INBOX.Sent", "Sent", "Sent Items")
FORWARDED_FLAG = "$Forwarded"
ANSWERED_FLAG = "\\Answered"


@dataclass
class SendRequest:
    """Client submission.

    ``replace_mime`` means the client sent the complete document; the source
    message is then neither quoted nor attached.
    """

    mime: bytes
    source_folder_token: Optional[str] = None
    source_uid: Optional[int] = None
    reply: bool = False
    forward: bool = False
    replace_mime: bool = False
    save_in_sent: bool = False

    @property
    def mode(self) -> ComposeMode:
        if self.replace_mime:
            return ComposeMode.NEW
        if self.reply:
            return ComposeMode.REPLY
        if self.forward:
            return ComposeMode.FORWARD
        return ComposeMode.NEW


@dataclass
class SendResult:
    sender: str
    recipients: List[str]
    document: bytes
    outcomes: List[Outcome] = field(default_factory=list)

    @property
    def saved_in_sent(self) -> bool:
        return any(outcome.action == "save_sent" and outcome.ok for outcome in self.outcomes)


class Outbox:
    """Compose, submit and archive outgoing messages for one session."""

    def __init__(
        self,
        session: BackendSession,
        transport: MailTransport,
        composer: Optional[MessageComposer] = None,
        *,
        logger: Optional[JsonLogger] = None,
    ):
        self._session = session
        self._transport = transport
        self._composer = composer or MessageComposer(inline_forward=session.config.sync.inline_forward)
        self._logger = logger or get_logger("core.outbox")

    @property
    def _store(self) -> ImapStore:
        return self._session.store

    def send(self, request: SendRequest) -> SendResult:
        """Submit ``request`` and return what was sent.

        What:
          Fetches the source message when needed, fills in ``From`` and
          ``Return-Path``, composes the envelope and hands it to the
          transport.

        Why:
          Only the submission can fail the call. Marking the source and saving
          the sent copy are reported through ``SendResult.outcomes``.

        Args:
          request: Client submission.

        Returns:
          :class:`SendResult` with the transmitted bytes and auxiliary outcomes.

        Raises:
          StaleFolderError: When the source folder token is unknown. A missing
            source message only downgrades the send to a new message.
          MailSubmissionError: When there are no recipients or the relay refused
            the message.
        """

        mode = request.mode
        source_path, source_raw = self._load_source(request) if mode is not ComposeMode.NEW else (None, None)
        if source_raw is None:
            mode = ComposeMode.NEW

        message = parse_message(request.mime)
        sender = self._apply_sender_defaults(message)
        recipients = self._recipients(message)
        if not recipients:
            raise MailSubmissionError("message has no recipients")
        del message["Bcc"]

        envelope = self._composer.compose(message, mode, source_raw)
        document = envelope.as_bytes()
        self._logger.debug("outbox_submitting", mode=mode.value, recipients=len(recipients), size=len(document))
        if not self._transport.send(sender, recipients, document):
            self._logger.error("outbox_submission_failed", recipients=len(recipients))
            raise MailSubmissionError("the message could not be sent")

        result = SendResult(sender=sender, recipients=recipients, document=document)
        if source_path is not None and request.source_uid is not None:
            if mode is ComposeMode.REPLY:
                result.outcomes.append(self._mark_source(source_path, request.source_uid, ANSWERED_FLAG, "mark_answered"))
            elif mode is ComposeMode.FORWARD:
                result.outcomes.append(self._mark_source(source_path, request.source_uid, FORWARDED_FLAG, "mark_forwarded"))
        if request.save_in_sent:
            result.outcomes.append(self._save_sent(document))
        return result

    def _load_source(self, request: SendRequest) -> Tuple[Optional[str], Optional[bytes]]:
        if request.source_folder_token is None or request.source_uid is None:
            return None, None
        path = self._session.folder_map.resolve(request.source_folder_token)
        if not self._store.reopen(path):
            raise StaleFolderError(request.source_folder_token)
        raw = self._store.fetch_raw(request.source_uid)
        if raw is None:
            self._logger.warning("outbox_source_missing", folder=path, uid=request.source_uid)
        return path, raw

    def _apply_sender_defaults(self, message: EmailMessage) -> str:
        if message["From"] is None:
            message["From"] = self._session.default_from()
        addresses = [address for _name, address in getaddresses([str(message["From"])]) if address]
        sender = addresses[0] if addresses else str(message["From"])
        if message["Return-Path"] is None:
            message["Return-Path"] = sender
        return sender

    @staticmethod
    def _recipients(message: EmailMessage) -> List[str]:
        values = []
        for header in ("To", "Cc", "Bcc"):
            values.extend(str(value) for value in message.get_all(header, []))
        return [address for _name, address in getaddresses(values) if address]

    def _mark_source(self, path: str, uid: int, flag: str, action: str) -> Outcome:
        try:
            if not self._store.reopen(path):
                raise StoreOperationError(f"cannot open folder {path}")
            self._store.add_flags([uid], [flag])
        except StoreOperationError as exc:
            self._logger.warning("outbox_mark_failed", action=action, folder=path, uid=uid, error=str(exc))
            return Outcome.degraded(action, str(exc))
        return Outcome.succeeded(action)

    def _sent_candidates(self) -> Iterator[Tuple[str, bool]]:
        token = self._session.sent_token
        if token is not None:
            try:
                yield self._session.folder_map.resolve(token), False
            except StaleFolderError:
                self._logger.debug("outbox_sent_token_stale", token=token)
        configured = self._session.config.imap.sent_folder
        if configured:
            yield configured, True
        for path in SENT_FALLBACKS:
            yield path, False

    def _save_sent(self, document: bytes) -> Outcome:
        tried = set()
        for path, create in self._sent_candidates():
            if path in tried:
                continue
            tried.add(path)
            if create and not self._store.reopen(path):
                self._store.create_folder(path)
            try:
                self._store.append(path, document, ["\\Seen"])
            except StoreOperationError as exc:
                self._logger.debug("outbox_sent_append_failed", folder=path, error=str(exc))
                continue
            self._logger.debug("outbox_sent_saved", folder=path)
            return Outcome.succeeded("save_sent")
        self._logger.error("outbox_sent_copy_lost", tried=sorted(tried))
        return Outcome.degraded("save_sent", "no sent folder accepted the message")
