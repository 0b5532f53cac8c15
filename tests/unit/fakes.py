"""In-memory IMAP backend and mail transport used by unit tests.

What:
  Provide a drop-in replacement for :class:`imapclient.IMAPClient` that keeps
  folders and messages in Python data structures, plus a transport that
  records submissions instead of talking SMTP.

Why:
  Unit tests must exercise store workflows (selection, status counters,
  search, fetch, flags, move, append) without contacting real servers. The
  fakes keep behaviour deterministic and let tests inject failures.

How:
  Maintain one :class:`_Mailbox` per folder with its own UID counter. Methods
  mirror the ``IMAPClient`` signatures the store session calls and return the
  same shapes (bytes keys, tuples of byte flags). :meth:`FakeImapBackend.fail`
  arms a one-shot exception for a named command.

Interfaces:
  :class:`FakeImapBackend`, :class:`RecordingTransport`, :class:`FakeClock`.

Invariants & Safety:
  - UIDs increase monotonically per folder and are never reused.
  - Methods never touch the network.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from email import policy
from email.message import EmailMessage
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from imapclient.exceptions import IMAPClientError, LoginError


@dataclass
class _MessageRecord:
    uid: int
    raw: bytes
    flags: Set[str]
    internaldate: datetime


@dataclass
class _Mailbox:
    messages: Dict[int, _MessageRecord] = field(default_factory=dict)
    uidnext: int = 1
    recent: int = 0

    def store(self, raw: bytes, flags: Iterable[str], internaldate: datetime) -> int:
        uid = self.uidnext
        self.uidnext += 1
        self.messages[uid] = _MessageRecord(uid=uid, raw=raw, flags=set(flags), internaldate=internaldate)
        return uid


_CRITERION = re.compile(r'(\w+) "((?:[^"\\]|\\.)*)"')


def _as_text(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def _parse_day(value: str) -> date:
    return datetime.strptime(value, "%d %b %Y").date()


class FakeImapBackend:
    """Minimal IMAP server emulation for the store session.

    What:
      Emulates the subset of :class:`imapclient.IMAPClient` used by
      :class:`mailsync.imap.client.ImapStore`.

    Why:
      Tests assert on server state (flags, folder contents, counters) after
      driving the backend through its public operations.

    How:
      Folders are created in the order given, which is also the ``LIST``
      order. The hierarchy delimiter is ``.``.
    """

    def __init__(self, folders: Sequence[str] = ("INBOX",), *, capabilities: Iterable[str] = ("MOVE",)):
        self.mailboxes: Dict[str, _Mailbox] = {name: _Mailbox() for name in folders}
        self.capabilities = {capability.upper() for capability in capabilities}
        self.selected: Optional[str] = None
        self.logged_in: Optional[Tuple[str, str]] = None
        self.refuse_login = False
        self.commands: List[str] = []
        self._failures: Dict[str, List[Exception]] = {}

    # Test helpers ---------------------------------------------------------
    def fail(self, command: str, exc: Optional[Exception] = None, *, times: int = 1) -> None:
        """Make the next ``times`` calls of ``command`` raise ``exc``."""

        error = exc or IMAPClientError(f"{command} refused")
        self._failures.setdefault(command, []).extend([error] * times)

    def _check(self, command: str) -> None:
        self.commands.append(command)
        pending = self._failures.get(command)
        if pending:
            raise pending.pop(0)

    def deliver(
        self,
        folder: str,
        raw: bytes,
        *,
        flags: Iterable[str] = (),
        internaldate: Optional[datetime] = None,
    ) -> int:
        """Store ``raw`` in ``folder`` as a new arrival and return its UID."""

        mailbox = self.mailboxes.setdefault(folder, _Mailbox())
        mailbox.recent += 1
        return mailbox.store(raw, flags, internaldate or datetime.now(timezone.utc))

    def flags_of(self, folder: str, uid: int) -> Set[str]:
        return set(self.mailboxes[folder].messages[uid].flags)

    def _mailbox(self, name: str) -> _Mailbox:
        mailbox = self.mailboxes.get(name)
        if mailbox is None:
            raise IMAPClientError(f"no such mailbox {name}")
        return mailbox

    @property
    def _current(self) -> _Mailbox:
        if self.selected is None:
            raise IMAPClientError("no mailbox selected")
        return self._mailbox(self.selected)

    # Session management ---------------------------------------------------
    def login(self, username: str, password: str) -> None:
        self._check("login")
        if self.refuse_login:
            raise LoginError("authentication failed")
        self.logged_in = (username, password)

    def logout(self) -> None:
        self._check("logout")
        self.logged_in = None
        self.selected = None

    def noop(self) -> None:
        self._check("noop")

    def has_capability(self, capability: str) -> bool:
        return capability.upper() in self.capabilities

    # Folders --------------------------------------------------------------
    def list_folders(self, directory: str = "", pattern: str = "*"):
        self._check("list_folders")
        return [((b"\\HasNoChildren",), b".", name) for name in self.mailboxes]

    def folder_exists(self, folder: str) -> bool:
        self._check("folder_exists")
        return folder in self.mailboxes

    def create_folder(self, folder: str) -> None:
        self._check("create_folder")
        if folder in self.mailboxes:
            raise IMAPClientError(f"mailbox {folder} already exists")
        self.mailboxes[folder] = _Mailbox()

    def select_folder(self, folder: str, readonly: bool = False) -> Dict[bytes, object]:
        self._check("select_folder")
        mailbox = self._mailbox(folder)
        self.selected = folder
        return {b"EXISTS": len(mailbox.messages), b"UIDNEXT": mailbox.uidnext}

    def folder_status(self, folder: str, what: Optional[Sequence[str]] = None) -> Dict[bytes, int]:
        self._check("folder_status")
        mailbox = self._mailbox(folder)
        unseen = sum(1 for record in mailbox.messages.values() if "\\Seen" not in record.flags)
        return {
            b"MESSAGES": len(mailbox.messages),
            b"RECENT": mailbox.recent,
            b"UNSEEN": unseen,
            b"UIDNEXT": mailbox.uidnext,
        }

    # Messages -------------------------------------------------------------
    def search(self, criteria="ALL", charset: Optional[str] = None) -> List[int]:
        """Evaluate ``ALL``, ``SINCE``, ``BEFORE`` and ``BODY`` criteria.

        List criteria take ``[key, value]`` pairs; string criteria use the
        quoted ``KEY "value"`` form.
        """

        self._check("search")
        mailbox = self._current
        if isinstance(criteria, str):
            pairs = [(key.upper(), value.replace('\\"', '"').replace("\\\\", "\\")) for key, value in _CRITERION.findall(criteria)]
        else:
            items = list(criteria)
            if items and str(items[0]).upper() == "ALL":
                items = items[1:]
            pairs = [(str(items[i]).upper(), items[i + 1]) for i in range(0, len(items) - 1, 2)]

        matches = []
        for uid, record in mailbox.messages.items():
            if all(self._matches(record, key, value) for key, value in pairs):
                matches.append(uid)
        return matches

    @staticmethod
    def _matches(record: _MessageRecord, key: str, value) -> bool:
        received = record.internaldate.date()
        if key in {"SINCE", "BEFORE"}:
            day = value if isinstance(value, date) else _parse_day(str(value))
            return received >= day if key == "SINCE" else received < day
        if key == "BODY":
            return str(value).lower() in record.raw.decode("utf-8", errors="replace").lower()
        raise IMAPClientError(f"unsupported search key {key}")

    def fetch(self, messages: Iterable[int], data: Sequence[str]) -> Dict[int, Dict[bytes, object]]:
        self._check("fetch")
        mailbox = self._current
        requested = {_as_text(item).upper() for item in data}
        response: Dict[int, Dict[bytes, object]] = {}
        for uid in messages:
            record = mailbox.messages.get(uid)
            if record is None:
                continue
            payload: Dict[bytes, object] = {b"SEQ": uid}
            if "UID" in requested:
                payload[b"UID"] = uid
            if "FLAGS" in requested:
                payload[b"FLAGS"] = tuple(flag.encode("utf-8") for flag in sorted(record.flags))
            if "INTERNALDATE" in requested:
                payload[b"INTERNALDATE"] = record.internaldate
            if "BODY.PEEK[]" in requested or "BODY[]" in requested:
                payload[b"BODY[]"] = record.raw
            response[uid] = payload
        return response

    def add_flags(self, messages: Iterable[int], flags: Sequence[str]) -> None:
        self._check("add_flags")
        mailbox = self._current
        for uid in messages:
            if uid in mailbox.messages:
                mailbox.messages[uid].flags.update(_as_text(flag) for flag in flags)

    def remove_flags(self, messages: Iterable[int], flags: Sequence[str]) -> None:
        self._check("remove_flags")
        mailbox = self._current
        for uid in messages:
            if uid in mailbox.messages:
                mailbox.messages[uid].flags.difference_update(_as_text(flag) for flag in flags)

    def expunge(self) -> None:
        self._check("expunge")
        mailbox = self._current
        for uid in [uid for uid, record in mailbox.messages.items() if "\\Deleted" in record.flags]:
            del mailbox.messages[uid]

    def copy(self, messages: Iterable[int], folder: str) -> None:
        self._check("copy")
        source = self._current
        target = self._mailbox(folder)
        for uid in messages:
            record = source.messages.get(uid)
            if record is not None:
                target.store(record.raw, record.flags, record.internaldate)

    def move(self, messages: Iterable[int], folder: str) -> None:
        self._check("move")
        source = self._current
        target = self._mailbox(folder)
        for uid in list(messages):
            record = source.messages.pop(uid, None)
            if record is not None:
                target.store(record.raw, record.flags, record.internaldate)

    def append(self, folder: str, msg: bytes, flags: Sequence[str] = (), msg_time: Optional[datetime] = None) -> None:
        self._check("append")
        mailbox = self._mailbox(folder)
        mailbox.store(bytes(msg), (_as_text(flag) for flag in flags), msg_time or datetime.now(timezone.utc))


class RecordingTransport:
    """Mail transport that keeps every submission in memory."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.sent: List[Tuple[str, List[str], bytes]] = []

    def send(self, sender: str, recipients: Sequence[str], message: bytes) -> bool:
        if not self.accept:
            return False
        self.sent.append((sender, list(recipients), message))
        return True


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly.

    ``on_sleep`` runs before each sleep so tests can change server state while
    a poll is waiting.
    """

    def __init__(self, on_sleep: Optional[Callable[[float], None]] = None):
        self.now = 0.0
        self.sleeps: List[float] = []
        self.on_sleep = on_sleep

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        if self.on_sleep is not None:
            self.on_sleep(seconds)
        self.sleeps.append(seconds)
        self.now += seconds


def build_message(
    *,
    subject: str = "Status",
    sender: Optional[str] = "Alice <alice@example.org>",
    to: Optional[str] = "Bob <bob@example.org>",
    plain: Optional[str] = "Hello",
    html: Optional[str] = None,
    attachments: Sequence[Tuple[str, str, bytes]] = (),
    headers: Optional[Dict[str, str]] = None,
    crlf: bool = False,
) -> bytes:
    """Return RFC 822 bytes with the requested bodies and attachments.

    ``attachments`` holds ``(filename, mime_type, data)`` triples; a ``None``
    sender or recipient leaves the header out. ``crlf`` produces the line
    endings a mail store returns.
    """

    message = EmailMessage()
    message["Subject"] = subject
    if sender is not None:
        message["From"] = sender
    if to is not None:
        message["To"] = to
    message["Date"] = "Sat, 07 Jan 2012 10:00:00 +0000"
    for name, value in (headers or {}).items():
        message[name] = value
    if plain is not None:
        message.set_content(plain)
    if html is not None:
        if plain is None:
            message.set_content(html, subtype="html")
        else:
            message.add_alternative(html, subtype="html")
    for filename, mime_type, data in attachments:
        maintype, subtype = mime_type.split("/", 1)
        message.add_attachment(data, maintype=maintype, subtype=subtype, filename=filename)
    return message.as_bytes(policy=policy.SMTP) if crlf else message.as_bytes()
