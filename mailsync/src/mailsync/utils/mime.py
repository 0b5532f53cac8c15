"""MIME parsing helpers shared by the composer, message reads, and attachments.

What:
  Provide utilities that turn raw RFC822 payloads into
  :class:`email.message.EmailMessage` objects, decode individual part bodies,
  render HTML as plain text, and clamp bodies to a byte budget.

Why:
  Messages arrive from arbitrary clients with broken charsets, missing headers,
  and unusual nesting. The sync engine still needs a predictable
  representation, so decoding rules are centralised rather than repeated in
  every consumer.

How:
  Use the ``email`` package's :class:`~email.parser.BytesParser` with the default
  policy, decode payloads manually so unknown charsets fall back to UTF-8, and
  lean on BeautifulSoup for HTML-to-text conversion.

Interfaces:
  :func:`parse_message`, :func:`part_bytes`, :func:`part_text`,
  :func:`html_to_text`, :func:`to_crlf`, :func:`truncate_utf8`.

Invariants & Safety:
  - Text decoding never raises on undecodable bytes; replacement characters are
    substituted instead.
  - Truncation is performed on encoded bytes to avoid splitting multi-byte code
    points.
"""
from __future__ import annotations

from email import policy
from email.message import EmailMessage, Message
from email.parser import BytesParser
from typing import Tuple

from bs4 import BeautifulSoup


def parse_message(raw: bytes) -> EmailMessage:
    """Parse a raw message blob into an :class:`EmailMessage`.

    What:
      Turns raw RFC822 bytes (header block plus body) into a message tree with
      decoded header values.

    Why:
      Every consumer (composer, reads, attachment resolution) must see the same
      tree for the same bytes; attachment indices depend on it.

    Args:
      raw: Raw message bytes as retrieved from an IMAP ``BODY[]`` fetch.

    Returns:
      Parsed :class:`EmailMessage`.
    """

    return BytesParser(policy=policy.default).parsebytes(raw)


def part_bytes(part: Message) -> bytes:
    """Return the transfer-decoded body of ``part``.

    Embedded ``message/rfc822`` parts are serialised back to bytes with CRLF
    line endings, the canonical form of a stored message. Containers yield
    ``b""``.
    """

    payload = part.get_payload()
    if isinstance(payload, list):
        if part.get_content_maintype() == "message" and payload:
            embedded = payload[0]
            return embedded.as_bytes(policy=embedded.policy.clone(linesep="\r\n"))
        return b""
    decoded = part.get_payload(decode=True)
    return decoded if isinstance(decoded, bytes) else b""


def part_text(part: Message) -> str:
    """Decode the body of a ``text/*`` part using its declared charset.

    What:
      Returns the body as ``str``, honouring the ``charset`` parameter.

    Why:
      :meth:`EmailMessage.get_content` raises :class:`LookupError` on unknown
      charsets; sync must keep going with a best-effort rendering instead.

    Args:
      part: Leaf MIME part.

    Returns:
      Decoded text, possibly containing replacement characters.
    """

    data = part_bytes(part)
    charset = part.get_content_charset() or "utf-8"
    try:
        return data.decode(charset, errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")


def html_to_text(html: str) -> str:
    """Render ``html`` as plain text for clients that requested a plain body."""

    if not html:
        return ""
    return BeautifulSoup(html, "html.parser").get_text("\n", strip=True)


def to_crlf(text: str) -> str:
    """Normalise all line endings in ``text`` to CRLF."""

    return text.replace("\r", "").replace("\n", "\r\n")


def truncate_utf8(text: str, limit: int) -> Tuple[str, bool]:
    """Clamp ``text`` to ``limit`` bytes when encoded in UTF-8.

    What:
      Guarantees string payloads never exceed the requested byte budget while
      keeping Unicode characters intact.

    How:
      Encodes ``text`` as UTF-8, slices the byte array if necessary, and decodes
      again with ``errors="ignore"`` to drop an incomplete trailing character.

    Args:
      text: Candidate body.
      limit: Maximum number of encoded bytes.

    Returns:
      Tuple of the possibly shortened text and whether truncation happened.
    """

    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text, False
    return encoded[:limit].decode("utf-8", errors="ignore"), True
