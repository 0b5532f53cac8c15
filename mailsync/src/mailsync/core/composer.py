"""Outgoing MIME document assembly and MIME normalisation for reads.

What:
  Build the final ``multipart/mixed`` document submitted for a new message, a
  reply, or a forward, and rebuild stored messages with UTF-8 text parts when
  a client asks for the whole MIME document.

Why:
  Mobile clients send a bare new message and only reference the message they
  reply to or forward. The adapter has to quote the source body, carry over
  the right attachments and regenerate the MIME framing, while leaving the
  client's own headers intact.

How:
  Bodies are extracted with :meth:`MimeTree.extract_text`, merged according
  to the compose mode, and wrapped into a ``multipart/alternative`` part. Text
  parts are always emitted as base64 encoded UTF-8 so that their bytes (line
  endings included) survive transport unchanged. Non-text parts are deep
  copied from the source trees.

Interfaces:
  :class:`ComposeMode`, :class:`MessageComposer`, :data:`PREAMBLE`.

Invariants & Safety:
  - The quote prefix and separator are applied exactly once per compose call.
  - Replies never carry the original attachments.
  - A forward "as file" embeds the original bytes unmodified, as a 7bit or
    8bit ``message/rfc822`` part (RFC 2046 forbids base64 there).
  - ``content-type``, ``content-transfer-encoding`` and ``mime-version`` of
    the client message are never copied; they are regenerated.
"""
from __future__ import annotations

from email import base64mime, policy
from email.message import EmailMessage, MIMEPart
from enum import Enum
from typing import List, Optional, Tuple

from ..utils.ids import new_boundary
from ..utils.logging import JsonLogger, get_logger
from ..utils.mime import html_to_text, parse_message, part_text
from .mimetree import MimeTree


PREAMBLE = "This is a multi-part message in MIME format."
FORWARD_FILENAME = "forwarded_message.eml"
_REGENERATED_HEADERS = frozenset({"content-type", "content-transfer-encoding", "mime-version"})
_REPLY_WRAPPER = ("<blockquote>", "</blockquote>")
_FORWARD_WRAPPER = ("<div>", "</div>")


class ComposeMode(str, Enum):
    NEW = "new"
    REPLY = "reply"
    FORWARD = "forward"


def normalize_header_name(name: str) -> str:
    """Return ``name`` with every dash-separated word capitalised."""

    return "-".join(word.capitalize() for word in name.split("-"))


def _text_part(subtype: str, text: str) -> MIMEPart:
    part = MIMEPart()
    part["Content-Type"] = f'text/{subtype}; charset="utf-8"'
    part["Content-Transfer-Encoding"] = "base64"
    part.set_payload(base64mime.body_encode(text.encode("utf-8")))
    return part


def _attached_message(raw: bytes) -> MIMEPart:
    part = MIMEPart()
    part["Content-Type"] = "message/rfc822"
    part["Content-Transfer-Encoding"] = "8bit" if any(byte > 0x7F for byte in raw) else "7bit"
    part["Content-Disposition"] = f'attachment; filename="{FORWARD_FILENAME}"'
    # String payloads of message/* parts are written verbatim by the bytes
    # generator; surrogateescape round-trips any 8bit octets.
    part.set_payload(raw.decode("ascii", "surrogateescape"))
    return part


def _quote_plain(source: str) -> str:
    return ("> " + source).replace("\n", "\n> ")


def _plain_as_html(plain: str) -> str:
    return "<p>" + plain.replace("\r\n", "\n").replace("\n", "<br/>") + "</p>"


def merge_bodies(
    plain: str,
    html: str,
    source_plain: str,
    source_html: str,
    wrapper: Tuple[str, str],
) -> Tuple[str, str]:
    """Combine the new bodies with the bodies of the source message.

    What:
      Produces the plain and HTML alternatives of a reply or inline forward.

    Why:
      Clients only send the text they typed; the quoted original is added
      server side. When the new message has no HTML but the source has, the
      new plain text is cast to HTML so the quoted HTML is not lost.

    How:
      - HTML: new HTML, opening wrapper, source HTML (or the source plain text
        in a paragraph), closing wrapper.
      - Plain: new plain, CRLF, then the source plain text with every line
        prefixed by ``"> "``. A source without plain text is quoted from its
        HTML rendered as text.

    Args:
      plain: New plain body.
      html: New HTML body.
      source_plain: Plain body of the replied or forwarded message.
      source_html: HTML body of the replied or forwarded message.
      wrapper: Opening and closing tag around the quoted HTML.

    Returns:
      ``(plain, html)``; either may be empty when it should be omitted.
    """

    open_tag, close_tag = wrapper
    merged_html = ""
    if html:
        quoted = source_html or f"<p>{source_plain}</p>"
        merged_html = f"{html}{open_tag}{quoted}{close_tag}"
    elif plain and source_html:
        merged_html = f"<html><body>{_plain_as_html(plain)}{open_tag}{source_html}{close_tag}</body></html>"

    merged_plain = ""
    if plain:
        quoted_source = source_plain or html_to_text(source_html)
        merged_plain = f"{plain}\r\n{_quote_plain(quoted_source)}" if quoted_source else plain
    return merged_plain, merged_html


class MessageComposer:
    """Assemble outgoing documents from the client message and its source.

    What:
      Implements the new, reply and forward compose modes and the MIME
      normalisation used by message reads.

    Why:
      Keeps all MIME generation in one place so sends and sent-folder copies
      share exactly the same bytes.
    """

    def __init__(self, *, inline_forward: bool = False, logger: Optional[JsonLogger] = None):
        self._inline_forward = inline_forward
        self._logger = logger or get_logger("core.composer")

    def compose(
        self,
        message: EmailMessage,
        mode: ComposeMode = ComposeMode.NEW,
        source: Optional[bytes] = None,
    ) -> EmailMessage:
        """Return the final envelope for ``message``.

        What:
          Wraps the new bodies (merged with the source for replies and inline
          forwards) in ``multipart/alternative`` and appends the parts to
          re-attach inside a ``multipart/mixed`` envelope.

        Args:
          message: Parsed client message.
          mode: Compose mode; a missing ``source`` downgrades to ``NEW``.
          source: Raw bytes of the replied or forwarded message.

        Returns:
          Envelope using the SMTP policy (CRLF line endings).
        """

        if source is None:
            mode = ComposeMode.NEW
        new_tree = MimeTree.from_message(message)
        plain = new_tree.extract_text("plain")
        html = new_tree.extract_text("html")
        parts: List[MIMEPart] = []

        if mode is ComposeMode.REPLY:
            source_tree = MimeTree.from_message(parse_message(source))
            plain, html = merge_bodies(
                plain, html, source_tree.extract_text("plain"), source_tree.extract_text("html"), _REPLY_WRAPPER
            )
            extras = new_tree.extra_parts()
        elif mode is ComposeMode.FORWARD and self._inline_forward:
            source_tree = MimeTree.from_message(parse_message(source))
            plain, html = merge_bodies(
                plain, html, source_tree.extract_text("plain"), source_tree.extract_text("html"), _FORWARD_WRAPPER
            )
            extras = new_tree.extra_parts() + source_tree.extra_parts()
        else:
            extras = new_tree.extra_parts()
            if mode is ComposeMode.FORWARD:
                extras.append(_attached_message(source))

        alternative = self._alternative(plain, html)
        if alternative is not None:
            parts.append(alternative)
        parts.extend(extras)
        envelope = self._envelope(message)
        for part in parts:
            envelope.attach(part)
        self._logger.debug("message_composed", mode=mode.value, parts=len(parts))
        return envelope

    @staticmethod
    def _alternative(plain: str, html: str) -> Optional[MIMEPart]:
        if not plain and not html:
            return None
        alternative = MIMEPart()
        alternative["Content-Type"] = f'multipart/alternative; boundary="{new_boundary()}"'
        if plain:
            alternative.attach(_text_part("plain", plain))
        if html:
            alternative.attach(_text_part("html", html))
        return alternative

    @staticmethod
    def _envelope(message: EmailMessage) -> EmailMessage:
        envelope = EmailMessage(policy=policy.SMTP)
        envelope["Mime-Version"] = "1.0"
        for name, value in message.items():
            if name.lower() in _REGENERATED_HEADERS:
                continue
            header = normalize_header_name(name)
            limit = envelope.policy.header_max_count(header)
            if limit is not None and len(envelope.get_all(header, [])) >= limit:
                continue
            # The decoded value is re-parsed so the header object carries the
            # normalised name.
            envelope[header] = str(value)
        envelope["Content-Type"] = f'multipart/mixed; boundary="{new_boundary()}"'
        envelope.preamble = PREAMBLE
        return envelope

    def normalize(self, raw: bytes, *, charset_fixup: bool = True) -> bytes:
        """Rebuild a stored message with UTF-8 text parts.

        What:
          Re-encodes every ``text/*`` leaf as base64 UTF-8 and adds the
          preamble line to multipart documents.

        Why:
          Devices asking for the raw MIME document often mis-handle legacy
          charsets; decoding once on the server gives them a uniform input.

        Args:
          raw: Stored message bytes.
          charset_fixup: When ``False`` the bytes are returned untouched.

        Returns:
          The rebuilt document with CRLF line endings.
        """

        if not charset_fixup:
            return raw
        message = parse_message(raw)
        for part in message.walk():
            if part.get_content_maintype() != "text":
                continue
            text = part_text(part)
            del part["Content-Transfer-Encoding"]
            part["Content-Transfer-Encoding"] = "base64"
            part.set_param("charset", "utf-8")
            part.set_payload(base64mime.body_encode(text.encode("utf-8")))
        if message.is_multipart():
            message.preamble = PREAMBLE
        return message.as_bytes(policy=policy.SMTP)
