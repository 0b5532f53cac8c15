"""
Module: tests/unit/test_attachments.py

What:
    Verify attachment reference encoding, MIME tree flattening and the
    resolution of references back to part bytes.

Why:
    A reference only carries a flattened index. If the numbering used when a
    message is read differs from the numbering used when the reference is
    resolved, devices download the wrong file.

How:
    Build messages with nested containers, describe their attachments and
    resolve every reference through :class:`AttachmentResolver` against the
    fake server.
"""

from email.message import EmailMessage

import pytest

from fakes import build_message
from mailsync.core.attachments import (
    UNKNOWN_NAME,
    AttachmentRef,
    AttachmentResolver,
    describe_attachments,
)
from mailsync.core.errors import InvalidAttachmentError
from mailsync.core.mimetree import MimeTree
from mailsync.utils.mime import parse_message


def _nested_message() -> bytes:
    """mixed[ related[ alternative[plain, html], inline png ], pdf, csv ]"""

    message = EmailMessage()
    message["Subject"] = "Report"
    message["From"] = "alice@example.org"
    message["To"] = "bob@example.org"
    message.set_content("See attached")
    message.add_alternative("<p>See <img src='cid:logo'></p>", subtype="html")
    html_part = message.get_payload()[1]
    html_part.add_related(b"\x89PNG-data", maintype="image", subtype="png", cid="<logo>")
    message.add_attachment(b"%PDF-1.4", maintype="application", subtype="pdf", filename="report.pdf")
    message.add_attachment(b"a,b\n1,2\n", maintype="text", subtype="csv", filename="data.csv")
    return message.as_bytes()


def test_reference_roundtrip_and_index_zero():
    ref = AttachmentRef("abcdef0123456789", 42, 0)
    assert ref.encode() == "abcdef0123456789:42:0"
    assert AttachmentRef.decode("abcdef0123456789:42:0") == ref


@pytest.mark.parametrize("value", ["", "a:1", "a:1:2:3", "a::2", "a:x:2", "a:1:y"])
def test_malformed_references(value):
    with pytest.raises(InvalidAttachmentError):
        AttachmentRef.decode(value)


def test_flatten_expands_containers_in_scan_order():
    """
    What:
        Children of expanded containers are appended after the top-level
        parts while the containers keep their own slot.
    """

    tree = MimeTree.from_message(parse_message(_nested_message()))
    flat = [node.content_type for node in tree.flatten()]
    assert flat == [
        "multipart/alternative",
        "application/pdf",
        "text/csv",
        "text/plain",
        "multipart/related",
        "text/html",
        "image/png",
    ]


def test_single_part_message_has_no_parts():
    tree = MimeTree.from_message(parse_message(build_message()))
    assert tree.flatten() == []
    assert tree.extract_text("plain").strip() == "Hello"


def test_describe_attachments():
    tree = MimeTree.from_message(parse_message(_nested_message()))
    infos = describe_attachments(tree, "tok", 7)

    assert [(info.reference, info.display_name, info.content_type) for info in infos] == [
        ("tok:7:1", "report.pdf", "application/pdf"),
        ("tok:7:2", "data.csv", "text/csv"),
        ("tok:7:6", UNKNOWN_NAME, "image/png"),
    ]
    pdf, csv, logo = infos
    assert pdf.size == len(b"%PDF-1.4") and not pdf.is_inline
    assert csv.content_id is None
    assert logo.content_id == "logo"
    assert logo.is_inline


def test_attached_text_is_not_part_of_the_body():
    tree = MimeTree.from_message(parse_message(_nested_message()))
    assert "a,b" not in tree.extract_text("plain")
    assert tree.extract_text("plain").strip() == "See attached"


def test_resolver_returns_the_described_bytes(store, folder_map, imap_server):
    """Every reference produced by a read resolves to the same part."""

    raw = _nested_message()
    uid = imap_server.deliver("INBOX", raw)
    token = folder_map.tokenize("INBOX")
    resolver = AttachmentResolver(store, folder_map)
    infos = describe_attachments(MimeTree.from_message(parse_message(raw)), token, uid)

    fetched = [resolver.fetch(info.reference) for info in infos]
    assert [item.data for item in fetched] == [b"%PDF-1.4", b"a,b\n1,2\n", b"\x89PNG-data"]
    assert [item.content_type for item in fetched] == ["application/pdf", "text/csv", "image/png"]


def test_resolver_rejects_bad_references(store, folder_map, imap_server):
    uid = imap_server.deliver("INBOX", _nested_message())
    token = folder_map.tokenize("INBOX")
    resolver = AttachmentResolver(store, folder_map)

    with pytest.raises(InvalidAttachmentError):
        resolver.fetch(f"{token}:{uid}:99")
    with pytest.raises(InvalidAttachmentError):
        resolver.fetch(f"{token}:{uid}:0")
    with pytest.raises(InvalidAttachmentError):
        resolver.fetch(f"{token}:{uid + 1}:1")
    with pytest.raises(InvalidAttachmentError):
        resolver.fetch(f"ffffffffffffffff:{uid}:1")
