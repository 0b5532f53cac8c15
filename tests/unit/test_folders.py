"""
Module: tests/unit/test_folders.py

What:
    Check folder classification, parent resolution and the folder
    operations offered to the sync engine.

Why:
    Devices build their folder tree and special folder slots (inbox, sent,
    trash) from these records. A wrong parent token orphans a folder on the
    device.

How:
    Feed listings to :class:`FolderTree` directly, then run
    :class:`FolderService` against the fake server's default hierarchy.
"""

import pytest

from mailsync.core.errors import StaleFolderError
from mailsync.core.folders import ROOT_PARENT, FolderService
from mailsync.imap.client import FolderEntry
from mailsync.imap.hierarchy import FolderTree, FolderType, classify


def _tree(*names, delimiter="."):
    return FolderTree.from_listing([FolderEntry(name=name, delimiter=delimiter) for name in names], delimiter)


@pytest.fixture
def folders(session):
    return FolderService(session)


@pytest.mark.parametrize(
    "path, folder_type, display, under_inbox",
    [
        ("INBOX", FolderType.INBOX, "Inbox", False),
        ("Drafts", FolderType.DRAFTS, "Drafts", False),
        ("Deleted Messages", FolderType.TRASH, "Trash", False),
        ("Sent Items", FolderType.SENT, "Sent", False),
        ("INBOX.Trash", FolderType.TRASH, "Trash", True),
        ("INBOX/Sent", FolderType.SENT, "Sent", True),
        ("INBOX.Receipts", FolderType.USER_MAIL, None, False),
        ("Archive", FolderType.USER_MAIL, None, False),
    ],
)
def test_classify(path, folder_type, display, under_inbox):
    kind = classify(path)
    assert (kind.folder_type, kind.display_name, kind.under_inbox) == (folder_type, display, under_inbox)


def test_configured_sent_folder_is_classified():
    assert classify("Outgoing", "outgoing").folder_type is FolderType.SENT


def test_tree_folds_missing_levels_into_the_name():
    """
    What:
        A level that is not itself a mailbox becomes part of the child's
        display name instead of a parent.
    """

    tree = _tree("A", "A.B.C", "X.Y")
    assert "A" in tree and "A.B" not in tree
    assert tree.locate("A.B.C") == ("A", "B.C")
    assert tree.parent_of("X.Y") == "X"
    assert tree.display_name("X.Y") == "Y"
    assert tree.locate("A") == (None, "A")


def test_tree_with_slash_delimiter():
    tree = _tree("Lists", "Lists/python", delimiter="/")
    assert tree.locate("Lists/python") == ("Lists", "python")


def test_folder_list(folders, session):
    listing = folders.get_folder_list()
    names = {stat.display_name: stat for stat in listing}
    folder_map = session.folder_map

    assert [stat.display_name for stat in listing] == ["Inbox", "Sent", "Drafts", "Trash", "Projects", "2024"]
    assert names["Inbox"].parent_token == ROOT_PARENT
    assert names["Sent"].parent_token == folder_map.lookup("INBOX")
    assert names["2024"].parent_token == folder_map.lookup("Projects")
    assert folder_map.lookup("Junk") is None
    assert session.sent_token == folder_map.lookup("INBOX.Sent")
    assert session.waste_token == folder_map.lookup("Trash")


def test_folder_tokens_survive_relisting(folders):
    first = [stat.token for stat in folders.get_folder_list()]
    second = [stat.token for stat in folders.get_folder_list()]
    assert first == second


def test_get_folder(folders, session):
    token = session.folder_map.tokenize("Projects.2024")
    folder = folders.get_folder(token)
    assert folder.folder_type is FolderType.USER_MAIL
    assert folder.display_name == "2024"
    assert folders.stat_folder(token) == folder.stat()

    with pytest.raises(StaleFolderError):
        folders.get_folder("ffffffffffffffff")


def test_waste_basket(folders, session):
    assert folders.get_waste_basket() == session.folder_map.lookup("Trash")


def test_waste_basket_without_trash(folders, session, imap_server):
    del imap_server.mailboxes["Trash"]
    imap_server.create_folder("Deleted Messages")
    token = folders.get_waste_basket()
    assert session.folder_map.resolve(token) == "Deleted Messages"


def test_create_folder(folders, session, imap_server):
    parent = session.folder_map.tokenize("Projects")

    created = folders.create_folder(parent, "Clients")

    assert "Projects.Clients" in imap_server.mailboxes
    assert created.display_name == "Clients"
    assert created.parent_token == parent
    assert folders.create_folder(parent, "Clients") is None

    top = folders.create_folder(ROOT_PARENT, "Receipts")
    assert top.parent_token == ROOT_PARENT


def test_rename_and_delete_are_refused(folders, session):
    token = session.folder_map.tokenize("Projects")
    assert folders.rename_folder(token, "Renamed") is None
    assert folders.delete_folder(token) is False
