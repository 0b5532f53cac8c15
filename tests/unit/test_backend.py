"""
Module: tests/unit/test_backend.py

What:
    Drive :class:`ImapSyncBackend` the way a sync worker does: logon, folder
    hierarchy, change notifications, listings, reads, submission and logoff.

Why:
    The facade wires every service to one session. A wiring mistake (a
    service built on the wrong store or folder map) only shows up when the
    whole flow runs together.

How:
    Use the ``backend`` fixture for logged on flows and build facades by hand
    for the logon failure modes.
"""

import pytest

from fakes import build_message
from mailsync.backend import ImapSyncBackend
from mailsync.config.loader import load_runtime_config
from mailsync.config.schema import PathsConfig
from mailsync.config.state_store import DeviceStateStore
from mailsync.core.errors import FatalBackendError, StoreUnavailableError
from mailsync.core.outbox import SendRequest
from mailsync.core.search import SearchQuery


def test_refused_login_returns_false(imap_server, runtime, capsys):
    imap_server.refuse_login = True
    facade = ImapSyncBackend(runtime)

    assert facade.logon("user", "wrong") is False
    assert "logon_failed" in capsys.readouterr().out
    with pytest.raises(StoreUnavailableError):
        facade.get_folder_list()


def test_operations_require_logon(runtime):
    facade = ImapSyncBackend(runtime)
    with pytest.raises(StoreUnavailableError):
        facade.changes_sink(1)
    with pytest.raises(StoreUnavailableError):
        facade.send_mail(SendRequest(mime=build_message()))
    facade.logoff()


def test_unwritable_state_dir_is_fatal(imap_server, runtime, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    config = runtime.model_copy(update={"paths": PathsConfig(state_dir=str(blocker / "state"))})

    with pytest.raises(FatalBackendError):
        ImapSyncBackend(config).logon("user", "secret")


def test_corrupt_device_state_is_fatal(imap_server, runtime):
    store = DeviceStateStore.for_device(runtime.paths.state_dir, "device-1")
    store.path.parent.mkdir(parents=True, exist_ok=True)
    store.path.write_text("- not\n- a mapping\n", encoding="utf-8")

    with pytest.raises(FatalBackendError):
        ImapSyncBackend(runtime).logon("user", "secret", device_id="device-1")
    assert imap_server.logged_in is None


def test_facade_round_trip(backend, imap_server, transport):
    """
    What:
        A device lists folders, reads a message by the listed token and sends a
        reply to it through the same facade.
    """

    uid = imap_server.deliver("INBOX", build_message(subject="Agenda", plain="Old"))
    listing = backend.get_folder_list()
    inbox = next(stat.token for stat in listing if stat.display_name == "Inbox")

    summaries = backend.get_message_list(inbox)
    assert [summary.message_id for summary in summaries] == [uid]
    assert backend.stat_message(inbox, uid).is_read is False

    message = backend.get_message(inbox, uid)
    assert message.subject == "Agenda"
    assert backend.set_read_flag(inbox, uid, True)

    result = backend.send_mail(
        SendRequest(mime=build_message(plain="Hi"), source_folder_token=inbox, source_uid=uid, reply=True)
    )
    assert result.recipients == ["bob@example.org"]
    assert len(transport.sent) == 1
    assert imap_server.flags_of("INBOX", uid) == {"\\Seen", "\\Answered"}

    hits = backend.search_mailbox(SearchQuery(free_text="Old"))
    assert [hit.message_id for hit in hits.hits] == [uid]


def test_changes_sink_reports_delivery(backend, imap_server, clock):
    """A delivery during the wait is reported on the next pass."""

    inbox = backend.get_folder_list()[0].token
    assert backend.has_changes_sink()
    assert backend.changes_sink_initialize(inbox)
    assert not backend.changes_sink_initialize("ffffffffffffffff")

    def deliver_once(_seconds):
        if not imap_server.mailboxes["INBOX"].messages:
            imap_server.deliver("INBOX", build_message())

    clock.on_sleep = deliver_once

    assert backend.changes_sink(30) == [inbox]
    assert clock.sleeps == [5]


def test_logoff_flushes_tokens_and_reports_failures(imap_server, runtime, transport, clock, capsys):
    facade = ImapSyncBackend(runtime, transport_factory=lambda *args: transport, clock=clock, sleep=clock.sleep)
    assert facade.logon("user", "secret", device_id="phone")
    tokens = {stat.display_name: stat.token for stat in facade.get_folder_list()}
    assert facade.create_folder(tokens["Projects"], "2024") is None
    capsys.readouterr()

    facade.logoff()

    out = capsys.readouterr().out
    assert "store_reported" in out and '"lvl":"WARN"' in out
    assert "logoff_ok" in out
    assert imap_server.logged_in is None

    again = ImapSyncBackend(runtime, transport_factory=lambda *args: transport)
    assert again.logon("user", "secret", device_id="phone")
    try:
        assert {stat.display_name: stat.token for stat in again.get_folder_list()} == tokens
    finally:
        again.logoff()


def test_logon_default_configuration(imap_server, monkeypatch, tmp_path):
    """Without an explicit configuration the process-wide runtime configuration is used."""

    config = load_runtime_config().model_copy(update={"paths": PathsConfig(state_dir=str(tmp_path / "state"))})
    monkeypatch.setattr("mailsync.backend.get_runtime_config", lambda: config)
    facade = ImapSyncBackend(transport_factory=lambda *args: None)
    assert facade.logon("user", "secret")
    facade.logoff()
    assert (tmp_path / "state" / "default.yaml").exists()
