"""Pytest fixtures for unit tests requiring the IMAP fake.

What:
  Make ``tests/unit`` importable and expose fixtures for the fake server, a
  logged on store session, a backend session and a full backend facade.

Why:
  Nearly every service talks to the store. Building them on one consistent
  fake keeps message flows deterministic and free of network access.

How:
  Monkeypatch ``mailsync.imap.client.IMAPClient`` so every connection returns
  the same :class:`FakeImapBackend`, and point the state directory of the
  canned configuration at ``tmp_path`` so folder maps never leak between
  tests.

Interfaces:
  :func:`imap_server`, :func:`runtime`, :func:`store`, :func:`folder_map`,
  :func:`session`, :func:`transport`, :func:`clock`, :func:`backend`.
"""

import sys
from pathlib import Path

import pytest

from mailsync.backend import ImapSyncBackend
from mailsync.config.loader import load_runtime_config
from mailsync.config.schema import PathsConfig
from mailsync.config.state_store import DeviceStateStore
from mailsync.core.folder_map import FolderIdMap
from mailsync.core.session import BackendSession
from mailsync.imap.client import ImapConfig, ImapStore

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import FakeClock, FakeImapBackend, RecordingTransport

DEFAULT_FOLDERS = ("INBOX", "INBOX.Sent", "Drafts", "Trash", "Projects", "Projects.2024", "Junk")


@pytest.fixture
def imap_server(monkeypatch: pytest.MonkeyPatch) -> FakeImapBackend:
    """Return the fake server every store connection in the test talks to."""

    server = FakeImapBackend(DEFAULT_FOLDERS)
    monkeypatch.setattr("mailsync.imap.client.IMAPClient", lambda host, port, ssl: server)
    return server


@pytest.fixture
def runtime(tmp_path: Path):
    """Canned runtime configuration with the state directory under ``tmp_path``."""

    config = load_runtime_config()
    return config.model_copy(update={"paths": PathsConfig(state_dir=str(tmp_path / "state"))})


@pytest.fixture
def store(imap_server: FakeImapBackend, runtime):
    """Yield a connected :class:`ImapStore` backed by the fake server."""

    config = ImapConfig.from_settings(runtime.imap, "user", "secret")
    with ImapStore(config) as session_store:
        yield session_store


@pytest.fixture
def folder_map(tmp_path: Path) -> FolderIdMap:
    return FolderIdMap(DeviceStateStore.for_device(tmp_path / "state", "device-1"))


@pytest.fixture
def session(store: ImapStore, folder_map: FolderIdMap, runtime) -> BackendSession:
    return BackendSession(store=store, folder_map=folder_map, config=runtime, username="user", device_id="device-1")


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(imap_server: FakeImapBackend, runtime, transport: RecordingTransport, clock: FakeClock):
    """Yield a logged on :class:`ImapSyncBackend` using the recording transport.

    What:
      Builds the facade with the fake clock and transport, logs on as
      ``user`` for ``device-1`` and logs off after the test.

    Why:
      Facade level tests exercise the same wiring the sync engine uses.
    """

    facade = ImapSyncBackend(
        runtime,
        transport_factory=lambda settings, username, password: transport,
        clock=clock,
        sleep=clock.sleep,
    )
    assert facade.logon("user", "secret", device_id="device-1")
    try:
        yield facade
    finally:
        facade.logoff()
