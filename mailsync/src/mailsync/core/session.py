"""Per-device session state shared by every sync operation.

What:
  Bundle the open store connection, the folder token map, the runtime
  configuration and the login identity of one device session, together with
  the sent and trash folder tokens discovered while listing folders.

Why:
  The services need the same handful of collaborators. Passing one explicit
  object keeps the connection cursor and remembered folders out of module
  globals, so two sessions in one process never interfere.

Interfaces:
  :class:`BackendSession`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config.schema import RuntimeConfig
from ..imap.client import ImapStore
from .folder_map import FolderIdMap


@dataclass
class BackendSession:
    """Explicit state of one logged-on device."""

    store: ImapStore
    folder_map: FolderIdMap
    config: RuntimeConfig
    username: str
    domain: str = ""
    device_id: str = "default"
    sent_token: Optional[str] = None
    waste_token: Optional[str] = None

    def default_from(self) -> str:
        """Return the sender used when the client omitted ``From``.

        ``username`` and ``domain`` select the login name or the login domain;
        any other value is appended to the login name (``"@example.org"``).
        """

        mode = self.config.imap.default_from
        if mode == "username":
            return self.username
        if mode == "domain":
            return self.domain
        return f"{self.username}{mode}"
