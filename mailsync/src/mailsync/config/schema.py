"""Pydantic models describing mailsync configuration and device state documents."""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PathsConfig(BaseModel):
    """Filesystem layout used by the runtime."""

    model_config = ConfigDict(extra="forbid")

    state_dir: str


class ImapSettings(BaseModel):
    """Mail store connection defaults and folder conventions."""

    model_config = ConfigDict(extra="forbid")

    host: str
    port: int = Field(default=993, gt=0)
    ssl: bool = True
    excluded_folders: List[str] = Field(default_factory=list)
    sent_folder: Optional[str] = None
    default_from: str = "username"

    @field_validator("excluded_folders")
    @classmethod
    def _drop_blank_patterns(cls, value: List[str]) -> List[str]:
        # An empty pattern would match (and hide) every folder.
        return [pattern for pattern in value if pattern.strip()]


class SmtpSettings(BaseModel):
    """Outgoing mail transport parameters.

    ``username``/``password`` accept the literal values ``imap_username`` and
    ``imap_password`` to reuse the mail store login.
    """

    model_config = ConfigDict(extra="forbid")

    host: str = "localhost"
    port: int = Field(default=25, gt=0)
    starttls: bool = False
    username: Optional[str] = None
    password: Optional[str] = None
    timeout_s: float = Field(default=30.0, gt=0)


class SyncSettings(BaseModel):
    """Tunables for change detection, composition, and search."""

    model_config = ConfigDict(extra="forbid")

    sink_interval_s: float = Field(default=5.0, gt=0)
    sink_timeout_s: float = Field(default=30.0, ge=0)
    inline_forward: bool = False
    mime_charset_fixup: bool = True
    search_max_results: int = Field(default=10, gt=0)
    search_window_days: Optional[int] = Field(default=None, gt=0)


class RuntimeConfig(BaseModel):
    """Root configuration loaded from ``config.yaml``."""

    model_config = ConfigDict(extra="forbid")

    version: int = 1
    paths: PathsConfig
    imap: ImapSettings
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)


class FolderMapState(BaseModel):
    """Persisted folder token mapping for one device.

    Both directions are stored so neither lookup requires a scan; they are
    always written together.
    """

    model_config = ConfigDict(extra="forbid")

    token_to_path: Dict[str, str] = Field(default_factory=dict)
    path_to_token: Dict[str, str] = Field(default_factory=dict)
