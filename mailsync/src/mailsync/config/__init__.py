"""mailsync configuration package.

What:
  Provide the import surface for runtime configuration loading and for the
  per-device folder map documents.

Why:
  Callers should only reach validated models. Going through the loader and
  the state store guarantees that YAML input is checked before use.

How:
  Re-export the loader helpers, the pydantic models and the device state
  store. ``__all__`` lists the supported names.

Interfaces:
  - get_runtime_config / load_runtime_config / reset_runtime_config: Resolve
    ``config.yaml`` and cache the result.
  - ConfigLoadError / RuntimeConfigError: Loader failures.
  - RuntimeConfig and its sections, FolderMapState: Pydantic models.
  - DeviceStateStore / StateStoreError: Folder map persistence.

Invariants:
  - Every model forbids unknown keys.
"""

from .loader import (
    ConfigLoadError,
    RuntimeConfigError,
    get_runtime_config,
    load_runtime_config,
    reset_runtime_config,
)
from .schema import FolderMapState, ImapSettings, PathsConfig, RuntimeConfig, SmtpSettings, SyncSettings
from .state_store import DeviceStateStore, StateStoreError

__all__ = [
    "ConfigLoadError",
    "RuntimeConfigError",
    "get_runtime_config",
    "load_runtime_config",
    "reset_runtime_config",
    "FolderMapState",
    "ImapSettings",
    "PathsConfig",
    "RuntimeConfig",
    "SmtpSettings",
    "SyncSettings",
    "DeviceStateStore",
    "StateStoreError",
]
