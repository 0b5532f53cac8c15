"""Per-device state persistence.

What:
  Provide a filesystem-backed accessor for the folder token mapping of a single
  device, stored as one YAML document under the configured state directory.

Why:
  The mobile sync engine addresses folders by opaque tokens across independent
  request cycles. The mapping must survive process restarts, yet it is small
  and scoped to one device, so a flat file is sufficient and avoids a database.

How:
  The store serialises :class:`~mailsync.config.schema.FolderMapState` with
  PyYAML and writes it through a temporary file followed by an atomic rename.
  Missing files load as an empty mapping.

Interfaces:
  ``DeviceStateStore`` exposing ``for_device``, ``load``, and ``save``.

Invariants & Safety:
  - The document is always written as a whole value; readers never observe a
    half-written mapping.
  - Device identifiers are sanitised before being used as file names.
"""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Union

import yaml
from pydantic import ValidationError

from .loader import ConfigLoadError
from .schema import FolderMapState


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class StateStoreError(ConfigLoadError):
    """Raised when a persisted device document cannot be parsed."""


class DeviceStateStore:
    """High-level wrapper for the device state document on disk.

    What:
      Encapsulates filesystem access for the folder mapping so callers interact
      with :class:`FolderMapState` objects instead of raw YAML.

    Why:
      Centralises the atomic write so that a crash between two insertions
      leaves the last complete mapping in place.
    """

    def __init__(self, path: Union[Path, str]):
        """Create a store that writes to ``path``, creating parent directories.

        Raises:
          OSError: When the parent directory cannot be created.
        """

        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def for_device(cls, state_dir: Union[Path, str], device_id: str) -> "DeviceStateStore":
        """Return the store for ``device_id`` inside ``state_dir``."""

        safe_name = _UNSAFE_CHARS.sub("_", device_id) or "default"
        return cls(Path(state_dir).expanduser() / f"{safe_name}.yaml")

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> FolderMapState:
        """Load the mapping from disk, returning an empty one when absent.

        Raises:
          StateStoreError: If the document exists but is not a valid mapping.
        """

        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return FolderMapState()
        try:
            payload = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise StateStoreError(f"Invalid YAML in {self._path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise StateStoreError(f"{self._path} must contain a mapping at the top-level")
        try:
            return FolderMapState.model_validate(payload)
        except ValidationError as exc:
            raise StateStoreError(f"Invalid device state {self._path}: {exc}") from exc

    def save(self, state: FolderMapState) -> None:
        """Persist ``state`` atomically.

        What:
          Serialises the mapping and replaces the previous document in one step.

        How:
          Writes to a sibling ``.tmp`` file and renames it over the target with
          :func:`os.replace`.

        Args:
          state: The complete mapping to persist.
        """

        text = yaml.safe_dump(state.model_dump(mode="json"), sort_keys=True, allow_unicode=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(text, encoding="utf-8")
        os.replace(tmp_path, self._path)
