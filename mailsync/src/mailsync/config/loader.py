"""Locate, validate and cache the mailsync ``config.yaml``.

What:
  Turn the operator's YAML file into a :class:`~mailsync.config.schema.RuntimeConfig`
  shared by every sync worker in the process.

Why:
  Workers are started per device and all of them need the same store, relay and
  polling settings. Reading the file once and failing loudly on unknown keys
  keeps a typo in ``config.yaml`` from silently falling back to a default.

How:
  Candidate locations are tried in order: the explicit path, the
  ``MAILSYNC_CONFIG_PATH`` environment variable, then the system defaults. The
  first existing file is parsed with PyYAML's safe loader and validated by
  pydantic; the result is cached together with the path it came from.

Interfaces:
  :func:`load_runtime_config`, :func:`get_runtime_config`,
  :func:`reset_runtime_config`, :class:`ConfigLoadError`,
  :class:`RuntimeConfigError`.

Invariants & Safety:
  - Callers only ever receive validated models.
  - An explicit path that differs from the cached one always triggers a load.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from .schema import RuntimeConfig


class ConfigLoadError(Exception):
    """Base class for operator configuration mistakes.

    Kept apart from store and relay errors so the CLI can report a broken file
    without trying to connect anywhere.
    """


class RuntimeConfigError(ConfigLoadError):
    """``config.yaml`` is missing, unreadable, or fails validation."""


_CONFIG_ENV = "MAILSYNC_CONFIG_PATH"
_DEFAULT_LOCATIONS: Tuple[Path, ...] = (
    Path("config.yaml"),
    Path("/etc/mailsync/config.yaml"),
    Path("/var/lib/mailsync/config.yaml"),
)
_RUNTIME_CACHE: Optional[Tuple[Path, RuntimeConfig]] = None


def _config_candidates(explicit: Optional[Path]) -> List[Path]:
    """Return the locations to try, most specific first and without repeats."""

    ordered: List[Path] = []
    env_value = os.environ.get(_CONFIG_ENV)
    sources = [explicit, Path(env_value) if env_value else None, *_DEFAULT_LOCATIONS]
    for source in sources:
        if source is None:
            continue
        candidate = source.expanduser()
        if candidate not in ordered:
            ordered.append(candidate)
    return ordered


def _describe_validation(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        problems.append(f"{location}: {error['msg']}")
    return "; ".join(problems)


def _read_config(path: Path) -> RuntimeConfig:
    """Parse and validate the file at ``path``.

    Raises:
      RuntimeConfigError: With the path and the failing keys in the message.
    """

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RuntimeConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    try:
        document = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise RuntimeConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(document, dict):
        raise RuntimeConfigError(f"{path} must contain a mapping at the top-level")
    try:
        return RuntimeConfig.model_validate(document)
    except ValidationError as exc:
        raise RuntimeConfigError(f"Invalid configuration in {path}: {_describe_validation(exc)}") from exc


def load_runtime_config(
    path: Optional[Union[Path, str]] = None,
    *,
    reload: bool = False,
) -> RuntimeConfig:
    """Return the runtime configuration, loading it when needed.

    Args:
      path: Explicit location of ``config.yaml``; overrides the environment
        variable and the defaults.
      reload: Ignore the cache and read the file again.

    Returns:
      The validated configuration.

    Raises:
      RuntimeConfigError: If no candidate exists or the first existing one is
        invalid.
    """

    global _RUNTIME_CACHE

    explicit = Path(path).expanduser() if path is not None else None
    if _RUNTIME_CACHE is not None and not reload:
        cached_path, cached = _RUNTIME_CACHE
        if explicit is None or explicit == cached_path:
            return cached

    candidates = _config_candidates(explicit)
    for candidate in candidates:
        if candidate.exists():
            config = _read_config(candidate)
            _RUNTIME_CACHE = (candidate, config)
            return config

    searched = ", ".join(str(candidate) for candidate in candidates) or "<none>"
    raise RuntimeConfigError(f"Unable to locate config.yaml (searched: {searched})")


def get_runtime_config() -> RuntimeConfig:
    """Return the cached configuration, loading it on first use."""

    return load_runtime_config()


def reset_runtime_config() -> None:
    """Forget the cached configuration so the next call reads the file again."""

    global _RUNTIME_CACHE
    _RUNTIME_CACHE = None
