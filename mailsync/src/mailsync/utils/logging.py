"""JSON line logging for sync sessions, with mail content kept out of the logs.

What:
  Give every mailsync component a small logger that writes one JSON object per
  event: ``ts``, ``lvl``, ``msg``, ``component`` and the caller's fields.

Why:
  A backend runs one long session per device and operators follow it by
  grepping for event names and folder paths. Message subjects, bodies and
  credentials pass through the same code paths and must never reach the log
  sink, so scrubbing happens in the logger rather than at each call site.

How:
  :class:`JsonLogger` scrubs the extra fields (recursing into dictionaries and
  lists), serialises them with compact separators and flushes. Without a bound
  stream the current ``sys.stdout`` is used, looked up on every write so
  ``capsys`` and CLI runners see the output.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`, :data:`REDACTED`.

Invariants & Safety:
  - Keys listed in :data:`SENSITIVE_KEYS` are replaced by :data:`REDACTED` at
    any nesting depth.
  - Levels are written in upper case; ``warning`` is emitted as ``WARN``.
"""
from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({"subject", "body", "preview", "snippet", "password"})


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: REDACTED if key in SENSITIVE_KEYS else _scrub(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub(item) for item in value]
    return value


@dataclass
class JsonLogger:
    """Per-component event logger.

    ``stream`` defaults to the process stdout at write time; pass a file-like
    object to capture one logger in isolation.
    """

    stream: Any = None
    component: str = "mailsync"

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Write one event.

        Args:
          level: Severity name; stored upper-cased.
          message: Event name, e.g. ``sink_status_failed``.
          extra: Additional fields, scrubbed before serialisation.
        """

        entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": level.upper(),
            "msg": message,
            "component": self.component,
        }
        if extra:
            entry.update(_scrub(extra))
        target = sys.stdout if self.stream is None else self.stream
        target.write(json.dumps(entry, separators=(",", ":"), default=str) + "\n")
        target.flush()

    def debug(self, message: str, **fields: Any) -> None:
        self.log("DEBUG", message, extra=fields)

    def info(self, message: str, **fields: Any) -> None:
        self.log("INFO", message, extra=fields)

    def warning(self, message: str, **fields: Any) -> None:
        """Report a best-effort failure that leaves the session usable."""

        self.log("WARN", message, extra=fields)

    def error(self, message: str, **fields: Any) -> None:
        """Report a failure the caller will see or that lost data."""

        self.log("ERROR", message, extra=fields)


def get_logger(component: str) -> JsonLogger:
    """Return a logger tagged with ``component`` (e.g. ``"core.sink"``)."""

    return JsonLogger(component=component)
