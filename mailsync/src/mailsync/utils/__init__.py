"""Expose the public utility surface for mailsync.

What:
  Re-export the logging and identifier helpers that every other package
  uses.

Why:
  A stable facade lets modules write ``from mailsync.utils import get_logger``
  without depending on file names.

How:
  Imports the canonical helpers and populates ``__all__``.

Interfaces:
  ``JsonLogger``, ``get_logger``, ``new_folder_token`` and ``new_boundary``.

Invariants & Safety:
  - Logging emits redacted JSON lines; message content never reaches the log.
"""

from .ids import new_boundary, new_folder_token
from .logging import JsonLogger, get_logger

__all__ = ["JsonLogger", "get_logger", "new_boundary", "new_folder_token"]
