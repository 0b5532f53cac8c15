"""Generate opaque folder tokens and MIME boundaries.

What:
  Provide the random identifiers handed out to the mobile sync engine and the
  boundary strings used when assembling multipart documents.

Why:
  Folder tokens must be fixed-width lowercase hex and must never contain the
  ``:`` separator used by attachment references. Keeping generation in one
  place makes that contract easy to audit.

How:
  Wraps :func:`secrets.token_hex` and retries on collision against the set of
  tokens already issued.

Interfaces:
  :func:`new_folder_token`, :func:`new_boundary`.

Invariants & Safety:
  - Folder tokens are exactly :data:`FOLDER_TOKEN_LENGTH` hex characters.
  - A returned folder token never appears in ``existing``.
"""
from __future__ import annotations

import secrets
from typing import Container


FOLDER_TOKEN_LENGTH = 16


def new_folder_token(existing: Container[str]) -> str:
    """Return a fresh folder token that does not collide with ``existing``.

    What:
      Draws 8 random bytes and renders them as 16 lowercase hex digits.

    Why:
      Tokens replace volatile mailbox paths; a collision would alias two
      folders, so the draw is repeated until the value is unused.

    Args:
      existing: Tokens already present in the device mapping.

    Returns:
      A new, unused folder token.
    """

    while True:
        token = secrets.token_hex(FOLDER_TOKEN_LENGTH // 2)
        if token not in existing:
            return token


def new_boundary() -> str:
    """Return a random multipart boundary prefixed with ``=_``."""

    return f"=_{secrets.token_hex(16)}"
