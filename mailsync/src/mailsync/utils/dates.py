"""Date helpers shared by listing, search, and message materialisation.

What:
  Parse the loosely formatted dates found in mail headers and IMAP responses
  and render the ``DD Mon YYYY`` form used by textual search filters.

Why:
  ``Date`` headers frequently carry trailing comments such as ``(CET)`` or are
  outright broken. Listing and message reads must treat such values
  consistently, so the rules live here rather than at each call site.

How:
  Strip parenthesised comments, delegate to :func:`email.utils.parsedate_to_datetime`,
  and normalise everything to timezone-aware UTC datetimes.

Interfaces:
  :func:`cleanup_date`, :func:`to_utc`, :func:`imap_date`.
"""
from __future__ import annotations

import re
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Union


_COMMENT = re.compile(r"\(.*\)")
_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are local time)."""

    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc)


def cleanup_date(value: Union[str, bytes, datetime, None]) -> Optional[datetime]:
    """Parse a header or INTERNALDATE value into an aware UTC datetime.

    What:
      Accepts datetimes (as returned by ``imapclient``), bytes, or header
      strings and returns ``None`` when nothing usable can be extracted.

    Why:
      Callers use the result both as a change marker and for cutoff filtering;
      an unparseable date must be recognisable rather than raising.

    How:
      Datetimes are normalised directly. Text is decoded, stripped of
      ``(...)`` comments, and parsed with the RFC 2822 parser.

    Args:
      value: Raw date in any of the supported shapes.

    Returns:
      Parsed UTC datetime or ``None``.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    text = _COMMENT.sub("", str(value)).strip()
    if not text:
        return None
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    return to_utc(parsed)


def imap_date(value: Union[date, datetime]) -> str:
    """Render ``value`` as ``DD Mon YYYY`` independent of the process locale."""

    return f"{value.day:02d} {_MONTHS[value.month - 1]} {value.year:04d}"
