"""Translate search requests into mail store search criteria.

What:
  Provide the criteria used by message listing (a narrowing ``SINCE``) and the
  textual filter sent for mailbox searches.

Why:
  Search syntax is positional and picky about date formats and quoting.
  Keeping the translation in one place makes the wire format easy to test.

How:
  Listing criteria are lists understood by ``imapclient`` (which formats date
  objects itself). Mailbox search filters are rendered as a single string with
  quoted ``DD Mon YYYY`` dates and a quoted ``BODY`` clause.

Interfaces:
  :func:`since_criteria`, :func:`build_search_filter`.

Invariants & Safety:
  - Free text is escaped so it cannot terminate the quoted string early.
  - The ``BODY`` clause is always present, even for an empty query.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import List, Optional, Union

from ..utils.dates import imap_date


def since_criteria(cutoff: Union[date, datetime]) -> List[object]:
    """Return the narrowing ``["SINCE", <date>]`` criteria for a listing cutoff.

    ``SINCE`` compares the calendar date of each message's internal date in
    the zone it was stamped in, so a message received after ``cutoff`` can
    carry the previous calendar day. The date sent is one day earlier than the
    cutoff's; callers re-check the exact instant per message.
    """

    day = cutoff.date() if isinstance(cutoff, datetime) else cutoff
    return ["SINCE", day - timedelta(days=1)]


def _quote(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_search_filter(
    free_text: str,
    *,
    since: Optional[date] = None,
    before: Optional[date] = None,
    window_days: Optional[int] = None,
    today: Optional[date] = None,
) -> str:
    """Render the textual filter for a mailbox search.

    What:
      Combines an optional ``SINCE`` date, an optional ``BEFORE`` date, and the
      mandatory ``BODY`` clause.

    Why:
      When the client gives no lower bound the search is limited to the
      configured sync window so that it only returns messages the device can
      actually hold.

    Args:
      free_text: Text to look for in message bodies.
      since: Inclusive lower date bound requested by the client.
      before: Exclusive upper date bound requested by the client.
      window_days: Default lookback applied when ``since`` is missing.
      today: Reference date for the default window (defaults to today).

    Returns:
      Filter string such as ``SINCE "07 Jan 2012" BODY "invoice"``.
    """

    clauses: List[str] = []
    if since is not None:
        clauses.append(f"SINCE {_quote(imap_date(since))}")
    elif window_days:
        reference = today or date.today()
        clauses.append(f"SINCE {_quote(imap_date(reference - timedelta(days=window_days)))}")
    if before is not None:
        clauses.append(f"BEFORE {_quote(imap_date(before))}")
    clauses.append(f"BODY {_quote(free_text)}")
    return " ".join(clauses)
