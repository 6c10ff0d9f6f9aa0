"""Recurrence rules for scheduled events.

Rules are stored as RFC 5545 ``RRULE`` text (for example ``FREQ=WEEKLY;BYDAY=SA``).
The rule's DTSTART is not part of the stored text; it is supplied from the
event's initial scheduled time whenever the rule is parsed.
"""

from __future__ import annotations

import datetime as dt
from typing import List, Optional, Union

from dateutil.rrule import rrule, rruleset, rrulestr

Rule = Union[rrule, rruleset]


class RecurrenceError(ValueError):
    """Raised when recurrence rule text cannot be parsed."""


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC)


def parse_rule(text: str, dtstart: dt.datetime) -> Rule:
    text = (text or "").strip()
    if not text:
        raise RecurrenceError("recurrence rule is empty")
    if text.upper().startswith("RRULE:"):
        text = text[len("RRULE:"):]
    try:
        return rrulestr(text, dtstart=_as_utc(dtstart))
    except (ValueError, TypeError) as exc:
        raise RecurrenceError(f"invalid recurrence rule {text!r}: {exc}") from exc


def next_occurrence(rule: Rule, after: dt.datetime) -> Optional[dt.datetime]:
    """First occurrence strictly after ``after``, or None when the rule is exhausted."""

    return rule.after(_as_utc(after), inc=False)


def occurrences_between(rule: Rule, start: dt.datetime, end: dt.datetime) -> List[dt.datetime]:
    return list(rule.between(_as_utc(start), _as_utc(end), inc=True))
