"""
HomeBase — Recurrence Engine.

Converts between a structured RecurrenceConfig (what the chore forms edit)
and RFC 5545 recurrence text (what chore_assignments.recurrence_rule and
Google events store), and projects upcoming occurrences.

Pure functions, no I/O. Parsing and generation go through dateutil.rrule,
so the stored text is always the standard grammar:

    DTSTART:20260105T000000Z
    RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO

All datetimes are handled in UTC. A rule without DTSTART is anchored at the
reference date passed in.

Weekday numbering: the engine uses 0=Monday..6=Sunday (same as RRULE and
Python's date.weekday()). Clients using 0=Sunday..6=Saturday must convert
with sunday_first_to_rrule_weekday / rrule_to_sunday_first_weekday.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Literal

from dateutil.rrule import DAILY, MONTHLY, WEEKLY, YEARLY, rrule, rrulestr

logger = logging.getLogger(__name__)

RecurrenceType = Literal["none", "daily", "weekly", "biweekly", "monthly"]

WEEKDAY_LABELS = (
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
)

ONE_TIME_TEXT = "One time"
CUSTOM_TEXT = "Custom recurrence"

# What dateutil raises for malformed rule text
_PARSE_ERRORS = (ValueError, TypeError, AttributeError)

# Occurrence projection never looks further ahead than this
_LOOKAHEAD = timedelta(days=365)


@dataclass
class RecurrenceConfig:
    """Structured recurrence intent.

    weekday: 0=Monday..6=Sunday, used by weekly/biweekly.
    monthday: 1..31, used by monthly.
    """

    type: RecurrenceType = "none"
    weekday: int | None = None
    monthday: int | None = None


# ---------------------------------------------------------------------------
# Weekday conversion
# ---------------------------------------------------------------------------


def sunday_first_to_rrule_weekday(weekday: int) -> int:
    """Convert 0=Sunday..6=Saturday to 0=Monday..6=Sunday."""
    if not 0 <= weekday <= 6:
        raise ValueError(f"Weekday out of range: {weekday}")
    return 6 if weekday == 0 else weekday - 1


def rrule_to_sunday_first_weekday(weekday: int) -> int:
    """Convert 0=Monday..6=Sunday to 0=Sunday..6=Saturday."""
    if not 0 <= weekday <= 6:
        raise ValueError(f"Weekday out of range: {weekday}")
    return 0 if weekday == 6 else weekday + 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_utc(value: date | datetime) -> datetime:
    """Normalize a date or datetime to an aware UTC datetime."""
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _naive_utc(value: date | datetime) -> datetime:
    return _to_utc(value).replace(tzinfo=None)


def _parse(rule_text: str, anchor: date | datetime) -> rrule:
    """Parse rule text into a single rrule, in naive UTC.

    Raises ValueError (or TypeError) for anything that is not one RRULE.
    """
    rule = rrulestr(rule_text, dtstart=_naive_utc(anchor), ignoretz=True)
    if not isinstance(rule, rrule):
        raise ValueError("Expected a single RRULE")
    return rule


@dataclass
class _RuleParts:
    freq: int
    interval: int
    count: int | None
    until: datetime | None
    weekdays: tuple[int, ...]
    monthdays: tuple[int, ...]


def _parts(rule: rrule) -> _RuleParts:
    """Read a parsed rule's fields.

    rrule exposes no public accessors, so this is the one place that touches
    its private attributes (checked against python-dateutil 2.8.2 and 2.9.0).
    _original_rule holds the BY* values written in the text, not the ones
    dateutil infers from DTSTART.
    """
    written = rule._original_rule
    weekdays = tuple(
        wd if isinstance(wd, int) else wd.weekday for wd in written.get("byweekday") or ()
    )
    return _RuleParts(
        freq=rule._freq,
        interval=rule._interval,
        count=rule._count,
        until=rule._until,
        weekdays=weekdays,
        monthdays=tuple(written.get("bymonthday") or ()),
    )


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def generate_rrule(config: RecurrenceConfig, anchor: date | datetime) -> str | None:
    """Build RFC 5545 text for a recurrence config, starting at anchor.

    Returns None for type "none".
    """
    if config.type == "none":
        return None

    kwargs: dict = {"dtstart": _naive_utc(anchor)}
    if config.type == "daily":
        freq = DAILY
    elif config.type in ("weekly", "biweekly"):
        freq = WEEKLY
        if config.type == "biweekly":
            kwargs["interval"] = 2
        if config.weekday is not None:
            kwargs["byweekday"] = [config.weekday]
    elif config.type == "monthly":
        freq = MONTHLY
        if config.monthday is not None:
            kwargs["bymonthday"] = [config.monthday]
    else:
        raise ValueError(f"Unknown recurrence type: {config.type!r}")

    rule = rrule(freq, **kwargs)
    rrule_line = next(
        line for line in str(rule).splitlines() if line.startswith("RRULE:")
    )
    return f"DTSTART:{kwargs['dtstart']:%Y%m%dT%H%M%S}Z\n{rrule_line}"


def is_valid_rrule(rule_text: str) -> bool:
    """True if the text parses as exactly one RRULE (with optional DTSTART)."""
    try:
        _parts(_parse(rule_text, datetime.now(timezone.utc)))
    except _PARSE_ERRORS:
        return False
    return True


def parse_rrule_to_config(rule_text: str | None) -> RecurrenceConfig:
    """Inverse of generate_rrule. Unparseable or empty input yields type "none"."""
    if not rule_text:
        return RecurrenceConfig()

    try:
        parts = _parts(_parse(rule_text, datetime.now(timezone.utc)))
    except _PARSE_ERRORS as exc:
        logger.debug("Unparseable recurrence rule %r: %s", rule_text, exc)
        return RecurrenceConfig()

    weekday = None
    monthday = None
    if parts.freq == DAILY:
        rtype: RecurrenceType = "daily"
    elif parts.freq == WEEKLY:
        rtype = "biweekly" if parts.interval == 2 else "weekly"
        if parts.weekdays:
            weekday = parts.weekdays[0]
    elif parts.freq == MONTHLY:
        rtype = "monthly"
        if parts.monthdays:
            monthday = parts.monthdays[0]
    else:
        rtype = "none"

    return RecurrenceConfig(type=rtype, weekday=weekday, monthday=monthday)


def parse_rrule_to_text(rule_text: str | None) -> str:
    """Describe a rule in plain English, e.g. "Every 2 weeks on Monday"."""
    if not rule_text:
        return ONE_TIME_TEXT

    try:
        parts = _parts(_parse(rule_text, datetime.now(timezone.utc)))
    except _PARSE_ERRORS:
        return CUSTOM_TEXT

    units = {DAILY: "day", WEEKLY: "week", MONTHLY: "month", YEARLY: "year"}
    unit = units.get(parts.freq)
    if unit is None:
        return CUSTOM_TEXT

    interval = parts.interval
    text = f"Every {unit}" if interval == 1 else f"Every {interval} {unit}s"

    if parts.weekdays:
        text += " on " + ", ".join(WEEKDAY_LABELS[wd] for wd in parts.weekdays)
    elif parts.monthdays:
        days = [_ordinal(d) if d > 0 else "last day" for d in parts.monthdays]
        text += " on the " + ", ".join(days)

    if parts.count:
        text += f" for {parts.count} times"
    elif parts.until:
        until = parts.until
        text += f" until {until:%B} {until.day}, {until.year}"
    return text


def get_next_occurrence(
    rule_text: str | None, after: date | datetime,
) -> datetime | None:
    """First occurrence strictly after `after`, as an aware UTC datetime."""
    if not rule_text:
        return None

    try:
        rule = _parse(rule_text, after)
        nxt = rule.after(_naive_utc(after), inc=False)
    except _PARSE_ERRORS as exc:
        logger.error("Invalid recurrence rule %r: %s", rule_text, exc)
        return None

    return nxt.replace(tzinfo=timezone.utc) if nxt else None


def get_next_occurrences(
    rule_text: str | None, after: date | datetime, count: int = 10,
) -> list[datetime]:
    """Up to `count` occurrences strictly after `after`, ascending.

    Looks at most one year ahead. Empty for missing or invalid rules.
    """
    if not rule_text or count <= 0:
        return []

    start = _naive_utc(after)
    horizon = start + _LOOKAHEAD
    try:
        rule = _parse(rule_text, after)
        upcoming = [
            occ for occ in rule.xafter(start, count=count, inc=False)
            if occ <= horizon
        ]
    except _PARSE_ERRORS as exc:
        logger.error("Invalid recurrence rule %r: %s", rule_text, exc)
        return []

    return [occ.replace(tzinfo=timezone.utc) for occ in upcoming]
