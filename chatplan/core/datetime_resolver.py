"""
ChatPlan — Date/Time Resolver.

Converts a natural-language date/time phrase ("next friday at 3pm",
"tomorrow at 9am", "11/4 at 14:00", "earliest available starting at 9")
into an absolute, timezone-aware instant, and a duration phrase
("30 minutes", "1 hour") into minutes.

Policy:
- Weekday terms resolve to the next future occurrence of that weekday; the
  same day only when its time has not passed yet.
- A time without a date resolves to today, or tomorrow if it has passed.
- Dates without a year roll forward to the next occurrence.
- Ambiguous phrases (two different dates, two different times, a bare
  "at 3" without am/pm, a date without a time) fail with DateParseError.
  So do relative expressions outside this grammar ("next week", "in 3
  days", "the 15th"); they are never skipped.
- Instants in the past or beyond the scheduling horizon fail with
  UnreasonableDateError.
- "earliest available" yields no instant, only a lower-bound hint; picking
  the concrete slot is the availability step's job.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Callable
from zoneinfo import ZoneInfo

from dateutil import parser as dateutil_parser

from chatplan.core.errors import DateParseError, UnreasonableDateError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedDateTime:
    """Result of resolving a date/time phrase.

    Exactly one of ``instant`` and ``is_earliest_available`` is set.
    """

    instant: datetime | None
    duration_minutes: int
    is_earliest_available: bool
    raw_phrase: str
    earliest_time: time | None = None       # lower-bound time-of-day hint
    earliest_date: date | None = None       # first day to search, when named


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_MONTH = (
    r"jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?"
)

_EARLIEST_RE = re.compile(r"\bearliest\s+(?:available|free)\b")
_EARLIEST_HINT_RE = re.compile(
    r"\b(?:starting\s+(?:at|from)|starting|after|from)\s+"
    r"(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?\s*(?P<meridiem>[ap]\.?m\.?)?(?![\w/])"
)

_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_NUMERIC_DATE_RE = re.compile(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b")
_MONTH_DATE_RE = re.compile(
    rf"\b(?:(?:{_MONTH})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+\d{{4}})?"
    rf"|\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?(?:{_MONTH})(?:,?\s+\d{{4}})?)\b"
)
_DAY_AFTER_TOMORROW_RE = re.compile(r"\bday\s+after\s+tomorrow\b")
_RELATIVE_DAY_RE = re.compile(r"\b(today|tonight|tomorrow)\b")
_WEEKDAY_RE = re.compile(rf"\b(?:(?:next|this|coming|on)\s+)?({'|'.join(_WEEKDAYS)})\b")

# Date vocabulary outside the grammar above, checked on the text left over
_UNSUPPORTED_DATE_RE = re.compile(
    r"\b(?:next|this|coming|last|in\s+(?:a|an|\d+|a\s+few|a\s+couple\s+of))\s+"
    r"(?:weeks?|weekend|months?|years?|days?|quarter)\b"
    r"|\b\d+\s+(?:days?|weeks?|months?)\s+from\s+now\b"
    r"|\b(?:end|beginning|start|middle)\s+of\s+(?:the\s+)?(?:week|month|year)\b"
    r"|\b(?:the\s+)?\d{1,2}(?:st|nd|rd|th)\b"
    r"|\b(?:next|coming|weekend)\b"
)

_MERIDIEM_TIME_RE = re.compile(
    r"\b(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?\s*(?P<meridiem>[ap])\.?m\b\.?"
)
_CLOCK_TIME_RE = re.compile(r"\b(?P<hour>\d{1,2}):(?P<minute>\d{2})\b")
_NAMED_TIME_RE = re.compile(r"\b(noon|midday|midnight)\b")
_BARE_HOUR_RE = re.compile(r"\bat\s+(?P<hour>\d{1,2})(?![\d:/.])")

_DURATION_PART_RE = re.compile(
    r"(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>hours?|hrs?|h|minutes?|mins?|m)\b"
)
_DURATION_WORDS: dict[str, int] = {
    "an hour and a half": 90,
    "hour and a half": 90,
    "one and a half hours": 90,
    "half an hour": 30,
    "half hour": 30,
    "a quarter hour": 15,
    "quarter of an hour": 15,
    "an hour": 60,
    "one hour": 60,
    "two hours": 120,
}


def _blank(text: str, match: re.Match) -> str:
    """Replace a consumed span with spaces so later patterns cannot reuse it."""
    return text[: match.start()] + " " * (match.end() - match.start()) + text[match.end():]


def _to_24h(hour: int, minute: int, meridiem: str | None, phrase: str) -> time:
    if minute > 59:
        raise DateParseError(phrase, f"invalid minute {minute}")
    if meridiem:
        if not 1 <= hour <= 12:
            raise DateParseError(phrase, f"invalid hour {hour} for a 12-hour clock")
        if meridiem.startswith("p") and hour != 12:
            hour += 12
        elif meridiem.startswith("a") and hour == 12:
            hour = 0
    elif hour > 23:
        raise DateParseError(phrase, f"invalid hour {hour}")
    return time(hour, minute)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class DateTimeResolver:
    """Resolve date/time and duration phrases relative to an injectable clock."""

    def __init__(
        self,
        timezone: str | tzinfo | None = None,
        horizon_days: int | None = None,
        default_duration: int | None = None,
        max_duration: int | None = None,
        earliest_hour: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        from chatplan.config import settings

        if timezone is None:
            timezone = settings.TIMEZONE
        self._tz = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
        self._horizon = timedelta(days=horizon_days or settings.SCHEDULING_HORIZON_DAYS)
        self._default_duration = default_duration or settings.DEFAULT_MEETING_MINUTES
        self._max_duration = max_duration or settings.MAX_MEETING_MINUTES
        self._earliest_hour = (
            settings.EARLIEST_AVAILABLE_HOUR if earliest_hour is None else earliest_hour
        )
        self._clock = clock or (lambda: datetime.now(self._tz))

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, phrase: str, duration_phrase: str = "") -> ParsedDateTime:
        """Resolve a date/time phrase plus an optional duration phrase."""
        duration = self.parse_duration(duration_phrase)
        text = " ".join(phrase.lower().split())
        now = self.now()

        if _EARLIEST_RE.search(text):
            return self._resolve_earliest(phrase, text, duration, now)

        instant = self._resolve_instant(phrase, text, now)
        self.check_reasonable(instant, now)
        logger.debug("Resolved '%s' → %s (%d min)", phrase, instant.isoformat(), duration)
        return ParsedDateTime(
            instant=instant,
            duration_minutes=duration,
            is_earliest_available=False,
            raw_phrase=phrase,
        )

    def parse_duration(self, phrase: str) -> int:
        """Parse "30 minutes", "1 hour", "1h 30m", "half an hour"; default when empty."""
        text = " ".join((phrase or "").lower().split())
        if not text:
            return self._default_duration

        minutes: float | None = None
        for words, value in _DURATION_WORDS.items():
            if words in text:
                minutes = value
                break
        if minutes is None:
            parts = list(_DURATION_PART_RE.finditer(text))
            if parts:
                minutes = 0
                for part in parts:
                    value = float(part.group("value"))
                    minutes += value * 60 if part.group("unit").startswith("h") else value

        if minutes is None:
            raise DateParseError(phrase, "could not understand the duration")

        result = int(round(minutes))
        if not 1 <= result <= self._max_duration:
            raise DateParseError(
                phrase, f"duration must be between 1 and {self._max_duration} minutes"
            )
        return result

    def check_reasonable(self, instant: datetime, now: datetime | None = None) -> None:
        now = now or self.now()
        if instant < now:
            raise UnreasonableDateError(instant, "it is in the past")
        if instant > now + self._horizon:
            raise UnreasonableDateError(
                instant, f"it is more than {self._horizon.days} days ahead"
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_earliest(
        self, phrase: str, text: str, duration: int, now: datetime
    ) -> ParsedDateTime:
        hint = time(self._earliest_hour, 0)
        match = _EARLIEST_HINT_RE.search(text)
        if match:
            # "starting at 9" reads as a 24-hour clock when no am/pm is given
            hint = _to_24h(
                int(match.group("hour")),
                int(match.group("minute") or 0),
                match.group("meridiem"),
                phrase,
            )
            text = _blank(text, match)

        day, weekday, has_year, _ = self._find_date(phrase, text, now)
        if weekday is not None:
            day = now.date() + timedelta(days=(weekday - now.weekday()) % 7)
        elif day is not None and not has_year and day < now.date():
            day = day.replace(year=day.year + 1)
        if day is not None and day < now.date():
            raise UnreasonableDateError(datetime.combine(day, hint, self._tz), "it is in the past")

        return ParsedDateTime(
            instant=None,
            duration_minutes=duration,
            is_earliest_available=True,
            raw_phrase=phrase,
            earliest_time=hint,
            earliest_date=day,
        )

    def _resolve_instant(self, phrase: str, text: str, now: datetime) -> datetime:
        day, weekday, explicit_year, text = self._find_date(phrase, text, now)
        clock_time = self._find_time(phrase, text)

        if day is None and weekday is None and clock_time is None:
            raise DateParseError(phrase, "no date or time found")
        if clock_time is None:
            raise DateParseError(phrase, "no time of day given")

        if weekday is not None:
            days_ahead = (weekday - now.weekday()) % 7
            candidate = datetime.combine(now.date() + timedelta(days=days_ahead), clock_time, self._tz)
            if candidate <= now:
                candidate += timedelta(days=7)
            return candidate

        if day is None:
            candidate = datetime.combine(now.date(), clock_time, self._tz)
            if candidate <= now:
                candidate += timedelta(days=1)
            return candidate

        candidate = datetime.combine(day, clock_time, self._tz)
        if not explicit_year and candidate < now:
            candidate = candidate.replace(year=candidate.year + 1)
        return candidate

    def _find_date(
        self, phrase: str, text: str, now: datetime
    ) -> tuple[date | None, int | None, bool, str]:
        """Return (calendar date, weekday index, year given?, remaining text)."""
        found: list[tuple[str, date | int, bool]] = []

        for match in _ISO_DATE_RE.finditer(text):
            try:
                found.append(("date", date(*(int(g) for g in match.groups())), True))
            except ValueError as exc:
                raise DateParseError(phrase, f"invalid date '{match.group(0)}'") from exc
            text = _blank(text, match)

        for pattern in (_NUMERIC_DATE_RE, _MONTH_DATE_RE):
            for match in pattern.finditer(text):
                raw = match.group(0)
                has_year = bool(re.search(r"\d{4}|/\d{1,2}/\d{2}\b", raw))
                try:
                    parsed = dateutil_parser.parse(
                        raw, default=datetime(now.year, 1, 1), fuzzy=True
                    )
                except (ValueError, OverflowError) as exc:
                    raise DateParseError(phrase, f"invalid date '{raw}'") from exc
                found.append(("date", parsed.date(), has_year))
                text = _blank(text, match)

        for match in _DAY_AFTER_TOMORROW_RE.finditer(text):
            found.append(("date", now.date() + timedelta(days=2), True))
            text = _blank(text, match)

        for match in _RELATIVE_DAY_RE.finditer(text):
            offset = 1 if match.group(1) == "tomorrow" else 0
            found.append(("date", now.date() + timedelta(days=offset), True))
            text = _blank(text, match)

        for match in _WEEKDAY_RE.finditer(text):
            found.append(("weekday", _WEEKDAYS.index(match.group(1)), False))
            text = _blank(text, match)

        unsupported = _UNSUPPORTED_DATE_RE.search(text)
        if unsupported:
            raise DateParseError(
                phrase, f"unsupported date expression '{unsupported.group(0).strip()}'"
            )

        distinct = {(kind, value) for kind, value, _ in found}
        if len(distinct) > 1:
            raise DateParseError(phrase, "more than one date mentioned")
        if not found:
            return None, None, False, text

        kind, value, has_year = found[0]
        if kind == "weekday":
            return None, value, False, text
        return value, None, has_year, text

    def _find_time(self, phrase: str, text: str) -> time | None:
        found: list[time] = []

        for match in _MERIDIEM_TIME_RE.finditer(text):
            found.append(_to_24h(
                int(match.group("hour")), int(match.group("minute") or 0),
                match.group("meridiem"), phrase,
            ))
            text = _blank(text, match)

        # HH:MM without am/pm is a 24-hour clock
        for match in _CLOCK_TIME_RE.finditer(text):
            found.append(_to_24h(
                int(match.group("hour")), int(match.group("minute")), None, phrase,
            ))
            text = _blank(text, match)

        for match in _NAMED_TIME_RE.finditer(text):
            found.append(time(0, 0) if match.group(1) == "midnight" else time(12, 0))
            text = _blank(text, match)

        for match in _BARE_HOUR_RE.finditer(text):
            hour = int(match.group("hour"))
            if hour <= 12:
                raise DateParseError(phrase, f"'{match.group(0).strip()}' needs am or pm")
            found.append(_to_24h(hour, 0, None, phrase))
            text = _blank(text, match)

        if len(set(found)) > 1:
            raise DateParseError(phrase, "more than one time mentioned")
        return found[0] if found else None
