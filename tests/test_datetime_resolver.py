"""Tests for chatplan.core.datetime_resolver — date, time and duration phrases.

The reference clock is Wednesday 2026-03-04 10:00 UTC (see conftest.NOW).
"""

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from chatplan.core.datetime_resolver import DateTimeResolver
from chatplan.core.errors import DateParseError, UnreasonableDateError

UTC = ZoneInfo("UTC")


def at(y, m, d, hh, mm=0):
    return datetime(y, m, d, hh, mm, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Absolute instants
# ---------------------------------------------------------------------------


class TestResolveInstant:
    def test_tomorrow(self, resolver):
        parsed = resolver.resolve("tomorrow at 2pm")
        assert parsed.instant == at(2026, 3, 5, 14)
        assert parsed.duration_minutes == 60
        assert parsed.is_earliest_available is False

    def test_next_weekday(self, resolver):
        assert resolver.resolve("next friday at 3pm").instant == at(2026, 3, 6, 15)

    def test_same_weekday_later_today(self, resolver):
        assert resolver.resolve("wednesday at 3pm").instant == at(2026, 3, 4, 15)

    def test_same_weekday_already_passed_moves_a_week(self, resolver):
        assert resolver.resolve("wednesday at 9am").instant == at(2026, 3, 11, 9)

    def test_time_only_today(self, resolver):
        assert resolver.resolve("at 3pm").instant == at(2026, 3, 4, 15)

    def test_time_only_passed_means_tomorrow(self, resolver):
        assert resolver.resolve("at 9am").instant == at(2026, 3, 5, 9)

    def test_tonight(self, resolver):
        assert resolver.resolve("tonight at 8pm").instant == at(2026, 3, 4, 20)

    def test_day_after_tomorrow(self, resolver):
        assert resolver.resolve("the day after tomorrow at noon").instant == at(2026, 3, 6, 12)

    def test_numeric_date_with_24h_clock(self, resolver):
        assert resolver.resolve("3/20 at 14:00").instant == at(2026, 3, 20, 14)

    def test_iso_date(self, resolver):
        assert resolver.resolve("2026-04-01 at 9:30am").instant == at(2026, 4, 1, 9, 30)

    def test_month_name_rolls_forward_when_past(self, resolver):
        assert resolver.resolve("march 1 at 10am").instant == at(2027, 3, 1, 10)

    def test_month_name_this_year(self, resolver):
        assert resolver.resolve("April 2nd at 4pm").instant == at(2026, 4, 2, 16)

    def test_same_phrase_same_instant(self, resolver):
        first = resolver.resolve("tomorrow at 2pm")
        second = resolver.resolve("tomorrow at 2pm")
        assert first.instant == second.instant

    def test_instant_is_in_configured_zone(self):
        tz = ZoneInfo("America/New_York")
        resolver = DateTimeResolver(timezone=tz, clock=lambda: datetime(2026, 3, 4, 10, tzinfo=tz))
        instant = resolver.resolve("tomorrow at 9am").instant
        assert instant.tzinfo == tz
        assert (instant.hour, instant.day) == (9, 5)


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestResolveErrors:
    def test_bare_hour_is_ambiguous(self, resolver):
        with pytest.raises(DateParseError, match="am or pm"):
            resolver.resolve("friday at 3")

    def test_bare_24h_hour_is_accepted(self, resolver):
        assert resolver.resolve("friday at 15").instant == at(2026, 3, 6, 15)

    def test_date_without_time(self, resolver):
        with pytest.raises(DateParseError, match="no time of day"):
            resolver.resolve("tomorrow")

    def test_nothing_temporal(self, resolver):
        with pytest.raises(DateParseError, match="no date or time"):
            resolver.resolve("sometime soon")

    def test_two_dates(self, resolver):
        with pytest.raises(DateParseError, match="more than one date"):
            resolver.resolve("tomorrow at 3pm or friday at 3pm")

    def test_two_times(self, resolver):
        with pytest.raises(DateParseError, match="more than one time"):
            resolver.resolve("tomorrow at 3pm or 4pm")

    def test_invalid_meridiem_hour(self, resolver):
        with pytest.raises(DateParseError):
            resolver.resolve("tomorrow at 13pm")

    def test_past_explicit_date(self, resolver):
        with pytest.raises(UnreasonableDateError, match="past"):
            resolver.resolve("2025-01-01 at 10am")

    def test_beyond_horizon(self, resolver):
        with pytest.raises(UnreasonableDateError, match="days ahead"):
            resolver.resolve("2028-01-01 at 10am")

    @pytest.mark.parametrize("phrase,expression", [
        ("next week at 3pm", "next week"),
        ("next month at 3pm", "next month"),
        ("on the 15th at 3pm", "the 15th"),
        ("in 3 days at 3pm", "in 3 days"),
        ("this weekend at 10am", "this weekend"),
        ("2 weeks from now at 9am", "2 weeks from now"),
        ("end of the month at 4pm", "end of the month"),
        ("next at 3pm", "next"),
    ])
    def test_unsupported_date_expression(self, resolver, phrase, expression):
        with pytest.raises(DateParseError, match="unsupported date expression") as exc_info:
            resolver.resolve(phrase)
        assert exc_info.value.reason == f"unsupported date expression '{expression}'"

    def test_unsupported_expression_with_earliest(self, resolver):
        with pytest.raises(DateParseError, match="next week"):
            resolver.resolve("earliest available next week")

    def test_error_carries_phrase(self, resolver):
        with pytest.raises(DateParseError) as exc_info:
            resolver.resolve("tomorrow")
        assert exc_info.value.to_dict()["phrase"] == "tomorrow"


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------


class TestParseDuration:
    @pytest.mark.parametrize("phrase,expected", [
        ("", 60),
        ("30 minutes", 30),
        ("45 mins", 45),
        ("1 hour", 60),
        ("2 hours", 120),
        ("1.5 hours", 90),
        ("1h 30m", 90),
        ("1 hour 15 minutes", 75),
        ("half an hour", 30),
        ("an hour and a half", 90),
    ])
    def test_parses(self, resolver, phrase, expected):
        assert resolver.parse_duration(phrase) == expected

    def test_resolve_applies_duration(self, resolver):
        assert resolver.resolve("tomorrow at 2pm", "30 minutes").duration_minutes == 30

    def test_too_long(self, resolver):
        with pytest.raises(DateParseError, match="between 1 and 480"):
            resolver.parse_duration("10 hours")

    def test_zero(self, resolver):
        with pytest.raises(DateParseError):
            resolver.parse_duration("0 minutes")

    def test_unparsable(self, resolver):
        with pytest.raises(DateParseError, match="duration"):
            resolver.parse_duration("a while")

    def test_custom_default(self):
        resolver = DateTimeResolver(timezone="UTC", default_duration=30)
        assert resolver.parse_duration("") == 30


# ---------------------------------------------------------------------------
# Earliest available
# ---------------------------------------------------------------------------


class TestEarliestAvailable:
    def test_hint_from_starting_at(self, resolver):
        parsed = resolver.resolve("at his earliest available time starting at 9")
        assert parsed.is_earliest_available is True
        assert parsed.instant is None
        assert parsed.earliest_time == time(9, 0)
        assert parsed.earliest_date is None

    def test_default_hint(self, resolver):
        parsed = resolver.resolve("earliest available")
        assert parsed.earliest_time == time(9, 0)

    def test_hint_with_meridiem_and_weekday(self, resolver):
        parsed = resolver.resolve("earliest available starting at 2pm on friday")
        assert parsed.earliest_time == time(14, 0)
        assert parsed.earliest_date == date(2026, 3, 6)

    def test_bare_hint_hour_is_24h(self, resolver):
        assert resolver.resolve("earliest free after 13").earliest_time == time(13, 0)

    def test_past_date_rejected(self, resolver):
        with pytest.raises(UnreasonableDateError):
            resolver.resolve("earliest available 2025-06-01")

    def test_keeps_duration(self, resolver):
        assert resolver.resolve("earliest available", "45 minutes").duration_minutes == 45


class TestCheckReasonable:
    def test_now_is_fine(self, resolver, now):
        resolver.check_reasonable(now)

    def test_custom_horizon(self, now):
        resolver = DateTimeResolver(timezone="UTC", horizon_days=7, clock=lambda: now)
        with pytest.raises(UnreasonableDateError):
            resolver.resolve("3/20 at 10am")
