"""
ChatPlan — Meeting Conflict Checker.

Detects time conflicts before a meeting is created or rescheduled, and
finds free windows for "earliest available" requests and slot proposals.

Windows are half-open: [start, end). Two windows conflict iff
``existing.start < candidate.end and candidate.start < existing.end``, so
back-to-back meetings do not conflict. Only committed events (not done,
not declined) occupy time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from typing import TYPE_CHECKING, Iterable

from chatplan.core.errors import SchedulingConflictError

if TYPE_CHECKING:
    from chatplan.data.models import ScheduleEvent
    from chatplan.ports.event_store_port import EventStorePort

logger = logging.getLogger(__name__)

# Events fetched around a candidate window; longer meetings are capped by MAX_MEETING_MINUTES
_LOOKAROUND = timedelta(days=1)


@dataclass
class ConflictResult:
    """Result of a conflict check against one owner's committed events."""

    has_conflict: bool
    conflicting_events: list[ScheduleEvent] = field(default_factory=list)


def windows_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def overlaps_any(start: datetime, end: datetime, busy: Iterable[tuple[datetime, datetime]]) -> bool:
    return any(windows_overlap(start, end, b_start, b_end) for b_start, b_end in busy)


def busy_intervals(events: Iterable[ScheduleEvent]) -> list[tuple[datetime, datetime]]:
    """Committed (start, end) windows, sorted."""
    return sorted((ev.start, ev.end) for ev in events if ev.is_committed)


def find_conflicts(
    events: Iterable[ScheduleEvent],
    start: datetime,
    duration_minutes: int,
    exclude_event_id: str | None = None,
) -> list[ScheduleEvent]:
    """Committed events overlapping [start, start + duration)."""
    end = start + timedelta(minutes=duration_minutes)
    return [
        ev for ev in events
        if ev.is_committed
        and ev.id != exclude_event_id
        and windows_overlap(ev.start, ev.end, start, end)
    ]


async def check_conflict(
    store: EventStorePort,
    owner_id: str,
    start: datetime,
    duration_minutes: int,
    exclude_event_id: str | None = None,
) -> ConflictResult:
    """Check a proposed window against the owner's own committed events.

    Store errors propagate: a conflict check is never silently skipped.

    Args:
        store: Event store port.
        owner_id: Whose partition to read (the acting user).
        start: Proposed start (timezone-aware).
        duration_minutes: Duration of the proposed meeting.
        exclude_event_id: Event to skip (self-exclusion on reschedule).
    """
    end = start + timedelta(minutes=duration_minutes)
    events = await store.list_events(owner_id, start=start - _LOOKAROUND, end=end + _LOOKAROUND)
    conflicting = find_conflicts(events, start, duration_minutes, exclude_event_id)
    if conflicting:
        logger.info(
            "Conflict for %s at %s: %s",
            owner_id, start.isoformat(), [ev.title for ev in conflicting],
        )
    return ConflictResult(has_conflict=bool(conflicting), conflicting_events=conflicting)


async def ensure_no_conflict(
    store: EventStorePort,
    owner_id: str,
    start: datetime,
    duration_minutes: int,
    exclude_event_id: str | None = None,
) -> None:
    """Raise SchedulingConflictError carrying the conflicting events, if any."""
    result = await check_conflict(store, owner_id, start, duration_minutes, exclude_event_id)
    if result.has_conflict:
        raise SchedulingConflictError(result.conflicting_events)


# ---------------------------------------------------------------------------
# Free windows
# ---------------------------------------------------------------------------


def find_free_slots(
    busy: list[tuple[datetime, datetime]],
    duration_minutes: int,
    days: Iterable[date],
    tz: tzinfo,
    day_start: time,
    day_end: time,
    not_before: datetime | None = None,
    step_minutes: int = 30,
    max_slots: int = 5,
    weekdays_only: bool = True,
) -> list[datetime]:
    """Free windows of the given duration within daily bounds.

    Scans each day from day_start in ``step_minutes`` steps. When max_slots
    is 0, returns ALL available slots.

    Args:
        busy: (start, end) busy windows.
        duration_minutes: Required slot duration.
        days: Candidate days, in order.
        tz: Zone the daily bounds are expressed in.
        day_start: Earliest slot start each day.
        day_end: Latest slot end each day (time(0, 0) means midnight).
        not_before: Slots starting before this are skipped.
        step_minutes: Scan granularity.
        max_slots: Maximum slots to return (0 = unlimited).
        weekdays_only: Skip Saturdays and Sundays.
    """
    duration = timedelta(minutes=duration_minutes)
    slots: list[datetime] = []
    for day in days:
        if weekdays_only and day.weekday() >= 5:
            continue
        t = datetime.combine(day, day_start, tz)
        limit = datetime.combine(day, day_end, tz)
        if day_end == time(0, 0):
            limit += timedelta(days=1)
        while t + duration <= limit:
            if max_slots > 0 and len(slots) >= max_slots:
                return slots
            if (not_before is None or t >= not_before) and not overlaps_any(t, t + duration, busy):
                slots.append(t)
            t += timedelta(minutes=step_minutes)
    return slots


async def find_earliest_slot(
    store: EventStorePort,
    owner_id: str,
    duration_minutes: int,
    not_before: datetime,
    earliest_time: time,
    workday_end: time,
    search_days: int,
) -> datetime | None:
    """First free window in the owner's calendar at or after ``not_before``.

    Each day is searched from ``earliest_time`` until ``workday_end``; when
    the hint leaves no room before the end of the workday, the day is
    searched until midnight instead.
    """
    tz = not_before.tzinfo
    first_day = not_before.date()
    days = [first_day + timedelta(days=i) for i in range(search_days)]
    window_end = datetime.combine(days[-1], time(0, 0), tz) + timedelta(days=1)

    events = await store.list_events(owner_id, start=not_before - _LOOKAROUND, end=window_end)
    busy = busy_intervals(events)

    hint_end = datetime.combine(first_day, earliest_time) + timedelta(minutes=duration_minutes)
    day_end = workday_end
    if hint_end.time() > workday_end or hint_end.date() > first_day:
        day_end = time(0, 0)

    slots = find_free_slots(
        busy, duration_minutes, days, tz,
        day_start=earliest_time, day_end=day_end,
        not_before=not_before, max_slots=1,
    )
    if not slots:
        logger.info("No free %d-minute window for %s in %d days", duration_minutes, owner_id, search_days)
        return None
    return slots[0]
