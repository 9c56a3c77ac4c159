"""
ChatPlan — Scheduling Orchestrator.

Turns a scheduling utterance into a conflict-checked meeting materialized
for every participant:

    Parsing → ParticipantResolution → DateTimeResolution → ConflictCheck
        → EventCreation → Done

Any error ends the run in Failed; nothing is retried. The error raised to
the caller carries the stage it ended (``error.stage``).

Writes touching several participant copies (create, delete, reschedule,
the creator closing a meeting) go through one EventBatch and are applied
all-or-nothing. An AtomicWriteFailure is logged at CRITICAL and re-raised
unchanged so callers can tell it apart from validation errors.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from chatplan.core.command_parser import CommandParser
from chatplan.core.conflict_checker import ensure_no_conflict, find_earliest_slot
from chatplan.core.datetime_resolver import DateTimeResolver
from chatplan.core.errors import (
    AtomicWriteFailure,
    ChatPlanError,
    DateParseError,
    EventNotFoundError,
    PermissionDeniedError,
    SchedulingConflictError,
)
from chatplan.core.participant_resolver import PARTNER, ParticipantResolver, build_roster
from chatplan.data.models import EventStatus, ScheduleEvent
from chatplan.ports.event_store_port import EventBatch

if TYPE_CHECKING:
    from chatplan.core.command_parser import ScheduleCommand
    from chatplan.core.datetime_resolver import ParsedDateTime
    from chatplan.data.models import Member
    from chatplan.ports.event_store_port import EventStorePort
    from chatplan.ports.membership_port import MembershipPort

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    PARSING = "parsing"
    PARTICIPANT_RESOLUTION = "participant_resolution"
    DATETIME_RESOLUTION = "datetime_resolution"
    CONFLICT_CHECK = "conflict_check"
    EVENT_CREATION = "event_creation"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ResolvedScheduleRequest:
    """A fully resolved, committed meeting request."""

    organizer_id: str
    participant_ids: frozenset[str]
    start: datetime
    duration_minutes: int
    title: str
    context_id: str
    event_id: str = ""
    is_earliest_available: bool = False

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)


@dataclass
class ScheduleRun:
    """Stage trail of one handle_schedule_command call."""

    stage: Stage = Stage.PARSING
    history: list[Stage] = field(default_factory=list)
    failed_at: Stage | None = None

    def advance(self, stage: Stage) -> None:
        self.history.append(self.stage)
        self.stage = stage

    def fail(self) -> None:
        self.failed_at = self.stage
        self.advance(Stage.FAILED)


class SchedulingService:
    """Fast path for scheduling commands, plus the meeting lifecycle."""

    def __init__(
        self,
        membership: MembershipPort,
        events: EventStorePort,
        resolver: DateTimeResolver | None = None,
        parser: CommandParser | None = None,
        participants: ParticipantResolver | None = None,
        workday_end_hour: int | None = None,
        search_days: int | None = None,
    ) -> None:
        from chatplan.config import settings

        self._membership = membership
        self._events = events
        self._resolver = resolver or DateTimeResolver()
        self._parser = parser or CommandParser()
        self._participants = participants or ParticipantResolver()
        self._workday_end = time(
            settings.WORKDAY_END_HOUR if workday_end_hour is None else workday_end_hour, 0
        )
        self._search_days = search_days or settings.AVAILABILITY_SEARCH_DAYS

    @property
    def resolver(self) -> DateTimeResolver:
        return self._resolver

    def is_schedule_command(self, text: str) -> bool:
        return self._parser.is_schedule_command(text)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def handle_schedule_command(
        self, raw_text: str, organizer_id: str, context_id: str,
    ) -> ResolvedScheduleRequest:
        """Run the full pipeline and create the meeting for every participant.

        Raises:
            ParseError / NotAScheduleCommand: the text is not a usable command.
            ParticipantResolutionError: a participant phrase did not resolve.
            DateParseError / UnreasonableDateError: bad date, time or duration.
            SchedulingConflictError: the organizer is busy (or no free window).
            AtomicWriteFailure: the participant copies could not be written.
        """
        run = ScheduleRun()
        try:
            command = self._parser.parse(raw_text)

            run.advance(Stage.PARTICIPANT_RESOLUTION)
            members = await self._roster(context_id)
            participant_ids = self._participants.resolve(
                command.participant_phrases, members, organizer_id
            )
            title = self._title(command, members, organizer_id)

            run.advance(Stage.DATETIME_RESOLUTION)
            parsed = self._resolver.resolve(command.datetime_phrase, command.duration_phrase)

            run.advance(Stage.CONFLICT_CHECK)
            if parsed.is_earliest_available:
                start = await self._earliest_start(organizer_id, parsed)
            else:
                start = parsed.instant
                await ensure_no_conflict(self._events, organizer_id, start, parsed.duration_minutes)

            run.advance(Stage.EVENT_CREATION)
            request = ResolvedScheduleRequest(
                organizer_id=organizer_id,
                participant_ids=frozenset(participant_ids),
                start=start,
                duration_minutes=parsed.duration_minutes,
                title=title,
                context_id=context_id,
                event_id=f"meeting_{uuid.uuid4().hex}",
                is_earliest_available=parsed.is_earliest_available,
            )
            await self._commit(self._create_batch(request))

            run.advance(Stage.DONE)
        except ChatPlanError as exc:
            run.fail()
            exc.stage = run.failed_at.value
            self._log_failure(exc, run.failed_at)
            raise

        logger.info(
            "Scheduled '%s' (%s) at %s for %d participant(s)",
            request.title, request.event_id, request.start.isoformat(), len(request.participant_ids),
        )
        return request

    async def _roster(self, context_id: str) -> list[Member]:
        members = await self._membership.list_members(context_id)
        if members:
            return build_roster(members)
        return build_roster([], await self._membership.participant_ids(context_id))

    @staticmethod
    def _title(command: ScheduleCommand, members: list[Member], organizer_id: str) -> str:
        if command.title_is_explicit or command.participant_phrases != (PARTNER,):
            return command.title
        others = [m for m in members if m.id != organizer_id]
        if len(others) == 1:
            return f"Meeting with {others[0].display_name}"
        return command.title

    async def _earliest_start(self, organizer_id: str, parsed: ParsedDateTime) -> datetime:
        now = self._resolver.now()
        first_day = parsed.earliest_date or (now + timedelta(days=1)).date()
        not_before = max(datetime.combine(first_day, parsed.earliest_time, self._resolver.tz), now)

        start = await find_earliest_slot(
            self._events,
            organizer_id,
            parsed.duration_minutes,
            not_before=not_before,
            earliest_time=parsed.earliest_time,
            workday_end=self._workday_end,
            search_days=self._search_days,
        )
        if start is None:
            raise SchedulingConflictError(
                [],
                reason=(
                    f"no free {parsed.duration_minutes}-minute window in the next "
                    f"{self._search_days} days"
                ),
            )
        self._resolver.check_reasonable(start, now)
        logger.info("Earliest available for %s: %s", organizer_id, start.isoformat())
        return start

    @staticmethod
    def _create_batch(request: ResolvedScheduleRequest) -> EventBatch:
        ordered = [request.organizer_id] + sorted(request.participant_ids - {request.organizer_id})
        created_at = datetime.now(request.start.tzinfo)
        batch = EventBatch(request.event_id)
        for owner_id in ordered:
            batch.put(ScheduleEvent(
                id=request.event_id,
                owner_id=owner_id,
                title=request.title,
                start=request.start,
                duration_minutes=request.duration_minutes,
                participant_ids=list(ordered),
                created_by=request.organizer_id,
                context_id=request.context_id,
                status=EventStatus.ACCEPTED if owner_id == request.organizer_id else EventStatus.PENDING,
                created_at=created_at,
            ))
        return batch

    async def _commit(self, batch: EventBatch) -> None:
        try:
            await self._events.commit_batch(batch)
        except AtomicWriteFailure as exc:
            logger.critical(
                "ATOMIC WRITE FAILURE for event %s across partitions %s: %s",
                exc.event_id, exc.owner_ids, exc.cause,
            )
            raise

    @staticmethod
    def _log_failure(exc: ChatPlanError, stage: Stage) -> None:
        if isinstance(exc, AtomicWriteFailure):
            return  # already logged at CRITICAL
        logger.info("Scheduling failed at %s: %s", stage.value, exc)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _own_copy(self, event_id: str, acting_user_id: str) -> ScheduleEvent:
        event = await self._events.get_event(acting_user_id, event_id)
        if event is None:
            raise EventNotFoundError(acting_user_id, event_id)
        return event

    async def delete_meeting(self, event_id: str, acting_user_id: str) -> list[str]:
        """Delete every participant's copy of a meeting the actor takes part in.

        Returns the owner ids whose copies were removed.
        """
        event = await self._own_copy(event_id, acting_user_id)
        owners = list(dict.fromkeys([*event.participant_ids, acting_user_id]))

        batch = EventBatch(event_id)
        for owner_id in owners:
            batch.delete(owner_id)
        await self._commit(batch)

        logger.info("Meeting %s deleted by %s for %d participant(s)", event_id, acting_user_id, len(owners))
        return owners

    async def update_meeting_status(
        self, event_id: str, status: EventStatus | str, acting_user_id: str,
    ) -> ScheduleEvent:
        """Change the actor's own status for a meeting.

        When the creator marks the meeting done, every copy is closed in one
        batch; any other change touches only the actor's copy.
        """
        status = EventStatus(status)
        event = await self._own_copy(event_id, acting_user_id)

        if status is EventStatus.DONE and event.created_by == acting_user_id:
            batch = EventBatch(event_id)
            for owner_id in event.participant_ids:
                batch.update(owner_id, status=EventStatus.DONE)
            await self._commit(batch)
            logger.info("Meeting %s closed by its creator for all participants", event_id)
            return await self._own_copy(event_id, acting_user_id)

        updated = await self._events.set_status(acting_user_id, event_id, status)
        logger.info("Meeting %s marked %s by %s", event_id, status.value, acting_user_id)
        return updated

    async def reschedule_meeting(
        self, event_id: str, acting_user_id: str, new_text: str,
    ) -> ScheduleEvent:
        """Move a meeting to a new time; only its creator may do this.

        ``new_text`` is a date/time phrase, optionally with a duration
        ("friday at 4pm for 30 minutes"). Without a duration the meeting
        keeps its own.
        """
        event = await self._own_copy(event_id, acting_user_id)
        if event.created_by != acting_user_id:
            raise PermissionDeniedError(
                f"Only the creator can reschedule '{event.title}' ({event_id})"
            )

        datetime_phrase, duration_phrase = self._parser.split_duration(new_text)
        parsed = self._resolver.resolve(datetime_phrase, duration_phrase)
        if parsed.is_earliest_available:
            raise DateParseError(new_text, "give a concrete date and time to reschedule to")
        duration = parsed.duration_minutes if duration_phrase else event.duration_minutes

        await ensure_no_conflict(
            self._events, acting_user_id, parsed.instant, duration, exclude_event_id=event_id,
        )

        batch = EventBatch(event_id)
        for owner_id in event.participant_ids:
            batch.update(owner_id, start=parsed.instant, duration_minutes=duration)
        await self._commit(batch)

        logger.info("Meeting %s moved to %s (%d min)", event_id, parsed.instant.isoformat(), duration)
        return await self._own_copy(event_id, acting_user_id)

    async def list_meetings(
        self, owner_id: str, context_id: str | None = None, upcoming_only: bool = False,
    ) -> list[ScheduleEvent]:
        """The owner's own copies, ordered by start."""
        start = self._resolver.now() if upcoming_only else None
        return await self._events.list_events(owner_id, start=start, context_id=context_id)
