"""Tests for chatplan.core.scheduling_service — the scheduling pipeline and meeting lifecycle.

Runs against real SQLite stores with the clock pinned to
Wednesday 2026-03-04 10:00 UTC.
"""

import logging
from datetime import datetime
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from chatplan.core.errors import (
    AtomicWriteFailure,
    DateParseError,
    EventNotFoundError,
    NotAScheduleCommand,
    ParticipantResolutionError,
    PermissionDeniedError,
    SchedulingConflictError,
)
from chatplan.core.roles import Role
from chatplan.core.scheduling_service import ResolvedScheduleRequest, SchedulingService
from chatplan.data.models import EventStatus, ScheduleEvent

UTC = ZoneInfo("UTC")


def at(day, hh, mm=0):
    return datetime(2026, 3, day, hh, mm, tzinfo=UTC)


@pytest.fixture
def service(membership, event_store, resolver):
    return SchedulingService(
        membership, event_store, resolver=resolver, workday_end_hour=17, search_days=14,
    )


@pytest.fixture
def letters(team):
    """Conversation c3 with three members named User A/B/C."""
    team.add_conversation("c3", ["a", "b", "c"])
    for member_id in ("a", "b", "c"):
        team.add_member("c3", member_id, f"User {member_id.upper()}")
    return team


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    @pytest.mark.asyncio
    async def test_everyone_tomorrow(self, service, letters):
        request = await service.handle_schedule_command(
            "schedule a meeting with everyone for tomorrow at 3pm", "a", "c3",
        )
        assert isinstance(request, ResolvedScheduleRequest)
        assert request.participant_ids == {"a", "b", "c"}
        assert request.duration_minutes == 60
        assert request.start == at(5, 15)
        assert request.title == "Team Meeting"

    @pytest.mark.asyncio
    async def test_named_user(self, service, letters):
        request = await service.handle_schedule_command(
            "schedule a meeting with User B for Sunday at 3pm", "a", "c3",
        )
        assert request.participant_ids == {"a", "b"}
        assert request.start == at(8, 15)

    @pytest.mark.asyncio
    async def test_all_designers(self, service):
        request = await service.handle_schedule_command(
            "schedule a meeting with all designers for wednesday at 2pm", "u1", "c1",
        )
        assert request.participant_ids == {"u1", "u2", "u3"}
        assert request.start == at(4, 14)
        assert request.title == "Design Meeting"

    @pytest.mark.asyncio
    async def test_overlap_names_first_meeting(self, service):
        first = await service.handle_schedule_command(
            "Schedule a meeting with Dana about roadmap tomorrow at 3pm", "u1", "c1",
        )
        with pytest.raises(SchedulingConflictError) as exc_info:
            await service.handle_schedule_command(
                "Schedule a meeting with Atticus tomorrow at 3:30pm", "u1", "c1",
            )
        conflict = exc_info.value
        assert [ev.id for ev in conflict.conflicts] == [first.event_id]
        assert conflict.conflicts[0].title == "roadmap"
        assert conflict.stage == "conflict_check"

    @pytest.mark.asyncio
    async def test_back_to_back_is_fine(self, service):
        await service.handle_schedule_command("Schedule a meeting with Dana tomorrow at 3pm", "u1", "c1")
        request = await service.handle_schedule_command(
            "Schedule a meeting with Dana tomorrow at 4pm", "u1", "c1",
        )
        assert request.start == at(5, 16)


# ---------------------------------------------------------------------------
# Materialization
# ---------------------------------------------------------------------------


class TestEventCreation:
    @pytest.mark.asyncio
    async def test_copy_per_participant(self, service, event_store):
        request = await service.handle_schedule_command(
            "schedule a meeting with all designers for friday at 11am for 30 minutes", "u1", "c1",
        )
        assert request.event_id.startswith("meeting_")

        own = await event_store.get_event("u1", request.event_id)
        assert own.status is EventStatus.ACCEPTED
        assert own.duration_minutes == 30
        for owner_id in ("u2", "u3"):
            copy = await event_store.get_event(owner_id, request.event_id)
            assert copy.status is EventStatus.PENDING
            assert copy.created_by == "u1"
            assert copy.participant_ids == ["u1", "u2", "u3"]
        assert await event_store.get_event("u4", request.event_id) is None

    @pytest.mark.asyncio
    async def test_scheduling_is_not_idempotent(self, service):
        text = "Book a meeting with Atticus at his earliest available time starting at 9"
        first = await service.handle_schedule_command(text, "u1", "c1")
        second = await service.handle_schedule_command(text, "u1", "c1")
        assert first.event_id != second.event_id
        assert first.start == at(5, 9)
        assert second.start == at(5, 10)

    @pytest.mark.asyncio
    async def test_partner_in_direct_conversation(self, service, team):
        team.add_conversation("dm", ["u1", "u2"])
        team.add_member("dm", "u1", "Olivia Park")
        team.add_member("dm", "u2", "Dana Cohen")

        request = await service.handle_schedule_command(
            "Schedule a meeting with this user tomorrow at 3pm", "u1", "dm",
        )
        assert request.participant_ids == {"u1", "u2"}
        assert request.title == "Meeting with Dana Cohen"

    @pytest.mark.asyncio
    async def test_legacy_conversation_without_roster(self, service, team):
        team.add_conversation("legacy", ["u1", "x", "y"])
        request = await service.handle_schedule_command(
            "schedule a meeting with everyone for tomorrow at 3pm", "u1", "legacy",
        )
        assert request.participant_ids == {"u1", "x", "y"}

    @pytest.mark.asyncio
    async def test_atomic_failure_logged_critical(self, membership, resolver, caplog):
        store = AsyncMock()
        store.list_events.return_value = []
        store.commit_batch.side_effect = AtomicWriteFailure("meeting_x", ["u1", "u4"], "disk full")
        service = SchedulingService(membership, store, resolver=resolver)

        with caplog.at_level(logging.INFO):
            with pytest.raises(AtomicWriteFailure) as exc_info:
                await service.handle_schedule_command(
                    "Schedule a meeting with Atticus tomorrow at 3pm", "u1", "c1",
                )

        assert exc_info.value.stage == "event_creation"
        critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
        assert len(critical) == 1
        assert "meeting_x" in critical[0].getMessage()


# ---------------------------------------------------------------------------
# Failures by stage
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_not_a_command(self, service):
        with pytest.raises(NotAScheduleCommand) as exc_info:
            await service.handle_schedule_command("hello everyone", "u1", "c1")
        assert exc_info.value.stage == "parsing"

    @pytest.mark.asyncio
    async def test_unknown_participant(self, service):
        with pytest.raises(ParticipantResolutionError) as exc_info:
            await service.handle_schedule_command("Schedule a meeting with Zed tomorrow at 3pm", "u1", "c1")
        assert exc_info.value.to_dict()["stage"] == "participant_resolution"
        assert exc_info.value.phrase == "Zed"

    @pytest.mark.asyncio
    async def test_ambiguous_time(self, service):
        with pytest.raises(DateParseError) as exc_info:
            await service.handle_schedule_command("Schedule a meeting with Dana friday at 3", "u1", "c1")
        assert exc_info.value.stage == "datetime_resolution"

    @pytest.mark.asyncio
    async def test_unsupported_date_is_not_guessed(self, service, event_store):
        with pytest.raises(DateParseError, match="next week") as exc_info:
            await service.handle_schedule_command("Schedule a meeting with Dana next week at 3pm", "u1", "c1")
        assert exc_info.value.stage == "datetime_resolution"
        assert await event_store.list_events("u1") == []

    @pytest.mark.asyncio
    async def test_no_earliest_window(self, membership, resolver):
        store = AsyncMock()
        store.list_events.return_value = [ScheduleEvent(
            id="busy", owner_id="u1", title="Workshop", start=at(5, 9), duration_minutes=480,
            participant_ids=["u1"], created_by="u1", context_id="c1", status=EventStatus.ACCEPTED,
        )]
        service = SchedulingService(membership, store, resolver=resolver, search_days=1)

        with pytest.raises(SchedulingConflictError) as exc_info:
            await service.handle_schedule_command(
                "Book a meeting with Dana at the earliest available time", "u1", "c1",
            )
        assert exc_info.value.conflicts == []
        assert "no free" in exc_info.value.reason
        store.commit_batch.assert_not_awaited()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def create_meeting(service):
    return await service.handle_schedule_command(
        "schedule a meeting with all designers for friday at 11am", "u1", "c1",
    )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_participant_deletes_for_everyone(self, service, event_store):
        meeting = await create_meeting(service)
        owners = await service.delete_meeting(meeting.event_id, "u2")
        assert set(owners) == {"u1", "u2", "u3"}
        for owner_id in owners:
            assert await event_store.get_event(owner_id, meeting.event_id) is None

    @pytest.mark.asyncio
    async def test_delete_unknown(self, service):
        with pytest.raises(EventNotFoundError):
            await service.delete_meeting("meeting_nope", "u1")

    @pytest.mark.asyncio
    async def test_status_changes_own_copy(self, service, event_store):
        meeting = await create_meeting(service)
        updated = await service.update_meeting_status(meeting.event_id, "accepted", "u2")
        assert updated.status is EventStatus.ACCEPTED
        assert (await event_store.get_event("u3", meeting.event_id)).status is EventStatus.PENDING

    @pytest.mark.asyncio
    async def test_creator_done_closes_all_copies(self, service, event_store):
        meeting = await create_meeting(service)
        await service.update_meeting_status(meeting.event_id, EventStatus.DONE, "u1")
        for owner_id in ("u1", "u2", "u3"):
            assert (await event_store.get_event(owner_id, meeting.event_id)).status is EventStatus.DONE

    @pytest.mark.asyncio
    async def test_participant_done_only_own(self, service, event_store):
        meeting = await create_meeting(service)
        await service.update_meeting_status(meeting.event_id, EventStatus.DONE, "u2")
        assert (await event_store.get_event("u1", meeting.event_id)).status is EventStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_reschedule_moves_every_copy(self, service, event_store):
        meeting = await create_meeting(service)
        moved = await service.reschedule_meeting(meeting.event_id, "u1", "friday at 4pm")
        assert moved.start == at(6, 16)
        assert moved.duration_minutes == 60
        assert (await event_store.get_event("u3", meeting.event_id)).start == at(6, 16)

    @pytest.mark.asyncio
    async def test_reschedule_overlapping_itself(self, service):
        meeting = await create_meeting(service)
        moved = await service.reschedule_meeting(meeting.event_id, "u1", "friday at 11:30am for 30 minutes")
        assert moved.start == at(6, 11, 30)
        assert moved.duration_minutes == 30

    @pytest.mark.asyncio
    async def test_reschedule_into_conflict(self, service):
        meeting = await create_meeting(service)
        await service.handle_schedule_command("Schedule a meeting with Atticus friday at 3pm", "u1", "c1")
        with pytest.raises(SchedulingConflictError):
            await service.reschedule_meeting(meeting.event_id, "u1", "friday at 3pm")

    @pytest.mark.asyncio
    async def test_only_creator_reschedules(self, service):
        meeting = await create_meeting(service)
        with pytest.raises(PermissionDeniedError):
            await service.reschedule_meeting(meeting.event_id, "u2", "friday at 4pm")

    @pytest.mark.asyncio
    async def test_list_meetings(self, service):
        meeting = await create_meeting(service)
        meetings = await service.list_meetings("u3", upcoming_only=True)
        assert [m.id for m in meetings] == [meeting.event_id]
        assert await service.list_meetings("u4") == []


class TestRoleChangesAffectResolution:
    @pytest.mark.asyncio
    async def test_self_assigned_role_is_used(self, service, team):
        team.set_role("c1", "u4", Role.DESIGN, acting_user_id="u4")
        request = await service.handle_schedule_command(
            "schedule a meeting with the designers for friday at 9am", "u1", "c1",
        )
        assert request.participant_ids == {"u1", "u2", "u3", "u4"}
