"""Tests for chatplan.data.models, chatplan.core.roles and chatplan.core.tasks."""

from datetime import datetime, timedelta, timezone

import pytest

from chatplan.core.errors import TaskInputError
from chatplan.core.roles import Role, parse_role, role_for_alias
from chatplan.core.tasks import (
    AgentTask,
    GenerateSummaryOutput,
    Intent,
    Plan,
    PlanStatus,
    RetrieveContextInput,
    TaskStatus,
    TaskType,
)
from chatplan.data.models import EventStatus, Member, ScheduleEvent

START = datetime(2026, 3, 5, 15, 0, tzinfo=timezone.utc)


def make_event(status=EventStatus.PENDING):
    return ScheduleEvent(
        id="meeting_1",
        owner_id="u2",
        title="Design review",
        start=START,
        duration_minutes=45,
        participant_ids=["u1", "u2"],
        created_by="u1",
        context_id="c1",
        status=status,
    )


# ---------------------------------------------------------------------------
# Members and events
# ---------------------------------------------------------------------------


def test_member_defaults_to_friend():
    assert Member("u1", "Olivia").role is Role.FRIEND


def test_event_end():
    assert make_event().end == START + timedelta(minutes=45)


def test_pending_and_accepted_are_committed():
    assert make_event(EventStatus.PENDING).is_committed
    assert make_event(EventStatus.ACCEPTED).is_committed


def test_done_and_declined_are_not_committed():
    assert not make_event(EventStatus.DONE).is_committed
    assert not make_event(EventStatus.DECLINED).is_committed


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("phrase,role", [
    ("designers", Role.DESIGN),
    ("all the PMs", Role.PM),
    ("Software Engineers", Role.SE),
    ("dev", Role.SE),
    ("testers", Role.QA),
    ("Stakeholder", Role.STAKEHOLDER),
])
def test_role_for_alias(phrase, role):
    assert role_for_alias(phrase) is role


def test_role_for_alias_is_whole_phrase():
    assert role_for_alias("devon") is None
    assert role_for_alias("") is None


def test_parse_role():
    assert parse_role(None) is Role.FRIEND
    assert parse_role("design") is Role.DESIGN
    with pytest.raises(ValueError, match="Unknown role"):
        parse_role("wizard")


# ---------------------------------------------------------------------------
# Tasks and plans
# ---------------------------------------------------------------------------


def test_task_inputs_validated_at_build_time():
    with pytest.raises(TaskInputError) as exc_info:
        AgentTask.create(TaskType.RETRIEVE_CONTEXT, query="", scope_id="c1")
    assert exc_info.value.task_type == "retrieve_context"


def test_task_rejects_unknown_fields():
    with pytest.raises(TaskInputError):
        AgentTask.create(TaskType.RETRIEVE_CONTEXT, query="q", scope_id="c1", colour="red")


def test_task_create():
    task = AgentTask.create(TaskType.RETRIEVE_CONTEXT, "Search", uses=[0], query="q", scope_id="c1")
    assert isinstance(task.input, RetrieveContextInput)
    assert task.input.top_k == 8
    assert task.uses == (0,)
    assert task.status is TaskStatus.PENDING


def test_plan_record_round_trip():
    task = AgentTask.create(TaskType.GENERATE_SUMMARY, query="plan it", intent=Intent.TASK_BREAKDOWN)
    task.output = GenerateSummaryOutput(plan="# Plan", action_items=["ship"])
    task.status = TaskStatus.COMPLETED
    plan = Plan(intent=Intent.TASK_BREAKDOWN, owner_id="u1", query="plan it", tasks=[task])
    plan.mark_running()
    plan.mark_completed("done")

    restored = Plan.from_record(plan.to_record())
    assert restored.id == plan.id
    assert restored.status is PlanStatus.COMPLETED
    assert restored.tasks[0].output == task.output
    assert restored.completed_at == plan.completed_at


def test_plan_is_immutable_once_terminal():
    plan = Plan(intent=Intent.OFFSITE_PLANNING, owner_id="u1", query="offsite")
    plan.mark_running()
    plan.mark_failed("boom")
    assert plan.is_terminal
    with pytest.raises(ValueError, match="already failed"):
        plan.mark_completed("late summary")
