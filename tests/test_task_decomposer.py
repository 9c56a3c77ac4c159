"""Tests for chatplan.core.task_decomposer — intent templates."""

import pytest

from chatplan.core.task_decomposer import TaskDecomposer
from chatplan.core.tasks import Intent, TaskStatus, TaskType


@pytest.fixture
def decomposer():
    return TaskDecomposer(top_k=5)


def types(tasks):
    return [t.type for t in tasks]


class TestOffsite:
    def test_template(self, decomposer):
        tasks = decomposer.decompose(Intent.OFFSITE_PLANNING, "Plan the offsite venue", "u1", "c1")
        assert types(tasks) == [
            TaskType.RETRIEVE_CONTEXT,
            TaskType.SUMMARIZE_CONTEXT,
            TaskType.COMPUTE_TIME_SLOTS,
            TaskType.GENERATE_SUMMARY,
        ]
        assert [t.uses for t in tasks] == [(), (0,), (0, 1), (0, 1, 2)]
        assert tasks[0].input.top_k == 5
        assert tasks[2].input.whole_day is True
        assert tasks[2].input.duration_minutes == 480
        assert all(t.status is TaskStatus.PENDING for t in tasks)


class TestMeeting:
    def test_schedulable_command_adds_schedule_task(self, decomposer):
        text = "Schedule a meeting with Dana tomorrow at 3pm"
        tasks = decomposer.decompose(Intent.MEETING_SCHEDULING, text, "u1", "c1")
        assert types(tasks) == [
            TaskType.RETRIEVE_CONTEXT,
            TaskType.COMPUTE_TIME_SLOTS,
            TaskType.SCHEDULE_MEETING,
            TaskType.GENERATE_SUMMARY,
        ]
        assert tasks[2].input.command == text
        assert tasks[3].uses == (0, 1, 2)

    def test_open_question_has_no_schedule_task(self, decomposer):
        tasks = decomposer.decompose(
            Intent.MEETING_SCHEDULING, "When is everyone free for a sync?", "u1", "c1",
        )
        assert TaskType.SCHEDULE_MEETING not in types(tasks)
        assert tasks[-1].uses == (0, 1)

    def test_no_context_means_no_schedule_task(self, decomposer):
        tasks = decomposer.decompose(
            Intent.MEETING_SCHEDULING, "Schedule a meeting with Dana tomorrow at 3pm", "u1",
        )
        assert TaskType.SCHEDULE_MEETING not in types(tasks)
        assert tasks[0].input.scope_id == "u1"


class TestBreakdown:
    def test_template(self, decomposer):
        text = "Break down the launch project into steps"
        tasks = decomposer.decompose(Intent.TASK_BREAKDOWN, text, "u1", "c1")
        assert types(tasks) == [
            TaskType.RETRIEVE_CONTEXT,
            TaskType.SUMMARIZE_CONTEXT,
            TaskType.GENERATE_SUMMARY,
        ]
        assert tasks[0].input.query == text
        assert tasks[1].input.scope_id == "c1"
        assert tasks[2].input.intent is Intent.TASK_BREAKDOWN


def test_unknown_intent(decomposer):
    with pytest.raises(ValueError, match="No task template"):
        decomposer.decompose("astrology", "Read my stars please", "u1")
