"""
ChatPlan — Task Decomposer.

Maps a classified intent to a fixed template of typed tasks. Every task is
validated as it is built, so a bad input fails here rather than halfway
through execution.
"""

from __future__ import annotations

import logging

from chatplan.core.command_parser import CommandParser
from chatplan.core.errors import ParseError
from chatplan.core.tasks import AgentTask, Intent, TaskType

logger = logging.getLogger(__name__)

_OFFSITE_SEARCH = "offsite planning location date activities team"
_MEETING_SEARCH = "meeting schedule time availability free busy"


class TaskDecomposer:
    """Build the pending task list for an intent."""

    def __init__(self, parser: CommandParser | None = None, top_k: int | None = None) -> None:
        from chatplan.config import settings

        self._parser = parser or CommandParser()
        self._top_k = top_k or settings.RETRIEVAL_TOP_K

    def decompose(
        self, intent: Intent, text: str, owner_id: str, context_id: str | None = None,
    ) -> list[AgentTask]:
        scope_id = context_id or owner_id

        if intent is Intent.OFFSITE_PLANNING:
            tasks = self._offsite(text, owner_id, scope_id)
        elif intent is Intent.MEETING_SCHEDULING:
            tasks = self._meeting(text, owner_id, scope_id, context_id)
        elif intent is Intent.TASK_BREAKDOWN:
            tasks = self._breakdown(text, scope_id)
        else:
            raise ValueError(f"No task template for intent {intent!r}")

        logger.info(
            "Decomposed %s into %d task(s): %s",
            intent.value, len(tasks), [t.type.value for t in tasks],
        )
        return tasks

    def _retrieve(self, query: str, scope_id: str, description: str) -> AgentTask:
        return AgentTask.create(
            TaskType.RETRIEVE_CONTEXT, description,
            query=query, scope_id=scope_id, top_k=self._top_k,
        )

    def _offsite(self, text: str, owner_id: str, scope_id: str) -> list[AgentTask]:
        return [
            self._retrieve(_OFFSITE_SEARCH, scope_id, "Search the conversation for offsite discussions"),
            AgentTask.create(
                TaskType.SUMMARIZE_CONTEXT,
                "Extract offsite details (location, dates, attendees)",
                uses=(0,),
                scope_id=scope_id, focus_query=text,
            ),
            AgentTask.create(
                TaskType.COMPUTE_TIME_SLOTS,
                "Find potential dates for the offsite",
                uses=(0, 1),
                query=text, owner_id=owner_id, duration_minutes=480, whole_day=True,
            ),
            AgentTask.create(
                TaskType.GENERATE_SUMMARY,
                "Generate the offsite plan",
                uses=(0, 1, 2),
                query=text, intent=Intent.OFFSITE_PLANNING,
            ),
        ]

    def _meeting(
        self, text: str, owner_id: str, scope_id: str, context_id: str | None,
    ) -> list[AgentTask]:
        tasks = [
            self._retrieve(_MEETING_SEARCH, scope_id, "Search for availability and scheduling constraints"),
            AgentTask.create(
                TaskType.COMPUTE_TIME_SLOTS,
                "Find free time slots for the meeting",
                uses=(0,),
                query=text, owner_id=owner_id,
            ),
        ]
        if context_id and self._is_schedulable(text):
            tasks.append(AgentTask.create(
                TaskType.SCHEDULE_MEETING,
                "Schedule the requested meeting",
                command=text, organizer_id=owner_id, context_id=context_id,
            ))
        tasks.append(AgentTask.create(
            TaskType.GENERATE_SUMMARY,
            "Generate meeting schedule options",
            uses=tuple(range(len(tasks))),
            query=text, intent=Intent.MEETING_SCHEDULING,
        ))
        return tasks

    def _breakdown(self, text: str, scope_id: str) -> list[AgentTask]:
        return [
            self._retrieve(text, scope_id, "Search the conversation for project context"),
            AgentTask.create(
                TaskType.SUMMARIZE_CONTEXT,
                "Summarize project requirements and constraints",
                uses=(0,),
                scope_id=scope_id, focus_query=text,
            ),
            AgentTask.create(
                TaskType.GENERATE_SUMMARY,
                "Break the project down into actionable tasks",
                uses=(0, 1),
                query=text, intent=Intent.TASK_BREAKDOWN,
            ),
        ]

    def _is_schedulable(self, text: str) -> bool:
        try:
            self._parser.parse(text)
        except ParseError:
            return False
        return True
