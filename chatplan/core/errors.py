"""
ChatPlan — Error taxonomy.

Every failure the scheduling and planning core can report. Each error
carries the structured detail a caller needs to render an actionable
message (the offending phrase, the conflicting events, the unresolved
name) and exposes it through ``to_dict()``.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatplan.data.models import ScheduleEvent

_SCHEDULE_GUIDANCE = (
    "Try something like: 'Schedule a meeting with everyone for next Friday at 3pm' "
    "or 'Schedule a meeting with all designers for Wednesday at 2pm'."
)


class ChatPlanError(Exception):
    """Base class for all core errors."""

    kind = "error"
    # Pipeline stage the error ended, set by the scheduling orchestrator
    stage: str | None = None

    def to_dict(self) -> dict:
        data = {"kind": self.kind, "message": str(self)}
        if self.stage:
            data["stage"] = self.stage
        return data


# ---------------------------------------------------------------------------
# Validation errors (user input)
# ---------------------------------------------------------------------------


class ParseError(ChatPlanError):
    """The command was not recognized or is malformed."""

    kind = "parse_error"

    def __init__(self, message: str, text: str = "", guidance: str = _SCHEDULE_GUIDANCE) -> None:
        super().__init__(message)
        self.text = text
        self.guidance = guidance

    def to_dict(self) -> dict:
        return {**super().to_dict(), "text": self.text, "guidance": self.guidance}


class NotAScheduleCommand(ParseError):
    """Cheap negative: the utterance lacks a scheduling verb or a temporal marker."""

    kind = "not_a_schedule_command"


class DateParseError(ChatPlanError):
    kind = "date_parse_error"

    def __init__(self, phrase: str, reason: str) -> None:
        super().__init__(f"Could not understand the date/time '{phrase}': {reason}")
        self.phrase = phrase
        self.reason = reason

    def to_dict(self) -> dict:
        return {**super().to_dict(), "phrase": self.phrase, "reason": self.reason}


class UnreasonableDateError(ChatPlanError):
    kind = "unreasonable_date"

    def __init__(self, instant: datetime, reason: str) -> None:
        super().__init__(f"{instant.isoformat()} is not a usable meeting time: {reason}")
        self.instant = instant
        self.reason = reason

    def to_dict(self) -> dict:
        return {**super().to_dict(), "instant": self.instant.isoformat(), "reason": self.reason}


class ParticipantResolutionError(ChatPlanError):
    kind = "participant_resolution_error"

    def __init__(self, phrase: str, reason: str, candidates: list[str] | None = None) -> None:
        super().__init__(f"Could not resolve participant '{phrase}': {reason}")
        self.phrase = phrase
        self.reason = reason
        self.candidates = candidates or []

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "phrase": self.phrase,
            "reason": self.reason,
            "candidates": list(self.candidates),
        }


class SchedulingConflictError(ChatPlanError):
    """The candidate window overlaps committed events; the caller decides what to do."""

    kind = "scheduling_conflict"

    def __init__(self, conflicts: list[ScheduleEvent], reason: str = "") -> None:
        if not reason:
            titles = ", ".join(f"'{ev.title}' at {ev.start.isoformat()}" for ev in conflicts)
            reason = f"conflicts with {titles}"
        super().__init__(f"Scheduling conflict: {reason}")
        self.conflicts = list(conflicts)
        self.reason = reason

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "conflicts": [
                {"id": ev.id, "title": ev.title, "start": ev.start.isoformat(),
                 "duration_minutes": ev.duration_minutes}
                for ev in self.conflicts
            ],
        }


class UnknownIntentError(ChatPlanError):
    kind = "unknown_intent"

    def __init__(self, text: str, label: str = "") -> None:
        super().__init__(
            "Could not determine planning intent. Try a more specific request about "
            "offsite planning, meeting scheduling, or task breakdown."
        )
        self.text = text
        self.label = label

    def to_dict(self) -> dict:
        return {**super().to_dict(), "text": self.text, "label": self.label}


class TaskInputError(ChatPlanError):
    """A task was constructed with inputs that do not fit its schema."""

    kind = "task_input_error"

    def __init__(self, task_type: str, detail: str) -> None:
        super().__init__(f"Invalid input for task '{task_type}': {detail}")
        self.task_type = task_type
        self.detail = detail


class PermissionDeniedError(ChatPlanError):
    kind = "permission_denied"


class EventNotFoundError(ChatPlanError):
    kind = "event_not_found"

    def __init__(self, owner_id: str, event_id: str) -> None:
        super().__init__(f"Meeting {event_id} not found for {owner_id}")
        self.owner_id = owner_id
        self.event_id = event_id


# ---------------------------------------------------------------------------
# Execution errors
# ---------------------------------------------------------------------------


class ExternalServiceError(ChatPlanError):
    """A completion or retrieval collaborator failed or timed out."""

    kind = "external_service_error"

    def __init__(self, service: str, cause: Exception | str) -> None:
        super().__init__(f"{service} failed: {cause}")
        self.service = service
        self.cause = cause


class TaskExecutionError(ChatPlanError):
    kind = "task_execution_error"

    def __init__(self, task_index: int, task_type: str, cause: Exception) -> None:
        super().__init__(f"Task {task_index + 1} ({task_type}) failed: {cause}")
        self.task_index = task_index
        self.task_type = task_type
        self.cause = cause

    def to_dict(self) -> dict:
        return {**super().to_dict(), "task_index": self.task_index, "task_type": self.task_type}


class AtomicWriteFailure(ChatPlanError):
    """An all-or-nothing batch across participant copies could not be applied.

    Internal and fatal: it signals a risk of store inconsistency, never a
    user-input problem.
    """

    kind = "atomic_write_failure"

    def __init__(self, event_id: str, owner_ids: list[str], cause: Exception | str) -> None:
        super().__init__(f"Batch write for event {event_id} failed: {cause}")
        self.event_id = event_id
        self.owner_ids = list(owner_ids)
        self.cause = cause

    def to_dict(self) -> dict:
        return {**super().to_dict(), "event_id": self.event_id, "owner_ids": list(self.owner_ids)}
