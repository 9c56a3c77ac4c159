"""
ChatPlan — Plans and typed agent tasks.

A Plan is an ordered list of AgentTasks produced from a classified intent.
Each task is one variant of a closed set (retrieve context, summarize
context, compute time slots, schedule meeting, generate summary) with its
own pydantic input and output model. Inputs are validated when the task is
built, not when it runs.

A task may consume the outputs of earlier tasks: ``uses`` lists their
indices, and the executor hands those outputs to the task as context.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chatplan.core.errors import TaskInputError


class Intent(str, Enum):
    MEETING_SCHEDULING = "meeting_scheduling"
    OFFSITE_PLANNING = "offsite_planning"
    TASK_BREAKDOWN = "task_breakdown"


class TaskType(str, Enum):
    RETRIEVE_CONTEXT = "retrieve_context"
    SUMMARIZE_CONTEXT = "summarize_context"
    COMPUTE_TIME_SLOTS = "compute_time_slots"
    SCHEDULE_MEETING = "schedule_meeting"
    GENERATE_SUMMARY = "generate_summary"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


PlanStatus = TaskStatus

TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


# ---------------------------------------------------------------------------
# Task inputs
# ---------------------------------------------------------------------------


class _TaskModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class RetrieveContextInput(_TaskModel):
    query: str = Field(min_length=1)
    scope_id: str = Field(min_length=1)
    top_k: int = Field(default=8, ge=1, le=50)


class SummarizeContextInput(_TaskModel):
    scope_id: str = Field(min_length=1)
    focus_query: str = Field(min_length=1)


class ComputeTimeSlotsInput(_TaskModel):
    query: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    duration_minutes: int = Field(default=60, gt=0, le=480)
    max_slots: int = Field(default=5, ge=1, le=10)
    whole_day: bool = False


class ScheduleMeetingInput(_TaskModel):
    command: str = Field(min_length=1)
    organizer_id: str = Field(min_length=1)
    context_id: str = Field(min_length=1)


class GenerateSummaryInput(_TaskModel):
    query: str = Field(min_length=1)
    intent: Intent


TaskInput = Union[
    RetrieveContextInput,
    SummarizeContextInput,
    ComputeTimeSlotsInput,
    ScheduleMeetingInput,
    GenerateSummaryInput,
]


# ---------------------------------------------------------------------------
# Task outputs
# ---------------------------------------------------------------------------


class PassageOut(_TaskModel):
    text: str
    score: float


class RetrieveContextOutput(_TaskModel):
    passages: list[PassageOut] = Field(default_factory=list)
    summary: str = ""


class SummarizeContextOutput(_TaskModel):
    summary: str
    key_points: list[str] = Field(default_factory=list)
    entities: dict[str, list[str]] = Field(default_factory=dict)


class SlotOut(_TaskModel):
    start: datetime
    duration_minutes: int
    whole_day: bool = False


class ComputeTimeSlotsOutput(_TaskModel):
    slots: list[SlotOut] = Field(default_factory=list)
    reasoning: str = ""


class ScheduleMeetingOutput(_TaskModel):
    event_id: str
    title: str
    start: datetime
    duration_minutes: int
    participant_ids: list[str]


class GenerateSummaryOutput(_TaskModel):
    plan: str
    action_items: list[str] = Field(default_factory=list)


TaskOutput = Union[
    RetrieveContextOutput,
    SummarizeContextOutput,
    ComputeTimeSlotsOutput,
    ScheduleMeetingOutput,
    GenerateSummaryOutput,
]

INPUT_MODELS: dict[TaskType, type[BaseModel]] = {
    TaskType.RETRIEVE_CONTEXT: RetrieveContextInput,
    TaskType.SUMMARIZE_CONTEXT: SummarizeContextInput,
    TaskType.COMPUTE_TIME_SLOTS: ComputeTimeSlotsInput,
    TaskType.SCHEDULE_MEETING: ScheduleMeetingInput,
    TaskType.GENERATE_SUMMARY: GenerateSummaryInput,
}

OUTPUT_MODELS: dict[TaskType, type[BaseModel]] = {
    TaskType.RETRIEVE_CONTEXT: RetrieveContextOutput,
    TaskType.SUMMARIZE_CONTEXT: SummarizeContextOutput,
    TaskType.COMPUTE_TIME_SLOTS: ComputeTimeSlotsOutput,
    TaskType.SCHEDULE_MEETING: ScheduleMeetingOutput,
    TaskType.GENERATE_SUMMARY: GenerateSummaryOutput,
}


# ---------------------------------------------------------------------------
# AgentTask / Plan
# ---------------------------------------------------------------------------


@dataclass
class AgentTask:
    type: TaskType
    input: TaskInput
    description: str = ""
    uses: tuple[int, ...] = ()
    output: TaskOutput | None = None
    status: TaskStatus = TaskStatus.PENDING
    error: str | None = None

    @classmethod
    def create(
        cls,
        task_type: TaskType,
        description: str = "",
        uses: tuple[int, ...] = (),
        **inputs,
    ) -> AgentTask:
        """Build a task, validating its inputs against the variant's schema."""
        model = INPUT_MODELS[task_type]
        try:
            payload = model(**inputs)
        except ValidationError as exc:
            raise TaskInputError(task_type.value, str(exc)) from exc
        return cls(type=task_type, input=payload, description=description, uses=tuple(uses))

    def to_record(self) -> dict:
        return {
            "type": self.type.value,
            "input": self.input.model_dump(mode="json"),
            "description": self.description,
            "uses": list(self.uses),
            "output": self.output.model_dump(mode="json") if self.output is not None else None,
            "status": self.status.value,
            "error": self.error,
        }

    @classmethod
    def from_record(cls, record: dict) -> AgentTask:
        task_type = TaskType(record["type"])
        output = record.get("output")
        return cls(
            type=task_type,
            input=INPUT_MODELS[task_type].model_validate(record["input"]),
            description=record.get("description", ""),
            uses=tuple(record.get("uses", ())),
            output=OUTPUT_MODELS[task_type].model_validate(output) if output is not None else None,
            status=TaskStatus(record["status"]),
            error=record.get("error"),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Plan:
    """One orchestration run. Immutable once completed or failed."""

    intent: Intent
    owner_id: str
    query: str
    tasks: list[AgentTask] = field(default_factory=list)
    context_id: str | None = None
    id: str = field(default_factory=lambda: f"plan_{uuid.uuid4().hex}")
    summary: str = ""
    status: PlanStatus = PlanStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _check_mutable(self) -> None:
        if self.is_terminal:
            raise ValueError(f"Plan {self.id} is already {self.status.value}")

    def mark_running(self) -> None:
        self._check_mutable()
        self.status = PlanStatus.RUNNING

    def mark_completed(self, summary: str) -> None:
        self._check_mutable()
        self.summary = summary
        self.status = PlanStatus.COMPLETED
        self.completed_at = _utcnow()

    def mark_failed(self, error: str) -> None:
        self._check_mutable()
        self.error = error
        self.status = PlanStatus.FAILED
        self.completed_at = _utcnow()

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "intent": self.intent.value,
            "owner_id": self.owner_id,
            "query": self.query,
            "tasks": [t.to_record() for t in self.tasks],
            "context_id": self.context_id,
            "summary": self.summary,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }

    @classmethod
    def from_record(cls, record: dict) -> Plan:
        completed_at = record.get("completed_at")
        return cls(
            id=record["id"],
            intent=Intent(record["intent"]),
            owner_id=record["owner_id"],
            query=record.get("query", ""),
            tasks=[AgentTask.from_record(t) for t in record.get("tasks", [])],
            context_id=record.get("context_id"),
            summary=record.get("summary") or "",
            status=PlanStatus(record["status"]),
            created_at=datetime.fromisoformat(record["created_at"]),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            error=record.get("error"),
        )
