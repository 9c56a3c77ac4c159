"""
ChatPlan — Task Executor.

Runs a plan's tasks strictly in order. Before a task runs, the outputs of
the earlier completed tasks it ``uses`` are handed to it as context. The
first failing task is marked failed together with the plan, and nothing
after it runs; completed outputs stay on their tasks.

Cancellation is cooperative: the executor checks ``cancel_event`` between
tasks, never interrupting a task in flight.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING

from dateutil.relativedelta import relativedelta

from chatplan.core.conflict_checker import busy_intervals, find_free_slots, overlaps_any
from chatplan.core.errors import ExternalServiceError, TaskExecutionError
from chatplan.core.llm import clean_llm_response
from chatplan.core.tasks import (
    ComputeTimeSlotsInput,
    ComputeTimeSlotsOutput,
    GenerateSummaryInput,
    GenerateSummaryOutput,
    Intent,
    PassageOut,
    PlanStatus,
    RetrieveContextInput,
    RetrieveContextOutput,
    ScheduleMeetingInput,
    ScheduleMeetingOutput,
    SlotOut,
    SummarizeContextInput,
    SummarizeContextOutput,
    TaskStatus,
)

if TYPE_CHECKING:
    from chatplan.core.datetime_resolver import DateTimeResolver
    from chatplan.core.scheduling_service import SchedulingService
    from chatplan.core.tasks import AgentTask, Plan, TaskOutput
    from chatplan.ports.completion_port import CompletionPort
    from chatplan.ports.event_store_port import EventStorePort
    from chatplan.ports.retrieval_port import RetrievalPort

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"

_SUMMARIZE_PASSAGES = 12

_SUMMARIZE_PROMPT = """\
Analyze the following conversation excerpts and extract key information.

Conversation context:
{excerpts}

Focus: {focus}

Additional context from previous steps:
{context}

Respond with JSON only:
{{
  "summary": "2-3 sentence summary",
  "key_points": ["3-5 bullet points"],
  "entities": {{"dates": ["..."], "locations": ["..."], "people": ["..."]}}
}}
"""

_INTENT_GUIDANCE = {
    Intent.OFFSITE_PLANNING: """\
Generate a comprehensive offsite plan including:
- Event overview and goals
- Proposed dates and location
- Suggested activities and agenda
- Logistics (venue, catering, accommodations)
- Action items and next steps""",
    Intent.MEETING_SCHEDULING: """\
Generate a meeting schedule plan including:
- Meeting purpose and objectives
- Proposed time slots
- Attendee list
- Agenda items
- Follow-up actions""",
    Intent.TASK_BREAKDOWN: """\
Generate a task breakdown including:
- Project overview
- Major milestones
- Detailed task list with dependencies
- Estimated timeline
- Risk considerations""",
}

_GENERATE_PROMPT = """\
Original request: "{query}"
Intent: {intent}

Context from previous analysis:
{context}

{guidance}

Respond with JSON only:
{{"plan": "detailed markdown plan", "action_items": ["item 1", "item 2"]}}
"""

_PLANNER_SYSTEM = "You are a professional planning assistant. Be concise and actionable."


def format_context(context: dict[int, TaskOutput]) -> str:
    """Render forwarded outputs as JSON keyed by task number."""
    if not context:
        return "None"
    return json.dumps(
        {f"task_{i + 1}": out.model_dump(mode="json") for i, out in sorted(context.items())},
        indent=2,
    )


def parse_json_object(raw: str) -> dict | None:
    """Parse a model reply as a JSON object, or None when it is not one."""
    try:
        data = json.loads(clean_llm_response(raw))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def base_day(query: str, today: date) -> date:
    """First day to propose, from relative hints in the request."""
    lowered = query.lower()
    if "tomorrow" in lowered:
        return today + timedelta(days=1)
    if "next week" in lowered:
        return today + timedelta(days=7)
    if "next month" in lowered:
        return today + relativedelta(months=1)
    return today + timedelta(days=14)


def preferred_time(query: str, default: time) -> time:
    lowered = query.lower()
    if "lunch" in lowered:
        return time(12, 0)
    if "afternoon" in lowered:
        return time(14, 0)
    if "morning" in lowered:
        return time(9, 0)
    return default


class TaskExecutor:
    """Interpreter over the closed set of task variants."""

    def __init__(
        self,
        completion: CompletionPort,
        retrieval: RetrievalPort,
        events: EventStorePort,
        resolver: DateTimeResolver,
        scheduling: SchedulingService | None = None,
        day_start_hour: int | None = None,
        day_end_hour: int | None = None,
    ) -> None:
        from chatplan.config import settings

        self._completion = completion
        self._retrieval = retrieval
        self._events = events
        self._resolver = resolver
        self._scheduling = scheduling
        self._day_start = time(
            settings.EARLIEST_AVAILABLE_HOUR if day_start_hour is None else day_start_hour, 0
        )
        self._day_end = time(settings.WORKDAY_END_HOUR if day_end_hour is None else day_end_hour, 0)

    async def execute(self, plan: Plan, cancel_event: asyncio.Event | None = None) -> Plan:
        """Run every pending task of the plan in order.

        Returns the same plan: still ``running`` when every task completed,
        ``failed`` when a task failed or the run was cancelled.
        """
        if plan.status is PlanStatus.PENDING:
            plan.mark_running()

        outputs: dict[int, TaskOutput] = {}
        for index, task in enumerate(plan.tasks):
            if task.status is TaskStatus.COMPLETED and task.output is not None:
                outputs[index] = task.output
                continue

            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Plan %s cancelled before task %d", plan.id, index + 1)
                plan.mark_failed(CANCELLED)
                return plan

            context = {i: outputs[i] for i in task.uses if i in outputs}
            task.status = TaskStatus.RUNNING
            logger.info("Plan %s: running task %d (%s)", plan.id, index + 1, task.type.value)
            try:
                task.output = await self.run_task(task, context)
            except Exception as exc:
                error = TaskExecutionError(index, task.type.value, exc)
                logger.error("Plan %s: %s", plan.id, error)
                task.status = TaskStatus.FAILED
                task.error = str(exc)
                plan.mark_failed(str(error))
                return plan

            task.status = TaskStatus.COMPLETED
            outputs[index] = task.output

        logger.info("Plan %s: all %d task(s) completed", plan.id, len(plan.tasks))
        return plan

    async def run_task(self, task: AgentTask, context: dict[int, TaskOutput]) -> TaskOutput:
        payload = task.input
        if isinstance(payload, RetrieveContextInput):
            return await self._retrieve_context(payload)
        if isinstance(payload, SummarizeContextInput):
            return await self._summarize_context(payload, context)
        if isinstance(payload, ComputeTimeSlotsInput):
            return await self._compute_time_slots(payload, context)
        if isinstance(payload, ScheduleMeetingInput):
            return await self._schedule_meeting(payload)
        if isinstance(payload, GenerateSummaryInput):
            return await self._generate_summary(payload, context)
        raise TypeError(f"Unsupported task input {type(payload).__name__}")

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def _retrieve_context(self, payload: RetrieveContextInput) -> RetrieveContextOutput:
        passages = await self._retrieval.search(payload.query, payload.scope_id, top_k=payload.top_k)
        if not passages:
            return RetrieveContextOutput(summary="No relevant context found in the conversation.")
        plural = "s" if len(passages) > 1 else ""
        return RetrieveContextOutput(
            passages=[PassageOut(text=p.text, score=p.score) for p in passages],
            summary=f"Found {len(passages)} relevant message{plural} discussing: {payload.query}",
        )

    async def _summarize_context(
        self, payload: SummarizeContextInput, context: dict[int, TaskOutput],
    ) -> SummarizeContextOutput:
        texts = [
            p.text
            for out in context.values() if isinstance(out, RetrieveContextOutput)
            for p in out.passages
        ]
        if not texts:
            found = await self._retrieval.search(
                payload.focus_query, payload.scope_id, top_k=_SUMMARIZE_PASSAGES,
            )
            texts = [p.text for p in found]
        if not texts:
            return SummarizeContextOutput(summary="No relevant messages found.")

        excerpts = "\n\n".join(f"[{i + 1}] {text}" for i, text in enumerate(texts))
        raw = await self._completion.complete(
            _SUMMARIZE_PROMPT.format(
                excerpts=excerpts, focus=payload.focus_query, context=format_context(context),
            ),
            system=_PLANNER_SYSTEM,
        )
        data = parse_json_object(raw)
        if data is None:
            logger.warning("Summary reply was not JSON; keeping it as text")
            return SummarizeContextOutput(summary=raw.strip())

        entities = {
            str(key): [str(v) for v in values]
            for key, values in (data.get("entities") or {}).items()
            if isinstance(values, list)
        }
        return SummarizeContextOutput(
            summary=str(data.get("summary", "")),
            key_points=[str(p) for p in data.get("key_points") or data.get("keyPoints") or []],
            entities=entities,
        )

    async def _compute_time_slots(
        self, payload: ComputeTimeSlotsInput, context: dict[int, TaskOutput],
    ) -> ComputeTimeSlotsOutput:
        now = self._resolver.now()
        tz = self._resolver.tz
        first = base_day(payload.query, now.date())
        days = [first + timedelta(days=i) for i in range(payload.max_slots * 4)]

        window_end = datetime.combine(days[-1], time(0, 0), tz) + timedelta(days=1)
        events = await self._events.list_events(
            payload.owner_id, start=datetime.combine(first, time(0, 0), tz) - timedelta(days=1),
            end=window_end,
        )
        busy = busy_intervals(events)

        slots: list[SlotOut] = []
        skipped = 0
        for day in days:
            if len(slots) >= payload.max_slots:
                break
            if day.weekday() >= 5:
                continue
            if payload.whole_day:
                start = datetime.combine(day, self._day_start, tz)
                if overlaps_any(start, datetime.combine(day, self._day_end, tz), busy):
                    skipped += 1
                    continue
                slots.append(SlotOut(start=start, duration_minutes=payload.duration_minutes, whole_day=True))
                continue

            found = find_free_slots(
                busy, payload.duration_minutes, [day], tz,
                day_start=preferred_time(payload.query, time(10, 0)), day_end=self._day_end,
                not_before=now, max_slots=1,
            )
            if not found:
                skipped += 1
                continue
            slots.append(SlotOut(start=found[0], duration_minutes=payload.duration_minutes))

        reasoning = (
            f"Proposed {len(slots)} weekday {'day' if payload.whole_day else 'slot'}(s) "
            f"from {first.isoformat()}"
        )
        if skipped:
            reasoning += f", skipping {skipped} busy day(s)"
        reasoning += "."
        context_text = format_context(context).lower()
        if "busy" in context_text or "conflict" in context_text:
            reasoning += " The conversation mentions conflicts; confirm with attendees."
        if "prefer" in context_text or "works best" in context_text:
            reasoning += " The conversation states preferences; check them against these options."

        logger.info("Computed %d slot(s) for %s", len(slots), payload.owner_id)
        return ComputeTimeSlotsOutput(slots=slots, reasoning=reasoning)

    async def _schedule_meeting(self, payload: ScheduleMeetingInput) -> ScheduleMeetingOutput:
        if self._scheduling is None:
            raise ExternalServiceError("scheduling", "no scheduling service configured")
        request = await self._scheduling.handle_schedule_command(
            payload.command, payload.organizer_id, payload.context_id,
        )
        return ScheduleMeetingOutput(
            event_id=request.event_id,
            title=request.title,
            start=request.start,
            duration_minutes=request.duration_minutes,
            participant_ids=sorted(request.participant_ids),
        )

    async def _generate_summary(
        self, payload: GenerateSummaryInput, context: dict[int, TaskOutput],
    ) -> GenerateSummaryOutput:
        raw = await self._completion.complete(
            _GENERATE_PROMPT.format(
                query=payload.query,
                intent=payload.intent.value,
                context=format_context(context),
                guidance=_INTENT_GUIDANCE[payload.intent],
            ),
            system=_PLANNER_SYSTEM,
            max_tokens=2048,
        )
        data = parse_json_object(raw)
        if data is None or "plan" not in data:
            return GenerateSummaryOutput(plan=clean_llm_response(raw))
        items = data.get("action_items") or data.get("actionItems") or []
        return GenerateSummaryOutput(plan=str(data["plan"]), action_items=[str(i) for i in items])
