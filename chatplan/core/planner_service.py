"""
ChatPlan — Planner Service.

General path for multi-step requests:

    classify intent → decompose into tasks → execute in order → summarize

Each run is persisted as a Plan when it starts and again when it reaches
completed or failed. Classification and decomposition errors are raised to
the caller before any plan exists.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from chatplan.core.errors import ChatPlanError, ParseError
from chatplan.core.intent_classifier import IntentClassifier
from chatplan.core.plan_summarizer import PlanSummarizer
from chatplan.core.task_decomposer import TaskDecomposer
from chatplan.core.tasks import Plan, PlanStatus

if TYPE_CHECKING:
    from chatplan.core.task_executor import TaskExecutor
    from chatplan.ports.completion_port import CompletionPort
    from chatplan.ports.plan_store_port import PlanStorePort

logger = logging.getLogger(__name__)

_PLAN_GUIDANCE = (
    "Describe what you want planned, e.g. 'Plan a team offsite next month, "
    "we need a venue and an agenda'."
)


class PlannerService:
    def __init__(
        self,
        completion: CompletionPort,
        executor: TaskExecutor,
        plans: PlanStorePort,
        classifier: IntentClassifier | None = None,
        decomposer: TaskDecomposer | None = None,
        summarizer: PlanSummarizer | None = None,
        min_length: int | None = None,
        max_length: int | None = None,
    ) -> None:
        from chatplan.config import settings

        self._executor = executor
        self._plans = plans
        self._classifier = classifier or IntentClassifier(completion)
        self._decomposer = decomposer or TaskDecomposer()
        self._summarizer = summarizer or PlanSummarizer(completion)
        self._min_length = min_length or settings.PLAN_QUERY_MIN_LENGTH
        self._max_length = max_length or settings.PLAN_QUERY_MAX_LENGTH

    def validate_query(self, raw_text: str) -> str:
        text = raw_text.strip()
        if len(text) < self._min_length:
            raise ParseError(
                f"Request is too short (minimum {self._min_length} characters).",
                raw_text, guidance=_PLAN_GUIDANCE,
            )
        if len(text) > self._max_length:
            raise ParseError(
                f"Request is too long (maximum {self._max_length} characters).",
                raw_text, guidance=_PLAN_GUIDANCE,
            )
        return text

    async def run_plan(
        self,
        raw_text: str,
        owner_id: str,
        context_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Plan:
        """Classify, decompose, execute and summarize a request.

        Returns the terminal plan. Task failures, cancellation and summarizer
        failures are recorded on the plan, not raised.

        Raises:
            ParseError: the text is outside the accepted length bounds.
            UnknownIntentError: no intent could be determined.
            TaskInputError: a task template produced invalid inputs.
        """
        text = self.validate_query(raw_text)
        result = await self._classifier.classify(text)
        tasks = self._decomposer.decompose(result.intent, text, owner_id, context_id)

        plan = Plan(intent=result.intent, owner_id=owner_id, query=text, tasks=tasks, context_id=context_id)
        plan.mark_running()
        await self._plans.save_plan(plan)
        logger.info(
            "Plan %s started: intent=%s (%s), %d task(s)",
            plan.id, result.intent.value, result.source.value, len(tasks),
        )

        await self._executor.execute(plan, cancel_event)

        if plan.status is PlanStatus.RUNNING:
            try:
                summary = await self._summarizer.summarize(plan)
            except ChatPlanError as exc:
                logger.error("Plan %s summary failed: %s", plan.id, exc)
                plan.mark_failed(f"Summary failed: {exc}")
            else:
                plan.mark_completed(summary)

        await self._plans.save_plan(plan)
        logger.info("Plan %s finished: %s", plan.id, plan.status.value)
        return plan

    async def get_plan(self, owner_id: str, plan_id: str) -> Plan | None:
        return await self._plans.get_plan(owner_id, plan_id)

    async def list_plans(
        self, owner_id: str, limit: int = 20, context_id: str | None = None,
    ) -> list[Plan]:
        return await self._plans.list_plans(owner_id, limit=limit, context_id=context_id)
