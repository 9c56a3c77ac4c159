"""
ChatPlan — Plan Summarizer.

Synthesizes the outputs of a fully executed plan into one markdown summary.
A failed plan is never summarized; its stored error stands in for it.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from chatplan.core.tasks import PlanStatus, TaskStatus

if TYPE_CHECKING:
    from chatplan.core.tasks import Plan
    from chatplan.ports.completion_port import CompletionPort

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """\
You are a planning assistant. Create a concise, actionable summary of the
plan based on the task results. Keep it professional and well-structured.
"""

_USER_PROMPT = """\
Intent: {intent}
Original request: "{query}"

Task results:
{results}

Write a markdown plan summary with these sections:
1. **Overview** - what is being planned
2. **Key Details** - important dates, locations, participants
3. **Next Steps** - actionable items
4. **Timeline** - if applicable
"""


class PlanSummarizer:
    def __init__(self, completion: CompletionPort) -> None:
        self._completion = completion

    async def summarize(self, plan: Plan) -> str:
        """Return the synthesis for a plan whose tasks all completed.

        Raises ValueError for a failed plan or one with unfinished tasks.
        """
        if plan.status is PlanStatus.FAILED:
            raise ValueError(f"Plan {plan.id} failed ({plan.error}); nothing to summarize")
        unfinished = [t for t in plan.tasks if t.status is not TaskStatus.COMPLETED]
        if unfinished:
            raise ValueError(f"Plan {plan.id} has {len(unfinished)} unfinished task(s)")

        results = "\n\n".join(
            f"[task_{i + 1}] {task.description or task.type.value}:\n"
            f"{json.dumps(task.output.model_dump(mode='json'), indent=2)}"
            for i, task in enumerate(plan.tasks)
            if task.output is not None
        )
        summary = await self._completion.complete(
            _USER_PROMPT.format(intent=plan.intent.value, query=plan.query, results=results),
            system=_SYSTEM_PROMPT,
            max_tokens=2048,
        )
        logger.info("Plan %s summarized (%d chars)", plan.id, len(summary))
        return summary.strip()
