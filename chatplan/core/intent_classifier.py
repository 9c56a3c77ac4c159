"""
ChatPlan — Intent Classifier.

Rules first: each intent has a subject pattern and a cue pattern, and a
request matching both is classified without calling a model. Otherwise the
completion service picks one label from the closed set; anything else is an
UnknownIntentError.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from chatplan.core.errors import UnknownIntentError
from chatplan.core.tasks import Intent

if TYPE_CHECKING:
    from chatplan.ports.completion_port import CompletionPort

logger = logging.getLogger(__name__)


class IntentSource(str, Enum):
    RULE = "rule"
    MODEL = "model"


@dataclass(frozen=True)
class IntentResult:
    intent: Intent
    source: IntentSource


# (intent, subject pattern, cue pattern), checked in order
_RULES: tuple[tuple[Intent, re.Pattern, re.Pattern], ...] = (
    (
        Intent.OFFSITE_PLANNING,
        re.compile(r"off-?site|retreat|team[\s-]building|planning session|workshop"),
        re.compile(r"location|venue|place|where|schedule|agenda|plan|date"),
    ),
    (
        Intent.MEETING_SCHEDULING,
        re.compile(r"meeting|call|sync|catch-?up|1:1|one-on-one|standup"),
        re.compile(r"when|time|schedule|available|availability|free|book"),
    ),
    (
        Intent.TASK_BREAKDOWN,
        re.compile(r"task|project|initiative|feature|plan|launch|migration"),
        re.compile(r"break\s*down|steps|how to|action items|roadmap|milestones"),
    ),
)

_SYSTEM_PROMPT = """\
You classify planning requests sent in a team chat.

Intents:
- offsite_planning: planning a team offsite, retreat or event (location, dates, activities)
- meeting_scheduling: scheduling a meeting or finding free time slots
- task_breakdown: breaking a project or task down into actionable steps
"""

_LABELS = [intent.value for intent in Intent]


def classify_by_rules(text: str) -> Intent | None:
    lowered = text.lower()
    for intent, subject, cue in _RULES:
        if subject.search(lowered) and cue.search(lowered):
            return intent
    return None


class IntentClassifier:
    """Classify a request into one of the planning intents."""

    def __init__(self, completion: CompletionPort) -> None:
        self._completion = completion

    async def classify(self, text: str) -> IntentResult:
        intent = classify_by_rules(text)
        if intent is not None:
            logger.info("Intent '%s' matched by rules", intent.value)
            return IntentResult(intent, IntentSource.RULE)

        label = await self._completion.complete(
            f'Request: "{text}"', system=_SYSTEM_PROMPT, labels=_LABELS,
        )
        try:
            intent = Intent(label)
        except ValueError:
            logger.warning("Model could not classify '%s' (label=%r)", text[:80], label)
            raise UnknownIntentError(text, label) from None

        logger.info("Intent '%s' chosen by model", intent.value)
        return IntentResult(intent, IntentSource.MODEL)
