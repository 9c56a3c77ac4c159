"""
ChatPlan — Data Models.

Members of a conversation and the meeting events materialized for them.
One logical meeting is stored as one ScheduleEvent per participant, all
sharing the same id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from chatplan.core.roles import DEFAULT_ROLE, Role


@dataclass(frozen=True)
class Member:
    """A conversation member as seen by the membership provider."""

    id: str
    display_name: str
    role: Role = DEFAULT_ROLE


class EventStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    DONE = "done"


# Statuses that no longer occupy the participant's time
INACTIVE_STATUSES = frozenset({EventStatus.DONE, EventStatus.DECLINED})


@dataclass
class ScheduleEvent:
    """One participant's copy of a meeting."""

    id: str
    owner_id: str                     # the partition this copy lives in
    title: str
    start: datetime                   # timezone-aware
    duration_minutes: int
    participant_ids: list[str]
    created_by: str
    context_id: str                   # conversation id
    status: EventStatus = EventStatus.PENDING
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def is_committed(self) -> bool:
        return self.status not in INACTIVE_STATUSES


@dataclass(frozen=True)
class Passage:
    """A retrieved conversation excerpt with its relevance score."""

    text: str
    score: float
    id: str = ""
    created_at: str = ""
