"""Local store adapters — implement the membership, event and plan ports on SQLite.

The SQLite classes are synchronous; each call here is a single short query,
so the adapters await nothing and simply expose the async port surface.
"""

from __future__ import annotations

import logging
from datetime import datetime

from chatplan.core.tasks import Plan
from chatplan.data.db import MemberDB, PlanDB, ScheduleDB
from chatplan.data.models import EventStatus, Member, ScheduleEvent
from chatplan.ports.event_store_port import EventBatch

logger = logging.getLogger(__name__)


class LocalMembershipProvider:
    """MembershipPort backed by MemberDB."""

    def __init__(self, db: MemberDB | None = None) -> None:
        self._db = db or MemberDB()

    @property
    def db(self) -> MemberDB:
        return self._db

    async def list_members(self, conversation_id: str) -> list[Member]:
        return self._db.list_members(conversation_id)

    async def participant_ids(self, conversation_id: str) -> list[str]:
        return self._db.participant_ids(conversation_id)


class LocalEventStore:
    """EventStorePort backed by ScheduleDB."""

    def __init__(self, db: ScheduleDB | None = None) -> None:
        self._db = db or ScheduleDB()

    async def list_events(
        self,
        owner_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        context_id: str | None = None,
    ) -> list[ScheduleEvent]:
        return self._db.list_events(owner_id, start=start, end=end, context_id=context_id)

    async def get_event(self, owner_id: str, event_id: str) -> ScheduleEvent | None:
        return self._db.get_event(owner_id, event_id)

    async def set_status(self, owner_id: str, event_id: str, status: EventStatus) -> ScheduleEvent:
        return self._db.set_status(owner_id, event_id, status)

    async def commit_batch(self, batch: EventBatch) -> None:
        self._db.commit_batch(batch)


class LocalPlanStore:
    """PlanStorePort backed by PlanDB."""

    def __init__(self, db: PlanDB | None = None) -> None:
        self._db = db or PlanDB()

    async def save_plan(self, plan: Plan) -> None:
        self._db.save_plan(plan)

    async def get_plan(self, owner_id: str, plan_id: str) -> Plan | None:
        return self._db.get_plan(owner_id, plan_id)

    async def list_plans(
        self, owner_id: str, limit: int = 20, context_id: str | None = None,
    ) -> list[Plan]:
        return self._db.list_plans(owner_id, limit=limit, context_id=context_id)
