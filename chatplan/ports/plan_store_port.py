"""Plan store port — persistence of orchestration runs per owner."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from chatplan.core.tasks import Plan


class PlanStorePort(Protocol):
    async def save_plan(self, plan: Plan) -> None: ...

    async def get_plan(self, owner_id: str, plan_id: str) -> Plan | None: ...

    async def list_plans(
        self, owner_id: str, limit: int = 20, context_id: str | None = None
    ) -> list[Plan]: ...
