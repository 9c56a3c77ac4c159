"""Event store port — per-owner partitions of ScheduleEvent copies.

A caller reads and mutates only its own partition through the plain
methods. Cross-participant materialization goes through ``commit_batch``,
the administrative path that may write any owner's partition and applies
all operations or none.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol

from chatplan.data.models import EventStatus, ScheduleEvent


class BatchOpKind(Enum):
    PUT = "put"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class BatchOp:
    kind: BatchOpKind
    owner_id: str
    event_id: str
    event: ScheduleEvent | None = None          # PUT
    changes: dict = field(default_factory=dict)  # UPDATE: column → value


@dataclass
class EventBatch:
    """An all-or-nothing set of writes touching every copy of one event."""

    event_id: str
    ops: list[BatchOp] = field(default_factory=list)

    def put(self, event: ScheduleEvent) -> None:
        self.ops.append(BatchOp(BatchOpKind.PUT, event.owner_id, event.id, event=event))

    def update(self, owner_id: str, **changes) -> None:
        self.ops.append(BatchOp(BatchOpKind.UPDATE, owner_id, self.event_id, changes=changes))

    def delete(self, owner_id: str) -> None:
        self.ops.append(BatchOp(BatchOpKind.DELETE, owner_id, self.event_id))

    @property
    def owner_ids(self) -> list[str]:
        return [op.owner_id for op in self.ops]


class EventStorePort(Protocol):
    """Abstract event store used by the scheduling service."""

    async def list_events(
        self,
        owner_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        context_id: str | None = None,
    ) -> list[ScheduleEvent]: ...

    async def get_event(self, owner_id: str, event_id: str) -> ScheduleEvent | None: ...

    async def set_status(self, owner_id: str, event_id: str, status: EventStatus) -> ScheduleEvent: ...

    async def commit_batch(self, batch: EventBatch) -> None:
        """Apply every operation or none; raise AtomicWriteFailure otherwise."""
        ...
