"""
ChatPlan — SQLite storage.

Conversation rosters, per-participant meeting copies, orchestration plans
and indexed conversation passages. Each class owns its tables and opens a
connection per operation.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from chatplan.core.errors import AtomicWriteFailure, EventNotFoundError, PermissionDeniedError
from chatplan.core.roles import Role, parse_role
from chatplan.data.models import EventStatus, Member, ScheduleEvent

if TYPE_CHECKING:
    from chatplan.core.tasks import Plan
    from chatplan.ports.event_store_port import EventBatch

logger = logging.getLogger(__name__)


def _default_db_path() -> str:
    from chatplan.config import settings
    return settings.DATABASE_PATH


def _utc_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


class _SQLiteDB:
    """Shared connection handling; subclasses create their tables in _init_db."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            db_path = _default_db_path()

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


class MemberDB(_SQLiteDB):
    """Conversation rosters. Roles are stored as self-assigned by each member."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    id              TEXT PRIMARY KEY,
                    participant_ids TEXT NOT NULL DEFAULT '[]'
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS members (
                    conversation_id TEXT NOT NULL,
                    member_id       TEXT NOT NULL,
                    display_name    TEXT NOT NULL,
                    role            TEXT,
                    PRIMARY KEY (conversation_id, member_id)
                )
            """)
        logger.debug("Member tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_member(row: sqlite3.Row) -> Member:
        # Rows written before roles existed have NULL and read as the default role
        return Member(
            id=row["member_id"],
            display_name=row["display_name"],
            role=parse_role(row["role"]),
        )

    def add_conversation(self, conversation_id: str, participant_ids: list[str]) -> None:
        """Record a conversation's flat participant list."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO conversations (id, participant_ids) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET participant_ids = excluded.participant_ids
                """,
                (conversation_id, json.dumps(list(dict.fromkeys(participant_ids)))),
            )
        logger.info("Conversation %s recorded with %d participants", conversation_id, len(participant_ids))

    def add_member(
        self,
        conversation_id: str,
        member_id: str,
        display_name: str,
        role: Role | None = None,
    ) -> Member:
        """Insert or refresh a member on first observation; role may be left unset."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO members (conversation_id, member_id, display_name, role)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(conversation_id, member_id)
                DO UPDATE SET display_name = excluded.display_name
                """,
                (conversation_id, member_id, display_name, role.value if role else None),
            )
            row = conn.execute(
                "SELECT * FROM members WHERE conversation_id = ? AND member_id = ?",
                (conversation_id, member_id),
            ).fetchone()
        return self._row_to_member(row)

    def list_members(self, conversation_id: str) -> list[Member]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM members WHERE conversation_id = ? ORDER BY display_name",
                (conversation_id,),
            ).fetchall()
        return [self._row_to_member(r) for r in rows]

    def participant_ids(self, conversation_id: str) -> list[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT participant_ids FROM conversations WHERE id = ?", (conversation_id,),
            ).fetchone()
        if row is None:
            return []
        return json.loads(row["participant_ids"])

    def set_role(
        self, conversation_id: str, member_id: str, role: str | Role, acting_user_id: str,
    ) -> Member:
        """Change a member's role. Only the member themself may do this."""
        if acting_user_id != member_id:
            raise PermissionDeniedError(
                f"{acting_user_id} may not change the role of {member_id}; roles are self-assigned"
            )
        role = role if isinstance(role, Role) else parse_role(role)
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE members SET role = ? WHERE conversation_id = ? AND member_id = ?",
                (role.value, conversation_id, member_id),
            )
        if cursor.rowcount == 0:
            raise ValueError(f"{member_id} is not a member of {conversation_id}")
        logger.info("Member %s in %s set role %s", member_id, conversation_id, role.value)
        return next(m for m in self.list_members(conversation_id) if m.id == member_id)


# ---------------------------------------------------------------------------
# Schedule events
# ---------------------------------------------------------------------------


class ScheduleDB(_SQLiteDB):
    """Per-owner partitions of meeting copies, keyed by (owner_id, event_id)."""

    _UPDATABLE = frozenset({"title", "start", "duration_minutes", "status", "participant_ids"})

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schedule_events (
                    owner_id         TEXT NOT NULL,
                    event_id         TEXT NOT NULL,
                    title            TEXT NOT NULL,
                    start            TEXT NOT NULL,
                    start_utc        TEXT NOT NULL,
                    duration_minutes INTEGER NOT NULL,
                    participant_ids  TEXT NOT NULL,
                    created_by       TEXT NOT NULL,
                    context_id       TEXT NOT NULL,
                    status           TEXT NOT NULL DEFAULT 'pending',
                    created_at       TEXT NOT NULL,
                    updated_at       TEXT,
                    PRIMARY KEY (owner_id, event_id)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_owner_start "
                "ON schedule_events (owner_id, start_utc)"
            )
        logger.debug("Schedule table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> ScheduleEvent:
        return ScheduleEvent(
            id=row["event_id"],
            owner_id=row["owner_id"],
            title=row["title"],
            start=datetime.fromisoformat(row["start"]),
            duration_minutes=row["duration_minutes"],
            participant_ids=json.loads(row["participant_ids"]),
            created_by=row["created_by"],
            context_id=row["context_id"],
            status=EventStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )

    def list_events(
        self,
        owner_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        context_id: str | None = None,
    ) -> list[ScheduleEvent]:
        """Return the owner's events starting within [start, end], ordered by start."""
        query = "SELECT * FROM schedule_events WHERE owner_id = ?"
        params: list = [owner_id]
        if start is not None:
            query += " AND start_utc >= ?"
            params.append(_utc_iso(start))
        if end is not None:
            query += " AND start_utc <= ?"
            params.append(_utc_iso(end))
        if context_id is not None:
            query += " AND context_id = ?"
            params.append(context_id)
        query += " ORDER BY start_utc"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_event(r) for r in rows]

    def get_event(self, owner_id: str, event_id: str) -> ScheduleEvent | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM schedule_events WHERE owner_id = ? AND event_id = ?",
                (owner_id, event_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    def set_status(self, owner_id: str, event_id: str, status: EventStatus) -> ScheduleEvent:
        """Update the status of the owner's own copy only."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE schedule_events SET status = ?, updated_at = ? "
                "WHERE owner_id = ? AND event_id = ?",
                (status.value, datetime.now(timezone.utc).isoformat(), owner_id, event_id),
            )
        if cursor.rowcount == 0:
            raise EventNotFoundError(owner_id, event_id)
        logger.info("Event %s for %s marked %s", event_id, owner_id, status.value)
        return self.get_event(owner_id, event_id)

    def commit_batch(self, batch: EventBatch) -> None:
        """Apply every operation of the batch in one transaction, or none.

        Raises AtomicWriteFailure on any SQLite error or when an update or
        delete finds no copy to touch; the transaction is rolled back.
        """
        from chatplan.ports.event_store_port import BatchOpKind

        now = datetime.now(timezone.utc).isoformat()
        conn = self._connect()
        try:
            with conn:
                for op in batch.ops:
                    if op.kind is BatchOpKind.PUT:
                        self._put(conn, op.event, now)
                        continue
                    if op.kind is BatchOpKind.UPDATE:
                        cursor = self._update(conn, op.owner_id, op.event_id, op.changes, now)
                    else:
                        cursor = conn.execute(
                            "DELETE FROM schedule_events WHERE owner_id = ? AND event_id = ?",
                            (op.owner_id, op.event_id),
                        )
                    if cursor.rowcount == 0:
                        raise LookupError(f"no copy of {op.event_id} for {op.owner_id}")
        except (sqlite3.Error, LookupError) as exc:
            raise AtomicWriteFailure(batch.event_id, batch.owner_ids, exc) from exc
        finally:
            conn.close()
        logger.info("Committed %d operation(s) for event %s", len(batch.ops), batch.event_id)

    @staticmethod
    def _put(conn: sqlite3.Connection, event: ScheduleEvent, now: str) -> None:
        conn.execute(
            """
            INSERT INTO schedule_events
                (owner_id, event_id, title, start, start_utc, duration_minutes,
                 participant_ids, created_by, context_id, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.owner_id, event.id, event.title,
                event.start.isoformat(), _utc_iso(event.start), event.duration_minutes,
                json.dumps(event.participant_ids), event.created_by, event.context_id,
                event.status.value,
                (event.created_at.isoformat() if event.created_at else now),
            ),
        )

    def _update(
        self, conn: sqlite3.Connection, owner_id: str, event_id: str, changes: dict, now: str,
    ) -> sqlite3.Cursor:
        unknown = set(changes) - self._UPDATABLE
        if unknown:
            raise sqlite3.ProgrammingError(f"cannot update columns {sorted(unknown)}")

        columns: dict[str, object] = {}
        for key, value in changes.items():
            if key == "start":
                columns["start"] = value.isoformat()
                columns["start_utc"] = _utc_iso(value)
            elif key == "status":
                columns["status"] = EventStatus(value).value
            elif key == "participant_ids":
                columns["participant_ids"] = json.dumps(list(value))
            else:
                columns[key] = value
        columns["updated_at"] = now

        assignments = ", ".join(f"{col} = ?" for col in columns)
        return conn.execute(
            f"UPDATE schedule_events SET {assignments} WHERE owner_id = ? AND event_id = ?",
            (*columns.values(), owner_id, event_id),
        )


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class PlanDB(_SQLiteDB):
    """Orchestration runs per owner. Terminal plans are never overwritten."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS plans (
                    id           TEXT PRIMARY KEY,
                    owner_id     TEXT NOT NULL,
                    context_id   TEXT,
                    intent       TEXT NOT NULL,
                    status       TEXT NOT NULL,
                    created_at   TEXT NOT NULL,
                    record       TEXT NOT NULL
                )
            """)
        logger.debug("Plans table initialized at %s", self._db_path)

    def save_plan(self, plan: Plan) -> None:
        record = plan.to_record()
        with self._connect() as conn:
            row = conn.execute("SELECT status FROM plans WHERE id = ?", (plan.id,)).fetchone()
            if row is not None and row["status"] in ("completed", "failed"):
                raise ValueError(f"Plan {plan.id} is {row['status']} and cannot be changed")
            conn.execute(
                """
                INSERT INTO plans (id, owner_id, context_id, intent, status, created_at, record)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET status = excluded.status, record = excluded.record
                """,
                (
                    plan.id, plan.owner_id, plan.context_id, plan.intent.value,
                    plan.status.value, record["created_at"], json.dumps(record),
                ),
            )
        logger.debug("Plan %s saved (%s)", plan.id, plan.status.value)

    def get_plan(self, owner_id: str, plan_id: str) -> Plan | None:
        from chatplan.core.tasks import Plan

        with self._connect() as conn:
            row = conn.execute(
                "SELECT record FROM plans WHERE owner_id = ? AND id = ?", (owner_id, plan_id),
            ).fetchone()
        if row is None:
            return None
        return Plan.from_record(json.loads(row["record"]))

    def list_plans(
        self, owner_id: str, limit: int = 20, context_id: str | None = None,
    ) -> list[Plan]:
        """Return the owner's plans, newest first."""
        from chatplan.core.tasks import Plan

        query = "SELECT record FROM plans WHERE owner_id = ?"
        params: list = [owner_id]
        if context_id is not None:
            query += " AND context_id = ?"
            params.append(context_id)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Plan.from_record(json.loads(r["record"])) for r in rows]


# ---------------------------------------------------------------------------
# Passages (semantic retrieval index)
# ---------------------------------------------------------------------------


class PassageDB(_SQLiteDB):
    """Conversation excerpts with their embedding vectors, scoped by conversation."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS passages (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    scope_id    TEXT NOT NULL,
                    text        TEXT NOT NULL,
                    embedding   TEXT NOT NULL,
                    created_at  TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_passages_scope ON passages (scope_id)")
        logger.debug("Passages table initialized at %s", self._db_path)

    def add_passage(self, scope_id: str, text: str, embedding: list[float]) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO passages (scope_id, text, embedding, created_at) VALUES (?, ?, ?, ?)",
                (scope_id, text, json.dumps(embedding), datetime.now(timezone.utc).isoformat()),
            )
            passage_id = cursor.lastrowid
        logger.debug("Passage #%d indexed in %s", passage_id, scope_id)
        return passage_id

    def list_passages(self, scope_id: str) -> list[dict]:
        """All passages of a scope as dicts with id, text, embedding, created_at."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM passages WHERE scope_id = ? ORDER BY id", (scope_id,),
            ).fetchall()
        return [
            {
                "id": str(r["id"]),
                "text": r["text"],
                "embedding": json.loads(r["embedding"]),
                "created_at": r["created_at"],
            }
            for r in rows
        ]
