"""
ChatPlan — Entry Point.

Command-line front end over the local SQLite stores:

    python main.py schedule "Schedule a meeting with everyone tomorrow at 3pm" --user u1 --conversation c1
    python main.py plan "Plan a team offsite next month, where should we go?" --user u1
    python main.py route "<any text>" --user u1 --conversation c1

Scheduling-shaped text takes the fast path; everything else goes through
the plan pipeline.
"""

import argparse
import asyncio
import json
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from chatplan.adapters.embedding_retriever import EmbeddingRetriever
from chatplan.adapters.local_store import LocalEventStore, LocalMembershipProvider, LocalPlanStore
from chatplan.core.datetime_resolver import DateTimeResolver
from chatplan.core.errors import ChatPlanError
from chatplan.core.llm import LLMCompletionService
from chatplan.core.planner_service import PlannerService
from chatplan.core.scheduling_service import SchedulingService
from chatplan.core.task_executor import TaskExecutor

logger = logging.getLogger(__name__)


class App:
    """Wires the core services to the local adapters."""

    def __init__(self) -> None:
        self.membership = LocalMembershipProvider()
        self.events = LocalEventStore()
        self.retriever = EmbeddingRetriever()
        completion = LLMCompletionService()
        resolver = DateTimeResolver()

        self.scheduling = SchedulingService(self.membership, self.events, resolver=resolver)
        executor = TaskExecutor(
            completion, self.retriever, self.events, resolver, scheduling=self.scheduling,
        )
        self.planner = PlannerService(completion, executor, LocalPlanStore())

    async def route(self, text: str, user_id: str, conversation_id: str | None) -> dict:
        if conversation_id and self.scheduling.is_schedule_command(text):
            request = await self.scheduling.handle_schedule_command(text, user_id, conversation_id)
            return _request_dict(request)
        plan = await self.planner.run_plan(text, user_id, conversation_id)
        return _plan_dict(plan)


def _request_dict(request) -> dict:
    return {
        "event_id": request.event_id,
        "title": request.title,
        "start": request.start.isoformat(),
        "duration_minutes": request.duration_minutes,
        "participant_ids": sorted(request.participant_ids),
    }


def _plan_dict(plan) -> dict:
    return {
        "id": plan.id,
        "intent": plan.intent.value,
        "status": plan.status.value,
        "tasks": [f"{t.type.value}: {t.status.value}" for t in plan.tasks],
        "summary": plan.summary,
        "error": plan.error,
    }


def _event_dict(event) -> dict:
    return {
        "event_id": event.id,
        "title": event.title,
        "start": event.start.isoformat(),
        "duration_minutes": event.duration_minutes,
        "status": event.status.value,
        "participant_ids": event.participant_ids,
    }


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chatplan", description="Chat scheduling and planning assistant")
    sub = parser.add_subparsers(dest="command", required=True)

    for name in ("schedule", "plan", "route"):
        cmd = sub.add_parser(name)
        cmd.add_argument("text")
        cmd.add_argument("--user", required=True)
        cmd.add_argument("--conversation", required=(name == "schedule"))

    member = sub.add_parser("add-member", help="record a conversation member")
    member.add_argument("conversation")
    member.add_argument("member_id")
    member.add_argument("display_name")
    member.add_argument("--role")

    role = sub.add_parser("set-role", help="change your own role")
    role.add_argument("conversation")
    role.add_argument("role")
    role.add_argument("--user", required=True)

    index = sub.add_parser("index", help="index a message for context retrieval")
    index.add_argument("conversation")
    index.add_argument("text")

    meetings = sub.add_parser("meetings", help="list your meetings")
    meetings.add_argument("--user", required=True)
    meetings.add_argument("--conversation")
    meetings.add_argument("--upcoming", action="store_true")

    status = sub.add_parser("status", help="accept, decline or close a meeting")
    status.add_argument("event_id")
    status.add_argument("status", choices=["accepted", "declined", "done", "pending"])
    status.add_argument("--user", required=True)

    delete = sub.add_parser("delete", help="delete a meeting for everyone")
    delete.add_argument("event_id")
    delete.add_argument("--user", required=True)

    move = sub.add_parser("reschedule", help="move a meeting you created")
    move.add_argument("event_id")
    move.add_argument("when")
    move.add_argument("--user", required=True)

    plans = sub.add_parser("plans", help="list your plans")
    plans.add_argument("--user", required=True)
    plans.add_argument("--conversation")
    plans.add_argument("--limit", type=int, default=20)

    return parser


async def _run(args: argparse.Namespace) -> object:
    app = App()

    if args.command == "schedule":
        request = await app.scheduling.handle_schedule_command(args.text, args.user, args.conversation)
        return _request_dict(request)
    if args.command == "plan":
        return _plan_dict(await app.planner.run_plan(args.text, args.user, args.conversation))
    if args.command == "route":
        return await app.route(args.text, args.user, args.conversation)
    if args.command == "add-member":
        from chatplan.core.roles import parse_role

        role = parse_role(args.role) if args.role else None
        db = app.membership.db
        ids = db.participant_ids(args.conversation)
        db.add_conversation(args.conversation, [*ids, args.member_id])
        member = db.add_member(args.conversation, args.member_id, args.display_name, role)
        return {"id": member.id, "display_name": member.display_name, "role": member.role.value}
    if args.command == "set-role":
        member = app.membership.db.set_role(args.conversation, args.user, args.role, args.user)
        return {"id": member.id, "role": member.role.value}
    if args.command == "index":
        return {"passage_id": await app.retriever.index_message(args.conversation, args.text)}
    if args.command == "meetings":
        events = await app.scheduling.list_meetings(args.user, args.conversation, args.upcoming)
        return [_event_dict(ev) for ev in events]
    if args.command == "status":
        event = await app.scheduling.update_meeting_status(args.event_id, args.status, args.user)
        return _event_dict(event)
    if args.command == "delete":
        return {"deleted_for": await app.scheduling.delete_meeting(args.event_id, args.user)}
    if args.command == "reschedule":
        event = await app.scheduling.reschedule_meeting(args.event_id, args.user, args.when)
        return _event_dict(event)
    if args.command == "plans":
        return [_plan_dict(p) for p in await app.planner.list_plans(args.user, args.limit, args.conversation)]
    raise ValueError(f"unknown command {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        result = asyncio.run(_run(args))
    except ChatPlanError as exc:
        print(json.dumps({"error": exc.to_dict()}, indent=2, default=str))
        return 1
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
