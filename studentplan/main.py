import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from datetime import date
from typing import Optional, Sequence

from studentplan.config import settings as env_settings
from studentplan.db.connection import ensure_schema
from studentplan.db.repos.custom_events_repo import new_custom_event_id
from studentplan.logging_setup import setup_logging
from studentplan.plan.fetcher import PlanFetcher
from studentplan.plan.layout import LayoutConfig
from studentplan.plan.custom_merge import parse_time_minutes
from studentplan.plan.models import CustomEvent, CustomEventType, ViewMode
from studentplan.services.date_service import parse_ymd
from studentplan.services.plan_service import PlanService
from studentplan.services.refresh_service import ensure_refresh_job, init_scheduler, scheduler
from studentplan.services.scope_cache import ScopeCache
from studentplan.services.session_provider import EnvSessionProvider, SessionProvider


def build_service(session_provider: Optional[SessionProvider] = None) -> PlanService:
    fetcher = PlanFetcher.from_settings()
    return PlanService(
        session_provider=session_provider or EnvSessionProvider(),
        cache=ScopeCache(fetcher),
        fetcher=fetcher,
        layout_config=LayoutConfig.from_settings(),
        tz=env_settings.TZ,
    )


def _date_arg(value: str) -> date:
    try:
        return parse_ymd(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def _time_arg(value: str) -> str:
    if parse_time_minutes(value) is None:
        raise argparse.ArgumentTypeError(f"expected HH:MM, got {value!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="studentplan", description="Class schedule (plan) client")
    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="Print a day/week/month view as JSON")
    show.add_argument("--view", choices=[mode.value for mode in ViewMode], default=ViewMode.WEEK.value)
    show.add_argument("--date", type=_date_arg, default=None)
    show.add_argument("--force", action="store_true", help="Refresh the scope even if fresh")
    show.add_argument("--full", action="store_true", help="Refetch the whole schedule first")

    filters = sub.add_parser("filters", help="Print subject filters for the current term")
    filters.add_argument("--force", action="store_true")

    search = sub.add_parser("search", help="Look up a plan by teacher/room/group/subject/number")
    search.add_argument("category")
    search.add_argument("query")
    search.add_argument("--view", choices=[mode.value for mode in ViewMode], default=ViewMode.WEEK.value)
    search.add_argument("--date", type=_date_arg, default=None)

    custom = sub.add_parser("custom", help="Manage custom exams/passes/tests")
    custom_sub = custom.add_subparsers(dest="custom_command", required=True)
    listing = custom_sub.add_parser("list")
    listing.add_argument("--date", type=_date_arg, default=None)
    custom_sub.add_parser("subjects", help="Subject names used by saved events")
    custom_sub.add_parser("clear", help="Delete all custom events")
    add = custom_sub.add_parser("add")
    add.add_argument("subject")
    add.add_argument("--type", choices=[kind.value for kind in CustomEventType], default=CustomEventType.TEST.value)
    add.add_argument("--date", type=_date_arg, required=True)
    add.add_argument("--start", type=_time_arg, default=None)
    add.add_argument("--end", type=_time_arg, default=None)
    add.add_argument("--notes", default="")
    add.add_argument("--id", type=int, default=None, help="Overwrite an existing event")
    delete = custom_sub.add_parser("delete")
    delete.add_argument("id", type=int)

    sub.add_parser("clear-cache", help="Drop the cached schedule")
    sub.add_parser("serve", help="Keep the cache warm in the background")
    return parser


def _dump(payload) -> None:
    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2, default=str)
    sys.stdout.write("\n")


async def _serve(service: PlanService) -> None:
    init_scheduler(timezone=env_settings.TZ)
    if not ensure_refresh_job(service, env_settings.PLAN_REFRESH_INTERVAL_MINUTES):
        logging.warning("PLAN_REFRESH_INTERVAL_MINUTES is 0; nothing to serve.")
        return
    await service.warm_up()
    scheduler.start()
    logging.info("Background refresh running every %s min.", env_settings.PLAN_REFRESH_INTERVAL_MINUTES)
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)


def _custom_payload(event: CustomEvent) -> dict:
    data = asdict(event)
    data["event_type"] = event.event_type.value
    return data


async def _custom(service: PlanService, args) -> int:
    if args.custom_command == "list":
        date_key = args.date.strftime("%Y-%m-%d") if args.date else None
        _dump([_custom_payload(event) for event in await service.list_custom_events(date_key)])
        return 0

    if args.custom_command == "subjects":
        _dump(await service.saved_custom_subjects())
        return 0

    if args.custom_command == "clear":
        _dump({"removed": await service.clear_custom_events()})
        return 0

    if args.custom_command == "delete":
        if not await service.delete_custom_event(args.id):
            logging.error("No custom event with id=%s", args.id)
            return 1
        return 0

    if args.start and args.end and parse_time_minutes(args.end) <= parse_time_minutes(args.start):
        logging.error("End time %s is not after start time %s", args.end, args.start)
        return 1

    event = CustomEvent(
        id=args.id if args.id is not None else new_custom_event_id(),
        subject_name=args.subject.strip(),
        event_type=CustomEventType(args.type),
        date=args.date.strftime("%Y-%m-%d"),
        start_time=args.start or "",
        end_time=args.end or "",
        notes=args.notes,
    )
    _dump(_custom_payload(await service.save_custom_event(event)))
    return 0


async def run(argv: Optional[Sequence[str]] = None, service: Optional[PlanService] = None) -> int:
    args = build_parser().parse_args(argv)
    service = service or build_service()

    if args.command == "show":
        result = await service.load_plan(
            ViewMode(args.view),
            args.date,
            force_full_refresh=args.full,
            force_scope_refresh=args.force,
        )
        _dump(asdict(result))
    elif args.command == "filters":
        items = await service.load_subjects_for_filter(force_refresh=args.force)
        _dump([asdict(item) for item in items])
    elif args.command == "search":
        result = await service.search_plan(ViewMode(args.view), args.date, args.category, args.query)
        _dump(asdict(result))
    elif args.command == "custom":
        return await _custom(service, args)
    elif args.command == "clear-cache":
        await service.clear_cache()
    elif args.command == "serve":
        await _serve(service)
    return 0


async def main(argv: Optional[Sequence[str]] = None) -> int:
    setup_logging()
    await ensure_schema()
    return await run(argv)


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logging.info("Stopped by user!")
    except Exception as e:
        logging.error(f"Fatal error: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    cli()
