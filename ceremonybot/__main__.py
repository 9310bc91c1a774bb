"""Command-line entry for ceremonybot.

Subcommands:
  serve   run the HTTP API and the notification scheduler (default)
  query   print occurrences for a window as JSON
  tick    run one scheduler tick and print its outcome as JSON
"""

from __future__ import annotations

import argparse
import asyncio
import datetime
import json
import logging
import os
import sys
from typing import Any, NoReturn, Optional

from . import _init_logging, run_server
from .exceptions import CeremonyBotError

logger = logging.getLogger(__name__)


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the ceremonybot CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="ceremonybot",
        description="ceremonybot - ceremony calendar and reminder engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m ceremonybot                                  # API + scheduler on port 8080
  python -m ceremonybot serve --port 3000                # API + scheduler on port 3000
  python -m ceremonybot query --start 2024-01-01T00:00:00Z --end 2024-02-01T00:00:00Z
  python -m ceremonybot tick --now 2024-01-02T08:45:00Z
        """,
    )
    parser.add_argument("--config", metavar="PATH", help="YAML or JSON config file")

    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API and scheduler")
    serve.add_argument("--port", type=int, metavar="PORT", help="Port for the web server")
    serve.add_argument("--host", metavar="HOST", help="Address to bind")

    query = sub.add_parser("query", help="Print occurrences in a window as JSON")
    query.add_argument("--start", required=True, help="Window start (ISO-8601)")
    query.add_argument("--end", required=True, help="Window end, exclusive (ISO-8601)")
    query.add_argument("--ceremony-type", dest="ceremony_type")
    query.add_argument("--team", dest="team_id")
    query.add_argument("--art", dest="art_id")
    query.add_argument("--pi", dest="pi_id")
    query.add_argument("--status")
    query.add_argument("--include-completed", action="store_true")
    query.add_argument("--search", dest="free_text", help="Case-insensitive text match")

    tick = sub.add_parser("tick", help="Run one scheduler tick")
    tick.add_argument("--now", help="Tick time (ISO-8601); defaults to the current time")

    return parser


def _run_query(args: argparse.Namespace) -> int:
    from .config_loader import load_config
    from .models import QueryFilters, TimeWindow
    from .query_engine import EventQueryEngine
    from .recurrence import ExpanderConfig
    from .store import JsonEventStore
    from .timeutils import parse_iso

    cfg = load_config(args.config)
    engine = EventQueryEngine(JsonEventStore(cfg.store_path), ExpanderConfig.from_settings(cfg))
    window = TimeWindow(start=parse_iso(args.start), end=parse_iso(args.end))
    filters = QueryFilters(
        ceremony_type=args.ceremony_type,
        team_id=args.team_id,
        art_id=args.art_id,
        pi_id=args.pi_id,
        status=args.status,
        include_completed=args.include_completed,
        free_text=args.free_text,
    )
    occurrences = engine.query(window, filters)
    json.dump([o.to_api_model() for o in occurrences], sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


async def _tick_once(services: Any, now: Optional[datetime.datetime]) -> Any:
    """Run one scheduler tick, then close the dispatch sinks on the same loop."""
    try:
        return await services.scheduler.tick(now)
    finally:
        for close in services.closers:
            try:
                await close()
            except Exception as e:
                logger.warning("Error closing dispatch sink: %s", e)


def _run_tick(args: argparse.Namespace) -> int:
    from .config_loader import load_config
    from .server import build_services
    from .timeutils import parse_iso, serialize_iso

    cfg = load_config(args.config)
    services = build_services(cfg)
    now = parse_iso(args.now) if args.now else None
    result = asyncio.run(_tick_once(services, now))
    summary = {
        "window": (
            {"start": serialize_iso(result.window.start), "end": serialize_iso(result.window.end)}
            if result.window
            else None
        ),
        "created": [n.model_dump(mode="json") for n in result.created],
        "suppressed": result.suppressed,
        "duplicates": result.duplicates,
        "failed": result.failed,
        "advanced": result.advanced,
    }
    json.dump(summary, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0 if result.advanced else 1


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the ceremonybot CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    if args.command in (None, "serve"):
        run_server(args)
        sys.exit(0)

    _init_logging(os.environ.get("CEREMONYBOT_LOG_LEVEL", "WARNING"))
    try:
        if args.command == "query":
            sys.exit(_run_query(args))
        sys.exit(_run_tick(args))
    except (CeremonyBotError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
