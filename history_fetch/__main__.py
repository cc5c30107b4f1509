"""
History Fetch CLI Entrypoint

Commands:
    history-fetch fetch      Fetch channel history and print it as JSON
    history-fetch version    Show version info

Examples:
    python -m history_fetch fetch --channel chat --limit 250 --demo
    python -m history_fetch fetch --channel chat --between 15000000000000000 15000000000001000
    HISTORY_SUBSCRIBE_KEY=sub-c-... python -m history_fetch fetch --channel chat
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, NoReturn, Optional

from history_fetch.core import constants as C
from history_fetch.core.config import HistoryConfig
from history_fetch.core.errors import HistoryError
from history_fetch.core.types import Result, TimeToken
from history_fetch.history.models import HistoryResult
from history_fetch.history.orchestrator import HistoryOrchestrator
from history_fetch.history.query import HistoryQuery
from history_fetch.observability.logging import LogLevel, setup_logging
from history_fetch.reliability.retry import RetryPolicy, fetch_with_retry
from history_fetch.transport.http import HttpPageFetcher
from history_fetch.transport.memory import InMemoryPageFetcher

DEMO_EVENTS: int = 320
DEMO_FIRST_TOKEN: int = 15_000_000_000_000_000
DEMO_STEP: int = 10_000


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "fetch":
        sys.exit(_run_fetch(args))
    if args.command == "version":
        print(f"history-fetch {_get_version()}")
        sys.exit(0)

    parser.print_help()
    sys.exit(0)


def run() -> NoReturn:
    main()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="history-fetch",
        description="Fetch channel history across bounded page calls",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    fetch_parser = subparsers.add_parser("fetch", help="Fetch channel history")
    fetch_parser.add_argument("--channel", "-c", required=True, help="Channel name")
    fetch_parser.add_argument(
        "--limit", "-n",
        type=int,
        default=None,
        help="Maximum events, 0 for everything (default: 100, or 0 with --between)",
    )
    fetch_parser.add_argument("--start", help="Exclusive lower bound token")
    fetch_parser.add_argument("--end", help="Exclusive upper bound token")

    shape = fetch_parser.add_mutually_exclusive_group()
    shape.add_argument("--older-than", metavar="TOKEN", help="Events older than TOKEN")
    shape.add_argument("--newer-than", metavar="TOKEN", help="Events newer than TOKEN")
    shape.add_argument(
        "--between",
        nargs=2,
        metavar=("T1", "T2"),
        help="Every event strictly between two tokens",
    )

    fetch_parser.add_argument(
        "--include-timetoken",
        action="store_true",
        help="Attach each event's time token",
    )
    fetch_parser.add_argument(
        "--reverse",
        action="store_true",
        help="Print newest events first",
    )
    fetch_parser.add_argument(
        "--demo",
        action="store_true",
        help=f"Use a seeded in-memory store ({DEMO_EVENTS} events) instead of HTTP",
    )

    subparsers.add_parser("version", help="Show version info")
    return parser


def build_query(args: argparse.Namespace, page_size: int) -> Result[HistoryQuery, HistoryError]:
    """Translate parsed arguments into a validated query."""
    options: dict[str, Any] = {
        "page_size": page_size,
        "include_timetoken": args.include_timetoken,
        "reverse": args.reverse,
    }

    if args.between:
        limit = C.UNBOUNDED_LIMIT if args.limit is None else args.limit
        return HistoryQuery.between(args.channel, args.between, limit, **options)

    limit = C.MAX_PAGE_SIZE if args.limit is None else args.limit
    if args.older_than:
        return HistoryQuery.older_than(args.channel, args.older_than, limit, **options)
    if args.newer_than:
        return HistoryQuery.newer_than(args.channel, args.newer_than, limit, **options)
    return HistoryQuery.create(
        args.channel,
        start=args.start,
        end=args.end,
        limit=limit,
        **options,
    )


def _run_fetch(args: argparse.Namespace) -> int:
    config_result = HistoryConfig.from_env()
    if config_result.is_err():
        print(f"Configuration error: {config_result.error}", file=sys.stderr)
        return 2

    config = config_result.unwrap()
    validation = config.validate()
    if validation.is_err():
        print(f"Validation error: {validation.error}", file=sys.stderr)
        return 2

    setup_logging(
        level=LogLevel.from_name(config.observability.log_level),
        json_output=config.observability.log_json,
    )

    query_result = build_query(args, config.fetch.page_size)
    if query_result.is_err():
        _print_json({"error": query_result.error.to_dict()})
        return 1

    result = asyncio.run(_fetch(config, query_result.unwrap(), demo=args.demo))
    if result.is_err():
        _print_json({"error": result.error.to_dict()})
        return 1

    _print_json(result.unwrap().to_dict())
    return 0


async def _fetch(
    config: HistoryConfig,
    query: HistoryQuery,
    demo: bool = False,
) -> Result[HistoryResult, HistoryError]:
    policy = RetryPolicy.from_config(config.reliability)

    if demo:
        fetcher = InMemoryPageFetcher()
        fetcher.seed(
            query.channel,
            ({"text": f"message {i}"} for i in range(DEMO_EVENTS)),
            first_token=TimeToken(DEMO_FIRST_TOKEN),
            step=DEMO_STEP,
        )
        orchestrator = HistoryOrchestrator.from_config(config, fetcher)
        return await fetch_with_retry(orchestrator, query, policy)

    async with HttpPageFetcher(config.service) as fetcher:
        orchestrator = HistoryOrchestrator.from_config(config, fetcher)
        return await fetch_with_retry(orchestrator, query, policy)


def _print_json(data: dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, default=str))


def _get_version() -> str:
    """Get package version."""
    from history_fetch import __version__
    return __version__


if __name__ == "__main__":
    main()
