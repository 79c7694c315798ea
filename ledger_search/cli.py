#!/usr/bin/env python3
"""
Find the XRP Ledger whose close time matches a target time.

Seeds a bracket from the latest validated ledger (or two explicit ledgers)
and narrows it by inverse-linear interpolation over ledger close times,
printing each probed ledger as it goes. The result is the ledger that closed
exactly at the target or the adjacent pair of ledgers closing on either side
of it.

Lookups go to a rippled JSON-RPC endpoint (default: the public full-history
cluster) or, with `--table`, to a JSONL file of recorded
`{"index": ..., "timestamp": ...}` rows.

Run:
  - `find-ledger` (ledger closing at 2019-12-31 23:59:59 UTC)
  - `find-ledger --target 2021-06-01T00:00:00Z --json`
  - `find-ledger --table ledgers.jsonl --seed explicit --bounds 32570 60000000`
"""

import argparse
import json
import logging
import os

from dotenv import load_dotenv

from ledger_search.config.logger_config import setup_logger
from ledger_search.errors import LedgerSearchError
from ledger_search.interpolation import DEGENERATE_POLICIES, InterpolationSearch, SearchEvent
from ledger_search.lookup import TableLookup
from ledger_search.ripple_time import DEFAULT_TARGET, format_ripple_time, parse_target, to_ripple_seconds
from ledger_search.rippled_client import DEFAULT_RETRIES, DEFAULT_TIMEOUT, DEFAULT_URL, RippledClient
from ledger_search.seeding import SEED_STRATEGIES, ExplicitSeed, LatestSeed

REPO_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
secrets_path = os.path.join(REPO_PATH, "secrets", ".env")

logger = logging.getLogger(__name__)


def _env_bool(value, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


def build_parser() -> argparse.ArgumentParser:
    load_dotenv(dotenv_path=secrets_path)

    parser = argparse.ArgumentParser(
        description="Find the XRP Ledger that closed at (or brackets) a target time."
    )
    parser.add_argument(
        "--target",
        type=parse_target,
        default=to_ripple_seconds(DEFAULT_TARGET),
        help="Target close time: Ripple-epoch seconds or ISO-8601 (default: 2019-12-31T23:59:59Z)",
    )
    parser.add_argument(
        "--url",
        default=os.getenv("RIPPLED_URL", DEFAULT_URL),
        help=f"rippled JSON-RPC endpoint (default: $RIPPLED_URL or {DEFAULT_URL})",
    )
    parser.add_argument(
        "--table",
        default=None,
        help="Search a JSONL file of {index, timestamp} rows instead of a rippled server.",
    )
    parser.add_argument(
        "--seed",
        choices=sorted(SEED_STRATEGIES),
        default=LatestSeed.name,
        help="How to pick the initial bracket (default: latest)",
    )
    parser.add_argument(
        "--offset",
        type=int,
        default=10,
        help="With --seed latest: distance of the second seed below the latest ledger (default: 10)",
    )
    parser.add_argument(
        "--bounds",
        type=int,
        nargs=2,
        metavar=("FIRST", "SECOND"),
        help="With --seed explicit: the two seed ledger indices.",
    )
    parser.add_argument("--max-iterations", type=int, default=100, help="Iteration cap (default: 100)")
    parser.add_argument(
        "--degenerate",
        choices=DEGENERATE_POLICIES,
        default="raise",
        help="Policy for a bracket whose bounds closed at the same time (default: raise)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=float(os.getenv("RIPPLED_TIMEOUT", DEFAULT_TIMEOUT)),
        help="Per-request timeout in seconds",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=int(os.getenv("RIPPLED_RETRIES", DEFAULT_RETRIES)),
        help="HTTP retries on transient server errors",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        default=not _env_bool(os.getenv("RIPPLED_VERIFY_TLS"), True),
        help="Skip TLS certificate verification.",
    )
    parser.add_argument("--json", action="store_true", help="Print the final result as one JSON object.")
    parser.add_argument("--log-dir", default=None, help="Also write a per-run log file to this directory.")
    parser.add_argument("--debug", action="store_true", help="Log every iteration of the search.")
    return parser


def _print_event(event: SearchEvent) -> None:
    print(f"{{{event.index}, {event.timestamp}, {format_ripple_time(event.timestamp)}}}", flush=True)


def _build_seed(args, parser):
    if args.seed == ExplicitSeed.name:
        if not args.bounds:
            parser.error("--seed explicit requires --bounds FIRST SECOND")
        try:
            return ExplicitSeed(*args.bounds)
        except ValueError as exc:
            parser.error(str(exc))
    try:
        return LatestSeed(offset=args.offset)
    except ValueError as exc:
        parser.error(str(exc))


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logger(None, log_dir=args.log_dir, debug_mode=args.debug)

    seed = _build_seed(args, parser)
    search = InterpolationSearch(
        seed=seed,
        max_iterations=args.max_iterations,
        degenerate=args.degenerate,
        observer=None if args.json else _print_event,
    )

    if not args.json:
        print(f"Looking for {{ledger at, {args.target}, {format_ripple_time(args.target)}}}")

    table = None
    if args.table:
        try:
            table = TableLookup.from_jsonl(args.table)
        except (OSError, ValueError) as exc:
            logger.error("Could not load ledger table %s: %s", args.table, exc)
            return 1

    try:
        if table is not None:
            outcome = search.run(args.target, table)
        else:
            with RippledClient(
                args.url, timeout=args.timeout, retries=args.retries, verify=not args.insecure
            ) as client:
                outcome = search.run(args.target, client)
    except LedgerSearchError as exc:
        logger.error("Search failed: %s", exc)
        return 1

    if args.json:
        print(json.dumps(outcome.as_record(), ensure_ascii=False))
        return 0

    print("---")
    if outcome.out_of_range is not None:
        s = outcome.nearest
        print(f"{{{s.index}, {s.timestamp}, {format_ripple_time(s.timestamp)}}}")
        side = "precedes the first" if outcome.out_of_range == "below" else "follows the last"
        print(f"Target {side} available ledger {s.index} ({outcome.lookups} lookups)")
        return 0
    if outcome.is_exact:
        s = outcome.exact
        print(f"{{{s.index}, {s.timestamp}, {format_ripple_time(s.timestamp)}}}")
    else:
        for s in (outcome.lower, outcome.upper):
            print(f"{{{s.index}, {s.timestamp}, {format_ripple_time(s.timestamp)}}}")
    print(f"Found ledger {outcome.found_index} in {outcome.lookups} lookups")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
