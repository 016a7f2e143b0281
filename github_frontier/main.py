"""Command-line entry points: the daily frontier update and interactive probes.

The daily job (``update``) is meant to run once a day from a single scheduler:
  1. Read the last frontier from the history ledger (or the baseline frontier)
  2. Run the offline search within [last, last + 5M] under an 8-minute cap
  3. Recompute the estimate with the open stratum extended to the new frontier
  4. Upsert today's ledger entry
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace

from aiohttp import web
from tqdm import tqdm

from . import config, history
from .baseline import Baseline, load_baseline
from .errors import FrontierError
from .estimator import baseline_summary, recompute_snapshot
from .governor import RetryGovernor
from .oracle import ExistenceOracle, open_session
from .projections import projections_report
from .search import INTERACTIVE_BUDGET, OFFLINE_BUDGET, find_frontier
from .service import create_app, run_scan, run_verify
from .utils import dump_json, format_large_number, save_json_atomic, setup_logging

logger = logging.getLogger(__name__)


# ─── Daily update ────────────────────────────────────────────────────────────

async def run_daily_update(
    baseline: Baseline,
    history_path: str,
    deadline_seconds: float = None,
    token: str = None,
    oracle=None,
) -> dict:
    logger.info("=" * 60)
    logger.info("DAILY FRONTIER UPDATE")
    logger.info("=" * 60)
    logger.info(f"Auth: {'token present (5000 req/hr)' if token else 'no token (60 req/hr, will be slow)'}")

    entries = history.load_history(history_path)
    seed = history.latest_frontier(entries, baseline.frontier_m)
    upper_bound = seed + config.SEARCH_WINDOW
    budget = OFFLINE_BUDGET
    if deadline_seconds is not None:
        budget = replace(budget, deadline_seconds=deadline_seconds)
    logger.info(f"Last known frontier: {seed:,} (searching up to {upper_bound:,})")

    pbar = tqdm(desc="Frontier probes", unit="probes")
    try:
        if oracle is None:
            async with open_session() as session:
                governor = RetryGovernor(ExistenceOracle(session, token=token))
                result = await find_frontier(governor, seed, budget, upper_bound=upper_bound,
                                             on_probe=lambda p: pbar.update(1))
        else:
            result = await find_frontier(RetryGovernor(oracle), seed, budget, upper_bound=upper_bound,
                                         on_probe=lambda p: pbar.update(1))
    finally:
        pbar.close()

    snapshot = recompute_snapshot(baseline, result.frontier)
    if snapshot.clamped:
        logger.warning("Estimate was computed from a clamped frontier")
    entry = history.upsert_entry(history_path, result.frontier, snapshot.point_estimate,
                                 fallback_frontier=baseline.frontier_m)

    logger.info(f"New frontier:  {result.frontier:,}{' (truncated search)' if result.truncated else ''}")
    logger.info(f"New estimate:  {snapshot.point_estimate:,} ({format_large_number(snapshot.point_estimate)})")
    logger.info(f"Daily new IDs: {entry['daily_new_ids']:,}")
    logger.info(f"Probes used:   {result.probes_count}")

    return {"search": result.to_dict(), "estimate": snapshot.to_dict(), "entry": entry}


# ─── Interactive probes from the command line ────────────────────────────────

async def run_probe(baseline: Baseline, mode: str, last: int, user_id: int = None, token: str = None,
                    previous: dict = None) -> dict:
    async with open_session() as session:
        oracle = ExistenceOracle(session, token=token)
        if mode == "verify":
            return await run_verify(oracle, baseline, last if user_id is None else user_id)
        return await run_scan(RetryGovernor(oracle), baseline, last, INTERACTIVE_BUDGET, previous)


# ─── CLI ─────────────────────────────────────────────────────────────────────

def positive_id(value: str) -> int:
    try:
        user_id = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"must be an integer, got {value!r}") from None
    if user_id < 1:
        raise argparse.ArgumentTypeError(f"must be a positive ID, got {user_id}")
    return user_id


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="GitHub frontier tracker and live user estimate")
    parser.add_argument("--baseline", default=config.BASELINE_PATH,
                        help="Baseline JSON (default: built-in study values)")
    parser.add_argument("--history", default=config.HISTORY_PATH, help="History ledger JSON")
    parser.add_argument("--log-file", default=config.LOG_PATH)
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    update = sub.add_parser("update", help="Daily frontier search + ledger update")
    update.add_argument("--deadline", type=float, default=None,
                        help=f"Wall-clock cap in seconds (default {config.OFFLINE_DEADLINE_SECONDS})")
    update.add_argument("--output", help="Also write the run summary and probe trace here")

    for name, help_text in (("scan", "Bounded interactive frontier scan"), ("verify", "Check a single ID")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--last", type=positive_id, default=None, help="Frontier to search from")
        if name == "verify":
            p.add_argument("--id", type=positive_id, default=None, dest="user_id")
        p.add_argument("--output")

    serve = sub.add_parser("serve", help="Serve /api/probe over HTTP")
    serve.add_argument("--host", default=config.SERVICE_HOST)
    serve.add_argument("--port", type=int, default=config.SERVICE_PORT)

    sub.add_parser("projections", help="Growth projections from the ledger")
    sub.add_parser("baseline", help="Show the baseline study strata")
    return parser


def _emit(data, output: str = None):
    if output:
        save_json_atomic(data, output)
        logger.info(f"Saved results to {output}")
    sys.stdout.write(dump_json(data))


def run(args) -> int:
    baseline = load_baseline(args.baseline)

    if args.command == "update":
        results = asyncio.run(run_daily_update(baseline, args.history, args.deadline, config.GITHUB_TOKEN))
        if args.output:
            save_json_atomic(results, args.output)
            logger.info(f"Saved results to {args.output}")
    elif args.command in ("scan", "verify"):
        entries = history.load_history(args.history)
        last = args.last
        if last is None:
            last = history.latest_frontier(entries, config.DEFAULT_INTERACTIVE_FRONTIER)
        previous = entries[-1] if entries else None
        user_id = getattr(args, "user_id", None)
        _emit(asyncio.run(run_probe(baseline, args.command, last, user_id, config.GITHUB_TOKEN, previous)),
              args.output)
    elif args.command == "serve":
        web.run_app(create_app(baseline, args.history), host=args.host, port=args.port)
    elif args.command == "projections":
        _emit(projections_report(history.load_history(args.history), baseline))
    elif args.command == "baseline":
        _emit(baseline_summary(baseline))
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)
    try:
        return run(args)
    except FrontierError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except Exception:
        logger.exception("Unhandled error")
        return 1


if __name__ == "__main__":
    sys.exit(main())
