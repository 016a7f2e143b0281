"""Interactive probe interface: on-demand frontier scans and single-ID checks.

Requests never touch the history ledger; they only read it for a default seed.
"""

import logging
import time
from datetime import datetime, timezone

from aiohttp import web

from . import config
from .baseline import Baseline
from .errors import BaselineConfigError, HistoryError
from .estimator import baseline_summary, estimate_with_interval, recompute_snapshot
from .governor import RetryGovernor
from .history import load_history
from .oracle import ExistenceOracle, Probe, open_session
from .projections import growth_since_entry, projections_report
from .search import INTERACTIVE_BUDGET, SearchBudget, find_frontier

logger = logging.getLogger(__name__)

MODES = ("scan", "verify")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def run_scan(governor: RetryGovernor, baseline: Baseline, last: int,
                   budget: SearchBudget = INTERACTIVE_BUDGET, previous: dict = None) -> dict:
    """Bounded search from ``last``; ``previous`` is the latest ledger entry, if any."""
    result = await find_frontier(governor, last, budget)
    snapshot = estimate_with_interval(baseline, result.frontier)
    growth = None
    if previous is not None:
        growth = growth_since_entry(previous, result.frontier, datetime.now(timezone.utc))
    return {
        "mode": "scan",
        **result.to_dict(),
        "estimated_total": snapshot.point_estimate,
        "ci_lower": snapshot.ci_lower,
        "ci_upper": snapshot.ci_upper,
        "clamped": snapshot.clamped,
        "growth_per_hour": growth,
        "timestamp": snapshot.timestamp,
    }


async def run_verify(oracle, baseline: Baseline, user_id: int) -> dict:
    """One oracle call, no retries and no search."""
    start = time.monotonic()
    result = await oracle.check(user_id)
    if isinstance(result, Probe):
        exists, user, error = result.exists, result.metadata, None
    else:
        # Unknown, not absent: a rate limit says nothing about the ID
        exists, user, error = None, None, result.reason or "transient failure"
    snapshot = recompute_snapshot(baseline, user_id)
    return {
        "mode": "verify",
        "id": user_id,
        "exists": exists,
        "user": user,
        "error": error,
        "estimated_total": snapshot.point_estimate,
        "clamped": snapshot.clamped,
        "probe_ms": int((time.monotonic() - start) * 1000),
        "timestamp": _now(),
    }


BASELINE_KEY = web.AppKey("baseline", Baseline)
HISTORY_PATH_KEY = web.AppKey("history_path", str)
ORACLE_KEY = web.AppKey("oracle", object)
BUDGET_KEY = web.AppKey("budget", SearchBudget)


def _bad_request(message: str) -> web.Response:
    return web.json_response({"error": message}, status=400)


def _int_param(request: web.Request, name: str, default: int = None) -> int:
    raw = request.query.get(name)
    if raw is None:
        if default is None:
            raise ValueError(f"'{name}' is required")
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"'{name}' must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"'{name}' must be a positive ID, got {value}")
    return value


def _latest_entry(app: web.Application):
    try:
        entries = load_history(app[HISTORY_PATH_KEY])
    except HistoryError as e:
        logger.error(f"Ignoring unreadable history: {e}")
        return None
    return entries[-1] if entries else None


async def handle_probe(request: web.Request) -> web.Response:
    app = request.app
    mode = request.query.get("mode", "scan")
    if mode not in MODES:
        return _bad_request(f"'mode' must be one of {', '.join(MODES)}, got {mode!r}")
    previous = _latest_entry(app)
    default_seed = int(previous["frontier_id"]) if previous else config.DEFAULT_INTERACTIVE_FRONTIER
    try:
        last = _int_param(request, "last", default_seed)
        if mode == "verify":
            target = _int_param(request, "id", last)
    except ValueError as e:
        return _bad_request(str(e))

    baseline = app[BASELINE_KEY]
    oracle = app[ORACLE_KEY]
    if mode == "verify":
        return web.json_response(await run_verify(oracle, baseline, target))

    governor = RetryGovernor(oracle)
    return web.json_response(await run_scan(governor, baseline, last, app[BUDGET_KEY], previous))


async def handle_history(request: web.Request) -> web.Response:
    try:
        entries = load_history(request.app[HISTORY_PATH_KEY])
    except HistoryError as e:
        logger.error(str(e))
        return web.json_response({"error": str(e)}, status=500)
    return web.json_response(entries)


async def handle_projections(request: web.Request) -> web.Response:
    try:
        entries = load_history(request.app[HISTORY_PATH_KEY])
    except HistoryError as e:
        logger.error(str(e))
        return web.json_response({"error": str(e)}, status=500)
    return web.json_response(projections_report(entries, request.app[BASELINE_KEY]))


async def handle_baseline(request: web.Request) -> web.Response:
    return web.json_response(baseline_summary(request.app[BASELINE_KEY]))


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def _oracle_session(app: web.Application):
    async with open_session() as session:
        app[ORACLE_KEY] = ExistenceOracle(session, token=config.GITHUB_TOKEN)
        yield


def create_app(
    baseline: Baseline,
    history_path: str = config.HISTORY_PATH,
    oracle=None,
    budget: SearchBudget = INTERACTIVE_BUDGET,
) -> web.Application:
    """Build the web app. Without ``oracle`` a live GitHub client is opened on startup."""
    if baseline is None:
        raise BaselineConfigError("A validated baseline is required")

    app = web.Application()
    app[BASELINE_KEY] = baseline
    app[HISTORY_PATH_KEY] = history_path
    app[BUDGET_KEY] = budget
    if oracle is not None:
        app[ORACLE_KEY] = oracle
    else:
        app.cleanup_ctx.append(_oracle_session)

    app.router.add_get("/api/probe", handle_probe)
    app.router.add_get("/api/history", handle_history)
    app.router.add_get("/api/projections", handle_projections)
    app.router.add_get("/api/baseline", handle_baseline)
    app.router.add_get("/healthz", handle_health)
    return app
