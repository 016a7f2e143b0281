import asyncio
import json
import os

from aiohttp.test_utils import TestClient, TestServer

from conftest import F0, FakeOracle, server_error
from github_frontier import config
from github_frontier.estimator import recompute
from github_frontier.history import today_utc, upsert_entry
from github_frontier.service import create_app

SCAN_KEYS = {
    "mode", "frontier_id", "frontier_user", "estimated_total", "ci_lower", "ci_upper",
    "clamped", "truncated", "probes_count", "probes", "probe_ms", "growth_per_hour", "timestamp",
}


def _get(app, path, **params):
    async def go():
        async with TestClient(TestServer(app)) as client:
            resp = await client.get(path, params=params)
            return resp.status, await resp.json()

    return asyncio.run(go())


def test_scan(baseline, history_path):
    app = create_app(baseline, history_path, oracle=FakeOracle(frontier=F0 + 5_300))
    status, body = _get(app, "/api/probe", last=F0, mode="scan")

    assert status == 200
    assert SCAN_KEYS <= body.keys()
    assert body["frontier_id"] == F0 + 5_250
    assert body["estimated_total"] == recompute(baseline, F0 + 5_250)
    assert body["ci_lower"] < body["estimated_total"] < body["ci_upper"]
    assert body["probes_count"] == len(body["probes"]) == 11
    assert body["frontier_user"]["login"] == f"user{F0 + 5_250}"
    assert body["truncated"] is False


def test_scan_never_writes_history(baseline, history_path):
    app = create_app(baseline, history_path, oracle=FakeOracle(frontier=F0 + 5_300))
    _get(app, "/api/probe", last=F0)
    assert not os.path.exists(history_path)


def test_scan_defaults_to_latest_history_frontier(baseline, history_path):
    upsert_entry(history_path, F0 + 77, 1, fallback_frontier=F0, date="2026-02-20")
    oracle = FakeOracle(frontier=F0 + 5_300)
    app = create_app(baseline, history_path, oracle=oracle)
    status, _ = _get(app, "/api/probe", mode="scan")

    assert status == 200
    assert oracle.calls[0] == F0 + 77


def test_scan_reports_growth_since_latest_entry(baseline, history_path):
    upsert_entry(history_path, F0 + 77, 1, fallback_frontier=F0, date=today_utc())
    app = create_app(baseline, history_path, oracle=FakeOracle(frontier=F0 + 5_300))
    _, body = _get(app, "/api/probe", mode="scan")

    assert body["frontier_id"] > F0 + 77
    # Entry counts from 00:00 UTC today, so at most 24h have passed
    assert body["growth_per_hour"] >= (body["frontier_id"] - F0 - 77) // 24


def test_scan_without_history_has_no_growth_rate(baseline, history_path):
    app = create_app(baseline, history_path, oracle=FakeOracle(frontier=F0 + 5_300))
    _, body = _get(app, "/api/probe", last=F0)
    assert body["growth_per_hour"] is None


def test_scan_without_history_uses_default_seed(baseline, history_path):
    oracle = FakeOracle(frontier=F0)
    app = create_app(baseline, history_path, oracle=oracle)
    _get(app, "/api/probe")
    assert oracle.calls[0] == config.DEFAULT_INTERACTIVE_FRONTIER


def test_verify(baseline, history_path):
    app = create_app(baseline, history_path, oracle=FakeOracle(frontier=F0))
    status, body = _get(app, "/api/probe", mode="verify", id=F0)

    assert status == 200
    assert body["exists"] is True
    assert body["user"]["id"] == F0
    assert body["estimated_total"] == recompute(baseline, F0)


def test_verify_below_open_stratum_is_flagged_clamped(baseline, history_path):
    old_id = 42_000_000
    app = create_app(baseline, history_path, oracle=FakeOracle(frontier=F0))
    status, body = _get(app, "/api/probe", mode="verify", id=old_id)

    assert status == 200
    assert body["exists"] is True
    assert body["clamped"] is True
    assert body["estimated_total"] == recompute(baseline, old_id)

    _, body = _get(app, "/api/probe", mode="verify", id=F0)
    assert body["clamped"] is False


def test_verify_missing_id(baseline, history_path):
    oracle = FakeOracle(frontier=F0)
    app = create_app(baseline, history_path, oracle=oracle)
    _, body = _get(app, "/api/probe", mode="verify", last=F0 + 10)

    assert body["id"] == F0 + 10
    assert body["exists"] is False
    assert oracle.calls == [F0 + 10]


def test_verify_transient_failure_is_unknown_not_absent(baseline, history_path):
    oracle = FakeOracle(frontier=F0, failures={F0: [server_error(F0)]})
    app = create_app(baseline, history_path, oracle=oracle)
    status, body = _get(app, "/api/probe", mode="verify", id=F0)

    assert status == 200
    assert body["exists"] is None
    assert body["error"] == "HTTP 502"


def test_bad_requests(baseline, history_path):
    app = create_app(baseline, history_path, oracle=FakeOracle(frontier=F0))
    assert _get(app, "/api/probe", mode="explode")[0] == 400
    assert _get(app, "/api/probe", last="abc")[0] == 400
    assert _get(app, "/api/probe", last=0)[0] == 400
    assert _get(app, "/api/probe", mode="verify", id=-3)[0] == 400


def test_history_and_projections(baseline, history_path):
    upsert_entry(history_path, F0, 1, fallback_frontier=F0 - 400_000, date="2026-02-20")
    upsert_entry(history_path, F0 + 400_000, 2, fallback_frontier=F0 - 400_000, date="2026-02-21")
    app = create_app(baseline, history_path, oracle=FakeOracle(frontier=F0))

    status, entries = _get(app, "/api/history")
    assert status == 200
    assert [e["frontier_id"] for e in entries] == [F0, F0 + 400_000]

    status, report = _get(app, "/api/projections")
    assert status == 200
    assert report["average_daily_growth"] == 400_000
    assert report["frontier_id"] == F0 + 400_000


def test_corrupt_history_is_a_server_error(baseline, history_path):
    os.makedirs(os.path.dirname(history_path), exist_ok=True)
    with open(history_path, "w") as f:
        json.dump({"not": "a list"}, f)
    app = create_app(baseline, history_path, oracle=FakeOracle(frontier=F0))

    assert _get(app, "/api/history")[0] == 500
    # Scans still work, falling back to the default seed
    status, body = _get(app, "/api/probe")
    assert status == 200


def test_baseline_and_health(baseline, history_path):
    app = create_app(baseline, history_path, oracle=FakeOracle(frontier=F0))
    status, body = _get(app, "/api/baseline")
    assert status == 200
    assert len(body["strata"]) == 7
    assert _get(app, "/healthz") == (200, {"status": "ok"})
