import pytest

from github_frontier import config
from github_frontier.baseline import build_baseline
from github_frontier.oracle import Outcome, Probe, TransientFailure

F0 = 262_206_000


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeOracle:
    """In-memory oracle. IDs exist per ``exists`` (or ``<= frontier``).

    ``failures`` maps an ID to transient failures returned before the real answer.
    Each call advances ``clock`` by ``latency``.
    """

    def __init__(self, frontier=None, exists=None, failures=None, clock=None, latency=0.0):
        if exists is None:
            exists = lambda i: i <= frontier  # noqa: E731
        self.exists = exists
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.clock = clock
        self.latency = latency
        self.calls = []

    async def check(self, user_id):
        self.calls.append(user_id)
        if self.clock is not None:
            self.clock.advance(self.latency)
        queued = self.failures.get(user_id)
        if queued:
            return queued.pop(0)
        if self.exists(user_id):
            return Probe(user_id, Outcome.EXISTS, {
                "id": user_id, "login": f"user{user_id}", "type": "User",
                "created_at": "2026-02-20T12:00:00Z",
            })
        return Probe(user_id, Outcome.NOT_EXISTS)


class RecordingSleep:
    def __init__(self, clock=None):
        self.calls = []
        self.clock = clock

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


def rate_limited(user_id, wait=60.0, status=429):
    return TransientFailure(user_id, status, wait, "rate limited")


def server_error(user_id, status=502):
    return TransientFailure(user_id, status, None, f"HTTP {status}")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def baseline():
    return build_baseline(config.BASELINE)


@pytest.fixture
def scenario_baseline():
    """Closed strata summing to 203,993,745 and an open stratum with p_hat 0.864525."""
    return build_baseline({
        "frontier_m": 261_712_000,
        "strata": {
            "FIXED": {"start": 1, "end": 250_000_000,
                      "sample_count": 250_000_000, "valid_count": 203_993_745},
            "F7": {"start": 250_000_001, "end": None,
                   "sample_count": 1_000_000, "valid_count": 864_525},
        },
    })


@pytest.fixture
def history_path(tmp_path):
    return str(tmp_path / "data" / "history.json")
