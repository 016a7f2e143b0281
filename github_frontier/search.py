"""Adaptive frontier search over the existence oracle.

Phases run strictly in order, each one starting from the best-known-good ID
left by the previous one:

  0. seed check      - does the last known frontier still exist?
  1. exponential     - probe seed + 1K, +2K, +4K ... until a miss (the overshoot)
  2. binary search   - narrow [best good, overshoot] down to a minimum gap
  3. fine scan       - step forward until too many consecutive misses

IDs are not allocated contiguously, so a single miss never ends the search;
only ``miss_tolerance`` consecutive misses in the fine scan do. Budgets with
``neighbor_probes`` also check the IDs right after a miss in phases 1 and 2,
so a deleted account at a probe point does not cap the bracket below the frontier.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from . import config
from .errors import DeadlineExceeded
from .governor import Deadline, RetryGovernor
from .oracle import Probe

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchBudget:
    name: str
    initial_step: int
    max_exponential_iterations: int
    binary_search_min_gap: int
    max_binary_iterations: int
    fine_step_size: int
    max_fine_iterations: Optional[int]  # None: scan until miss_tolerance is reached
    miss_tolerance: int
    deadline_seconds: float
    # IDs right after a miss that are checked before the miss is taken as past the frontier
    neighbor_probes: int = 0


INTERACTIVE_BUDGET = SearchBudget(
    name="interactive",
    initial_step=config.INTERACTIVE_INITIAL_STEP,
    max_exponential_iterations=config.INTERACTIVE_MAX_EXPONENTIAL_ITERATIONS,
    binary_search_min_gap=config.INTERACTIVE_BINARY_MIN_GAP,
    max_binary_iterations=config.INTERACTIVE_MAX_BINARY_ITERATIONS,
    fine_step_size=config.INTERACTIVE_FINE_STEP,
    max_fine_iterations=config.INTERACTIVE_MAX_FINE_ITERATIONS,
    miss_tolerance=config.INTERACTIVE_MISS_TOLERANCE,
    deadline_seconds=config.INTERACTIVE_DEADLINE_SECONDS,
    neighbor_probes=config.INTERACTIVE_NEIGHBOR_PROBES,
)

OFFLINE_BUDGET = SearchBudget(
    name="offline",
    initial_step=config.OFFLINE_INITIAL_STEP,
    max_exponential_iterations=config.OFFLINE_MAX_EXPONENTIAL_ITERATIONS,
    binary_search_min_gap=config.OFFLINE_BINARY_MIN_GAP,
    max_binary_iterations=config.OFFLINE_MAX_BINARY_ITERATIONS,
    fine_step_size=config.OFFLINE_FINE_STEP,
    max_fine_iterations=None,
    miss_tolerance=config.OFFLINE_MISS_TOLERANCE,
    deadline_seconds=config.OFFLINE_DEADLINE_SECONDS,
    neighbor_probes=config.OFFLINE_NEIGHBOR_PROBES,
)


@dataclass
class SearchState:
    """Everything one search invocation mutates. Never shared between searches."""

    seed: int
    deadline: Deadline
    best_known_good: int
    best_metadata: Optional[dict] = None
    trace: list = field(default_factory=list)
    phase: str = "seed"

    def advance(self, probe: Probe):
        if probe.exists and probe.id >= self.best_known_good:
            self.best_known_good = probe.id
            self.best_metadata = probe.metadata


@dataclass(frozen=True)
class SearchResult:
    frontier: int
    trace: list
    elapsed_ms: int
    truncated: bool
    seed_exists: Optional[bool] = None
    frontier_metadata: Optional[dict] = None
    stopped_in: str = ""

    @property
    def probes_count(self) -> int:
        return len(self.trace)

    def to_dict(self) -> dict:
        return {
            "frontier_id": self.frontier,
            "frontier_user": self.frontier_metadata,
            "truncated": self.truncated,
            "seed_exists": self.seed_exists,
            "stopped_in": self.stopped_in,
            "probes_count": self.probes_count,
            "probes": [p.to_dict() for p in self.trace],
            "probe_ms": self.elapsed_ms,
        }


async def _probe(governor: RetryGovernor, state: SearchState, target: int, on_probe) -> Probe:
    probe = await governor.check_with_retry(target, state.deadline)
    state.trace.append(probe)
    if on_probe:
        on_probe(probe)
    return probe


async def _neighbor_hit(governor, state, budget, missed: int, limit: Optional[int], on_probe) -> Optional[Probe]:
    """Check the IDs right after a miss; a hit means the miss was a gap, not the frontier."""
    for offset in range(1, budget.neighbor_probes + 1):
        target = missed + offset
        if limit is not None and target > limit:
            break
        probe = await _probe(governor, state, target, on_probe)
        if probe.exists:
            state.advance(probe)
            return probe
    return None


async def _seed_check(governor, state, on_probe) -> bool:
    probe = await _probe(governor, state, state.seed, on_probe)
    if probe.exists:
        state.advance(probe)
    else:
        # Assume the seed was superseded (deleted account), not that the frontier regressed
        logger.warning(f"Seed {state.seed} no longer exists; searching forward from it anyway")
    return probe.exists


async def _exponential_probe(governor, state, budget, upper_bound, on_probe) -> Optional[int]:
    """Returns the overshoot ID, or None if every probe within the bound existed."""
    step = budget.initial_step
    for _ in range(budget.max_exponential_iterations):
        target = state.seed + step
        if upper_bound is not None and target > upper_bound:
            target = upper_bound
        if target <= state.best_known_good:
            break

        probe = await _probe(governor, state, target, on_probe)
        if probe.exists:
            state.advance(probe)
        elif await _neighbor_hit(governor, state, budget, target, upper_bound, on_probe) is None:
            return target
        step *= 2

    logger.info(f"No overshoot within {budget.max_exponential_iterations} exponential probes "
                f"(last good {state.best_known_good}); gap exceeds the bracket, going to fine scan")
    return None


async def _binary_search(governor, state, budget, overshoot, on_probe):
    lo, hi = state.best_known_good, overshoot
    for _ in range(budget.max_binary_iterations):
        if hi - lo <= budget.binary_search_min_gap:
            break
        mid = (lo + hi) // 2
        probe = await _probe(governor, state, mid, on_probe)
        if probe.exists:
            lo = mid
            state.advance(probe)
            continue
        nearby = await _neighbor_hit(governor, state, budget, mid, hi - 1, on_probe)
        if nearby is not None:
            lo = nearby.id
        else:
            hi = mid
    logger.debug(f"Binary search left [{lo}, {hi}] (gap {hi - lo})")


async def _fine_scan(governor, state, budget, upper_bound, on_probe):
    target = state.best_known_good
    misses = 0
    iterations = 0
    while misses < budget.miss_tolerance:
        if budget.max_fine_iterations is not None and iterations >= budget.max_fine_iterations:
            break
        target += budget.fine_step_size
        if upper_bound is not None and target > upper_bound:
            break
        iterations += 1

        probe = await _probe(governor, state, target, on_probe)
        if probe.exists:
            state.advance(probe)
            misses = 0
        else:
            misses += 1


async def find_frontier(
    governor: RetryGovernor,
    seed: int,
    budget: SearchBudget = INTERACTIVE_BUDGET,
    upper_bound: int = None,
    clock=time.monotonic,
    on_probe: Callable[[Probe], None] = None,
) -> SearchResult:
    """Search forward from ``seed`` for the highest existing ID.

    Never raises on deadline: the best frontier found so far is returned with
    ``truncated=True``. The returned frontier is never below ``seed``.
    """
    if seed < 1:
        raise ValueError(f"Seed must be a positive ID, got {seed}")
    if upper_bound is not None and upper_bound < seed:
        raise ValueError(f"Upper bound {upper_bound} is below seed {seed}")

    state = SearchState(seed=seed, deadline=Deadline(budget.deadline_seconds, clock), best_known_good=seed)
    seed_exists = None
    truncated = False

    logger.info(f"Searching for frontier from {seed:,} ({budget.name} budget, "
                f"{budget.deadline_seconds:.0f}s deadline)")
    try:
        seed_exists = await _seed_check(governor, state, on_probe)

        state.phase = "exponential"
        overshoot = await _exponential_probe(governor, state, budget, upper_bound, on_probe)

        if overshoot is not None:
            state.phase = "binary"
            await _binary_search(governor, state, budget, overshoot, on_probe)

        state.phase = "fine"
        await _fine_scan(governor, state, budget, upper_bound, on_probe)
        state.phase = "done"
    except DeadlineExceeded as e:
        truncated = True
        logger.warning(f"{e}; returning best found so far: {state.best_known_good:,} "
                       f"(stopped in {state.phase} phase)")

    elapsed_ms = int(state.deadline.elapsed * 1000)
    logger.info(f"Frontier {state.best_known_good:,} after {len(state.trace)} probes in {elapsed_ms}ms")
    return SearchResult(
        frontier=state.best_known_good,
        trace=list(state.trace),
        elapsed_ms=elapsed_ms,
        truncated=truncated,
        seed_exists=seed_exists,
        frontier_metadata=state.best_metadata,
        stopped_in=state.phase,
    )
