"""Stratified estimator, rescaled to the live frontier.

All closed strata are fixed baseline facts. Only the open frontier stratum
moves: its size becomes ``frontier - start + 1`` and its contribution is that
size times the stratum's baseline validity rate.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import numpy as np

from . import config
from .baseline import Baseline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EstimateSnapshot:
    frontier: int
    point_estimate: int
    ci_lower: Optional[int] = None
    ci_upper: Optional[int] = None
    # True when the frontier fell below the open stratum and its size was clamped to 0
    clamped: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "frontier_id": self.frontier,
            "estimated_total": self.point_estimate,
            "ci_lower": self.ci_lower,
            "ci_upper": self.ci_upper,
            "clamped": self.clamped,
            "timestamp": self.timestamp,
        }


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def estimate_stratified(strata) -> float:
    """N_hat = sum(M_h * p_hat_h)."""
    return float(sum(s.size * s.p_hat for s in strata))


def stratified_variance(strata) -> float:
    """Var(N_hat) = sum(M_h^2 * p_h * (1 - p_h) / n_h)."""
    sizes = np.array([s.size for s in strata], dtype=float)
    p = np.array([s.p_hat for s in strata], dtype=float)
    n = np.array([s.sample_count for s in strata], dtype=float)
    return float(np.sum(sizes ** 2 * p * (1 - p) / n))


def is_regressed(baseline: Baseline, frontier: int) -> bool:
    return frontier < baseline.frontier_stratum.start_id - 1


def frontier_contribution(baseline: Baseline, frontier: int) -> float:
    return baseline.frontier_stratum.sized_to(frontier).contribution


def _unrounded(baseline: Baseline, frontier: int) -> float:
    return baseline.fixed_contribution + frontier_contribution(baseline, frontier)


def recompute(baseline: Baseline, frontier: int) -> int:
    """Point estimate for ``frontier``. Pure function of its inputs."""
    return round_half_up(_unrounded(baseline, frontier))


def standard_error(baseline: Baseline, frontier: int) -> float:
    open_stratum = baseline.frontier_stratum.sized_to(frontier)
    return float(np.sqrt(baseline.fixed_variance + open_stratum.variance))


def recompute_snapshot(baseline: Baseline, frontier: int, with_interval: bool = False) -> EstimateSnapshot:
    clamped = is_regressed(baseline, frontier)
    if clamped:
        logger.warning(
            f"Frontier {frontier:,} is below the open stratum start "
            f"{baseline.frontier_stratum.start_id:,}; clamping its size to 0"
        )

    estimate = _unrounded(baseline, frontier)
    if not with_interval:
        return EstimateSnapshot(frontier, round_half_up(estimate), clamped=clamped)

    margin = config.Z_95 * standard_error(baseline, frontier)
    return EstimateSnapshot(
        frontier,
        round_half_up(estimate),
        ci_lower=round_half_up(estimate - margin),
        ci_upper=round_half_up(estimate + margin),
        clamped=clamped,
    )


def estimate_with_interval(baseline: Baseline, frontier: int) -> EstimateSnapshot:
    """Point estimate plus analytic 95% CI; used by interactive scans."""
    return recompute_snapshot(baseline, frontier, with_interval=True)


def baseline_summary(baseline: Baseline) -> dict:
    """The study as it was: every stratum at its original size."""
    strata = baseline.strata
    point_estimate = estimate_stratified(strata)
    return {
        "frontier_m": baseline.frontier_m,
        "sample_count": baseline.sample_count,
        "point_estimate": round_half_up(point_estimate),
        "validity_rate": point_estimate / baseline.frontier_m,
        "analytic_standard_error": math.sqrt(stratified_variance(strata)),
        "reported_standard_error": baseline.reported_standard_error,
        "strata": [s.to_dict() for s in strata],
    }
