"""Baseline stratum model from the one-time stratified sampling study.

Loaded once at startup and validated eagerly: a malformed baseline fails here,
never at estimate time.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from . import config
from .errors import BaselineConfigError
from .utils import load_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stratum:
    stratum_id: str
    start_id: int
    end_id: Optional[int]  # None for the open frontier stratum
    size: int
    sample_count: int
    valid_count: int

    @property
    def is_open(self) -> bool:
        return self.end_id is None

    @property
    def p_hat(self) -> float:
        return self.valid_count / self.sample_count

    @property
    def contribution(self) -> float:
        return self.size * self.p_hat

    @property
    def variance(self) -> float:
        """Variance of ``size * p_hat`` under simple random sampling."""
        p = self.p_hat
        return (self.size ** 2) * p * (1 - p) / self.sample_count

    def sized_to(self, frontier: int) -> "Stratum":
        """Open stratum extended (or shrunk) to end at ``frontier``; never negative."""
        return replace(self, size=max(0, frontier - self.start_id + 1))

    def to_dict(self) -> dict:
        return {
            "id": self.stratum_id,
            "start": self.start_id,
            "end": self.end_id,
            "size": self.size,
            "sample_count": self.sample_count,
            "valid_count": self.valid_count,
            "p_hat": self.p_hat,
            "contribution": self.contribution,
        }


@dataclass(frozen=True)
class Baseline:
    strata: tuple
    frontier_m: int
    reported_standard_error: Optional[float]
    fixed_variance: float

    @property
    def closed_strata(self) -> tuple:
        return self.strata[:-1]

    @property
    def frontier_stratum(self) -> Stratum:
        return self.strata[-1]

    @property
    def fixed_contribution(self) -> float:
        return sum(s.contribution for s in self.closed_strata)

    @property
    def sample_count(self) -> int:
        return sum(s.sample_count for s in self.strata)


def _parse_stratum(sid: str, raw: dict, frontier_m: int) -> Stratum:
    try:
        start = int(raw["start"])
        end = raw.get("end")
        end = int(end) if end is not None else None
        n = int(raw["sample_count"])
        valid = int(raw["valid_count"])
    except (KeyError, TypeError, ValueError) as e:
        raise BaselineConfigError(f"Stratum {sid}: missing or non-integer field ({e})") from e

    if start < 1:
        raise BaselineConfigError(f"Stratum {sid}: start must be >= 1, got {start}")
    if n <= 0:
        raise BaselineConfigError(f"Stratum {sid}: sample_count must be positive, got {n}")
    if not 0 <= valid <= n:
        raise BaselineConfigError(f"Stratum {sid}: valid_count {valid} outside [0, {n}]")

    if end is None:
        size = frontier_m - start + 1
    else:
        if end < start:
            raise BaselineConfigError(f"Stratum {sid}: end {end} before start {start}")
        size = end - start + 1
    if "size" in raw and raw["size"] is not None and int(raw["size"]) != size:
        raise BaselineConfigError(f"Stratum {sid}: size {raw['size']} does not match its range ({size})")

    return Stratum(sid, start, end, size, n, valid)


def _check_layout(strata: list[Stratum]):
    if not strata:
        raise BaselineConfigError("Baseline has no strata")
    for prev, cur in zip(strata, strata[1:]):
        if prev.is_open:
            raise BaselineConfigError(f"Open stratum {prev.stratum_id} must be the last one")
        if cur.start_id != prev.end_id + 1:
            raise BaselineConfigError(
                f"Strata {prev.stratum_id} and {cur.stratum_id} are not contiguous "
                f"({prev.end_id} -> {cur.start_id})"
            )
    if not strata[-1].is_open:
        raise BaselineConfigError(f"Last stratum {strata[-1].stratum_id} must be open-ended (end: null)")


def build_baseline(raw: dict) -> Baseline:
    """Validate a raw baseline mapping and derive the fixed variance term."""
    try:
        frontier_m = int(raw["frontier_m"])
        raw_strata = raw["strata"]
    except (KeyError, TypeError, ValueError) as e:
        raise BaselineConfigError(f"Baseline needs 'frontier_m' and 'strata' ({e})") from e

    if isinstance(raw_strata, dict):
        items = list(raw_strata.items())
    else:
        items = [
            (s.get("id", f"S{i + 1}") if isinstance(s, dict) else f"S{i + 1}", s)
            for i, s in enumerate(raw_strata)
        ]
    strata = [_parse_stratum(sid, s, frontier_m) for sid, s in items]
    _check_layout(strata)

    open_stratum = strata[-1]
    if open_stratum.size < 0:
        raise BaselineConfigError(
            f"frontier_m {frontier_m} is below the open stratum start {open_stratum.start_id}"
        )

    reported_se = raw.get("reported_standard_error")
    if reported_se is not None:
        try:
            reported_se = float(reported_se)
        except (TypeError, ValueError) as e:
            raise BaselineConfigError(f"reported_standard_error is not a number: {reported_se!r}") from e
        # Remove the open stratum's share so it can be re-added at the live frontier
        fixed_variance = reported_se ** 2 - open_stratum.variance
        if fixed_variance < 0:
            raise BaselineConfigError(
                f"Reported SE {reported_se:,.0f} is smaller than the open stratum's own "
                f"standard error ({open_stratum.variance ** 0.5:,.0f})"
            )
    else:
        fixed_variance = sum(s.variance for s in strata[:-1])

    baseline = Baseline(tuple(strata), frontier_m, reported_se, fixed_variance)
    logger.debug(f"Baseline: {len(strata)} strata, {baseline.sample_count:,} samples, "
                 f"fixed contribution {baseline.fixed_contribution:,.0f}")
    return baseline


def load_baseline(path: str = None) -> Baseline:
    """Load the baseline from a JSON file, or the built-in study values."""
    if path is None:
        path = config.BASELINE_PATH
    if path is None:
        return build_baseline(config.BASELINE)
    try:
        raw = load_json(path)
    except (OSError, ValueError) as e:
        raise BaselineConfigError(f"Cannot read baseline {path}: {e}") from e
    logger.info(f"Loaded baseline from {path}")
    return build_baseline(raw)
