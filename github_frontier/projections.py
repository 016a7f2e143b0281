"""Linear growth projections from the daily ledger."""

import math
from datetime import datetime, timezone

import numpy as np

from . import config
from .baseline import Baseline
from .estimator import recompute


def average_daily_growth(entries: list[dict]) -> float:
    """Mean frontier growth per ledger entry; a default when history is too short."""
    if len(entries) < 2:
        return float(config.DEFAULT_DAILY_GROWTH)
    frontiers = np.array([e["frontier_id"] for e in entries], dtype=float)
    return float((frontiers[-1] - frontiers[0]) / max(len(frontiers) - 1, 1))


def project(
    frontier: int,
    daily_growth: float,
    baseline: Baseline,
    days=config.PROJECTION_DAYS,
) -> list[dict]:
    current = recompute(baseline, frontier)
    projections = []
    for d in days:
        projected_frontier = frontier + round(daily_growth * d)
        projected_total = recompute(baseline, projected_frontier)
        growth = projected_total - current
        projections.append({
            "days": d,
            "frontier_id": projected_frontier,
            "estimated_total": projected_total,
            "growth": growth,
            "growth_pct": growth / current * 100 if current else None,
        })
    return projections


def days_to_milestone(
    frontier: int,
    daily_growth: float,
    baseline: Baseline,
    milestone: int = config.NEXT_MILESTONE,
):
    """Whole days until the estimate reaches ``milestone``; None if it never will."""
    current = recompute(baseline, frontier)
    if current >= milestone:
        return 0
    daily_users = daily_growth * baseline.frontier_stratum.p_hat
    if daily_users <= 0:
        return None
    return math.ceil((milestone - current) / daily_users)


def growth_rate_per_hour(
    prev_frontier: int,
    prev_time: datetime,
    frontier: int,
    time: datetime,
):
    """New IDs per hour between two scans; None if time did not advance or IDs did not grow."""
    hours = (time - prev_time).total_seconds() / 3600
    ids = frontier - prev_frontier
    if hours <= 0 or ids <= 0:
        return None
    return round(ids / hours)


def entry_time(entry: dict) -> datetime:
    """Ledger entries carry only a date; treat them as recorded at 00:00 UTC."""
    return datetime.strptime(entry["date"], "%Y-%m-%d").replace(tzinfo=timezone.utc)


def growth_since_entry(entry: dict, frontier: int, time: datetime):
    return growth_rate_per_hour(int(entry["frontier_id"]), entry_time(entry), frontier, time)


def projections_report(entries: list[dict], baseline: Baseline, frontier: int = None) -> dict:
    if frontier is None:
        frontier = entries[-1]["frontier_id"] if entries else baseline.frontier_m
    growth = average_daily_growth(entries)
    return {
        "frontier_id": frontier,
        "estimated_total": recompute(baseline, frontier),
        "average_daily_growth": growth,
        "average_daily_users": round(growth * baseline.frontier_stratum.p_hat),
        "projections": project(frontier, growth, baseline),
        "next_milestone": config.NEXT_MILESTONE,
        "days_to_milestone": days_to_milestone(frontier, growth, baseline),
    }
