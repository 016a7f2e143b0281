"""Append-only daily ledger of frontier and estimate, one entry per UTC day.

Stored as a JSON array sorted by date. Only two mutations exist: append a new
day, or overwrite the last entry when the job runs again on the same day.
Earlier entries are never rewritten or reordered.
"""

import fcntl
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone

from .errors import HistoryError
from .utils import load_json, save_json_atomic

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("date", "frontier_id", "estimated_total", "daily_new_ids")


def today_utc() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _validate(entries, path: str) -> list[dict]:
    if not isinstance(entries, list):
        raise HistoryError(f"{path}: expected a JSON array, got {type(entries).__name__}")
    previous_date = None
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict) or any(k not in entry for k in REQUIRED_FIELDS):
            raise HistoryError(f"{path}: entry {i} must have fields {', '.join(REQUIRED_FIELDS)}")
        if previous_date is not None and entry["date"] <= previous_date:
            raise HistoryError(f"{path}: entry {i} ({entry['date']}) is not after {previous_date}")
        previous_date = entry["date"]
    return entries


def load_history(path: str) -> list[dict]:
    if not os.path.exists(path):
        return []
    try:
        entries = load_json(path)
    except ValueError as e:
        raise HistoryError(f"{path}: not valid JSON ({e})") from e
    return _validate(entries, path)


def latest_frontier(entries: list[dict], fallback: int) -> int:
    if not entries:
        return fallback
    return int(entries[-1]["frontier_id"])


def merge_entry(
    entries: list[dict],
    date: str,
    frontier: int,
    estimate: int,
    fallback_frontier: int,
) -> tuple[list[dict], dict, bool]:
    """Return (new entries, the entry written, whether it replaced an existing one).

    ``daily_new_ids`` is measured against the entry preceding the written one,
    or against ``fallback_frontier`` when there is none.
    """
    replaced = bool(entries) and entries[-1]["date"] == date
    kept = entries[:-1] if replaced else list(entries)
    if kept and kept[-1]["date"] >= date:
        raise HistoryError(f"Cannot write {date}: history already ends at {kept[-1]['date']}")

    previous_frontier = latest_frontier(kept, fallback_frontier)
    entry = {
        "date": date,
        "frontier_id": int(frontier),
        "estimated_total": int(estimate),
        "daily_new_ids": int(frontier) - previous_frontier,
    }
    if entry["daily_new_ids"] < 0:
        logger.warning(f"Frontier {frontier:,} is below the previous entry's {previous_frontier:,}")
    return kept + [entry], entry, replaced


@contextmanager
def locked(path: str):
    """Exclusive advisory lock on ``<path>.lock`` for a read-modify-write."""
    lock_path = f"{path}.lock"
    os.makedirs(os.path.dirname(os.path.abspath(lock_path)), exist_ok=True)
    with open(lock_path, "w") as lock_file:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


def upsert_entry(
    path: str,
    frontier: int,
    estimate: int,
    fallback_frontier: int,
    date: str = None,
) -> dict:
    if date is None:
        date = today_utc()
    with locked(path):
        entries = load_history(path)
        entries, entry, replaced = merge_entry(entries, date, frontier, estimate, fallback_frontier)
        save_json_atomic(entries, path)

    if replaced:
        logger.info(f"Updated existing entry for {date}")
    else:
        logger.info(f"Added new entry for {date}")
    return entry
