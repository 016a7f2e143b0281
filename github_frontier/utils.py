"""Utility functions."""

import json
import logging
import os
import sys
import tempfile
from datetime import datetime


def setup_logging(level=logging.INFO, log_file: str = None):
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )


def format_large_number(n: float) -> str:
    if abs(n) >= 1e9:
        return f"{n/1e9:.2f}B"
    if abs(n) >= 1e6:
        return f"{n/1e6:.2f}M"
    if abs(n) >= 1e3:
        return f"{n/1e3:.1f}K"
    return f"{n:.0f}"


def _serialize(obj):
    if hasattr(obj, "tolist"):
        return obj.tolist()
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Cannot serialize {type(obj)}")


def dump_json(data) -> str:
    return json.dumps(data, indent=2, default=_serialize) + "\n"


def save_json_atomic(data, filepath: str):
    """Write JSON next to ``filepath`` and rename it into place."""
    directory = os.path.dirname(os.path.abspath(filepath))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(dump_json(data))
        os.replace(tmp_path, filepath)
    except BaseException:
        os.unlink(tmp_path)
        raise


def load_json(filepath: str):
    with open(filepath, "r") as f:
        return json.load(f)
