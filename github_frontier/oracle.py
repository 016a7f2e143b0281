"""Existence oracle: one GitHub API call per numeric user ID."""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import aiohttp

from . import config

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    EXISTS = "exists"
    NOT_EXISTS = "not-exists"


@dataclass(frozen=True)
class Probe:
    """A definitive answer for one ID."""

    id: int
    outcome: Outcome
    metadata: Optional[dict] = None
    # Set when retries ran out and the governor assumed absence
    fail_closed: bool = False

    @property
    def exists(self) -> bool:
        return self.outcome is Outcome.EXISTS

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "exists": self.exists,
            "outcome": self.outcome.value,
            "user": self.metadata,
            "fail_closed": self.fail_closed,
        }


@dataclass(frozen=True)
class TransientFailure:
    """Neither exists nor not-exists: rate limiting, odd status or network error."""

    id: int
    status: Optional[int] = None
    retry_after: Optional[float] = None
    reason: str = ""

    @property
    def rate_limited(self) -> bool:
        return self.retry_after is not None


CheckResult = Union[Probe, TransientFailure]


def parse_user_response(data: dict) -> dict:
    return {
        "id": data.get("id"),
        "login": data.get("login"),
        "type": data.get("type"),
        "created_at": data.get("created_at"),
    }


def parse_retry_after(headers, now: float = None) -> float:
    """Seconds to wait after a rate-limited response.

    Prefers ``Retry-After``; falls back to the primary rate-limit reset time
    when the remaining budget is exhausted, then to the configured default.
    """
    value = headers.get("Retry-After")
    if value is not None:
        try:
            return max(0.0, float(value))
        except ValueError:
            logger.debug(f"Ignoring unparseable Retry-After header: {value!r}")

    if headers.get("X-RateLimit-Remaining") == "0" and headers.get("X-RateLimit-Reset"):
        if now is None:
            now = time.time()
        try:
            return max(0.0, float(headers["X-RateLimit-Reset"]) - now) + 1
        except ValueError:
            pass

    return float(config.DEFAULT_RATE_LIMIT_WAIT_SECONDS)


def build_headers(token: str = None, user_agent: str = config.USER_AGENT) -> dict:
    headers = {
        "Accept": config.ACCEPT_HEADER,
        "User-Agent": user_agent,
    }
    if token:
        headers["Authorization"] = f"token {token}"
    return headers


def open_session(timeout_seconds: float = config.REQUEST_TIMEOUT_SECONDS) -> aiohttp.ClientSession:
    """Create the HTTP session an oracle talks through. Must run inside an event loop."""
    connector = aiohttp.TCPConnector(limit=5)
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    return aiohttp.ClientSession(connector=connector, timeout=timeout)


class ExistenceOracle:
    """Classifies ``GET {base_url}/{id}`` into exists / not-exists / transient failure.

    No caching: an ID is checked at most a few times per search, and a cache
    could hide the end of a rate-limit window.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token: str = None,
        base_url: str = config.API_BASE_URL,
        user_agent: str = config.USER_AGENT,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.headers = build_headers(token, user_agent)

    async def check(self, user_id: int) -> CheckResult:
        if user_id < 1:
            raise ValueError(f"User IDs start at 1, got {user_id}")

        url = f"{self.base_url}/{user_id}"
        start = time.monotonic()
        try:
            async with self.session.get(url, headers=self.headers) as resp:
                elapsed_ms = int((time.monotonic() - start) * 1000)

                if resp.status == 200:
                    try:
                        data = await resp.json(content_type=None)
                        metadata = parse_user_response(data) if isinstance(data, dict) else None
                    except ValueError:
                        logger.warning(f"ID {user_id} exists but its body is not JSON")
                        metadata = None
                    logger.debug(f"ID {user_id}: exists ({elapsed_ms}ms)")
                    return Probe(user_id, Outcome.EXISTS, metadata)
                elif resp.status == 404:
                    logger.debug(f"ID {user_id}: not found ({elapsed_ms}ms)")
                    return Probe(user_id, Outcome.NOT_EXISTS)
                elif resp.status in config.RATE_LIMIT_STATUSES:
                    wait = parse_retry_after(resp.headers)
                    logger.warning(f"Rate limited ({resp.status}) on ID {user_id}, server asks for {wait:.0f}s")
                    return TransientFailure(user_id, resp.status, wait, "rate limited")
                else:
                    logger.error(f"Unexpected status {resp.status} for ID {user_id}")
                    return TransientFailure(user_id, resp.status, None, f"HTTP {resp.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Request error for ID {user_id}: {e!r}")
            return TransientFailure(user_id, None, None, type(e).__name__)
