"""Bounded retries, rate-limit waits and the shared search deadline.

One ``Deadline`` is shared by every probe of a search. A governor itself holds
no per-search state, so concurrent searches can share one instance.
"""

import asyncio
import logging
import time
from enum import Enum

from . import config
from .errors import DeadlineExceeded, RetriesExhausted
from .oracle import Outcome, Probe

logger = logging.getLogger(__name__)


class ExhaustedRetryPolicy(Enum):
    # Fail-closed: an unreachable ID counts as absent so the search terminates.
    # Under a sustained outage this can place the frontier too low.
    TREAT_AS_ABSENT = "treat-as-absent"
    PROPAGATE = "propagate"


class Deadline:
    def __init__(self, seconds: float, clock=time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self.started_at = clock()
        self.expires_at = self.started_at + seconds

    @property
    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def remaining(self) -> float:
        return self.expires_at - self._clock()

    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self):
        if self.expired():
            raise DeadlineExceeded(f"Deadline of {self.seconds:.1f}s exceeded after {self.elapsed:.1f}s")


class RetryGovernor:
    """Wraps an oracle with at most ``max_attempts`` attempts per ID."""

    def __init__(
        self,
        oracle,
        max_attempts: int = config.MAX_ATTEMPTS,
        default_backoff: float = config.DEFAULT_BACKOFF_SECONDS,
        policy: ExhaustedRetryPolicy = ExhaustedRetryPolicy.TREAT_AS_ABSENT,
        sleep=asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.oracle = oracle
        self.max_attempts = max_attempts
        self.default_backoff = default_backoff
        self.policy = policy
        self._sleep = sleep

    async def check_with_retry(self, user_id: int, deadline: Deadline = None) -> Probe:
        last_failure = None
        for attempt in range(1, self.max_attempts + 1):
            if deadline is not None:
                deadline.check()

            result = await self.oracle.check(user_id)
            if isinstance(result, Probe):
                return result

            last_failure = result
            if attempt == self.max_attempts:
                break

            wait = result.retry_after if result.rate_limited else self.default_backoff
            if deadline is not None and wait >= deadline.remaining():
                raise DeadlineExceeded(
                    f"Waiting {wait:.0f}s for ID {user_id} would pass the deadline "
                    f"({max(0.0, deadline.remaining()):.1f}s left)"
                )
            logger.info(f"ID {user_id}: {result.reason or 'transient failure'}, "
                        f"retrying in {wait:.0f}s (attempt {attempt + 1}/{self.max_attempts})")
            await self._sleep(wait)

        return self._exhausted(user_id, last_failure)

    def _exhausted(self, user_id: int, last_failure) -> Probe:
        if self.policy is ExhaustedRetryPolicy.PROPAGATE:
            raise RetriesExhausted(user_id, last_failure)
        logger.warning(f"ID {user_id}: {self.max_attempts} attempts failed, treating as absent")
        return Probe(user_id, Outcome.NOT_EXISTS, fail_closed=True)
