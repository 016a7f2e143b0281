"""Exception hierarchy for the frontier tracker."""


class FrontierError(Exception):
    """Base class for all errors raised by github_frontier."""


class BaselineConfigError(FrontierError):
    """The baseline stratum model is malformed. Raised at load time."""


class HistoryError(FrontierError):
    """The history ledger file is corrupt or would be reordered."""


class DeadlineExceeded(FrontierError):
    """The shared wall-clock deadline of a search has passed.

    This is a control-flow signal: the search engine catches it and returns
    the best frontier found so far with ``truncated=True``.
    """


class RetriesExhausted(FrontierError):
    """All attempts for one ID failed transiently (PROPAGATE policy only)."""

    def __init__(self, user_id: int, last_failure=None):
        self.user_id = user_id
        self.last_failure = last_failure
        super().__init__(f"Retries exhausted for ID {user_id}: {last_failure}")
