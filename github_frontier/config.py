"""Configuration constants for the GitHub frontier tracker."""

import os

API_BASE_URL = "https://api.github.com/user"
USER_AGENT = "github-user-estimation-tracker"
ACCEPT_HEADER = "application/vnd.github.v3+json"

# Credential is optional: without it GitHub allows 60 req/hr instead of 5,000
GITHUB_TOKEN = os.environ.get("GITHUB_TOKEN")

# --- Oracle / retry governor ---
REQUEST_TIMEOUT_SECONDS = 8
MAX_ATTEMPTS = 3  # per ID, regardless of failure type
DEFAULT_RATE_LIMIT_WAIT_SECONDS = 60  # when a 403/429 carries no Retry-After
DEFAULT_BACKOFF_SECONDS = 5  # network errors and unexpected statuses
RATE_LIMIT_STATUSES = (403, 429)

# --- Frontier search budgets ---
# Interactive scan: ~12 probes, single-digit seconds
INTERACTIVE_INITIAL_STEP = 1_000
INTERACTIVE_MAX_EXPONENTIAL_ITERATIONS = 6
INTERACTIVE_BINARY_MIN_GAP = 200
INTERACTIVE_MAX_BINARY_ITERATIONS = 4
INTERACTIVE_FINE_STEP = 100
INTERACTIVE_MAX_FINE_ITERATIONS = 3
INTERACTIVE_MISS_TOLERANCE = 2
INTERACTIVE_NEIGHBOR_PROBES = 0
INTERACTIVE_DEADLINE_SECONDS = 8

# Daily batch: converge exactly, then walk ID by ID until 5 consecutive misses
OFFLINE_INITIAL_STEP = 1_000
OFFLINE_MAX_EXPONENTIAL_ITERATIONS = 14  # last step 8.2M, brackets the whole window
OFFLINE_BINARY_MIN_GAP = 1
OFFLINE_MAX_BINARY_ITERATIONS = 40
OFFLINE_FINE_STEP = 1
OFFLINE_MISS_TOLERANCE = 5
OFFLINE_NEIGHBOR_PROBES = 2  # IDs after a miss checked before it counts as past the frontier
OFFLINE_DEADLINE_SECONDS = 8 * 60  # hard cap for the daily job

SEARCH_WINDOW = 5_000_000  # daily job never probes beyond last frontier + this

# --- Baseline study (16,000 stratified samples, Feb 2026) ---
# Frontier at the time of the study; the open stratum F7 was sized to it
FRONTIER_M = 261_712_000
REPORTED_STANDARD_ERROR = 791_400
Z_95 = 1.96

BASELINE = {
    "frontier_m": FRONTIER_M,
    "reported_standard_error": REPORTED_STANDARD_ERROR,
    "strata": {
        "F1": {"start": 1, "end": 10_000_000, "sample_count": 611, "valid_count": 472},
        "F2": {"start": 10_000_001, "end": 50_000_000, "sample_count": 2_445, "valid_count": 1_956},
        "F3": {"start": 50_000_001, "end": 100_000_000, "sample_count": 3_057, "valid_count": 2_753},
        "F4": {"start": 100_000_001, "end": 150_000_000, "sample_count": 3_057, "valid_count": 2_561},
        "F5": {"start": 150_000_001, "end": 200_000_000, "sample_count": 3_057, "valid_count": 2_312},
        "F6": {"start": 200_000_001, "end": 250_000_000, "sample_count": 3_057, "valid_count": 2_418},
        "F7": {"start": 250_000_001, "end": None, "sample_count": 716, "valid_count": 619},
    },
}

# Seed for interactive scans when no history exists yet
DEFAULT_INTERACTIVE_FRONTIER = 262_206_000

# --- Projections ---
DEFAULT_DAILY_GROWTH = 400_000
PROJECTION_DAYS = (30, 90, 365)
NEXT_MILESTONE = 225_000_000

# --- Paths ---
BASELINE_PATH = os.environ.get("FRONTIER_BASELINE_PATH")  # None = built-in BASELINE
HISTORY_PATH = os.environ.get("FRONTIER_HISTORY_PATH", "data/history.json")
LOG_PATH = "github_frontier.log"

# --- Interactive service ---
SERVICE_HOST = "127.0.0.1"
SERVICE_PORT = 8080
