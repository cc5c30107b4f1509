"""
System-Wide Constants for Channel History Retrieval

All magic numbers and configuration defaults centralized here.

Time Token Precision:
- Native unit: 100 ns tick (10^7 ticks per second)
- Current dates encode as 17-digit integers
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
SECOND_MS: Final[int] = 1000

TICKS_PER_SECOND: Final[int] = 10_000_000
TICKS_PER_MILLI: Final[int] = 10_000
TICKS_PER_MICRO: Final[int] = 10

# Digit-count thresholds used to detect the precision of integer tokens
SECONDS_MAX_DIGITS: Final[int] = 11
MILLIS_MAX_DIGITS: Final[int] = 14
MICROS_MAX_DIGITS: Final[int] = 16

# =============================================================================
# PAGINATION
# =============================================================================
MAX_PAGE_SIZE: Final[int] = 100  # Service-imposed per-request ceiling
DEFAULT_PAGE_SIZE: Final[int] = MAX_PAGE_SIZE
UNBOUNDED_LIMIT: Final[int] = 0

# =============================================================================
# SERVICE
# =============================================================================
DEFAULT_ORIGIN: Final[str] = "ps.pndsn.com"
HISTORY_PATH_TEMPLATE: Final[str] = "/v2/history/sub-key/{subscribe_key}/channel/{channel}"
REQUEST_TIMEOUT_S: Final[float] = 10.0
MAX_CONNECTIONS: Final[int] = 20

# =============================================================================
# RESUBMISSION
# =============================================================================
RETRY_BASE_MS: Final[int] = 100
RETRY_MAX_MS: Final[int] = 10 * SECOND_MS
RETRY_MAX_ATTEMPTS: Final[int] = 3
