"""Constants for replan.

This module centralizes all magic numbers and default values used throughout the application.
"""

from datetime import timedelta


# Retry / backoff defaults
DEFAULT_MAX_RETRIES = 3  # total attempts, including the first
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 10000
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Per-attempt timeout around a single migration write
DEFAULT_APPLY_TIMEOUT_SEC = 30.0

# Undo
DEFAULT_UNDO_TIME_LIMIT = timedelta(minutes=10)

# Validation
PAST_DATE_GRACE = timedelta(days=1)  # allow for timezone differences

# Scheduling suggestions
BASE_CONFIDENCE = 0.7
DEPENDENCY_CONFIDENCE = 0.95
PRIORITY_CONFIDENCE = 0.9
DEPENDENCY_ESTIMATE_NUDGE = 0.05
ESTIMATE_NUDGE = 0.1
LOOKUP_FAILURE_PENALTY = 0.2
MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0
SHORT_TASK_MAX_MIN = 30  # <= is short
LONG_TASK_MIN_MIN = 120  # >= is long

# Circular dependency detection
MAX_DEPENDENCY_WALK = 200  # tasks visited per batch entry
