"""Shared scheduling constants. All values are milliseconds."""

# Tolerance used when comparing cursors against pad boundaries,
# lateness thresholds and cooldown windows.
SLACK_MS = 9999

ONE_MINUTE_MS = 60 * 1000
FIVE_MINUTES_MS = 5 * ONE_MINUTE_MS
ONE_HOUR_MS = 60 * ONE_MINUTE_MS
ONE_DAY_MS = 24 * ONE_HOUR_MS
ONE_WEEK_MS = 7 * ONE_DAY_MS

DEFAULT_PAD_MS = 5 * ONE_MINUTE_MS

# Random slot selection floor: with nothing eligible, wait at most this long.
MAX_COOLDOWN_WAIT_MS = 24 * ONE_DAY_MS

MAX_SAFE_INTEGER = 2 ** 53 - 1
