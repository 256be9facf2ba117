"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def from_epoch_seconds(seconds: int | float) -> datetime:
    """Convert provider epoch seconds to an aware UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def epoch_seconds(moment: datetime | None = None) -> int:
    """Whole epoch seconds for `moment` (defaults to now)."""
    return int((moment or utc_now()).timestamp())
