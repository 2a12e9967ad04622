from datetime import datetime, timezone
from typing import Any, Callable

from .schemas import EPOCH

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_dt(value: Any, default: datetime = EPOCH) -> datetime:
    """Best-effort timestamp parsing; anything unusable becomes ``default``."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, bool) or value is None:
        return default
    elif isinstance(value, (int, float)):
        # milliseconds vs seconds since epoch
        secs = value / 1000.0 if abs(value) > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(secs, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return default
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            return default
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return default
    else:
        return default
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
