import math
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Clock:
    """Wall clock in epoch milliseconds. Swapped for a manual clock in tests."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


def to_epoch_ms(value: Any) -> Optional[int]:
    """
    Coerce a timestamp into epoch milliseconds.

    Accepts ISO-8601 strings (with or without a trailing "Z"), datetimes and
    numbers already in epoch milliseconds. Anything else returns None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (value - EPOCH) // timedelta(milliseconds=1)
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isascii() and text.isdigit():
            return int(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_epoch_ms(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def iso_from_ms(ms: int) -> str:
    dt = EPOCH + timedelta(milliseconds=ms)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
