"""Wall-clock helpers shared by the session, cooldown and rate-limit components."""

import time
from collections.abc import Callable
from datetime import UTC, datetime

# Returns epoch seconds; injectable so tests can move time deterministically.
Clock = Callable[[], float]


def system_clock() -> float:
    return time.time()


def now_ms(clock: Clock) -> int:
    return int(clock() * 1000)


def utc_from_clock(clock: Clock) -> datetime:
    return datetime.fromtimestamp(clock(), UTC)


def datetime_to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)
