"""Time units, reset calculation, time and jitter sources, and string helpers."""

from __future__ import annotations

import abc
import enum
import random
import threading
import time

_MASKED_REDIS_PREFIX = "redis://*****@"


class Unit(enum.IntEnum):
    """Rate limit time unit, numbered as on the wire."""

    UNKNOWN = 0
    SECOND = 1
    MINUTE = 2
    HOUR = 3
    DAY = 4


_DIVIDERS = {
    Unit.SECOND: 1,
    Unit.MINUTE: 60,
    Unit.HOUR: 60 * 60,
    Unit.DAY: 60 * 60 * 24,
}


class TimeSource(abc.ABC):
    """A source of the current unix time."""

    @abc.abstractmethod
    def unix_now(self) -> int:
        """Return the current unix time in seconds."""


class SystemTimeSource(TimeSource):
    """Time source backed by the system clock."""

    def unix_now(self) -> int:
        return int(time.time())


class LockedSource:
    """Thread-safe pseudo-random source used for expiration jitter."""

    def __init__(self, seed: int) -> None:
        self._lock = threading.Lock()
        self._random = random.Random(seed)

    def int63(self) -> int:
        """Return a non-negative pseudo-random 63-bit integer."""
        with self._lock:
            return self._random.getrandbits(63)

    def seed(self, seed: int) -> None:
        """Reset the generator to a deterministic state."""
        with self._lock:
            self._random.seed(seed)


def unit_to_divider(unit: Unit) -> int:
    """Return the number of seconds in one period of ``unit``."""
    try:
        return _DIVIDERS[Unit(unit)]
    except (KeyError, ValueError):
        raise ValueError(f"unsupported rate limit unit: {unit!r}") from None


def calculate_reset(unit: Unit, time_source: TimeSource) -> int:
    """Return the seconds left until the current period of ``unit`` ends."""
    divider = unit_to_divider(unit)
    now = time_source.unix_now()
    return divider - now % divider


def mask_credentials_in_url(url: str) -> str:
    """Hide credentials in a comma-separated list of redis URLs."""

    def mask(part: str) -> str:
        pieces = part.split("@")
        if len(pieces) > 1 and pieces[0].startswith("redis://"):
            return _MASKED_REDIS_PREFIX + pieces[-1]
        return part

    return ",".join(mask(part) for part in url.split(","))


_STAT_NAME_TABLE = str.maketrans({":": "_", "|": "_"})


def sanitize_stat_name(name: str) -> str:
    """Replace characters that are invalid in stat names with underscores."""
    return name.translate(_STAT_NAME_TABLE)