"""Counters, scopes and the stat structures of the rate limit service."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping

from .utils import sanitize_stat_name

if TYPE_CHECKING:
    from .settings import Settings

logger = logging.getLogger(__name__)


class Counter:
    """A thread-safe monotonically increasing counter."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._value = 0
        self._lock = threading.Lock()

    def inc(self) -> None:
        """Increase the counter by one."""
        self.add(1)

    def add(self, amount: int) -> None:
        """Increase the counter by ``amount``, which must not be negative."""
        if amount < 0:
            raise ValueError(f"counter {self.name} cannot be decreased by {amount}")
        with self._lock:
            self._value += amount

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:
        return f"Counter({self.name!r}, value={self.value})"


def _join(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


def _tag_suffix(tags: Mapping[str, str]) -> str:
    return "".join(f".__{key}={value}" for key, value in sorted(tags.items()))


class Store:
    """Holds counters by their full name; the same name gives the same counter."""

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._lock = threading.Lock()

    def scope(self, name: str) -> Scope:
        return Scope(self, name, {})

    def scope_with_tags(self, name: str, tags: Mapping[str, str]) -> Scope:
        return Scope(self, name, dict(tags))

    def counter(self, name: str) -> Counter:
        with self._lock:
            existing = self._counters.get(name)
            if existing is None:
                existing = self._counters[name] = Counter(name)
            return existing


class Scope:
    """A dotted name prefix, with tags, under which counters are created."""

    def __init__(self, store: Store, prefix: str, tags: Mapping[str, str]) -> None:
        self._store = store
        self._prefix = prefix
        self._tags = dict(tags)

    def scope(self, name: str) -> Scope:
        return Scope(self._store, _join(self._prefix, name), self._tags)

    def counter(self, name: str) -> Counter:
        return self._store.counter(_join(self._prefix, name) + _tag_suffix(self._tags))


@dataclass(frozen=True)
class RateLimitStats:
    """Stats for an individual rate limit config entry."""

    key: str
    total_hits: Counter
    over_limit: Counter
    near_limit: Counter
    over_limit_with_local_cache: Counter
    within_limit: Counter
    shadow_mode: Counter


@dataclass(frozen=True)
class ShouldRateLimitStats:
    """Counts of recovered errors, split into redis and service errors."""

    redis_error: Counter
    service_error: Counter


@dataclass(frozen=True)
class ServiceStats:
    """Config load and call outcome counters of the service."""

    config_load_success: Counter
    config_load_error: Counter
    should_rate_limit: ShouldRateLimitStats
    global_shadow_mode: Counter


class StatManager:
    """Creates the stat structures of the service in a store."""

    def __init__(self, store: Store, settings: Settings) -> None:
        self.store = store
        service_scope = store.scope_with_tags("ratelimit", settings.extra_tags).scope("service")
        self._service_scope = service_scope
        self._rate_limit_scope = service_scope.scope("rate_limit")
        self._should_rate_limit_scope = service_scope.scope("call.should_rate_limit")

    def new_stats(self, key: str) -> RateLimitStats:
        """Return the stats of the fully resolved descriptor ``key``."""
        logger.debug("Creating stats for key: '%s'", key)
        name = sanitize_stat_name(key)
        scope = self._rate_limit_scope
        return RateLimitStats(
            key=key,
            total_hits=scope.counter(name + ".total_hits"),
            over_limit=scope.counter(name + ".over_limit"),
            near_limit=scope.counter(name + ".near_limit"),
            over_limit_with_local_cache=scope.counter(name + ".over_limit_with_local_cache"),
            within_limit=scope.counter(name + ".within_limit"),
            shadow_mode=scope.counter(name + ".shadow_mode"),
        )

    def new_should_rate_limit_stats(self) -> ShouldRateLimitStats:
        scope = self._should_rate_limit_scope
        return ShouldRateLimitStats(
            redis_error=scope.counter("redis_error"),
            service_error=scope.counter("service_error"),
        )

    def new_service_stats(self) -> ServiceStats:
        scope = self._service_scope
        return ServiceStats(
            config_load_success=scope.counter("config_load_success"),
            config_load_error=scope.counter("config_load_error"),
            should_rate_limit=self.new_should_rate_limit_stats(),
            global_shadow_mode=scope.counter("global_shadow_mode"),
        )