"""In-memory TTL response cache with optional LRU bound.

Entries expire lazily on lookup. Every key produced by the key builders
below carries the resource id in its second segment, which is what
resource-wide invalidation relies on.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Set

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "|"


def _escape(component: Any) -> str:
    return str(component).replace("%", "%25").replace(KEY_SEPARATOR, "%7C")


def _unescape(component: str) -> str:
    return component.replace("%7C", KEY_SEPARATOR).replace("%25", "%")


def _options_components(options: Optional[Mapping[str, Any]]) -> list:
    if not options:
        return []
    return [f"{_escape(name)}:{_escape(value)}" for name, value in sorted(options.items()) if value is not None]


def values_key(resource_id: str, target: str, options: Optional[Mapping[str, Any]] = None) -> str:
    """Cache key for a single range read"""
    components = ["values", _escape(resource_id), _escape(target)]
    components.extend(_options_components(options))
    return KEY_SEPARATOR.join(components)


def batch_values_key(
    resource_id: str,
    targets: Iterable[str],
    options: Optional[Mapping[str, Any]] = None,
) -> str:
    """Cache key for a multi-range read (target order does not matter)"""
    ranges = ",".join(_escape(t).replace(",", "%2C") for t in sorted(targets))
    components = ["batchValues", _escape(resource_id), f"ranges:{ranges}"]
    components.extend(_options_components(options))
    return KEY_SEPARATOR.join(components)


def resource_key(
    resource_id: str,
    targets: Optional[Iterable[str]] = None,
    include_grid_data: bool = False,
    fields: Optional[str] = None,
) -> str:
    """Cache key for a whole-resource metadata read"""
    components = ["resource", _escape(resource_id)]
    if targets:
        ranges = ",".join(_escape(t).replace(",", "%2C") for t in sorted(targets))
        components.append(f"ranges:{ranges}")
    if include_grid_data:
        components.append("includeGridData:true")
    if fields:
        components.append(f"fields:{_escape(fields)}")
    return KEY_SEPARATOR.join(components)


def resource_of(key: str) -> Optional[str]:
    """Resource id embedded in a key built by this module"""
    parts = key.split(KEY_SEPARATOR, 2)
    if len(parts) < 2:
        return None
    return _unescape(parts[1])


@dataclass
class CacheEntry:
    """Cached value with its storage time"""

    key: str
    value: Any
    stored_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class CacheStats:
    """Counters describing cache effectiveness"""

    hits: int = 0
    misses: int = 0
    expirations: int = 0
    evictions: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ResponseCache:
    """Thread-safe TTL cache for decoded API responses.

    Not persisted: the cache lives and dies with its owning client.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        max_entries: Optional[int] = None,
        enabled: bool = True,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize cache

        Args:
            default_ttl: TTL in seconds used when ``put`` gets none
            max_entries: LRU bound (None = unbounded)
            enabled: When False every lookup misses and ``put`` is a no-op
            clock: Monotonic time source

        Raises:
            ValueError: If ttl or max_entries is not positive
        """
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._by_resource: Dict[str, Set[str]] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _remove(self, key: str) -> bool:
        """Drop an entry and its resource index. Caller holds the lock."""
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        resource_id = resource_of(key)
        keys = self._by_resource.get(resource_id)
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._by_resource[resource_id]
        return True

    def get(self, key: str, default: Any = None) -> Optional[Any]:
        """Get a cached value

        Args:
            key: Cache key
            default: Returned on miss or expiry; pass a sentinel to tell a
                cached None apart from a miss

        Returns:
            Cached value, or ``default`` on miss or expiry
        """
        if not self.enabled:
            return default
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats.misses += 1
                logger.debug(f"Cache miss for key: {key}")
                return default
            if entry.is_expired(self._clock()):
                self._remove(key)
                self.stats.expirations += 1
                self.stats.misses += 1
                logger.debug(f"Cache entry expired for key: {key}")
                return default
            self._entries.move_to_end(key)
            self.stats.hits += 1
            logger.debug(f"Cache hit for key: {key}")
            return entry.value

    def contains(self, key: str) -> bool:
        """Check if a live entry exists (does not count as a hit or touch LRU order)"""
        if not self.enabled:
            return False
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                self._remove(key)
                self.stats.expirations += 1
                return False
            return True

    def generation(self, resource_id: str) -> int:
        """Invalidation counter of a resource; read it before fetching, pass it to ``put``"""
        with self._lock:
            return self._generations.get(resource_id, 0)

    def put(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """Store a value

        Args:
            key: Cache key (see ``values_key`` and friends)
            value: Value to cache
            ttl: Time-to-live in seconds (default_ttl if None)
            generation: Resource generation observed before the fetch; the
                value is dropped if the resource was invalidated since

        Returns:
            True if the value was stored
        """
        if not self.enabled:
            return False
        effective_ttl = self.default_ttl if ttl is None else ttl
        if effective_ttl <= 0:
            return False
        resource_id = resource_of(key)
        with self._lock:
            if generation is not None and self._generations.get(resource_id, 0) != generation:
                logger.debug(f"Dropping stale response for key: {key}")
                return False
            self._remove(key)
            self._entries[key] = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl=effective_ttl)
            if resource_id is not None:
                self._by_resource.setdefault(resource_id, set()).add(key)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    oldest_key = next(iter(self._entries))
                    self._remove(oldest_key)
                    self.stats.evictions += 1
                    logger.debug(f"Evicted least recently used key: {oldest_key}")
        return True

    def invalidate(self, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        with self._lock:
            removed = self._remove(key)
            if removed:
                self.stats.invalidations += 1
            return removed

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``"""
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for key in keys:
                self._remove(key)
            self.stats.invalidations += len(keys)
        if keys:
            logger.debug(f"Invalidated {len(keys)} cache entries with prefix {prefix!r}")
        return len(keys)

    def invalidate_resource(self, resource_id: str) -> int:
        """Remove every entry derived from reads of ``resource_id``

        Also bumps the resource generation so reads still in flight cannot
        store what they fetched before the change.
        """
        with self._lock:
            self._generations[resource_id] = self._generations.get(resource_id, 0) + 1
            keys = list(self._by_resource.get(resource_id, ()))
            for key in keys:
                self._remove(key)
            self.stats.invalidations += len(keys)
        if keys:
            logger.debug(f"Invalidated {len(keys)} cache entries for resource {resource_id}")
        return len(keys)

    def purge_expired(self) -> int:
        """Eagerly drop expired entries. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                self._remove(key)
            self.stats.expirations += len(expired)
        return len(expired)

    def clear(self) -> None:
        """Remove all entries"""
        with self._lock:
            self._entries.clear()
            self._by_resource.clear()
