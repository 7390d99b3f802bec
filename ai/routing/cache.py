"""Response cache for the routing layer.

Entries are keyed by a SHA-256 fingerprint of the functionally relevant
request fields and bounded by both age (lazy expiry on lookup) and entry
count (eviction on insert and on reconfiguration).
"""

import hashlib
import json
import threading
import time
from collections.abc import Mapping
from typing import Callable, Dict, Optional

from ai.routing.types import CacheConfig, CacheEntry, CacheStats, Request
from core.logging import logger
from core.monitoring import CACHE_LOOKUPS

__all__ = [
    "ResponseCache",
]


class ResponseCache:
    """Thread-safe TTL + capacity bounded cache for request fingerprint → response."""

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or CacheConfig()
        self._clock = clock
        self._store: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    @staticmethod
    def compute_key(request: Request) -> Optional[str]:
        """Fingerprint of (capability, input text, custom params).

        Returns None when the custom params are not a str → str mapping; such
        requests are served uncached.
        """
        params = request.custom_params
        if params is None:
            params = {}
        if not isinstance(params, Mapping) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in params.items()
        ):
            logger.warning("Malformed custom params; request will not be cached")
            return None

        # JSON framing keeps field boundaries unambiguous
        canonical = json.dumps(
            [request.capability_tag, request.input_text or "", sorted(params.items())],
            ensure_ascii=False,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    # ------------------------------------------------------------------
    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def lookup(self, key: str) -> Optional[CacheEntry]:
        if not self._config.enabled:
            return None
        with self._lock:
            entry = self._store.get(key)
            if entry is None or self._is_expired(entry, self._clock()):
                # expired entries stay until the next eviction pass
                self._misses += 1
                CACHE_LOOKUPS.labels(result="miss").inc()
                return None
            self._hits += 1
        CACHE_LOOKUPS.labels(result="hit").inc()
        return entry

    def insert(self, key: str, response: str, provider_id: str) -> None:
        if not self._config.enabled:
            return
        with self._lock:
            # replacing a key never needs extra room
            self._store.pop(key, None)
            if len(self._store) >= self._config.max_entries:
                self._evict(self._config.max_entries - 1)
            self._store[key] = CacheEntry(
                key=key,
                response=response,
                provider_id=provider_id,
                created_at=self._clock(),
            )

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
        logger.info("Cache cleared")

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0

    def purge_expired(self) -> int:
        """Remove every expired entry; returns how many were removed."""
        with self._lock:
            return self._purge_expired(self._clock())

    def configure(self, config: CacheConfig) -> None:
        with self._lock:
            self._config = config
            if len(self._store) > config.max_entries:
                self._evict(config.max_entries)
        logger.info(
            f"Cache configured: enabled={config.enabled}, "
            f"max_entries={config.max_entries}, max_age_seconds={config.max_age_seconds}"
        )

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                total_entries=len(self._store),
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / total if total else 0.0,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    # Eviction -------------------------------------------------------------
    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self._config.max_age_seconds

    def _purge_expired(self, now: float) -> int:
        expired = [k for k, e in self._store.items() if self._is_expired(e, now)]
        for k in expired:
            del self._store[k]
        return len(expired)

    def _evict(self, limit: int) -> None:
        """Shrink the store to at most ``limit`` entries. Caller holds the lock."""
        self._purge_expired(self._clock())
        excess = len(self._store) - limit
        if excess <= 0:
            return
        oldest = sorted(self._store.values(), key=lambda e: e.created_at)[:excess]
        for entry in oldest:
            del self._store[entry.key]
        logger.debug(f"Evicted {len(oldest)} oldest cache entries")
