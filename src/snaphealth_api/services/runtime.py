"""
Per-process runtime state for the analyze endpoint.

AnalysisRuntime bundles the response cache and the admission counter.
One instance is created in the application lifespan and stored on
app.state; route handlers receive it through a dependency.
"""

import hashlib
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Callable

from snaphealth_api.core.config import Settings
from snaphealth_api.core.exceptions import AdmissionRejected
from snaphealth_api.models.analysis import AnalysisResult

logger = logging.getLogger(__name__)


class ResponseCache:
    """
    TTL cache of analysis results keyed by image content and goals.

    Concurrent misses for the same key are not de-duplicated; both
    requests run and the second write replaces the first.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, AnalysisResult]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(
        image_base64: str,
        health_goals: list[str],
        dietary_preferences: list[str] | None = None,
    ) -> str:
        """Hash of image content plus the normalized goal and preference lists."""
        goals = ",".join(sorted(g.strip().lower() for g in health_goals))
        prefs = ",".join(sorted(p.strip().lower() for p in dietary_preferences or []))
        digest = hashlib.sha256()
        digest.update(image_base64.encode("ascii", errors="ignore"))
        digest.update(f"|{goals}|{prefs}".encode("utf-8"))
        return digest.hexdigest()

    def get(self, key: str) -> AnalysisResult | None:
        """Return a live entry, dropping it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        expires_at, result = entry
        if expires_at <= self._clock():
            del self._entries[key]
            self.misses += 1
            return None

        self.hits += 1
        return result

    def set(self, key: str, result: AnalysisResult) -> bool:
        """
        Store a result. Fallback results are never cached.

        Returns:
            True if the result was stored
        """
        if result.fallback:
            return False

        self._entries.pop(key, None)
        self._entries[key] = (self._clock() + self.ttl_seconds, result)

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted cache entry {evicted[:12]}")
        return True

    def purge_expired(self) -> int:
        """Remove expired entries and return how many were dropped."""
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class AdmissionController:
    """
    Advisory ceiling on concurrent analyses.

    All requests share one event loop, so a plain counter is enough.
    """

    def __init__(self, max_concurrent: int = 10):
        self.max_concurrent = max_concurrent
        self.active = 0
        self.rejected = 0

    def try_acquire(self) -> bool:
        """Take a slot if one is free."""
        if self.active >= self.max_concurrent:
            self.rejected += 1
            return False
        self.active += 1
        return True

    def release(self) -> None:
        """Return a slot."""
        if self.active > 0:
            self.active -= 1

    @asynccontextmanager
    async def admit(self):
        """
        Hold a slot for the duration of the block.

        Raises:
            AdmissionRejected: If the ceiling is reached
        """
        if not self.try_acquire():
            raise AdmissionRejected(self.active, self.max_concurrent)
        try:
            yield
        finally:
            self.release()


class AnalysisRuntime:
    """Cache plus admission counter shared by all analyze requests."""

    def __init__(self, cache: ResponseCache, admission: AdmissionController):
        self.cache = cache
        self.admission = admission

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnalysisRuntime":
        """Build a runtime from configuration."""
        return cls(
            cache=ResponseCache(
                ttl_seconds=settings.cache_ttl_seconds,
                max_entries=settings.cache_max_entries,
            ),
            admission=AdmissionController(settings.max_concurrent_requests),
        )

    def stats(self) -> dict:
        """Counters for the health endpoint."""
        return {
            "active_requests": self.admission.active,
            "max_concurrent_requests": self.admission.max_concurrent,
            "rejected_requests": self.admission.rejected,
            "cache_entries": len(self.cache),
            "cache_hits": self.cache.hits,
            "cache_misses": self.cache.misses,
        }
