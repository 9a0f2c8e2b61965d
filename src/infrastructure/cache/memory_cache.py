"""Short-lived in-process memoization for read-mostly lookups.

Entries expire lazily on read and through a periodic sweep. Nothing here is
authoritative: write paths delete the keys they invalidate.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0

_MISSING = object()


def profile_key(user_id: str) -> str:
    return f"profile:{user_id}"


def tags_key(identity: str | None, text: str | None, limit: int) -> str:
    return f"tags:{identity or 'anonymous'}:{(text or '').strip().lower()}:{limit}"


TAGS_PREFIX = "tags:"

SEARCH_PREFIX = "search:"


def search_key(kind: str, identity: str | None, params: str) -> str:
    return f"{SEARCH_PREFIX}{kind}:{identity or 'anonymous'}:{params}"


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class EphemeralCache:
    def __init__(self, default_ttl: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        lifetime = self.default_ttl if ttl is None else ttl
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + lifetime)

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return default
        return entry.value

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        keys = [k for k in self._entries if k.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_compute(
        self, key: str, producer: Callable[[], Awaitable[Any]], ttl: float | None = None
    ) -> Any:
        """Return the cached value, or await ``producer`` and cache its result.

        Producer errors propagate and nothing is cached.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = await producer()
        self.set(key, value, ttl)
        return value

    def sweep(self) -> int:
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def run_sweeper(self, interval: float) -> None:
        """Sweep forever every ``interval`` seconds; stopped by task cancellation."""
        while True:
            await asyncio.sleep(interval)
            removed = self.sweep()
            if removed:
                logger.debug("Cache sweep removed %d entries", removed, extra={"event": "cache"})
