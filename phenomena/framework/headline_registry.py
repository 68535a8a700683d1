"""Same-day headline dedupe.

No two news items for one instrument on one simulated day may share a
headline.  The registry keys each headline by (day, symbol, text) and
forgets everything from earlier days when the day advances, so the same
headline is allowed again on a later day.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Dict

LOGGER = logging.getLogger(__name__)


def headline_key(day: int, symbol: str, headline: str) -> str:
    """Deterministic key for a headline on one instrument and day."""
    canonical = "|".join([str(day), symbol.upper(), " ".join(headline.split()).lower()])
    return hashlib.sha256(canonical.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class HeadlineRegistryConfig:
    """Configuration for the headline registry.

    Parameters
    ----------
    max_entries:
        Maximum number of headlines tracked for the current day.  The
        oldest entries are evicted past this.  Default 10000.
    enabled:
        Master enable/disable.  Default True.
    """

    max_entries: int = 10000
    enabled: bool = True


@dataclass
class HeadlineRegistryStats:
    total_checked: int = 0
    total_blocked: int = 0
    total_registered: int = 0
    total_evicted: int = 0

    def reset(self) -> None:
        self.total_checked = 0
        self.total_blocked = 0
        self.total_registered = 0
        self.total_evicted = 0


class HeadlineRegistry:
    """Tracks headlines already published on the current day."""

    def __init__(self, config: HeadlineRegistryConfig | None = None) -> None:
        self._config = config or HeadlineRegistryConfig()
        self._day = 0
        self._entries: Dict[str, str] = {}
        self._insertion_order: list[str] = []
        self._stats = HeadlineRegistryStats()

    @property
    def config(self) -> HeadlineRegistryConfig:
        return self._config

    @property
    def stats(self) -> HeadlineRegistryStats:
        return self._stats

    @property
    def day(self) -> int:
        return self._day

    def begin_day(self, day: int) -> None:
        """Start a new simulated day; earlier days' headlines are dropped."""
        if day != self._day:
            self.clear()
        self._day = day

    def is_duplicate(self, symbol: str, headline: str) -> bool:
        if not self._config.enabled:
            return False
        self._stats.total_checked += 1
        if headline_key(self._day, symbol, headline) in self._entries:
            self._stats.total_blocked += 1
            LOGGER.debug("Duplicate headline blocked for %s on day %d: %s", symbol, self._day, headline)
            return True
        return False

    def register(self, symbol: str, headline: str) -> None:
        key = headline_key(self._day, symbol, headline)
        self._stats.total_registered += 1
        if key not in self._entries:
            self._insertion_order.append(key)
        self._entries[key] = headline
        self._evict_if_needed()

    def clear(self) -> None:
        self._entries.clear()
        self._insertion_order.clear()

    def size(self) -> int:
        return len(self._entries)

    def _evict_if_needed(self) -> None:
        while len(self._entries) > self._config.max_entries and self._insertion_order:
            oldest = self._insertion_order.pop(0)
            if self._entries.pop(oldest, None) is not None:
                self._stats.total_evicted += 1
