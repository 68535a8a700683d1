"""Injectable collaborators for phenomenon engines.

Every collaborator is optional.  Defaults:

- ``instruments``: an empty list
- ``news``: a fresh list the engine appends the day's items to
- ``meme_multiplier``: 1.5 for meme or high-volatility instruments, else 1.0
- ``random_choice``: uniform pick driven by ``rng``
- ``is_enabled``: every phenomenon kind enabled
- ``rng``: a fresh ``random.Random()``; pass ``random.Random(seed)`` for
  reproducible runs
- ``insider_boost``: reads ``insider_buying`` / ``cluster_buying`` off the
  instrument
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, List, Sequence, TypeVar

from phenomena.models import Instrument, NewsItem

T = TypeVar("T")


@dataclass(frozen=True)
class InsiderBoost:
    has_buy_signal: bool = False
    is_cluster_buy: bool = False


def default_meme_multiplier(instrument: Instrument) -> float:
    return 1.5 if instrument.is_meme or instrument.volatility > 0.05 else 1.0


def default_insider_boost(instrument: Instrument) -> InsiderBoost:
    # Insider selling is noise and never feeds the signal model.
    return InsiderBoost(
        has_buy_signal=instrument.insider_buying or instrument.cluster_buying,
        is_cluster_buy=instrument.cluster_buying,
    )


def _always_enabled(_kind: str) -> bool:
    return True


class PhenomenonDependencies:
    """Dependency bundle handed to an engine at construction."""

    def __init__(
        self,
        instruments: List[Instrument] | None = None,
        news: List[NewsItem] | None = None,
        meme_multiplier: Callable[[Instrument], float] | None = None,
        random_choice: Callable[[Sequence], object] | None = None,
        is_enabled: Callable[[str], bool] | None = None,
        rng: random.Random | None = None,
        insider_boost: Callable[[Instrument], InsiderBoost] | None = None,
    ) -> None:
        self.instruments = instruments if instruments is not None else []
        self.news = news if news is not None else []
        self.meme_multiplier = meme_multiplier or default_meme_multiplier
        self.is_enabled = is_enabled or _always_enabled
        self.rng = rng if rng is not None else random.Random()
        self.insider_boost = insider_boost or default_insider_boost
        self._random_choice = random_choice

    def random(self) -> float:
        return self.rng.random()

    def uniform(self, low: float, high: float) -> float:
        return low + self.rng.random() * (high - low)

    def randint(self, low: int, high: int) -> int:
        """Inclusive integer draw consuming a single uniform value."""
        return min(high, low + int(self.rng.random() * (high - low + 1)))

    def choice(self, items: Sequence[T]) -> T:
        if not items:
            raise ValueError("cannot choose from an empty sequence")
        if self._random_choice is not None:
            return self._random_choice(items)  # type: ignore[return-value]
        return items[min(int(self.rng.random() * len(items)), len(items) - 1)]
