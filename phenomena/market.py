"""Daily closing-price update (downstream consumer of price events).

Two regimes per instrument and tick:

- Event day: the sum of all phenomena's pending effects is nonzero.  The
  price becomes ``round(price * (1 + sum), 2)`` exactly.  Noise, trend,
  fair-value convergence and the floor/ceiling are skipped so the displayed
  price matches the price each phenomenon logged.
- Normal day: sentiment decay, fair-value convergence, trend and noise,
  clamped to a floor of 5% of base price (at least $1) and a ceiling of
  20x base price.

Pending slots are cleared after consumption on both regimes.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Iterable, List

from phenomena.models import EmittedEvent, Instrument, round_price

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketModelConfig:
    """Parameters of the normal-day price model."""

    # --- Sentiment ---
    sentiment_min: float = -0.8
    sentiment_max: float = 3.0
    sentiment_decay: float = 0.98
    sentiment_decay_threshold: float = 0.01

    # --- Convergence toward fair value ---
    convergence_speed: float = 0.15
    # Slower while a phenomenon is shaping the price.
    active_convergence_speed: float = 0.05

    # --- Noise and trend ---
    active_noise_multiplier: float = 0.3
    trend_weight: float = 0.05

    # --- Bounds ---
    floor_fraction: float = 0.05
    floor_minimum: float = 1.0
    ceiling_multiple: float = 20.0


@dataclass(frozen=True)
class PriceUpdate:
    symbol: str
    previous_price: float
    new_price: float
    applied_effect: float
    expected: EmittedEvent | None = None

    @property
    def event_day(self) -> bool:
        return self.applied_effect != 0.0

    @property
    def realized_delta(self) -> float:
        if self.previous_price <= 0:
            return 0.0
        return (self.new_price - self.previous_price) / self.previous_price


class MarketPriceUpdater:
    def __init__(
        self,
        rng: random.Random | None = None,
        config: MarketModelConfig | None = None,
    ) -> None:
        self._rng = rng if rng is not None else random.Random()
        self._config = config or MarketModelConfig()

    @property
    def config(self) -> MarketModelConfig:
        return self._config

    def apply(self, instruments: Iterable[Instrument]) -> List[PriceUpdate]:
        return [self.update(instrument) for instrument in instruments]

    def update(self, instrument: Instrument) -> PriceUpdate:
        effect = instrument.pending_effect
        expected = instrument.last_emitted_event
        previous = instrument.price

        if effect != 0.0:
            new_price = round_price(previous * (1.0 + effect))
        else:
            new_price = self._normal_price(instrument)

        instrument.transition_effects.clear()
        instrument.last_emitted_event = None
        instrument.previous_price = previous
        instrument.price = new_price

        if expected is not None and effect != 0.0 and new_price != expected.expected_price:
            LOGGER.warning(
                "%s applied $%.2f but phenomenon expected $%.2f",
                instrument.symbol,
                new_price,
                expected.expected_price,
            )
        return PriceUpdate(
            symbol=instrument.symbol,
            previous_price=previous,
            new_price=new_price,
            applied_effect=effect,
            expected=expected,
        )

    def _normal_price(self, instrument: Instrument) -> float:
        cfg = self._config
        active = any(record.is_active for record in instrument.phenomena.values())

        fair_value = instrument.base_price * (1.0 + instrument.eps_modifier)
        sentiment = max(cfg.sentiment_min, min(cfg.sentiment_max, instrument.sentiment_offset))
        if abs(sentiment) > cfg.sentiment_decay_threshold:
            sentiment *= cfg.sentiment_decay
        instrument.sentiment_offset = sentiment
        target = fair_value * (1.0 + sentiment)

        volatility = instrument.volatility * (1.0 + instrument.volatility_boost)
        noise_multiplier = cfg.active_noise_multiplier if active else 1.0
        noise = (self._rng.random() - 0.5) * 2.0 * volatility * noise_multiplier

        deviation = (instrument.price - target) / target if target > 0 else 0.0
        speed = cfg.active_convergence_speed if active else cfg.convergence_speed
        correction = -deviation * speed

        trend = instrument.trend * cfg.trend_weight

        raw = instrument.price * (1.0 + trend + correction + noise)
        floor = max(cfg.floor_minimum, instrument.base_price * cfg.floor_fraction)
        ceiling = instrument.base_price * cfg.ceiling_multiple
        return round_price(max(floor, min(ceiling, raw)))
