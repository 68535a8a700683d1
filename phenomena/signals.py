"""Signal-based outcome probability for a bounce.

The outcome of a bounce (genuine reversal vs. trap) is not fixed when the
crash starts.  It is drawn once, when the bounce phase expires, from a
probability built out of the signals a player could have observed:

    base 30%
    + retracement tier (>=50%: +20%, >=61.8%: +30%)
    + rising volume (+15%)
    + higher-low pattern (+10%)
    + three consecutive up days (+5%)
    + insider tier (buying: +10%, cluster buying: +25%)
    capped at 85%

Stacking confirming indicators improves the odds but never guarantees the
outcome.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from typing import Tuple

from phenomena.config import DeadCatBounceConfig
from phenomena.models import Outcome, PhenomenonRecord, VolumeTrend

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Signal:
    name: str
    bonus: float
    met: bool

    @property
    def bonus_label(self) -> str:
        return f"+{round(self.bonus * 100)}%"


@dataclass(frozen=True)
class OutcomeProbability:
    probability: float
    signals: Tuple[Signal, ...]
    uncapped: float

    @property
    def met_signals(self) -> Tuple[Signal, ...]:
        return tuple(s for s in self.signals if s.met)

    @property
    def is_capped(self) -> bool:
        return self.uncapped > self.probability


@dataclass(frozen=True)
class OutcomeDecision:
    outcome: Outcome
    draw: float
    probability: OutcomeProbability


def clamp_probability(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def calculate_retracement(price: float, low: float, reference_high: float) -> float:
    """Fraction of the drop from ``reference_high`` to ``low`` recovered by ``price``."""
    if low <= 0 or reference_high <= 0:
        return 0.0
    total_drop = reference_high - low
    if total_drop <= 0:
        return 0.0
    return (price - low) / total_drop


def fib_label(retracement: float) -> str:
    if retracement >= 0.75:
        return "78.6%"
    if retracement >= 0.60:
        return "61.8% (golden ratio)"
    if retracement >= 0.48:
        return "50%"
    if retracement >= 0.36:
        return "38.2%"
    if retracement >= 0.22:
        return "23.6%"
    return "below 23.6%"


class SignalEvaluator:
    """Computes the capped reversal probability from observed signals.

    Pure apart from the optional draw in ``decide``, which consumes exactly
    one value from the supplied random source.
    """

    def __init__(self, config: DeadCatBounceConfig | None = None) -> None:
        self._config = config or DeadCatBounceConfig()

    @property
    def config(self) -> DeadCatBounceConfig:
        return self._config

    def compute_outcome_probability(
        self,
        record: PhenomenonRecord,
        price: float,
    ) -> OutcomeProbability:
        cfg = self._config
        retracement = calculate_retracement(price, record.local_low, record.trigger_price)
        probability = cfg.base_probability
        signals: list[Signal] = []

        # Retracement tiers are exclusive; the higher one wins.
        if retracement >= cfg.retracement_618_threshold:
            probability += cfg.retracement_618_bonus
            signals.append(Signal(">61.8% retracement", cfg.retracement_618_bonus, True))
        elif retracement >= cfg.retracement_50_threshold:
            probability += cfg.retracement_50_bonus
            signals.append(Signal(">50% retracement", cfg.retracement_50_bonus, True))
        else:
            signals.append(Signal(">50% retracement", cfg.retracement_50_bonus, False))

        rising = record.volume_trend is VolumeTrend.INCREASING
        if rising:
            probability += cfg.rising_volume_bonus
        signals.append(Signal("Rising volume", cfg.rising_volume_bonus, rising))

        if record.has_higher_low:
            probability += cfg.higher_low_bonus
        signals.append(Signal("Higher low pattern", cfg.higher_low_bonus, record.has_higher_low))

        three_day = record.consecutive_up_days >= cfg.three_day_rule_days
        if three_day:
            probability += cfg.three_day_rule_bonus
        signals.append(Signal("3-day rule (3+ up days)", cfg.three_day_rule_bonus, three_day))

        if record.cluster_buying:
            probability += cfg.cluster_buying_bonus
            signals.append(Signal("Cluster insider buying (3+)", cfg.cluster_buying_bonus, True))
        elif record.insider_buying:
            probability += cfg.insider_buying_bonus
            signals.append(Signal("Insider buying", cfg.insider_buying_bonus, True))
        else:
            signals.append(Signal("Insider buying", cfg.insider_buying_bonus, False))

        capped = clamp_probability(min(probability, cfg.max_probability))
        LOGGER.debug(
            "%s reversal probability %.0f%% (uncapped %.0f%%, retracement %.1f%%, met=%s)",
            record.kind,
            capped * 100,
            probability * 100,
            retracement * 100,
            [s.name for s in signals if s.met],
        )
        return OutcomeProbability(probability=capped, signals=tuple(signals), uncapped=probability)

    def decide(
        self,
        record: PhenomenonRecord,
        price: float,
        rng: random.Random,
    ) -> OutcomeDecision:
        """Evaluate signals and draw the outcome. Does not mutate the record."""
        result = self.compute_outcome_probability(record, price)
        draw = rng.random()
        outcome = Outcome.REVERSAL if draw < result.probability else Outcome.TRAP
        return OutcomeDecision(outcome=outcome, draw=draw, probability=result)
