from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from phenomena.config import PRICE_DECIMALS


def round_price(value: float) -> float:
    return round(value, PRICE_DECIMALS)


class Phase(str, Enum):
    INACTIVE = "inactive"
    CRASH = "crash"
    BOUNCE = "bounce"
    DECLINE = "decline"
    CONSOLIDATION = "consolidation"
    RECOVERY = "recovery"


class Outcome(str, Enum):
    REVERSAL = "reversal"
    TRAP = "trap"


class VolumeTrend(str, Enum):
    NORMAL = "normal"
    SPIKE = "spike"
    INCREASING = "increasing"
    DECLINING = "declining"
    STEADY = "steady"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"

    @property
    def sign(self) -> int:
        if self is Sentiment.POSITIVE:
            return 1
        if self is Sentiment.NEGATIVE:
            return -1
        return 0


# Allowed phase transitions; INACTIVE on the right means the record is destroyed.
VALID_TRANSITIONS: Dict[Phase, Tuple[Phase, ...]] = {
    Phase.INACTIVE: (Phase.CRASH,),
    Phase.CRASH: (Phase.BOUNCE,),
    Phase.BOUNCE: (Phase.DECLINE, Phase.CONSOLIDATION),
    Phase.DECLINE: (Phase.BOUNCE, Phase.INACTIVE),
    Phase.CONSOLIDATION: (Phase.RECOVERY,),
    Phase.RECOVERY: (Phase.INACTIVE,),
}


def is_valid_transition(old: Phase, new: Phase) -> bool:
    return new in VALID_TRANSITIONS.get(old, ())


@dataclass(frozen=True)
class EmittedEvent:
    """What a phenomenon expects the market updater to apply this tick."""

    kind: str
    label: str
    fractional_change: float  # this emission only
    total_effect: float       # all pending effects on the instrument after this emission
    previous_price: float
    expected_price: float
    expected_delta: float     # recomputed from the rounded expected price
    day: int = 0
    log_string: str = ""


@dataclass
class PhenomenonRecord:
    """Per-instrument state for one phenomenon kind.

    ``outcome`` is write-once; use ``assign_outcome``.
    """

    kind: str
    phase: Phase = Phase.CRASH
    days_remaining: int = 0

    # Reference prices, set on phase entry.
    trigger_price: float = 0.0
    phase_start_price: float = 0.0
    local_low: float = 0.0
    local_high: float = 0.0
    recovery_target: float | None = None

    # Observed signals.
    retracement: float = 0.0
    volume_trend: VolumeTrend = VolumeTrend.SPIKE
    has_higher_low: bool = False
    consecutive_up_days: int = 0
    insider_buying: bool = False
    cluster_buying: bool = False

    retry_count: int = 0
    last_emitted_event: EmittedEvent | None = None

    severity: float = 0.0
    crash_magnitude: float = 0.0
    target_retracement: float = 0.0
    volume_multiplier: float = 1.0
    pending_decline_magnitude: float = 0.0
    bounce_days_total: int = 0
    entered_day: int = 0
    last_probability: float | None = None

    _outcome: Optional[Outcome] = field(default=None, repr=False)

    @property
    def outcome(self) -> Optional[Outcome]:
        return self._outcome

    def assign_outcome(self, outcome: Outcome) -> None:
        if self._outcome is not None:
            raise ValueError(
                f"outcome already assigned ({self._outcome.value}) for {self.kind}"
            )
        self._outcome = outcome

    @property
    def bounce_number(self) -> int:
        return self.retry_count + 1

    @property
    def is_active(self) -> bool:
        return self.phase is not Phase.INACTIVE


@dataclass
class Instrument:
    """A tradable instrument as seen by the phenomenon engine.

    ``transition_effects`` holds one pending fractional price change per
    phenomenon kind for the current tick.  The market updater sums the slots,
    applies them and clears them.
    """

    symbol: str
    price: float
    base_price: float = 0.0
    previous_price: float = 0.0
    stability: float = 0.75
    is_meme: bool = False
    volatility: float = 0.025
    sentiment_offset: float = 0.0
    volatility_boost: float = 0.0
    trend: float = 0.0
    eps_modifier: float = 0.0
    volume_multiplier: float = 1.0
    insider_buying: bool = False
    cluster_buying: bool = False
    transition_effects: Dict[str, float] = field(default_factory=dict)
    last_emitted_event: EmittedEvent | None = None
    phenomena: Dict[str, PhenomenonRecord] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.base_price <= 0:
            self.base_price = self.price
        if self.previous_price <= 0:
            self.previous_price = self.price

    @property
    def pending_effect(self) -> float:
        return sum(self.transition_effects.values())

    @property
    def has_pending_effect(self) -> bool:
        return self.pending_effect != 0.0

    def projected_price(self) -> float:
        """Price after this tick's pending effects, before rounding."""
        return self.price * (1.0 + self.pending_effect)

    def clear_effect(self, kind: str) -> float:
        """Drop one kind's pending effect. Returns the dropped amount."""
        return self.transition_effects.pop(kind, 0.0)

    def has_active(self, kind: str) -> bool:
        record = self.phenomena.get(kind)
        return record is not None and record.is_active


@dataclass(frozen=True)
class NewsItem:
    headline: str
    description: str
    sentiment: Sentiment
    symbol: str
    news_type: str
    phase: Phase
    kind: str
    day: int = 0
    is_resolution: bool = False  # describes a past move, not today's
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DiagnosticSnapshot:
    """Read-only view of one active pattern (for UI/debugging)."""

    symbol: str
    kind: str
    phase: Phase
    outcome: Optional[Outcome]
    bounce_number: int
    retry_count: int
    current_retracement: float
    target_retracement: float
    volume_trend: VolumeTrend
    volume_multiplier: float
    days_remaining: int
    consecutive_up_days: int
    has_higher_low: bool
    price: float
    trigger_price: float


@dataclass(frozen=True)
class TutorialHint:
    type: str
    description: str
    implication: str
    action: str
    timing: str
    catalyst: str


@dataclass(frozen=True)
class PhaseTransition:
    day: int
    symbol: str
    kind: str
    from_phase: Phase
    to_phase: Phase
    price: float = 0.0
