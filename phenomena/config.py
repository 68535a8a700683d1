"""Configuration for the phenomenon engine.

Two layers:

- ``DeadCatBounceConfig`` holds the pattern constants (probability model,
  phase durations, magnitude bands, news rates).  It is immutable and
  passed explicitly to every component that needs it.
- ``PhenomenaSettings`` holds runtime knobs for a simulation session and is
  built from ``PHENOM_*`` environment variables by ``load_settings()``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Tuple

from dotenv import load_dotenv


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _as_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _as_optional_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    return int(value)


def _as_csv(value: str | None) -> List[str]:
    if value is None or not value.strip():
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


# Prices are compared and displayed at cent precision.
PRICE_DECIMALS = 2

DEAD_CAT_BOUNCE = "dead_cat_bounce"


@dataclass(frozen=True)
class DeadCatBounceConfig:
    """Constants for the dead cat bounce pattern.

    Probability model (Bulkowski base rate plus confirming signals):

    - base 30%: seven in ten bounces are traps
    - retracement above 50% adds 20%, above 61.8% adds 30% (exclusive tiers)
    - rising volume adds 15%, a higher low 10%, the three-day rule 5%
    - insider buying adds 10%, cluster buying 25% (exclusive tiers)
    - capped at 85%; a bounce is never a certainty

    Duration ranges are inclusive day counts.
    """

    # ── Outcome probability ────────────────────────────────────────
    base_probability: float = 0.30
    retracement_50_threshold: float = 0.50
    retracement_618_threshold: float = 0.618
    retracement_50_bonus: float = 0.20
    retracement_618_bonus: float = 0.30
    rising_volume_bonus: float = 0.15
    higher_low_bonus: float = 0.10
    three_day_rule_days: int = 3
    three_day_rule_bonus: float = 0.05
    insider_buying_bonus: float = 0.10
    cluster_buying_bonus: float = 0.25
    max_probability: float = 0.85

    # ── Crash ──────────────────────────────────────────────────────
    crash_daily_chance: float = 0.02
    crash_min_drop: float = 0.15
    crash_max_drop: float = 0.30
    crash_severity_jitter: Tuple[float, float] = (0.9, 1.2)
    crash_front_load: Tuple[float, float] = (0.50, 0.70)

    # ── Phase durations (days) ─────────────────────────────────────
    crash_days: Tuple[int, int] = (2, 4)
    bounce_days: Tuple[int, int] = (15, 30)
    decline_days: Tuple[int, int] = (5, 10)
    consolidation_days: Tuple[int, int] = (10, 20)
    recovery_days: Tuple[int, int] = (60, 120)
    retry_bounce_min_days: int = 3

    # ── Bounce ─────────────────────────────────────────────────────
    bounce_start_strength: Tuple[float, float] = (0.04, 0.08)
    retry_bounce_strength: Tuple[float, float] = (0.02, 0.05)
    target_retracement: Tuple[float, float] = (0.28, 0.75)
    retry_retracement_step: float = 0.08
    min_target_retracement: float = 0.15
    bounce_pullback_chance: float = 0.30
    bounce_pullback: Tuple[float, float] = (0.005, 0.02)
    bounce_max_daily_gain: float = 0.045
    increasing_volume_chance: float = 0.40

    # ── Trap / decline ─────────────────────────────────────────────
    failed_bounce_drop: Tuple[float, float] = (0.04, 0.08)
    subsequent_drops: Tuple[float, ...] = (0.15, 0.20, 0.25)
    decline_noise: float = 0.01
    retry_cap: int = 2
    retry_base_chance: float = 0.55
    retry_chance_decay: float = 0.18
    capitulation_drop: Tuple[float, float] = (0.08, 0.14)

    # ── Reversal / recovery ────────────────────────────────────────
    reversal_confirm_gain: float = 0.01
    consolidation_drift: Tuple[float, float] = (0.001, 0.006)
    breakout_strength: Tuple[float, float] = (0.04, 0.08)
    recovery_target: Tuple[float, float] = (0.60, 0.90)
    recovery_min_move: float = 0.005
    recovery_complete_gain: Tuple[float, float] = (0.03, 0.06)

    # ── Volume signature (multiples of normal) ─────────────────────
    volume_crash: float = 3.0
    volume_trap_bounce: float = 0.6
    volume_reversal_bounce: float = 1.2
    volume_confirmation: float = 1.5
    retry_volume_decay: float = 0.15

    # ── News rates ─────────────────────────────────────────────────
    bounce_progress_news_chance: float = 0.25
    higher_low_news_chance: float = 0.20
    recovery_progress_news_chance: float = 0.15

    def __post_init__(self) -> None:
        if not 0.0 <= self.base_probability <= self.max_probability < 1.0:
            raise ValueError("probabilities must satisfy 0 <= base <= max < 1")
        if self.retry_cap < 0:
            raise ValueError("retry_cap must be non-negative")


@dataclass(frozen=True)
class PhenomenaSettings:
    """Runtime settings for a simulation session.

    All env vars are prefixed with ``PHENOM_``.
    """

    log_level: str = "INFO"
    seed: int | None = None
    days: int = 200
    symbols: List[str] = field(
        default_factory=lambda: ["DCB1", "DCB2", "DCB3", "DCB4", "DCB5"],
    )
    starting_price: float = 100.0
    spontaneous_crashes: bool = False
    crash_daily_chance: float = 0.02
    retrigger_chance: float = 0.10
    disabled_kinds: List[str] = field(default_factory=list)


def load_settings() -> PhenomenaSettings:
    """Build ``PhenomenaSettings`` from ``PHENOM_*`` environment variables."""
    load_dotenv(override=False)
    return PhenomenaSettings(
        log_level=os.getenv("PHENOM_LOG_LEVEL", "INFO"),
        seed=_as_optional_int(os.getenv("PHENOM_SEED")),
        days=_as_int(os.getenv("PHENOM_DAYS"), 200),
        symbols=_as_csv(os.getenv("PHENOM_SYMBOLS"))
        or ["DCB1", "DCB2", "DCB3", "DCB4", "DCB5"],
        starting_price=_as_float(os.getenv("PHENOM_STARTING_PRICE"), 100.0),
        spontaneous_crashes=_as_bool(os.getenv("PHENOM_SPONTANEOUS_CRASHES"), False),
        crash_daily_chance=_as_float(os.getenv("PHENOM_CRASH_DAILY_CHANCE"), 0.02),
        retrigger_chance=_as_float(os.getenv("PHENOM_RETRIGGER_CHANCE"), 0.10),
        disabled_kinds=[kind.lower() for kind in _as_csv(os.getenv("PHENOM_DISABLED_KINDS"))],
    )
