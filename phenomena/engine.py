"""Phase engine for multi-day market phenomena.

``Phenomenon`` is the shared contract: one record per instrument per kind,
stepped once per simulated day by ``process_tick``.  ``DeadCatBounceEngine``
implements the dead cat bounce:

    INACTIVE -> CRASH -> BOUNCE -> DECLINE -> BOUNCE (retry) ... -> INACTIVE
                               +-> CONSOLIDATION -> RECOVERY -> INACTIVE

Each phase handler that moves price goes through the ``PriceEventEmitter``;
each transition produces at least one news item.  Countdowns are decremented
before the expiry check, so a phase entered with ``days_remaining = n + 1``
runs ``n`` in-phase days and transitions on the following tick.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Set

from phenomena.config import DEAD_CAT_BOUNCE, DeadCatBounceConfig
from phenomena.dependencies import PhenomenonDependencies
from phenomena.framework.headline_registry import HeadlineRegistry
from phenomena.models import (
    DiagnosticSnapshot,
    Instrument,
    NewsItem,
    Outcome,
    Phase,
    PhaseTransition,
    PhenomenonRecord,
    TutorialHint,
    VolumeTrend,
    is_valid_transition,
)
from phenomena.news import CRASH_CATALYSTS, Catalyst, NewsGenerator
from phenomena.price_events import PriceEventEmitter
from phenomena.signals import OutcomeProbability, SignalEvaluator, calculate_retracement
from phenomena.tutorial import get_tutorial_hint

LOGGER = logging.getLogger(__name__)


class Phenomenon(ABC):
    """Base contract for a phenomenon kind.

    Subclasses implement ``trigger`` and ``_advance``.  The base class owns
    the day counter, the per-tick loop, force-clearing and the transition
    log.
    """

    kind: str = ""
    log_tag: str = "PHENOM"

    def __init__(
        self,
        deps: PhenomenonDependencies | None = None,
        registry: HeadlineRegistry | None = None,
    ) -> None:
        self.deps = deps or PhenomenonDependencies()
        self._registry = registry or HeadlineRegistry()
        self._day = 0
        self._emitter = PriceEventEmitter(tag=self.log_tag, day_provider=lambda: self._day)
        self._transitions: List[PhaseTransition] = []
        self._ended_this_tick: Set[str] = set()

    @property
    def day(self) -> int:
        return self._day

    @property
    def registry(self) -> HeadlineRegistry:
        return self._registry

    @property
    def emitter(self) -> PriceEventEmitter:
        return self._emitter

    @property
    def ended_this_tick(self) -> frozenset[str]:
        """Symbols whose record was cleared or completed during the current tick."""
        return frozenset(self._ended_this_tick)

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abstractmethod
    def trigger(self, instrument: Instrument, severity: float) -> bool:
        raise NotImplementedError

    @abstractmethod
    def _advance(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        """Run the phase handler after the countdown was decremented."""
        raise NotImplementedError

    def _after_tick(self) -> None:
        return None

    # ------------------------------------------------------------------
    # Tick loop
    # ------------------------------------------------------------------

    def get_record(self, instrument: Instrument | None) -> PhenomenonRecord | None:
        if instrument is None:
            return None
        return instrument.phenomena.get(self.kind)

    def step(self, instrument: Instrument) -> bool:
        """Advance one instrument by one day.  False if there is nothing to do."""
        record = self.get_record(instrument)
        if record is None or not record.is_active:
            LOGGER.debug("%s: step on %s without an active record", self.kind, getattr(instrument, "symbol", None))
            return False
        if record.entered_day == self._day:
            # Triggered during this tick; the trigger already emitted today's move.
            return False
        record.days_remaining = max(0, record.days_remaining - 1)
        self._advance(instrument, record)
        return True

    def process_tick(self) -> None:
        self._day += 1
        self._registry.begin_day(self._day)
        self._ended_this_tick.clear()

        enabled = self.deps.is_enabled(self.kind)
        for instrument in list(self.deps.instruments):
            if not instrument.has_active(self.kind):
                continue
            if not enabled:
                self.force_clear(instrument)
                continue
            try:
                self.step(instrument)
            except Exception:
                LOGGER.exception("%s: step failed for %s on day %d", self.kind, instrument.symbol, self._day)

        if enabled:
            self._after_tick()

    def force_clear(self, instrument: Instrument) -> bool:
        """Drop the record and any effect it queued for this tick."""
        record = instrument.phenomena.pop(self.kind, None)
        dropped = instrument.clear_effect(self.kind)
        event = instrument.last_emitted_event
        if event is not None and event.kind == self.kind:
            instrument.last_emitted_event = None
        if record is None:
            return False
        record.phase = Phase.INACTIVE
        record.days_remaining = 0
        instrument.volume_multiplier = 1.0
        self._ended_this_tick.add(instrument.symbol)
        LOGGER.info("%s: force-cleared %s (dropped pending effect %+.4f)", self.kind, instrument.symbol, dropped)
        return True

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def drain_transitions(self) -> List[PhaseTransition]:
        """Transitions recorded since the last drain."""
        drained = list(self._transitions)
        self._transitions.clear()
        return drained

    def _transition(self, instrument: Instrument, record: PhenomenonRecord, new_phase: Phase) -> bool:
        old_phase = record.phase
        if not is_valid_transition(old_phase, new_phase):
            LOGGER.error(
                "%s: refused transition %s -> %s for %s",
                self.kind,
                old_phase.value,
                new_phase.value,
                instrument.symbol,
            )
            return False
        record.phase = new_phase
        self._transitions.append(
            PhaseTransition(
                day=self._day,
                symbol=instrument.symbol,
                kind=self.kind,
                from_phase=old_phase,
                to_phase=new_phase,
                price=instrument.price,
            )
        )
        return True

    def _destroy(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        """Terminate a record that has reached INACTIVE.

        The effect emitted on this tick stays queued for the market update.
        """
        self._transition(instrument, record, Phase.INACTIVE)
        record.days_remaining = 0
        instrument.phenomena.pop(self.kind, None)
        instrument.volume_multiplier = 1.0
        self._ended_this_tick.add(instrument.symbol)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def get_active_patterns(self) -> List[DiagnosticSnapshot]:
        snapshots: List[DiagnosticSnapshot] = []
        for instrument in self.deps.instruments:
            record = self.get_record(instrument)
            if record is None or not record.is_active:
                continue
            snapshots.append(
                DiagnosticSnapshot(
                    symbol=instrument.symbol,
                    kind=self.kind,
                    phase=record.phase,
                    outcome=record.outcome,
                    bounce_number=record.bounce_number,
                    retry_count=record.retry_count,
                    current_retracement=calculate_retracement(
                        instrument.price, record.local_low, record.trigger_price
                    ),
                    target_retracement=record.target_retracement,
                    volume_trend=record.volume_trend,
                    volume_multiplier=record.volume_multiplier,
                    days_remaining=record.days_remaining,
                    consecutive_up_days=record.consecutive_up_days,
                    has_higher_low=record.has_higher_low,
                    price=instrument.price,
                    trigger_price=record.trigger_price,
                )
            )
        return snapshots

    def get_tutorial_hint(self, item: NewsItem | None) -> TutorialHint | None:
        return get_tutorial_hint(item)


class DeadCatBounceEngine(Phenomenon):
    """Crash, bounce and (usually) a trap.

    The bounce outcome is drawn once, when the first bounce expires, from
    the signals observed so far.  A trap sends the record into DECLINE; it
    may bounce again up to ``retry_cap`` times with weaker parameters before
    capitulating.  A reversal consolidates and then recovers.
    """

    kind = DEAD_CAT_BOUNCE
    log_tag = "DCB"

    def __init__(
        self,
        deps: PhenomenonDependencies | None = None,
        config: DeadCatBounceConfig | None = None,
        registry: HeadlineRegistry | None = None,
        spontaneous_crashes: bool = False,
    ) -> None:
        super().__init__(deps=deps, registry=registry)
        self.config = config or DeadCatBounceConfig()
        self.spontaneous_crashes = spontaneous_crashes
        self.evaluator = SignalEvaluator(self.config)
        self.news = NewsGenerator(
            self.deps,
            registry=self._registry,
            kind=self.kind,
            day_provider=lambda: self._day,
        )
        self._handlers: Dict[Phase, Callable[[Instrument, PhenomenonRecord], None]] = {
            Phase.CRASH: self._crash_phase,
            Phase.BOUNCE: self._bounce_phase,
            Phase.DECLINE: self._decline_phase,
            Phase.CONSOLIDATION: self._consolidation_phase,
            Phase.RECOVERY: self._recovery_phase,
        }

    # ------------------------------------------------------------------
    # Trigger
    # ------------------------------------------------------------------

    def trigger(
        self,
        instrument: Instrument,
        severity: float,
        catalyst: Catalyst | None = None,
    ) -> bool:
        """Start a crash.  False (no mutation) if a record already exists."""
        if instrument is None:
            return False
        if self.kind in instrument.phenomena:
            LOGGER.debug("%s: %s already has an active record", self.kind, instrument.symbol)
            return False
        if not self.deps.is_enabled(self.kind):
            return False
        if instrument.price <= 0:
            LOGGER.warning("%s: cannot trigger %s at price %.2f", self.kind, instrument.symbol, instrument.price)
            return False

        cfg = self.config
        deps = self.deps
        magnitude = severity * deps.uniform(*cfg.crash_severity_jitter)
        magnitude = max(cfg.crash_min_drop, min(cfg.crash_max_drop, magnitude))
        front_load = deps.uniform(*cfg.crash_front_load)
        duration = deps.randint(*cfg.crash_days)
        if catalyst is None:
            catalyst = deps.choice(CRASH_CATALYSTS)

        price = instrument.price
        record = PhenomenonRecord(
            kind=self.kind,
            phase=Phase.INACTIVE,
            days_remaining=duration + 1,
            trigger_price=price,
            phase_start_price=price,
            local_low=price,
            local_high=price,
            volume_trend=VolumeTrend.SPIKE,
            severity=severity,
            crash_magnitude=magnitude,
            volume_multiplier=cfg.volume_crash,
            entered_day=self._day,
        )
        instrument.phenomena[self.kind] = record
        instrument.volume_multiplier = cfg.volume_crash
        self._transition(instrument, record, Phase.CRASH)

        self._emitter.emit(
            instrument,
            self.kind,
            -magnitude * front_load,
            "CRASH",
            extra=f"[severity={severity:.2f} magnitude={magnitude:.1%} days={duration}]",
            record=record,
        )
        record.local_low = min(record.local_low, instrument.projected_price())
        self.news.crash(instrument, record, catalyst)
        return True

    def check_crash_events(self) -> List[str]:
        """Spontaneous crashes on idle instruments.  Returns the symbols triggered."""
        triggered: List[str] = []
        for instrument in list(self.deps.instruments):
            if self.kind in instrument.phenomena or instrument.symbol in self._ended_this_tick:
                continue
            if instrument.price <= 0:
                continue
            if self.deps.random() >= self.config.crash_daily_chance:
                continue
            catalyst = self.deps.choice(CRASH_CATALYSTS)
            if self.trigger(instrument, catalyst.severity, catalyst):
                triggered.append(instrument.symbol)
        return triggered

    def _after_tick(self) -> None:
        if self.spontaneous_crashes:
            self.check_crash_events()

    def _advance(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        handler = self._handlers.get(record.phase)
        if handler is None:
            LOGGER.warning("%s: no handler for phase %s on %s", self.kind, record.phase, instrument.symbol)
            return
        handler(instrument, record)

    def _meme(self, instrument: Instrument) -> float:
        return self.deps.meme_multiplier(instrument)

    # ------------------------------------------------------------------
    # CRASH
    # ------------------------------------------------------------------

    def _crash_phase(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        if record.days_remaining <= 0:
            self._enter_bounce(instrument, record)
            return
        target = record.trigger_price * (1.0 - record.crash_magnitude)
        gap = (target - instrument.projected_price()) / instrument.price
        change = min(0.0, gap / record.days_remaining)
        if change < 0:
            self._emitter.emit(
                instrument,
                self.kind,
                change,
                "CRASH CONTINUES",
                extra=f"[daysLeft={record.days_remaining}]",
                record=record,
            )
        record.local_low = min(record.local_low, instrument.projected_price())

    def _enter_bounce(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        cfg = self.config
        deps = self.deps
        record.local_low = min(record.local_low, instrument.projected_price())
        record.phase_start_price = instrument.price
        record.days_remaining = deps.randint(*cfg.bounce_days) + 1
        record.bounce_days_total = record.days_remaining - 1
        record.target_retracement = deps.uniform(*cfg.target_retracement)
        if deps.random() < cfg.increasing_volume_chance:
            record.volume_trend = VolumeTrend.INCREASING
            record.volume_multiplier = cfg.volume_reversal_bounce
        else:
            record.volume_trend = VolumeTrend.DECLINING
            record.volume_multiplier = cfg.volume_trap_bounce
        instrument.volume_multiplier = record.volume_multiplier
        record.consecutive_up_days = 1
        record.has_higher_low = False

        self._transition(instrument, record, Phase.BOUNCE)
        strength = deps.uniform(*cfg.bounce_start_strength) * self._meme(instrument)
        self._emitter.emit(
            instrument,
            self.kind,
            strength,
            "BOUNCE START",
            extra=f"[volume={record.volume_trend.value} target={record.target_retracement:.0%}]",
            record=record,
        )
        projected = instrument.projected_price()
        record.local_high = projected
        record.retracement = calculate_retracement(projected, record.local_low, record.trigger_price)
        self.news.bounce_start(instrument, record, record.retracement)

    # ------------------------------------------------------------------
    # BOUNCE
    # ------------------------------------------------------------------

    def _bounce_phase(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        if record.days_remaining <= 0:
            self._resolve_bounce(instrument, record)
            return

        cfg = self.config
        deps = self.deps
        if deps.random() < cfg.bounce_pullback_chance:
            change = -deps.uniform(*cfg.bounce_pullback)
            label = "BOUNCE PULLBACK"
        else:
            target = record.local_low + record.target_retracement * (record.trigger_price - record.local_low)
            gap = (target - instrument.projected_price()) / instrument.price
            change = max(0.002, min(cfg.bounce_max_daily_gain, gap / record.days_remaining))
            label = f"BOUNCE #{record.bounce_number}" if record.retry_count else "BOUNCE"
        self._emitter.emit(
            instrument,
            self.kind,
            change,
            label,
            extra=f"[daysLeft={record.days_remaining}]",
            record=record,
        )

        projected = instrument.projected_price()
        if change > 0:
            record.consecutive_up_days += 1
        else:
            if record.consecutive_up_days >= 2 and projected > record.local_low:
                record.has_higher_low = True
            record.consecutive_up_days = 0
        record.local_high = max(record.local_high, projected)
        record.retracement = calculate_retracement(projected, record.local_low, record.trigger_price)

        if deps.random() < cfg.bounce_progress_news_chance:
            self.news.bounce_progress(instrument, record, record.retracement, change)

    def _resolve_bounce(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        projected = instrument.projected_price()
        if record.outcome is None:
            boost = self.deps.insider_boost(instrument)
            record.insider_buying = boost.has_buy_signal
            record.cluster_buying = boost.is_cluster_buy
            decision = self.evaluator.decide(record, projected, self.deps.rng)
            record.assign_outcome(decision.outcome)
            record.last_probability = decision.probability.probability
            probability = decision.probability
            LOGGER.info(
                "%s: %s bounce resolved %s (p=%.2f draw=%.3f)",
                self.kind,
                instrument.symbol,
                decision.outcome.value,
                probability.probability,
                decision.draw,
            )
        else:
            probability = self.evaluator.compute_outcome_probability(record, projected)

        if record.outcome is Outcome.REVERSAL:
            self._enter_consolidation(instrument, record, probability)
        else:
            self._enter_decline(instrument, record, probability)

    # ------------------------------------------------------------------
    # DECLINE
    # ------------------------------------------------------------------

    def _enter_decline(
        self,
        instrument: Instrument,
        record: PhenomenonRecord,
        probability: OutcomeProbability,
    ) -> None:
        cfg = self.config
        deps = self.deps
        retracement = calculate_retracement(instrument.projected_price(), record.local_low, record.trigger_price)
        record.phase_start_price = instrument.price
        drops = cfg.subsequent_drops
        record.pending_decline_magnitude = drops[min(record.retry_count, len(drops) - 1)]
        record.days_remaining = deps.randint(*cfg.decline_days) + 1
        record.volume_trend = VolumeTrend.DECLINING
        record.consecutive_up_days = 0

        self._transition(instrument, record, Phase.DECLINE)
        drop = deps.uniform(*cfg.failed_bounce_drop) * self._meme(instrument)
        self._emitter.emit(
            instrument,
            self.kind,
            -drop,
            "BOUNCE FAILED",
            extra=f"[retracement={retracement:.0%} p={probability.probability:.2f}]",
            record=record,
        )
        record.local_low = min(record.local_low, instrument.projected_price())
        self.news.bounce_failed(instrument, record, retracement, probability)

    def _decline_phase(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        cfg = self.config
        deps = self.deps
        if record.days_remaining <= 0:
            chance = max(0.0, cfg.retry_base_chance - record.bounce_number * cfg.retry_chance_decay)
            if record.retry_count < cfg.retry_cap and deps.random() < chance:
                self._enter_retry_bounce(instrument, record)
            else:
                self._capitulate(instrument, record)
            return

        target = record.phase_start_price * (1.0 - record.pending_decline_magnitude)
        gap = (target - instrument.projected_price()) / instrument.price
        change = gap / record.days_remaining + deps.uniform(-cfg.decline_noise, cfg.decline_noise) / 2
        change = min(-0.001, change)
        self._emitter.emit(
            instrument,
            self.kind,
            change,
            "DECLINE",
            extra=f"[daysLeft={record.days_remaining}]",
            record=record,
        )
        record.local_low = min(record.local_low, instrument.projected_price())

    def _enter_retry_bounce(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        cfg = self.config
        deps = self.deps
        record.retry_count += 1
        n = record.bounce_number
        record.local_low = min(record.local_low, instrument.projected_price())
        record.phase_start_price = instrument.price
        record.target_retracement = max(
            cfg.min_target_retracement,
            record.target_retracement - cfg.retry_retracement_step,
        )
        record.volume_multiplier = cfg.volume_trap_bounce * (1.0 - cfg.retry_volume_decay * n)
        record.volume_trend = VolumeTrend.DECLINING
        instrument.volume_multiplier = record.volume_multiplier
        record.days_remaining = max(cfg.retry_bounce_min_days, 15 - n) + deps.randint(0, 2) + 1
        record.bounce_days_total = record.days_remaining - 1
        record.consecutive_up_days = 1
        record.has_higher_low = False

        self._transition(instrument, record, Phase.BOUNCE)
        strength = deps.uniform(*cfg.retry_bounce_strength) * self._meme(instrument)
        self._emitter.emit(
            instrument,
            self.kind,
            strength,
            f"BOUNCE #{n}",
            extra=f"[retry={record.retry_count} target={record.target_retracement:.0%}]",
            record=record,
        )
        projected = instrument.projected_price()
        record.local_high = projected
        record.retracement = calculate_retracement(projected, record.local_low, record.trigger_price)
        self.news.another_bounce(instrument, record)

    def _capitulate(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        drop = self.deps.uniform(*self.config.capitulation_drop) * self._meme(instrument)
        self._emitter.emit(
            instrument,
            self.kind,
            -drop,
            "CAPITULATION",
            extra=f"[bounces={record.bounce_number}] [END]",
            record=record,
        )
        self.news.capitulation(instrument, record)
        self._destroy(instrument, record)

    # ------------------------------------------------------------------
    # CONSOLIDATION / RECOVERY
    # ------------------------------------------------------------------

    def _enter_consolidation(
        self,
        instrument: Instrument,
        record: PhenomenonRecord,
        probability: OutcomeProbability,
    ) -> None:
        cfg = self.config
        retracement = calculate_retracement(instrument.projected_price(), record.local_low, record.trigger_price)
        record.phase_start_price = instrument.price
        record.days_remaining = self.deps.randint(*cfg.consolidation_days) + 1
        record.volume_trend = VolumeTrend.STEADY
        record.volume_multiplier = cfg.volume_reversal_bounce
        instrument.volume_multiplier = record.volume_multiplier

        self._transition(instrument, record, Phase.CONSOLIDATION)
        self._emitter.emit(
            instrument,
            self.kind,
            cfg.reversal_confirm_gain,
            "REVERSAL CONFIRMED",
            extra=f"[retracement={retracement:.0%} p={probability.probability:.2f}]",
            record=record,
        )
        self.news.consolidation(instrument, record, retracement, probability)

    def _consolidation_phase(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        cfg = self.config
        deps = self.deps
        if record.days_remaining <= 0:
            self._enter_recovery(instrument, record)
            return
        self._emitter.emit(
            instrument,
            self.kind,
            deps.uniform(*cfg.consolidation_drift),
            "CONSOLIDATION",
            extra=f"[daysLeft={record.days_remaining}]",
            record=record,
        )
        if deps.random() < cfg.higher_low_news_chance:
            record.has_higher_low = True
            self.news.higher_low(instrument, record)

    def _enter_recovery(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        cfg = self.config
        deps = self.deps
        record.phase_start_price = instrument.price
        lost = record.trigger_price - record.local_low
        record.recovery_target = record.local_low + deps.uniform(*cfg.recovery_target) * lost
        record.days_remaining = deps.randint(*cfg.recovery_days) + 1
        record.volume_trend = VolumeTrend.INCREASING
        record.volume_multiplier = cfg.volume_confirmation
        instrument.volume_multiplier = record.volume_multiplier

        self._transition(instrument, record, Phase.RECOVERY)
        strength = deps.uniform(*cfg.breakout_strength) * self._meme(instrument)
        self._emitter.emit(
            instrument,
            self.kind,
            strength,
            "BREAKOUT",
            extra=f"[target=${record.recovery_target:.2f}]",
            record=record,
        )
        self.news.breakout(instrument, record)

    def _recovery_phase(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        cfg = self.config
        deps = self.deps
        meme = self._meme(instrument)
        if record.days_remaining <= 0:
            gain = deps.uniform(*cfg.recovery_complete_gain) * meme
            self._emitter.emit(instrument, self.kind, gain, "RECOVERY COMPLETE", extra="[END]", record=record)
            self.news.recovery_complete(instrument, record)
            self._destroy(instrument, record)
            return

        target = record.recovery_target or record.trigger_price
        remaining = max(0.0, (target - instrument.projected_price()) / instrument.price)
        change = remaining / (record.days_remaining + 3) * deps.uniform(0.7, 1.2) * meme
        instrument.sentiment_offset = deps.uniform(0.03, 0.06) * meme
        emitted = False
        if abs(change) > cfg.recovery_min_move:
            emitted = (
                self._emitter.emit(
                    instrument,
                    self.kind,
                    change,
                    "RECOVERY CONTINUES",
                    extra=f"[daysLeft={record.days_remaining}]",
                    record=record,
                )
                is not None
            )
        if deps.random() < cfg.recovery_progress_news_chance and emitted:
            self.news.recovery_progress(instrument, record)
