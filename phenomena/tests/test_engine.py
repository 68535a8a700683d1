"""Tests for the dead cat bounce phase engine."""

from __future__ import annotations

import random
import warnings
from pathlib import Path

import pytest

from phenomena import engine as engine_module
from phenomena.config import DEAD_CAT_BOUNCE, DeadCatBounceConfig
from phenomena.dependencies import InsiderBoost, PhenomenonDependencies
from phenomena.engine import DeadCatBounceEngine, Phenomenon
from phenomena.market import MarketPriceUpdater
from phenomena.models import (
    Instrument,
    Outcome,
    Phase,
    PhenomenonRecord,
    Sentiment,
    VolumeTrend,
)


class _FixedRandom(random.Random):
    """Returns ``value`` for every draw; tests change it between ticks."""

    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


def _engine(rng: random.Random | None = None, price: float = 100.0, **kwargs):
    inst = Instrument(symbol="AAA", price=price)
    deps = PhenomenonDependencies(instruments=[inst], rng=rng or random.Random(1))
    return DeadCatBounceEngine(deps, **kwargs), inst


def _attach(inst: Instrument, **fields) -> PhenomenonRecord:
    base = dict(
        kind=DEAD_CAT_BOUNCE,
        trigger_price=100.0,
        local_low=70.0,
        local_high=72.0,
        phase_start_price=70.0,
        volume_trend=VolumeTrend.DECLINING,
        target_retracement=0.30,
        crash_magnitude=0.30,
    )
    base.update(fields)
    record = PhenomenonRecord(**base)
    inst.phenomena[DEAD_CAT_BOUNCE] = record
    return record


# ---------------------------------------------------------------------------
# Trigger
# ---------------------------------------------------------------------------


class TestTrigger:
    def test_starts_crash(self) -> None:
        engine, inst = _engine()
        assert engine.trigger(inst, 0.25) is True
        record = engine.get_record(inst)
        assert record is not None
        assert record.phase is Phase.CRASH
        assert record.outcome is None
        assert record.trigger_price == 100.0
        assert 0.225 <= record.crash_magnitude <= 0.30
        assert 3 <= record.days_remaining <= 5

    def test_front_loaded_impact(self) -> None:
        engine, inst = _engine()
        engine.trigger(inst, 0.25)
        effect = inst.transition_effects[DEAD_CAT_BOUNCE]
        assert -0.30 * 0.70 <= effect <= -0.225 * 0.50
        assert inst.last_emitted_event is not None
        assert inst.last_emitted_event.expected_delta < 0

    def test_produces_crash_news_and_transition(self) -> None:
        engine, inst = _engine()
        engine.trigger(inst, 0.25)
        assert len(engine.deps.news) == 1
        item = engine.deps.news[0]
        assert item.news_type == "crash"
        assert item.sentiment is Sentiment.NEGATIVE
        transitions = engine.drain_transitions()
        assert [(t.from_phase, t.to_phase) for t in transitions] == [(Phase.INACTIVE, Phase.CRASH)]
        assert engine.drain_transitions() == []

    def test_magnitude_clamped_to_band(self) -> None:
        engine, inst = _engine()
        engine.trigger(inst, 0.9)
        assert engine.get_record(inst).crash_magnitude == 0.30

    def test_double_trigger_is_noop(self) -> None:
        engine, inst = _engine()
        engine.trigger(inst, 0.25)
        effects = dict(inst.transition_effects)
        record = engine.get_record(inst)
        assert engine.trigger(inst, 0.30) is False
        assert engine.get_record(inst) is record
        assert inst.transition_effects == effects
        assert len(engine.deps.news) == 1

    def test_none_instrument(self) -> None:
        engine, _ = _engine()
        assert engine.trigger(None, 0.25) is False  # type: ignore[arg-type]

    def test_disabled_kind(self) -> None:
        inst = Instrument(symbol="AAA", price=100.0)
        deps = PhenomenonDependencies(instruments=[inst], is_enabled=lambda kind: False)
        engine = DeadCatBounceEngine(deps)
        assert engine.trigger(inst, 0.25) is False
        assert inst.phenomena == {}

    def test_not_stepped_on_trigger_tick(self) -> None:
        engine, inst = _engine()
        engine.trigger(inst, 0.25)
        days = engine.get_record(inst).days_remaining
        assert engine.step(inst) is False
        assert engine.get_record(inst).days_remaining == days


# ---------------------------------------------------------------------------
# Crash scenario
# ---------------------------------------------------------------------------


class TestCrashScenario:
    @pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
    def test_price_after_crash_in_band(self, seed: int) -> None:
        rng = random.Random(seed)
        engine, inst = _engine(rng)
        updater = MarketPriceUpdater(rng=rng)
        engine.trigger(inst, 0.25)
        updater.apply([inst])
        record = engine.get_record(inst)

        previous_days = record.days_remaining
        for _ in range(10):
            price_before_tick = inst.price
            engine.process_tick()
            if record.phase is not Phase.CRASH:
                break
            assert record.days_remaining == previous_days - 1
            previous_days = record.days_remaining
            updater.apply([inst])
        assert record.phase is Phase.BOUNCE
        assert 68.0 <= price_before_tick <= 78.0

    def test_countdown_never_negative(self) -> None:
        engine, inst = _engine(_FixedRandom(0.5))
        record = _attach(inst, phase=Phase.CRASH, days_remaining=0)
        engine.process_tick()
        assert record.phase is Phase.BOUNCE
        assert record.days_remaining > 0


# ---------------------------------------------------------------------------
# Bounce
# ---------------------------------------------------------------------------


class TestBounce:
    def test_up_days_and_higher_low(self) -> None:
        rng = _FixedRandom(0.5)
        engine, inst = _engine(rng, price=80.0)
        updater = MarketPriceUpdater(rng=_FixedRandom(0.5))
        record = _attach(inst, phase=Phase.BOUNCE, days_remaining=10, consecutive_up_days=1)

        engine.process_tick()
        assert inst.transition_effects[DEAD_CAT_BOUNCE] > 0
        assert record.consecutive_up_days == 2
        updater.apply([inst])

        rng.value = 0.1  # pullback
        engine.process_tick()
        assert inst.transition_effects[DEAD_CAT_BOUNCE] < 0
        assert record.has_higher_low is True
        assert record.consecutive_up_days == 0

    def test_trap_scenario(self) -> None:
        engine, inst = _engine(_FixedRandom(0.99), price=72.0)
        record = _attach(inst, phase=Phase.BOUNCE, days_remaining=1)

        engine.process_tick()

        assert record.last_probability == pytest.approx(0.30)
        assert record.outcome is Outcome.TRAP
        assert record.phase is Phase.DECLINE
        event = inst.last_emitted_event
        assert event is not None
        assert event.expected_delta < 0
        assert engine.deps.news[-1].metadata["bounce_phase"] == "failed"

    def test_reversal_scenario(self) -> None:
        engine, inst = _engine(_FixedRandom(0.0), price=72.0)
        record = _attach(inst, phase=Phase.BOUNCE, days_remaining=1)

        engine.process_tick()

        assert record.outcome is Outcome.REVERSAL
        assert record.phase is Phase.CONSOLIDATION
        assert inst.transition_effects[DEAD_CAT_BOUNCE] == pytest.approx(0.01)
        assert engine.deps.news[-1].news_type == "reversal_forming"

    def test_insider_boost_read_at_decision(self) -> None:
        inst = Instrument(symbol="AAA", price=72.0)
        deps = PhenomenonDependencies(
            instruments=[inst],
            rng=_FixedRandom(0.60),
            insider_boost=lambda i: InsiderBoost(has_buy_signal=True, is_cluster_buy=True),
        )
        engine = DeadCatBounceEngine(deps)
        record = _attach(inst, phase=Phase.BOUNCE, days_remaining=1)
        engine.process_tick()
        assert record.cluster_buying is True
        assert record.last_probability == pytest.approx(0.55)
        assert record.outcome is Outcome.TRAP

    def test_outcome_assigned_once(self) -> None:
        rng = _FixedRandom(0.99)
        engine, inst = _engine(rng, price=72.0)
        record = _attach(inst, phase=Phase.BOUNCE, days_remaining=1)
        engine.process_tick()
        assert record.outcome is Outcome.TRAP
        with pytest.raises(ValueError):
            record.assign_outcome(Outcome.REVERSAL)

        # Retry bounce keeps the trap and fails again even with a favourable draw.
        rng.value = 0.0
        record.days_remaining = 1
        engine.process_tick()
        assert record.phase is Phase.BOUNCE
        assert record.retry_count == 1
        record.days_remaining = 1
        engine.process_tick()
        assert record.outcome is Outcome.TRAP
        assert record.phase is Phase.DECLINE


# ---------------------------------------------------------------------------
# Decline and retries
# ---------------------------------------------------------------------------


class TestDecline:
    def test_daily_drift_negative(self) -> None:
        engine, inst = _engine(_FixedRandom(0.99), price=70.0)
        _attach(inst, phase=Phase.DECLINE, days_remaining=6, pending_decline_magnitude=0.15)
        engine.process_tick()
        assert inst.transition_effects[DEAD_CAT_BOUNCE] < 0

    def test_retry_bounce_weakens(self) -> None:
        engine, inst = _engine(_FixedRandom(0.0), price=70.0)
        record = _attach(
            inst,
            phase=Phase.DECLINE,
            days_remaining=1,
            target_retracement=0.30,
        )
        record.assign_outcome(Outcome.TRAP)
        engine.process_tick()
        assert record.phase is Phase.BOUNCE
        assert record.retry_count == 1
        assert record.bounce_number == 2
        assert record.target_retracement == pytest.approx(0.22)
        assert record.volume_multiplier == pytest.approx(0.6 * (1 - 0.15 * 2))
        assert record.days_remaining == 14
        assert inst.transition_effects[DEAD_CAT_BOUNCE] > 0
        assert "#2" in engine.deps.news[-1].headline

    def test_target_retracement_floor(self) -> None:
        engine, inst = _engine(_FixedRandom(0.0), price=70.0)
        record = _attach(inst, phase=Phase.DECLINE, days_remaining=1, target_retracement=0.18)
        record.assign_outcome(Outcome.TRAP)
        engine.process_tick()
        assert record.target_retracement == pytest.approx(0.15)

    def test_retry_cap_forces_capitulation(self) -> None:
        engine, inst = _engine(_FixedRandom(0.0), price=60.0)
        record = _attach(inst, phase=Phase.DECLINE, days_remaining=1, retry_count=2)
        record.assign_outcome(Outcome.TRAP)
        engine.process_tick()
        assert engine.get_record(inst) is None
        assert record.phase is Phase.INACTIVE
        assert record.retry_count == 2
        assert inst.transition_effects[DEAD_CAT_BOUNCE] < 0
        item = engine.deps.news[-1]
        assert item.news_type == "crash_resolution"
        assert item.is_resolution is True
        transitions = engine.drain_transitions()
        assert (transitions[-1].from_phase, transitions[-1].to_phase) == (Phase.DECLINE, Phase.INACTIVE)

    def test_failed_retry_draw_capitulates(self) -> None:
        engine, inst = _engine(_FixedRandom(0.99), price=60.0)
        record = _attach(inst, phase=Phase.DECLINE, days_remaining=1)
        record.assign_outcome(Outcome.TRAP)
        engine.process_tick()
        assert engine.get_record(inst) is None

    def test_custom_retry_cap_zero(self) -> None:
        engine, inst = _engine(_FixedRandom(0.0), price=60.0, config=DeadCatBounceConfig(retry_cap=0))
        record = _attach(inst, phase=Phase.DECLINE, days_remaining=1)
        record.assign_outcome(Outcome.TRAP)
        engine.process_tick()
        assert engine.get_record(inst) is None


# ---------------------------------------------------------------------------
# Consolidation and recovery
# ---------------------------------------------------------------------------


class TestRecoveryPath:
    def test_consolidation_to_recovery_to_inactive(self) -> None:
        engine, inst = _engine(_FixedRandom(0.5), price=85.0)
        record = _attach(inst, phase=Phase.CONSOLIDATION, days_remaining=1)
        record.assign_outcome(Outcome.REVERSAL)

        engine.process_tick()
        assert record.phase is Phase.RECOVERY
        assert record.recovery_target is not None
        assert 70.0 < record.recovery_target < 100.0
        assert inst.transition_effects[DEAD_CAT_BOUNCE] > 0.03
        assert engine.deps.news[-1].news_type == "reversal_confirmed"
        MarketPriceUpdater(rng=_FixedRandom(0.5)).apply([inst])

        record.days_remaining = 1
        engine.process_tick()
        assert engine.get_record(inst) is None
        assert inst.transition_effects[DEAD_CAT_BOUNCE] > 0
        assert engine.deps.news[-1].news_type == "recovery_complete"
        assert inst.volume_multiplier == 1.0

    def test_consolidation_drifts_up(self) -> None:
        engine, inst = _engine(_FixedRandom(0.5), price=85.0)
        _attach(inst, phase=Phase.CONSOLIDATION, days_remaining=5)
        engine.process_tick()
        assert 0 < inst.transition_effects[DEAD_CAT_BOUNCE] <= 0.006

    def test_recovery_small_moves_not_emitted(self) -> None:
        engine, inst = _engine(_FixedRandom(0.5), price=95.0)
        _attach(inst, phase=Phase.RECOVERY, days_remaining=100, recovery_target=96.0)
        engine.process_tick()
        assert DEAD_CAT_BOUNCE not in inst.transition_effects
        assert inst.last_emitted_event is None


# ---------------------------------------------------------------------------
# Tick loop, force clear, isolation
# ---------------------------------------------------------------------------


class TestProcessTick:
    def test_step_without_record(self) -> None:
        engine, inst = _engine()
        assert engine.step(inst) is False
        engine.process_tick()
        assert engine.day == 1

    def test_feature_toggle_force_clears(self) -> None:
        enabled = {"on": True}
        inst = Instrument(symbol="AAA", price=100.0)
        deps = PhenomenonDependencies(
            instruments=[inst],
            rng=random.Random(4),
            is_enabled=lambda kind: enabled["on"],
        )
        engine = DeadCatBounceEngine(deps)
        engine.trigger(inst, 0.25)
        inst.transition_effects["other_kind"] = 0.01

        enabled["on"] = False
        engine.process_tick()

        assert engine.get_record(inst) is None
        assert DEAD_CAT_BOUNCE not in inst.transition_effects
        assert inst.transition_effects == {"other_kind": 0.01}
        assert inst.last_emitted_event is None
        assert "AAA" in engine.ended_this_tick

    def test_force_clear_without_record(self) -> None:
        engine, inst = _engine()
        assert engine.force_clear(inst) is False

    def test_one_failure_does_not_abort_tick(self) -> None:
        a = Instrument(symbol="AAA", price=100.0)
        b = Instrument(symbol="BBB", price=100.0)
        deps = PhenomenonDependencies(instruments=[a, b], rng=random.Random(2))
        engine = DeadCatBounceEngine(deps)
        engine.trigger(a, 0.25)
        engine.trigger(b, 0.25)
        a.transition_effects.clear()
        b.transition_effects.clear()
        b_days = engine.get_record(b).days_remaining

        crash_phase = engine._handlers[Phase.CRASH]

        def flaky(instrument, record):
            if instrument.symbol == "AAA":
                raise RuntimeError("boom")
            crash_phase(instrument, record)

        engine._handlers[Phase.CRASH] = flaky
        engine.process_tick()

        assert engine.get_record(b).days_remaining == b_days - 1
        assert b.transition_effects[DEAD_CAT_BOUNCE] < 0

    def test_spontaneous_crashes(self) -> None:
        a = Instrument(symbol="AAA", price=100.0)
        b = Instrument(symbol="BBB", price=100.0)
        deps = PhenomenonDependencies(instruments=[a, b], rng=random.Random(3))
        engine = DeadCatBounceEngine(
            deps,
            config=DeadCatBounceConfig(crash_daily_chance=1.0),
            spontaneous_crashes=True,
        )
        engine.trigger(a, 0.2)
        engine.process_tick()
        assert engine.get_record(b) is not None
        assert engine.get_record(b).phase is Phase.CRASH
        assert engine.get_record(b).entered_day == engine.day

    def test_no_retrigger_on_tick_that_ended(self) -> None:
        inst = Instrument(symbol="AAA", price=60.0)
        deps = PhenomenonDependencies(instruments=[inst], rng=_FixedRandom(0.99))
        engine = DeadCatBounceEngine(
            deps,
            config=DeadCatBounceConfig(crash_daily_chance=1.0),
            spontaneous_crashes=True,
        )
        record = _attach(inst, phase=Phase.DECLINE, days_remaining=1)
        record.assign_outcome(Outcome.TRAP)
        engine.process_tick()
        assert engine.get_record(inst) is None
        assert engine.check_crash_events() == []

    def test_deterministic_with_seed(self) -> None:
        def run(seed: int):
            rng = random.Random(seed)
            instruments = [Instrument(symbol=s, price=100.0) for s in ("AAA", "BBB", "CCC")]
            news: list = []
            deps = PhenomenonDependencies(instruments=instruments, news=news, rng=rng)
            engine = DeadCatBounceEngine(deps)
            updater = MarketPriceUpdater(rng=rng)
            for inst in instruments:
                engine.trigger(inst, 0.25)
            prices, phases, headlines = [], [], []
            for _ in range(150):
                engine.process_tick()
                updater.apply(instruments)
                prices.append(tuple(i.price for i in instruments))
                phases.append(tuple(
                    i.phenomena[DEAD_CAT_BOUNCE].phase.value if DEAD_CAT_BOUNCE in i.phenomena else "inactive"
                    for i in instruments
                ))
            headlines = [n.headline for n in news]
            return prices, phases, headlines

        assert run(9) == run(9)
        assert run(9)[0] != run(10)[0]


# ---------------------------------------------------------------------------
# Read-only views
# ---------------------------------------------------------------------------


class TestViews:
    def test_active_patterns(self) -> None:
        engine, inst = _engine()
        assert engine.get_active_patterns() == []
        engine.trigger(inst, 0.25)
        (snap,) = engine.get_active_patterns()
        assert snap.symbol == "AAA"
        assert snap.phase is Phase.CRASH
        assert snap.outcome is None
        assert snap.bounce_number == 1
        assert snap.trigger_price == 100.0

    def test_tutorial_hint_for_crash_item(self) -> None:
        engine, inst = _engine()
        engine.trigger(inst, 0.25)
        hint = engine.get_tutorial_hint(engine.deps.news[0])
        assert hint is not None
        assert hint.type.startswith("CRASH")


# ---------------------------------------------------------------------------
# Composition with a second phenomenon kind
# ---------------------------------------------------------------------------


class _SteadyRally(Phenomenon):
    """Minimal second kind: +2% every day while active."""

    kind = "steady_rally"
    log_tag = "RALLY"

    def trigger(self, instrument: Instrument, severity: float) -> bool:
        if self.kind in instrument.phenomena:
            return False
        instrument.phenomena[self.kind] = PhenomenonRecord(
            kind=self.kind,
            phase=Phase.RECOVERY,
            days_remaining=10,
            entered_day=self.day,
        )
        return True

    def _advance(self, instrument: Instrument, record: PhenomenonRecord) -> None:
        self.emitter.emit(instrument, self.kind, 0.02, "RALLY", record=record)


class TestAdditiveComposition:
    def _setup(self, order: str):
        inst = Instrument(symbol="AAA", price=100.0)
        deps = PhenomenonDependencies(instruments=[inst], rng=random.Random(5))
        dcb = DeadCatBounceEngine(deps)
        rally = _SteadyRally(deps, registry=dcb.registry)
        dcb.trigger(inst, 0.25)
        rally.trigger(inst, 0.0)
        MarketPriceUpdater(rng=random.Random(0)).apply([inst])
        engines = [dcb, rally] if order == "dcb_first" else [rally, dcb]
        for engine in engines:
            engine.process_tick()
        return inst

    def test_both_slots_present_and_summed(self) -> None:
        inst = self._setup("dcb_first")
        assert set(inst.transition_effects) == {DEAD_CAT_BOUNCE, "steady_rally"}
        total = inst.transition_effects[DEAD_CAT_BOUNCE] + 0.02
        event = inst.last_emitted_event
        assert event is not None
        assert event.total_effect == pytest.approx(total)

        previous = inst.price
        update = MarketPriceUpdater(rng=random.Random(0)).update(inst)
        assert update.applied_effect == pytest.approx(total)
        assert update.new_price == event.expected_price
        assert update.new_price == round(previous * (1 + total), 2)

    def test_either_order_keeps_both_slots(self) -> None:
        inst = self._setup("rally_first")
        assert inst.transition_effects["steady_rally"] == 0.02
        assert inst.transition_effects[DEAD_CAT_BOUNCE] < 0
        assert inst.last_emitted_event.kind == DEAD_CAT_BOUNCE

    def test_force_clear_leaves_other_kind(self) -> None:
        inst = self._setup("dcb_first")
        DeadCatBounceEngine(PhenomenonDependencies(instruments=[inst])).force_clear(inst)
        assert inst.transition_effects == {"steady_rally": 0.02}
        assert inst.has_active("steady_rally")


class TestModuleSource:
    def test_compiles_without_warnings(self) -> None:
        source = Path(engine_module.__file__).read_text(encoding="utf-8")
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(source, engine_module.__file__, "exec")
