"""Coupling validator: seeded replay of the phenomenon engine.

Replays N simulated days across several instruments and checks that price
and narrative stay coupled:

- Headline direction (keyword classification) agrees with the realized
  move, except resolution items describing a past move
- The price each phenomenon logged equals the price the market applied
- Nonzero pending effects always come with an emitted event
- Every phase transition is in the transition table and has same-day news
- No instrument gets the same headline twice on one day
- Every reachable phase is exercised over the run

Usage::

    validator = CouplingValidator()
    report = validator.run(days=200, seed=42)
    if not report.ok:
        for d in report.defects:
            print(d.code.value, d.message)
"""

from __future__ import annotations

import logging
import random
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence, Set, Tuple

import numpy as np

from phenomena.config import DeadCatBounceConfig
from phenomena.dependencies import PhenomenonDependencies
from phenomena.engine import DeadCatBounceEngine
from phenomena.market import MarketPriceUpdater, PriceUpdate
from phenomena.models import Instrument, NewsItem, Phase, PhaseTransition, is_valid_transition
from phenomena.news import CRASH_CATALYSTS

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class DiagnosticSeverity(Enum):
    DEFECT = "defect"     # Coupling contract broken.
    WARNING = "warning"   # Outside the expected band; investigate.
    INFO = "info"


class DiagnosticCode(str, Enum):
    DIRECTION_MISMATCH = "direction_mismatch"
    PRICE_PARITY = "price_parity"
    DELTA_PARITY = "delta_parity"
    MISSING_EMITTED_EVENT = "missing_emitted_event"
    ORPHAN_PHASE = "orphan_phase"
    DUPLICATE_HEADLINE = "duplicate_headline"
    INVALID_TRANSITION = "invalid_transition"
    SIGNAL_COUNT_MISMATCH = "signal_count_mismatch"
    PHASE_PRICE = "phase_price"
    MISSING_PHASE = "missing_phase"
    RETRY_CAP = "retry_cap"
    MAGNITUDE = "magnitude"


@dataclass(frozen=True)
class Diagnostic:
    code: DiagnosticCode
    severity: DiagnosticSeverity
    message: str
    day: int = 0
    symbol: str = ""
    data: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Headline classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HeadlineCategory:
    name: str
    keywords: Tuple[str, ...]
    expected_direction: int
    magnitude_min: float
    magnitude_max: float
    # A move against the expected direction up to this size is tolerated.
    max_wrong_direction: float


BEARISH_STRONG = HeadlineCategory(
    "bearish_strong",
    ("CRASHES", "PLUNGES", "COLLAPSES", "BREAKS DOWN", "BREAKDOWN", "CAPITULATES", "TANKS",
     "CRATERS", "DECIMATED", "HAMMERED", "PLUMMETS", "TUMBLES", "NOSEDIVES", "NEW LOWS", "FRAUD"),
    -1, 0.03, 0.35, 0.02,
)
BEARISH_MODERATE = HeadlineCategory(
    "bearish_moderate",
    ("FALLS", "DROPS", "DECLINES", "SLIPS", "WEAKENS", "FADES", "SELLS OFF", "UNDER PRESSURE",
     "LOSES", "RETREATS", "SLIDES", "LOWER", "FAILS", "TRAP", "DECLINE", "FIZZLES"),
    -1, 0.005, 0.15, 0.03,
)
BULLISH_STRONG = HeadlineCategory(
    "bullish_strong",
    ("SURGES", "SOARS", "ROCKETS", "BREAKS OUT", "BREAKOUT", "EXPLODES", "SKYROCKETS", "MOONS",
     "BLASTS OFF", "SPIKES"),
    1, 0.03, 0.35, 0.02,
)
BULLISH_MODERATE = HeadlineCategory(
    "bullish_moderate",
    ("RISES", "GAINS", "CLIMBS", "ADVANCES", "RALLIES", "RECOVERS", "BOUNCES", "REBOUNDS",
     "STRENGTHENS", "HIGHER", "CONFIRMATION", "HOLDS", "RECOVERY", "REVERSAL"),
    1, 0.005, 0.15, 0.06,
)

NEWS_CATEGORIES: Tuple[HeadlineCategory, ...] = (
    BEARISH_STRONG,
    BEARISH_MODERATE,
    BULLISH_STRONG,
    BULLISH_MODERATE,
)

_BULLISH_CONTEXT = ("PUT/CALL RATIO", "P/C RATIO", "PUT-CALL", "SHORT INTEREST SOARS", "SHORTS SOAR")
_SPLIT_REVERSAL = ("T+3", "POST-SPLIT")
_GIVING_BACK = ("GIVES BACK", "HOLD BAGS", "HOLD THE BAG")


@dataclass(frozen=True)
class HeadlineClassification:
    category: HeadlineCategory
    keyword: str


def classify_headline(headline: str) -> HeadlineClassification | None:
    """First matching keyword wins, bearish categories first.

    Context phrases override the naive match: falling put/call ratios and
    soaring short interest are not what the verb suggests, a post-split
    "reversal" is bearish and "gives back gains" is not a gain.
    """
    upper = headline.upper()
    bullish_context = any(term in upper for term in _BULLISH_CONTEXT)
    split_reversal = any(term in upper for term in _SPLIT_REVERSAL)
    giving_back = any(term in upper for term in _GIVING_BACK)

    for category in NEWS_CATEGORIES:
        for keyword in category.keywords:
            if keyword not in upper:
                continue
            if bullish_context and category.expected_direction < 0:
                continue
            if keyword == "SOARS" and "SHORT INTEREST" in upper:
                return HeadlineClassification(BEARISH_MODERATE, keyword)
            if keyword == "REVERSAL" and split_reversal:
                return HeadlineClassification(BEARISH_MODERATE, keyword)
            if keyword in ("GAINS", "HOLDS") and giving_back:
                return HeadlineClassification(BEARISH_MODERATE, keyword)
            return HeadlineClassification(category, keyword)
    return None


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CouplingValidatorConfig:
    """Configuration for a replay run.

    Parameters
    ----------
    days:
        Simulated days per run. Default 200.
    symbols:
        Instruments to simulate. Default DCB1..DCB5.
    starting_price:
        Opening price of every instrument. Default 100.0.
    retrigger_chance:
        Daily chance to re-trigger an idle instrument. Default 0.10.
    meme_chance:
        Chance an instrument is flagged as a meme stock. Default 0.10.
    price_tolerance:
        Allowed gap between logged and applied price. Default half a cent.
    delta_tolerance_pct:
        Allowed gap between logged and applied percentage change, in
        percentage points. Default 0.15.
    crash_drop_band:
        Expected crash drop from the trigger price by the end of the crash
        phase. Default (0.10, 0.40); checked with 0.5x / 1.5x slack.
    spontaneous_crashes:
        Let the engine trigger crashes on its own as well. Default False.
    disabled_kinds:
        Phenomenon kinds reported as disabled by the feature toggle.
    pattern:
        Dead cat bounce constants used by the engine under test.
    """

    days: int = 200
    symbols: Tuple[str, ...] = ("DCB1", "DCB2", "DCB3", "DCB4", "DCB5")
    starting_price: float = 100.0
    retrigger_chance: float = 0.10
    meme_chance: float = 0.10
    price_tolerance: float = 0.005
    delta_tolerance_pct: float = 0.15
    crash_drop_band: Tuple[float, float] = (0.10, 0.40)
    spontaneous_crashes: bool = False
    disabled_kinds: Tuple[str, ...] = ()
    pattern: DeadCatBounceConfig = field(default_factory=DeadCatBounceConfig)


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass
class CategoryStats:
    total: int = 0
    correct: int = 0
    wrong: int = 0
    magnitudes: List[float] = field(default_factory=list)


@dataclass
class ValidationReport:
    seed: int | None = None
    days: int = 0
    diagnostics: List[Diagnostic] = field(default_factory=list)
    phase_sequences: Dict[str, List[str]] = field(default_factory=dict)
    price_paths: Dict[str, List[float]] = field(default_factory=dict)
    headlines: List[Tuple[int, str, str]] = field(default_factory=list)
    transitions: List[PhaseTransition] = field(default_factory=list)
    category_stats: Dict[str, CategoryStats] = field(default_factory=dict)
    phases_seen: Set[Phase] = field(default_factory=set)

    @property
    def defects(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is DiagnosticSeverity.DEFECT]

    @property
    def ok(self) -> bool:
        return not self.defects

    def count(self, code: DiagnosticCode) -> int:
        return sum(1 for d in self.diagnostics if d.code is code)

    def category_summary(self) -> Dict[str, Dict[str, float]]:
        summary: Dict[str, Dict[str, float]] = {}
        for name, stats in self.category_stats.items():
            mags = np.asarray(stats.magnitudes, dtype=float)
            summary[name] = {
                "total": float(stats.total),
                "accuracy": stats.correct / stats.total if stats.total else 1.0,
                "mean_move": float(mags.mean()) if mags.size else 0.0,
                "median_move": float(np.median(mags)) if mags.size else 0.0,
                "p95_move": float(np.percentile(mags, 95)) if mags.size else 0.0,
            }
        return summary

    def price_summary(self) -> Dict[str, Dict[str, float]]:
        summary: Dict[str, Dict[str, float]] = {}
        for symbol, path in self.price_paths.items():
            prices = np.asarray(path, dtype=float)
            if prices.size == 0:
                continue
            running_max = np.maximum.accumulate(prices)
            summary[symbol] = {
                "final": float(prices[-1]),
                "min": float(prices.min()),
                "max": float(prices.max()),
                "max_drawdown": float(np.max(1.0 - prices / running_max)),
            }
        return summary

    @property
    def summary(self) -> str:
        if self.ok:
            status = "OK"
        else:
            status = f"FAIL ({len(self.defects)} defects)"
        by_code = Counter(d.code.value for d in self.diagnostics)
        detail = ", ".join(f"{code}={n}" for code, n in sorted(by_code.items())) or "no diagnostics"
        return (
            f"{status}: {self.days} days, {len(self.price_paths)} instruments, "
            f"{len(self.transitions)} transitions, {len(self.headlines)} headlines; {detail}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed": self.seed,
            "days": self.days,
            "ok": self.ok,
            "phases_seen": sorted(p.value for p in self.phases_seen),
            "diagnostics": [
                {
                    "code": d.code.value,
                    "severity": d.severity.value,
                    "day": d.day,
                    "symbol": d.symbol,
                    "message": d.message,
                }
                for d in self.diagnostics
            ],
            "categories": self.category_summary(),
            "prices": self.price_summary(),
        }


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


class CouplingValidator:
    """Replays the dead cat bounce engine and checks price/news coupling."""

    def __init__(self, config: CouplingValidatorConfig | None = None) -> None:
        self._config = config or CouplingValidatorConfig()

    @property
    def config(self) -> CouplingValidatorConfig:
        return self._config

    def run(
        self,
        days: int | None = None,
        symbols: Sequence[str] | None = None,
        seed: int | None = None,
    ) -> ValidationReport:
        cfg = self._config
        days = cfg.days if days is None else days
        symbols = tuple(symbols) if symbols else cfg.symbols

        rng = random.Random(seed)
        instruments = [
            Instrument(
                symbol=symbol,
                price=cfg.starting_price,
                stability=0.5 + rng.random() * 0.5,
                is_meme=rng.random() < cfg.meme_chance,
            )
            for symbol in symbols
        ]
        news: List[NewsItem] = []
        deps = PhenomenonDependencies(
            instruments=instruments,
            news=news,
            rng=rng,
            is_enabled=lambda kind: kind not in cfg.disabled_kinds,
        )
        engine = DeadCatBounceEngine(deps, config=cfg.pattern, spontaneous_crashes=cfg.spontaneous_crashes)
        updater = MarketPriceUpdater(rng=rng)

        report = ValidationReport(seed=seed, days=days)
        report.category_stats = {c.name: CategoryStats() for c in NEWS_CATEGORIES}
        report.phase_sequences = {s: [] for s in symbols}
        report.price_paths = {s: [cfg.starting_price] for s in symbols}
        last_phase: Dict[str, Phase] = {s: Phase.INACTIVE for s in symbols}
        trigger_prices: Dict[str, float] = {}

        for _ in range(days):
            news.clear()
            engine.process_tick()
            day = engine.day

            for instrument in instruments:
                if engine.kind in instrument.phenomena or instrument.symbol in engine.ended_this_tick:
                    continue
                if day == 1 or rng.random() < cfg.retrigger_chance:
                    catalyst = deps.choice(CRASH_CATALYSTS)
                    engine.trigger(instrument, catalyst.severity, catalyst)

            transitions = engine.drain_transitions()
            report.transitions.extend(transitions)
            self._check_transitions(report, day, transitions, news, last_phase, trigger_prices)
            self._check_pending_effects(report, day, instruments, news)
            self._check_news_items(report, day, news)
            self._check_retry_cap(report, day, instruments, engine.kind)

            updates = updater.apply(instruments)
            self._check_parity(report, day, updates)
            self._check_direction(report, day, news, {u.symbol: u for u in updates})

            for instrument in instruments:
                report.price_paths[instrument.symbol].append(instrument.price)
                record = instrument.phenomena.get(engine.kind)
                phase = record.phase if record is not None else Phase.INACTIVE
                report.phase_sequences[instrument.symbol].append(phase.value)
            report.headlines.extend((day, item.symbol, item.headline) for item in news)

        self._check_coverage(report)
        LOGGER.info("Coupling replay: %s", report.summary)
        return report

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_transitions(
        self,
        report: ValidationReport,
        day: int,
        transitions: List[PhaseTransition],
        news: List[NewsItem],
        last_phase: Dict[str, Phase],
        trigger_prices: Dict[str, float],
    ) -> None:
        symbols_with_news = {item.symbol for item in news}
        low, high = self._config.crash_drop_band
        for t in transitions:
            report.phases_seen.update((t.from_phase, t.to_phase))
            previous = last_phase.get(t.symbol, Phase.INACTIVE)
            if t.from_phase is not previous or not is_valid_transition(t.from_phase, t.to_phase):
                self._add(
                    report, DiagnosticCode.INVALID_TRANSITION, DiagnosticSeverity.DEFECT,
                    f"{previous.value} -> {t.to_phase.value} (logged from {t.from_phase.value})",
                    day, t.symbol,
                )
            last_phase[t.symbol] = t.to_phase

            if t.symbol not in symbols_with_news:
                self._add(
                    report, DiagnosticCode.ORPHAN_PHASE, DiagnosticSeverity.DEFECT,
                    f"{t.from_phase.value} -> {t.to_phase.value} produced no news",
                    day, t.symbol,
                )

            if t.to_phase is Phase.CRASH:
                trigger_prices[t.symbol] = t.price
            elif t.from_phase is Phase.CRASH and t.symbol in trigger_prices:
                change = t.price / trigger_prices[t.symbol] - 1.0
                if change > 0.02:
                    self._add(
                        report, DiagnosticCode.PHASE_PRICE, DiagnosticSeverity.DEFECT,
                        f"crash ended {change:+.1%} above trigger price",
                        day, t.symbol,
                    )
                elif not low * 0.5 <= -change <= high * 1.5:
                    self._add(
                        report, DiagnosticCode.PHASE_PRICE, DiagnosticSeverity.WARNING,
                        f"crash drop {-change:.1%} outside {low:.0%}-{high:.0%}",
                        day, t.symbol,
                    )

    def _check_pending_effects(
        self,
        report: ValidationReport,
        day: int,
        instruments: List[Instrument],
        news: List[NewsItem],
    ) -> None:
        by_symbol = {i.symbol: i for i in instruments}
        for instrument in instruments:
            if instrument.has_pending_effect and instrument.last_emitted_event is None:
                self._add(
                    report, DiagnosticCode.MISSING_EMITTED_EVENT, DiagnosticSeverity.DEFECT,
                    f"pending effect {instrument.pending_effect:+.4f} without an emitted event",
                    day, instrument.symbol,
                )
        for item in news:
            instrument = by_symbol.get(item.symbol)
            if instrument is None or item.is_resolution:
                continue
            if classify_headline(item.headline) is not None and instrument.last_emitted_event is None:
                self._add(
                    report, DiagnosticCode.MISSING_EMITTED_EVENT, DiagnosticSeverity.DEFECT,
                    f"price-moving headline without an emitted event: {item.headline}",
                    day, item.symbol,
                )

    def _check_news_items(self, report: ValidationReport, day: int, news: List[NewsItem]) -> None:
        seen = Counter((item.symbol, item.headline) for item in news)
        for (symbol, headline), n in seen.items():
            if n > 1:
                self._add(
                    report, DiagnosticCode.DUPLICATE_HEADLINE, DiagnosticSeverity.DEFECT,
                    f"headline published {n} times: {headline}",
                    day, symbol,
                )
        for item in news:
            signals = item.metadata.get("signals")
            if signals is None:
                continue
            if item.metadata.get("signal_count") != len(signals):
                self._add(
                    report, DiagnosticCode.SIGNAL_COUNT_MISMATCH, DiagnosticSeverity.DEFECT,
                    f"signal_count {item.metadata.get('signal_count')} != {len(signals)} signals",
                    day, item.symbol,
                )

    def _check_retry_cap(
        self,
        report: ValidationReport,
        day: int,
        instruments: List[Instrument],
        kind: str,
    ) -> None:
        cap = self._config.pattern.retry_cap
        for instrument in instruments:
            record = instrument.phenomena.get(kind)
            if record is not None and record.retry_count > cap:
                self._add(
                    report, DiagnosticCode.RETRY_CAP, DiagnosticSeverity.DEFECT,
                    f"retry_count {record.retry_count} exceeds cap {cap}",
                    day, instrument.symbol,
                )

    def _check_parity(self, report: ValidationReport, day: int, updates: List[PriceUpdate]) -> None:
        cfg = self._config
        for update in updates:
            if not update.event_day:
                continue
            expected = update.expected
            if expected is None:
                self._add(
                    report, DiagnosticCode.MISSING_EMITTED_EVENT, DiagnosticSeverity.DEFECT,
                    f"effect {update.applied_effect:+.4f} applied without an emitted event",
                    day, update.symbol,
                )
                continue
            if abs(update.new_price - expected.expected_price) > cfg.price_tolerance:
                self._add(
                    report, DiagnosticCode.PRICE_PARITY, DiagnosticSeverity.DEFECT,
                    f"logged ${expected.expected_price:.2f}, applied ${update.new_price:.2f}",
                    day, update.symbol,
                )
            gap_pct = abs(update.realized_delta - expected.expected_delta) * 100
            if gap_pct > cfg.delta_tolerance_pct:
                self._add(
                    report, DiagnosticCode.DELTA_PARITY, DiagnosticSeverity.DEFECT,
                    f"logged {expected.expected_delta:+.2%}, applied {update.realized_delta:+.2%}",
                    day, update.symbol,
                )

    def _check_direction(
        self,
        report: ValidationReport,
        day: int,
        news: List[NewsItem],
        updates: Dict[str, PriceUpdate],
    ) -> None:
        for item in news:
            update = updates.get(item.symbol)
            if update is None:
                continue
            realized = update.realized_delta

            sign = item.sentiment.sign
            if sign and not item.is_resolution and sign * realized < 0:
                self._add(
                    report, DiagnosticCode.DIRECTION_MISMATCH, DiagnosticSeverity.DEFECT,
                    f"{item.sentiment.value} item on a {realized:+.2%} day: {item.headline}",
                    day, item.symbol,
                )

            classification = classify_headline(item.headline)
            if classification is None:
                continue
            category = classification.category
            stats = report.category_stats[category.name]
            magnitude = abs(realized)
            direction = 1 if realized >= 0 else -1
            correct = direction == category.expected_direction or magnitude <= category.max_wrong_direction
            stats.total += 1
            stats.magnitudes.append(magnitude)
            if correct or item.is_resolution:
                stats.correct += 1
            else:
                stats.wrong += 1
                self._add(
                    report, DiagnosticCode.DIRECTION_MISMATCH, DiagnosticSeverity.DEFECT,
                    f"'{classification.keyword}' ({category.name}) on a {realized:+.2%} day: {item.headline}",
                    day, item.symbol,
                )
            if not category.magnitude_min * 0.5 <= magnitude <= category.magnitude_max * 2:
                self._add(
                    report, DiagnosticCode.MAGNITUDE, DiagnosticSeverity.INFO,
                    f"{magnitude:.2%} move outside {category.name} band",
                    day, item.symbol,
                )

    def _check_coverage(self, report: ValidationReport) -> None:
        for phase in Phase:
            if phase not in report.phases_seen:
                self._add(
                    report, DiagnosticCode.MISSING_PHASE, DiagnosticSeverity.DEFECT,
                    f"phase '{phase.value}' never occurred",
                )

    @staticmethod
    def _add(
        report: ValidationReport,
        code: DiagnosticCode,
        severity: DiagnosticSeverity,
        message: str,
        day: int = 0,
        symbol: str = "",
    ) -> None:
        report.diagnostics.append(Diagnostic(code=code, severity=severity, message=message, day=day, symbol=symbol))
        if severity is DiagnosticSeverity.DEFECT:
            LOGGER.warning("Day %d %s %s: %s", day, symbol, code.value, message)
