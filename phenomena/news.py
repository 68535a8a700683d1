"""Narrative items for the dead cat bounce.

Headline wording follows "hard information" style for catalysts (specific
facts, objective verbs) and "no-catalyst rise" language for bounces
(bargain hunting, oversold, relief rally).  Direction words in headlines
are chosen to agree with the price event emitted on the same tick:
bearish verbs only on down days, bullish verbs only on up days.  Items that
describe a completed move are flagged ``is_resolution``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Sequence

from phenomena.config import DEAD_CAT_BOUNCE
from phenomena.dependencies import PhenomenonDependencies
from phenomena.framework.headline_registry import HeadlineRegistry
from phenomena.models import Instrument, NewsItem, Phase, PhenomenonRecord, Sentiment, VolumeTrend
from phenomena.signals import OutcomeProbability, fib_label

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Catalyst:
    headline: str
    severity: float


CRASH_CATALYSTS: tuple[Catalyst, ...] = (
    Catalyst("accounting irregularities discovered - SEC investigating", 0.28),
    Catalyst("loses $200M client contract, revenue guidance slashed 40%", 0.22),
    Catalyst("fraud allegations surface - auditor resignation", 0.30),
    Catalyst("product recall: 2.5M units affected, liability exposure", 0.20),
    Catalyst("CEO sudden departure - board announces investigation", 0.18),
    Catalyst("misses earnings by 35%, cuts full-year guidance", 0.25),
    Catalyst("key patent invalidated - $500M revenue at risk", 0.22),
    Catalyst("DOJ files antitrust lawsuit seeking breakup", 0.20),
)

BOUNCE_HEADLINES = (
    "{symbol} bounces from lows as bargain hunters emerge",
    "{symbol} stages technical rebound from oversold levels",
    "Relief rally: {symbol} bounces amid short covering",
    "{symbol} finds buyers after steep selloff - oversold bounce",
)


class NewsGenerator:
    """Builds news items and appends them to the day's news list."""

    def __init__(
        self,
        deps: PhenomenonDependencies,
        registry: HeadlineRegistry | None = None,
        kind: str = DEAD_CAT_BOUNCE,
        day_provider: Callable[[], int] | None = None,
    ) -> None:
        self._deps = deps
        self._registry = registry or HeadlineRegistry()
        self._kind = kind
        self._day_provider = day_provider or (lambda: self._registry.day)

    @property
    def registry(self) -> HeadlineRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Trigger and transitions
    # ------------------------------------------------------------------

    def crash(self, instrument: Instrument, record: PhenomenonRecord, catalyst: Catalyst) -> NewsItem:
        return self._publish(
            instrument,
            [f"BREAKING: {instrument.symbol} {catalyst.headline}"],
            description=(
                "Shares plunging on massive volume as investors flee. "
                "Stock down sharply from recent highs. Trading extremely volatile."
            ),
            sentiment=Sentiment.NEGATIVE,
            news_type="crash",
            phase=Phase.CRASH,
            metadata={
                "crash_severity": catalyst.severity,
                "volume_indicator": "EXTREMELY HIGH (3x normal)",
                "educational_note": (
                    "Sharp crash with high volume often precedes a bounce - "
                    "but 70% of bounces are traps!"
                ),
            },
        )

    def bounce_start(self, instrument: Instrument, record: PhenomenonRecord, retracement: float) -> NewsItem:
        symbol = instrument.symbol
        declining = record.volume_trend is VolumeTrend.DECLINING
        volume_desc = (
            "Volume lighter than crash day - a potential warning sign"
            if declining
            else "Volume holding steady as buyers accumulate"
        )
        return self._publish(
            instrument,
            self._shuffled(BOUNCE_HEADLINES, symbol),
            description=(
                f"After steep {round(record.crash_magnitude * 100)}% decline, {symbol} finds buyers "
                f'at support. {volume_desc}. Is this the bottom or just a "dead cat bounce"?'
            ),
            sentiment=Sentiment.POSITIVE,
            news_type="dead_cat_bounce",
            phase=Phase.BOUNCE,
            metadata={
                "bounce_phase": "starting",
                "bounce_number": record.bounce_number,
                "volume_indicator": (
                    "DECLINING (trap signal - smart money not buying)"
                    if declining
                    else "STEADY/INCREASING (healthy accumulation)"
                ),
                "retracement_level": f"{round(retracement * 100)}% of drop recovered",
                "educational_note": (
                    "ACTION: DO NOT BUY YET. 70% of bounces are traps. Wait for: "
                    "(1) Rising volume, (2) >50% retracement, (3) 3+ up days. Patience!"
                ),
            },
        )

    def bounce_failed(
        self,
        instrument: Instrument,
        record: PhenomenonRecord,
        retracement: float,
        probability: OutcomeProbability | None,
    ) -> NewsItem:
        symbol = instrument.symbol
        label = fib_label(retracement)
        metadata: Dict[str, Any] = {
            "bounce_phase": "failed",
            "bounce_number": record.bounce_number,
            "is_trap": True,
            "volume_indicator": "WAS DECLINING (trap confirmed)",
            "retracement_level": f"Failed at {round(retracement * 100)}% - below 50% threshold",
            "fibonacci_note": f"Bounce failed at {label} - typical DCB pattern",
            "educational_note": (
                f"ACTION: SELL if holding, DO NOT BUY. Bounce #{record.bounce_number} failed. "
                "More downside likely. Wait for capitulation or genuine reversal signals later."
            ),
        }
        metadata.update(_signal_metadata(probability))
        return self._publish(
            instrument,
            [
                f'{symbol} rally FAILS at {label} - "Dead Cat Bounce" confirmed',
                f"{symbol} bounce #{record.bounce_number} fails - sellers return",
            ],
            description=(
                f"The bounce is over. {symbol} couldn't hold above {label} retracement. "
                'Sellers returning as "dip buyers" now underwater.'
            ),
            sentiment=Sentiment.NEGATIVE,
            news_type="dead_cat_bounce",
            phase=Phase.DECLINE,
            metadata=metadata,
        )

    def another_bounce(self, instrument: Instrument, record: PhenomenonRecord) -> NewsItem:
        symbol = instrument.symbol
        odds = max(10, round((0.55 - record.bounce_number * 0.18) * 100))
        return self._publish(
            instrument,
            [
                f"{symbol} BOUNCES again - attempt #{record.bounce_number} underway",
                f"{symbol} rebounds for attempt #{record.bounce_number} on thin volume",
            ],
            description=(
                f"After failing at resistance, {symbol} tries again from even lower levels. "
                "Volume remains thin. Each successive bounce has a lower probability of success."
            ),
            sentiment=Sentiment.NEUTRAL,
            news_type="dead_cat_bounce",
            phase=Phase.BOUNCE,
            metadata={
                "bounce_phase": "repeat_attempt",
                "bounce_number": record.bounce_number,
                "volume_indicator": "LOW (very weak - likely another trap)",
                "educational_note": (
                    f"ACTION: DO NOT BUY. Bounce #{record.bounce_number} has only ~{odds}% "
                    "success rate. Wait for CAPITULATION before considering entry."
                ),
            },
        )

    def consolidation(
        self,
        instrument: Instrument,
        record: PhenomenonRecord,
        retracement: float,
        probability: OutcomeProbability | None,
    ) -> NewsItem:
        symbol = instrument.symbol
        label = fib_label(retracement)
        metadata: Dict[str, Any] = {
            "volume_indicator": "STEADY (accumulation phase)",
            "retracement_level": f"{round(retracement * 100)}% of drop recovered",
            "fibonacci_note": f"Holding {label} = significantly higher reversal probability",
            "educational_note": (
                "ACTION: PREPARE TO BUY. Wait for a high-volume breakout, THEN enter. "
                "This is the SAFE entry setup!"
            ),
        }
        metadata.update(_signal_metadata(probability))
        return self._publish(
            instrument,
            [
                f"{symbol} HOLDS above {label} - base forming",
                f"{symbol} holds its gains - reversal base forming",
            ],
            description=(
                f"{symbol} consolidating after strong bounce. Price maintaining above key "
                f"{label} Fibonacci level with steady volume."
            ),
            sentiment=Sentiment.POSITIVE,
            news_type="reversal_forming",
            phase=Phase.CONSOLIDATION,
            metadata=metadata,
        )

    def breakout(self, instrument: Instrument, record: PhenomenonRecord) -> NewsItem:
        symbol = instrument.symbol
        return self._publish(
            instrument,
            [
                f"BREAKOUT: {symbol} surges past resistance on HEAVY volume",
                f"{symbol} breaks out - reversal confirmed on heavy volume",
            ],
            description=(
                f"{symbol} breaks decisively above key resistance on volume 1.5x+ normal. "
                'This "conviction candle" confirms the reversal.'
            ),
            sentiment=Sentiment.POSITIVE,
            news_type="reversal_confirmed",
            phase=Phase.RECOVERY,
            metadata={
                "volume_indicator": "BREAKOUT VOLUME (1.5x+ normal)",
                "educational_note": (
                    "ACTION: BUY NOW. Reversal CONFIRMED with high-volume breakout. "
                    "Set stop-loss below recent low."
                ),
            },
        )

    def capitulation(self, instrument: Instrument, record: PhenomenonRecord) -> NewsItem:
        symbol = instrument.symbol
        bounces = record.bounce_number
        total_drop = 0
        if record.trigger_price > 0:
            total_drop = round((1 - instrument.projected_price() / record.trigger_price) * 100)
        return self._publish(
            instrument,
            [f"{symbol} CAPITULATION: Selling exhausted after {bounces} failed bounce(s)"],
            description=(
                f"After {bounces} dead cat bounce(s), selling pressure finally exhausted. "
                f"{symbol} down ~{total_drop}% from pre-crash levels."
            ),
            sentiment=Sentiment.NEGATIVE,
            news_type="crash_resolution",
            phase=Phase.DECLINE,
            is_resolution=True,
            metadata={
                "bounce_count": bounces,
                "educational_note": (
                    f"ACTION: DO NOT BUY YET. Capitulation after {bounces} bounce(s). "
                    "Watch for rising volume + >50% retracement before entering."
                ),
            },
        )

    def recovery_complete(self, instrument: Instrument, record: PhenomenonRecord) -> NewsItem:
        symbol = instrument.symbol
        price = instrument.projected_price()
        from_low = round((price / record.local_low - 1) * 100) if record.local_low > 0 else 0
        from_peak = round((1 - price / record.trigger_price) * 100) if record.trigger_price > 0 else 0
        return self._publish(
            instrument,
            [f"{symbol} recovery mature - up {from_low}% from crash lows"],
            description=(
                f"{symbol} has substantially recovered (still {from_peak}% below pre-crash peak). "
                "Volume normalizing. Consider taking profits if holding."
            ),
            sentiment=Sentiment.POSITIVE,
            news_type="recovery_complete",
            phase=Phase.RECOVERY,
            is_resolution=True,
            metadata={
                "educational_note": (
                    "ACTION: TAKE PROFIT. Recovery cycle COMPLETE. "
                    "Pattern is over - no more event-driven alpha."
                ),
            },
        )

    # ------------------------------------------------------------------
    # Opportunistic, within a stable phase
    # ------------------------------------------------------------------

    def bounce_progress(
        self,
        instrument: Instrument,
        record: PhenomenonRecord,
        retracement: float,
        todays_change: float,
    ) -> NewsItem | None:
        symbol = instrument.symbol
        label = fib_label(retracement)
        if record.volume_trend is VolumeTrend.DECLINING and retracement < 0.45:
            return self._publish(
                instrument,
                [f"{symbol} rally struggles - volume concerns mount"],
                description=(
                    f"{symbol} at {label} retracement but volume continues to decline. "
                    "Key test: can it break above 50% retracement?"
                ),
                sentiment=Sentiment.NEUTRAL,
                news_type="dead_cat_bounce",
                phase=Phase.BOUNCE,
                metadata={
                    "bounce_phase": "warning",
                    "bounce_number": record.bounce_number,
                    "volume_indicator": "DECLINING (red flag - typical of DCB)",
                    "retracement_level": f"{round(retracement * 100)}% - below critical 50% threshold",
                    "fibonacci_note": f"At {label} - DCBs typically fail before 50%",
                    "educational_note": (
                        "ACTION: DO NOT BUY. Volume declining + below 50% = 70% trap probability."
                    ),
                },
            )
        if record.volume_trend is not VolumeTrend.DECLINING and retracement > 0.45 and todays_change > 0:
            return self._publish(
                instrument,
                [f"{symbol} recovery gains momentum - volume supports move"],
                description=(
                    f"{symbol} approaching {label} retracement with rising volume. "
                    "Watch for break above 50% as key confirmation."
                ),
                sentiment=Sentiment.POSITIVE,
                news_type="dead_cat_bounce",
                phase=Phase.BOUNCE,
                metadata={
                    "bounce_phase": "healthy",
                    "bounce_number": record.bounce_number,
                    "volume_indicator": "INCREASING (institutional accumulation)",
                    "retracement_level": f"{round(retracement * 100)}% - approaching key 50% level",
                    "fibonacci_note": f"Near {label} - break above 50% = strong reversal signal",
                    "educational_note": (
                        "ACTION: PREPARE TO BUY. Wait for breakout above 50% on high volume."
                    ),
                },
            )
        return None

    def higher_low(self, instrument: Instrument, record: PhenomenonRecord) -> NewsItem:
        symbol = instrument.symbol
        return self._publish(
            instrument,
            [f'{symbol} forms "higher low" - bullish pattern developing'],
            description=(
                f'{symbol} pulled back but held ABOVE previous low, creating a "higher low". '
                "Watch for breakout above recent high to confirm trend change."
            ),
            sentiment=Sentiment.POSITIVE,
            news_type="reversal_forming",
            phase=Phase.CONSOLIDATION,
            metadata={
                "pattern_note": "Higher Low pattern (bullish)",
                "educational_note": "ACTION: GET READY TO BUY. Higher low = buyers defending support.",
            },
        )

    def recovery_progress(self, instrument: Instrument, record: PhenomenonRecord) -> NewsItem:
        symbol = instrument.symbol
        price = instrument.projected_price()
        from_low = round((price / record.local_low - 1) * 100) if record.local_low > 0 else 0
        return self._publish(
            instrument,
            [f"{symbol} recovery continues - up {from_low}% from lows"],
            description=(
                "Confirmed reversal playing out. Volume remains healthy. "
                "Those who waited for breakout confirmation avoided the trap risk."
            ),
            sentiment=Sentiment.POSITIVE,
            news_type="recovery",
            phase=Phase.RECOVERY,
            metadata={"educational_note": "ACTION: HOLD if long. Let profits run with a trailing stop."},
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _shuffled(self, templates: Sequence[str], symbol: str) -> list[str]:
        """Random template first, the rest in order as same-day fallbacks."""
        first = self._deps.choice(list(templates))
        rest = [t for t in templates if t != first]
        return [t.format(symbol=symbol) for t in [first, *rest]]

    def _publish(
        self,
        instrument: Instrument,
        candidates: Sequence[str],
        *,
        description: str,
        sentiment: Sentiment,
        news_type: str,
        phase: Phase,
        metadata: Dict[str, Any],
        is_resolution: bool = False,
    ) -> NewsItem:
        symbol = instrument.symbol
        headline = next(
            (c for c in candidates if not self._registry.is_duplicate(symbol, c)),
            None,
        )
        if headline is None:
            n = 2
            while self._registry.is_duplicate(symbol, f"{candidates[0]} (update {n})"):
                n += 1
            headline = f"{candidates[0]} (update {n})"
        self._registry.register(symbol, headline)

        item = NewsItem(
            headline=headline,
            description=description,
            sentiment=sentiment,
            symbol=symbol,
            news_type=news_type,
            phase=phase,
            kind=self._kind,
            day=self._day_provider(),
            is_resolution=is_resolution,
            metadata=metadata,
        )
        self._deps.news.append(item)
        LOGGER.debug("News %s [%s/%s]: %s", symbol, news_type, phase.value, headline)
        return item


def _signal_metadata(probability: OutcomeProbability | None) -> Dict[str, Any]:
    if probability is None:
        return {}
    signals = [
        {"name": s.name, "bonus": s.bonus_label, "met": s.met}
        for s in probability.signals
    ]
    return {
        "probability": round(probability.probability, 4),
        "signals": signals,
        "signal_count": len(signals),
    }
