"""Tutorial hints keyed off a news item's tags.

``get_tutorial_hint`` is pure: it reads ``news_type`` and the
``bounce_phase`` metadata and never touches engine state.
"""

from __future__ import annotations

from typing import Dict, Tuple

from phenomena.models import NewsItem, TutorialHint

_GOLD_STANDARD = "break and HOLD above 61.8% Fibonacci on RISING volume"

# (news_type, bounce_phase) -> hint; bounce_phase None matches any.
_HINTS: Dict[Tuple[str, str | None], TutorialHint] = {
    ("crash", None): TutorialHint(
        type="CRASH - DO NOT BUY (~30% base probability)",
        description="A bounce is coming. Watch for: (1) volume trend, (2) retracement %, (3) 3+ up days",
        implication="30% base reversal rate. Confirming signals can lift it to 85%.",
        action="DO NOT BUY THE DIP. Wait for signals.",
        timing="NEXT: bounce phase starts in 2-4 days",
        catalyst=f"Gold standard: must {_GOLD_STANDARD}",
    ),
    ("dead_cat_bounce", "starting"): TutorialHint(
        type="BOUNCE STARTED - OBSERVE (~35% probability)",
        description="Need >50% retracement plus rising volume.",
        implication="Each confirming signal adds 10-15%.",
        action="WAIT. Do not buy yet. Observe signals.",
        timing="NEXT: outcome determined when the bounce phase ends",
        catalyst=f"Gold standard: {_GOLD_STANDARD} = 85% success",
    ),
    ("dead_cat_bounce", "warning"): TutorialHint(
        type="WARNING - TRAP LIKELY (~30% probability)",
        description="Volume declining and below 50% retracement: classic trap setup.",
        implication="~30% reversal chance. Declining volume is bearish.",
        action="DO NOT BUY. Exit if holding.",
        timing="NEXT: likely fail, decline, possibly another bounce",
        catalyst="MISSING: rising volume and a 61.8% break",
    ),
    ("dead_cat_bounce", "healthy"): TutorialHint(
        type="BOUNCE HEALTHY - WATCH CLOSELY (~50% probability)",
        description="Volume supporting the move and retracement near 50%.",
        implication="Signals improving but not yet confirmed.",
        action="PREPARE. Wait for a break above 50% on high volume.",
        timing="NEXT: outcome determined when the bounce phase ends",
        catalyst=f"APPROACHING gold standard: {_GOLD_STANDARD}",
    ),
    ("dead_cat_bounce", "failed"): TutorialHint(
        type="TRAP CONFIRMED - STAY AWAY (<20% probability)",
        description="More downside coming. Each bounce gets weaker.",
        implication="<20% reversal now. Signals were weak.",
        action="DO NOT average down. Do not catch a falling knife.",
        timing="NEXT: decline, then a weaker bounce or capitulation",
        catalyst="LESSON: without a 61.8% break on rising volume, 70% of bounces are traps",
    ),
    ("reversal_forming", None): TutorialHint(
        type="REVERSAL FORMING - PREPARE (~65% probability)",
        description="Building a base. Watch for a breakout on HIGH volume above 61.8%.",
        implication="~65% probability. Retracement above 50% with steady volume.",
        action="PREPARE to buy on breakout. Not yet.",
        timing="NEXT: breakout = entry signal",
        catalyst=f"APPROACHING gold standard: {_GOLD_STANDARD}",
    ),
    ("reversal_confirmed", None): TutorialHint(
        type="BREAKOUT - ENTRY SIGNAL (85% probability)",
        description="Target: 60-90% recovery of crash losses",
        implication="High-volume breakout above 61.8%.",
        action="CONSIDER BUYING. Set a stop below the breakout level.",
        timing="NEXT: recovery phase. Take profits at target.",
        catalyst="GOLD STANDARD MET",
    ),
    ("crash_resolution", None): TutorialHint(
        type="CAPITULATION - NEUTRAL (~40% probability)",
        description="Stock may stabilize here. No rush.",
        implication="Selling exhausted. A new setup may form.",
        action="WAIT for a new setup. This cycle is over.",
        timing="LESSON: patience over FOMO, signals over emotion.",
        catalyst="LESSON: only trade setups that meet the gold standard",
    ),
}

_RECOVERY_HINT = TutorialHint(
    type="RECOVERY - PROFIT TAKING (pattern confirmed)",
    description="Nearing target. Consider taking profits.",
    implication="Reversal played out as the signals indicated.",
    action="If holding: take profits. If not: wait for the next setup.",
    timing="LESSON: waiting for confirmation avoided the trap risk.",
    catalyst=f"Gold standard delivered: {_GOLD_STANDARD}",
)

for _news_type in ("recovery", "recovery_complete"):
    _HINTS[(_news_type, None)] = _RECOVERY_HINT


def _repeat_attempt_hint(bounce_number: int) -> TutorialHint:
    odds = max(10, 30 - (bounce_number - 1) * 10)
    return TutorialHint(
        type=f"BOUNCE #{bounce_number} - VERY RISKY (~{odds}% probability)",
        description="Volume very thin. Smart money gone.",
        implication=f"~{odds}% max probability. Each failure reduces the odds.",
        action="DO NOT BUY. Wait for capitulation.",
        timing="NEXT: likely another failure, then capitulation",
        catalyst="Multiple bounces: gold standard out of reach. Wait for a fresh setup.",
    )


def get_tutorial_hint(item: NewsItem | None) -> TutorialHint | None:
    """Hint for a news item, or None when the item carries no tutorial tags."""
    if item is None or not item.news_type:
        return None
    bounce_phase = item.metadata.get("bounce_phase")
    if item.news_type == "dead_cat_bounce" and bounce_phase == "repeat_attempt":
        return _repeat_attempt_hint(int(item.metadata.get("bounce_number", 2)))
    return _HINTS.get((item.news_type, bounce_phase)) or _HINTS.get((item.news_type, None))
