"""Multi-day market phenomena for a trading simulator.

Each phenomenon is a per-instrument phase state machine whose price moves
and news items are kept coupled: every price-moving headline comes with an
emitted price event, and the market updater applies exactly what the
phenomenon logged.
"""

from phenomena.config import DeadCatBounceConfig, PhenomenaSettings, load_settings
from phenomena.dependencies import PhenomenonDependencies
from phenomena.engine import DeadCatBounceEngine, Phenomenon
from phenomena.market import MarketPriceUpdater
from phenomena.models import Instrument, NewsItem, Outcome, Phase

__all__ = [
    "DeadCatBounceConfig",
    "DeadCatBounceEngine",
    "Instrument",
    "MarketPriceUpdater",
    "NewsItem",
    "Outcome",
    "Phase",
    "PhenomenaSettings",
    "Phenomenon",
    "PhenomenonDependencies",
    "load_settings",
]
