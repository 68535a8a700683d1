"""Standardized price event emission.

Every phase handler that moves price goes through ``PriceEventEmitter.emit``
so that the module log, the displayed price and the market update agree.

The emitter adds the change into the instrument's slot for the emitting
phenomenon kind.  Slots for other kinds are left alone; the market updater
sums all slots, so the expected price is computed from the sum as well.
The expected delta is recomputed from the *rounded* expected price so the
percentage shown next to a price always matches that price.
"""

from __future__ import annotations

import logging
import math
from typing import Callable

from phenomena.models import EmittedEvent, Instrument, PhenomenonRecord, round_price

LOGGER = logging.getLogger(__name__)


class PriceEventEmitter:
    def __init__(
        self,
        tag: str = "PHENOM",
        day_provider: Callable[[], int] | None = None,
    ) -> None:
        self._tag = tag
        self._day_provider = day_provider or (lambda: 0)

    def emit(
        self,
        instrument: Instrument,
        kind: str,
        fractional_change: float,
        label: str,
        extra: str = "",
        record: PhenomenonRecord | None = None,
    ) -> EmittedEvent | None:
        """Register a price change for this tick.

        Returns None (and changes nothing) when the change or the current
        price is not usable.
        """
        if not math.isfinite(fractional_change):
            LOGGER.warning("%s %s: non-finite change %r ignored", instrument.symbol, label, fractional_change)
            return None
        if instrument.price <= 0:
            LOGGER.warning("%s %s: non-positive price %.4f, event skipped", instrument.symbol, label, instrument.price)
            return None

        slot = instrument.transition_effects.get(kind, 0.0) + fractional_change
        others = instrument.pending_effect - instrument.transition_effects.get(kind, 0.0)
        if 1.0 + others + slot <= 0:
            # A total move of -100% or worse would zero the price.
            slot = -0.95 - others
        instrument.transition_effects[kind] = slot
        total = instrument.pending_effect

        previous = instrument.price
        expected_price = round_price(previous * (1.0 + total))
        expected_delta = (expected_price - previous) / previous

        day = self._day_provider()
        log_string = (
            f"[{self._tag}] Day {day}: {instrument.symbol} {label} "
            f"[${expected_price:.2f} Δ{expected_delta * 100:+.1f}%]"
        )
        if extra:
            log_string = f"{log_string} {extra}"

        event = EmittedEvent(
            kind=kind,
            label=label,
            fractional_change=fractional_change,
            total_effect=total,
            previous_price=previous,
            expected_price=expected_price,
            expected_delta=expected_delta,
            day=day,
            log_string=log_string,
        )
        instrument.last_emitted_event = event
        if record is not None:
            record.last_emitted_event = event
        LOGGER.info(log_string)
        return event
