from __future__ import annotations

import logging


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    # Per-event price logs are noisy over long replays.
    if getattr(logging, level.upper(), logging.INFO) > logging.DEBUG:
        logging.getLogger("phenomena.price_events").setLevel(logging.WARNING)
