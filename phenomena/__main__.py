"""CLI entry point: seeded replay with a coupling report.

Usage::

    python3 -m phenomena --days 200 --seed 42
    python3 -m phenomena --symbols DCB1 DCB2 --days 400 --json
    python3 -m phenomena --seed 7 --verbose

Exit status is 1 when the replay finds coupling defects.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace
from typing import List, Sequence

from phenomena.config import DeadCatBounceConfig, PhenomenaSettings, load_settings
from phenomena.framework.coupling_validator import CouplingValidator, CouplingValidatorConfig
from phenomena.logging_setup import configure_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python3 -m phenomena",
        description="Replay the dead cat bounce engine and check price/news coupling",
    )
    parser.add_argument(
        "--days", type=int, default=None,
        help="Simulated days (default: PHENOM_DAYS or 200)",
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Random seed for a reproducible run",
    )
    parser.add_argument(
        "--symbols", nargs="+", default=None,
        help="Instrument symbols (default: DCB1..DCB5)",
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Print the report as JSON",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging (includes every price event)",
    )
    return parser


def _apply_overrides(settings: PhenomenaSettings, args: argparse.Namespace) -> PhenomenaSettings:
    overrides = {}
    if args.days is not None:
        overrides["days"] = args.days
    if args.seed is not None:
        overrides["seed"] = args.seed
    if args.symbols is not None:
        overrides["symbols"] = [s.upper() for s in args.symbols]
    if args.verbose:
        overrides["log_level"] = "DEBUG"
    if overrides:
        settings = replace(settings, **overrides)
    return settings


def _validator_config(settings: PhenomenaSettings) -> CouplingValidatorConfig:
    return CouplingValidatorConfig(
        days=settings.days,
        symbols=tuple(settings.symbols),
        starting_price=settings.starting_price,
        retrigger_chance=settings.retrigger_chance,
        spontaneous_crashes=settings.spontaneous_crashes,
        disabled_kinds=tuple(settings.disabled_kinds),
        pattern=DeadCatBounceConfig(crash_daily_chance=settings.crash_daily_chance),
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = _apply_overrides(load_settings(), args)
    configure_logging(settings.log_level)

    report = CouplingValidator(_validator_config(settings)).run(seed=settings.seed)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, sort_keys=True))
        return 0 if report.ok else 1

    lines: List[str] = [
        "=" * 60,
        "Phenomenon Coupling Report",
        "=" * 60,
        report.summary,
        f"Phases seen: {', '.join(sorted(p.value for p in report.phases_seen))}",
    ]
    for name, stats in report.category_summary().items():
        if stats["total"]:
            lines.append(
                f"  {name:<17} n={int(stats['total']):<4} accuracy={stats['accuracy']:.0%} "
                f"median move={stats['median_move']:.2%}"
            )
    for symbol, stats in report.price_summary().items():
        lines.append(
            f"  {symbol:<6} final=${stats['final']:.2f} min=${stats['min']:.2f} "
            f"max drawdown={stats['max_drawdown']:.0%}"
        )
    for defect in report.defects[:20]:
        lines.append(f"  DEFECT day {defect.day} {defect.symbol} {defect.code.value}: {defect.message}")
    lines.append("=" * 60)
    print("\n".join(lines))
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
