"""Save/load boundary for phenomenon records.

Records serialize to plain JSON-compatible dicts.  ``phase`` and
``days_remaining`` round-trip unchanged; ``last_emitted_event`` is per-tick
state and is not persisted.  ``entered_day`` belongs to the saving engine's
day counter and is reset on load.

Usage::

    payload = dump_records(instruments)
    ...
    restore_records(instruments, payload)
"""

from __future__ import annotations

import json
import logging
from dataclasses import fields
from typing import Any, Dict, Iterable

from phenomena.models import Instrument, Outcome, Phase, PhenomenonRecord, VolumeTrend

LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# entered_day counts on the saving engine's clock; restored records get a day
# no engine tick can equal, so the next tick always steps them.
RESTORED_ENTRY_DAY = -1

_SKIPPED_FIELDS = {"last_emitted_event", "_outcome", "entered_day"}
_ENUM_FIELDS = {"phase": Phase, "volume_trend": VolumeTrend}


def record_to_dict(record: PhenomenonRecord) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for f in fields(record):
        if f.name in _SKIPPED_FIELDS:
            continue
        value = getattr(record, f.name)
        if f.name in _ENUM_FIELDS:
            value = value.value
        data[f.name] = value
    data["outcome"] = record.outcome.value if record.outcome is not None else None
    return data


def record_from_dict(data: Dict[str, Any]) -> PhenomenonRecord:
    """Rebuild a record.  Raises ValueError on a malformed payload."""
    if not isinstance(data, dict) or not data.get("kind"):
        raise ValueError("record payload must be a dict with a 'kind'")
    known = {f.name for f in fields(PhenomenonRecord)} - _SKIPPED_FIELDS
    kwargs: Dict[str, Any] = {}
    for name, value in data.items():
        if name not in known:
            continue
        if name in _ENUM_FIELDS:
            try:
                value = _ENUM_FIELDS[name](value)
            except ValueError as exc:
                raise ValueError(f"invalid {name}: {value!r}") from exc
        kwargs[name] = value
    days = kwargs.get("days_remaining", 0)
    if not isinstance(days, int) or days < 0:
        raise ValueError(f"invalid days_remaining: {days!r}")

    record = PhenomenonRecord(entered_day=RESTORED_ENTRY_DAY, **kwargs)
    outcome = data.get("outcome")
    if outcome is not None:
        try:
            record.assign_outcome(Outcome(outcome))
        except ValueError as exc:
            raise ValueError(f"invalid outcome: {outcome!r}") from exc
    return record


def dump_records(instruments: Iterable[Instrument]) -> str:
    """Serialize every active record, keyed by symbol then kind."""
    payload: Dict[str, Dict[str, Any]] = {}
    for instrument in instruments:
        active = {
            kind: record_to_dict(record)
            for kind, record in instrument.phenomena.items()
            if record.is_active
        }
        if active:
            payload[instrument.symbol] = active
    return json.dumps({"version": SCHEMA_VERSION, "records": payload}, sort_keys=True)


def restore_records(instruments: Iterable[Instrument], raw: str) -> int:
    """Attach saved records to matching instruments.  Returns the count restored."""
    document = json.loads(raw)
    if not isinstance(document, dict):
        raise ValueError("saved records must be a JSON object")
    if document.get("version") != SCHEMA_VERSION:
        raise ValueError(f"unsupported schema version: {document.get('version')!r}")
    by_symbol = {instrument.symbol: instrument for instrument in instruments}
    restored = 0
    for symbol, records in document.get("records", {}).items():
        instrument = by_symbol.get(symbol)
        if instrument is None:
            LOGGER.warning("Saved records for unknown instrument %s skipped", symbol)
            continue
        for kind, data in records.items():
            instrument.phenomena[kind] = record_from_dict(data)
            restored += 1
    return restored
