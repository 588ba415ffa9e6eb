"""Metricsync: Raw Insights → Daily Metric Records.

Produces exactly one record per (entity, day) in the requested window. Days the
platform returned nothing for (or every day, when the fetch failed outright)
become zero-valued placeholders so charts always get a contiguous series.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from metricsync.core.metric_registry import METRICS
from metricsync.models.metric_models import EntityLevel, MetricRecord
from metricsync.core.logging import get_logger

logger = get_logger("sync.reconciler")

CONVERSION_ACTION = "offsite_conversion"
DEFAULT_WINDOW_DAYS = 30

DATE_PRESET_DAYS = {
    "last_7_days": 7,
    "last_14_days": 14,
    "last_30_days": 30,
    "last_90_days": 90,
}


def window_days(date_preset: Optional[str]) -> int:
    """Window length for a date preset; unknown presets mean 30 days."""
    return DATE_PRESET_DAYS.get(date_preset or "", DEFAULT_WINDOW_DAYS)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def window_dates(days: int, today: Optional[date] = None) -> List[date]:
    """Calendar days covered by the window, newest first, always including today."""
    today = today or utc_today()
    return [today - timedelta(days=i) for i in range(days)]


def extract_conversions(actions: Optional[Iterable[Dict[str, Any]]]) -> int:
    """Sum the values of ``offsite_conversion`` actions."""
    total = 0
    for action in actions or []:
        if action.get("action_type") != CONVERSION_ACTION:
            continue
        total += METRICS["conversions"].coerce(action.get("value"))
    return total


def conversion_rate(conversions: int, clicks: int) -> float:
    if clicks <= 0:
        return 0.0
    return conversions / clicks


def to_record(entity_id: str, day: date, row: Dict[str, Any]) -> MetricRecord:
    """Map one raw insights row to a record, deriving conversion fields."""
    values: Dict[str, Any] = {}
    for name, metric in METRICS.items():
        if not metric.requested:
            continue
        values[name] = metric.coerce(row.get(name))

    conversions = extract_conversions(row.get("actions"))
    values["conversions"] = conversions
    values["conversion_rate"] = conversion_rate(conversions, values["clicks"])
    return MetricRecord(entity_id=entity_id, date=day, **values)


def index_rows(
    level: EntityLevel, raw_rows: Optional[Iterable[Dict[str, Any]]]
) -> Dict[Tuple[str, str], Dict[str, Any]]:
    """Key raw rows by (entity id, date_start). Later duplicates win."""
    indexed: Dict[Tuple[str, str], Dict[str, Any]] = {}
    for row in raw_rows or []:
        entity_id = row.get(level.row_key) or row.get("entity_id")
        day = row.get("date_start")
        if not entity_id or not day:
            continue
        indexed[(str(entity_id), str(day))] = row
    return indexed


def reconcile(
    level: EntityLevel,
    entity_ids: Sequence[str],
    days: int,
    raw_rows: Optional[Iterable[Dict[str, Any]]] = None,
    today: Optional[date] = None,
) -> List[MetricRecord]:
    """Build the gap-free series for every entity of a level."""
    indexed = index_rows(level, raw_rows)
    dates = window_dates(days, today)

    records: List[MetricRecord] = []
    matched = 0
    for entity_id in dict.fromkeys(entity_ids):
        for day in dates:
            row = indexed.get((entity_id, day.isoformat()))
            if row is None:
                records.append(MetricRecord.zero(entity_id, day))
            else:
                records.append(to_record(entity_id, day, row))
                matched += 1

    logger.info(
        f"Reconciled {len(records)} {level.value} records "
        f"({matched} from insights, {len(records) - matched} zero-filled)",
        extra={"entity_level": level.value},
    )
    return records
