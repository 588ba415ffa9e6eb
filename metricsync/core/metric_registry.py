"""Metricsync: Metric Registry.

Defines every column of a stored daily metric row, how its raw Graph API value
is coerced, and which fields the insights request asks for.
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict


class MetricKind(str, Enum):
    """How a metric value is stored."""

    COUNT = "count"  # Integer volumes: impressions, clicks, reach
    RATIO = "ratio"  # Floats: frequency, ctr
    MONEY = "money"  # Decimal strings: spend, cpc, cpm


class MetricDefinition:
    """Describes a single stored metric.

    Metrics with ``requested=False`` are not asked of the insights endpoint;
    reconciliation derives them from other fields.
    """

    def __init__(
        self,
        name: str,
        kind: MetricKind,
        description: str = "",
        requested: bool = True,
    ):
        self.name = name
        self.kind = kind
        self.description = description
        self.requested = requested

    def zero(self) -> Any:
        if self.kind == MetricKind.MONEY:
            return "0"
        if self.kind == MetricKind.COUNT:
            return 0
        return 0.0

    def coerce(self, value: Any) -> Any:
        """Convert a raw API value into the stored representation.

        Missing or unparsable values become the metric's zero value.
        """
        if value is None or value == "":
            return self.zero()
        if self.kind == MetricKind.MONEY:
            return _to_decimal_string(value)
        if self.kind == MetricKind.COUNT:
            return _to_int(value)
        return _to_float(value)

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.kind.value})>"


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 0


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_decimal_string(value: Any) -> str:
    # cost_per_result can come back as a list of per-indicator objects
    if isinstance(value, (list, dict)):
        return "0"
    try:
        return str(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return "0"


# ─────────────────────────────────────────────
# DAILY METRIC COLUMNS
# ─────────────────────────────────────────────

METRICS: Dict[str, MetricDefinition] = {
    "impressions": MetricDefinition(
        "impressions", MetricKind.COUNT, "Number of times ads were shown"
    ),
    "clicks": MetricDefinition("clicks", MetricKind.COUNT, "Total clicks"),
    "reach": MetricDefinition("reach", MetricKind.COUNT, "Unique users reached"),
    "frequency": MetricDefinition(
        "frequency", MetricKind.RATIO, "Average impressions per user"
    ),
    "spend": MetricDefinition("spend", MetricKind.MONEY, "Amount spent"),
    "cpc": MetricDefinition("cpc", MetricKind.MONEY, "Cost per click"),
    "cpm": MetricDefinition("cpm", MetricKind.MONEY, "Cost per 1000 impressions"),
    "ctr": MetricDefinition("ctr", MetricKind.RATIO, "Click-through rate"),
    "unique_clicks": MetricDefinition(
        "unique_clicks", MetricKind.COUNT, "Unique users who clicked"
    ),
    "unique_ctr": MetricDefinition(
        "unique_ctr", MetricKind.RATIO, "Unique click-through rate"
    ),
    "cost_per_result": MetricDefinition(
        "cost_per_result", MetricKind.MONEY, "Cost per optimization result"
    ),
    "conversions": MetricDefinition(
        "conversions",
        MetricKind.COUNT,
        "Sum of offsite_conversion actions",
        requested=False,
    ),
    "conversion_rate": MetricDefinition(
        "conversion_rate",
        MetricKind.RATIO,
        "Conversions / clicks",
        requested=False,
    ),
}

# Extra insight fields that feed derived metrics or row matching
AUXILIARY_FIELDS = ("actions", "date_start", "date_stop")


def insight_fields(level: str) -> str:
    """Comma list for the insights ``fields`` parameter at a hierarchy level."""
    names = [m.name for m in METRICS.values() if m.requested]
    names.extend(AUXILIARY_FIELDS)
    names.append(f"{level}_id")
    return ",".join(names)
