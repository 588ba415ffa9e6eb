"""Metricsync: Metrics Summary Engine.

Rolls a stored daily series up into the totals and rates shown on the
dashboard's summary cards.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from pydantic import BaseModel


class MetricsSummary(BaseModel):
    total_impressions: int = 0
    total_clicks: int = 0
    total_spend: str = "0.00"
    total_reach: int = 0
    avg_frequency: str = "0.00"
    total_conversions: int = 0
    total_ctr: str = "0.00"
    total_cpc: str = "0.00"


def _money(value: Any) -> Decimal:
    try:
        return Decimal(str(value or "0"))
    except InvalidOperation:
        return Decimal("0")


def _fmt(value: Decimal) -> str:
    return f"{value:.2f}"


def summarize(rows: Iterable[Any]) -> MetricsSummary:
    """Aggregate metric rows (ORM objects or anything with the same attributes)."""
    rows = list(rows)
    impressions = sum(r.impressions or 0 for r in rows)
    clicks = sum(r.clicks or 0 for r in rows)
    reach = sum(r.reach or 0 for r in rows)
    conversions = sum(r.conversions or 0 for r in rows)
    spend = sum((_money(r.spend) for r in rows), Decimal("0"))
    frequency = sum((Decimal(str(r.frequency or 0)) for r in rows), Decimal("0"))

    avg_frequency = frequency / len(rows) if rows else Decimal("0")
    ctr = Decimal(clicks) / Decimal(impressions) * 100 if impressions else Decimal("0")
    cpc = spend / clicks if clicks else Decimal("0")

    return MetricsSummary(
        total_impressions=impressions,
        total_clicks=clicks,
        total_spend=_fmt(spend),
        total_reach=reach,
        avg_frequency=_fmt(avg_frequency),
        total_conversions=conversions,
        total_ctr=_fmt(ctr),
        total_cpc=_fmt(cpc),
    )
