"""Metricsync: Daily Metric Models.

One row per (entity, calendar day) and hierarchy level. The unique constraint
on (entity id, date) is what makes re-syncing a day an overwrite instead of a
duplicate.
"""

import datetime as dt
from enum import Enum
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel
from sqlmodel import SQLModel, Field, UniqueConstraint

from metricsync.core.metric_registry import METRICS
from metricsync.models.entity_models import Ad, AdSet, Campaign


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# ─────────────────────────────────────────────
# PYDANTIC SCHEMA: Reconciled record
# ─────────────────────────────────────────────


class MetricRecord(BaseModel):
    """A reconciled daily metric point for one entity."""

    entity_id: str
    date: dt.date
    impressions: int = 0
    clicks: int = 0
    reach: int = 0
    frequency: float = 0.0
    spend: str = "0"
    cpc: str = "0"
    cpm: str = "0"
    ctr: float = 0.0
    unique_clicks: int = 0
    unique_ctr: float = 0.0
    cost_per_result: str = "0"
    conversions: int = 0
    conversion_rate: float = 0.0

    @classmethod
    def zero(cls, entity_id: str, date: dt.date) -> "MetricRecord":
        """Placeholder for a day the platform returned nothing for."""
        return cls(entity_id=entity_id, date=date)

    def metric_values(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in METRICS}


# ─────────────────────────────────────────────
# DATABASE MODELS: One table per level
# ─────────────────────────────────────────────


class MetricColumns(SQLModel):
    """Columns shared by every level's metric table."""

    date: dt.date = Field(index=True, description="Calendar day (UTC)")
    impressions: int = 0
    clicks: int = 0
    reach: int = 0
    frequency: float = 0.0
    spend: str = "0"
    cpc: str = "0"
    cpm: str = "0"
    ctr: float = 0.0
    unique_clicks: int = 0
    unique_ctr: float = 0.0
    cost_per_result: str = "0"
    conversions: int = 0
    conversion_rate: float = 0.0
    updated_at: dt.datetime = Field(default_factory=_utcnow)


class CampaignMetric(MetricColumns, table=True):
    __tablename__ = "campaign_metrics"
    __table_args__ = (
        UniqueConstraint("campaign_id", "date", name="uq_campaign_metrics_day"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    campaign_id: str = Field(index=True)


class AdSetMetric(MetricColumns, table=True):
    __tablename__ = "adset_metrics"
    __table_args__ = (
        UniqueConstraint("ad_set_id", "date", name="uq_adset_metrics_day"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    ad_set_id: str = Field(index=True)


class AdMetric(MetricColumns, table=True):
    __tablename__ = "ad_metrics"
    __table_args__ = (UniqueConstraint("ad_id", "date", name="uq_ad_metrics_day"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    ad_id: str = Field(index=True)


# ─────────────────────────────────────────────
# HIERARCHY LEVELS
# ─────────────────────────────────────────────


class EntityLevel(str, Enum):
    """A level of the advertising hierarchy that has its own metrics."""

    CAMPAIGN = "campaign"
    ADSET = "adset"
    AD = "ad"

    @property
    def metric_model(self) -> Type[SQLModel]:
        return _METRIC_MODELS[self]

    @property
    def entity_model(self) -> Type[SQLModel]:
        return _ENTITY_MODELS[self]

    @property
    def id_column(self) -> str:
        """Entity id column in the metric table."""
        return _ID_COLUMNS[self]

    @property
    def table_name(self) -> str:
        return self.metric_model.__tablename__

    @property
    def row_key(self) -> str:
        """Key holding the entity id in a raw insights row."""
        return f"{self.value}_id"

    @property
    def ids_param(self) -> str:
        """Insights request parameter that filters by entity ids."""
        return f"{self.value}_ids"

    def to_row(self, record: MetricRecord) -> Dict[str, Any]:
        """Flatten a record into a column dict for this level's table."""
        row = record.metric_values()
        row[self.id_column] = record.entity_id
        row["date"] = record.date
        row["updated_at"] = _utcnow()
        return row


_METRIC_MODELS = {
    EntityLevel.CAMPAIGN: CampaignMetric,
    EntityLevel.ADSET: AdSetMetric,
    EntityLevel.AD: AdMetric,
}

_ENTITY_MODELS = {
    EntityLevel.CAMPAIGN: Campaign,
    EntityLevel.ADSET: AdSet,
    EntityLevel.AD: Ad,
}

_ID_COLUMNS = {
    EntityLevel.CAMPAIGN: "campaign_id",
    EntityLevel.ADSET: "ad_set_id",
    EntityLevel.AD: "ad_id",
}
