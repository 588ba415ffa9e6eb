"""Metricsync: Stored Metrics Routes."""

from fastapi import APIRouter, Depends, HTTPException, Query

from metricsync.analyzer.summary_engine import summarize
from metricsync.api.deps import get_pipeline
from metricsync.models.metric_models import EntityLevel
from metricsync.sync.pipeline import Pipeline

router = APIRouter(prefix="/metrics", tags=["Metrics"])


def _level(entity_type: str) -> EntityLevel:
    try:
        return EntityLevel(entity_type)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail='Invalid entity type. Must be "campaign", "adset", or "ad"',
        )


@router.get("")
async def get_metrics(
    entity_type: str = Query(..., alias="type"),
    entity_id: str = Query(..., alias="id"),
    days: int = Query(30, ge=1, le=365),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Stored daily metrics for one campaign, ad set or ad, newest first."""
    level = _level(entity_type)
    rows = pipeline.store.list_metrics(level, entity_id, days)
    return {"metrics": [row.model_dump(mode="json") for row in rows]}


@router.get("/summary")
async def get_metrics_summary(
    entity_type: str = Query(..., alias="type"),
    entity_id: str = Query(..., alias="id"),
    days: int = Query(30, ge=1, le=365),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Totals and rates over the stored series."""
    level = _level(entity_type)
    rows = pipeline.store.list_metrics(level, entity_id, days)
    return {"summary": summarize(rows)}
