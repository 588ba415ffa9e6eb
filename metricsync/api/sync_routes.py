"""Metricsync: Sync API Routes."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from metricsync.api.deps import get_pipeline
from metricsync.config import settings
from metricsync.sync.batch import BatchSyncSummary, sync_all_users
from metricsync.sync.jobs import JobNotFoundError
from metricsync.sync.pipeline import Pipeline
from metricsync.core.logging import get_logger

logger = get_logger("api.sync")

router = APIRouter(tags=["Sync"])

PERMISSION_WARNING = (
    "Your Facebook token lacks required ad permissions. Some metrics may be "
    "missing or inaccurate. Please reconnect your Facebook account with "
    "ads_management and ads_read permissions."
)


# ── Request / Response Models ──


class SyncMetricsRequest(BaseModel):
    """Request body for POST /metrics/sync."""

    user_id: str
    ad_account_id: str
    access_token: Optional[str] = None
    """Overrides the user's stored token when given."""
    date_preset: Optional[
        Literal["last_7_days", "last_14_days", "last_30_days", "last_90_days"]
    ] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": "user-1",
                    "ad_account_id": "act_123",
                    "date_preset": "last_30_days",
                }
            ]
        }
    }


class SyncMetricsResponse(BaseModel):
    job_id: str
    has_ad_permissions: bool
    warning: Optional[str] = None


# ── Endpoints ──


@router.post("/metrics/sync", response_model=SyncMetricsResponse)
async def trigger_sync(
    request: SyncMetricsRequest,
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Sync campaign, ad set and ad metrics for one ad account.

    Returns the job id to poll via GET /sync-jobs/{job_id}.
    """
    repository = pipeline.repository

    access_token = request.access_token
    if not access_token:
        token = repository.get_token(request.user_id)
        access_token = token.access_token if token else None
    if not access_token:
        raise HTTPException(
            status_code=400,
            detail="Facebook access token not found. Please reconnect your Facebook account.",
        )

    if repository.get_ad_account(request.user_id, request.ad_account_id) is None:
        raise HTTPException(
            status_code=404, detail="Ad account not found or access denied"
        )

    has_ad_permissions = repository.has_ad_permissions(request.user_id)

    try:
        job_id = await pipeline.orchestrator.sync_all_metrics(
            request.user_id,
            request.ad_account_id,
            access_token,
            date_preset=request.date_preset,
        )
    except Exception as e:
        logger.error(f"Metrics sync failed: {e}")
        raise HTTPException(status_code=500, detail=f"Metrics sync failed: {str(e)}")

    return SyncMetricsResponse(
        job_id=job_id,
        has_ad_permissions=has_ad_permissions,
        warning=None if has_ad_permissions else PERMISSION_WARNING,
    )


@router.get("/sync-jobs/{job_id}")
async def get_sync_job(job_id: str, pipeline: Pipeline = Depends(get_pipeline)):
    """Poll a sync job's status and details."""
    try:
        job = pipeline.tracker.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Sync job not found")
    return {"status": "success", "job": job.model_dump(mode="json")}


def _check_cron_key(request: Request, key: Optional[str]) -> None:
    auth_header = request.headers.get("authorization", "")
    supplied = auth_header.removeprefix("Bearer ").strip() or key
    if not settings.cron_secret_key or supplied != settings.cron_secret_key:
        logger.error("Unauthorized cron request: invalid API key")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.api_route(
    "/cron/sync-metrics", methods=["GET", "POST"], response_model=BatchSyncSummary
)
async def cron_sync_metrics(
    request: Request,
    key: Optional[str] = Query(None, description="Cron secret (alternative to bearer)"),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Sync metrics for every user with a valid token (external cron trigger)."""
    _check_cron_key(request, key)
    logger.info("Starting metrics sync cron job")
    return await sync_all_users(pipeline.repository, pipeline.orchestrator)
