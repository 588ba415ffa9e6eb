"""Metricsync: Sync Job Models."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


class JobType(str, Enum):
    ACCOUNT = "account"
    CAMPAIGN = "campaign"
    ADSET = "adset"
    AD = "ad"
    METRICS = "metrics"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class SyncJob(SQLModel, table=True):
    """Persisted lifecycle of one sync run, polled by the dashboard."""

    __tablename__ = "sync_jobs"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    ad_account_id: str = Field(index=True)
    job_type: JobType = Field(default=JobType.METRICS)
    status: JobStatus = Field(default=JobStatus.PENDING, index=True)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = Field(default=None)
    error_message: Optional[str] = Field(default=None)
    details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))


# ─────────────────────────────────────────────
# PYDANTIC SCHEMAS: Job details payload
# ─────────────────────────────────────────────


class LevelOutcome(BaseModel):
    """What happened to one hierarchy level during a run."""

    entities: int = 0
    fetched_rows: int = 0
    records_written: int = 0
    failed_chunks: int = 0
    fetch_error: Optional[str] = None
    error: Optional[str] = None


class SyncDetails(BaseModel):
    """Counts stored in ``SyncJob.details`` when a run completes."""

    campaigns_synced: int = 0
    adsets_synced: int = 0
    ads_synced: int = 0
    permission_issues: bool = False
    levels: Dict[str, LevelOutcome] = {}
