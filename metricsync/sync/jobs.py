"""Metricsync: Sync Job Tracker.

pending → running → completed | failed. Jobs never move backwards; terminal
jobs ignore further transitions.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from metricsync.database import SessionFactory
from metricsync.models.job_models import JobStatus, JobType, SyncJob
from metricsync.core.logging import get_logger

logger = get_logger("sync.jobs")

# Allowed transitions out of each non-terminal state
TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED},
}


class JobNotFoundError(Exception):
    """No sync job with the given id."""


class InvalidJobTransitionError(Exception):
    """The requested status change is not allowed from the job's state."""


class SyncJobTracker:
    """Persists sync job lifecycle for polling."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def create(
        self,
        user_id: str,
        ad_account_id: str,
        job_type: JobType = JobType.METRICS,
    ) -> str:
        """Insert a pending job and return its id."""
        job = SyncJob(
            user_id=user_id,
            ad_account_id=ad_account_id,
            job_type=job_type,
            status=JobStatus.PENDING,
        )
        with self.session_factory() as session:
            session.add(job)
            session.commit()
            job_id = job.id
        logger.info(f"Sync job created ({job_type.value})", extra={"job_id": job_id})
        return job_id

    def get(self, job_id: str) -> SyncJob:
        with self.session_factory() as session:
            job = session.get(SyncJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job

    def _transition(
        self,
        job_id: str,
        target: JobStatus,
        error_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> SyncJob:
        with self.session_factory() as session:
            job = session.get(SyncJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)

            current = JobStatus(job.status)
            if current.is_terminal:
                logger.warning(
                    f"Ignoring {target.value} for job already {current.value}",
                    extra={"job_id": job_id},
                )
                return job
            if target not in TRANSITIONS[current]:
                raise InvalidJobTransitionError(
                    f"Job {job_id} cannot go from {current.value} to {target.value}"
                )

            job.status = target
            if target.is_terminal:
                job.completed_at = datetime.now(timezone.utc)
            if error_message is not None:
                job.error_message = error_message
            if details is not None:
                job.details = details
            session.add(job)
            session.commit()
            session.refresh(job)

        logger.info(f"Sync job {target.value}", extra={"job_id": job_id})
        return job

    def begin(self, job_id: str) -> SyncJob:
        return self._transition(job_id, JobStatus.RUNNING)

    def succeed(self, job_id: str, details: Optional[Dict[str, Any]] = None) -> SyncJob:
        return self._transition(job_id, JobStatus.COMPLETED, details=details)

    def fail(self, job_id: str, error_message: str) -> SyncJob:
        return self._transition(job_id, JobStatus.FAILED, error_message=error_message)
