"""Metricsync: Metrics Sync Orchestrator.

Runs one metrics sync for an ad account:
  job created → campaigns → ad sets → ads → job completed

Each level is fetched, reconciled and upserted on its own; a level that fails
is logged and skipped so the others still refresh. Only bookkeeping failures
(job tracking, entity listing) fail the job.
"""

from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

from metricsync.config import settings
from metricsync.connectors.meta.client import (
    InsightsPermissionError,
    MetaClient,
    is_permission_error,
)
from metricsync.connectors.meta.insights import InsightsFetchError, MetricsFetcher
from metricsync.models.job_models import JobType, LevelOutcome, SyncDetails
from metricsync.models.metric_models import EntityLevel
from metricsync.sync.jobs import SyncJobTracker
from metricsync.sync.reconciler import DATE_PRESET_DAYS, reconcile, window_days
from metricsync.sync.repository import EntityRepository
from metricsync.sync.store import MetricsStore
from metricsync.core.logging import get_logger

logger = get_logger("sync.orchestrator")

FetcherFactory = Callable[[str], MetricsFetcher]


class LevelStage(NamedTuple):
    """One hierarchy level: parent ids in, child ids out."""

    level: EntityLevel
    details_key: str


STAGES: Tuple[LevelStage, ...] = (
    LevelStage(EntityLevel.CAMPAIGN, "campaigns_synced"),
    LevelStage(EntityLevel.ADSET, "adsets_synced"),
    LevelStage(EntityLevel.AD, "ads_synced"),
)


def default_fetcher_factory(access_token: str) -> MetricsFetcher:
    return MetricsFetcher(MetaClient(access_token))


class SyncOrchestrator:
    """Walks the campaign → ad set → ad hierarchy for one account."""

    def __init__(
        self,
        repository: EntityRepository,
        tracker: SyncJobTracker,
        store: MetricsStore,
        fetcher_factory: FetcherFactory | None = None,
        stages: Sequence[LevelStage] = STAGES,
    ):
        self.repository = repository
        self.tracker = tracker
        self.store = store
        self.fetcher_factory = fetcher_factory or default_fetcher_factory
        self.stages = stages

    def _probe_permissions(self, user_id: str) -> bool:
        """True when the stored token lacks ad scopes (or can't be checked)."""
        try:
            has_permissions = self.repository.has_ad_permissions(user_id)
        except Exception as e:
            logger.warning(f"Permission probe failed, assuming missing scopes: {e}")
            return True
        if not has_permissions:
            logger.warning(f"Token lacks ad permissions for user {user_id}")
        return not has_permissions

    def _list_level(self, level: EntityLevel, parent_ids: Sequence[str]) -> List[str]:
        ids: List[str] = []
        for parent_id in parent_ids:
            ids.extend(e.id for e in self.repository.list_children(level, parent_id))
        return list(dict.fromkeys(ids))

    async def _sync_level(
        self,
        fetcher: MetricsFetcher,
        level: EntityLevel,
        entity_ids: List[str],
        user_id: str,
        date_preset: str,
        job_id: str,
    ) -> Tuple[LevelOutcome, bool]:
        """Fetch, reconcile, upsert and stamp one level. Never raises."""
        outcome = LevelOutcome(entities=len(entity_ids))
        permission_denied = False
        if not entity_ids:
            logger.info(f"No {level.value}s to sync", extra={"job_id": job_id})
            return outcome, permission_denied

        try:
            try:
                raw_rows = await fetcher.fetch(level, entity_ids, date_preset)
            except InsightsFetchError as e:
                raw_rows = e.partial_rows
                permission_denied = e.permission_denied
                outcome.fetch_error = str(e)
            except Exception as e:
                raw_rows = []
                permission_denied = isinstance(
                    e, InsightsPermissionError
                ) or is_permission_error(0, str(e))
                outcome.fetch_error = str(e)

            if outcome.fetch_error:
                logger.warning(
                    f"{level.value} insights unavailable, zero-filling missing days: "
                    f"{outcome.fetch_error}",
                    extra={"job_id": job_id, "entity_level": level.value},
                )

            outcome.fetched_rows = len(raw_rows)
            records = reconcile(
                level, entity_ids, window_days(date_preset), raw_rows
            )
            written = self.store.upsert(level, records, user_id=user_id)
            outcome.records_written = written.written
            outcome.failed_chunks = written.failed_chunks
            self.store.touch_synced(level, written.synced_ids)

            logger.info(
                f"Synced metrics for {len(entity_ids)} {level.value}s",
                extra={"job_id": job_id, "entity_level": level.value},
            )
        except Exception as e:
            outcome.error = str(e)
            logger.error(
                f"Error syncing {level.value} metrics: {e}",
                exc_info=True,
                extra={"job_id": job_id, "entity_level": level.value},
            )

        return outcome, permission_denied

    async def sync_all_metrics(
        self,
        user_id: str,
        ad_account_id: str,
        access_token: str,
        date_preset: Optional[str] = None,
    ) -> str:
        """Run a full metrics sync and return the job id."""
        if date_preset not in DATE_PRESET_DAYS:
            if date_preset:
                logger.warning(
                    f"Unsupported date preset {date_preset!r}, using "
                    f"{settings.default_date_preset}"
                )
            date_preset = settings.default_date_preset
        job_id: Optional[str] = None

        try:
            job_id = self.tracker.create(user_id, ad_account_id, JobType.METRICS)
            self.tracker.begin(job_id)

            details = SyncDetails(permission_issues=self._probe_permissions(user_id))

            fetcher = self.fetcher_factory(access_token)
            try:
                parent_ids: List[str] = [ad_account_id]
                for stage in self.stages:
                    entity_ids = self._list_level(stage.level, parent_ids)
                    setattr(details, stage.details_key, len(entity_ids))

                    outcome, permission_denied = await self._sync_level(
                        fetcher, stage.level, entity_ids, user_id, date_preset, job_id
                    )
                    details.levels[stage.level.value] = outcome
                    if permission_denied:
                        details.permission_issues = True
                    parent_ids = entity_ids
            finally:
                await fetcher.close()

            self.tracker.succeed(job_id, details.model_dump())
            logger.info("Metrics sync completed", extra={"job_id": job_id})
            return job_id

        except Exception as e:
            logger.error(f"Metrics sync failed: {e}", exc_info=True, extra={"job_id": job_id})
            if job_id:
                try:
                    self.tracker.fail(job_id, str(e) or type(e).__name__)
                except Exception as fail_error:
                    logger.error(
                        f"Could not mark job failed: {fail_error}",
                        extra={"job_id": job_id},
                    )
            raise
