"""Tests for the metrics sync orchestrator.

The hierarchy lives in an in-memory database; insights come from a fake
fetcher so each level's failure mode can be scripted.
"""

import pytest
from sqlmodel import select

from metricsync.connectors.meta.client import InsightsPermissionError, TransientFetchError
from metricsync.connectors.meta.insights import InsightsFetchError
from metricsync.models.entity_models import Ad, AdSet, Campaign
from metricsync.models.job_models import JobStatus, SyncJob
from metricsync.models.metric_models import EntityLevel
from metricsync.sync.reconciler import utc_today

from conftest import FakeFetcher, insight_row


def _metric_rows(sessions, level):
    with sessions() as session:
        return list(session.exec(select(level.metric_model)).all())


def _all_jobs(sessions):
    with sessions() as session:
        return list(session.exec(select(SyncJob)).all())


def _today_row(sessions, level, entity_id):
    today = utc_today()
    for row in _metric_rows(sessions, level):
        if getattr(row, level.id_column) == entity_id and row.date == today:
            return row
    return None


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_syncs_all_levels_and_completes(self, sessions, hierarchy, make_pipeline):
        fetcher = FakeFetcher()
        pipeline = make_pipeline(fetcher)

        job_id = await pipeline.orchestrator.sync_all_metrics(
            "user-1", "act_1", "token-1", date_preset="last_7_days"
        )

        job = pipeline.tracker.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.details["campaigns_synced"] == 2
        assert job.details["adsets_synced"] == 3
        assert job.details["ads_synced"] == 4
        assert job.details["permission_issues"] is False

        assert [call[0] for call in fetcher.calls] == [
            EntityLevel.CAMPAIGN,
            EntityLevel.ADSET,
            EntityLevel.AD,
        ]
        assert fetcher.calls[1][1] == ["s1", "s2", "s3"]
        assert all(call[2] == "last_7_days" for call in fetcher.calls)
        assert fetcher.closed

        for level, ids in hierarchy.items():
            assert len(_metric_rows(sessions, level)) == 7 * len(ids)
            assert _today_row(sessions, level, ids[0]).clicks == 50

    @pytest.mark.asyncio
    async def test_default_preset_is_thirty_days(self, sessions, hierarchy, make_pipeline):
        pipeline = make_pipeline(FakeFetcher())
        await pipeline.orchestrator.sync_all_metrics("user-1", "act_1", "token-1")

        assert len(_metric_rows(sessions, EntityLevel.CAMPAIGN)) == 30 * 2

    @pytest.mark.asyncio
    async def test_stamps_last_synced_at(self, sessions, hierarchy, make_pipeline):
        pipeline = make_pipeline(FakeFetcher())
        await pipeline.orchestrator.sync_all_metrics("user-1", "act_1", "token-1")

        with sessions() as session:
            for model in (Campaign, AdSet, Ad):
                assert all(e.last_synced_at is not None for e in session.exec(select(model)).all())

    @pytest.mark.asyncio
    async def test_unknown_preset_falls_back_to_default_window(
        self, sessions, hierarchy, make_pipeline
    ):
        fetcher = FakeFetcher()
        pipeline = make_pipeline(fetcher)

        await pipeline.orchestrator.sync_all_metrics("user-1", "act_1", "token-1", "last_3d")

        assert all(call[2] == "last_30_days" for call in fetcher.calls)
        assert len(_metric_rows(sessions, EntityLevel.CAMPAIGN)) == 30 * 2

    @pytest.mark.asyncio
    async def test_resync_does_not_duplicate(self, sessions, hierarchy, make_pipeline):
        pipeline = make_pipeline(FakeFetcher())
        await pipeline.orchestrator.sync_all_metrics("user-1", "act_1", "token-1", "last_7_days")
        await pipeline.orchestrator.sync_all_metrics("user-1", "act_1", "token-1", "last_7_days")

        assert len(_metric_rows(sessions, EntityLevel.AD)) == 7 * 4


class TestLevelIsolation:
    @pytest.mark.asyncio
    async def test_campaign_fetch_failure_zero_fills_and_continues(
        self, sessions, hierarchy, make_pipeline
    ):
        fetcher = FakeFetcher(errors={EntityLevel.CAMPAIGN: TransientFetchError("Service unavailable", 503)})
        pipeline = make_pipeline(fetcher)

        job_id = await pipeline.orchestrator.sync_all_metrics("user-1", "act_1", "token-1")

        job = pipeline.tracker.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.details["campaigns_synced"] == 2
        assert job.details["permission_issues"] is False
        assert "Service unavailable" in job.details["levels"]["campaign"]["fetch_error"]

        campaign_rows = _metric_rows(sessions, EntityLevel.CAMPAIGN)
        assert len(campaign_rows) == 30 * 2
        assert all(r.impressions == 0 and r.clicks == 0 for r in campaign_rows)

        assert _today_row(sessions, EntityLevel.ADSET, "s1").impressions == 1000
        assert _today_row(sessions, EntityLevel.AD, "a4").impressions == 1000

    @pytest.mark.asyncio
    async def test_permission_denied_message_flags_job(self, sessions, hierarchy, make_pipeline):
        fetcher = FakeFetcher(errors={EntityLevel.AD: Exception("Permission denied: ads_read")})
        pipeline = make_pipeline(fetcher)

        job_id = await pipeline.orchestrator.sync_all_metrics("user-1", "act_1", "token-1")

        job = pipeline.tracker.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.details["permission_issues"] is True
        assert job.details["ads_synced"] == 4

    @pytest.mark.asyncio
    async def test_partial_batches_are_kept(self, sessions, hierarchy, make_pipeline):
        partial = [insight_row(EntityLevel.ADSET, "s1")]
        error = InsightsFetchError(
            EntityLevel.ADSET,
            [InsightsPermissionError("Requires ads_read", 403, 200)],
            partial,
            total_batches=2,
        )
        pipeline = make_pipeline(FakeFetcher(errors={EntityLevel.ADSET: error}))

        job_id = await pipeline.orchestrator.sync_all_metrics("user-1", "act_1", "token-1")

        job = pipeline.tracker.get(job_id)
        assert job.details["permission_issues"] is True
        assert job.details["levels"]["adset"]["fetched_rows"] == 1
        assert _today_row(sessions, EntityLevel.ADSET, "s1").clicks == 50
        assert _today_row(sessions, EntityLevel.ADSET, "s2").clicks == 0

    @pytest.mark.asyncio
    async def test_store_failure_on_one_level_spares_the_others(
        self, sessions, hierarchy, make_pipeline, monkeypatch
    ):
        pipeline = make_pipeline(FakeFetcher())
        original_upsert = pipeline.store.upsert

        def upsert(level, records, user_id=None):
            if level == EntityLevel.ADSET:
                raise RuntimeError("disk full")
            return original_upsert(level, records, user_id=user_id)

        monkeypatch.setattr(pipeline.store, "upsert", upsert)

        job_id = await pipeline.orchestrator.sync_all_metrics("user-1", "act_1", "token-1")

        job = pipeline.tracker.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.details["levels"]["adset"]["error"] == "disk full"
        assert _metric_rows(sessions, EntityLevel.ADSET) == []
        assert len(_metric_rows(sessions, EntityLevel.AD)) == 30 * 4


    @pytest.mark.asyncio
    async def test_failed_writes_leave_last_synced_at_untouched(
        self, sessions, hierarchy, make_pipeline, monkeypatch
    ):
        pipeline = make_pipeline(FakeFetcher())

        def broken_chunk(session, level, rows):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(pipeline.store, "_upsert_chunk", broken_chunk)

        job_id = await pipeline.orchestrator.sync_all_metrics(
            "user-1", "act_1", "token-1", "last_7_days"
        )

        job = pipeline.tracker.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.details["levels"]["campaign"]["records_written"] == 0
        assert job.details["levels"]["campaign"]["failed_chunks"] == 1
        with sessions() as session:
            for model in (Campaign, AdSet, Ad):
                assert all(e.last_synced_at is None for e in session.exec(select(model)).all())


class TestPermissionProbe:
    @pytest.mark.asyncio
    async def test_user_without_stored_token_is_flagged(self, sessions, hierarchy, make_pipeline):
        pipeline = make_pipeline(FakeFetcher())

        job_id = await pipeline.orchestrator.sync_all_metrics("user-2", "act_1", "token-x")

        job = pipeline.tracker.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.details["permission_issues"] is True


class TestOrchestrationFailure:
    @pytest.mark.asyncio
    async def test_tracker_error_fails_job_and_propagates(
        self, sessions, hierarchy, make_pipeline, monkeypatch
    ):
        fetcher = FakeFetcher()
        pipeline = make_pipeline(fetcher)

        def broken_succeed(job_id, details=None):
            raise RuntimeError("sync_jobs table locked")

        monkeypatch.setattr(pipeline.tracker, "succeed", broken_succeed)

        with pytest.raises(RuntimeError, match="table locked"):
            await pipeline.orchestrator.sync_all_metrics("user-1", "act_1", "token-1")

        (job,) = _all_jobs(sessions)
        assert job.status == JobStatus.FAILED
        assert job.error_message == "sync_jobs table locked"
        assert fetcher.closed

    @pytest.mark.asyncio
    async def test_listing_error_fails_job(self, sessions, hierarchy, make_pipeline, monkeypatch):
        fetcher = FakeFetcher()
        pipeline = make_pipeline(fetcher)

        def broken_list(level, parent_id):
            raise RuntimeError("relation ad_sets does not exist")

        monkeypatch.setattr(pipeline.repository, "list_children", broken_list)

        with pytest.raises(RuntimeError):
            await pipeline.orchestrator.sync_all_metrics("user-1", "act_1", "token-1")

        (job,) = _all_jobs(sessions)
        assert job.status == JobStatus.FAILED
        assert fetcher.closed
