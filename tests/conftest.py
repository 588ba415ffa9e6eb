"""Pytest configuration for Metricsync tests

Shared fixtures: an isolated in-memory database per test, a seeded ad
hierarchy, and a scriptable stand-in for the insights fetcher.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import pytest

# Set test environment before any metricsync import reads settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("CRON_SECRET_KEY", "test-cron-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from metricsync.database import session_factory
from metricsync.models.entity_models import Ad, AdAccount, AdSet, Campaign, FacebookToken
from metricsync.models.metric_models import EntityLevel
from metricsync.sync.notifier import InMemoryChangeNotifier
from metricsync.sync.pipeline import build_pipeline
from metricsync.sync.reconciler import utc_today


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def engine():
    """In-memory SQLite shared across connections for one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def sessions(engine):
    return session_factory(engine)


@pytest.fixture
def hierarchy(sessions):
    """act_1 → 2 campaigns → 3 ad sets → 4 ads, plus a token with ad scopes."""
    now = datetime.now(timezone.utc)
    with sessions() as session:
        session.add(AdAccount(id="act_1", user_id="user-1", name="Main account"))
        session.add(Campaign(id="c1", ad_account_id="act_1", name="Spring"))
        session.add(Campaign(id="c2", ad_account_id="act_1", name="Summer"))
        session.add(AdSet(id="s1", campaign_id="c1"))
        session.add(AdSet(id="s2", campaign_id="c1"))
        session.add(AdSet(id="s3", campaign_id="c2"))
        session.add(Ad(id="a1", ad_set_id="s1"))
        session.add(Ad(id="a2", ad_set_id="s1"))
        session.add(Ad(id="a3", ad_set_id="s2"))
        session.add(Ad(id="a4", ad_set_id="s3"))
        session.add(
            FacebookToken(
                user_id="user-1",
                access_token="token-1",
                expires_at=now + timedelta(days=30),
                has_ad_permissions=True,
            )
        )
        session.commit()
    return {
        EntityLevel.CAMPAIGN: ["c1", "c2"],
        EntityLevel.ADSET: ["s1", "s2", "s3"],
        EntityLevel.AD: ["a1", "a2", "a3", "a4"],
    }


# ============================================================================
# Fetcher Fakes
# ============================================================================


def insight_row(level: EntityLevel, entity_id: str, day=None, **values) -> Dict:
    """A raw insights row the way the Graph API returns it (numbers as strings)."""
    day = (day or utc_today()).isoformat()
    row = {
        level.row_key: entity_id,
        "date_start": day,
        "date_stop": day,
        "impressions": "1000",
        "clicks": "50",
        "reach": "800",
        "frequency": "1.25",
        "spend": "12.34",
        "cpc": "0.25",
        "cpm": "12.34",
        "ctr": "5.0",
        "actions": [{"action_type": "offsite_conversion", "value": "5"}],
    }
    row.update(values)
    return row


class FakeFetcher:
    """Returns one row per id for today, or raises a scripted error per level."""

    def __init__(self, errors: Optional[Dict[EntityLevel, Exception]] = None):
        self.errors = errors or {}
        self.calls: List[tuple] = []
        self.closed = False

    async def fetch(self, level, entity_ids, date_preset):
        self.calls.append((level, list(entity_ids), date_preset))
        if level in self.errors:
            raise self.errors[level]
        return [insight_row(level, entity_id) for entity_id in entity_ids]

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def make_pipeline(sessions) -> Callable:
    """Build a pipeline whose orchestrator uses the given fetcher."""

    def _make(fetcher, notifier=None):
        return build_pipeline(
            sessions,
            notifier=notifier or InMemoryChangeNotifier(),
            fetcher_factory=lambda access_token: fetcher,
        )

    return _make
