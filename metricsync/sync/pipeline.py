"""Metricsync: Pipeline Composition.

Wires repository, job tracker, store and orchestrator around one session
factory so every component shares the same database and change feed.
"""

from typing import NamedTuple

from metricsync.database import SessionFactory
from metricsync.sync.jobs import SyncJobTracker
from metricsync.sync.notifier import ChangeNotifier, InMemoryChangeNotifier
from metricsync.sync.orchestrator import FetcherFactory, SyncOrchestrator
from metricsync.sync.repository import EntityRepository
from metricsync.sync.store import MetricsStore


class Pipeline(NamedTuple):
    repository: EntityRepository
    tracker: SyncJobTracker
    store: MetricsStore
    orchestrator: SyncOrchestrator
    notifier: ChangeNotifier


def build_pipeline(
    sessions: SessionFactory,
    notifier: ChangeNotifier | None = None,
    fetcher_factory: FetcherFactory | None = None,
) -> Pipeline:
    notifier = notifier or InMemoryChangeNotifier()
    repository = EntityRepository(sessions)
    tracker = SyncJobTracker(sessions)
    store = MetricsStore(sessions, notifier=notifier)
    orchestrator = SyncOrchestrator(
        repository, tracker, store, fetcher_factory=fetcher_factory
    )
    return Pipeline(repository, tracker, store, orchestrator, notifier)
