"""Metricsync: Metric Change Notifications.

The store publishes a change after every committed upsert chunk; dashboards
subscribe per (table, user) to refresh charts without polling.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from metricsync.core.logging import get_logger

logger = get_logger("sync.notifier")


class MetricsChange(BaseModel):
    """A committed write to one metric table."""

    table: str
    level: str
    user_id: Optional[str] = None
    entity_ids: List[str] = []
    rows: int = 0


ChangeCallback = Callable[[MetricsChange], None]


class ChangeNotifier(ABC):
    """Publish side of the metric change feed."""

    @abstractmethod
    def publish(self, change: MetricsChange) -> None:
        """Deliver a change to interested subscribers.

        Must not raise: a broken subscriber cannot fail a store write.
        """
        ...


class NullNotifier(ChangeNotifier):
    """Drops every change. Used when nobody is listening."""

    def publish(self, change: MetricsChange) -> None:
        return None


class InMemoryChangeNotifier(ChangeNotifier):
    """In-process fan-out filtered by table and user."""

    def __init__(self) -> None:
        self._subscribers: Dict[Tuple[str, Optional[str]], List[ChangeCallback]] = {}

    def subscribe(
        self,
        table: str,
        user_id: Optional[str],
        callback: ChangeCallback,
    ) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it.

        ``user_id=None`` receives changes for every user on the table.
        """
        key = (table, user_id)
        self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def publish(self, change: MetricsChange) -> None:
        keys = {(change.table, change.user_id), (change.table, None)}
        for key in keys:
            for callback in list(self._subscribers.get(key, [])):
                try:
                    callback(change)
                except Exception as e:
                    logger.error(f"Subscriber for {change.table} failed: {e}")
