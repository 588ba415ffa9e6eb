"""Metricsync: Metric Store.

Idempotent chunked upserts keyed by (entity id, date), last-synced stamping,
and the read side used by the metrics routes.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import Session, select

from metricsync.config import settings
from metricsync.database import SessionFactory
from metricsync.models.metric_models import EntityLevel, MetricRecord
from metricsync.sync.notifier import ChangeNotifier, MetricsChange, NullNotifier
from metricsync.sync.reconciler import utc_today
from metricsync.core.logging import get_logger

logger = get_logger("sync.store")


class StoreWriteError(Exception):
    """An upsert chunk could not be written."""

    def __init__(self, table: str, chunk: int, cause: Exception):
        self.table = table
        self.chunk = chunk
        super().__init__(f"Upsert chunk {chunk} into {table} failed: {cause}")


class UpsertResult(BaseModel):
    written: int = 0
    failed_chunks: int = 0
    total_chunks: int = 0
    synced_ids: List[str] = []
    """Entities whose every record was committed."""


def _insert_for(session: Session):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Upsert not supported on {dialect}")


class MetricsStore:
    """Writes reconciled records; the only writer of the metric tables."""

    def __init__(
        self,
        session_factory: SessionFactory,
        notifier: ChangeNotifier | None = None,
        chunk_size: int | None = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or NullNotifier()
        self.chunk_size = chunk_size or settings.store_chunk_size

    def _upsert_chunk(
        self, session: Session, level: EntityLevel, rows: List[Dict[str, Any]]
    ) -> None:
        model = level.metric_model
        insert = _insert_for(session)
        stmt = insert(model.__table__).values(rows)
        update_columns = {
            key: getattr(stmt.excluded, key)
            for key in rows[0]
            if key not in (level.id_column, "date")
        }
        stmt = stmt.on_conflict_do_update(
            index_elements=[level.id_column, "date"],
            set_=update_columns,
        )
        session.connection().execute(stmt)
        session.commit()

    def upsert(
        self,
        level: EntityLevel,
        records: Sequence[MetricRecord],
        user_id: Optional[str] = None,
    ) -> UpsertResult:
        """Write records in chunks; a failed chunk does not stop the rest."""
        result = UpsertResult()
        if not records:
            return result

        table = level.table_name
        chunks = [
            records[i : i + self.chunk_size]
            for i in range(0, len(records), self.chunk_size)
        ]
        result.total_chunks = len(chunks)

        committed: Dict[str, None] = {}
        failed = set()
        with self.session_factory() as session:
            for number, chunk in enumerate(chunks, 1):
                rows = [level.to_row(record) for record in chunk]
                try:
                    self._upsert_chunk(session, level, rows)
                except Exception as e:
                    session.rollback()
                    error = StoreWriteError(table, number, e)
                    logger.error(
                        str(error), extra={"entity_level": level.value, "chunk": number}
                    )
                    result.failed_chunks += 1
                    failed.update(r.entity_id for r in chunk)
                    continue

                result.written += len(rows)
                committed.update(dict.fromkeys(r.entity_id for r in chunk))
                logger.info(
                    f"Upserted chunk {number}/{len(chunks)} into {table}",
                    extra={"entity_level": level.value, "chunk": number},
                )
                self.notifier.publish(
                    MetricsChange(
                        table=table,
                        level=level.value,
                        user_id=user_id,
                        entity_ids=list(dict.fromkeys(r.entity_id for r in chunk)),
                        rows=len(rows),
                    )
                )

        result.synced_ids = [i for i in committed if i not in failed]
        return result

    def touch_synced(self, level: EntityLevel, entity_ids: Sequence[str]) -> int:
        """Stamp ``last_synced_at`` on every entity of a level in one update."""
        if not entity_ids:
            return 0
        model = level.entity_model
        now = datetime.now(timezone.utc)
        with self.session_factory() as session:
            outcome = session.connection().execute(
                update(model)
                .where(model.id.in_(list(entity_ids)))
                .values(last_synced_at=now)
            )
            session.commit()
        return outcome.rowcount

    def list_metrics(
        self,
        level: EntityLevel,
        entity_id: str,
        days: int = 30,
        today=None,
    ) -> List[Any]:
        """Stored rows for one entity from ``today - days`` on, newest first."""
        model = level.metric_model
        start = (today or utc_today()) - timedelta(days=days)
        id_column = getattr(model, level.id_column)
        with self.session_factory() as session:
            return list(
                session.exec(
                    select(model)
                    .where(id_column == entity_id, model.date >= start)
                    .order_by(model.date.desc())  # type: ignore
                ).all()
            )
