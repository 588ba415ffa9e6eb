"""Metricsync: Meta Insights Fetcher.

Pulls daily insight rows for a list of campaign / ad set / ad ids. The Graph
API accepts at most ten ids per insights call, so ids are split into batches
that are requested concurrently and joined before returning.
"""

import asyncio
import json
from typing import Any, Dict, List, Sequence

from metricsync.config import settings
from metricsync.connectors.meta.client import (
    InsightsPermissionError,
    MetaAPIError,
    MetaClient,
)
from metricsync.core.metric_registry import insight_fields
from metricsync.models.metric_models import EntityLevel
from metricsync.core.logging import get_logger

logger = get_logger("meta.insights")

RawMetricRow = Dict[str, Any]


class InsightsFetchError(Exception):
    """One or more insight batches failed.

    Raised only after every batch has settled. ``partial_rows`` holds what
    the successful batches returned.
    """

    def __init__(
        self,
        level: EntityLevel,
        errors: List[MetaAPIError],
        partial_rows: List[RawMetricRow],
        total_batches: int,
    ):
        self.level = level
        self.errors = errors
        self.partial_rows = partial_rows
        self.total_batches = total_batches
        super().__init__(
            f"{len(errors)}/{total_batches} {level.value} insight batches failed: "
            f"{errors[0]}"
        )

    @property
    def permission_denied(self) -> bool:
        return any(isinstance(e, InsightsPermissionError) for e in self.errors)


def chunk_ids(ids: Sequence[str], size: int) -> List[List[str]]:
    """Split ids into consecutive batches of at most ``size``."""
    if size < 1:
        raise ValueError("batch size must be positive")
    return [list(ids[i : i + size]) for i in range(0, len(ids), size)]


class MetricsFetcher:
    """Fetch raw insight rows for one hierarchy level."""

    def __init__(self, client: MetaClient, batch_size: int | None = None):
        self.client = client
        self.batch_size = batch_size or settings.insights_batch_size

    async def close(self) -> None:
        await self.client.close()

    async def fetch_batch(
        self,
        level: EntityLevel,
        entity_ids: List[str],
        date_preset: str,
    ) -> List[RawMetricRow]:
        """One insights call for at most ``batch_size`` ids."""
        url = f"{self.client.base_url}/insights"
        params = {
            "fields": insight_fields(level.value),
            "time_increment": "1",
            "level": level.value,
            "date_preset": date_preset,
            level.ids_param: json.dumps(entity_ids),
        }
        return await self.client._paginated_get(url, params)

    async def fetch(
        self,
        level: EntityLevel,
        entity_ids: Sequence[str],
        date_preset: str,
    ) -> List[RawMetricRow]:
        """Fetch every id's rows; raise ``InsightsFetchError`` if any batch failed."""
        if not entity_ids:
            return []

        batches = chunk_ids(entity_ids, self.batch_size)
        logger.info(
            f"Fetching {level.value} insights for {len(entity_ids)} ids "
            f"in {len(batches)} batches",
            extra={"entity_level": level.value},
        )

        results = await asyncio.gather(
            *(self.fetch_batch(level, batch, date_preset) for batch in batches),
            return_exceptions=True,
        )

        rows: List[RawMetricRow] = []
        errors: List[MetaAPIError] = []
        for index, result in enumerate(results, 1):
            if isinstance(result, MetaAPIError):
                errors.append(result)
                if isinstance(result, InsightsPermissionError):
                    logger.error(
                        f"Permission error fetching {level.value} insights; "
                        "the token likely lacks ads_read / ads_management: "
                        f"{result}",
                        extra={"entity_level": level.value, "batch": index},
                    )
                else:
                    logger.warning(
                        f"{level.value} insights batch failed: {result}",
                        extra={"entity_level": level.value, "batch": index},
                    )
            elif isinstance(result, BaseException):
                raise result
            else:
                rows.extend(result)

        if errors:
            raise InsightsFetchError(level, errors, rows, len(batches))

        logger.info(
            f"Received {len(rows)} {level.value} insight rows",
            extra={"entity_level": level.value},
        )
        return rows
