"""Metricsync: API Dependencies."""

from functools import lru_cache

from metricsync.database import engine, session_factory
from metricsync.sync.pipeline import Pipeline, build_pipeline


@lru_cache
def get_pipeline() -> Pipeline:
    """Process-wide pipeline bound to the application engine."""
    return build_pipeline(session_factory(engine))
