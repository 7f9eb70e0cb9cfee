from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from sqlalchemy.orm import Session, sessionmaker

from catalogsync.core.config import Settings, get_settings
from catalogsync.core.logging import configure_logging
from catalogsync.db.init_db import initialize_database
from catalogsync.db.models import SyncMethod
from catalogsync.db.session import get_session_factory
from catalogsync.jobs.engine import MalformedJobError, SyncJobEngine
from catalogsync.jobs.governor import ResourceGovernor
from catalogsync.jobs.store import JobStore
from catalogsync.jobs.types import SyncJobSnapshot
from catalogsync.sync.dispatcher import BatchDispatcher, CatalogApi
from catalogsync.sync.hooks import RequestFilters
from catalogsync.sync.items import InvalidOperationError, ItemProcessor
from catalogsync.sync.products import AttributeNormalizer, ProductSource

logger = logging.getLogger(__name__)


def bootstrap_worker() -> Settings:
    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_database()
    return settings


def build_sync_items(
    update_ids: Iterable[Any] = (),
    delete_retailer_ids: Iterable[Any] = (),
    *,
    prefix: str | None = None,
) -> dict[str, str]:
    """Build an ordered item map; a key queued twice keeps its last method."""
    key_prefix = get_settings().product_index_prefix if prefix is None else prefix
    items: dict[str, str] = {}
    for product_id in update_ids:
        items[f"{key_prefix}{product_id}"] = SyncMethod.UPDATE.value
    for retailer_id in delete_retailer_ids:
        items[f"{key_prefix}{retailer_id}"] = SyncMethod.DELETE.value
    return items


def enqueue_sync_job(items: Mapping[str, Any], *, store: JobStore | None = None) -> str:
    job_store = store or JobStore(settings=get_settings(), session_factory=get_session_factory())
    snapshot = job_store.create(items)
    logger.info("Queued sync job %s with %d items", snapshot.id, snapshot.total or 0)
    return snapshot.id


def build_engine(
    *,
    product_source: ProductSource,
    catalog_api: CatalogApi,
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    governor: ResourceGovernor | None = None,
    filters: RequestFilters | None = None,
    normalizer: AttributeNormalizer | None = None,
) -> SyncJobEngine:
    effective_settings = settings or get_settings()
    store = JobStore(
        settings=effective_settings,
        session_factory=session_factory or get_session_factory(),
    )
    return SyncJobEngine(
        store=store,
        item_processor=ItemProcessor(
            product_source,
            key_prefix=effective_settings.product_index_prefix,
            normalizer=normalizer,
            filters=filters,
        ),
        dispatcher=BatchDispatcher(catalog_api, max_attempts=effective_settings.dispatch_max_attempts),
        governor=governor or ResourceGovernor.from_settings(effective_settings),
        catalog_id=effective_settings.catalog_id,
        failure_policy=effective_settings.dispatch_failure_policy,
        default_items_per_batch=effective_settings.items_per_batch,
    )


def run_sync_once(
    engine: SyncJobEngine,
    store: JobStore,
    *,
    items_per_batch: int | None = None,
    new_run: bool = True,
) -> SyncJobSnapshot | None:
    """Advance the oldest runnable job, if any.

    ``items_per_batch`` overrides the engine's configured batch size for this
    call only.
    """
    job = store.find_next_queued()
    if job is None:
        return None
    return engine.process_job(job, items_per_batch=items_per_batch, new_run=new_run)


def drain_sync_queue(
    engine: SyncJobEngine,
    store: JobStore,
    *,
    items_per_batch: int | None = None,
    max_jobs: int | None = None,
) -> list[SyncJobSnapshot]:
    """Keep stepping queued jobs until the queue is empty or the budget runs out.

    The whole drain shares one time budget. A job that paused without
    finishing ends the run, so the next scheduled run resumes it with a fresh
    budget. A job that turns out to be corrupt is flagged and skipped.
    """
    engine.begin_run()
    governor = engine.governor
    results: list[SyncJobSnapshot] = []
    while max_jobs is None or len(results) < max_jobs:
        if governor.time_exceeded() or governor.memory_exceeded():
            break
        try:
            job = run_sync_once(engine, store, items_per_batch=items_per_batch, new_run=False)
        except (MalformedJobError, InvalidOperationError):
            logger.exception("Skipping sync job that cannot be processed")
            continue
        if job is None:
            break
        results.append(job)
        if job.progress is not None and job.total is not None and job.progress < job.total:
            break
    return results
