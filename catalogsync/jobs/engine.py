from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from itertools import islice
from typing import Any, Iterable, NoReturn, Sequence

from catalogsync.db.models import JobStatus
from catalogsync.jobs.governor import ResourceGovernor
from catalogsync.jobs.store import JobStore
from catalogsync.jobs.types import SyncJobSnapshot
from catalogsync.sync.dispatcher import BatchDispatcher, DispatchError
from catalogsync.sync.hooks import SyncRequest
from catalogsync.sync.items import InvalidOperationError, ItemProcessor, OutcomeKind

logger = logging.getLogger(__name__)

MALFORMED_JOB = "MALFORMED_JOB"
INVALID_OPERATION = "INVALID_OPERATION"


class MalformedJobError(RuntimeError):
    pass


class DispatchFailurePolicy(str, Enum):
    # keep consumed items consumed even if their batch is lost
    ADVANCE = "advance"
    # persist progress only once the batch has been accepted
    HOLD = "hold"


def merge_handles(existing: Any, new_handles: Iterable[Any]) -> list[Any]:
    merged = list(existing) if isinstance(existing, list) else []
    merged.extend(new_handles)
    return merged


class SyncJobEngine:
    """Drives one sync job forward by a bounded amount of work per call.

    Every consumed item is checkpointed before the next one starts, and all
    requests gathered during a call are flushed to the catalog in a single
    batch at the end of it. A job whose data turns out to be corrupt gets an
    ``error_code`` and is left out of the queue from then on.
    """

    def __init__(
        self,
        *,
        store: JobStore,
        item_processor: ItemProcessor,
        dispatcher: BatchDispatcher,
        governor: ResourceGovernor,
        catalog_id: str | None,
        failure_policy: DispatchFailurePolicy | str = DispatchFailurePolicy.ADVANCE,
        default_items_per_batch: int | None = None,
    ):
        self._store = store
        self._items = item_processor
        self._dispatcher = dispatcher
        self._governor = governor
        self._catalog_id = catalog_id
        self._failure_policy = DispatchFailurePolicy(failure_policy)
        self._default_items_per_batch = default_items_per_batch

    @property
    def governor(self) -> ResourceGovernor:
        return self._governor

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def begin_run(self) -> None:
        """Start a fresh time budget for the next unit of scheduled work."""
        self._governor.reset()
        self._governor.start()

    def process_job(
        self,
        job: SyncJobSnapshot,
        items_per_batch: int | None = None,
        *,
        new_run: bool = True,
    ) -> SyncJobSnapshot:
        """Advance ``job`` and return its latest snapshot.

        ``items_per_batch`` falls back to the engine default; zero, negative
        or no cap at all means unlimited. With ``new_run=False`` the call
        shares the time budget of a run opened earlier by ``begin_run``.
        """
        started = time.perf_counter()
        if new_run:
            self.begin_run()
        else:
            self._governor.start()
        if items_per_batch is None:
            items_per_batch = self._default_items_per_batch

        if job.items is None:
            self._fail_job(job, MALFORMED_JOB, MalformedJobError(f"Job {job.id} has no items"))
        if not isinstance(job.items, Mapping):
            self._fail_job(
                job,
                MALFORMED_JOB,
                MalformedJobError(f"Job {job.id} items are not a mapping: {type(job.items).__name__}"),
            )

        if job.status == JobStatus.COMPLETED:
            logger.debug("Job %s is already completed, nothing to do", job.id)
            return job

        if job.status != JobStatus.PROCESSING:
            job.status = JobStatus.PROCESSING
            if job.started_processing_at is None:
                job.started_processing_at = self._now()
            job = self._store.update(job)

        items = job.items
        assert isinstance(items, Mapping)
        job.total = len(items)
        if job.progress is None:
            job.progress = 0

        # progress counts consumed entries of the full item map, in insertion order
        pending = list(islice(items.items(), job.progress, None))
        if pending:
            job = self._process_items(job, pending, items_per_batch)

        if job.progress >= job.total:
            job = self._complete_job(job)

        logger.debug(
            "Processed job %s to %d/%d in %.3fs",
            job.id,
            job.progress,
            job.total,
            time.perf_counter() - started,
        )
        return job

    def _process_items(
        self,
        job: SyncJobSnapshot,
        pending: Sequence[tuple[str, Any]],
        items_per_batch: int | None,
    ) -> SyncJobSnapshot:
        cap = items_per_batch if items_per_batch is not None and items_per_batch > 0 else None
        hold_progress = self._failure_policy == DispatchFailurePolicy.HOLD
        checkpoint = job.progress or 0
        processed = 0
        requests: list[SyncRequest] = []
        fatal: InvalidOperationError | None = None

        for item_key, method in pending:
            try:
                outcome = self._items.process(item_key, method)
            except InvalidOperationError as exc:
                fatal = exc
                break
            if outcome.kind == OutcomeKind.OPERATION and outcome.request is not None:
                requests.append(outcome.request)
            elif outcome.kind == OutcomeKind.FAILED:
                logger.warning("Background sync error in job %s for item %s: %s", job.id, item_key, outcome.error)

            processed += 1
            job.progress = (job.progress or 0) + 1
            if not hold_progress:
                job = self._store.update(job)

            if cap is not None and processed >= cap:
                break
            if self._governor.time_exceeded() or self._governor.memory_exceeded():
                logger.info("Resource limits reached, pausing job %s at %d/%d", job.id, job.progress, job.total)
                break

        # items consumed ahead of a corrupt entry still get their batch
        job = self._flush(job, requests, hold_progress=hold_progress, checkpoint=checkpoint)
        if fatal is not None:
            self._fail_job(job, INVALID_OPERATION, fatal)
        return job

    def _flush(
        self,
        job: SyncJobSnapshot,
        requests: list[SyncRequest],
        *,
        hold_progress: bool,
        checkpoint: int,
    ) -> SyncJobSnapshot:
        if not requests:
            if hold_progress:
                job = self._store.update(job)
            return job

        try:
            handles = self._dispatcher.send_item_updates(self._catalog_id, requests)
        except DispatchError as exc:
            logger.error(
                "There was an error trying to sync products using the catalog batch API for job %s: %s",
                job.id,
                exc,
            )
            job.error_message = str(exc)
            if hold_progress:
                job.progress = checkpoint
            return self._store.update(job)

        job.handles = merge_handles(job.handles, handles)
        return self._store.update(job)

    def _fail_job(self, job: SyncJobSnapshot, error_code: str, exc: Exception) -> NoReturn:
        logger.error("Sync job %s cannot be processed (%s): %s", job.id, error_code, exc)
        job.error_code = error_code
        job.error_message = str(exc)
        self._store.update(job)
        raise exc

    def _complete_job(self, job: SyncJobSnapshot) -> SyncJobSnapshot:
        job.status = JobStatus.COMPLETED
        job.completed_at = self._now()
        job = self._store.update(job)
        logger.info("Completed sync job %s (%d items, %d handles)", job.id, job.total or 0, len(job.handles or []))
        return job
