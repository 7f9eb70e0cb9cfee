from catalogsync.worker.pipeline import (
    bootstrap_worker,
    build_engine,
    build_sync_items,
    drain_sync_queue,
    enqueue_sync_job,
    run_sync_once,
)

__all__ = [
    "bootstrap_worker",
    "build_engine",
    "build_sync_items",
    "enqueue_sync_job",
    "run_sync_once",
    "drain_sync_queue",
]
