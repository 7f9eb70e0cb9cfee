from __future__ import annotations

import pytest
from pydantic import ValidationError

import catalogsync.db.session as db_session_module
from catalogsync.core.config import Settings
from catalogsync.db.models import JobStatus
from catalogsync.jobs.store import InvalidJobStateError, JobNotFoundError, JobStore


def make_store(configure, **overrides) -> JobStore:
    settings = configure(**overrides)
    return JobStore(settings, db_session_module.get_session_factory())


def test_create_and_fetch_preserve_item_order(configure) -> None:
    store = make_store(configure)
    items = {"p-9": "update", "p-1": "delete", "p-5": "update"}

    created = store.create(items)
    fetched = store.fetch(created.id)

    assert created.status == JobStatus.QUEUED
    assert list(fetched.items or {}) == ["p-9", "p-1", "p-5"]
    assert (fetched.progress, fetched.total, fetched.handles) == (0, 3, [])
    assert fetched.started_processing_at is None
    assert fetched.completed_at is None


@pytest.mark.parametrize("items", [{"p-1": "upsert"}, {"": "update"}, {1: "update"}, ["p-1"]])
def test_create_rejects_invalid_items(configure, items) -> None:
    store = make_store(configure)
    with pytest.raises(ValueError):
        store.create(items)


def test_fetch_unknown_job(configure) -> None:
    store = make_store(configure)
    try:
        store.fetch("missing")
    except JobNotFoundError:
        pass
    else:
        raise AssertionError("expected JobNotFoundError")


def test_update_persists_mutable_state_but_not_items(configure) -> None:
    store = make_store(configure)
    job = store.create({"p-1": "update", "p-2": "update"})

    job.status = JobStatus.PROCESSING
    job.progress = 1
    job.handles = ["h-1"]
    job.items = {"p-3": "update"}
    updated = store.update(job)

    assert updated.progress == 1
    assert updated.handles == ["h-1"]
    assert updated.items == {"p-1": "update", "p-2": "update"}
    assert updated.updated_at is not None


def test_update_rejects_reopening_completed_job(configure) -> None:
    store = make_store(configure)
    job = store.create({"p-1": "update"})
    job.status = JobStatus.PROCESSING
    job = store.update(job)
    job.status = JobStatus.COMPLETED
    job = store.update(job)

    job.status = JobStatus.PROCESSING
    with pytest.raises(InvalidJobStateError):
        store.update(job)

    skip = store.create({"p-2": "update"})
    skip.status = JobStatus.COMPLETED
    with pytest.raises(InvalidJobStateError):
        store.update(skip)


def test_find_next_queued_returns_oldest_active_job(configure) -> None:
    store = make_store(configure)
    assert store.find_next_queued() is None

    first = store.create({"p-1": "update"})
    second = store.create({"p-2": "update"})
    assert store.find_next_queued().id == first.id  # type: ignore[union-attr]

    first.status = JobStatus.PROCESSING
    store.update(first)
    assert store.find_next_queued().id == first.id  # type: ignore[union-attr]

    first.status = JobStatus.COMPLETED
    store.update(first)
    assert store.find_next_queued().id == second.id  # type: ignore[union-attr]


def test_find_next_queued_skips_jobs_flagged_with_error_code(configure) -> None:
    store = make_store(configure)
    broken = store.create({"p-1": "update"})
    healthy = store.create({"p-2": "update"})

    broken.error_code = "MALFORMED_JOB"
    broken.error_message = "items are not a mapping"
    saved = store.update(broken)

    assert saved.error_code == "MALFORMED_JOB"
    assert store.fetch(broken.id).status == JobStatus.QUEUED
    assert store.find_next_queued().id == healthy.id  # type: ignore[union-attr]

    store.delete(healthy.id)
    assert store.find_next_queued() is None


def test_delete_removes_job(configure) -> None:
    store = make_store(configure)
    job = store.create({"p-1": "update"})

    store.delete(job.id)

    with pytest.raises(JobNotFoundError):
        store.fetch(job.id)
    with pytest.raises(JobNotFoundError):
        store.delete(job.id)


def test_list_jobs_cursor_pagination_is_gap_free(configure) -> None:
    store = make_store(configure)
    created_ids = [store.create({f"p-{i}": "update"}).id for i in range(7)]

    page1 = store.list_jobs(limit=3)
    page2 = store.list_jobs(limit=3, cursor=page1.next_cursor)
    page3 = store.list_jobs(limit=3, cursor=page2.next_cursor)

    seen = [job.id for job in page1.items + page2.items + page3.items]
    assert len(seen) == len(set(seen))
    assert set(seen) == set(created_ids)
    assert page3.next_cursor is None


def test_list_jobs_filters_by_status_and_rejects_unknown_cursor(configure) -> None:
    store = make_store(configure)
    queued = store.create({"p-1": "update"})
    running = store.create({"p-2": "update"})
    running.status = JobStatus.PROCESSING
    store.update(running)

    result = store.list_jobs(status=JobStatus.QUEUED)
    assert [job.id for job in result.items] == [queued.id]

    with pytest.raises(ValueError):
        store.list_jobs(cursor="does-not-exist")


def test_settings_reject_unknown_dispatch_policy(tmp_path) -> None:
    with pytest.raises(ValidationError):
        Settings(state_root=tmp_path, dispatch_failure_policy="retry-forever")
    with pytest.raises(ValidationError):
        Settings(state_root="relative/state")
    with pytest.raises(ValidationError):
        Settings(state_root=tmp_path, memory_limit_ratio=1.5)

    settings = Settings(state_root=tmp_path, dispatch_failure_policy=" HOLD ", memory_limit_mib=100, memory_limit_ratio=0.5)
    assert settings.dispatch_failure_policy == "hold"
    assert settings.memory_threshold_bytes == 50 * 1024 * 1024
    assert settings.effective_database_url.endswith("catalogsync.sqlite3")
