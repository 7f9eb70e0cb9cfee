from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, sessionmaker

from catalogsync.core.config import Settings
from catalogsync.db.models import JobStatus, SyncJob, SyncMethod
from catalogsync.jobs.types import JobListResult, SyncJobSnapshot


class JobNotFoundError(RuntimeError):
    pass


class InvalidJobStateError(RuntimeError):
    pass


ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.QUEUED: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED},
    JobStatus.COMPLETED: set(),
}

ACTIVE_STATUSES = (JobStatus.QUEUED, JobStatus.PROCESSING)


def enforce_transition(from_status: JobStatus, to_status: JobStatus) -> None:
    if from_status == to_status:
        return
    if to_status not in ALLOWED_TRANSITIONS[from_status]:
        raise InvalidJobStateError(f"Illegal transition: {from_status.value} -> {to_status.value}")


class JobStore:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]):
        self._settings = settings
        self._session_factory = session_factory

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def _coerce_utc(self, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def _validate_items(self, items: Mapping[str, Any]) -> dict[str, str]:
        if not isinstance(items, Mapping):
            raise ValueError("Job items must be a mapping of item key to sync method")
        allowed = {method.value for method in SyncMethod}
        validated: dict[str, str] = {}
        for key, method in items.items():
            if not isinstance(key, str) or not key:
                raise ValueError(f"Job item keys must be non-empty strings, got {key!r}")
            token = method.value if isinstance(method, SyncMethod) else str(method)
            if token not in allowed:
                raise ValueError(f"Invalid sync method for item {key}: {method!r}")
            validated[key] = token
        return validated

    def create(self, items: Mapping[str, Any]) -> SyncJobSnapshot:
        validated = self._validate_items(items)
        now = self._now()
        with self._session_factory() as session:
            row = SyncJob(
                id=str(uuid4()),
                status=JobStatus.QUEUED,
                items=validated,
                progress=0,
                total=len(validated),
                handles=[],
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_snapshot(row)

    def fetch(self, job_id: str) -> SyncJobSnapshot:
        with self._session_factory() as session:
            row = session.get(SyncJob, job_id)
            if row is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            return self._to_snapshot(row)

    def update(self, job: SyncJobSnapshot) -> SyncJobSnapshot:
        with self._session_factory() as session:
            row = session.get(SyncJob, job.id)
            if row is None:
                raise JobNotFoundError(f"Job not found: {job.id}")
            enforce_transition(row.status, job.status)

            row.status = job.status
            row.progress = job.progress
            row.total = job.total
            row.handles = list(job.handles) if job.handles is not None else None
            row.error_code = job.error_code
            row.error_message = job.error_message
            row.started_processing_at = job.started_processing_at
            row.completed_at = job.completed_at
            row.updated_at = self._now()
            session.commit()
            session.refresh(row)
            return self._to_snapshot(row)

    def delete(self, job_id: str) -> None:
        with self._session_factory() as session:
            row = session.get(SyncJob, job_id)
            if row is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            session.delete(row)
            session.commit()

    def find_next_queued(self) -> SyncJobSnapshot | None:
        with self._session_factory() as session:
            row = session.scalar(
                select(SyncJob)
                .where(SyncJob.status.in_(ACTIVE_STATUSES))
                .where(SyncJob.error_code.is_(None))
                .order_by(SyncJob.created_at.asc(), SyncJob.id.asc())
                .limit(1)
            )
            if row is None:
                return None
            return self._to_snapshot(row)

    def list_jobs(
        self,
        *,
        limit: int | None = None,
        cursor: str | None = None,
        status: JobStatus | None = None,
    ) -> JobListResult:
        requested = limit if limit is not None else self._settings.default_page_size
        bounded_limit = max(1, min(requested, self._settings.max_page_size))
        with self._session_factory() as session:
            stmt = select(SyncJob).order_by(SyncJob.created_at.desc(), SyncJob.id.desc()).limit(bounded_limit + 1)
            if status is not None:
                stmt = stmt.where(SyncJob.status == status)
            if cursor:
                anchor_exists = session.scalar(select(SyncJob.id).where(SyncJob.id == cursor))
                if anchor_exists is None:
                    raise ValueError(f"Invalid pagination cursor: {cursor}")
                anchor_created_at = select(SyncJob.created_at).where(SyncJob.id == cursor).scalar_subquery()
                stmt = stmt.where(
                    or_(
                        SyncJob.created_at < anchor_created_at,
                        and_(SyncJob.created_at == anchor_created_at, SyncJob.id < cursor),
                    )
                )
            rows = list(session.scalars(stmt).all())
            page = rows[:bounded_limit]
            next_cursor = page[-1].id if len(rows) > bounded_limit and page else None
            return JobListResult(items=[self._to_snapshot(row) for row in page], next_cursor=next_cursor)

    def _to_snapshot(self, row: SyncJob) -> SyncJobSnapshot:
        return SyncJobSnapshot(
            id=row.id,
            status=row.status,
            items=dict(row.items) if isinstance(row.items, dict) else row.items,
            progress=row.progress,
            total=row.total,
            handles=list(row.handles) if isinstance(row.handles, list) else row.handles,
            error_code=row.error_code,
            error_message=row.error_message,
            created_at=self._coerce_utc(row.created_at),
            updated_at=self._coerce_utc(row.updated_at),
            started_processing_at=self._coerce_utc(row.started_processing_at),
            completed_at=self._coerce_utc(row.completed_at),
        )
