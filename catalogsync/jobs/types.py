from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from catalogsync.db.models import JobStatus


@dataclass(slots=True)
class SyncJobSnapshot:
    id: str
    status: JobStatus
    items: dict[str, Any] | None
    progress: int | None = None
    total: int | None = None
    handles: list[Any] | None = None
    error_code: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_processing_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class JobListResult:
    items: list[SyncJobSnapshot] = field(default_factory=list)
    next_cursor: str | None = None
