"""
Rendition data models.

A Rendition is a versioned pair of production-ready PDFs (interior + cover)
for one book, plus the preflight verdict on them. It owns three jobs:
interior, cover and preflight.

Job lifecycle:
    WAITING -> ACTIVE -> (COMPLETED | FAILED)
    ACTIVE  -> WAITING   (failure with attempts left, next_run_at pushed out)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from models.preflight import PreflightResult
from models.print_spec import PrintSpec, utc_now


class JobType(Enum):
    INTERIOR = "interior"
    COVER = "cover"
    PREFLIGHT = "preflight"


class JobState(Enum):
    WAITING = "waiting"
    """Queued; runs once next_run_at has passed."""

    ACTIVE = "active"
    """Picked up by a worker."""

    COMPLETED = "completed"
    """Finished successfully."""

    FAILED = "failed"
    """Exhausted its attempts."""


class RenditionStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in (RenditionStatus.COMPLETED, RenditionStatus.FAILED, RenditionStatus.CANCELLED)


@dataclass
class RenditionJob:
    """
    One unit of asynchronous production work.

    Retry state is explicit (attempts, next_run_at) so the scheduler loop,
    not a callback chain, decides when the job runs again.
    """

    rendition_id: str
    """Owning rendition."""

    job_type: JobType
    """interior, cover or preflight."""

    max_attempts: int = 3
    """Retry ceiling."""

    state: JobState = JobState.WAITING
    """Current lifecycle state."""

    attempts: int = 0
    """Attempts started so far."""

    next_run_at: datetime = field(default_factory=utc_now)
    """Earliest time the scheduler may start the job."""

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    result: Optional[Dict[str, Any]] = None
    """Job output (URL/page count for renders, preflight summary)."""

    error: Optional[str] = None
    """Last failure message."""

    discarded: bool = False
    """Rendition was cancelled while this job was active; drop the outcome."""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_in_flight(self) -> bool:
        return self.state in (JobState.WAITING, JobState.ACTIVE) and not self.discarded

    def copy(self) -> "RenditionJob":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rendition_id": self.rendition_id,
            "job_type": self.job_type.value,
            "state": self.state.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "next_run_at": self.next_run_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "result": self.result,
            "error": self.error,
            "discarded": self.discarded,
            "created_at": self.created_at.isoformat(),
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


@dataclass
class Rendition:
    """A versioned pair of generated PDFs for one book."""

    book_id: str
    """Book the PDFs were rendered from."""

    version: int = 1
    """Content version rendered."""

    status: RenditionStatus = RenditionStatus.PENDING
    """Aggregate status."""

    spec: Optional[PrintSpec] = None
    """Target print spec (drives binding-specific preflight)."""

    interior_pdf_url: Optional[str] = None
    cover_pdf_url: Optional[str] = None
    page_count: Optional[int] = None
    file_size_bytes: Optional[int] = None

    preflight: Optional[PreflightResult] = None
    """Preflight verdict once the preflight job has run."""

    error: Optional[str] = None
    """Failure description when status is FAILED."""

    exhausted: bool = False
    """True when failure came from a job hitting its retry ceiling."""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def has_files(self) -> bool:
        return bool(self.interior_pdf_url and self.cover_pdf_url)

    def copy(self) -> "Rendition":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "version": self.version,
            "status": self.status.value,
            "interior_pdf_url": self.interior_pdf_url,
            "cover_pdf_url": self.cover_pdf_url,
            "page_count": self.page_count,
            "file_size_bytes": self.file_size_bytes,
            "preflight": self.preflight.to_dict() if self.preflight else None,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
