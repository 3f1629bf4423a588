"""Domain models for the image generation job queue."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class ImageJobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {ImageJobStatus.COMPLETED, ImageJobStatus.FAILED}


@dataclass(slots=True, frozen=True)
class ImageJobView:
    """Readable job snapshot shared by stores, coordinator and pipeline."""

    job_id: str
    subject_ref: str | None
    subject_name: str | None
    prompt: str
    status: ImageJobStatus
    created_at: datetime
    updated_at: datetime
    result_ref: str | None = None
    error: str | None = None

    def queue_key(self) -> tuple[datetime, str]:
        """FIFO ordering key among pending jobs."""

        return (self.created_at, self.job_id)


@dataclass(slots=True, frozen=True)
class ClaimGranted:
    """The caller now owns the single processing slot for this job."""

    job: ImageJobView


@dataclass(slots=True, frozen=True)
class TerminalResult:
    """The job already reached completed/failed; nothing left to do."""

    job: ImageJobView


@dataclass(slots=True, frozen=True)
class WriteThroughOutcome:
    """Auxiliary result of propagating the image URL into the subject record."""

    attempted: bool
    ok: bool
    error: str | None = None


@dataclass(slots=True, frozen=True)
class ExecutionOutcome:
    """Core job outcome kept apart from the best-effort write-through."""

    job: ImageJobView
    write_through: WriteThroughOutcome


@dataclass(slots=True, frozen=True)
class JobStatusView:
    """Point-in-time status for UI polling."""

    status: ImageJobStatus
    result_ref: str | None = None
    error: str | None = None
    queue_position: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status.value}
        if self.result_ref is not None:
            payload["resultRef"] = self.result_ref
        if self.error is not None:
            payload["error"] = self.error
        if self.queue_position is not None:
            payload["queuePosition"] = self.queue_position
        return payload
