"""Thread-safe in-memory job store.

Every operation runs under one lock, so each call is atomic in the same way a single
document write is; nothing beyond that is shared between callers.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from uuid import uuid4

from archetype_imagegen.jobs.errors import JobNotFoundError
from archetype_imagegen.jobs.models import ImageJobStatus, ImageJobView
from archetype_imagegen.storage.common import utc_now


class InMemoryJobStore:
    """Dict-backed implementation of the job store protocol."""

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: dict[str, ImageJobView] = {}

    def create(
        self,
        *,
        subject_ref: str | None,
        subject_name: str | None,
        prompt: str,
    ) -> ImageJobView:
        now = self._clock()
        job = ImageJobView(
            job_id=str(uuid4()),
            subject_ref=subject_ref,
            subject_name=subject_name,
            prompt=prompt,
            status=ImageJobStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._jobs[job.job_id] = job
        return job

    def put(self, job: ImageJobView) -> None:
        """Insert or overwrite a raw job snapshot (fixtures and recovery tooling)."""

        with self._lock:
            self._jobs[job.job_id] = job

    def get(self, job_id: str) -> ImageJobView:
        with self._lock:
            return self._get_locked(job_id)

    def update_status(
        self,
        job_id: str,
        status: ImageJobStatus,
        *,
        result_ref: str | None = None,
        error: str | None = None,
    ) -> ImageJobView:
        with self._lock:
            job = self._get_locked(job_id)
            if status is ImageJobStatus.COMPLETED:
                error = None
            elif error is None:
                error = job.error
            updated = replace(
                job,
                status=status,
                updated_at=self._clock(),
                result_ref=result_ref if result_ref is not None else job.result_ref,
                error=error,
            )
            self._jobs[job_id] = updated
            return updated

    def list_by_status(self, status: ImageJobStatus) -> list[ImageJobView]:
        with self._lock:
            matching = [job for job in self._jobs.values() if job.status is status]
        return sorted(matching, key=ImageJobView.queue_key)

    def most_recently_completed(self) -> ImageJobView | None:
        completed = self.list_by_status(ImageJobStatus.COMPLETED)
        if not completed:
            return None
        return max(completed, key=lambda job: job.updated_at)

    def claim(self, job_id: str, *, expected_updated_at: datetime, fresh_after: datetime) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not ImageJobStatus.PENDING:
                return False
            if job.updated_at != expected_updated_at:
                return False
            for other in self._jobs.values():
                if (
                    other.job_id != job_id
                    and other.status is ImageJobStatus.PROCESSING
                    and other.updated_at >= fresh_after
                ):
                    return False
            self._jobs[job_id] = replace(
                job,
                status=ImageJobStatus.PROCESSING,
                updated_at=self._clock(),
            )
            return True

    def reclaim_zombie(self, job_id: str, *, expected_updated_at: datetime, error: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not ImageJobStatus.PROCESSING:
                return False
            if job.updated_at != expected_updated_at:
                return False
            self._jobs[job_id] = replace(
                job,
                status=ImageJobStatus.FAILED,
                error=error,
                updated_at=self._clock(),
            )
            return True

    def complete(self, job_id: str, *, result_ref: str) -> bool:
        return self._finish(
            job_id,
            status=ImageJobStatus.COMPLETED,
            result_ref=result_ref,
            error=None,
        )

    def fail(self, job_id: str, *, error: str) -> bool:
        return self._finish(job_id, status=ImageJobStatus.FAILED, error=error)

    def _finish(self, job_id: str, **changes: object) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not ImageJobStatus.PROCESSING:
                return False
            self._jobs[job_id] = replace(job, updated_at=self._clock(), **changes)
            return True

    def touch(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not ImageJobStatus.PROCESSING:
                return
            self._jobs[job_id] = replace(job, updated_at=self._clock())

    def fail_pending(self, error: str) -> int:
        with self._lock:
            now = self._clock()
            pending = [job for job in self._jobs.values() if job.status is ImageJobStatus.PENDING]
            for job in pending:
                self._jobs[job.job_id] = replace(
                    job,
                    status=ImageJobStatus.FAILED,
                    error=error,
                    updated_at=now,
                )
            return len(pending)

    def delete_created_before(self, cutoff: datetime) -> int:
        with self._lock:
            expired = [job_id for job_id, job in self._jobs.items() if job.created_at < cutoff]
            for job_id in expired:
                del self._jobs[job_id]
            return len(expired)

    def count_pending_before(self, created_at: datetime) -> int:
        with self._lock:
            return sum(
                1
                for job in self._jobs.values()
                if job.status is ImageJobStatus.PENDING and job.created_at < created_at
            )

    def list_jobs(
        self,
        *,
        status: ImageJobStatus | None = None,
        limit: int = 50,
    ) -> list[ImageJobView]:
        with self._lock:
            jobs = [job for job in self._jobs.values() if status is None or job.status is status]
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return jobs[:limit]

    def _get_locked(self, job_id: str) -> ImageJobView:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job
