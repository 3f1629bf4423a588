"""Persistent job record store backed by SQLModel + SQLite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import exists, func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from archetype_imagegen.jobs.errors import JobNotFoundError
from archetype_imagegen.jobs.models import ImageJobStatus, ImageJobView
from archetype_imagegen.storage.alembic_runner import upgrade_head
from archetype_imagegen.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from archetype_imagegen.storage.sqlmodel_models import ImageJob


class JobStore(Protocol):
    """Shared mutable document store, the only channel between callers."""

    def create(
        self,
        *,
        subject_ref: str | None,
        subject_name: str | None,
        prompt: str,
    ) -> ImageJobView: ...

    def get(self, job_id: str) -> ImageJobView: ...

    def update_status(
        self,
        job_id: str,
        status: ImageJobStatus,
        *,
        result_ref: str | None = None,
        error: str | None = None,
    ) -> ImageJobView: ...

    def list_by_status(self, status: ImageJobStatus) -> list[ImageJobView]: ...

    def most_recently_completed(self) -> ImageJobView | None: ...

    def claim(self, job_id: str, *, expected_updated_at: datetime, fresh_after: datetime) -> bool:
        """Conditionally move a pending job to processing.

        Succeeds only while the job is still pending at the observed version and no other
        job holds a heartbeat at or after ``fresh_after``.
        """

    def reclaim_zombie(self, job_id: str, *, expected_updated_at: datetime, error: str) -> bool:
        """Conditionally fail a processing job whose heartbeat was observed as stale."""

    def complete(self, job_id: str, *, result_ref: str) -> bool:
        """Conditionally move a processing job to completed, clearing any error."""

    def fail(self, job_id: str, *, error: str) -> bool:
        """Conditionally move a processing job to failed."""

    def touch(self, job_id: str) -> None: ...

    def fail_pending(self, error: str) -> int: ...

    def delete_created_before(self, cutoff: datetime) -> int: ...

    def count_pending_before(self, created_at: datetime) -> int: ...

    def list_jobs(
        self,
        *,
        status: ImageJobStatus | None = None,
        limit: int = 50,
    ) -> list[ImageJobView]: ...


class SqlJobStore:
    """Job store facade backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        clock: Callable[[], datetime] = utc_now,
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self._clock = clock
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create(
        self,
        *,
        subject_ref: str | None,
        subject_name: str | None,
        prompt: str,
    ) -> ImageJobView:
        """Create a pending job."""

        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            row = ImageJob(
                job_id=str(uuid4()),
                subject_ref=subject_ref,
                subject_name=subject_name,
                prompt=prompt,
                status=ImageJobStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def get(self, job_id: str) -> ImageJobView:
        with Session(self.engine) as session:
            row = session.exec(select(ImageJob).where(ImageJob.job_id == job_id)).one_or_none()
            if row is None:
                raise JobNotFoundError(job_id)
            return _to_job_view(row)

    def update_status(
        self,
        job_id: str,
        status: ImageJobStatus,
        *,
        result_ref: str | None = None,
        error: str | None = None,
    ) -> ImageJobView:
        """Unconditional write of status and outcome fields."""

        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            row = session.exec(select(ImageJob).where(ImageJob.job_id == job_id)).one_or_none()
            if row is None:
                raise JobNotFoundError(job_id)
            row.status = status.value
            row.updated_at = now
            if result_ref is not None:
                row.result_ref = result_ref
            if error is not None:
                row.error = error
            if status is ImageJobStatus.COMPLETED:
                row.error = None
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def list_by_status(self, status: ImageJobStatus) -> list[ImageJobView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ImageJob)
                .where(ImageJob.status == status.value)
                .order_by(col(ImageJob.created_at).asc(), col(ImageJob.job_id).asc()),
            ).all()
        return [_to_job_view(row) for row in rows]

    def most_recently_completed(self) -> ImageJobView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(ImageJob)
                .where(ImageJob.status == ImageJobStatus.COMPLETED.value)
                .order_by(col(ImageJob.updated_at).desc())
                .limit(1),
            ).one_or_none()
        return _to_job_view(row) if row is not None else None

    def claim(self, job_id: str, *, expected_updated_at: datetime, fresh_after: datetime) -> bool:
        now = to_db_datetime(self._clock())
        jobs = ImageJob.__table__
        others = jobs.alias("other_jobs")
        slot_taken = exists().where(
            others.c.job_id != job_id,
            others.c.status == ImageJobStatus.PROCESSING.value,
            others.c.updated_at >= to_db_datetime(fresh_after),
        )
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(jobs)
                .where(
                    jobs.c.job_id == job_id,
                    jobs.c.status == ImageJobStatus.PENDING.value,
                    jobs.c.updated_at == to_db_datetime(expected_updated_at),
                    ~slot_taken,
                )
                .values(status=ImageJobStatus.PROCESSING.value, updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def reclaim_zombie(self, job_id: str, *, expected_updated_at: datetime, error: str) -> bool:
        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ImageJob)
                .where(
                    col(ImageJob.job_id) == job_id,
                    col(ImageJob.status) == ImageJobStatus.PROCESSING.value,
                    col(ImageJob.updated_at) == to_db_datetime(expected_updated_at),
                )
                .values(
                    status=ImageJobStatus.FAILED.value,
                    error=error,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def complete(self, job_id: str, *, result_ref: str) -> bool:
        return self._finish(
            job_id,
            status=ImageJobStatus.COMPLETED.value,
            result_ref=result_ref,
            error=None,
        )

    def fail(self, job_id: str, *, error: str) -> bool:
        return self._finish(job_id, status=ImageJobStatus.FAILED.value, error=error)

    def _finish(self, job_id: str, **values: str | None) -> bool:
        """Write a terminal state only while the job is still processing."""

        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ImageJob)
                .where(
                    col(ImageJob.job_id) == job_id,
                    col(ImageJob.status) == ImageJobStatus.PROCESSING.value,
                )
                .values(updated_at=now, **values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def touch(self, job_id: str) -> None:
        """Update heartbeat for a processing job."""

        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            session.exec(
                sa_update(ImageJob)
                .where(
                    col(ImageJob.job_id) == job_id,
                    col(ImageJob.status) == ImageJobStatus.PROCESSING.value,
                )
                .values(updated_at=now),
            )
            session.commit()

    def fail_pending(self, error: str) -> int:
        """Bulk-fail every pending job; returns the number affected."""

        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ImageJob)
                .where(col(ImageJob.status) == ImageJobStatus.PENDING.value)
                .values(status=ImageJobStatus.FAILED.value, error=error, updated_at=now),
            )
            session.commit()
            return int(result.rowcount or 0)

    def delete_created_before(self, cutoff: datetime) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(ImageJob).where(col(ImageJob.created_at) < to_db_datetime(cutoff)),
            )
            session.commit()
            return int(result.rowcount or 0)

    def count_pending_before(self, created_at: datetime) -> int:
        with Session(self.engine) as session:
            count = session.exec(
                select(func.count())
                .select_from(ImageJob)
                .where(
                    ImageJob.status == ImageJobStatus.PENDING.value,
                    col(ImageJob.created_at) < to_db_datetime(created_at),
                ),
            ).one()
        return int(count)

    def list_jobs(
        self,
        *,
        status: ImageJobStatus | None = None,
        limit: int = 50,
    ) -> list[ImageJobView]:
        """List recent jobs, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(ImageJob).order_by(col(ImageJob.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(ImageJob.status == status.value)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]


def _to_job_view(row: ImageJob) -> ImageJobView:
    return ImageJobView(
        job_id=row.job_id,
        subject_ref=row.subject_ref,
        subject_name=row.subject_name,
        prompt=row.prompt,
        status=ImageJobStatus(row.status),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        result_ref=row.result_ref,
        error=row.error,
    )
