"""Denormalized subject fields receiving completed image URLs."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Protocol

from sqlmodel import Session, select

from archetype_imagegen.storage.common import build_sqlite_engine, to_db_datetime, utc_now
from archetype_imagegen.storage.sqlmodel_models import SubjectField

IMAGE_URL_FIELD = "image_url"


class SubjectStore(Protocol):
    def set_field(self, subject_ref: str, field: str, value: str) -> None: ...


class SqlSubjectStore:
    """Upserts subject fields into the shared SQLite database."""

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
        self.engine.dispose()

    def set_field(self, subject_ref: str, field: str, value: str) -> None:
        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            row = session.exec(
                select(SubjectField).where(
                    SubjectField.subject_ref == subject_ref,
                    SubjectField.field_name == field,
                ),
            ).one_or_none()
            if row is None:
                row = SubjectField(
                    subject_ref=subject_ref,
                    field_name=field,
                    value=value,
                    updated_at=now,
                )
            else:
                row.value = value
                row.updated_at = now
            session.add(row)
            session.commit()

    def get_field(self, subject_ref: str, field: str) -> str | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(SubjectField).where(
                    SubjectField.subject_ref == subject_ref,
                    SubjectField.field_name == field,
                ),
            ).one_or_none()
        return row.value if row is not None else None
