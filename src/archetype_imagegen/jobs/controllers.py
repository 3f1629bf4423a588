"""Controllers for image job CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from archetype_imagegen.config import Settings
from archetype_imagegen.jobs.models import ImageJobStatus
from archetype_imagegen.jobs.repository import SqlJobStore
from archetype_imagegen.jobs.services import (
    CreateImageJob,
    ImageJobService,
    ProcessResult,
    build_service,
    compose_prompt,
)
from archetype_imagegen.jobs.subjects import SqlSubjectStore


@dataclass(slots=True)
class JobCreateCommand:
    """CLI input for job creation."""

    db_path: Path | None
    prompt: str
    style_prompt: str | None
    subject_ref: str | None
    subject_name: str | None
    process: bool


@dataclass(slots=True)
class JobProcessCommand:
    """CLI input for one coordinator run."""

    db_path: Path | None
    job_id: str
    max_wait_seconds: int | None


@dataclass(slots=True)
class JobStatusCommand:
    db_path: Path | None
    job_id: str
    as_json: bool


@dataclass(slots=True)
class JobListCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class JobMaintenanceCommand:
    """CLI input for queue clearing and retention purge."""

    db_path: Path | None
    hours: int | None = None


class ImageJobCliController:
    """Coordinates job creation, processing and inspection CLI operations."""

    def create(self, command: JobCreateCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _service(settings) as service:
            job_id = service.create_job(
                CreateImageJob(
                    prompt=compose_prompt(command.prompt, command.style_prompt),
                    subject_ref=command.subject_ref,
                    subject_name=command.subject_name,
                ),
            )
            lines = [f"Job created: job_id={job_id}"]
            if command.process:
                lines.extend(_render_process_result(service.process_job(job_id)))
            else:
                status = service.get_status(job_id)
                lines.append(f"Queue position: {status.queue_position}")
        return lines

    def process(self, command: JobProcessCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        max_wait = (
            timedelta(seconds=command.max_wait_seconds)
            if command.max_wait_seconds is not None
            else None
        )
        with _service(settings) as service:
            result = service.process_job(command.job_id, max_wait=max_wait)
        return _render_process_result(result)

    def status(self, command: JobStatusCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _service(settings) as service:
            view = service.get_status(command.job_id)
        if command.as_json:
            return [json.dumps(view.to_dict(), ensure_ascii=False, sort_keys=True)]
        return [
            f"Job: {command.job_id}",
            f"Status: {view.status.value}",
            f"Queue position: {view.queue_position if view.queue_position is not None else '-'}",
            f"Result: {view.result_ref or '-'}",
            f"Error: {view.error or '-'}",
        ]

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        status_filter = _parse_status(command.status)
        with _service(settings) as service:
            jobs = service.list_jobs(status=status_filter, limit=command.limit)

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} status={job.status.value} "
                f"subject={job.subject_ref or job.subject_name or '-'} "
                f"created_at={job.created_at.isoformat()} "
                f"updated_at={job.updated_at.isoformat()}",
            )
        return lines

    def clear_queue(self, command: JobMaintenanceCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _service(settings) as service:
            cleared = service.clear_queue()
        return [f"Cleared pending jobs: {cleared}"]

    def purge(self, command: JobMaintenanceCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        ttl = timedelta(hours=command.hours) if command.hours is not None else None
        with _service(settings) as service:
            removed = service.purge_older_than(ttl)
        return [f"Purged jobs: {removed}"]


def _render_process_result(result: ProcessResult) -> list[str]:
    job = result.job
    lines = [
        f"Job {job.job_id}: status={job.status.value} "
        f"claimed={'yes' if result.claimed else 'no'}",
    ]
    if job.result_ref:
        lines.append(f"Result: {job.result_ref}")
    if job.error:
        lines.append(f"Error: {job.error}")
    write_through = result.write_through
    if write_through is not None and write_through.attempted:
        lines.append(
            "Subject write-through: "
            + ("ok" if write_through.ok else f"failed ({write_through.error})"),
        )
    return lines


def _load_settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _parse_status(value: str | None) -> ImageJobStatus | None:
    if value is None:
        return None
    return ImageJobStatus(value.strip().lower())


@contextmanager
def _service(settings: Settings) -> Iterator[ImageJobService]:
    store = SqlJobStore(settings.db_path)
    store.init_schema()
    subjects = SqlSubjectStore(settings.db_path)
    try:
        with build_service(settings, store=store, subjects=subjects) as service:
            yield service
    finally:
        subjects.close()
        store.close()
