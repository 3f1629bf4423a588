"""Producer/operator entry points over the job store, coordinator and pipeline."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from archetype_imagegen.config import CoordinatorSettings, Settings
from archetype_imagegen.jobs.artifacts import (
    ArtifactStore,
    FilesystemArtifactStore,
    GcsArtifactStore,
)
from archetype_imagegen.jobs.capability import (
    EchoImageBackend,
    ImageBackend,
    ImagenHttpBackend,
    RateLimitedImageClient,
)
from archetype_imagegen.jobs.coordinator import JobCoordinator
from archetype_imagegen.jobs.errors import ImageJobError, ValidationError
from archetype_imagegen.jobs.models import (
    ClaimGranted,
    ImageJobStatus,
    ImageJobView,
    JobStatusView,
    WriteThroughOutcome,
)
from archetype_imagegen.jobs.pipeline import ExecutionPipeline
from archetype_imagegen.jobs.reporter import JobGarbageCollector, JobStatusReporter
from archetype_imagegen.jobs.repository import JobStore
from archetype_imagegen.jobs.subjects import SubjectStore
from archetype_imagegen.storage.common import utc_now

logger = logging.getLogger(__name__)

CLEARED_ERROR = "Cleared by administrator."


@dataclass(slots=True)
class CreateImageJob:
    """Producer input for a new generation job."""

    prompt: str
    subject_ref: str | None = None
    subject_name: str | None = None


@dataclass(slots=True)
class ProcessResult:
    """What one processing call observed: its own run, or someone else's result."""

    job: ImageJobView
    claimed: bool
    write_through: WriteThroughOutcome | None = None


def compose_prompt(description: str, style_prompt: str | None = None) -> str:
    """Join an archetype image description with the shared style prompt."""

    description = description.strip()
    style = (style_prompt or "").strip()
    return f"{description}. {style}" if style else description


class ImageJobService:
    """Creates, processes, reports on and cleans up image generation jobs."""

    def __init__(
        self,
        *,
        store: JobStore,
        coordinator: JobCoordinator,
        pipeline: ExecutionPipeline,
        coordinator_settings: CoordinatorSettings,
        clock: Callable[[], datetime] = utc_now,
        owned_clients: Sequence[ImagenHttpBackend | GcsArtifactStore] = (),
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.pipeline = pipeline
        self.coordinator_settings = coordinator_settings
        self.reporter = JobStatusReporter(store)
        self.collector = JobGarbageCollector(store, clock=clock)
        self._owned_clients = tuple(owned_clients)

    def close(self) -> None:
        """Close HTTP clients this service built; stores stay with their owner."""

        for client in self._owned_clients:
            client.close()

    def __enter__(self) -> ImageJobService:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def create_job(self, request: CreateImageJob) -> str:
        prompt = request.prompt.strip()
        subject_ref = (request.subject_ref or "").strip() or None
        subject_name = (request.subject_name or "").strip() or None
        if not prompt:
            raise ValidationError("Prompt must not be empty.")
        if subject_ref is None and subject_name is None:
            raise ValidationError("Either subject_ref or subject_name is required.")

        job = self.store.create(subject_ref=subject_ref, subject_name=subject_name, prompt=prompt)
        logger.info("Created job %s for subject %s", job.job_id, subject_ref or subject_name)
        return job.job_id

    def process_job(self, job_id: str, *, max_wait: timedelta | None = None) -> ProcessResult:
        """Wait for this job's turn and run it; safe to call any number of times."""

        settings = self.coordinator_settings
        turn = self.coordinator.await_turn(
            job_id,
            max_wait=max_wait if max_wait is not None else settings.max_wait,
            zombie_timeout=settings.zombie_timeout,
            min_spacing=settings.min_spacing,
        )
        if not isinstance(turn, ClaimGranted):
            return ProcessResult(job=turn.job, claimed=False)
        outcome = self.pipeline.execute(turn.job)
        return ProcessResult(job=outcome.job, claimed=True, write_through=outcome.write_through)

    def trigger_processing(self, job_id: str) -> threading.Thread:
        """Fire-and-forget: process the job in a background thread."""

        thread = threading.Thread(
            target=self._process_in_background,
            args=(job_id,),
            daemon=True,
            name=f"image-job-{job_id[:8]}",
        )
        thread.start()
        return thread

    def get_status(self, job_id: str) -> JobStatusView:
        return self.reporter.get_status(job_id)

    def list_jobs(
        self,
        *,
        status: ImageJobStatus | None = None,
        limit: int = 50,
    ) -> list[ImageJobView]:
        return self.store.list_jobs(status=status, limit=limit)

    def clear_queue(self) -> int:
        """Fail every pending job; used for operational recovery."""

        cleared = self.store.fail_pending(CLEARED_ERROR)
        logger.warning("Cleared %d pending job(s)", cleared)
        return cleared

    def purge_older_than(self, ttl: timedelta | None = None) -> int:
        if ttl is None:
            ttl = self.coordinator_settings.retention
        return self.collector.purge_older_than(ttl)

    def _process_in_background(self, job_id: str) -> None:
        try:
            result = self.process_job(job_id)
        except ImageJobError as error:
            logger.warning("Background processing of job %s ended: %s", job_id, error)
            return
        except Exception:
            logger.exception("Background processing of job %s crashed", job_id)
            return
        logger.info(
            "Background processing of job %s finished: status=%s claimed=%s",
            job_id,
            result.job.status.value,
            result.claimed,
        )


def build_service(
    settings: Settings,
    *,
    store: JobStore,
    subjects: SubjectStore | None = None,
    backend: ImageBackend | None = None,
    artifacts: ArtifactStore | None = None,
) -> ImageJobService:
    """Wire the service from settings; explicit collaborators win over configured ones.

    HTTP clients built here are owned by the returned service and released by ``close()``.
    """

    owned: list[ImagenHttpBackend | GcsArtifactStore] = []
    if backend is None:
        backend = build_backend(settings)
        if isinstance(backend, ImagenHttpBackend):
            owned.append(backend)
    if artifacts is None:
        artifacts = build_artifact_store(settings)
        if isinstance(artifacts, GcsArtifactStore):
            owned.append(artifacts)

    client = RateLimitedImageClient(
        backend,
        max_retries=settings.imagen.max_retries,
        base_delay_seconds=settings.imagen.retry_base_delay_seconds,
    )
    pipeline = ExecutionPipeline(
        store=store,
        client=client,
        artifacts=artifacts,
        subjects=subjects,
    )
    coordinator = JobCoordinator(
        store,
        poll_interval_seconds=settings.coordinator.poll_interval_seconds,
    )
    return ImageJobService(
        store=store,
        coordinator=coordinator,
        pipeline=pipeline,
        coordinator_settings=settings.coordinator,
        owned_clients=owned,
    )


def build_backend(settings: Settings) -> ImageBackend:
    if settings.imagen.backend == "echo":
        return EchoImageBackend()
    return ImagenHttpBackend(
        project_id=settings.imagen.project_id,
        access_token=settings.gcp_access_token,
        location=settings.imagen.location,
        model=settings.imagen.model,
        timeout_seconds=settings.imagen.request_timeout_seconds,
    )


def build_artifact_store(settings: Settings) -> ArtifactStore:
    if settings.artifacts.store == "filesystem":
        return FilesystemArtifactStore(
            settings.artifacts.local_root,
            public_base_url=settings.artifacts.public_base_url,
        )
    return GcsArtifactStore(
        bucket=settings.artifacts.bucket,
        access_token=settings.gcp_access_token,
    )
