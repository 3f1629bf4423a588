"""Runs a claimed job: generate, store the artifact, finish the job, write through."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from archetype_imagegen.jobs.artifacts import ArtifactStore, artifact_path
from archetype_imagegen.jobs.capability import RateLimitedImageClient
from archetype_imagegen.jobs.models import (
    ExecutionOutcome,
    ImageJobView,
    WriteThroughOutcome,
)
from archetype_imagegen.jobs.repository import JobStore
from archetype_imagegen.jobs.subjects import IMAGE_URL_FIELD, SubjectStore
from archetype_imagegen.storage.common import utc_now

logger = logging.getLogger(__name__)


class ExecutionPipeline:
    """Drives the capability client and artifact store for a job the caller has claimed."""

    def __init__(
        self,
        *,
        store: JobStore,
        client: RateLimitedImageClient,
        artifacts: ArtifactStore,
        subjects: SubjectStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.client = client
        self.artifacts = artifacts
        self.subjects = subjects
        self._clock = clock

    def execute(self, claimed: ImageJobView) -> ExecutionOutcome:
        """Run the job to a terminal state.

        Generation or storage failures mark the job failed and are re-raised to the caller.
        The subject write-through never changes the job's outcome. Terminal writes only land
        while the job is still processing, so a run that was already failed as abandoned
        keeps that failure and skips the write-through.
        """

        try:
            image = self.client.generate(
                claimed.prompt,
                on_retry=lambda: self.store.touch(claimed.job_id),
            )
            generated_at = self._clock()
            result_ref = self.artifacts.put(
                image,
                artifact_path(claimed.subject_ref, generated_at),
                metadata=_artifact_metadata(claimed, generated_at),
            )
        except Exception as error:
            logger.error("Job %s failed: %s", claimed.job_id, error)
            try:
                recorded = self.store.fail(claimed.job_id, error=str(error))
            except Exception as store_error:
                raise store_error from error
            if not recorded:
                logger.warning(
                    "Job %s was no longer processing; failure not recorded",
                    claimed.job_id,
                )
            raise

        if not self.store.complete(claimed.job_id, result_ref=result_ref):
            current = self.store.get(claimed.job_id)
            logger.warning(
                "Job %s left processing before it finished (now %s); result %s discarded",
                claimed.job_id,
                current.status.value,
                result_ref,
            )
            return ExecutionOutcome(
                job=current,
                write_through=WriteThroughOutcome(attempted=False, ok=False),
            )
        completed = self.store.get(claimed.job_id)
        logger.info("Job %s completed: %s", claimed.job_id, result_ref)
        return ExecutionOutcome(job=completed, write_through=self._write_through(completed))

    def _write_through(self, job: ImageJobView) -> WriteThroughOutcome:
        if job.subject_ref is None or self.subjects is None or job.result_ref is None:
            return WriteThroughOutcome(attempted=False, ok=False)
        try:
            self.subjects.set_field(job.subject_ref, IMAGE_URL_FIELD, job.result_ref)
        except Exception as error:  # noqa: BLE001
            logger.warning(
                "Write-through of job %s to subject %s failed: %s",
                job.job_id,
                job.subject_ref,
                error,
            )
            return WriteThroughOutcome(attempted=True, ok=False, error=str(error))
        return WriteThroughOutcome(attempted=True, ok=True)


def _artifact_metadata(job: ImageJobView, generated_at: datetime) -> dict[str, str]:
    metadata = {"job_id": job.job_id, "generated_at": generated_at.isoformat()}
    if job.subject_ref is not None:
        metadata["subject_ref"] = job.subject_ref
    if job.subject_name is not None:
        metadata["subject_name"] = job.subject_name
    return metadata
