"""Read-only status reporting and retention cleanup."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from archetype_imagegen.jobs.models import ImageJobStatus, JobStatusView
from archetype_imagegen.jobs.repository import JobStore
from archetype_imagegen.storage.common import utc_now

logger = logging.getLogger(__name__)


class JobStatusReporter:
    def __init__(self, store: JobStore) -> None:
        self.store = store

    def get_status(self, job_id: str) -> JobStatusView:
        """Status snapshot; ``queue_position`` is only an estimate and only for pending jobs."""

        job = self.store.get(job_id)
        queue_position = None
        if job.status is ImageJobStatus.PENDING:
            queue_position = 1 + self.store.count_pending_before(job.created_at)
        return JobStatusView(
            status=job.status,
            result_ref=job.result_ref,
            error=job.error,
            queue_position=queue_position,
        )


class JobGarbageCollector:
    """Deletes jobs of any status once they are older than the retention TTL."""

    def __init__(self, store: JobStore, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self._clock = clock

    def purge_older_than(self, ttl: timedelta) -> int:
        cutoff = self._clock() - ttl
        removed = self.store.delete_created_before(cutoff)
        logger.info("Purged %d job(s) created before %s", removed, cutoff.isoformat())
        return removed
