"""Claim loop deciding which single job may call the image generation API.

Callers share no memory. Each one polls the job store until its job is terminal, its wait
budget runs out, or it wins the processing slot. The rules, checked on every poll:

* a job that is already completed/failed is returned as-is;
* processing jobs whose heartbeat is older than the zombie timeout are failed and ignored;
* any other fresh processing job blocks everyone else;
* only the oldest pending job may be claimed (FIFO by ``created_at``);
* a claim waits until ``min_spacing`` has passed since the last completion.

The claim itself is a conditional write, so losing a race to another caller only costs
one more poll.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from archetype_imagegen.jobs.errors import JobWaitTimeoutError
from archetype_imagegen.jobs.models import (
    ClaimGranted,
    ImageJobStatus,
    ImageJobView,
    TerminalResult,
)
from archetype_imagegen.jobs.repository import JobStore
from archetype_imagegen.storage.common import utc_now

logger = logging.getLogger(__name__)

ZOMBIE_ERROR = "Processing timed out: heartbeat expired, job presumed abandoned."


class JobCoordinator:
    """Polling protocol enforcing exclusivity, FIFO order, zombie recovery and spacing."""

    def __init__(
        self,
        store: JobStore,
        *,
        poll_interval_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.poll_interval_seconds = poll_interval_seconds
        self._clock = clock
        self._sleep = sleep

    def await_turn(
        self,
        job_id: str,
        *,
        max_wait: timedelta,
        zombie_timeout: timedelta,
        min_spacing: timedelta,
    ) -> ClaimGranted | TerminalResult:
        """Block until ``job_id`` is claimed by this caller or has already finished.

        Raises:
            JobNotFoundError: unknown job id.
            JobWaitTimeoutError: ``max_wait`` elapsed first; no job was mutated.
        """

        started = self._clock()
        while True:
            job = self.store.get(job_id)
            if job.status.is_terminal:
                return TerminalResult(job)

            now = self._clock()
            if now - started > max_wait:
                raise JobWaitTimeoutError(job_id, (now - started).total_seconds())

            fresh_after = now - zombie_timeout
            blockers = self._recover_zombies(fresh_after=fresh_after)

            if job.status is ImageJobStatus.PROCESSING:
                logger.debug("Job %s is being processed by another caller", job_id)
                self._pause(job_id, started=started, max_wait=max_wait)
                continue

            if any(other.job_id != job_id for other in blockers):
                logger.debug(
                    "Job %s waiting: slot held by %s",
                    job_id,
                    ", ".join(other.job_id for other in blockers),
                )
                self._pause(job_id, started=started, max_wait=max_wait)
                continue

            pending = self.store.list_by_status(ImageJobStatus.PENDING)
            if not pending or pending[0].job_id != job_id:
                logger.debug("Job %s waiting: not at the head of the queue", job_id)
                self._pause(job_id, started=started, max_wait=max_wait)
                continue

            spacing_left = self._spacing_left(now=now, min_spacing=min_spacing)
            if spacing_left > 0:
                logger.debug("Job %s waiting %.1fs for minimum spacing", job_id, spacing_left)
                self._pause(job_id, started=started, max_wait=max_wait, delay=spacing_left)
                continue

            if self.store.claim(
                job_id,
                expected_updated_at=job.updated_at,
                fresh_after=fresh_after,
            ):
                claimed = self.store.get(job_id)
                logger.info(
                    "Claimed job %s after %.1fs",
                    job_id,
                    (self._clock() - started).total_seconds(),
                )
                return ClaimGranted(claimed)

            logger.debug("Job %s lost the claim race, polling again", job_id)
            self._pause(job_id, started=started, max_wait=max_wait)

    def _recover_zombies(self, *, fresh_after: datetime) -> list[ImageJobView]:
        """Fail stale processing jobs; return the ones still holding the slot."""

        blockers: list[ImageJobView] = []
        for other in self.store.list_by_status(ImageJobStatus.PROCESSING):
            if other.updated_at >= fresh_after:
                blockers.append(other)
                continue
            if self.store.reclaim_zombie(
                other.job_id,
                expected_updated_at=other.updated_at,
                error=ZOMBIE_ERROR,
            ):
                logger.warning(
                    "Recovered zombie job %s (last heartbeat %s)",
                    other.job_id,
                    other.updated_at.isoformat(),
                )
            else:
                # Heartbeat moved or another caller already failed it; re-read next poll.
                blockers.append(other)
        return blockers

    def _spacing_left(self, *, now: datetime, min_spacing: timedelta) -> float:
        last = self.store.most_recently_completed()
        if last is None:
            return 0.0
        since_last = now - last.updated_at
        if since_last >= min_spacing:
            return 0.0
        return (min_spacing - since_last).total_seconds()

    def _pause(
        self,
        job_id: str,
        *,
        started: datetime,
        max_wait: timedelta,
        delay: float | None = None,
    ) -> None:
        elapsed = self._clock() - started
        remaining = (max_wait - elapsed).total_seconds()
        if remaining <= 0:
            raise JobWaitTimeoutError(job_id, elapsed.total_seconds())
        self._sleep(min(delay if delay is not None else self.poll_interval_seconds, remaining))
