"""Error taxonomy for job creation, coordination and execution."""

from __future__ import annotations


class ImageJobError(Exception):
    """Base class for errors surfaced to job producers and callers."""


class ValidationError(ImageJobError, ValueError):
    """Bad input at job creation."""


class JobNotFoundError(ImageJobError, LookupError):
    """Unknown job id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class RateLimitedError(ImageJobError):
    """The generation capability kept signalling rate limits after all retries."""


class ExternalServiceError(ImageJobError):
    """Non-retryable failure of the generation capability or the artifact store."""


class JobWaitTimeoutError(ImageJobError, TimeoutError):
    """The caller's wait budget expired before it could claim the job.

    Raised only to the caller that gave up; the job itself is left untouched.
    """

    def __init__(self, job_id: str, waited_seconds: float) -> None:
        super().__init__(
            f"Gave up waiting for job {job_id} after {waited_seconds:.1f}s; "
            "it stays queued for a later caller.",
        )
        self.job_id = job_id
        self.waited_seconds = waited_seconds


class RateLimitSignal(Exception):  # noqa: N818
    """Raised by image backends when the upstream API asks the caller to slow down."""
