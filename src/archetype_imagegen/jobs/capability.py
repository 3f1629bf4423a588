"""Image generation capability: upstream backends and the rate-limit retry wrapper."""

from __future__ import annotations

import base64
import hashlib
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

import httpx

from archetype_imagegen.jobs.errors import (
    ExternalServiceError,
    ImageJobError,
    RateLimitedError,
    RateLimitSignal,
)

logger = logging.getLogger(__name__)

DEFAULT_IMAGEN_MODEL = "imagegeneration@006"
DEFAULT_IMAGEN_LOCATION = "us-central1"
DEFAULT_TIMEOUT_SECONDS = 120.0
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class ImageBackend(Protocol):
    """Protocol implemented by image generation backends."""

    def generate(self, prompt: str) -> bytes:
        """Return encoded image bytes, or raise ``RateLimitSignal`` when throttled."""


class RateLimitedImageClient:
    """Retries rate-limited generation calls with exponential backoff.

    Only ``RateLimitSignal`` is retried: attempt ``n`` (0-based) is followed by a sleep of
    ``base_delay_seconds * 2**n``, for at most ``max_retries`` attempts in total. Every
    other backend failure is raised as ``ExternalServiceError`` straight away.
    """

    def __init__(
        self,
        backend: ImageBackend,
        *,
        max_retries: int = 3,
        base_delay_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1.")
        self.backend = backend
        self.max_retries = max_retries
        self.base_delay_seconds = base_delay_seconds
        self._sleep = sleep

    def generate(self, prompt: str, *, on_retry: Callable[[], None] | None = None) -> bytes:
        for attempt in range(self.max_retries):
            try:
                return self.backend.generate(prompt)
            except RateLimitSignal as signal:
                if attempt + 1 >= self.max_retries:
                    raise RateLimitedError(
                        f"Image generation still rate limited after {self.max_retries} "
                        f"attempts: {signal}",
                    ) from signal
                delay = self.base_delay_seconds * 2**attempt
                logger.warning(
                    "Image generation rate limited (attempt %d/%d), retrying in %.1fs",
                    attempt + 1,
                    self.max_retries,
                    delay,
                )
                self._sleep(delay)
                if on_retry is not None:
                    on_retry()
            except ImageJobError:
                raise
            except Exception as error:
                raise ExternalServiceError(f"Image generation failed: {error}") from error
        raise AssertionError("unreachable")  # pragma: no cover


class ImagenHttpBackend:
    """Vertex AI Imagen ``:predict`` REST client."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        project_id: str,
        access_token: str | None = None,
        location: str = DEFAULT_IMAGEN_LOCATION,
        model: str = DEFAULT_IMAGEN_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self.project_id = project_id
        self.location = location
        self.model = model
        headers = {"Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds, connect=10.0))
        self._headers = headers

    @property
    def endpoint(self) -> str:
        return (
            f"https://{self.location}-aiplatform.googleapis.com/v1/projects/{self.project_id}"
            f"/locations/{self.location}/publishers/google/models/{self.model}:predict"
        )

    def generate(self, prompt: str) -> bytes:
        try:
            response = self._client.post(
                self.endpoint,
                json=_predict_payload(prompt),
                headers=self._headers,
            )
        except httpx.TimeoutException as error:
            raise ExternalServiceError(f"Imagen request timed out: {error}") from error
        except httpx.HTTPError as error:
            raise ExternalServiceError(f"Imagen request failed: {error}") from error

        if response.status_code == httpx.codes.TOO_MANY_REQUESTS or (
            not response.is_success and "RESOURCE_EXHAUSTED" in response.text
        ):
            raise RateLimitSignal(f"HTTP {response.status_code}")
        if not response.is_success:
            raise ExternalServiceError(
                f"Imagen returned HTTP {response.status_code}: {response.text[:200]}",
            )
        return _decode_prediction(response.json())

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ImagenHttpBackend:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class EchoImageBackend:
    """Offline backend returning deterministic PNG-prefixed bytes for a prompt."""

    def __init__(self, *, rate_limited_calls: int = 0) -> None:
        self.rate_limited_calls = rate_limited_calls
        self.calls = 0

    def generate(self, prompt: str) -> bytes:
        self.calls += 1
        if self.calls <= self.rate_limited_calls:
            raise RateLimitSignal("echo backend throttled")
        return PNG_SIGNATURE + hashlib.sha256(prompt.encode("utf-8")).digest()


def _predict_payload(prompt: str) -> dict[str, Any]:
    return {
        "instances": [{"prompt": prompt}],
        "parameters": {
            "sampleCount": 1,
            "aspectRatio": "1:1",
            "safetyFilterLevel": "block_few",
            "personGeneration": "allow_adult",
        },
    }


def _decode_prediction(payload: Any) -> bytes:
    predictions = payload.get("predictions") if isinstance(payload, dict) else None
    if predictions:
        encoded = predictions[0].get("bytesBase64Encoded")
        if encoded:
            return base64.b64decode(encoded)
    raise ExternalServiceError("No image data in Imagen response.")
