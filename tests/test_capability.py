from __future__ import annotations

import base64
import json

import allure
import httpx
import pytest

from archetype_imagegen.jobs.capability import (
    PNG_SIGNATURE,
    EchoImageBackend,
    ImagenHttpBackend,
    RateLimitedImageClient,
)
from archetype_imagegen.jobs.errors import (
    ExternalServiceError,
    RateLimitedError,
    RateLimitSignal,
)

pytestmark = [
    allure.epic("Image Jobs"),
    allure.feature("Image Generation"),
]


class ScriptedBackend:
    """Replays bytes, exceptions or ``"rate"`` (a rate-limit signal) in order."""

    def __init__(self, *script: object) -> None:
        self.script = list(script)
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> bytes:
        self.prompts.append(prompt)
        step = self.script.pop(0) if self.script else b"png"
        if step == "rate":
            raise RateLimitSignal("429 Too Many Requests")
        if isinstance(step, BaseException):
            raise step
        return step


def _client(backend, *, max_retries: int = 3, base_delay: float = 5.0):
    sleeps: list[float] = []
    client = RateLimitedImageClient(
        backend,
        max_retries=max_retries,
        base_delay_seconds=base_delay,
        sleep=sleeps.append,
    )
    return client, sleeps


def test_success_on_first_attempt_does_not_sleep() -> None:
    client, sleeps = _client(ScriptedBackend(b"png"))

    assert client.generate("a fox") == b"png"
    assert sleeps == []


def test_rate_limits_are_retried_with_exponential_backoff() -> None:
    backend = ScriptedBackend("rate", "rate", b"png")
    retries: list[int] = []
    client, sleeps = _client(backend)

    image = client.generate("a fox", on_retry=lambda: retries.append(len(sleeps)))

    assert image == b"png"
    assert sleeps == [5.0, 10.0]
    assert retries == [1, 2]
    assert backend.prompts == ["a fox", "a fox", "a fox"]


def test_exhausted_rate_limit_budget_raises_without_extra_call() -> None:
    backend = ScriptedBackend("rate", "rate", "rate", b"never")
    client, sleeps = _client(backend)

    with pytest.raises(RateLimitedError, match="after 3 attempts"):
        client.generate("a fox")

    assert sleeps == [5.0, 10.0]
    assert len(backend.prompts) == 3


def test_hard_failure_is_not_retried() -> None:
    backend = ScriptedBackend(RuntimeError("content policy violation"), b"png")
    client, sleeps = _client(backend)

    with pytest.raises(ExternalServiceError, match="content policy violation"):
        client.generate("a fox")

    assert sleeps == []
    assert len(backend.prompts) == 1


def test_external_service_error_passes_through_unchanged() -> None:
    original = ExternalServiceError("Imagen returned HTTP 400")
    client, _ = _client(ScriptedBackend(original))

    with pytest.raises(ExternalServiceError) as exc_info:
        client.generate("a fox")

    assert exc_info.value is original


def test_non_positive_retry_budget_is_rejected() -> None:
    with pytest.raises(ValueError, match="max_retries"):
        RateLimitedImageClient(ScriptedBackend(), max_retries=0)


def test_echo_backend_is_deterministic_and_can_throttle() -> None:
    backend = EchoImageBackend(rate_limited_calls=1)

    with pytest.raises(RateLimitSignal):
        backend.generate("a fox")
    first = backend.generate("a fox")

    assert first.startswith(PNG_SIGNATURE)
    assert first == backend.generate("a fox")
    assert first != backend.generate("a wolf")
    assert backend.calls == 4


def _imagen(handler) -> ImagenHttpBackend:
    return ImagenHttpBackend(
        project_id="demo-project",
        access_token="token-123",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_imagen_backend_posts_predict_request_and_decodes_image() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        encoded = base64.b64encode(b"\x89PNG-image").decode("ascii")
        return httpx.Response(200, json={"predictions": [{"bytesBase64Encoded": encoded}]})

    with _imagen(handler) as backend:
        image = backend.generate("a fox in a library")
        endpoint = backend.endpoint

    assert image == b"\x89PNG-image"
    request = seen[0]
    assert endpoint == (
        "https://us-central1-aiplatform.googleapis.com/v1/projects/demo-project"
        "/locations/us-central1/publishers/google/models/imagegeneration@006:predict"
    )
    assert request.method == "POST"
    assert request.url == httpx.URL(endpoint)
    assert request.headers["Authorization"] == "Bearer token-123"
    body = json.loads(request.content)
    assert body["instances"] == [{"prompt": "a fox in a library"}]
    assert body["parameters"]["sampleCount"] == 1
    assert body["parameters"]["aspectRatio"] == "1:1"


@pytest.mark.parametrize(
    ("status_code", "text"),
    [
        (429, "Too Many Requests"),
        (400, '{"error": {"status": "RESOURCE_EXHAUSTED"}}'),
    ],
)
def test_imagen_backend_signals_rate_limits(status_code: int, text: str) -> None:
    backend = _imagen(lambda request: httpx.Response(status_code, text=text))

    with pytest.raises(RateLimitSignal):
        backend.generate("a fox")


def test_imagen_backend_maps_other_failures_to_external_errors() -> None:
    backend = _imagen(lambda request: httpx.Response(500, text="internal"))

    with pytest.raises(ExternalServiceError, match="HTTP 500"):
        backend.generate("a fox")


def test_imagen_backend_rejects_empty_predictions() -> None:
    backend = _imagen(lambda request: httpx.Response(200, json={"predictions": []}))

    with pytest.raises(ExternalServiceError, match="No image data"):
        backend.generate("a fox")


def test_imagen_backend_maps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalServiceError, match="connection refused"):
        _imagen(handler).generate("a fox")


def test_rate_limited_imagen_calls_retry_through_the_client() -> None:
    responses = iter(
        [
            httpx.Response(429, text="slow down"),
            httpx.Response(
                200,
                json={"predictions": [{"bytesBase64Encoded": base64.b64encode(b"ok").decode()}]},
            ),
        ],
    )
    client, sleeps = _client(_imagen(lambda request: next(responses)), base_delay=0.5)

    assert client.generate("a fox") == b"ok"
    assert sleeps == [0.5]
