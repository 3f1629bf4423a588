"""Durable storage for generated images."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Protocol

import httpx

from archetype_imagegen.jobs.errors import ExternalServiceError

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "archetype-images"
GCS_BASE_URL = "https://storage.googleapis.com"


class ArtifactStore(Protocol):
    """Blob store returning a durable public reference for stored bytes."""

    def put(self, data: bytes, path: str, *, metadata: dict[str, str]) -> str: ...


def artifact_path(subject_ref: str | None, now: datetime) -> str:
    """Object path for a generated image: ``archetype-images/<subject>_<epoch-ms>.png``."""

    stamp = int(now.timestamp() * 1000)
    return f"{ARTIFACT_PREFIX}/{subject_ref or 'unassigned'}_{stamp}.png"


class FilesystemArtifactStore:
    """Writes artifacts below a local root served at ``public_base_url``."""

    def __init__(self, root: Path, *, public_base_url: str) -> None:
        self.root = root
        self.public_base_url = public_base_url.rstrip("/")

    def put(self, data: bytes, path: str, *, metadata: dict[str, str]) -> str:
        target = self.root / path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            if metadata:
                sidecar = target.with_name(f"{target.name}.meta.json")
                sidecar.write_text(
                    json.dumps(metadata, ensure_ascii=False, sort_keys=True),
                    encoding="utf-8",
                )
        except OSError as error:
            raise ExternalServiceError(f"Failed to store artifact {path}: {error}") from error
        logger.info("Stored artifact %s (%d bytes)", path, len(data))
        return f"{self.public_base_url}/{path}"


class GcsArtifactStore:
    """Uploads publicly readable objects to a Google Cloud Storage bucket."""

    def __init__(
        self,
        *,
        bucket: str,
        access_token: str | None = None,
        timeout_seconds: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.bucket = bucket
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds, connect=10.0))
        self._headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}

    def public_url(self, path: str) -> str:
        return f"{GCS_BASE_URL}/{self.bucket}/{path}"

    def put(self, data: bytes, path: str, *, metadata: dict[str, str]) -> str:
        headers = {
            **self._headers,
            "Content-Type": "image/png",
            "x-goog-acl": "public-read",
        }
        for key, value in metadata.items():
            headers[f"x-goog-meta-{key.replace('_', '-')}"] = value
        try:
            response = self._client.put(self.public_url(path), content=data, headers=headers)
        except httpx.HTTPError as error:
            raise ExternalServiceError(f"Artifact upload failed for {path}: {error}") from error
        if not response.is_success:
            raise ExternalServiceError(
                f"Artifact upload failed for {path}: HTTP {response.status_code}",
            )
        logger.info("Uploaded artifact gs://%s/%s (%d bytes)", self.bucket, path, len(data))
        return self.public_url(path)

    def close(self) -> None:
        self._client.close()
