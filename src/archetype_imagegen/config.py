"""Runtime configuration for job coordination, generation and artifact storage."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from urllib.parse import urlparse

SUPPORTED_BACKENDS = ("imagen", "echo")
SUPPORTED_ARTIFACT_STORES = ("gcs", "filesystem")


@dataclass(slots=True)
class CoordinatorSettings:
    """Claim loop timing and retention."""

    poll_interval_seconds: float = 5.0
    zombie_timeout_seconds: int = 600
    min_spacing_seconds: float = 30.0
    max_wait_seconds: int = 540
    retention_hours: int = 24

    @property
    def zombie_timeout(self) -> timedelta:
        return timedelta(seconds=self.zombie_timeout_seconds)

    @property
    def min_spacing(self) -> timedelta:
        return timedelta(seconds=self.min_spacing_seconds)

    @property
    def max_wait(self) -> timedelta:
        return timedelta(seconds=self.max_wait_seconds)

    @property
    def retention(self) -> timedelta:
        return timedelta(hours=self.retention_hours)


@dataclass(slots=True)
class ImagenSettings:
    """Image generation backend settings."""

    backend: str = "imagen"
    project_id: str = "realness-score"
    location: str = "us-central1"
    model: str = "imagegeneration@006"
    max_retries: int = 3
    retry_base_delay_seconds: float = 5.0
    request_timeout_seconds: float = 120.0


@dataclass(slots=True)
class ArtifactSettings:
    """Where generated images are stored."""

    store: str = "gcs"
    bucket: str = "realness-score.firebasestorage.app"
    local_root: Path = Path(".archetype_images")
    public_base_url: str = "http://localhost:8000/archetype-assets"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".archetype_imagegen.db")
    gcp_access_token: str | None = None
    coordinator: CoordinatorSettings = field(default_factory=CoordinatorSettings)
    imagen: ImagenSettings = field(default_factory=ImagenSettings)
    artifacts: ArtifactSettings = field(default_factory=ArtifactSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path
            or Path(os.getenv("ARCHETYPE_IMAGEGEN_DB_PATH", ".archetype_imagegen.db")),
            gcp_access_token=os.getenv("ARCHETYPE_IMAGEGEN_GCP_ACCESS_TOKEN") or None,
            coordinator=CoordinatorSettings(
                poll_interval_seconds=float(
                    os.getenv("ARCHETYPE_IMAGEGEN_POLL_INTERVAL_SECONDS", "5.0"),
                ),
                zombie_timeout_seconds=int(
                    os.getenv("ARCHETYPE_IMAGEGEN_ZOMBIE_TIMEOUT_SECONDS", "600"),
                ),
                min_spacing_seconds=float(
                    os.getenv("ARCHETYPE_IMAGEGEN_MIN_SPACING_SECONDS", "30.0"),
                ),
                max_wait_seconds=int(os.getenv("ARCHETYPE_IMAGEGEN_MAX_WAIT_SECONDS", "540")),
                retention_hours=int(os.getenv("ARCHETYPE_IMAGEGEN_RETENTION_HOURS", "24")),
            ),
            imagen=ImagenSettings(
                backend=os.getenv("ARCHETYPE_IMAGEGEN_BACKEND", "imagen").strip().lower(),
                project_id=os.getenv(
                    "ARCHETYPE_IMAGEGEN_GCP_PROJECT",
                    os.getenv("GOOGLE_CLOUD_PROJECT", "realness-score"),
                ),
                location=os.getenv("ARCHETYPE_IMAGEGEN_IMAGEN_LOCATION", "us-central1"),
                model=os.getenv("ARCHETYPE_IMAGEGEN_IMAGEN_MODEL", "imagegeneration@006"),
                max_retries=int(os.getenv("ARCHETYPE_IMAGEGEN_MAX_RETRIES", "3")),
                retry_base_delay_seconds=float(
                    os.getenv("ARCHETYPE_IMAGEGEN_RETRY_BASE_DELAY_SECONDS", "5.0"),
                ),
                request_timeout_seconds=float(
                    os.getenv("ARCHETYPE_IMAGEGEN_REQUEST_TIMEOUT_SECONDS", "120.0"),
                ),
            ),
            artifacts=ArtifactSettings(
                store=os.getenv("ARCHETYPE_IMAGEGEN_ARTIFACT_STORE", "gcs").strip().lower(),
                bucket=os.getenv(
                    "ARCHETYPE_IMAGEGEN_GCS_BUCKET",
                    os.getenv("GCS_BUCKET_NAME", "realness-score.firebasestorage.app"),
                ),
                local_root=Path(
                    os.getenv("ARCHETYPE_IMAGEGEN_ARTIFACT_ROOT", ".archetype_images"),
                ),
                public_base_url=os.getenv(
                    "ARCHETYPE_IMAGEGEN_PUBLIC_BASE_URL",
                    "http://localhost:8000/archetype-assets",
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the coordinator cannot work with."""

        coordinator = self.coordinator
        if coordinator.poll_interval_seconds <= 0:
            raise ValueError("ARCHETYPE_IMAGEGEN_POLL_INTERVAL_SECONDS must be > 0.")
        if coordinator.zombie_timeout_seconds <= 0:
            raise ValueError("ARCHETYPE_IMAGEGEN_ZOMBIE_TIMEOUT_SECONDS must be > 0.")
        if coordinator.min_spacing_seconds < 0:
            raise ValueError("ARCHETYPE_IMAGEGEN_MIN_SPACING_SECONDS must be >= 0.")
        if coordinator.max_wait_seconds < 0:
            raise ValueError("ARCHETYPE_IMAGEGEN_MAX_WAIT_SECONDS must be >= 0.")
        if coordinator.retention_hours <= 0:
            raise ValueError("ARCHETYPE_IMAGEGEN_RETENTION_HOURS must be > 0.")

        if self.imagen.backend not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unsupported ARCHETYPE_IMAGEGEN_BACKEND: {self.imagen.backend!r}. "
                f"Expected one of {', '.join(SUPPORTED_BACKENDS)}.",
            )
        if self.imagen.max_retries < 1:
            raise ValueError("ARCHETYPE_IMAGEGEN_MAX_RETRIES must be >= 1.")
        if self.imagen.retry_base_delay_seconds < 0:
            raise ValueError("ARCHETYPE_IMAGEGEN_RETRY_BASE_DELAY_SECONDS must be >= 0.")

        if self.artifacts.store not in SUPPORTED_ARTIFACT_STORES:
            raise ValueError(
                f"Unsupported ARCHETYPE_IMAGEGEN_ARTIFACT_STORE: {self.artifacts.store!r}. "
                f"Expected one of {', '.join(SUPPORTED_ARTIFACT_STORES)}.",
            )
        if self.artifacts.store == "filesystem":
            _validate_public_base_url(self.artifacts.public_base_url)


def _validate_public_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid ARCHETYPE_IMAGEGEN_PUBLIC_BASE_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
