from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import allure
import pytest

from archetype_imagegen.config import (
    ArtifactSettings,
    CoordinatorSettings,
    ImagenSettings,
    Settings,
)

pytestmark = [
    allure.epic("Image Jobs"),
    allure.feature("Configuration"),
]

_ENV_VARS = (
    "ARCHETYPE_IMAGEGEN_DB_PATH",
    "ARCHETYPE_IMAGEGEN_GCP_ACCESS_TOKEN",
    "ARCHETYPE_IMAGEGEN_POLL_INTERVAL_SECONDS",
    "ARCHETYPE_IMAGEGEN_ZOMBIE_TIMEOUT_SECONDS",
    "ARCHETYPE_IMAGEGEN_MIN_SPACING_SECONDS",
    "ARCHETYPE_IMAGEGEN_MAX_WAIT_SECONDS",
    "ARCHETYPE_IMAGEGEN_RETENTION_HOURS",
    "ARCHETYPE_IMAGEGEN_BACKEND",
    "ARCHETYPE_IMAGEGEN_GCP_PROJECT",
    "GOOGLE_CLOUD_PROJECT",
    "ARCHETYPE_IMAGEGEN_MAX_RETRIES",
    "ARCHETYPE_IMAGEGEN_RETRY_BASE_DELAY_SECONDS",
    "ARCHETYPE_IMAGEGEN_ARTIFACT_STORE",
    "ARCHETYPE_IMAGEGEN_GCS_BUCKET",
    "GCS_BUCKET_NAME",
    "ARCHETYPE_IMAGEGEN_ARTIFACT_ROOT",
    "ARCHETYPE_IMAGEGEN_PUBLIC_BASE_URL",
)


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults_match_hosted_function_limits(clean_env) -> None:
    settings = Settings.from_env()

    coordinator = settings.coordinator
    assert coordinator.poll_interval_seconds == 5.0
    assert coordinator.zombie_timeout == timedelta(minutes=10)
    assert coordinator.min_spacing == timedelta(seconds=30)
    assert coordinator.max_wait == timedelta(minutes=9)
    assert coordinator.retention == timedelta(hours=24)
    assert settings.imagen.max_retries == 3
    assert settings.imagen.retry_base_delay_seconds == 5.0
    assert settings.imagen.project_id == "realness-score"
    assert settings.artifacts.store == "gcs"
    assert settings.artifacts.bucket == "realness-score.firebasestorage.app"
    assert settings.gcp_access_token is None
    settings.validate()


def test_env_overrides_are_applied(clean_env, tmp_path: Path) -> None:
    clean_env.setenv("ARCHETYPE_IMAGEGEN_DB_PATH", str(tmp_path / "jobs.db"))
    clean_env.setenv("ARCHETYPE_IMAGEGEN_MIN_SPACING_SECONDS", "0")
    clean_env.setenv("ARCHETYPE_IMAGEGEN_MAX_WAIT_SECONDS", "60")
    clean_env.setenv("ARCHETYPE_IMAGEGEN_BACKEND", " Echo ")
    clean_env.setenv("ARCHETYPE_IMAGEGEN_ARTIFACT_STORE", "filesystem")
    clean_env.setenv("ARCHETYPE_IMAGEGEN_ARTIFACT_ROOT", str(tmp_path / "assets"))

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "jobs.db"
    assert settings.coordinator.min_spacing == timedelta(0)
    assert settings.coordinator.max_wait == timedelta(seconds=60)
    assert settings.imagen.backend == "echo"
    assert settings.artifacts.store == "filesystem"
    assert settings.artifacts.local_root == tmp_path / "assets"
    settings.validate()


def test_explicit_db_path_wins_over_env(clean_env, tmp_path: Path) -> None:
    clean_env.setenv("ARCHETYPE_IMAGEGEN_DB_PATH", str(tmp_path / "env.db"))

    settings = Settings.from_env(db_path=tmp_path / "cli.db")

    assert settings.db_path == tmp_path / "cli.db"


def test_platform_env_fallbacks_for_project_and_bucket(clean_env) -> None:
    clean_env.setenv("GOOGLE_CLOUD_PROJECT", "other-project")
    clean_env.setenv("GCS_BUCKET_NAME", "other-bucket")

    settings = Settings.from_env()

    assert settings.imagen.project_id == "other-project"
    assert settings.artifacts.bucket == "other-bucket"


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(coordinator=CoordinatorSettings(poll_interval_seconds=0)), "POLL_INTERVAL"),
        (Settings(coordinator=CoordinatorSettings(zombie_timeout_seconds=0)), "ZOMBIE_TIMEOUT"),
        (Settings(coordinator=CoordinatorSettings(min_spacing_seconds=-1)), "MIN_SPACING"),
        (Settings(coordinator=CoordinatorSettings(max_wait_seconds=-1)), "MAX_WAIT"),
        (Settings(coordinator=CoordinatorSettings(retention_hours=0)), "RETENTION_HOURS"),
        (Settings(imagen=ImagenSettings(backend="dalle")), "Unsupported .*_BACKEND"),
        (Settings(imagen=ImagenSettings(max_retries=0)), "MAX_RETRIES"),
        (Settings(artifacts=ArtifactSettings(store="s3")), "ARTIFACT_STORE"),
    ],
)
def test_validate_rejects_unusable_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_validate_requires_absolute_public_url_for_filesystem_store() -> None:
    settings = Settings(
        artifacts=ArtifactSettings(store="filesystem", public_base_url="ftp://assets"),
    )

    with pytest.raises(ValueError, match="Invalid ARCHETYPE_IMAGEGEN_PUBLIC_BASE_URL"):
        settings.validate()
