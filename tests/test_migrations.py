from pathlib import Path

import allure
from sqlalchemy import inspect, text

from archetype_imagegen.jobs.repository import SqlJobStore
from archetype_imagegen.jobs.subjects import IMAGE_URL_FIELD, SqlSubjectStore

pytestmark = [
    allure.epic("Image Jobs"),
    allure.feature("Job Store"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    store = SqlJobStore(tmp_path / "migrations.db")
    try:
        store.init_schema()
        with store.engine.connect() as connection:
            version = connection.execute(
                text("SELECT version_num FROM alembic_version LIMIT 1"),
            ).scalar_one()
        assert version == "20261019_0002"

        inspector = inspect(store.engine)
        assert {"image_generation_jobs", "subject_fields"} <= set(inspector.get_table_names())
        index_names = {index["name"] for index in inspector.get_indexes("image_generation_jobs")}
        assert {"idx_image_jobs_status_created", "idx_image_jobs_status_updated"} <= index_names
    finally:
        store.close()


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "migrations.db"
    first = SqlJobStore(db_path)
    first.init_schema()
    job = first.create(subject_ref="rebel", subject_name="Rebel", prompt="A rebel")
    first.close()

    second = SqlJobStore(db_path)
    try:
        second.init_schema()
        assert second.get(job.job_id).prompt == "A rebel"
    finally:
        second.close()


def test_subject_fields_upsert(tmp_path: Path) -> None:
    db_path = tmp_path / "migrations.db"
    store = SqlJobStore(db_path)
    store.init_schema()
    subjects = SqlSubjectStore(db_path)
    try:
        assert subjects.get_field("rebel", IMAGE_URL_FIELD) is None
        subjects.set_field("rebel", IMAGE_URL_FIELD, "https://img/1.png")
        subjects.set_field("rebel", IMAGE_URL_FIELD, "https://img/2.png")
        assert subjects.get_field("rebel", IMAGE_URL_FIELD) == "https://img/2.png"
    finally:
        subjects.close()
        store.close()
