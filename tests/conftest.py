from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from pathlib import Path

import pytest
from sqlalchemy import text


def _resolve_test_db_url() -> str:
    explicit = os.environ.get("TEST_DB_URL")
    if explicit:
        return explicit
    db_dir = Path(tempfile.mkdtemp(prefix="upload-service-tests-"))
    return f"sqlite:///{db_dir / 'test.db'}"


test_db_url = _resolve_test_db_url()
if not test_db_url.lower().startswith(("postgresql", "sqlite")):
    raise RuntimeError(
        "TEST_DB_URL must be a PostgreSQL or SQLite connection string."
    )

os.environ["DB_URL"] = test_db_url
os.environ["S3_BUCKET"] = os.environ.get("TEST_S3_BUCKET") or "test-bucket"
os.environ["AUTO_APPLY_MIGRATIONS"] = "false"
os.environ["AUTH_ENABLED"] = "false"
os.environ["API_KEY_ENABLED"] = "false"
os.environ["UPLOAD_RETRY_DELAY_MS"] = "0"

from upload_service.common.config import get_settings  # noqa: E402

get_settings.cache_clear()  # type: ignore[attr-defined]
from upload_service.infra.db.alembic_support import upgrade_to_head  # noqa: E402
from upload_service.infra.db.models import (  # noqa: E402
    FILE_VIEWERS_TABLE,
    FILEABLES_TABLE,
    FILES_TABLE,
)
from upload_service.infra.db.session import get_session_factory, reset_engine  # noqa: E402

# Children first so foreign keys never block the cleanup.
CLEANUP_ORDER = (FILEABLES_TABLE, FILE_VIEWERS_TABLE, FILES_TABLE)


@contextmanager
def _session_scope():
    session_factory = get_session_factory()
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _clear_tables() -> None:
    with _session_scope() as session:
        for table in CLEANUP_ORDER:
            session.execute(text(f"DELETE FROM {table}"))


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    get_settings.cache_clear()  # type: ignore[attr-defined]
    reset_engine()
    upgrade_to_head()
    yield
    reset_engine()


@pytest.fixture(autouse=True)
def cleanup_tables(apply_migrations):
    _clear_tables()
    yield
    _clear_tables()


@pytest.fixture()
def session():
    session_factory = get_session_factory()
    with session_factory() as session:
        yield session
        session.rollback()
