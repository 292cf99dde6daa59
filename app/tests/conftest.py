import os
_default_test_secret = "test-jwt-secret-for-pytest-only-0000000000000000"
if len(os.environ.get("JWT_SECRET", "")) < 32:
    os.environ["JWT_SECRET"] = _default_test_secret
os.environ.setdefault("ENV", "test")

import secrets
import subprocess
import tempfile
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url

_default_sqlite_path = Path(tempfile.gettempdir()) / f"timeledger_test_{os.getpid()}.db"
TEST_DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{_default_sqlite_path}")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from app import database
from app.models.project import Milestone, Project

# Children before parents so DELETE works without cascades.
_TABLES = ("time_entry_edits", "time_entries", "time_tracking_settings", "milestones", "projects")


def _ensure_database_exists(database_url: str) -> None:
    url = make_url(database_url)

    if url.drivername.startswith("sqlite"):
        if url.database and Path(url.database).exists():
            Path(url.database).unlink()
        return

    if not url.drivername.startswith("postgresql"):
        return

    db_name = url.database
    admin_url = url.set(database="postgres")
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")

    try:
        with admin_engine.connect() as conn:
            exists = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": db_name},
            ).scalar()
            if not exists:
                safe_db_name = db_name.replace('"', '""')
                conn.execute(text(f'CREATE DATABASE "{safe_db_name}"'))
    finally:
        admin_engine.dispose()


def _wipe_tables() -> None:
    with database.engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            # TRUNCATE does not fire the row-level audit triggers.
            quoted = ", ".join(f'"public"."{name}"' for name in _TABLES)
            conn.execute(text(f"TRUNCATE TABLE {quoted} RESTART IDENTITY CASCADE"))
        else:
            for name in _TABLES:
                conn.execute(text(f"DELETE FROM {name}"))


@pytest.fixture(scope="session", autouse=True)
def _prepare_test_database() -> None:
    _ensure_database_exists(TEST_DATABASE_URL)

    env = os.environ.copy()
    env["DATABASE_URL"] = TEST_DATABASE_URL

    subprocess.run(
        ["alembic", "upgrade", "head"],
        check=True,
        cwd=Path(__file__).resolve().parents[2],
        env=env,
    )

    database.configure_database()


@pytest.fixture(scope="function", autouse=True)
def _truncate_tables_between_tests():
    _wipe_tables()
    yield
    _wipe_tables()


@pytest.fixture
def project_factory():
    def _create(user_id: str = "test-user", name: str = "Website redesign", client_name: str = "Acme") -> Project:
        db = database.SessionLocal()
        try:
            row = Project(
                id=str(uuid4()),
                user_id=user_id,
                name=name,
                client_name=client_name,
                public_id=secrets.token_urlsafe(8),
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return row
        finally:
            db.close()

    return _create


@pytest.fixture
def milestone_factory():
    def _create(project: Project, name: str = "Phase 1") -> Milestone:
        db = database.SessionLocal()
        try:
            row = Milestone(id=str(uuid4()), project_id=project.id, user_id=project.user_id, name=name)
            db.add(row)
            db.commit()
            db.refresh(row)
            return row
        finally:
            db.close()

    return _create
