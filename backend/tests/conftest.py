import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from builders import batch, build_snapshot, classroom, faculty, subject  # noqa: E402
from timetabler.api.deps import get_db  # noqa: E402
from timetabler.db.base import Base  # noqa: E402
from timetabler.main import app  # noqa: E402
import timetabler.models  # noqa: E402,F401
from timetabler.schemas.settings import GenerationConfig  # noqa: E402


@pytest.fixture()
def grid_config():
    # Five working days of six one-hour slots.
    return GenerationConfig(
        working_hours={"start_time": "09:00", "end_time": "15:00"},
        lunch_break=None,
        max_duration_seconds=10,
    )


@pytest.fixture()
def single_subject_snapshot():
    return build_snapshot(
        subjects=[subject("CS101", 3)],
        faculty=[faculty("F1")],
        classrooms=[classroom("R1")],
        batches=[batch("B1", ["CS101"])],
    )


@pytest.fixture()
def db_session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture()
def client(db_session_factory):
    def override_get_db():
        db = db_session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
