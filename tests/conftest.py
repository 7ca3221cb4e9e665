import os
import sys
import pytest
import redis
from unittest.mock import patch

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.dirname(CURRENT_DIR)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# in-memory database for anything that touches the default engine
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/99")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lessons_service.infrastructure.db import get_db
from lessons_service.infrastructure.models import Base
from lessons_service.interfaces.http.authz import require_admin
from lessons_service.main import app

# one shared connection so the app threads and the test see the same data
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def no_redis():
    """Redis is unavailable in tests; the cache degrades to misses."""
    with patch(
        "lessons_service.infrastructure.cache.get_redis",
        side_effect=redis.ConnectionError("redis disabled in tests"),
    ):
        yield


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def admin_override():
    def mock_require_admin():
        return {"sub": "admin@example.com", "role": "admin"}

    app.dependency_overrides[require_admin] = mock_require_admin
    yield
    app.dependency_overrides.pop(require_admin, None)
