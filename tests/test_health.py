import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from steam_social.api.deps import get_db
from steam_social.core.cache import cache
from steam_social.db.base import Base
import steam_social.models  # noqa: F401
from steam_social.main import app


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    cache.clear()

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    cache.clear()


def test_health_up(client):
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "UP"
    assert body["database"] == "UP"
    assert body["cache"] == "UP"
    assert body["application"] == "Steam Social Analytics API"


def test_health_reports_database_down(client):
    class BrokenSession:
        def execute(self, *args, **kwargs):
            raise RuntimeError("connection refused")

    def broken_db():
        yield BrokenSession()

    app.dependency_overrides[get_db] = broken_db
    body = client.get("/api/v1/health").json()
    assert body["database"] == "DOWN"
    assert body["status"] == "PARTIAL"


def test_service_errors_map_to_json(client):
    r = client.get("/api/v1/users/77")
    assert r.status_code == 404
    assert r.json() == {"detail": "User 77 not found"}
