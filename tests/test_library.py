import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from steam_social.api.deps import get_db
from steam_social.core.cache import cache
from steam_social.core.errors import InvalidOperation
from steam_social.db.base import Base
import steam_social.models  # noqa: F401
from steam_social.main import app
from steam_social.services import library as library_service


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


def _user(client, steam_id: int, username: str) -> int:
    r = client.post("/api/v1/users", json={"steam_id": steam_id, "username": username})
    assert r.status_code == 201
    return r.json()["id"]


def _game(client, steam_app_id: int, name: str, **fields) -> int:
    r = client.post("/api/v1/games", json={"steam_app_id": steam_app_id, "name": name, **fields})
    assert r.status_code == 201
    return r.json()["id"]


def test_add_and_list_library(client):
    uid = _user(client, 1001, "alice")
    g1 = _game(client, 10, "Portal")
    g2 = _game(client, 20, "Half-Life")

    r = client.post(f"/api/v1/library/{uid}/games", json={"game_id": g1, "playtime_total": 30})
    assert r.status_code == 201
    assert r.json()["playtime_total"] == 30
    r = client.post(f"/api/v1/library/{uid}/games", json={"steam_app_id": 20, "playtime_total": 120})
    assert r.status_code == 201
    assert r.json()["game_id"] == g2

    library = client.get(f"/api/v1/library/{uid}").json()
    assert [item["game"]["id"] for item in library] == [g2, g1]
    assert library[0]["playtime_hours"] == 2.0

    assert client.get(f"/api/v1/library/{uid}/count").json() == {"total": 2, "played": 2}
    assert client.get(f"/api/v1/library/{uid}/owns/{g1}").json() == {"owns": True}
    assert client.get(f"/api/v1/library/{uid}/owns-app/999").json() == {"owns": False}
    assert client.get(f"/api/v1/library/{uid}/most-played").json()["game"]["id"] == g2


def test_add_game_twice_updates_entry(client):
    uid = _user(client, 1001, "alice")
    gid = _game(client, 10, "Portal")

    first = client.post(f"/api/v1/library/{uid}/games", json={"game_id": gid, "playtime_total": 5}).json()
    second = client.post(f"/api/v1/library/{uid}/games", json={"game_id": gid, "playtime_total": 50}).json()

    assert first["id"] == second["id"]
    assert second["playtime_total"] == 50
    assert client.get(f"/api/v1/library/{uid}/count").json()["total"] == 1


def test_add_requires_a_game_reference(client):
    uid = _user(client, 1001, "alice")
    r = client.post(f"/api/v1/library/{uid}/games", json={"playtime_total": 5})
    assert r.status_code == 400


def test_add_unknown_user_or_game(client):
    uid = _user(client, 1001, "alice")
    gid = _game(client, 10, "Portal")
    assert client.post("/api/v1/library/999/games", json={"game_id": gid}).status_code == 404
    assert client.post(f"/api/v1/library/{uid}/games", json={"game_id": 999}).status_code == 404
    assert client.post(f"/api/v1/library/{uid}/games", json={"steam_app_id": 999}).status_code == 404


def test_negative_playtime_rejected(client):
    uid = _user(client, 1001, "alice")
    gid = _game(client, 10, "Portal")
    r = client.post(f"/api/v1/library/{uid}/games", json={"game_id": gid, "playtime_total": -1})
    assert r.status_code == 422


def test_negative_playtime_rejected_by_service():
    # Validation runs before any lookup, so no session is needed.
    with pytest.raises(InvalidOperation):
        library_service.add_game(None, 1, 1, playtime_total=-5)


def test_update_playtime_and_remove(client):
    uid = _user(client, 1001, "alice")
    gid = _game(client, 10, "Portal")
    client.post(f"/api/v1/library/{uid}/games", json={"game_id": gid})

    r = client.put(
        f"/api/v1/library/{uid}/games/{gid}/playtime",
        json={"playtime_total": 600, "playtime_two_weeks": 60},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["playtime_total"] == 600
    assert body["playtime_two_weeks"] == 60
    assert body["last_played"] is not None

    recent = client.get(f"/api/v1/library/{uid}/recent").json()
    assert [item["game"]["id"] for item in recent] == [gid]

    assert client.delete(f"/api/v1/library/{uid}/games/{gid}").status_code == 200
    assert client.get(f"/api/v1/library/{uid}/games/{gid}").status_code == 404
    assert client.delete(f"/api/v1/library/{uid}/games/{gid}").status_code == 404


def test_sync_creates_missing_games_and_upserts(client):
    uid = _user(client, 1001, "alice")
    _game(client, 10, "Portal")

    r = client.post(
        f"/api/v1/library/{uid}/sync",
        json=[
            {"steam_app_id": 10, "playtime_total": 100},
            {"steam_app_id": 30, "name": "Team Fortress 2", "playtime_total": 0},
        ],
    )
    assert r.status_code == 200
    assert len(r.json()) == 2

    created = client.get("/api/v1/games/steam/30").json()
    assert created["name"] == "Team Fortress 2"
    assert client.get("/api/v1/games/count").json()["total"] == 2

    # Re-syncing updates in place.
    r = client.post(
        f"/api/v1/library/{uid}/sync",
        json=[{"steam_app_id": 10, "playtime_total": 250, "playtime_two_weeks": 20}],
    )
    assert r.status_code == 200
    assert client.get(f"/api/v1/library/{uid}/count").json() == {"total": 2, "played": 1}
    played = client.get(f"/api/v1/library/{uid}/played").json()
    assert played[0]["playtime_minutes"] == 250


def test_sync_rejects_batch_with_negative_playtime(client):
    uid = _user(client, 1001, "alice")
    r = client.post(
        f"/api/v1/library/{uid}/sync",
        json=[{"steam_app_id": 10, "playtime_total": 5}, {"steam_app_id": 20, "playtime_total": -5}],
    )
    assert r.status_code == 422
    assert client.get(f"/api/v1/library/{uid}/count").json()["total"] == 0


def test_statistics_reflect_library_changes(client):
    uid = _user(client, 1001, "alice")
    gid = _game(client, 10, "Portal", genres={"Puzzle": True})

    stats = client.get(f"/api/v1/library/{uid}/statistics").json()
    assert stats["total_games"] == 0
    assert stats["played_percentage"] == 0.0

    client.post(f"/api/v1/library/{uid}/games", json={"game_id": gid, "playtime_total": 90})
    stats = client.get(f"/api/v1/library/{uid}/statistics").json()
    assert stats["total_games"] == 1
    assert stats["played_percentage"] == 100.0
    assert stats["most_played_game"]["id"] == gid
    assert stats["genre_distribution"] == {"Puzzle": 1}

    summary = client.get(f"/api/v1/library/{uid}/summary").json()
    assert summary["total_playtime_hours"] == 1.5


def test_similar_games_and_top_players(client):
    a = _user(client, 1001, "a")
    b = _user(client, 1002, "b")
    c = _user(client, 1003, "c")
    g1 = _game(client, 10, "Portal")
    g2 = _game(client, 20, "Portal 2")
    g3 = _game(client, 30, "Doom")

    for uid, games in ((a, [g1, g2]), (b, [g1, g2, g3]), (c, [g1, g3])):
        for i, gid in enumerate(games):
            client.post(f"/api/v1/library/{uid}/games", json={"game_id": gid, "playtime_total": 10 * (uid + i)})

    similar = client.get(f"/api/v1/games/{g1}/similar").json()
    assert [(s["game"]["id"], s["common_players"]) for s in similar] == [(g2, 2), (g3, 2)]

    top = client.get(f"/api/v1/games/{g1}/top-players", params={"limit": 2}).json()
    assert [e["user_id"] for e in top] == [c, b]
