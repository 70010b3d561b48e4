from datetime import date, timedelta

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


def _game(client, steam_app_id: int, name: str, **fields) -> dict:
    r = client.post("/api/v1/games", json={"steam_app_id": steam_app_id, "name": name, **fields})
    assert r.status_code == 201
    return r.json()


def test_create_and_lookup(client):
    game = _game(
        client,
        620,
        "Portal 2",
        developer="Valve",
        publisher="Valve",
        release_date="2011-04-18",
        price_initial="19.99",
        price_current="9.99",
        genres={"Puzzle": True},
    )

    assert client.get(f"/api/v1/games/{game['id']}").json()["name"] == "Portal 2"
    by_app = client.get("/api/v1/games/steam/620").json()
    assert by_app["id"] == game["id"]
    assert by_app["release_date"] == "2011-04-18"
    assert client.get("/api/v1/games/steam/620/exists").json() == {"exists": True}
    assert client.get("/api/v1/games/steam/621/exists").json() == {"exists": False}
    assert client.get("/api/v1/games/999").status_code == 404
    assert client.get("/api/v1/games/steam/999").status_code == 404


def test_duplicate_app_id_conflicts(client):
    _game(client, 620, "Portal 2")
    r = client.post("/api/v1/games", json={"steam_app_id": 620, "name": "Portal 2 again"})
    assert r.status_code == 409


def test_bulk_create_skips_existing(client):
    existing = _game(client, 10, "Counter-Strike")
    r = client.post(
        "/api/v1/games/bulk",
        json=[
            {"steam_app_id": 10, "name": "Counter-Strike"},
            {"steam_app_id": 20, "name": "Team Fortress Classic", "developer": "Valve"},
        ],
    )
    assert r.status_code == 201
    body = r.json()
    assert body[0]["id"] == existing["id"]
    assert body[1]["developer"] == "Valve"
    assert client.get("/api/v1/games/count").json() == {"total": 2, "unique": 2}


def test_updates_evict_cached_game(client):
    game = _game(client, 620, "Portal 2", price_current="19.99")
    client.get(f"/api/v1/games/{game['id']}")
    client.get("/api/v1/games/steam/620")

    r = client.put("/api/v1/games/620", json={"name": "Portal 2: Remastered", "developer": "Valve"})
    assert r.status_code == 200
    assert client.get(f"/api/v1/games/{game['id']}").json()["name"] == "Portal 2: Remastered"

    r = client.put("/api/v1/games/620/prices", json={"price_initial": "19.99", "price_current": "0"})
    assert r.status_code == 200
    assert [g["id"] for g in client.get("/api/v1/games/free").json()] == [game["id"]]

    r = client.put("/api/v1/games/620/metadata", json={"genres": {"Puzzle": True}, "tags": {"Co-op": True}})
    assert r.status_code == 200
    assert client.get("/api/v1/games/steam/620").json()["genres"] == {"Puzzle": True}

    assert client.put("/api/v1/games/999/prices", json={"price_current": "1"}).status_code == 404


def test_game_updates_refresh_cached_analytics(client):
    a = client.post("/api/v1/users", json={"steam_id": 11, "username": "a"}).json()["id"]
    b = client.post("/api/v1/users", json={"steam_id": 12, "username": "b"}).json()["id"]
    game = _game(client, 100, "Old", price_current="9.99")
    for uid in (a, b):
        client.post(f"/api/v1/library/{uid}/games", json={"game_id": game["id"], "playtime_total": 30})

    def common_name():
        return client.get(f"/api/v1/analytics/common-games/{a}/{b}").json()["common_games"][0]["game"]["name"]

    def most_played():
        return client.get(f"/api/v1/library/{a}/statistics").json()["most_played_game"]

    assert common_name() == "Old"
    assert most_played()["name"] == "Old"

    client.put("/api/v1/games/100", json={"name": "New"})
    assert common_name() == "New"
    assert most_played()["name"] == "New"

    client.put("/api/v1/games/100/prices", json={"price_initial": "9.99", "price_current": "4.99"})
    assert float(most_played()["price_current"]) == 4.99


def test_catalog_queries(client):
    today = date.today()
    a = _game(client, 1, "Half-Life", developer="Valve", publisher="Sierra",
              release_date="1998-11-19", price_current="9.99")
    b = _game(client, 2, "Half-Life 2", developer="Valve", publisher="Valve",
              release_date="2004-11-16", price_current="19.99")
    c = _game(client, 3, "New Release", developer="Indie", publisher="Indie",
              release_date=(today - timedelta(days=5)).isoformat(), price_current="4.99")
    d = _game(client, 4, "Freebie", developer="Indie")

    def ids(path, **params):
        return [g["id"] for g in client.get(f"/api/v1/games{path}", params=params).json()]

    assert ids("/search", name="half") == [a["id"], b["id"]]
    assert ids("/developer/Valve") == [a["id"], b["id"]]
    assert ids("/publisher/Indie") == [c["id"]]
    assert ids("/released-after", after="2000-01-01") == [c["id"], b["id"]]
    assert ids("/released-between", start="1998-01-01", end="2005-01-01") == [b["id"], a["id"]]
    assert ids("/recently-released") == [c["id"]]
    assert ids("/free") == [d["id"]]
    assert ids("/price-range", min_price="5", max_price="20") == [a["id"], b["id"]]
    assert ids("/filter", developer="Valve", max_price="10") == [a["id"]]
    assert ids("", limit=2) == [a["id"], b["id"]]
    assert ids("/recent", limit=1) == [d["id"]]

    r = client.get("/api/v1/games/released-between", params={"start": "2005-01-01", "end": "2004-01-01"})
    assert r.status_code == 400
    r = client.get("/api/v1/games/price-range", params={"min_price": "20", "max_price": "5"})
    assert r.status_code == 400


def test_popularity_and_common_games(client):
    users = [
        client.post("/api/v1/users", json={"steam_id": 100 + i, "username": f"u{i}"}).json()["id"]
        for i in range(3)
    ]
    g1 = _game(client, 1, "Dota 2")["id"]
    g2 = _game(client, 2, "Artifact")["id"]
    g3 = _game(client, 3, "Deadlock")["id"]

    for uid in users:
        client.post(f"/api/v1/library/{uid}/games", json={"game_id": g1, "playtime_total": 1000})
    client.post(f"/api/v1/library/{users[0]}/games", json={"game_id": g2, "playtime_total": 5})
    client.post(f"/api/v1/library/{users[1]}/games", json={"game_id": g3, "playtime_total": 60})
    client.post(f"/api/v1/library/{users[2]}/games", json={"game_id": g3, "playtime_total": 0})

    popular = client.get("/api/v1/games/popular").json()
    assert [(p["game"]["id"], p["owners"]) for p in popular] == [(g1, 3), (g3, 2), (g2, 1)]

    heavy = client.get("/api/v1/games/high-playtime", params={"min_minutes": 100}).json()
    assert [g["id"] for g in heavy] == [g1]

    common = client.get(f"/api/v1/games/common/{users[1]}/{users[2]}").json()
    assert [g["id"] for g in common] == [g1, g3]


def test_delete_game(client):
    game = _game(client, 620, "Portal 2")
    assert client.delete(f"/api/v1/games/{game['id']}").status_code == 200
    assert client.get(f"/api/v1/games/{game['id']}").status_code == 404
    assert client.delete(f"/api/v1/games/{game['id']}").status_code == 404
