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


def _user(client, steam_id: int, username: str) -> int:
    return client.post("/api/v1/users", json={"steam_id": steam_id, "username": username}).json()["id"]


def _game(client, steam_app_id: int, name: str, **fields) -> int:
    return client.post("/api/v1/games", json={"steam_app_id": steam_app_id, "name": name, **fields}).json()["id"]


def _befriend(client, a: int, b: int) -> None:
    fid = client.post("/api/v1/friendships/requests", json={"requester_id": a, "addressee_id": b}).json()["id"]
    client.post(f"/api/v1/friendships/{fid}/accept", json={"acting_user_id": b})


def _play(client, uid: int, gid: int, total: int, two_weeks: int = 0) -> None:
    client.post(f"/api/v1/library/{uid}/games", json={"game_id": gid})
    client.put(
        f"/api/v1/library/{uid}/games/{gid}/playtime",
        json={"playtime_total": total, "playtime_two_weeks": two_weeks},
    )


@pytest.fixture()
def world(client):
    """Three users; alice is friends with bob and carol."""
    alice = _user(client, 1001, "alice")
    bob = _user(client, 1002, "bob")
    carol = _user(client, 1003, "carol")
    games = [_game(client, 100 + i, f"Game {i}", price_current="9.99", genres={"Action": True}) for i in range(8)]

    _befriend(client, alice, bob)
    _befriend(client, carol, alice)

    for i, gid in enumerate(games[:6]):
        _play(client, alice, gid, total=100 * (i + 1), two_weeks=10 * i)
    _play(client, bob, games[0], total=50, two_weeks=5)
    _play(client, bob, games[6], total=20, two_weeks=20)
    _play(client, carol, games[6], total=70)
    _play(client, carol, games[7], total=0)

    return {"alice": alice, "bob": bob, "carol": carol, "games": games}


def test_dashboard_composition(client, world):
    alice, games = world["alice"], world["games"]

    r = client.get(f"/api/v1/analytics/dashboard/{alice}")
    assert r.status_code == 200
    dash = r.json()

    stats = dash["user_statistics"]
    assert stats["total_games"] == 6
    assert stats["friend_count"] == 2
    assert stats["played_percentage"] == 100.0

    assert [g["game"]["id"] for g in dash["top_games"]] == list(reversed(games[1:6]))
    # games[0] has no two-week playtime.
    assert [g["game"]["id"] for g in dash["recent_games"]] == list(reversed(games[1:6]))

    recs = dash["recommendations"]
    assert [r["game"]["id"] for r in recs] == [games[6], games[7]]
    assert recs[0]["friends_who_play"] == 2

    feed = dash["friends_activity"]
    assert [f["friend"]["id"] for f in feed] == [world["bob"], world["carol"]]
    assert [g["id"] for g in feed[0]["recent_games"]] == [games[6], games[0]]
    assert feed[1]["recent_games"] == []


def test_dashboard_is_cached_until_library_changes(client, world):
    alice, bob, games = world["alice"], world["bob"], world["games"]

    first = client.get(f"/api/v1/analytics/dashboard/{alice}").json()
    assert client.get(f"/api/v1/analytics/dashboard/{alice}").json() == first

    # A friend's library change refreshes alice's recommendations.
    _play(client, bob, games[7], total=30)
    recs = client.get(f"/api/v1/analytics/dashboard/{alice}").json()["recommendations"]
    assert [(r["game"]["id"], r["friends_who_play"]) for r in recs] == [(games[6], 2), (games[7], 2)]


def test_dashboard_unknown_user(client):
    assert client.get("/api/v1/analytics/dashboard/404").status_code == 404


def test_recommendation_routes(client, world):
    alice, games = world["alice"], world["games"]

    recs = client.get(f"/api/v1/analytics/recommendations/{alice}").json()
    assert [r["game"]["id"] for r in recs] == [games[6], games[7]]
    assert recs[0]["score"] == 20.0
    assert recs[1]["score"] == 10.0

    top = client.get(f"/api/v1/analytics/recommendations/{alice}/top", params={"limit": 1}).json()
    assert [r["game"]["id"] for r in top] == [games[6]]


def test_common_games_and_compare(client, world):
    alice, bob, games = world["alice"], world["bob"], world["games"]

    common = client.get(f"/api/v1/analytics/common-games/{alice}/{bob}").json()
    assert common["total_common_games"] == 1
    entry = common["common_games"][0]
    assert entry["game"]["id"] == games[0]
    assert entry["user_playtime"] == 100
    assert entry["friend_playtime"] == 50
    assert entry["total_playtime"] == 150

    comparison = client.get(f"/api/v1/analytics/compare/{alice}/{bob}").json()
    assert comparison["user1_stats"]["total_games"] == 6
    assert comparison["user2_stats"]["total_games"] == 2
    assert comparison["common_games"]["total_common_games"] == 1

    assert client.get(f"/api/v1/analytics/common-games/{alice}/999").status_code == 404


def test_common_games_evicted_on_library_change(client, world):
    alice, carol, games = world["alice"], world["carol"], world["games"]

    assert client.get(f"/api/v1/analytics/common-games/{alice}/{carol}").json()["total_common_games"] == 0
    _play(client, alice, games[7], total=5)
    assert client.get(f"/api/v1/analytics/common-games/{alice}/{carol}").json()["total_common_games"] == 1


def test_insights_and_bulk_stats(client, world):
    alice, bob = world["alice"], world["bob"]

    insights = client.get(f"/api/v1/analytics/insights/{alice}").json()
    assert insights["total_games"] == 6
    assert insights["friend_count"] == 2
    assert insights["most_played_game"]["id"] == world["games"][5]
    assert len(insights["top_recommendations"]) == 2
    assert insights["total_playtime_hours"] == 35.0

    bulk = client.post("/api/v1/analytics/bulk-stats", json={"user_ids": [bob, 999, alice]}).json()
    assert [s["user_id"] for s in bulk] == [bob, alice]
    assert bulk[0]["total_games"] == 2
    assert bulk[0]["friend_count"] == 1
