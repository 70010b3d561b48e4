from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from steam_social.api.deps import get_db
from steam_social.core.errors import InvalidOperation
from steam_social.schemas import GameOut, GameWithPlaytime, LibraryEntryOut, UserStatistics, game_with_playtime
from steam_social.services import library as library_service
from steam_social.services import statistics as statistics_service
from steam_social.services import users as user_service

router = APIRouter()


class LibraryAddIn(BaseModel):
    game_id: int | None = None
    steam_app_id: int | None = None
    playtime_total: int | None = Field(default=None, ge=0)
    playtime_two_weeks: int | None = Field(default=None, ge=0)


class PlaytimeIn(BaseModel):
    playtime_total: int | None = Field(default=None, ge=0)
    playtime_two_weeks: int | None = Field(default=None, ge=0)


class SyncItemIn(BaseModel):
    steam_app_id: int = Field(gt=0)
    name: str | None = None
    playtime_total: int | None = Field(default=None, ge=0)
    playtime_two_weeks: int | None = Field(default=None, ge=0)
    last_played: datetime | None = None


class SimilarGameOut(BaseModel):
    game: GameOut
    common_players: int


def _with_playtime(rows) -> list[GameWithPlaytime]:
    return [game_with_playtime(entry, game) for entry, game in rows]


@router.get("/library/{user_id}", response_model=list[GameWithPlaytime])
def get_library(user_id: int, db: Session = Depends(get_db)):
    user_service.get_user(db, user_id)
    return _with_playtime(library_service.get_user_library(db, user_id))


@router.get("/library/{user_id}/played", response_model=list[GameWithPlaytime])
def get_played_games(
    user_id: int,
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
):
    return _with_playtime(library_service.get_library_by_playtime(db, user_id, limit))


@router.get("/library/{user_id}/recent", response_model=list[GameWithPlaytime])
def get_recently_played(
    user_id: int,
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
):
    return _with_playtime(library_service.get_recently_played(db, user_id, limit))


@router.get("/library/{user_id}/last-played", response_model=list[GameWithPlaytime])
def get_last_played(user_id: int, limit: int = Query(5, ge=1, le=50), db: Session = Depends(get_db)):
    return _with_playtime(library_service.get_last_played(db, user_id, limit))


@router.get("/library/{user_id}/min-playtime", response_model=list[GameWithPlaytime])
def get_games_by_min_playtime(
    user_id: int, minutes: int = Query(ge=0), db: Session = Depends(get_db)
):
    return _with_playtime(library_service.get_games_by_min_playtime(db, user_id, minutes))


@router.get("/library/{user_id}/most-played", response_model=GameWithPlaytime | None)
def get_most_played(user_id: int, db: Session = Depends(get_db)):
    row = library_service.get_most_played(db, user_id)
    return game_with_playtime(*row) if row else None


@router.get("/library/{user_id}/purchases", response_model=list[GameWithPlaytime])
def get_recent_purchases(user_id: int, days: int = Query(30, ge=1), db: Session = Depends(get_db)):
    return _with_playtime(library_service.get_recent_purchases(db, user_id, days))


@router.get("/library/{user_id}/statistics", response_model=UserStatistics)
def get_statistics(user_id: int, db: Session = Depends(get_db)):
    return statistics_service.get_user_statistics(db, user_id)


@router.get("/library/{user_id}/summary")
def get_summary(user_id: int, db: Session = Depends(get_db)):
    return statistics_service.get_library_summary(db, user_id)


@router.get("/library/{user_id}/count")
def count_library(user_id: int, db: Session = Depends(get_db)):
    return {
        "total": library_service.count_games(db, user_id),
        "played": library_service.count_played_games(db, user_id),
    }


@router.get("/library/{user_id}/owns/{game_id}")
def owns_game(user_id: int, game_id: int, db: Session = Depends(get_db)):
    return {"owns": library_service.user_owns_game(db, user_id, game_id)}


@router.get("/library/{user_id}/owns-app/{steam_app_id}")
def owns_steam_app(user_id: int, steam_app_id: int, db: Session = Depends(get_db)):
    return {"owns": library_service.user_owns_steam_app(db, user_id, steam_app_id)}


@router.get("/library/{user_id}/games/{game_id}", response_model=LibraryEntryOut)
def get_entry(user_id: int, game_id: int, db: Session = Depends(get_db)):
    return library_service.get_entry(db, user_id, game_id)


@router.post("/library/{user_id}/games", response_model=LibraryEntryOut, status_code=201)
def add_game(user_id: int, payload: LibraryAddIn, db: Session = Depends(get_db)):
    if payload.game_id is not None:
        return library_service.add_game(db, user_id, payload.game_id, payload.playtime_total)
    if payload.steam_app_id is not None:
        return library_service.add_game_by_steam_app_id(
            db, user_id, payload.steam_app_id, payload.playtime_total, payload.playtime_two_weeks
        )
    raise InvalidOperation("Either game_id or steam_app_id is required")


@router.put("/library/{user_id}/games/{game_id}/playtime", response_model=LibraryEntryOut)
def update_playtime(user_id: int, game_id: int, payload: PlaytimeIn, db: Session = Depends(get_db)):
    return library_service.update_playtime(
        db, user_id, game_id, payload.playtime_total, payload.playtime_two_weeks
    )


@router.put("/library/{user_id}/games/{game_id}/last-played", response_model=LibraryEntryOut)
def update_last_played(user_id: int, game_id: int, db: Session = Depends(get_db)):
    return library_service.update_last_played(db, user_id, game_id)


@router.delete("/library/{user_id}/games/{game_id}")
def remove_game(user_id: int, game_id: int, db: Session = Depends(get_db)):
    library_service.remove_game(db, user_id, game_id)
    return {"ok": True}


@router.post("/library/{user_id}/sync", response_model=list[LibraryEntryOut])
def sync_library(user_id: int, payload: list[SyncItemIn], db: Session = Depends(get_db)):
    items = [library_service.SyncItem(**item.model_dump()) for item in payload]
    return library_service.sync_library(db, user_id, items)


@router.get("/games/{game_id}/similar", response_model=list[SimilarGameOut])
def similar_games(game_id: int, limit: int = Query(10, ge=1, le=50), db: Session = Depends(get_db)):
    return [
        SimilarGameOut(game=GameOut.model_validate(g), common_players=n)
        for g, n in library_service.find_similar_games(db, game_id, limit)
    ]


@router.get("/games/{game_id}/top-players", response_model=list[LibraryEntryOut])
def top_players(game_id: int, limit: int = Query(10, ge=1, le=100), db: Session = Depends(get_db)):
    return library_service.get_top_players(db, game_id, limit)
