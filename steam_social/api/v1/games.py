from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from steam_social.api.deps import get_db
from steam_social.schemas import GameOut
from steam_social.services import games as game_service

router = APIRouter()


class GameCreateIn(BaseModel):
    steam_app_id: int = Field(gt=0)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    developer: str | None = None
    publisher: str | None = None
    release_date: date | None = None
    price_initial: Decimal | None = Field(default=None, ge=0)
    price_current: Decimal | None = Field(default=None, ge=0)
    tags: dict[str, Any] | None = None
    categories: dict[str, Any] | None = None
    genres: dict[str, Any] | None = None


class GameInfoIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    developer: str | None = None
    publisher: str | None = None
    release_date: date | None = None


class GamePricesIn(BaseModel):
    price_initial: Decimal | None = Field(default=None, ge=0)
    price_current: Decimal | None = Field(default=None, ge=0)


class GameMetadataIn(BaseModel):
    tags: dict[str, Any] | None = None
    categories: dict[str, Any] | None = None
    genres: dict[str, Any] | None = None


class PopularGameOut(BaseModel):
    game: GameOut
    owners: int


@router.get("/games", response_model=list[GameOut])
def list_games(
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    return game_service.list_games(db, offset, limit)


@router.get("/games/search", response_model=list[GameOut])
def search_games(name: str = Query(min_length=1), db: Session = Depends(get_db)):
    return game_service.search_by_name(db, name)


@router.get("/games/developer/{developer}", response_model=list[GameOut])
def games_by_developer(developer: str, db: Session = Depends(get_db)):
    return game_service.find_by_developer(db, developer)


@router.get("/games/publisher/{publisher}", response_model=list[GameOut])
def games_by_publisher(publisher: str, db: Session = Depends(get_db)):
    return game_service.find_by_publisher(db, publisher)


@router.get("/games/released-after", response_model=list[GameOut])
def games_released_after(after: date, db: Session = Depends(get_db)):
    return game_service.find_released_after(db, after)


@router.get("/games/released-between", response_model=list[GameOut])
def games_released_between(start: date, end: date, db: Session = Depends(get_db)):
    if start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    return game_service.find_released_between(db, start, end)


@router.get("/games/recently-released", response_model=list[GameOut])
def recently_released_games(db: Session = Depends(get_db)):
    return game_service.find_recently_released(db)


@router.get("/games/recent", response_model=list[GameOut])
def recently_added_games(limit: int = Query(20, ge=1, le=100), db: Session = Depends(get_db)):
    return game_service.find_recently_added(db, limit)


@router.get("/games/popular", response_model=list[PopularGameOut])
def popular_games(limit: int = Query(10, ge=1, le=100), db: Session = Depends(get_db)):
    return [
        PopularGameOut(game=GameOut.model_validate(g), owners=n)
        for g, n in game_service.find_most_popular(db, limit)
    ]


@router.get("/games/free", response_model=list[GameOut])
def free_games(db: Session = Depends(get_db)):
    return game_service.find_free_games(db)


@router.get("/games/price-range", response_model=list[GameOut])
def games_by_price_range(
    min_price: Decimal = Query(ge=0),
    max_price: Decimal = Query(ge=0),
    db: Session = Depends(get_db),
):
    if min_price > max_price:
        raise HTTPException(status_code=400, detail="min_price must not exceed max_price")
    return game_service.find_by_price_range(db, min_price, max_price)


@router.get("/games/high-playtime", response_model=list[GameOut])
def games_with_high_playtime(min_minutes: int = Query(ge=0), db: Session = Depends(get_db)):
    return game_service.find_with_high_playtime(db, min_minutes)


@router.get("/games/common/{user_id_1}/{user_id_2}", response_model=list[GameOut])
def common_games(user_id_1: int, user_id_2: int, db: Session = Depends(get_db)):
    return game_service.find_common_games(db, user_id_1, user_id_2)


@router.get("/games/filter", response_model=list[GameOut])
def filter_games(
    developer: str | None = None,
    publisher: str | None = None,
    min_release_date: date | None = None,
    max_price: Decimal | None = Query(default=None, ge=0),
    db: Session = Depends(get_db),
):
    return game_service.find_by_criteria(db, developer, publisher, min_release_date, max_price)


@router.get("/games/count")
def count_games(db: Session = Depends(get_db)):
    return {"total": game_service.count_games(db), "unique": game_service.count_unique_games(db)}


@router.get("/games/steam/{steam_app_id}", response_model=GameOut)
def get_game_by_steam_app_id(steam_app_id: int, db: Session = Depends(get_db)):
    return game_service.get_game_info_by_steam_app_id(db, steam_app_id)


@router.get("/games/steam/{steam_app_id}/exists")
def game_exists(steam_app_id: int, db: Session = Depends(get_db)):
    return {"exists": game_service.exists_by_steam_app_id(db, steam_app_id)}


@router.get("/games/{game_id}", response_model=GameOut)
def get_game(game_id: int, db: Session = Depends(get_db)):
    return game_service.get_game_info(db, game_id)


@router.post("/games", response_model=GameOut, status_code=201)
def create_game(payload: GameCreateIn, db: Session = Depends(get_db)):
    fields = payload.model_dump(exclude={"steam_app_id", "name"})
    return game_service.create_game(db, payload.steam_app_id, payload.name.strip(), **fields)


@router.post("/games/bulk", response_model=list[GameOut], status_code=201)
def create_games_bulk(payload: list[GameCreateIn], db: Session = Depends(get_db)):
    return game_service.create_games(db, [g.model_dump(exclude_none=True) for g in payload])


@router.put("/games/{steam_app_id}", response_model=GameOut)
def update_game_info(steam_app_id: int, payload: GameInfoIn, db: Session = Depends(get_db)):
    return game_service.update_game_info(
        db,
        steam_app_id,
        payload.name.strip(),
        description=payload.description,
        developer=payload.developer,
        publisher=payload.publisher,
        release_date=payload.release_date,
    )


@router.put("/games/{steam_app_id}/prices", response_model=GameOut)
def update_game_prices(steam_app_id: int, payload: GamePricesIn, db: Session = Depends(get_db)):
    return game_service.update_game_prices(db, steam_app_id, payload.price_initial, payload.price_current)


@router.put("/games/{steam_app_id}/metadata", response_model=GameOut)
def update_game_metadata(steam_app_id: int, payload: GameMetadataIn, db: Session = Depends(get_db)):
    return game_service.update_game_metadata(
        db, steam_app_id, payload.tags, payload.categories, payload.genres
    )


@router.delete("/games/{game_id}")
def delete_game(game_id: int, db: Session = Depends(get_db)):
    game_service.delete_game(db, game_id)
    return {"ok": True}
