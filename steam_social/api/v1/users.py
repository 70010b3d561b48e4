from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from steam_social.api.deps import get_db
from steam_social.schemas import UserOut
from steam_social.services import users as user_service

router = APIRouter()


class UserCreateIn(BaseModel):
    steam_id: int = Field(gt=0)
    username: str
    display_name: str | None = None


class FindOrCreateIn(BaseModel):
    steam_id: int = Field(gt=0)


class ProfileUpdateIn(BaseModel):
    display_name: str | None = None
    profile_url: str | None = None
    avatar_url: str | None = None
    country_code: str | None = Field(default=None, min_length=2, max_length=2)


class VisibilityIn(BaseModel):
    visibility: int = Field(ge=0)


class TopGamerOut(BaseModel):
    user: UserOut
    game_count: int


@router.get("/users", response_model=list[UserOut])
def list_active_users(db: Session = Depends(get_db)):
    return user_service.find_active_users(db)


@router.get("/users/search", response_model=list[UserOut])
def search_users(q: str = Query(min_length=1), db: Session = Depends(get_db)):
    return user_service.search_by_name(db, q)


@router.get("/users/recent", response_model=list[UserOut])
def recently_active_users(hours: int = Query(24, ge=1), db: Session = Depends(get_db)):
    return user_service.find_recently_active(db, hours)


@router.get("/users/top-gamers", response_model=list[TopGamerOut])
def top_gamers(limit: int = Query(10, ge=1, le=100), db: Session = Depends(get_db)):
    return [
        TopGamerOut(user=UserOut.model_validate(u), game_count=n)
        for u, n in user_service.find_users_with_most_games(db, limit)
    ]


@router.get("/users/high-playtime", response_model=list[UserOut])
def high_playtime_users(min_minutes: int = Query(ge=0), db: Session = Depends(get_db)):
    return user_service.find_users_with_high_playtime(db, min_minutes)


@router.get("/users/country/{country_code}", response_model=list[UserOut])
def users_by_country(country_code: str, db: Session = Depends(get_db)):
    return user_service.find_by_country(db, country_code)


@router.get("/users/game/{steam_app_id}", response_model=list[UserOut])
def users_by_game(steam_app_id: int, db: Session = Depends(get_db)):
    return user_service.find_users_by_game(db, steam_app_id)


@router.get("/users/count")
def count_users(db: Session = Depends(get_db)):
    return {"total": user_service.count_users(db), "active": user_service.count_active_users(db)}


@router.get("/users/steam/{steam_id}", response_model=UserOut)
def get_user_by_steam_id(steam_id: int, db: Session = Depends(get_db)):
    return user_service.get_profile_by_steam_id(db, steam_id)


@router.get("/users/steam/{steam_id}/exists")
def steam_id_exists(steam_id: int, db: Session = Depends(get_db)):
    return {"exists": user_service.exists_by_steam_id(db, steam_id)}


@router.get("/users/username/{username}", response_model=UserOut)
def get_user_by_username(username: str, db: Session = Depends(get_db)):
    return user_service.get_by_username(db, username)


@router.get("/users/username/{username}/exists")
def username_exists(username: str, db: Session = Depends(get_db)):
    return {"exists": user_service.exists_by_username(db, username)}


@router.get("/users/{user_id}", response_model=UserOut)
def get_user(user_id: int, db: Session = Depends(get_db)):
    return user_service.get_profile(db, user_id)


@router.post("/users", response_model=UserOut, status_code=201)
def create_user(payload: UserCreateIn, db: Session = Depends(get_db)):
    return user_service.create_user(db, payload.steam_id, payload.username, payload.display_name)


@router.post("/users/find-or-create", response_model=UserOut)
def find_or_create_user(payload: FindOrCreateIn, db: Session = Depends(get_db)):
    return user_service.find_or_create_user(db, payload.steam_id)


@router.put("/users/{steam_id}/profile", response_model=UserOut)
def update_profile(steam_id: int, payload: ProfileUpdateIn, db: Session = Depends(get_db)):
    return user_service.update_profile(
        db,
        steam_id,
        display_name=(payload.display_name or "").strip() or None,
        profile_url=payload.profile_url,
        avatar_url=payload.avatar_url,
        country_code=payload.country_code.upper() if payload.country_code else None,
    )


@router.put("/users/{steam_id}/visibility", response_model=UserOut)
def update_visibility(steam_id: int, payload: VisibilityIn, db: Session = Depends(get_db)):
    return user_service.update_profile_visibility(db, steam_id, payload.visibility)


@router.put("/users/{steam_id}/last-login", response_model=UserOut)
def update_last_login(steam_id: int, db: Session = Depends(get_db)):
    return user_service.update_last_login(db, steam_id)


@router.post("/users/{steam_id}/deactivate", response_model=UserOut)
def deactivate_user(steam_id: int, db: Session = Depends(get_db)):
    return user_service.deactivate_user(db, steam_id)


@router.post("/users/{steam_id}/reactivate", response_model=UserOut)
def reactivate_user(steam_id: int, db: Session = Depends(get_db)):
    return user_service.reactivate_user(db, steam_id)


@router.delete("/users/{user_id}/permanent")
def delete_user_permanently(user_id: int, db: Session = Depends(get_db)):
    user_service.delete_user_permanently(db, user_id)
    return {"ok": True}
