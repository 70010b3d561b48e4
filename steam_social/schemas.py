"""Read-models returned by the service layer and cached between requests."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from steam_social.models.game import Game
from steam_social.models.library_entry import LibraryEntry


class UserOut(BaseModel):
    id: int
    steam_id: int
    username: str
    display_name: str | None
    profile_url: str | None
    avatar_url: str | None
    country_code: str | None
    profile_visibility: int
    is_active: bool
    last_login: datetime | None
    created_at: datetime | None

    class Config:
        from_attributes = True


class GameOut(BaseModel):
    id: int
    steam_app_id: int
    name: str
    description: str | None
    developer: str | None
    publisher: str | None
    release_date: date | None
    price_initial: Decimal | None
    price_current: Decimal | None
    tags: dict[str, Any] | None
    categories: dict[str, Any] | None
    genres: dict[str, Any] | None

    class Config:
        from_attributes = True


class LibraryEntryOut(BaseModel):
    id: int
    user_id: int
    game_id: int
    playtime_total: int
    playtime_two_weeks: int
    purchased_at: datetime | None
    last_played: datetime | None

    class Config:
        from_attributes = True


class GameWithPlaytime(BaseModel):
    game: GameOut
    playtime_minutes: int
    playtime_hours: float
    playtime_two_weeks: int
    last_played: datetime | None


class UserStatistics(BaseModel):
    user_id: int
    total_games: int
    played_games: int
    unplayed_games: int
    total_playtime_minutes: int
    total_playtime_hours: float
    average_playtime_minutes: float
    average_playtime_hours: float
    played_percentage: float
    most_played_game: GameOut | None
    recently_played: list[GameOut]
    genre_distribution: dict[str, int]
    friend_count: int = 0


class GameRecommendation(BaseModel):
    game: GameOut
    friends_who_play: int
    score: float
    reason: str


class FriendActivity(BaseModel):
    friend: UserOut
    recent_games: list[GameOut]


class DashboardData(BaseModel):
    user_statistics: UserStatistics
    top_games: list[GameWithPlaytime]
    recent_games: list[GameWithPlaytime]
    recommendations: list[GameRecommendation]
    friends_activity: list[FriendActivity]


class CommonGame(BaseModel):
    game: GameOut
    user_playtime: int
    friend_playtime: int
    total_playtime: int


class CommonGamesOut(BaseModel):
    common_games: list[CommonGame]
    total_common_games: int


class UserComparison(BaseModel):
    user1_stats: UserStatistics
    user2_stats: UserStatistics
    common_games: CommonGamesOut


class UserStatsSummary(BaseModel):
    user_id: int
    total_games: int
    total_playtime_hours: float
    friend_count: int


class UserInsights(BaseModel):
    total_games: int
    total_playtime_hours: float
    played_percentage: float
    friend_count: int
    most_played_game: GameOut | None
    top_recommendations: list[GameRecommendation]


def game_with_playtime(entry: LibraryEntry, game: Game) -> GameWithPlaytime:
    return GameWithPlaytime(
        game=GameOut.model_validate(game),
        playtime_minutes=entry.playtime_total,
        playtime_hours=entry.playtime_hours,
        playtime_two_weeks=entry.playtime_two_weeks,
        last_played=entry.last_played,
    )
