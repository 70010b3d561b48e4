"""Cross-user read-models: common games, comparisons, insights and bulk summaries."""

from sqlalchemy.orm import Session

from steam_social.core import cache as cache_keys
from steam_social.core.cache import cache
from steam_social.schemas import (
    CommonGame,
    CommonGamesOut,
    GameOut,
    UserComparison,
    UserInsights,
    UserStatsSummary,
)
from steam_social.services import games as game_service
from steam_social.services import library as library_service
from steam_social.services import recommendations as recommendation_service
from steam_social.services import statistics as statistics_service
from steam_social.services import users as user_service

INSIGHT_RECOMMENDATIONS = 3


def find_common_games(db: Session, user_id: int, friend_id: int) -> CommonGamesOut:
    key = cache_keys.common_games_key(user_id, friend_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    user_service.get_user(db, user_id)
    user_service.get_user(db, friend_id)

    common: list[CommonGame] = []
    for game in game_service.find_common_games(db, user_id, friend_id):
        mine = library_service.find_entry(db, user_id, game.id)
        theirs = library_service.find_entry(db, friend_id, game.id)
        user_playtime = mine.playtime_total if mine else 0
        friend_playtime = theirs.playtime_total if theirs else 0
        common.append(
            CommonGame(
                game=GameOut.model_validate(game),
                user_playtime=user_playtime,
                friend_playtime=friend_playtime,
                total_playtime=user_playtime + friend_playtime,
            )
        )
    common.sort(key=lambda c: (-c.total_playtime, c.game.id))

    out = CommonGamesOut(common_games=common, total_common_games=len(common))
    cache.put(key, out)
    return out


def compare_users(db: Session, user_id_1: int, user_id_2: int) -> UserComparison:
    return UserComparison(
        user1_stats=statistics_service.get_user_statistics(db, user_id_1),
        user2_stats=statistics_service.get_user_statistics(db, user_id_2),
        common_games=find_common_games(db, user_id_1, user_id_2),
    )


def user_insights(db: Session, user_id: int) -> UserInsights:
    stats = statistics_service.get_user_statistics(db, user_id)
    recommendations = recommendation_service.generate_recommendations(db, user_id)
    return UserInsights(
        total_games=stats.total_games,
        total_playtime_hours=stats.total_playtime_hours,
        played_percentage=stats.played_percentage,
        friend_count=stats.friend_count,
        most_played_game=stats.most_played_game,
        top_recommendations=recommendations[:INSIGHT_RECOMMENDATIONS],
    )


def bulk_stats(db: Session, user_ids: list[int]) -> list[UserStatsSummary]:
    """Summaries for the ids that exist; unknown ids are skipped."""
    out: list[UserStatsSummary] = []
    for uid in user_ids:
        if not user_service.user_exists(db, uid):
            continue
        stats = statistics_service.get_user_statistics(db, uid)
        out.append(
            UserStatsSummary(
                user_id=uid,
                total_games=stats.total_games,
                total_playtime_hours=stats.total_playtime_hours,
                friend_count=stats.friend_count,
            )
        )
    return out
