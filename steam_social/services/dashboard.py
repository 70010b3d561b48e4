from sqlalchemy.orm import Session

from steam_social.core import cache as cache_keys
from steam_social.core.cache import cache
from steam_social.schemas import DashboardData, FriendActivity, GameOut, game_with_playtime
from steam_social.services import friendships as friendship_service
from steam_social.services import library as library_service
from steam_social.services import recommendations as recommendation_service
from steam_social.services import statistics as statistics_service
from steam_social.services import users as user_service

TOP_GAMES = 5
RECENT_GAMES = 5
DASHBOARD_RECOMMENDATIONS = 3
FRIENDS_IN_FEED = 5
FRIEND_RECENT_GAMES = 3


def friends_activity(db: Session, user_id: int) -> list[FriendActivity]:
    """Recent games of up to five friends, lowest friend ids first."""
    feed: list[FriendActivity] = []
    for friend_id in friendship_service.find_accepted_friend_ids(db, user_id)[:FRIENDS_IN_FEED]:
        recent = library_service.get_recently_played(db, friend_id, limit=FRIEND_RECENT_GAMES)
        feed.append(
            FriendActivity(
                friend=user_service.get_profile(db, friend_id),
                recent_games=[GameOut.model_validate(game) for _, game in recent],
            )
        )
    return feed


def build_dashboard(db: Session, user_id: int) -> DashboardData:
    key = cache_keys.dashboard_key(user_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    stats = statistics_service.get_user_statistics(db, user_id)
    top = library_service.get_library_by_playtime(db, user_id, limit=TOP_GAMES)
    recent = library_service.get_recently_played(db, user_id, limit=RECENT_GAMES)
    recommendations = recommendation_service.generate_recommendations(db, user_id)

    dashboard = DashboardData(
        user_statistics=stats,
        top_games=[game_with_playtime(entry, game) for entry, game in top],
        recent_games=[game_with_playtime(entry, game) for entry, game in recent],
        recommendations=recommendations[:DASHBOARD_RECOMMENDATIONS],
        friends_activity=friends_activity(db, user_id),
    )
    cache.put(key, dashboard)
    return dashboard
