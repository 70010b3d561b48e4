from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from steam_social.core import cache as cache_keys
from steam_social.core.cache import cache
from steam_social.core.logger import get_logger
from steam_social.core.settings import settings
from steam_social.models.game import Game
from steam_social.models.library_entry import LibraryEntry
from steam_social.schemas import GameOut, GameRecommendation
from steam_social.services import friendships as friendship_service
from steam_social.services import games as game_service
from steam_social.services import library as library_service
from steam_social.services import users as user_service

logger = get_logger(__name__)

FRIEND_WEIGHT = 10.0
FREE_GAME_BONUS = 5.0
MASS_POPULARITY_BONUS = 5.0
MAX_SCORE = 100.0


def calculate_score(friends_who_play: int, price_current: Decimal | None, total_owners: int) -> float:
    score = friends_who_play * FRIEND_WEIGHT
    if price_current is None or price_current == 0:
        score += FREE_GAME_BONUS
    if total_owners > settings.MASS_POPULARITY_THRESHOLD:
        score += MASS_POPULARITY_BONUS
    return min(score, MAX_SCORE)


def popular_among_friends(
    db: Session, friend_ids: list[int], user_id: int, limit: int
) -> list[tuple[int, int]]:
    """(game_id, distinct friend owners) for games the user does not own.

    Ordered by friend count, ties broken by the lowest game id.
    """
    owned = select(LibraryEntry.game_id).where(LibraryEntry.user_id == user_id)
    friends = func.count(func.distinct(LibraryEntry.user_id)).label("friends")
    rows = db.execute(
        select(LibraryEntry.game_id, friends)
        .where(LibraryEntry.user_id.in_(friend_ids), LibraryEntry.game_id.not_in(owned))
        .group_by(LibraryEntry.game_id)
        .order_by(friends.desc(), LibraryEntry.game_id)
        .limit(limit)
    ).all()
    return [(game_id, n) for game_id, n in rows]


def _popular_fallback(db: Session, user_id: int) -> list[GameRecommendation]:
    owned = library_service.owned_game_ids(db, user_id)
    game_ids = [gid for gid in game_service.find_popular_game_ids(db) if gid not in owned]
    game_ids = game_ids[: settings.RECOMMENDATION_LIMIT]
    if not game_ids:
        return []

    games = {g.id: g for g in db.execute(select(Game).where(Game.id.in_(game_ids))).scalars()}
    return [
        GameRecommendation(
            game=GameOut.model_validate(games[gid]),
            friends_who_play=0,
            score=settings.POPULAR_FALLBACK_SCORE,
            reason="Popular game",
        )
        for gid in game_ids
    ]


def generate_recommendations(db: Session, user_id: int) -> list[GameRecommendation]:
    key = cache_keys.recommendations_key(user_id)
    cached = cache.get(key)
    if cached is not None:
        return list(cached)

    user_service.get_user(db, user_id)
    friend_ids = friendship_service.find_accepted_friend_ids(db, user_id)

    if not friend_ids:
        logger.debug("User %s has no friends, using popular games", user_id)
        recommendations = _popular_fallback(db, user_id)
    else:
        ranked = popular_among_friends(db, friend_ids, user_id, settings.RECOMMENDATION_LIMIT)
        game_ids = [gid for gid, _ in ranked]
        games = {g.id: g for g in db.execute(select(Game).where(Game.id.in_(game_ids))).scalars()}
        owners = game_service.owner_counts(db, game_ids)
        recommendations = [
            GameRecommendation(
                game=GameOut.model_validate(games[gid]),
                friends_who_play=n,
                score=calculate_score(n, games[gid].price_current, owners.get(gid, 0)),
                reason=f"Played by {n} friend(s)",
            )
            for gid, n in ranked
        ]

    cache.put(key, tuple(recommendations))
    return recommendations
