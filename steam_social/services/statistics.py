from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from steam_social.core import cache as cache_keys
from steam_social.core.cache import cache
from steam_social.models.game import Game
from steam_social.models.library_entry import LibraryEntry
from steam_social.schemas import GameOut, UserStatistics
from steam_social.services import friendships as friendship_service
from steam_social.services import library as library_service
from steam_social.services import users as user_service

TOP_GENRES = 10
RECENTLY_PLAYED = 5


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; treat them as UTC so they compare with aware ones.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def genre_distribution(rows: Sequence[tuple[LibraryEntry, Game]], top: int = TOP_GENRES) -> dict[str, int]:
    counts: dict[str, int] = {}
    for _, game in rows:
        for genre in (game.genres or {}):
            counts[genre] = counts.get(genre, 0) + 1
    # sorted() is stable, so equal counts keep first-seen order.
    ranked = sorted(counts.items(), key=lambda kv: -kv[1])[:top]
    return dict(ranked)


def compute_library_statistics(user_id: int, rows: Sequence[tuple[LibraryEntry, Game]]) -> UserStatistics:
    """Aggregate a user's library. Pure: reads the rows, touches nothing else."""
    total_games = len(rows)
    played_games = sum(1 for entry, _ in rows if entry.playtime_total > 0)
    total_minutes = sum(entry.playtime_total for entry, _ in rows)
    average_minutes = total_minutes / total_games if total_games else 0.0

    most_played = None
    played = [(entry, game) for entry, game in rows if entry.playtime_total > 0]
    if played:
        _, game = min(played, key=lambda r: (-r[0].playtime_total, r[1].id))
        most_played = GameOut.model_validate(game)

    recent = sorted(
        ((entry, game) for entry, game in rows if entry.last_played is not None),
        key=lambda r: (-_as_utc(r[0].last_played).timestamp(), r[1].id),
    )[:RECENTLY_PLAYED]

    return UserStatistics(
        user_id=user_id,
        total_games=total_games,
        played_games=played_games,
        unplayed_games=total_games - played_games,
        total_playtime_minutes=total_minutes,
        total_playtime_hours=total_minutes / 60.0,
        average_playtime_minutes=average_minutes,
        average_playtime_hours=average_minutes / 60.0,
        played_percentage=(played_games / total_games) * 100 if total_games else 0.0,
        most_played_game=most_played,
        recently_played=[GameOut.model_validate(game) for _, game in recent],
        genre_distribution=genre_distribution(rows),
    )


def get_user_statistics(db: Session, user_id: int) -> UserStatistics:
    key = cache_keys.stats_key(user_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    user_service.get_user(db, user_id)
    stats = compute_library_statistics(user_id, library_service.get_user_library(db, user_id))
    stats.friend_count = friendship_service.count_accepted(db, user_id)
    cache.put(key, stats)
    return stats


def get_library_summary(db: Session, user_id: int) -> dict[str, float | int]:
    stats = get_user_statistics(db, user_id)
    return stats.model_dump(
        include={
            "total_games",
            "played_games",
            "unplayed_games",
            "total_playtime_minutes",
            "total_playtime_hours",
            "average_playtime_minutes",
            "average_playtime_hours",
            "played_percentage",
        }
    )
