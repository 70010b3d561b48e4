from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from steam_social.core import cache as cache_keys
from steam_social.core.cache import cache
from steam_social.core.errors import InvalidOperation, NotFound
from steam_social.core.logger import get_logger
from steam_social.db.session import transaction
from steam_social.models.friendship import Friendship, FriendshipStatus
from steam_social.models.game import Game
from steam_social.models.library_entry import LibraryEntry
from steam_social.services import games as game_service
from steam_social.services import users as user_service

logger = get_logger(__name__)

LibraryRow = tuple[LibraryEntry, Game]


@dataclass
class SyncItem:
    """One owned game as reported by an external library feed."""

    steam_app_id: int
    name: str | None = None
    playtime_total: int | None = None
    playtime_two_weeks: int | None = None
    last_played: datetime | None = None


def _check_playtime(*values: int | None) -> None:
    for v in values:
        if v is not None and v < 0:
            raise InvalidOperation("Playtime must be non-negative")


def _friend_ids_of(db: Session, user_id: int) -> list[int]:
    rows = db.execute(
        select(Friendship.requester_id, Friendship.addressee_id).where(
            (Friendship.requester_id == user_id) | (Friendship.addressee_id == user_id),
            Friendship.status == FriendshipStatus.ACCEPTED.value,
        )
    ).all()
    return [a if b == user_id else b for a, b in rows]


def invalidate_library_views(db: Session, user_id: int) -> None:
    """Evict everything derived from `user_id`'s library.

    Friends' recommendations count this library too, so their views go as well.
    """
    cache_keys.evict_user_analytics(user_id, *_friend_ids_of(db, user_id))
    cache.evict(cache_keys.POPULAR_GAMES_KEY)
    cache.evict_prefix("common:")


def _rows(db: Session, stmt) -> list[LibraryRow]:
    return [(entry, game) for entry, game in db.execute(stmt).all()]


def _library_select(user_id: int):
    return (
        select(LibraryEntry, Game)
        .join(Game, Game.id == LibraryEntry.game_id)
        .where(LibraryEntry.user_id == user_id)
    )


def get_user_library(db: Session, user_id: int) -> list[LibraryRow]:
    """Whole library, most played first (ties: lowest game id)."""
    return _rows(
        db, _library_select(user_id).order_by(LibraryEntry.playtime_total.desc(), LibraryEntry.game_id)
    )


def get_library_by_playtime(db: Session, user_id: int, limit: int | None = None) -> list[LibraryRow]:
    stmt = (
        _library_select(user_id)
        .where(LibraryEntry.playtime_total > 0)
        .order_by(LibraryEntry.playtime_total.desc(), LibraryEntry.game_id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return _rows(db, stmt)


def get_recently_played(db: Session, user_id: int, limit: int | None = None) -> list[LibraryRow]:
    """Games with playtime in the last two weeks, most of it first."""
    stmt = (
        _library_select(user_id)
        .where(LibraryEntry.playtime_two_weeks > 0)
        .order_by(LibraryEntry.playtime_two_weeks.desc(), LibraryEntry.game_id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return _rows(db, stmt)


def get_last_played(db: Session, user_id: int, limit: int = 5) -> list[LibraryRow]:
    return _rows(
        db,
        _library_select(user_id)
        .where(LibraryEntry.last_played.is_not(None))
        .order_by(LibraryEntry.last_played.desc(), LibraryEntry.game_id)
        .limit(limit),
    )


def get_games_by_min_playtime(db: Session, user_id: int, min_playtime: int) -> list[LibraryRow]:
    return _rows(
        db,
        _library_select(user_id)
        .where(LibraryEntry.playtime_total >= min_playtime)
        .order_by(LibraryEntry.playtime_total.desc(), LibraryEntry.game_id),
    )


def get_most_played(db: Session, user_id: int) -> LibraryRow | None:
    rows = get_library_by_playtime(db, user_id, limit=1)
    return rows[0] if rows else None


def get_recent_purchases(db: Session, user_id: int, days: int) -> list[LibraryRow]:
    since = datetime.now(timezone.utc) - timedelta(days=days)
    return _rows(
        db,
        _library_select(user_id)
        .where(LibraryEntry.purchased_at >= since)
        .order_by(LibraryEntry.purchased_at.desc(), LibraryEntry.game_id),
    )


def find_entry(db: Session, user_id: int, game_id: int) -> LibraryEntry | None:
    return db.execute(
        select(LibraryEntry).where(LibraryEntry.user_id == user_id, LibraryEntry.game_id == game_id)
    ).scalars().one_or_none()


def get_entry(db: Session, user_id: int, game_id: int) -> LibraryEntry:
    entry = find_entry(db, user_id, game_id)
    if not entry:
        raise NotFound("Game not found in user's library")
    return entry


def get_top_players(db: Session, game_id: int, limit: int = 10) -> list[LibraryEntry]:
    return (
        db.execute(
            select(LibraryEntry)
            .where(LibraryEntry.game_id == game_id, LibraryEntry.playtime_total > 0)
            .order_by(LibraryEntry.playtime_total.desc(), LibraryEntry.user_id)
            .limit(limit)
        )
        .scalars()
        .all()
    )


def _upsert_entry(
    db: Session,
    user_id: int,
    game_id: int,
    playtime_total: int | None,
    playtime_two_weeks: int | None = None,
    purchased_at: datetime | None = None,
    last_played: datetime | None = None,
) -> LibraryEntry:
    """Insert or refresh the (user, game) entry inside the caller's transaction.

    `None` keeps the stored value. A concurrent insert of the same pair trips
    the unique constraint inside the savepoint and falls back to an update.
    """
    entry = find_entry(db, user_id, game_id)
    if entry is None:
        try:
            with db.begin_nested():
                entry = LibraryEntry(
                    user_id=user_id,
                    game_id=game_id,
                    playtime_total=playtime_total or 0,
                    playtime_two_weeks=playtime_two_weeks or 0,
                    purchased_at=purchased_at or datetime.now(timezone.utc),
                    last_played=last_played,
                )
                db.add(entry)
            return entry
        except IntegrityError:
            entry = get_entry(db, user_id, game_id)

    if playtime_total is not None:
        entry.playtime_total = playtime_total
    if playtime_two_weeks is not None:
        entry.playtime_two_weeks = playtime_two_weeks
    if last_played is not None:
        entry.last_played = last_played
    return entry


def add_game(db: Session, user_id: int, game_id: int, playtime_total: int | None = None) -> LibraryEntry:
    _check_playtime(playtime_total)
    user_service.get_user(db, user_id)
    game_service.get_game(db, game_id)

    with transaction(db):
        entry = _upsert_entry(db, user_id, game_id, playtime_total)
    invalidate_library_views(db, user_id)
    db.refresh(entry)
    return entry


def add_game_by_steam_app_id(
    db: Session,
    user_id: int,
    steam_app_id: int,
    playtime_total: int | None = None,
    playtime_two_weeks: int | None = None,
) -> LibraryEntry:
    _check_playtime(playtime_total, playtime_two_weeks)
    user_service.get_user(db, user_id)
    game = game_service.get_by_steam_app_id(db, steam_app_id)

    with transaction(db):
        entry = _upsert_entry(db, user_id, game.id, playtime_total, playtime_two_weeks)
    invalidate_library_views(db, user_id)
    db.refresh(entry)
    return entry


def update_playtime(
    db: Session,
    user_id: int,
    game_id: int,
    playtime_total: int | None = None,
    playtime_two_weeks: int | None = None,
) -> LibraryEntry:
    _check_playtime(playtime_total, playtime_two_weeks)
    entry = get_entry(db, user_id, game_id)
    with transaction(db):
        if playtime_total is not None:
            entry.playtime_total = playtime_total
        if playtime_two_weeks is not None:
            entry.playtime_two_weeks = playtime_two_weeks
        entry.last_played = datetime.now(timezone.utc)
    invalidate_library_views(db, user_id)
    db.refresh(entry)
    return entry


def update_last_played(db: Session, user_id: int, game_id: int) -> LibraryEntry:
    entry = get_entry(db, user_id, game_id)
    with transaction(db):
        entry.last_played = datetime.now(timezone.utc)
    invalidate_library_views(db, user_id)
    db.refresh(entry)
    return entry


def remove_game(db: Session, user_id: int, game_id: int) -> None:
    entry = get_entry(db, user_id, game_id)
    with transaction(db):
        db.delete(entry)
    invalidate_library_views(db, user_id)


def sync_library(db: Session, user_id: int, items: Iterable[SyncItem]) -> list[LibraryEntry]:
    """Upsert a batch of owned games from an external feed in one transaction.

    Unknown app ids get a minimal game row (name only) so the entry can be stored.
    """
    items = list(items)
    for item in items:
        _check_playtime(item.playtime_total, item.playtime_two_weeks)
    user_service.get_user(db, user_id)

    entries: list[LibraryEntry] = []
    with transaction(db):
        for item in items:
            game = game_service.find_or_create_game(db, item.steam_app_id, item.name or "Unknown Game")
            entries.append(
                _upsert_entry(
                    db,
                    user_id,
                    game.id,
                    item.playtime_total,
                    item.playtime_two_weeks,
                    last_played=item.last_played,
                )
            )

    invalidate_library_views(db, user_id)
    cache.evict_prefix("game:steam:")
    logger.info("Synced %d library entries for user %s", len(entries), user_id)
    for entry in entries:
        db.refresh(entry)
    return entries


def user_owns_game(db: Session, user_id: int, game_id: int) -> bool:
    return find_entry(db, user_id, game_id) is not None


def user_owns_steam_app(db: Session, user_id: int, steam_app_id: int) -> bool:
    game = db.execute(select(Game).where(Game.steam_app_id == steam_app_id)).scalars().one_or_none()
    return game is not None and user_owns_game(db, user_id, game.id)


def count_games(db: Session, user_id: int) -> int:
    return db.execute(select(func.count(LibraryEntry.id)).where(LibraryEntry.user_id == user_id)).scalar_one()


def count_played_games(db: Session, user_id: int) -> int:
    return db.execute(
        select(func.count(LibraryEntry.id)).where(
            LibraryEntry.user_id == user_id, LibraryEntry.playtime_total > 0
        )
    ).scalar_one()


def owned_game_ids(db: Session, user_id: int) -> set[int]:
    return set(db.execute(select(LibraryEntry.game_id).where(LibraryEntry.user_id == user_id)).scalars())


def find_similar_games(db: Session, game_id: int, limit: int = 10) -> list[tuple[Game, int]]:
    """Games most often owned by the players of `game_id` (players who own A also own B)."""
    players = select(LibraryEntry.user_id).where(LibraryEntry.game_id == game_id)
    common = func.count(func.distinct(LibraryEntry.user_id)).label("common_players")
    rows = db.execute(
        select(Game, common)
        .join(LibraryEntry, LibraryEntry.game_id == Game.id)
        .where(LibraryEntry.user_id.in_(players), Game.id != game_id)
        .group_by(Game.id)
        .order_by(common.desc(), Game.id)
        .limit(limit)
    ).all()
    return [(g, n) for g, n in rows]
