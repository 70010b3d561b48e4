from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from steam_social.core import cache as cache_keys
from steam_social.core.cache import cache
from steam_social.core.errors import Conflict, NotFound
from steam_social.core.logger import get_logger
from steam_social.db.session import transaction
from steam_social.models.game import Game
from steam_social.models.library_entry import LibraryEntry
from steam_social.schemas import GameOut

logger = get_logger(__name__)


def _evict_game(game: Game) -> None:
    cache.evict(cache_keys.game_key(game.id), cache_keys.game_steam_key(game.steam_app_id))
    # Statistics, recommendations, dashboards and common games all embed game read-models.
    for prefix in ("stats:", "recommendations:", "dashboard:", "common:"):
        cache.evict_prefix(prefix)


def get_game(db: Session, game_id: int) -> Game:
    game = db.get(Game, game_id)
    if not game:
        raise NotFound(f"Game {game_id} not found")
    return game


def get_by_steam_app_id(db: Session, steam_app_id: int) -> Game:
    game = db.execute(select(Game).where(Game.steam_app_id == steam_app_id)).scalars().one_or_none()
    if not game:
        raise NotFound(f"Game not found with Steam App ID: {steam_app_id}")
    return game


def get_game_info(db: Session, game_id: int) -> GameOut:
    key = cache_keys.game_key(game_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    out = GameOut.model_validate(get_game(db, game_id))
    cache.put(key, out)
    return out


def get_game_info_by_steam_app_id(db: Session, steam_app_id: int) -> GameOut:
    key = cache_keys.game_steam_key(steam_app_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    out = GameOut.model_validate(get_by_steam_app_id(db, steam_app_id))
    cache.put(key, out)
    return out


def exists_by_steam_app_id(db: Session, steam_app_id: int) -> bool:
    return db.execute(select(Game.id).where(Game.steam_app_id == steam_app_id)).first() is not None


def find_or_create_game(
    db: Session, steam_app_id: int, name: str, description: str | None = None
) -> Game:
    """Return the game for `steam_app_id`, inserting a minimal row if missing.

    Runs inside the caller's transaction. The insert happens in a savepoint so a
    concurrent insert of the same app id only rolls back the savepoint and the
    existing row is returned instead.
    """
    game = db.execute(select(Game).where(Game.steam_app_id == steam_app_id)).scalars().one_or_none()
    if game:
        return game

    try:
        with db.begin_nested():
            game = Game(steam_app_id=steam_app_id, name=name or "Unknown Game", description=description)
            db.add(game)
    except IntegrityError:
        logger.debug("Game %s inserted concurrently, reusing", steam_app_id)
        return db.execute(select(Game).where(Game.steam_app_id == steam_app_id)).scalars().one()

    logger.info("Created game %s (%s)", steam_app_id, game.name)
    return game


def create_game(db: Session, steam_app_id: int, name: str, **fields: Any) -> Game:
    if exists_by_steam_app_id(db, steam_app_id):
        raise Conflict(f"Game with Steam App ID already exists: {steam_app_id}")

    game = Game(steam_app_id=steam_app_id, name=name, **fields)
    try:
        with transaction(db):
            db.add(game)
    except IntegrityError:
        raise Conflict(f"Game with Steam App ID already exists: {steam_app_id}")

    db.refresh(game)
    return game


def create_games(db: Session, items: Iterable[dict[str, Any]]) -> list[Game]:
    """Bulk insert; duplicates of existing app ids are returned unchanged."""
    games: list[Game] = []
    with transaction(db):
        for item in items:
            fields = dict(item)
            steam_app_id = fields.pop("steam_app_id")
            name = fields.pop("name")
            existing = db.execute(select(Game).where(Game.steam_app_id == steam_app_id)).scalars().one_or_none()
            if existing:
                games.append(existing)
                continue
            game = find_or_create_game(db, steam_app_id, name, fields.pop("description", None))
            for attr, value in fields.items():
                setattr(game, attr, value)
            games.append(game)
    cache.evict_prefix("game:")
    return games


def update_game_info(
    db: Session,
    steam_app_id: int,
    name: str,
    description: str | None = None,
    developer: str | None = None,
    publisher: str | None = None,
    release_date: date | None = None,
) -> Game:
    game = get_by_steam_app_id(db, steam_app_id)
    with transaction(db):
        game.name = name
        game.description = description
        game.developer = developer
        game.publisher = publisher
        game.release_date = release_date
    _evict_game(game)
    db.refresh(game)
    return game


def update_game_prices(
    db: Session, steam_app_id: int, price_initial: Decimal | None, price_current: Decimal | None
) -> Game:
    game = get_by_steam_app_id(db, steam_app_id)
    with transaction(db):
        game.price_initial = price_initial
        game.price_current = price_current
    _evict_game(game)
    db.refresh(game)
    return game


def update_game_metadata(
    db: Session,
    steam_app_id: int,
    tags: dict[str, Any] | None,
    categories: dict[str, Any] | None,
    genres: dict[str, Any] | None,
) -> Game:
    game = get_by_steam_app_id(db, steam_app_id)
    with transaction(db):
        game.tags = tags
        game.categories = categories
        game.genres = genres
    _evict_game(game)
    db.refresh(game)
    return game


def delete_game(db: Session, game_id: int) -> None:
    game = get_game(db, game_id)
    with transaction(db):
        db.delete(game)
    cache.clear()
    logger.info("Deleted game %s", game_id)


def search_by_name(db: Session, name: str) -> list[Game]:
    needle = f"%{name.strip().lower()}%"
    return db.execute(select(Game).where(func.lower(Game.name).like(needle)).order_by(Game.name)).scalars().all()


def find_by_developer(db: Session, developer: str) -> list[Game]:
    return db.execute(select(Game).where(Game.developer == developer).order_by(Game.name)).scalars().all()


def find_by_publisher(db: Session, publisher: str) -> list[Game]:
    return db.execute(select(Game).where(Game.publisher == publisher).order_by(Game.name)).scalars().all()


def find_released_after(db: Session, after: date) -> list[Game]:
    return (
        db.execute(select(Game).where(Game.release_date > after).order_by(Game.release_date.desc()))
        .scalars()
        .all()
    )


def find_released_between(db: Session, start: date, end: date) -> list[Game]:
    return (
        db.execute(
            select(Game).where(Game.release_date.between(start, end)).order_by(Game.release_date.desc())
        )
        .scalars()
        .all()
    )


def find_recently_released(db: Session, today: date | None = None) -> list[Game]:
    today = today or date.today()
    return find_released_after(db, today - timedelta(days=30))


def find_recently_added(db: Session, limit: int = 20) -> list[Game]:
    return (
        db.execute(select(Game).order_by(Game.created_at.desc(), Game.id.desc()).limit(limit))
        .scalars()
        .all()
    )


def find_free_games(db: Session) -> list[Game]:
    return (
        db.execute(select(Game).where(or_(Game.price_current == 0, Game.price_current.is_(None))).order_by(Game.id))
        .scalars()
        .all()
    )


def find_by_price_range(db: Session, min_price: Decimal, max_price: Decimal) -> list[Game]:
    return (
        db.execute(
            select(Game)
            .where(Game.price_current.between(min_price, max_price))
            .order_by(Game.price_current, Game.id)
        )
        .scalars()
        .all()
    )


def owner_counts(db: Session, game_ids: Iterable[int] | None = None) -> dict[int, int]:
    """Global number of library entries per game."""
    stmt = select(LibraryEntry.game_id, func.count(LibraryEntry.id)).group_by(LibraryEntry.game_id)
    if game_ids is not None:
        stmt = stmt.where(LibraryEntry.game_id.in_(list(game_ids)))
    return {game_id: n for game_id, n in db.execute(stmt).all()}


def find_most_popular(db: Session, limit: int | None = None) -> list[tuple[Game, int]]:
    """Games with at least one owner, most-owned first (ties: lowest id)."""
    owners = func.count(LibraryEntry.id).label("owners")
    stmt = (
        select(Game, owners)
        .join(LibraryEntry, LibraryEntry.game_id == Game.id)
        .group_by(Game.id)
        .order_by(owners.desc(), Game.id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return [(g, n) for g, n in db.execute(stmt).all()]


def find_popular_game_ids(db: Session) -> list[int]:
    cached = cache.get(cache_keys.POPULAR_GAMES_KEY)
    if cached is not None:
        return list(cached)

    ids = [g.id for g, _ in find_most_popular(db)]
    cache.put(cache_keys.POPULAR_GAMES_KEY, tuple(ids))
    return ids


def find_with_high_playtime(db: Session, min_total_playtime: int) -> list[Game]:
    total = func.coalesce(func.sum(LibraryEntry.playtime_total), 0)
    return (
        db.execute(
            select(Game)
            .join(LibraryEntry, LibraryEntry.game_id == Game.id)
            .group_by(Game.id)
            .having(total > min_total_playtime)
            .order_by(total.desc(), Game.id)
        )
        .scalars()
        .all()
    )


def find_common_games(db: Session, user_id_1: int, user_id_2: int) -> list[Game]:
    theirs = select(LibraryEntry.game_id).where(LibraryEntry.user_id == user_id_2)
    return (
        db.execute(
            select(Game)
            .join(LibraryEntry, LibraryEntry.game_id == Game.id)
            .where(LibraryEntry.user_id == user_id_1, Game.id.in_(theirs))
            .order_by(Game.id)
        )
        .scalars()
        .all()
    )


def find_by_steam_app_ids(db: Session, steam_app_ids: list[int]) -> list[Game]:
    if not steam_app_ids:
        return []
    return db.execute(select(Game).where(Game.steam_app_id.in_(steam_app_ids)).order_by(Game.id)).scalars().all()


def find_by_criteria(
    db: Session,
    developer: str | None = None,
    publisher: str | None = None,
    min_release_date: date | None = None,
    max_price: Decimal | None = None,
) -> list[Game]:
    stmt = select(Game)
    if developer is not None:
        stmt = stmt.where(Game.developer == developer)
    if publisher is not None:
        stmt = stmt.where(Game.publisher == publisher)
    if min_release_date is not None:
        stmt = stmt.where(Game.release_date > min_release_date)
    if max_price is not None:
        stmt = stmt.where(Game.price_current <= max_price)
    return db.execute(stmt.order_by(Game.id)).scalars().all()


def list_games(db: Session, offset: int = 0, limit: int = 50) -> list[Game]:
    return db.execute(select(Game).order_by(Game.id).offset(offset).limit(limit)).scalars().all()


def count_games(db: Session) -> int:
    return db.execute(select(func.count(Game.id))).scalar_one()


def count_unique_games(db: Session) -> int:
    return db.execute(select(func.count(func.distinct(Game.steam_app_id)))).scalar_one()
