from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from steam_social.core import cache as cache_keys
from steam_social.core.cache import cache
from steam_social.core.errors import Conflict, InvalidOperation, NotFound
from steam_social.core.logger import get_logger
from steam_social.db.session import transaction
from steam_social.models.friendship import Friendship, FriendshipStatus
from steam_social.models.game import Game
from steam_social.models.library_entry import LibraryEntry
from steam_social.models.user import User
from steam_social.schemas import UserOut

logger = get_logger(__name__)


def _evict_profile(db: Session, user: User) -> None:
    """Drop the cached profile and the friends' dashboards that embed it."""
    friend_ids = db.execute(
        select(Friendship.requester_id, Friendship.addressee_id).where(
            or_(Friendship.requester_id == user.id, Friendship.addressee_id == user.id),
            Friendship.status == FriendshipStatus.ACCEPTED.value,
        )
    ).all()
    cache.evict(
        cache_keys.user_key(user.id),
        cache_keys.user_steam_key(user.steam_id),
        *(cache_keys.dashboard_key(b if a == user.id else a) for a, b in friend_ids),
    )


def is_valid_steam_id(steam_id: int | None) -> bool:
    return steam_id is not None and steam_id > 0


def is_valid_username(username: str | None) -> bool:
    return bool(username and username.strip()) and len(username) <= 100


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFound(f"User {user_id} not found")
    return user


def get_by_steam_id(db: Session, steam_id: int) -> User:
    user = db.execute(select(User).where(User.steam_id == steam_id)).scalars().one_or_none()
    if not user:
        raise NotFound(f"User with Steam ID {steam_id} not found")
    return user


def get_by_username(db: Session, username: str) -> User:
    user = db.execute(select(User).where(User.username == username)).scalars().one_or_none()
    if not user:
        raise NotFound(f"User {username!r} not found")
    return user


def get_profile(db: Session, user_id: int) -> UserOut:
    key = cache_keys.user_key(user_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    out = UserOut.model_validate(get_user(db, user_id))
    cache.put(key, out)
    return out


def get_profile_by_steam_id(db: Session, steam_id: int) -> UserOut:
    key = cache_keys.user_steam_key(steam_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    out = UserOut.model_validate(get_by_steam_id(db, steam_id))
    cache.put(key, out)
    return out


def user_exists(db: Session, user_id: int) -> bool:
    return db.get(User, user_id) is not None


def exists_by_steam_id(db: Session, steam_id: int) -> bool:
    return db.execute(select(User.id).where(User.steam_id == steam_id)).first() is not None


def exists_by_username(db: Session, username: str) -> bool:
    return db.execute(select(User.id).where(User.username == username)).first() is not None


def create_user(
    db: Session, steam_id: int, username: str, display_name: str | None = None
) -> User:
    username = (username or "").strip()
    if not is_valid_steam_id(steam_id):
        raise InvalidOperation("Invalid Steam ID")
    if not is_valid_username(username):
        raise InvalidOperation("Invalid username")
    if exists_by_steam_id(db, steam_id):
        raise Conflict(f"User with Steam ID already exists: {steam_id}")
    if exists_by_username(db, username):
        raise Conflict(f"Username already exists: {username}")

    user = User(steam_id=steam_id, username=username, display_name=display_name)
    try:
        with transaction(db):
            db.add(user)
    except IntegrityError:
        raise Conflict("steam_id/username already in use")

    db.refresh(user)
    logger.info("Created user %s (steam_id=%s)", user.id, steam_id)
    return user


def find_or_create_user(db: Session, steam_id: int) -> User:
    existing = db.execute(select(User).where(User.steam_id == steam_id)).scalars().one_or_none()
    if existing:
        return existing

    username = f"user_{steam_id}"
    if exists_by_username(db, username):
        raise Conflict(f"Username already exists: {username}")

    try:
        with transaction(db):
            db.add(User(steam_id=steam_id, username=username))
    except IntegrityError:
        # Only a concurrent insert of the same steam id counts as found.
        if not exists_by_steam_id(db, steam_id):
            raise Conflict(f"Username already exists: {username}")
    return get_by_steam_id(db, steam_id)


def update_profile(
    db: Session,
    steam_id: int,
    display_name: str | None = None,
    profile_url: str | None = None,
    avatar_url: str | None = None,
    country_code: str | None = None,
) -> User:
    user = get_by_steam_id(db, steam_id)
    with transaction(db):
        user.display_name = display_name
        user.profile_url = profile_url
        user.avatar_url = avatar_url
        user.country_code = country_code
    _evict_profile(db, user)
    db.refresh(user)
    return user


def update_profile_visibility(db: Session, steam_id: int, visibility: int) -> User:
    user = get_by_steam_id(db, steam_id)
    with transaction(db):
        user.profile_visibility = visibility
    _evict_profile(db, user)
    db.refresh(user)
    return user


def update_last_login(db: Session, steam_id: int) -> User:
    user = get_by_steam_id(db, steam_id)
    with transaction(db):
        user.last_login = datetime.now(timezone.utc)
    _evict_profile(db, user)
    db.refresh(user)
    return user


def deactivate_user(db: Session, steam_id: int) -> User:
    user = get_by_steam_id(db, steam_id)
    with transaction(db):
        user.is_active = False
    _evict_profile(db, user)
    logger.info("Deactivated user %s", user.id)
    db.refresh(user)
    return user


def reactivate_user(db: Session, steam_id: int) -> User:
    user = get_by_steam_id(db, steam_id)
    with transaction(db):
        user.is_active = True
        user.last_login = datetime.now(timezone.utc)
    _evict_profile(db, user)
    logger.info("Reactivated user %s", user.id)
    db.refresh(user)
    return user


def delete_user_permanently(db: Session, user_id: int) -> None:
    user = get_user(db, user_id)
    with transaction(db):
        db.delete(user)
    # Library rows and friendship edges cascade, so every derived view may be stale.
    cache.clear()
    logger.info("Permanently deleted user %s", user_id)


def find_active_users(db: Session) -> list[User]:
    return db.execute(select(User).where(User.is_active.is_(True)).order_by(User.id)).scalars().all()


def find_by_country(db: Session, country_code: str) -> list[User]:
    return (
        db.execute(select(User).where(User.country_code == country_code.upper()).order_by(User.id))
        .scalars()
        .all()
    )


def find_recently_active(db: Session, hours: int) -> list[User]:
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    return (
        db.execute(
            select(User)
            .where(User.is_active.is_(True), User.last_login >= since)
            .order_by(User.last_login.desc())
        )
        .scalars()
        .all()
    )


def search_by_name(db: Session, term: str) -> list[User]:
    needle = f"%{term.strip().lower()}%"
    return (
        db.execute(
            select(User)
            .where(
                User.is_active.is_(True),
                or_(func.lower(User.display_name).like(needle), func.lower(User.username).like(needle)),
            )
            .order_by(User.id)
        )
        .scalars()
        .all()
    )


def find_users_with_most_games(db: Session, limit: int = 10) -> list[tuple[User, int]]:
    game_count = func.count(LibraryEntry.id).label("game_count")
    rows = db.execute(
        select(User, game_count)
        .join(LibraryEntry, LibraryEntry.user_id == User.id)
        .where(User.is_active.is_(True))
        .group_by(User.id)
        .order_by(game_count.desc(), User.id)
        .limit(limit)
    ).all()
    return [(u, n) for u, n in rows]


def find_users_by_game(db: Session, steam_app_id: int) -> list[User]:
    return (
        db.execute(
            select(User)
            .join(LibraryEntry, LibraryEntry.user_id == User.id)
            .join(Game, Game.id == LibraryEntry.game_id)
            .where(Game.steam_app_id == steam_app_id)
            .order_by(User.id)
        )
        .scalars()
        .all()
    )


def find_users_with_high_playtime(db: Session, min_playtime_minutes: int) -> list[User]:
    total = func.sum(LibraryEntry.playtime_total)
    return (
        db.execute(
            select(User)
            .join(LibraryEntry, LibraryEntry.user_id == User.id)
            .group_by(User.id)
            .having(total > min_playtime_minutes)
            .order_by(total.desc(), User.id)
        )
        .scalars()
        .all()
    )


def count_users(db: Session) -> int:
    return db.execute(select(func.count(User.id))).scalar_one()


def count_active_users(db: Session) -> int:
    return db.execute(select(func.count(User.id)).where(User.is_active.is_(True))).scalar_one()
