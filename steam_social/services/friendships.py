"""Friendship lifecycle: requests, accept/decline, block, removal and queries.

One edge row is kept per unordered pair of users. A request sent after a
decline reuses the declined row, and blocking re-orients the existing row so
the blocker is the requester.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, delete, func, or_, select, union_all
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from steam_social.core import cache as cache_keys
from steam_social.core.cache import cache
from steam_social.core.errors import Conflict, InvalidOperation, NotFound
from steam_social.core.logger import get_logger
from steam_social.db.session import transaction
from steam_social.models.friendship import Friendship, FriendshipStatus, can_transition
from steam_social.models.user import User
from steam_social.services import users as user_service

logger = get_logger(__name__)

_CONFLICT_MESSAGES = {
    FriendshipStatus.ACCEPTED: "Users are already friends",
    FriendshipStatus.PENDING: "Friend request already pending",
    FriendshipStatus.BLOCKED: "Cannot send request - user is blocked",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _between(user_a: int, user_b: int):
    return or_(
        and_(Friendship.requester_id == user_a, Friendship.addressee_id == user_b),
        and_(Friendship.requester_id == user_b, Friendship.addressee_id == user_a),
    )


def _involving(user_id: int):
    return or_(Friendship.requester_id == user_id, Friendship.addressee_id == user_id)


def _invalidate(*user_ids: int) -> None:
    cache.evict(*(cache_keys.friends_key(uid) for uid in user_ids))
    cache_keys.evict_user_analytics(*user_ids)


def get_friendship(db: Session, friendship_id: int) -> Friendship:
    friendship = db.get(Friendship, friendship_id)
    if not friendship:
        raise NotFound(f"Friendship {friendship_id} not found")
    return friendship


def find_friendship_between(db: Session, user_a: int, user_b: int) -> Friendship | None:
    return (
        db.execute(
            select(Friendship).where(
                Friendship.user_low_id == min(user_a, user_b),
                Friendship.user_high_id == max(user_a, user_b),
            )
        )
        .scalars()
        .one_or_none()
    )


def send_request(db: Session, requester_id: int, addressee_id: int) -> Friendship:
    if requester_id == addressee_id:
        raise InvalidOperation("Cannot send friend request to yourself")

    user_service.get_user(db, requester_id)
    user_service.get_user(db, addressee_id)

    existing = find_friendship_between(db, requester_id, addressee_id)
    current = FriendshipStatus(existing.status) if existing else None
    if not can_transition(current, FriendshipStatus.PENDING):
        raise Conflict(_CONFLICT_MESSAGES[current])

    try:
        with transaction(db):
            if existing is None:
                friendship = Friendship(status=FriendshipStatus.PENDING.value)
                db.add(friendship)
            else:
                # Retry after a decline: reuse the row, pointed the new way.
                friendship = existing
                friendship.status = FriendshipStatus.PENDING.value
            friendship.orient(requester_id, addressee_id)
            friendship.updated_at = _now()
    except IntegrityError:
        # A concurrent request for the same pair inserted its row first.
        raise Conflict("Friendship between these users already exists")

    _invalidate(requester_id, addressee_id)
    logger.info("Friend request %s -> %s", requester_id, addressee_id)
    db.refresh(friendship)
    return friendship


def _respond(
    db: Session, friendship_id: int, acting_user_id: int, target: FriendshipStatus, verb: str
) -> Friendship:
    friendship = get_friendship(db, friendship_id)
    if friendship.addressee_id != acting_user_id:
        raise InvalidOperation(f"Only the addressee can {verb} the request")
    if friendship.status != FriendshipStatus.PENDING.value:
        raise Conflict("Request is not in pending status")

    with transaction(db):
        friendship.status = target.value
        friendship.updated_at = _now()

    _invalidate(friendship.requester_id, friendship.addressee_id)
    logger.info("Friendship %s %s by %s", friendship_id, target.value, acting_user_id)
    db.refresh(friendship)
    return friendship


def accept(db: Session, friendship_id: int, acting_user_id: int) -> Friendship:
    return _respond(db, friendship_id, acting_user_id, FriendshipStatus.ACCEPTED, "accept")


def decline(db: Session, friendship_id: int, acting_user_id: int) -> Friendship:
    return _respond(db, friendship_id, acting_user_id, FriendshipStatus.DECLINED, "decline")


def block(db: Session, blocker_id: int, blocked_id: int) -> Friendship:
    if blocker_id == blocked_id:
        raise InvalidOperation("Cannot block yourself")

    user_service.get_user(db, blocker_id)
    user_service.get_user(db, blocked_id)

    existing = find_friendship_between(db, blocker_id, blocked_id)
    try:
        with transaction(db):
            if existing is None:
                friendship = Friendship()
                db.add(friendship)
            else:
                friendship = existing
            friendship.orient(blocker_id, blocked_id)
            friendship.status = FriendshipStatus.BLOCKED.value
            friendship.updated_at = _now()
    except IntegrityError:
        raise Conflict("Friendship between these users changed concurrently, retry the block")

    _invalidate(blocker_id, blocked_id)
    logger.info("User %s blocked %s", blocker_id, blocked_id)
    db.refresh(friendship)
    return friendship


def remove(db: Session, user_a: int, user_b: int) -> None:
    friendship = find_friendship_between(db, user_a, user_b)
    if not friendship:
        raise NotFound("Friendship not found")

    with transaction(db):
        db.execute(delete(Friendship).where(_between(user_a, user_b)))

    _invalidate(user_a, user_b)
    logger.info("Removed friendship between %s and %s", user_a, user_b)


def cleanup(db: Session, max_age_days: int) -> int:
    """Delete blocked/declined edges untouched for more than `max_age_days`."""
    cutoff = _now() - timedelta(days=max_age_days)
    stale = (
        Friendship.status.in_([FriendshipStatus.BLOCKED.value, FriendshipStatus.DECLINED.value]),
        Friendship.updated_at < cutoff,
    )
    affected = db.execute(select(Friendship.requester_id, Friendship.addressee_id).where(*stale)).all()

    with transaction(db):
        db.execute(delete(Friendship).where(*stale))

    touched = {uid for pair in affected for uid in pair}
    if touched:
        _invalidate(*touched)
    logger.info("Cleaned up %d stale friendships older than %d days", len(affected), max_age_days)
    return len(affected)


def find_all_for_user(db: Session, user_id: int) -> list[Friendship]:
    return db.execute(select(Friendship).where(_involving(user_id)).order_by(Friendship.id)).scalars().all()


def find_by_status(db: Session, user_id: int, status: FriendshipStatus) -> list[Friendship]:
    return (
        db.execute(
            select(Friendship)
            .where(_involving(user_id), Friendship.status == status.value)
            .order_by(Friendship.id)
        )
        .scalars()
        .all()
    )


def find_accepted_friend_ids(db: Session, user_id: int) -> list[int]:
    key = cache_keys.friends_key(user_id)
    cached = cache.get(key)
    if cached is not None:
        return list(cached)

    ids = sorted(f.other_user_id(user_id) for f in find_by_status(db, user_id, FriendshipStatus.ACCEPTED))
    cache.put(key, tuple(ids))
    return ids


def find_friends(db: Session, user_id: int) -> list[User]:
    ids = find_accepted_friend_ids(db, user_id)
    if not ids:
        return []
    return db.execute(select(User).where(User.id.in_(ids)).order_by(User.id)).scalars().all()


def find_pending_received(db: Session, user_id: int) -> list[Friendship]:
    return (
        db.execute(
            select(Friendship)
            .where(Friendship.addressee_id == user_id, Friendship.status == FriendshipStatus.PENDING.value)
            .order_by(Friendship.id.desc())
        )
        .scalars()
        .all()
    )


def find_pending_sent(db: Session, user_id: int) -> list[Friendship]:
    return (
        db.execute(
            select(Friendship)
            .where(Friendship.requester_id == user_id, Friendship.status == FriendshipStatus.PENDING.value)
            .order_by(Friendship.id.desc())
        )
        .scalars()
        .all()
    )


def find_mutual_friend_ids(db: Session, user_a: int, user_b: int) -> list[int]:
    return sorted(set(find_accepted_friend_ids(db, user_a)) & set(find_accepted_friend_ids(db, user_b)))


def exists_between(db: Session, user_a: int, user_b: int) -> bool:
    return find_friendship_between(db, user_a, user_b) is not None


def are_friends(db: Session, user_a: int, user_b: int) -> bool:
    return (
        db.execute(
            select(Friendship.id).where(
                _between(user_a, user_b), Friendship.status == FriendshipStatus.ACCEPTED.value
            )
        ).first()
        is not None
    )


def get_status(db: Session, user_a: int, user_b: int) -> FriendshipStatus | None:
    friendship = find_friendship_between(db, user_a, user_b)
    return FriendshipStatus(friendship.status) if friendship else None


def can_send_request(db: Session, requester_id: int, addressee_id: int) -> bool:
    if requester_id == addressee_id:
        return False
    return can_transition(get_status(db, requester_id, addressee_id), FriendshipStatus.PENDING)


def count_accepted(db: Session, user_id: int) -> int:
    return db.execute(
        select(func.count(Friendship.id)).where(
            _involving(user_id), Friendship.status == FriendshipStatus.ACCEPTED.value
        )
    ).scalar_one()


def count_pending_received(db: Session, user_id: int) -> int:
    return db.execute(
        select(func.count(Friendship.id)).where(
            Friendship.addressee_id == user_id, Friendship.status == FriendshipStatus.PENDING.value
        )
    ).scalar_one()


def count_pending_sent(db: Session, user_id: int) -> int:
    return db.execute(
        select(func.count(Friendship.id)).where(
            Friendship.requester_id == user_id, Friendship.status == FriendshipStatus.PENDING.value
        )
    ).scalar_one()


def get_friendship_stats(db: Session, user_id: int) -> dict[str, int]:
    return {
        "accepted_friends": count_accepted(db, user_id),
        "pending_received": count_pending_received(db, user_id),
        "pending_sent": count_pending_sent(db, user_id),
    }


def users_with_most_friends(db: Session, limit: int = 10) -> list[tuple[int, int]]:
    """(user_id, accepted friend count), counting edges from both ends."""
    accepted = Friendship.status == FriendshipStatus.ACCEPTED.value
    ends = union_all(
        select(Friendship.requester_id.label("user_id")).where(accepted),
        select(Friendship.addressee_id.label("user_id")).where(accepted),
    ).subquery()
    friend_count = func.count().label("friend_count")
    rows = db.execute(
        select(ends.c.user_id, friend_count)
        .group_by(ends.c.user_id)
        .order_by(friend_count.desc(), ends.c.user_id)
        .limit(limit)
    ).all()
    return [(uid, n) for uid, n in rows]
