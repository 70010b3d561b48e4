from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from steam_social.db.base import Base


class FriendshipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    BLOCKED = "blocked"


# Allowed moves for a (requester -> addressee) edge. Blocking is forced from any
# state by the service and is listed here so the table stays exhaustive.
TRANSITIONS: dict[FriendshipStatus, frozenset[FriendshipStatus]] = {
    FriendshipStatus.PENDING: frozenset(
        {FriendshipStatus.ACCEPTED, FriendshipStatus.DECLINED, FriendshipStatus.BLOCKED}
    ),
    FriendshipStatus.ACCEPTED: frozenset({FriendshipStatus.BLOCKED}),
    FriendshipStatus.DECLINED: frozenset({FriendshipStatus.PENDING, FriendshipStatus.BLOCKED}),
    FriendshipStatus.BLOCKED: frozenset({FriendshipStatus.BLOCKED}),
}


def can_transition(src: FriendshipStatus | None, dst: FriendshipStatus) -> bool:
    """`src=None` means no edge exists yet for the pair."""
    if src is None:
        return dst in (FriendshipStatus.PENDING, FriendshipStatus.BLOCKED)
    return dst in TRANSITIONS[src]


class Friendship(Base):
    __tablename__ = "friendships"
    __table_args__ = (
        # One row per unordered pair, whichever way the edge points.
        UniqueConstraint("user_low_id", "user_high_id", name="uq_friendship_pair"),
        CheckConstraint("requester_id <> addressee_id", name="ck_friendship_not_self"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    requester_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    addressee_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_low_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_high_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FriendshipStatus.PENDING.value, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    # Set explicitly on every transition; cleanup compares against it.
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    def other_user_id(self, user_id: int) -> int:
        return self.addressee_id if self.requester_id == user_id else self.requester_id

    def orient(self, requester_id: int, addressee_id: int) -> None:
        """Point the edge from `requester_id` to `addressee_id` and keep the pair key in sync."""
        self.requester_id = requester_id
        self.addressee_id = addressee_id
        self.user_low_id = min(requester_id, addressee_id)
        self.user_high_id = max(requester_id, addressee_id)
