from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from steam_social.db.base import Base


class LibraryEntry(Base):
    __tablename__ = "user_game_library"
    __table_args__ = (
        UniqueConstraint("user_id", "game_id", name="uq_user_game"),
        CheckConstraint("playtime_total >= 0", name="ck_playtime_total_non_negative"),
        CheckConstraint("playtime_two_weeks >= 0", name="ck_playtime_two_weeks_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    game_id: Mapped[int] = mapped_column(
        ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Minutes.
    playtime_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    playtime_two_weeks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    purchased_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_played: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)

    @property
    def playtime_hours(self) -> float:
        return (self.playtime_total or 0) / 60.0
