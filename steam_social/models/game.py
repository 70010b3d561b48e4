from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Date, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from steam_social.db.base import Base


class Game(Base):
    __tablename__ = "games"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    steam_app_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    developer: Mapped[str | None] = mapped_column(String(255), index=True)
    publisher: Mapped[str | None] = mapped_column(String(255), index=True)
    release_date: Mapped[date | None] = mapped_column(Date)

    price_initial: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    price_current: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))

    # Open-ended label sets keyed by label name (e.g. {"Action": true}).
    tags: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    categories: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    genres: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
