"""SQLAlchemy models for persistent storage.

This module defines the database schema for per-group buy alert settings.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class GroupSettingsModel(Base):
    """SQLAlchemy model for one Telegram group's buy alert configuration."""

    __tablename__ = "group_settings"

    chat_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)

    chain: Mapped[str] = mapped_column(String(32), nullable=False)
    token_address: Mapped[str] = mapped_column(String(42), nullable=False)
    pair_address: Mapped[str] = mapped_column(String(42), nullable=False, default="")
    all_pair_addresses: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    emoji: Mapped[str] = mapped_column(String(32), nullable=False)

    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_file_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    animation_file_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    min_buy_usd: Mapped[float] = mapped_column(Float, nullable=False)
    max_buy_usd: Mapped[float | None] = mapped_column(Float, nullable=True)
    dollars_per_emoji: Mapped[float] = mapped_column(Float, nullable=False)

    tg_group_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_pin_data_posts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_pin_kol_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cooldown_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    def __repr__(self) -> str:
        return f"<GroupSettingsModel(chat_id={self.chat_id}, chain={self.chain}, token={self.token_address})>"
