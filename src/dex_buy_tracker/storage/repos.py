"""Repository pattern implementations for data access.

This module provides the data access abstraction for group settings rows.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from dex_buy_tracker.storage.models import GroupSettingsModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_UPDATABLE_COLUMNS = (
    "chain",
    "token_address",
    "pair_address",
    "all_pair_addresses",
    "emoji",
    "image_url",
    "image_file_id",
    "animation_file_id",
    "min_buy_usd",
    "max_buy_usd",
    "dollars_per_emoji",
    "tg_group_link",
    "auto_pin_data_posts",
    "auto_pin_kol_alerts",
    "cooldown_seconds",
    "updated_at",
)


@dataclass
class GroupSettingsDTO:
    """Data transfer object for group settings rows."""

    chat_id: int
    chain: str
    token_address: str
    pair_address: str
    all_pair_addresses: list[str] = field(default_factory=list)
    emoji: str = "🟢"
    image_url: str | None = None
    image_file_id: str | None = None
    animation_file_id: str | None = None
    min_buy_usd: float = 0.0
    max_buy_usd: float | None = None
    dollars_per_emoji: float = 50.0
    tg_group_link: str | None = None
    auto_pin_data_posts: bool = False
    auto_pin_kol_alerts: bool = False
    cooldown_seconds: int | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: GroupSettingsModel) -> GroupSettingsDTO:
        """Create DTO from SQLAlchemy model."""
        pairs = model.all_pair_addresses if isinstance(model.all_pair_addresses, list) else []
        return cls(
            chat_id=model.chat_id,
            chain=model.chain,
            token_address=model.token_address,
            pair_address=model.pair_address,
            all_pair_addresses=[str(p) for p in pairs],
            emoji=model.emoji,
            image_url=model.image_url,
            image_file_id=model.image_file_id,
            animation_file_id=model.animation_file_id,
            min_buy_usd=float(model.min_buy_usd),
            max_buy_usd=float(model.max_buy_usd) if model.max_buy_usd is not None else None,
            dollars_per_emoji=float(model.dollars_per_emoji),
            tg_group_link=model.tg_group_link,
            auto_pin_data_posts=bool(model.auto_pin_data_posts),
            auto_pin_kol_alerts=bool(model.auto_pin_kol_alerts),
            cooldown_seconds=model.cooldown_seconds,
            updated_at=model.updated_at,
        )

    def to_values(self) -> dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "chain": self.chain,
            "token_address": self.token_address,
            "pair_address": self.pair_address,
            "all_pair_addresses": list(self.all_pair_addresses),
            "emoji": self.emoji,
            "image_url": self.image_url,
            "image_file_id": self.image_file_id,
            "animation_file_id": self.animation_file_id,
            "min_buy_usd": self.min_buy_usd,
            "max_buy_usd": self.max_buy_usd,
            "dollars_per_emoji": self.dollars_per_emoji,
            "tg_group_link": self.tg_group_link,
            "auto_pin_data_posts": self.auto_pin_data_posts,
            "auto_pin_kol_alerts": self.auto_pin_kol_alerts,
            "cooldown_seconds": self.cooldown_seconds,
        }


class GroupSettingsRepository:
    """Repository for group settings rows.

    Example:
        ```python
        async with db.get_async_session() as session:
            repo = GroupSettingsRepository(session)
            await repo.upsert_many(dtos)
            await repo.delete_missing([dto.chat_id for dto in dtos])
        ```
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_all(self) -> list[GroupSettingsDTO]:
        result = await self.session.execute(select(GroupSettingsModel).order_by(GroupSettingsModel.chat_id))
        return [GroupSettingsDTO.from_model(m) for m in result.scalars().all()]

    async def get(self, chat_id: int) -> GroupSettingsDTO | None:
        result = await self.session.execute(
            select(GroupSettingsModel).where(GroupSettingsModel.chat_id == chat_id)
        )
        model = result.scalar_one_or_none()
        return GroupSettingsDTO.from_model(model) if model else None

    def _insert_for_dialect(self) -> Any:
        bind = self.session.bind
        dialect = bind.dialect.name if bind is not None else "sqlite"
        return pg_insert if dialect == "postgresql" else sqlite_insert

    async def upsert(self, dto: GroupSettingsDTO) -> GroupSettingsDTO:
        """Insert or update a group's settings by chat_id."""
        insert = self._insert_for_dialect()
        stmt = insert(GroupSettingsModel).values(**dto.to_values(), updated_at=datetime.now(UTC))
        stmt = stmt.on_conflict_do_update(
            index_elements=["chat_id"],
            set_={col: getattr(stmt.excluded, col) for col in _UPDATABLE_COLUMNS},
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto

    async def upsert_many(self, dtos: Iterable[GroupSettingsDTO]) -> int:
        count = 0
        for dto in dtos:
            await self.upsert(dto)
            count += 1
        return count

    async def delete(self, chat_id: int) -> bool:
        result = await self.session.execute(
            delete(GroupSettingsModel).where(GroupSettingsModel.chat_id == chat_id)
        )
        await self.session.flush()
        return bool(result.rowcount)

    async def delete_missing(self, keep_chat_ids: Iterable[int]) -> int:
        """Delete every row whose chat_id is not in `keep_chat_ids`."""
        keep = list(keep_chat_ids)
        stmt = delete(GroupSettingsModel)
        if keep:
            stmt = stmt.where(GroupSettingsModel.chat_id.not_in(keep))
        result = await self.session.execute(stmt)
        await self.session.flush()
        deleted = int(result.rowcount or 0)
        if deleted:
            logger.info("Deleted %d stale group settings rows", deleted)
        return deleted
