"""In-memory group settings backed by the database with debounced saves.

The tracker reads settings on every reconciliation pass and every swap, so
they live in memory. Writers call `mark_dirty()`; bursts of changes within
the debounce window collapse into one full save (upsert all rows, delete
rows for groups that are gone).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from dex_buy_tracker.storage.database import DatabaseManager
from dex_buy_tracker.storage.repos import GroupSettingsDTO, GroupSettingsRepository

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 2.0


class SettingsStoreError(Exception):
    """Raised when group settings cannot be loaded or persisted."""


@dataclass
class GroupSettings:
    """Buy alert configuration for one Telegram group.

    `all_pair_addresses` is the list of pools the group tracks. The tracker
    fills it automatically when it is empty.
    """

    chain: str
    token_address: str
    pair_address: str = ""
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

    def tracks_pool(self, pool_address: str) -> bool:
        pool = pool_address.lower()
        return any(p.lower() == pool for p in self.all_pair_addresses)

    @classmethod
    def from_dto(cls, dto: GroupSettingsDTO) -> GroupSettings:
        return cls(
            chain=dto.chain,
            token_address=dto.token_address,
            pair_address=dto.pair_address,
            all_pair_addresses=list(dto.all_pair_addresses),
            emoji=dto.emoji,
            image_url=dto.image_url,
            image_file_id=dto.image_file_id,
            animation_file_id=dto.animation_file_id,
            min_buy_usd=dto.min_buy_usd,
            max_buy_usd=dto.max_buy_usd,
            dollars_per_emoji=dto.dollars_per_emoji,
            tg_group_link=dto.tg_group_link,
            auto_pin_data_posts=dto.auto_pin_data_posts,
            auto_pin_kol_alerts=dto.auto_pin_kol_alerts,
            cooldown_seconds=dto.cooldown_seconds,
        )

    def to_dto(self, chat_id: int) -> GroupSettingsDTO:
        return GroupSettingsDTO(
            chat_id=chat_id,
            chain=self.chain,
            token_address=self.token_address,
            pair_address=self.pair_address,
            all_pair_addresses=list(self.all_pair_addresses),
            emoji=self.emoji,
            image_url=self.image_url,
            image_file_id=self.image_file_id,
            animation_file_id=self.animation_file_id,
            min_buy_usd=self.min_buy_usd,
            max_buy_usd=self.max_buy_usd,
            dollars_per_emoji=self.dollars_per_emoji,
            tg_group_link=self.tg_group_link,
            auto_pin_data_posts=self.auto_pin_data_posts,
            auto_pin_kol_alerts=self.auto_pin_kol_alerts,
            cooldown_seconds=self.cooldown_seconds,
        )


class GroupSettingsStore:
    """Group id -> GroupSettings mapping with debounced persistence.

    Example:
        ```python
        store = GroupSettingsStore(DatabaseManager(settings.database.url))
        await store.load()

        store.get_all()[chat_id].all_pair_addresses.append("0xpool...")
        store.mark_dirty()

        await store.aclose()  # flushes a pending save
        ```
    """

    def __init__(self, db: DatabaseManager, *, debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS) -> None:
        self._db = db
        self._debounce = debounce_seconds
        self._groups: dict[int, GroupSettings] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._save_task: asyncio.Task[None] | None = None
        self._dirty = False
        self.save_count = 0

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    async def load(self) -> int:
        """Create the schema if needed and load every row into memory."""
        try:
            await self._db.init_schema_async()
            async with self._db.get_async_session() as session:
                rows = await GroupSettingsRepository(session).list_all()
        except SQLAlchemyError as e:
            raise SettingsStoreError(f"Failed to load group settings: {e}") from e

        self._groups = {row.chat_id: GroupSettings.from_dto(row) for row in rows}
        self._dirty = False
        logger.info("Loaded %d group settings", len(self._groups))
        return len(self._groups)

    def get_all(self) -> dict[int, GroupSettings]:
        """The live mapping. Iterate over a snapshot if you may mutate it."""
        return self._groups

    def get(self, group_id: int) -> GroupSettings | None:
        return self._groups.get(group_id)

    def set(self, group_id: int, settings: GroupSettings) -> None:
        self._groups[group_id] = settings
        self.mark_dirty()

    def remove(self, group_id: int) -> bool:
        removed = self._groups.pop(group_id, None) is not None
        if removed:
            self.mark_dirty()
        return removed

    def mark_dirty(self) -> None:
        """Schedule a save after the debounce window, restarting any pending timer."""
        self._dirty = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet (e.g. setup code). aclose() or the next call will save.
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self._debounce, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if self._save_task is not None and not self._save_task.done():
            # A save is running; re-arm so the newest state is written after it.
            self.mark_dirty()
            return
        self._save_task = asyncio.create_task(self._flush())

    async def _flush(self) -> None:
        try:
            await self.save_now()
        except SettingsStoreError as e:
            logger.error("%s", e)

    async def save_now(self) -> int:
        """Persist the full mapping immediately."""
        snapshot = [gs.to_dto(chat_id) for chat_id, gs in list(self._groups.items())]
        self._dirty = False
        try:
            async with self._db.get_async_session() as session:
                repo = GroupSettingsRepository(session)
                await repo.upsert_many(snapshot)
                await repo.delete_missing([dto.chat_id for dto in snapshot])
        except SQLAlchemyError as e:
            self._dirty = True
            raise SettingsStoreError(f"Failed to persist group settings: {e}") from e

        self.save_count += 1
        logger.info("Group settings persisted (%d groups)", len(snapshot))
        return len(snapshot)

    async def aclose(self) -> None:
        """Cancel the debounce timer and flush pending changes."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._save_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._save_task
            self._save_task = None
        if self._dirty:
            try:
                await self.save_now()
            except SettingsStoreError as e:
                logger.error("%s", e)
        await self._db.dispose_async()
