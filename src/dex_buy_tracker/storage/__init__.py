"""Storage layer - Database schema, repository and group settings store."""

from dex_buy_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from dex_buy_tracker.storage.models import Base, GroupSettingsModel
from dex_buy_tracker.storage.repos import GroupSettingsDTO, GroupSettingsRepository
from dex_buy_tracker.storage.settings_store import (
    GroupSettings,
    GroupSettingsStore,
    SettingsStoreError,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "GroupSettings",
    "GroupSettingsDTO",
    "GroupSettingsModel",
    "GroupSettingsRepository",
    "GroupSettingsStore",
    "SettingsStoreError",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
