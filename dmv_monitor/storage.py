"""
Storage interface and its in-memory / JSON-snapshot implementations.

Хранилище локаций, настроек, статистики и журнала событий. Однопроцессное,
без собственной синхронизации: записи сериализует планировщик.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional, Protocol

from pydantic import SecretStr, ValidationError

from .errors import StorageError
from .models import (
    ActivityLog,
    Location,
    LocationCreate,
    LocationUpdate,
    MonitoringSettings,
    MonitoringStats,
    NotificationConfig,
    utcnow,
)

logger = logging.getLogger(__name__)


DEFAULT_LOCATIONS = [
    LocationCreate(
        name="Henderson DMV (All Services)",
        url="https://hendersondmv.waitwell.us/book/1026",
        type="All Services",
        enabled=True,
    ),
    LocationCreate(
        name="Henderson DMV (DL)",
        url="https://hendersondmv.waitwell.us/book/994",
        type="Driver's License Only",
        enabled=True,
    ),
    LocationCreate(
        name="West Flamingo DMV (All Services)",
        url="https://westflamingodmv.waitwell.us/book/1260",
        type="All Services",
        enabled=True,
    ),
    LocationCreate(
        name="West Flamingo DMV (DL)",
        url="https://westflamingodmv.waitwell.us/book/1228",
        type="Driver's License Only",
        enabled=True,
    ),
    LocationCreate(
        name="North Decatur DMV (All Services)",
        url="https://northdecaturdmv.waitwell.us/book/1143",
        type="All Services",
        enabled=False,
    ),
    LocationCreate(
        name="North Decatur DMV (DL)",
        url="https://northdecaturdmv.waitwell.us/book/1111",
        type="Driver's License Only",
        enabled=False,
    ),
]

DEFAULT_ACTIVITY_LIMIT = 50


class Storage(Protocol):
    """Narrow persistence interface consumed by the monitoring core."""

    async def list_locations(self) -> List[Location]: ...

    async def get_location(self, location_id: str) -> Optional[Location]: ...

    async def create_location(self, data: LocationCreate) -> Location: ...

    async def update_location(self, location_id: str, data: LocationUpdate) -> Optional[Location]: ...

    async def delete_location(self, location_id: str) -> bool: ...

    async def get_settings(self) -> Optional[MonitoringSettings]: ...

    async def upsert_settings(self, settings: MonitoringSettings) -> MonitoringSettings: ...

    async def get_notification_config(self) -> Optional[NotificationConfig]: ...

    async def upsert_notification_config(self, config: NotificationConfig) -> NotificationConfig: ...

    async def get_stats(self) -> Optional[MonitoringStats]: ...

    async def upsert_stats(self, stats: MonitoringStats) -> MonitoringStats: ...

    async def add_activity(self, entry: ActivityLog) -> ActivityLog: ...

    async def list_activity(self, limit: int = DEFAULT_ACTIVITY_LIMIT) -> List[ActivityLog]: ...

    async def clear_activity(self) -> None: ...


class MemoryStorage:
    """Process-local storage. Returned models are copies, callers cannot mutate state."""

    def __init__(
        self,
        *,
        settings: Optional[MonitoringSettings] = None,
        notification_config: Optional[NotificationConfig] = None,
        locations: Optional[List[LocationCreate]] = None,
    ) -> None:
        self._locations: dict[str, Location] = {}
        self._settings: Optional[MonitoringSettings] = settings or MonitoringSettings()
        self._notification_config: Optional[NotificationConfig] = notification_config
        self._stats: Optional[MonitoringStats] = MonitoringStats()
        self._activity: List[ActivityLog] = []

        seed = DEFAULT_LOCATIONS if locations is None else locations
        for item in seed:
            location = Location(**item.model_dump())
            self._locations[location.id] = location

    # region hooks
    def _changed(self) -> None:
        """Called after every mutation. Subclasses persist here."""

    # endregion

    # region locations
    async def list_locations(self) -> List[Location]:
        ordered = sorted(self._locations.values(), key=lambda loc: loc.created_at)
        return [loc.model_copy() for loc in ordered]

    async def get_location(self, location_id: str) -> Optional[Location]:
        location = self._locations.get(location_id)
        return location.model_copy() if location else None

    async def create_location(self, data: LocationCreate) -> Location:
        location = Location(**data.model_dump())
        self._locations[location.id] = location
        self._changed()
        return location.model_copy()

    async def update_location(self, location_id: str, data: LocationUpdate) -> Optional[Location]:
        existing = self._locations.get(location_id)
        if existing is None:
            return None
        updated = existing.model_copy(update=data.model_dump(exclude_unset=True, exclude_none=True))
        self._locations[location_id] = updated
        self._changed()
        return updated.model_copy()

    async def delete_location(self, location_id: str) -> bool:
        removed = self._locations.pop(location_id, None) is not None
        if removed:
            self._changed()
        return removed

    # endregion

    # region singletons
    async def get_settings(self) -> Optional[MonitoringSettings]:
        return self._settings.model_copy() if self._settings else None

    async def upsert_settings(self, settings: MonitoringSettings) -> MonitoringSettings:
        self._settings = settings.model_copy(update={"updated_at": utcnow()})
        self._changed()
        return self._settings.model_copy()

    async def get_notification_config(self) -> Optional[NotificationConfig]:
        return self._notification_config.model_copy() if self._notification_config else None

    async def upsert_notification_config(self, config: NotificationConfig) -> NotificationConfig:
        self._notification_config = config.model_copy(update={"updated_at": utcnow()})
        self._changed()
        return self._notification_config.model_copy()

    async def get_stats(self) -> Optional[MonitoringStats]:
        return self._stats.model_copy() if self._stats else None

    async def upsert_stats(self, stats: MonitoringStats) -> MonitoringStats:
        self._stats = stats.model_copy(update={"updated_at": utcnow()})
        self._changed()
        return self._stats.model_copy()

    # endregion

    # region activity
    async def add_activity(self, entry: ActivityLog) -> ActivityLog:
        self._activity.append(entry)
        self._changed()
        return entry

    async def list_activity(self, limit: int = DEFAULT_ACTIVITY_LIMIT) -> List[ActivityLog]:
        # Журнал только дополняется, порядок вставки совпадает с хронологией
        return list(reversed(self._activity))[:limit]

    async def clear_activity(self) -> None:
        self._activity.clear()
        self._changed()

    # endregion


class JsonFileStorage(MemoryStorage):
    """
    MemoryStorage that keeps a JSON snapshot on disk.

    Снимок перезаписывается после каждого изменения и читается при старте.
    Секреты сохраняются в открытом виде, файл должен быть доступен только владельцу.
    """

    def __init__(self, path: Path, **kwargs) -> None:
        self._path = path
        self._loading = True
        super().__init__(**kwargs)
        if path.exists():
            self._load()
        self._loading = False

    def _load(self) -> None:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self._locations = {
                item["id"]: Location.model_validate(item) for item in data.get("locations", [])
            }
            if data.get("settings") is not None:
                self._settings = MonitoringSettings.model_validate(data["settings"])
            if data.get("notification_config") is not None:
                self._notification_config = NotificationConfig.model_validate(data["notification_config"])
            if data.get("stats") is not None:
                self._stats = MonitoringStats.model_validate(data["stats"])
            self._activity = [ActivityLog.model_validate(item) for item in data.get("activity", [])]
            logger.info(
                "Loaded storage snapshot from %s (%s locations, %s activity entries)",
                self._path,
                len(self._locations),
                len(self._activity),
            )
        except (OSError, ValueError, KeyError, ValidationError) as e:
            raise StorageError(f"Failed to load storage snapshot {self._path}: {e}") from e

    def _dump(self) -> dict:
        config = None
        if self._notification_config is not None:
            config = self._notification_config.model_dump(mode="json")
            # SecretStr сериализуется как "**********", сохраняем реальные значения
            for key in ("smtp_password", "twilio_auth_token"):
                secret: Optional[SecretStr] = getattr(self._notification_config, key)
                config[key] = secret.get_secret_value() if secret else None
        return {
            "locations": [loc.model_dump(mode="json") for loc in self._locations.values()],
            "settings": self._settings.model_dump(mode="json") if self._settings else None,
            "notification_config": config,
            "stats": self._stats.model_dump(mode="json") if self._stats else None,
            "activity": [entry.model_dump(mode="json") for entry in self._activity],
        }

    def _changed(self) -> None:
        if self._loading:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(self._dump(), ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as e:
            raise StorageError(f"Failed to save storage snapshot {self._path}: {e}") from e


__all__ = ["DEFAULT_LOCATIONS", "JsonFileStorage", "MemoryStorage", "Storage"]
