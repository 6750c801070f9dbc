"""Settings storage: one record per deployment in ``settings.json``."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from mychat.errors import StorageError
from mychat.storage.database import JsonDatabase
from mychat.types import Settings, dump

logger = logging.getLogger(__name__)


class SettingsStore:
    """Reads and merges the settings record, creating it from defaults on first use."""

    def __init__(self, db: JsonDatabase, defaults: Settings) -> None:
        self._db = db
        self._defaults = defaults

    def _load(self) -> Settings | None:
        raw = self._db.read(self._db.settings_file, None)
        if raw is None:
            return None
        try:
            return Settings.model_validate(raw)
        except ValidationError as e:
            raise StorageError(f"Invalid settings in {self._db.settings_file}: {e}") from e

    async def get(self) -> Settings:
        """Return the settings, writing the defaults if none are stored yet."""
        settings = self._load()
        if settings is not None:
            return settings
        async with self._db.lock(self._db.settings_file):
            settings = self._load()
            if settings is None:
                settings = self._defaults.model_copy()
                self._db.write(self._db.settings_file, dump(settings))
                logger.info("Created default settings")
        return settings

    async def update(self, updates: dict[str, Any]) -> Settings:
        """Merge updates (snake_case keys) into the stored settings.

        ``None`` values are written as-is, which is how the API key is cleared.
        """
        async with self._db.lock(self._db.settings_file):
            current = self._load() or self._defaults.model_copy()
            merged = {**current.model_dump(), **updates}
            try:
                settings = Settings.model_validate(merged)
            except ValidationError as e:
                raise StorageError(f"Invalid settings update: {e}") from e
            self._db.write(self._db.settings_file, dump(settings))
        logger.info("Updated settings: %s", ", ".join(sorted(updates)) or "nothing")
        return settings
