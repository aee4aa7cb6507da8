"""Persistent collection of watermark configs with a single active selection."""

import json
import logging
import os
import tempfile
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from ..errors import ConfigNotFound, PersistenceFailure
from .models import NO_WATERMARK, WATERMARK_KINDS, WatermarkConfig, watermark_from_record

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "zopkit_watermarks"


class ConfigBackend(Protocol):
    """Storage medium for the ordered watermark collection."""

    def load(self) -> list[WatermarkConfig]:
        """
        Load the persisted collection.

        Raises:
            PersistenceFailure: If the medium cannot be read.
            ValueError: If the stored data is malformed.
        """
        ...

    def save(self, configs: Sequence[WatermarkConfig]) -> None:
        """
        Replace the persisted collection.

        Raises:
            PersistenceFailure: If the medium cannot be written.
        """
        ...


class MemoryBackend:
    """Keeps serialised records in memory."""

    def __init__(self, records: list[dict] | None = None):
        self.records = list(records or [])

    def load(self) -> list[WatermarkConfig]:
        return [watermark_from_record(record) for record in self.records]

    def save(self, configs: Sequence[WatermarkConfig]) -> None:
        self.records = [config.to_record() for config in configs]


class JsonFileBackend:
    """
    Stores the collection in a JSON file under a storage key.

    The file holds ``{storage_key: [record, ...]}`` and nothing else. Writes go
    to a temporary file in the same directory which then replaces the target,
    so readers never see a half-written list.
    """

    def __init__(self, path: Path | str, storage_key: str = DEFAULT_STORAGE_KEY):
        self.path = Path(path)
        self.storage_key = storage_key

    def load(self) -> list[WatermarkConfig]:
        if not self.path.exists():
            return []

        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceFailure(f"Could not read {self.path}: {exc}") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{self.path} is not valid JSON: {exc}") from exc

        if not isinstance(payload, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        records = payload.get(self.storage_key, [])
        if not isinstance(records, list):
            raise ValueError(f"{self.storage_key!r} in {self.path} is not a list")

        return [watermark_from_record(record) for record in records]

    def save(self, configs: Sequence[WatermarkConfig]) -> None:
        payload = {self.storage_key: [config.to_record() for config in configs]}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(temp_name, self.path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceFailure(f"Could not write {self.path}: {exc}") from exc


class WatermarkConfigStore:
    """
    CRUD over watermark configs plus the single active selection.

    The in-memory mapping is authoritative for the session. Every change is
    persisted immediately; a failed write is logged and reported through the
    return value but never undoes the in-memory change. The active selection
    is session state and is not persisted.
    """

    def __init__(self, backend: ConfigBackend):
        self._backend = backend
        self._lock = threading.Lock()
        self._configs: dict[str, WatermarkConfig] = {}
        self._active_id = NO_WATERMARK
        self._load()

    def _load(self) -> None:
        try:
            configs = self._backend.load()
        except PersistenceFailure as exc:
            logger.warning("Failed to load watermarks, starting empty: %s", exc)
            return
        except ValueError as exc:
            logger.warning("Discarding malformed watermark data: %s", exc)
            return

        for config in configs:
            if config.id in self._configs:
                logger.warning("Duplicate watermark id %r in stored data, keeping the last one", config.id)
            self._configs[config.id] = config

    def _persist(self) -> bool:
        # Caller holds the lock
        try:
            self._backend.save(list(self._configs.values()))
        except PersistenceFailure as exc:
            logger.warning("Failed to persist watermarks: %s", exc)
            return False
        return True

    @property
    def active_id(self) -> str:
        return self._active_id

    def save(self, config: WatermarkConfig) -> bool:
        """
        Insert ``config`` or replace the entry with the same id, then make it active.

        Returns:
            True if the collection was persisted, False if only memory was updated.
        """
        if type(config) not in WATERMARK_KINDS.values():
            raise TypeError(f"Cannot save {type(config).__name__}; expected one of {sorted(WATERMARK_KINDS)}")

        with self._lock:
            # Replacing keeps the entry at its original listing position
            self._configs[config.id] = config
            self._active_id = config.id
            logger.debug("Saved watermark %s (%s)", config.id, config.kind)
            return self._persist()

    def delete(self, config_id: str) -> bool:
        """
        Remove a config. Deleting the active config resets the selection to none.

        Returns:
            True if the collection was persisted (or nothing changed).
        """
        with self._lock:
            if config_id not in self._configs:
                logger.debug("Watermark %s not found, nothing to delete", config_id)
                return True
            del self._configs[config_id]
            if self._active_id == config_id:
                self._active_id = NO_WATERMARK
            logger.debug("Deleted watermark %s", config_id)
            return self._persist()

    def select(self, config_id: str) -> None:
        """Make an existing config (or ``NO_WATERMARK``) the active one."""
        with self._lock:
            if config_id != NO_WATERMARK and config_id not in self._configs:
                raise ConfigNotFound(config_id)
            self._active_id = config_id

    def get(self, config_id: str) -> WatermarkConfig:
        with self._lock:
            try:
                return self._configs[config_id]
            except KeyError:
                raise ConfigNotFound(config_id) from None

    def list(self) -> tuple[WatermarkConfig, ...]:
        """All configs in the order they were first saved."""
        with self._lock:
            return tuple(self._configs.values())

    def get_active(self) -> WatermarkConfig | None:
        """The active config, or None when no watermark should be applied."""
        with self._lock:
            if self._active_id == NO_WATERMARK:
                return None
            config = self._configs.get(self._active_id)
            if config is None:
                logger.warning("%s, applying no watermark", ConfigNotFound(self._active_id))
                self._active_id = NO_WATERMARK
            return config

    def __len__(self) -> int:
        return len(self._configs)

    def __contains__(self, config_id: object) -> bool:
        return config_id in self._configs
