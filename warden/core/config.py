"""Configuration management for Warden.

The :class:`ConfigManager` loads the engine settings from YAML (or TOML) so
operators can declare where snapshots live, how often expired grants are
swept and how deep group inheritance may be followed. The configuration is
validated with Pydantic models once at load time; the rest of the codebase
only ever sees typed settings.
"""
from __future__ import annotations

import asyncio
import os
import threading
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from warden.utils.errors import ConfigurationError
from warden.utils.logging import get_logger

logger = get_logger(__name__)


class StorageSettings(BaseModel):
    """Where the persistence adapter keeps snapshots."""

    path: Path = Field(default=Path("permissions.json"))


class SweeperSettings(BaseModel):
    """Background purge of expired grants."""

    enabled: bool = True
    interval: float = Field(default=60.0, description="Seconds between sweeps")

    @field_validator("interval")
    @classmethod
    def validate_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Sweeper interval must be positive")
        return value


class ResolutionSettings(BaseModel):
    """Knobs for the resolution engine."""

    max_depth: int = Field(default=64, description="Maximum inheritance depth followed")
    default_group: str = "default"

    @field_validator("max_depth")
    @classmethod
    def validate_max_depth(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_depth must be at least 1")
        return value

    @field_validator("default_group")
    @classmethod
    def validate_default_group(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("default_group cannot be blank")
        return value.strip().lower()


class LoggingSettings(BaseModel):
    level: str = "INFO"
    log_dir: Optional[Path] = None


class WardenSettings(BaseModel):
    """Root configuration schema."""

    seed_builtin_groups: bool = True
    storage: StorageSettings = Field(default_factory=StorageSettings)
    sweeper: SweeperSettings = Field(default_factory=SweeperSettings)
    resolution: ResolutionSettings = Field(default_factory=ResolutionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class ConfigManager:
    """Load configuration files for the runtime.

    The manager is created once by the entry point and its settings are then
    passed explicitly to the components that need them.
    """

    def __init__(self, config_path: Optional[Path] = None, *, poll_interval: float = 2.0) -> None:
        self.config_path = config_path or Path(os.environ.get("WARDEN_CONFIG", "config/warden.yml"))
        self.poll_interval = poll_interval
        self._settings: Optional[WardenSettings] = None
        self._callbacks: List[Callable[[WardenSettings], Awaitable[None]]] = []
        self._lock = asyncio.Lock()
        self._stop_event = threading.Event()
        self._watch_task: Optional[threading.Thread] = None

    async def load(self) -> WardenSettings:
        """Load configuration from disk and validate it."""

        async with self._lock:
            try:
                logger.debug("loading configuration", extra={"path": str(self.config_path)})
                data = self._read_file(self.config_path)
                settings = WardenSettings(**data)
            except ConfigurationError:
                raise
            except Exception as exc:
                raise ConfigurationError(str(exc)) from exc
            self._settings = settings
            return settings

    async def reload(self) -> WardenSettings:
        """Reload configuration explicitly."""

        settings = await self.load()
        await self._notify(settings)
        return settings

    def start_watching(self) -> None:
        """Begin polling the configuration file for changes.

        A changed file is reloaded and callbacks are notified from the watcher
        thread. An invalid file is logged and the previous settings are kept.
        """

        if self._watch_task and self._watch_task.is_alive():
            return

        def _mtime() -> float:
            try:
                return self.config_path.stat().st_mtime
            except FileNotFoundError:
                return 0.0

        def _watch() -> None:
            last_mtime = _mtime()
            while not self._stop_event.wait(self.poll_interval):
                mtime = _mtime()
                if mtime == last_mtime:
                    continue
                last_mtime = mtime
                if not mtime:
                    logger.warning("configuration file missing", extra={"path": str(self.config_path)})
                    continue
                try:
                    asyncio.run(self.reload())
                except ConfigurationError as exc:
                    logger.error(
                        "configuration reload failed",
                        extra={"path": str(self.config_path), "error": str(exc)},
                    )

        self._stop_event.clear()
        self._watch_task = threading.Thread(target=_watch, name="config-watcher", daemon=True)
        self._watch_task.start()

    def stop_watching(self) -> None:
        """Stop polling the configuration file."""

        self._stop_event.set()
        if self._watch_task and self._watch_task.is_alive():
            self._watch_task.join(timeout=max(1.0, self.poll_interval))
        self._watch_task = None

    def register_callback(self, callback: Callable[[WardenSettings], Awaitable[None]]) -> None:
        """Register a coroutine callback executed after reloads."""

        self._callbacks.append(callback)

    async def get_settings(self) -> WardenSettings:
        """Return the last loaded settings, loading them if necessary."""

        if self._settings is None:
            return await self.load()
        return self._settings

    async def _notify(self, settings: WardenSettings) -> None:
        for callback in self._callbacks:
            try:
                await callback(settings)
            except Exception as exc:  # pragma: no cover - logging side effects only
                logger.exception("configuration callback failed", exc_info=exc)

    @staticmethod
    def _read_file(path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise ConfigurationError(f"Configuration file {path} does not exist")
        if path.suffix in {".yml", ".yaml"}:
            with path.open("r", encoding="utf-8") as handle:
                return yaml.safe_load(handle) or {}
        if path.suffix == ".toml":
            import tomllib  # Python 3.11+ built-in

            with path.open("rb") as handle:
                return tomllib.load(handle)
        raise ConfigurationError(f"Unsupported configuration format: {path.suffix}")


__all__ = [
    "ConfigManager",
    "WardenSettings",
    "StorageSettings",
    "SweeperSettings",
    "ResolutionSettings",
    "LoggingSettings",
]
