"""Entrypoint wiring the engine from configuration."""
from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from warden.core.config import ConfigManager, WardenSettings
from warden.permissions.service import PermissionService
from warden.permissions.sweeper import ExpirySweeper
from warden.persistence import FileSnapshotStore
from warden.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Everything a host needs, built once and passed explicitly."""

    settings: WardenSettings
    service: PermissionService
    store: FileSnapshotStore
    sweeper: Optional[ExpirySweeper] = None
    config: Optional[ConfigManager] = None
    sweeping: bool = True
    _closed: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    async def apply_settings(self, settings: WardenSettings) -> None:
        """Apply reloaded settings to the running engine.

        Resolution depth and the sweeper schedule take effect immediately.
        Storage, seeding and the default group only apply to a new runtime.
        """

        self.service.resolver.max_depth = settings.resolution.max_depth
        wanted = self.sweeping and settings.sweeper.enabled
        current = self.sweeper
        if current is not None and (not wanted or current.interval != settings.sweeper.interval):
            current.stop()
            self.sweeper = None
        if wanted and self.sweeper is None and not self._closed.is_set():
            self.sweeper = ExpirySweeper(self.service, settings.sweeper.interval)
            self.sweeper.start()
        self.settings = settings
        logger.info(
            "settings applied",
            extra={
                "max_depth": settings.resolution.max_depth,
                "sweeper": self.sweeper.interval if self.sweeper is not None else None,
            },
        )

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until :meth:`close` is called or ``timeout`` elapses."""

        return self._closed.wait(timeout)

    def close(self) -> None:
        self._closed.set()
        if self.config is not None:
            self.config.stop_watching()
        if self.sweeper is not None:
            self.sweeper.stop()


async def build_runtime(
    settings: WardenSettings,
    *,
    start_sweeper: bool = True,
    snapshot_path: Optional[Path] = None,
) -> Runtime:
    """Create a service, restore it from the configured snapshot if present."""

    service = PermissionService.from_settings(settings)
    store = FileSnapshotStore(snapshot_path or settings.storage.path)
    if store.exists():
        await service.load_from(store)
    sweeper = None
    if start_sweeper and settings.sweeper.enabled:
        sweeper = ExpirySweeper(service, settings.sweeper.interval)
        sweeper.start()
    return Runtime(settings=settings, service=service, store=store, sweeper=sweeper, sweeping=start_sweeper)


async def _initialise_runtime(config_path: Optional[Path] = None) -> Runtime:
    manager = ConfigManager(config_path)
    settings = await manager.load()
    configure_logging(level=settings.logging.level, log_dir=settings.logging.log_dir)
    runtime = await build_runtime(settings)
    runtime.config = manager
    manager.register_callback(runtime.apply_settings)
    manager.start_watching()
    logger.info("permission engine ready", extra={"path": str(runtime.store.path)})
    return runtime


def main() -> None:
    """Start the engine and keep sweeping until interrupted."""

    runtime = asyncio.run(_initialise_runtime())
    try:
        runtime.wait()
    except KeyboardInterrupt:  # pragma: no cover - interactive only
        pass
    finally:
        runtime.close()
        asyncio.run(runtime.service.save_to(runtime.store))


if __name__ == "__main__":
    main()
