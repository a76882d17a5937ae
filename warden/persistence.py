"""File-backed persistence adapter for engine snapshots."""
from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict

import yaml

from warden.utils.errors import PersistenceError
from warden.utils.logging import get_logger

logger = get_logger(__name__)

_YAML_SUFFIXES = {".yml", ".yaml"}


class FileSnapshotStore:
    """Read and write snapshot dictionaries as JSON or YAML.

    The format is picked from the file suffix. Blocking file I/O runs in a
    worker thread so callers on an event loop are never stalled, and writes go
    through a temporary file so a crash never leaves a half-written snapshot.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        if self.path.suffix not in _YAML_SUFFIXES | {".json"}:
            raise PersistenceError(f"Unsupported snapshot format: {self.path.suffix}")

    def exists(self) -> bool:
        return self.path.exists()

    async def write(self, snapshot: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._write, snapshot)
        except (OSError, TypeError, ValueError, yaml.YAMLError) as exc:
            raise PersistenceError(f"Failed to write snapshot {self.path}: {exc}") from exc
        logger.info("snapshot written", extra={"path": str(self.path)})

    async def read(self) -> Dict[str, Any]:
        if not self.path.exists():
            raise PersistenceError(f"Snapshot {self.path} does not exist")
        try:
            data = await asyncio.to_thread(self._read)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise PersistenceError(f"Failed to read snapshot {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"Snapshot {self.path} does not contain a mapping")
        logger.debug("snapshot read", extra={"path": str(self.path)})
        return data

    def _write(self, snapshot: Dict[str, Any]) -> None:
        if self.path.suffix in _YAML_SUFFIXES:
            text = yaml.safe_dump(snapshot, sort_keys=False, allow_unicode=True)
        else:
            text = json.dumps(snapshot, indent=2, ensure_ascii=False)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp_path.write_text(text, encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    def _read(self) -> Any:
        text = self.path.read_text(encoding="utf-8")
        if self.path.suffix in _YAML_SUFFIXES:
            return yaml.safe_load(text)
        return json.loads(text)


__all__ = ["FileSnapshotStore"]
