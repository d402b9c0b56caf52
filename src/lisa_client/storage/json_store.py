from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class JsonStateStore:
    """Key/value state persisted as a single JSON document.

    Reads are served from memory after :meth:`load`; every :meth:`update`
    rewrites the whole file atomically from a worker thread so the event loop
    never blocks on disk I/O.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._data: Dict[str, Any] = {}
        self._write_lock = asyncio.Lock()

    async def load(self) -> None:
        self._data = await asyncio.to_thread(self._read)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def keys(self) -> list[str]:
        return list(self._data)

    async def update(self, key: str, value: Any) -> None:
        """Set ``key`` to ``value`` (``None`` deletes it) and flush to disk.

        Raises:
            OSError: If the file cannot be written. The in-memory value is
                updated regardless.
        """
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value
        snapshot = json.dumps(self._data, indent=2)
        async with self._write_lock:
            await asyncio.to_thread(self._write, snapshot)

    def _read(self) -> Dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("Unable to read state file %s: %s", self.path, exc)
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("State file %s is corrupted (%s); starting empty", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("State file %s does not hold an object; starting empty", self.path)
            return {}
        return data

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        tmp_path: Optional[Path] = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
            tmp_path = None
        finally:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()
