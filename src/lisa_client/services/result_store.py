from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional

from ..storage import JsonStateStore
from .models import ScanRecord
from .notifications import ChangeEmitter

logger = logging.getLogger(__name__)

RemovalListener = Callable[[str], None]


class ResultStore:
    """Scan history keyed by scan id, mirrored to workspace state.

    The in-memory map stays authoritative when persistence fails; write and
    read errors are logged and the session carries on unpersisted.
    """

    STORAGE_KEY = "agentlisa.scanResults"
    MAX_STORED_RESULTS = 20

    def __init__(self, storage: JsonStateStore, *, max_results: int = MAX_STORED_RESULTS) -> None:
        self._storage = storage
        self._max_results = max_results
        self._records: Dict[str, ScanRecord] = {}
        self._removal_listeners: List[RemovalListener] = []
        self.changes = ChangeEmitter()

    # ------------------------------------------------------------------ observers

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self.changes.subscribe(listener)

    def add_removal_listener(self, listener: RemovalListener) -> None:
        """Called with each id dropped by removal or retention, before persisting."""
        self._removal_listeners.append(listener)

    # ------------------------------------------------------------------ reads

    def get_all(self) -> List[ScanRecord]:
        return sorted(self._records.values(), key=_newest_first)

    def get(self, scan_id: str) -> Optional[ScanRecord]:
        return self._records.get(scan_id)

    def __contains__(self, scan_id: object) -> bool:
        return scan_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    @property
    def has_results(self) -> bool:
        return bool(self._records)

    # ------------------------------------------------------------------ writes

    async def load(self) -> None:
        try:
            stored = self._storage.get(self.STORAGE_KEY) or {}
        except Exception:
            logger.exception("Error loading persisted scan results")
            return
        if not isinstance(stored, dict):
            logger.warning("Persisted scan results have an unexpected shape; ignoring them")
            return

        for scan_id, data in stored.items():
            try:
                record = ScanRecord.from_dict(data)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable persisted scan %s: %s", scan_id, exc)
                continue
            self._records[record.id] = record
        logger.info("Loaded %d persisted scan results", len(self._records))

        # stores written before the retention cap existed may hold more
        if self._enforce_retention():
            await self._persist()
            self.changes.emit()

    async def upsert(self, record: ScanRecord) -> None:
        self._records[record.id] = record
        self._enforce_retention()
        await self._persist()
        self.changes.emit()

    async def remove(self, scan_id: str) -> bool:
        if scan_id not in self._records:
            return False
        del self._records[scan_id]
        self._notify_removed([scan_id])
        await self._persist()
        self.changes.emit()
        logger.info("Removed scan result: %s", scan_id)
        return True

    async def remove_all(self) -> int:
        removed = list(self._records)
        if not removed:
            return 0
        self._records.clear()
        self._notify_removed(removed)
        await self._persist()
        self.changes.emit()
        logger.info("Removed all %d scan results", len(removed))
        return len(removed)

    def _enforce_retention(self) -> bool:
        if len(self._records) <= self._max_results:
            return False
        ordered = sorted(self._records.values(), key=_newest_first)
        evicted = [record.id for record in ordered[self._max_results:]]
        self._records = {record.id: record for record in ordered[: self._max_results]}
        self._notify_removed(evicted)
        logger.info("Cleaned up old scan results. Kept %d most recent results.", len(self._records))
        return True

    def _notify_removed(self, scan_ids: Iterable[str]) -> None:
        for scan_id in scan_ids:
            for listener in self._removal_listeners:
                try:
                    listener(scan_id)
                except Exception:
                    logger.exception("Removal listener failed for scan %s", scan_id)

    async def _persist(self) -> None:
        payload = {scan_id: record.to_dict() for scan_id, record in self._records.items()}
        try:
            await self._storage.update(self.STORAGE_KEY, payload)
        except Exception as exc:
            logger.error("Error saving scan results to workspace state: %s", exc)
            return
        logger.debug("Saved %d scan results to workspace state", len(payload))


def _newest_first(record: ScanRecord) -> tuple:
    # negate the timestamp so ties fall back to ascending id
    return (-record.created_at_datetime.timestamp(), record.id)
