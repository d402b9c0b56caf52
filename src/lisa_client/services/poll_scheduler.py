"""Per-scan polling loops.

Each active scan id owns one ``asyncio.Task`` that sleeps for the polling
interval, fetches the scan record, stores it, and stops once the scan reaches
a terminal status or the local timeout expires. ``sleep`` and ``clock`` are
injectable so tests can run the loop on virtual time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

from .models import ScanRecord, ScanStatus, summarize_issues, utc_now_iso
from .notifications import NullStatusIndicator, Notifier, StatusIndicator
from .result_store import ResultStore

logger = logging.getLogger(__name__)

SHOW_RESULTS_ACTION = "Show Results"

FetchStatus = Callable[[str], Awaitable[ScanRecord]]
Sleep = Callable[[float], Awaitable[None]]


class PollScheduler:
    def __init__(
        self,
        fetch_status: FetchStatus,
        store: ResultStore,
        notifier: Notifier,
        *,
        interval: float = 30.0,
        timeout: float = 20 * 60.0,
        status_indicator: Optional[StatusIndicator] = None,
        on_show_results: Optional[Callable[[ScanRecord], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._fetch_status = fetch_status
        self._store = store
        self._notifier = notifier
        self._interval = interval
        self._timeout = timeout
        self._indicator = status_indicator or NullStatusIndicator()
        self._on_show_results = on_show_results
        self._clock = clock
        self._sleep = sleep
        self._tasks: Dict[str, asyncio.Task[None]] = {}
        self._finishing: set[asyncio.Task[None]] = set()

        store.add_removal_listener(self.stop)

    # ------------------------------------------------------------------ control

    @property
    def active_ids(self) -> List[str]:
        return list(self._tasks)

    def is_active(self, scan_id: str) -> bool:
        return scan_id in self._tasks

    def start(self, scan_id: str) -> bool:
        """Begin polling ``scan_id``; a second call for an active id is a no-op."""
        if scan_id in self._tasks:
            return False
        task = asyncio.get_running_loop().create_task(
            self._run(scan_id, self._clock()),
            name=f"lisa-poll-{scan_id}",
        )
        self._tasks[scan_id] = task
        self._update_status()
        logger.debug("Started polling scan %s", scan_id)
        return True

    def stop(self, scan_id: str) -> bool:
        """Cancel the pending wait for ``scan_id``. Never raises."""
        task = self._tasks.pop(scan_id, None)
        if task is None:
            return False
        if task is not _current_task():
            task.cancel()
        self._update_status()
        logger.debug("Stopped polling scan %s", scan_id)
        return True

    def stop_all(self) -> None:
        for scan_id in list(self._tasks):
            self.stop(scan_id)

    def resume(self) -> List[str]:
        """Restart polling for stored scans that have not finished."""
        resumed = []
        for record in self._store.get_all():
            if not record.is_terminal and self.start(record.id):
                resumed.append(record.id)
        return resumed

    async def join(self) -> None:
        """Wait until every polling loop, including completion handling, has ended."""
        while self._tasks or self._finishing:
            pending = list(self._tasks.values()) + list(self._finishing)
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._tasks.values()) + list(self._finishing)
        self.stop_all()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------ loop

    async def _run(self, scan_id: str, started_at: float) -> None:
        while True:
            await self._sleep(self._interval)
            if not self.is_active(scan_id):
                return

            if self._clock() - started_at > self._timeout:
                self._finish(scan_id)
                await self._handle_timeout(scan_id)
                return

            try:
                record = await self._fetch_status(scan_id)
            except Exception as exc:
                logger.warning("Polling error for scan %s: %s", scan_id, exc)
                continue

            if not self.is_active(scan_id):
                logger.debug("Dropping late status for scan %s", scan_id)
                return

            await self._store.upsert(record)

            if record.is_terminal:
                self._finish(scan_id)
                await self._handle_completion(record)
                return

    def _finish(self, scan_id: str) -> None:
        task = self._tasks.pop(scan_id, None)
        if task is not None:
            # keep join() waiting on completion handling
            self._finishing.add(task)
            task.add_done_callback(self._finishing.discard)
        self._update_status()

    async def _handle_timeout(self, scan_id: str) -> None:
        record = self._store.get(scan_id)
        if record is None or record.is_terminal:
            return
        minutes = round(self._timeout / 60)
        record.status = ScanStatus.failed
        record.code_summary = f"Scan timed out after {minutes} minutes"
        record.updated_at = utc_now_iso()
        await self._store.upsert(record)
        await self._notifier.warning(f'Scan "{record.title}" timed out after {minutes} minutes')

    async def _handle_completion(self, record: ScanRecord) -> None:
        if record.status is ScanStatus.completed:
            action = await self._notifier.info(summarize_issues(record.result), SHOW_RESULTS_ACTION)
            if action == SHOW_RESULTS_ACTION and self._on_show_results is not None:
                self._on_show_results(record)
        elif record.status is ScanStatus.failed:
            await self._notifier.error("Scan failed: Check the scan results for details")

        self._indicator.set_results_available(True)
        self._update_status()

    def _update_status(self) -> None:
        self._indicator.update(len(self._tasks))


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
