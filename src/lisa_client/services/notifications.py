from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class Notifier(Protocol):
    """User-facing messages. Each call may offer actions and returns the one picked."""

    async def info(self, message: str, *actions: str) -> Optional[str]:
        ...

    async def warning(self, message: str, *actions: str) -> Optional[str]:
        ...

    async def error(self, message: str, *actions: str) -> Optional[str]:
        ...


class StatusIndicator(Protocol):
    def update(self, active_scan_count: int) -> None:
        ...

    def set_results_available(self, available: bool) -> None:
        ...


class LoggingNotifier:
    """Notifier used when no UI is attached: messages only reach the log."""

    async def info(self, message: str, *actions: str) -> Optional[str]:
        logger.info(message)
        return None

    async def warning(self, message: str, *actions: str) -> Optional[str]:
        logger.warning(message)
        return None

    async def error(self, message: str, *actions: str) -> Optional[str]:
        logger.error(message)
        return None


class NullStatusIndicator:
    def update(self, active_scan_count: int) -> None:
        logger.debug(format_status_text(active_scan_count) or "LISA: idle")

    def set_results_available(self, available: bool) -> None:
        pass


def format_status_text(active_scan_count: int) -> str:
    """Status line for running scans; empty when nothing is running."""
    if active_scan_count <= 0:
        return ""
    plural = "s" if active_scan_count > 1 else ""
    return f"LISA: {active_scan_count} scan{plural} running"


class ChangeEmitter:
    """Minimal observer registry for "something changed" notifications."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Change listener %r failed", listener)
