"""
Shared pytest fixtures and test doubles
"""
from __future__ import annotations

import asyncio
import socket
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

from lisa_client.services.models import ScanRecord
from lisa_client.storage import JsonStateStore


class RecordingNotifier:
    """Notifier double that records every message and can pick an action."""

    def __init__(self, choose: Optional[str] = None) -> None:
        self.messages: List[Tuple[str, str, Tuple[str, ...]]] = []
        self._choose = choose

    async def info(self, message: str, *actions: str) -> Optional[str]:
        return self._record("info", message, actions)

    async def warning(self, message: str, *actions: str) -> Optional[str]:
        return self._record("warning", message, actions)

    async def error(self, message: str, *actions: str) -> Optional[str]:
        return self._record("error", message, actions)

    def _record(self, level: str, message: str, actions: Tuple[str, ...]) -> Optional[str]:
        self.messages.append((level, message, actions))
        if self._choose in actions:
            return self._choose
        return None

    def texts(self, level: Optional[str] = None) -> List[str]:
        return [message for lvl, message, _ in self.messages if level is None or lvl == level]


class RecordingIndicator:
    def __init__(self) -> None:
        self.counts: List[int] = []
        self.available: List[bool] = []

    def update(self, active_scan_count: int) -> None:
        self.counts.append(active_scan_count)

    def set_results_available(self, available: bool) -> None:
        self.available.append(available)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class VirtualTime:
    """Clock + sleep pair: sleeping advances the clock instead of waiting."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def indicator() -> RecordingIndicator:
    return RecordingIndicator()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def virtual_time() -> VirtualTime:
    return VirtualTime()


@pytest.fixture
def state_store(tmp_path: Path) -> JsonStateStore:
    return JsonStateStore(tmp_path / "state.json")


def make_record(scan_id: str, created_at: str = "2024-05-01T12:00:00Z", status: str = "processing", **extra: object) -> ScanRecord:
    data = {
        "id": scan_id,
        "createdAt": created_at,
        "updatedAt": created_at,
        "title": f"Project / {scan_id}.sol",
        "status": status,
    }
    data.update(extra)
    return ScanRecord.from_dict(data)
