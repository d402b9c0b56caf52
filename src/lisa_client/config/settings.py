from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from ..auth.errors import ConfigurationError

DEFAULT_BASE_URL = "https://agentlisa.ai"
DEFAULT_POLLING_INTERVAL_MS = 30_000
DEFAULT_POLLING_TIMEOUT_MS = 1_200_000
DEFAULT_CALLBACK_PORTS: Tuple[int, ...] = (7154, 47154)
DEFAULT_REQUEST_TIMEOUT = 30.0


@dataclass
class Settings:
    """Runtime configuration consumed by the auth and scan services.

    Durations are kept in seconds; the environment expresses the polling
    values in milliseconds to match the editor settings they replace.
    """

    base_url: str = DEFAULT_BASE_URL
    client_id: Optional[str] = None
    polling_interval: float = DEFAULT_POLLING_INTERVAL_MS / 1000
    polling_timeout: float = DEFAULT_POLLING_TIMEOUT_MS / 1000
    callback_ports: Tuple[int, ...] = DEFAULT_CALLBACK_PORTS
    state_dir: Path = field(default_factory=lambda: Path.home() / ".agentlisa")
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")

    @property
    def global_state_path(self) -> Path:
        return self.state_dir / "global_state.json"

    @staticmethod
    def workspace_state_path(workspace_root: Path) -> Path:
        return workspace_root / ".agentlisa" / "workspace_state.json"

    def require_client_id(self) -> str:
        if not self.client_id:
            raise ConfigurationError(
                "CLIENT_ID is not defined. Set the CLIENT_ID environment variable."
            )
        return self.client_id

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from the process environment (and a local .env file)."""
        if environ is None:
            load_dotenv()
            environ = os.environ

        base_url = environ.get("LISA_BASE_URL") or environ.get("AGENTLISA_URL") or DEFAULT_BASE_URL
        state_dir = environ.get("LISA_STATE_DIR")
        return cls(
            base_url=base_url,
            client_id=environ.get("CLIENT_ID") or None,
            polling_interval=_millis(environ, "LISA_POLLING_INTERVAL", DEFAULT_POLLING_INTERVAL_MS),
            polling_timeout=_millis(environ, "LISA_POLLING_TIMEOUT", DEFAULT_POLLING_TIMEOUT_MS),
            callback_ports=_ports(environ, "LISA_CALLBACK_PORTS"),
            state_dir=Path(state_dir).expanduser() if state_dir else Path.home() / ".agentlisa",
            request_timeout=_seconds(environ, "LISA_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
        )


def _millis(environ: Mapping[str, str], name: str, default: int) -> float:
    raw = environ.get(name)
    if not raw:
        return default / 1000
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer number of milliseconds, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value / 1000


def _seconds(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number of seconds, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _ports(environ: Mapping[str, str], name: str) -> Tuple[int, ...]:
    raw = environ.get(name)
    if not raw:
        return DEFAULT_CALLBACK_PORTS
    try:
        ports = tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a comma separated list of ports, got {raw!r}") from exc
    if not ports:
        raise ConfigurationError(f"{name} must list at least one port")
    return ports
