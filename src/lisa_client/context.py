"""Composition root: builds and owns every long-lived client component."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, TypeVar

import httpx

from .auth import CredentialStore, OAuthAuthenticator
from .auth.authenticator import BrowserOpener
from .config import Settings
from .services.models import ScanRecord
from .services.notifications import LoggingNotifier, Notifier, NullStatusIndicator, StatusIndicator
from .services.poll_scheduler import PollScheduler
from .services.result_store import ResultStore
from .services.scan_api_client import ScanApiClient
from .services.scan_service import ScanService
from .storage import JsonStateStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ContextNotInitializedError(RuntimeError):
    """A component was requested before :meth:`ClientContext.init` completed."""


class ClientContext:
    """Explicit init/dispose lifecycle around the auth and scan services.

    Usage:
        async with ClientContext(Settings.from_env(), workspace_root=Path.cwd()) as ctx:
            scan_id = await ctx.scans.start_scan([Path("Token.sol")])
            await ctx.scheduler.join()
    """

    def __init__(
        self,
        settings: Settings,
        *,
        workspace_root: Optional[Path] = None,
        notifier: Optional[Notifier] = None,
        status_indicator: Optional[StatusIndicator] = None,
        open_browser: Optional[BrowserOpener] = None,
        on_show_results: Optional[Callable[[ScanRecord], None]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self.workspace_root = (workspace_root or Path.cwd()).resolve()
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.status_indicator: StatusIndicator = status_indicator or NullStatusIndicator()
        self._open_browser = open_browser
        self._on_show_results = on_show_results
        self._http_client = http_client

        self.global_state = JsonStateStore(settings.global_state_path)
        self.workspace_state = JsonStateStore(Settings.workspace_state_path(self.workspace_root))

        self._authenticator: Optional[OAuthAuthenticator] = None
        self._api_client: Optional[ScanApiClient] = None
        self._results: Optional[ResultStore] = None
        self._scheduler: Optional[PollScheduler] = None
        self._scans: Optional[ScanService] = None
        self._initialized = False

    async def init(self) -> "ClientContext":
        if self._initialized:
            return self
        client_id = self.settings.require_client_id()

        await self.global_state.load()
        await self.workspace_state.load()

        authenticator = OAuthAuthenticator(
            base_url=self.settings.base_url,
            client_id=client_id,
            credential_store=CredentialStore(self.global_state),
            notifier=self.notifier,
            callback_ports=self.settings.callback_ports,
            http_client=self._http_client,
            request_timeout=self.settings.request_timeout,
            open_browser=self._open_browser,
        )
        authenticator.load()

        api_client = ScanApiClient(
            self.settings.base_url,
            self.settings.request_timeout,
            http_client=self._http_client,
        )
        results = ResultStore(self.workspace_state)
        await results.load()

        scheduler = PollScheduler(
            self._fetch_status,
            results,
            self.notifier,
            interval=self.settings.polling_interval,
            timeout=self.settings.polling_timeout,
            status_indicator=self.status_indicator,
            on_show_results=self._on_show_results,
        )
        self._authenticator = authenticator
        self._api_client = api_client
        self._results = results
        self._scheduler = scheduler
        self._scans = ScanService(
            authenticator,
            api_client,
            results,
            scheduler,
            self.notifier,
            workspace_root=self.workspace_root,
            status_indicator=self.status_indicator,
        )
        self.status_indicator.set_results_available(results.has_results)
        self._initialized = True
        logger.info("AgentLISA client initialized for workspace %s", self.workspace_root)
        return self

    @property
    def authenticator(self) -> OAuthAuthenticator:
        return _require(self._authenticator, "authenticator")

    @property
    def api_client(self) -> ScanApiClient:
        return _require(self._api_client, "api_client")

    @property
    def results(self) -> ResultStore:
        return _require(self._results, "results")

    @property
    def scheduler(self) -> PollScheduler:
        return _require(self._scheduler, "scheduler")

    @property
    def scans(self) -> ScanService:
        return _require(self._scans, "scans")

    async def _fetch_status(self, scan_id: str) -> ScanRecord:
        return await self.scans.fetch_scan_status(scan_id)

    async def dispose(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.aclose()
        if self._authenticator is not None:
            await self._authenticator.aclose()
        if self._api_client is not None:
            await self._api_client.aclose()
        self._initialized = False

    async def __aenter__(self) -> "ClientContext":
        return await self.init()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.dispose()


def _require(component: Optional[T], name: str) -> T:
    if component is None:
        raise ContextNotInitializedError(f"ClientContext.{name} is not available until init() has completed")
    return component
