"""HTTP client for the AgentLISA scan API.

This service provides methods to interact with the scan API endpoints:
- POST /api/v1/scan - Submit files for a new scan
- GET /api/v1/scan/{scan_id} - Fetch the current scan record

Scans run remotely in the background; the create call returns immediately
with a scan id that can be polled for status and results.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .models import ScanRecord, ScanRequest, ScanStartResponse

logger = logging.getLogger(__name__)


class ScanApiClientError(Exception):
    """Base exception for scan API client errors."""
    pass


class ScanApiConnectionError(ScanApiClientError):
    """Raised when unable to connect to the API."""
    pass


class ScanApiRequestError(ScanApiClientError):
    """Raised when the API returns an error response."""
    def __init__(self, message: str, status_code: int, detail: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class ScanRejectedError(ScanApiClientError):
    """Raised when the API answers ``success: false`` to a scan submission."""
    def __init__(self, message: str):
        super().__init__(f"Scan failed: {message}")
        self.server_message = message


class ScanApiClient:
    """Async HTTP client for the AgentLISA scan API.

    Example usage:
        async with ScanApiClient("https://agentlisa.ai") as client:
            started = await client.create_scan(request, access_token)
            record = await client.get_scan(started.scan_id, access_token)
    """

    DEFAULT_TIMEOUT = 30.0  # seconds

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the scan API client.

        Args:
            base_url: Base URL of the AgentLISA service.
            timeout: Request timeout in seconds.
            http_client: Optional preconfigured client (tests pass one with a
                mock transport). It is not closed by :meth:`aclose`.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ScanApiClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    def scan_url(self, scan_id: str) -> str:
        """Link to the scan on the AgentLISA website."""
        return f"{self.base_url}/scan/{scan_id}"

    async def create_scan(self, request: ScanRequest, access_token: str) -> ScanStartResponse:
        """Submit files for scanning.

        Returns:
            The parsed start response carrying the new scan id.

        Raises:
            ScanApiConnectionError: If unable to connect to the API.
            ScanApiRequestError: If the API returns an error response.
            ScanRejectedError: If the API declines the scan (``success: false``).
        """
        response = await self._send(
            "POST",
            f"{self.base_url}/api/v1/scan",
            access_token,
            json=request.to_dict(),
        )
        if response.status_code >= 400:
            raise self._request_error("Failed to start scan", response)

        data = self._json(response)
        if not data.get("success"):
            raise ScanRejectedError(str(data.get("message") or "Unknown error"))
        try:
            return ScanStartResponse.from_dict(data)
        except (KeyError, ValueError) as exc:
            raise ScanApiRequestError(
                f"Unexpected scan start response: {exc}",
                status_code=response.status_code,
            ) from exc

    async def get_scan(self, scan_id: str, access_token: str) -> ScanRecord:
        """Fetch the current record of a scan.

        Raises:
            ScanApiConnectionError: If unable to connect to the API.
            ScanApiRequestError: If the API returns an error response or a
                malformed record.
        """
        response = await self._send("GET", f"{self.base_url}/api/v1/scan/{scan_id}", access_token)

        if response.status_code == 404:
            raise ScanApiRequestError(
                f"Scan not found: {scan_id}",
                status_code=404,
            )
        if response.status_code >= 400:
            raise self._request_error("Failed to get scan status", response)

        try:
            return ScanRecord.from_dict(self._json(response))
        except (KeyError, ValueError, TypeError) as exc:
            raise ScanApiRequestError(
                f"Unexpected scan record for {scan_id}: {exc}",
                status_code=response.status_code,
            ) from exc

    async def _send(
        self,
        method: str,
        url: str,
        access_token: str,
        *,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            return await self._get_client().request(method, url, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            raise ScanApiConnectionError(
                f"Request to scan API timed out: {exc}"
            ) from exc
        except httpx.TransportError as exc:
            raise ScanApiConnectionError(
                f"Unable to connect to scan API at {self.base_url}: {exc}"
            ) from exc

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise ScanApiRequestError(
                "Scan API returned invalid JSON",
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise ScanApiRequestError(
                "Scan API returned an unexpected payload",
                status_code=response.status_code,
            )
        return data

    @staticmethod
    def _request_error(prefix: str, response: httpx.Response) -> ScanApiRequestError:
        detail = None
        try:
            error_data = response.json()
            if isinstance(error_data, dict):
                detail = error_data.get("message") or error_data.get("detail")
        except ValueError:
            pass

        message = f"{prefix}: HTTP {response.status_code}"
        if detail:
            message = f"{message} ({detail})"
        return ScanApiRequestError(message, status_code=response.status_code, detail=detail)
