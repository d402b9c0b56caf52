from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from lisa_client.services.models import ScanFile, ScanRequest, ScanStatus
from lisa_client.services.scan_api_client import (
    ScanApiClient,
    ScanApiConnectionError,
    ScanApiRequestError,
    ScanRejectedError,
)

BASE_URL = "https://lisa.test"


def _client(handler, seen: List[httpx.Request]) -> httpx.AsyncClient:
    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(record))


def _request() -> ScanRequest:
    return ScanRequest(
        title="ProjectX / Token.sol",
        files=[ScanFile(path="contracts/Token.sol", content="contract Token {}")],
        metadata={"projectName": "ProjectX"},
    )


@pytest.mark.asyncio
async def test_create_scan_posts_request_with_bearer_token() -> None:
    seen: List[httpx.Request] = []
    handler = lambda request: httpx.Response(
        200,
        json={"success": True, "scanId": "s1", "chatId": "c1", "status": "processing", "message": "queued"},
    )
    async with _client(handler, seen) as http_client:
        api = ScanApiClient(BASE_URL + "/", http_client=http_client)
        started = await api.create_scan(_request(), "token-1")

    assert started.scan_id == "s1"
    assert started.chat_id == "c1"
    assert started.status is ScanStatus.processing
    sent = seen[0]
    assert sent.method == "POST"
    assert str(sent.url) == f"{BASE_URL}/api/v1/scan"
    assert sent.headers["Authorization"] == "Bearer token-1"
    body = json.loads(sent.content)
    assert body["type"] == "VSCode"
    assert body["files"] == [{"path": "contracts/Token.sol", "content": "contract Token {}"}]
    assert body["metadata"] == {"projectName": "ProjectX"}


@pytest.mark.asyncio
async def test_create_scan_surfaces_server_rejection() -> None:
    handler = lambda request: httpx.Response(200, json={"success": False, "message": "Quota exceeded"})
    async with _client(handler, []) as http_client:
        api = ScanApiClient(BASE_URL, http_client=http_client)
        with pytest.raises(ScanRejectedError) as excinfo:
            await api.create_scan(_request(), "token-1")

    assert str(excinfo.value) == "Scan failed: Quota exceeded"
    assert excinfo.value.server_message == "Quota exceeded"


@pytest.mark.asyncio
async def test_create_scan_http_error_carries_detail() -> None:
    handler = lambda request: httpx.Response(401, json={"message": "Unauthorized"})
    async with _client(handler, []) as http_client:
        api = ScanApiClient(BASE_URL, http_client=http_client)
        with pytest.raises(ScanApiRequestError) as excinfo:
            await api.create_scan(_request(), "token-1")

    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "Unauthorized"
    assert "HTTP 401" in str(excinfo.value)


@pytest.mark.asyncio
async def test_get_scan_parses_record() -> None:
    seen: List[httpx.Request] = []
    handler = lambda request: httpx.Response(
        200,
        json={
            "id": "s1",
            "status": "completed",
            "createdAt": "2024-05-01T12:00:00Z",
            "result": [{"id": "i1", "severity": "HIGH", "title": "Reentrancy", "affectedFiles": []}],
        },
    )
    async with _client(handler, seen) as http_client:
        api = ScanApiClient(BASE_URL, http_client=http_client)
        record = await api.get_scan("s1", "token-1")

    assert str(seen[0].url) == f"{BASE_URL}/api/v1/scan/s1"
    assert seen[0].method == "GET"
    assert record.status is ScanStatus.completed
    assert [issue.severity for issue in record.result] == ["HIGH"]


@pytest.mark.asyncio
async def test_get_scan_not_found() -> None:
    async with _client(lambda request: httpx.Response(404), []) as http_client:
        api = ScanApiClient(BASE_URL, http_client=http_client)
        with pytest.raises(ScanApiRequestError, match="Scan not found: s9") as excinfo:
            await api.get_scan("s9", "token-1")
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_get_scan_rejects_malformed_record() -> None:
    handler = lambda request: httpx.Response(200, json={"id": "s1", "status": "exploded"})
    async with _client(handler, []) as http_client:
        api = ScanApiClient(BASE_URL, http_client=http_client)
        with pytest.raises(ScanApiRequestError, match="Unexpected scan record"):
            await api.get_scan("s1", "token-1")


@pytest.mark.asyncio
async def test_transport_failure_becomes_connection_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler, []) as http_client:
        api = ScanApiClient(BASE_URL, http_client=http_client)
        with pytest.raises(ScanApiConnectionError):
            await api.get_scan("s1", "token-1")


@pytest.mark.asyncio
async def test_injected_client_is_left_open() -> None:
    async with _client(lambda request: httpx.Response(404), []) as http_client:
        api = ScanApiClient(BASE_URL, http_client=http_client)
        await api.aclose()
        assert not http_client.is_closed


def test_scan_url() -> None:
    assert ScanApiClient("https://agentlisa.ai/").scan_url("s1") == "https://agentlisa.ai/scan/s1"
