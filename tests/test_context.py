from __future__ import annotations

import json

import httpx
import pytest

from conftest import make_record
from lisa_client.auth import ConfigurationError, TokenSet
from lisa_client.config import Settings
from lisa_client.context import ClientContext, ContextNotInitializedError


def _settings(tmp_path, client_id="client-1") -> Settings:
    return Settings(client_id=client_id, state_dir=tmp_path / "global")


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))


@pytest.mark.asyncio
async def test_init_restores_credentials_and_results(tmp_path, notifier, indicator, fake_clock):
    workspace = tmp_path / "ws"
    state_dir = tmp_path / "global"
    state_dir.mkdir()
    (state_dir / "global_state.json").write_text(
        json.dumps({"agentlisa.auth": TokenSet("a", 4_000_000_000.0, "r").to_dict()}),
        encoding="utf-8",
    )
    workspace_state = Settings.workspace_state_path(workspace)
    workspace_state.parent.mkdir(parents=True)
    workspace_state.write_text(
        json.dumps({"agentlisa.scanResults": {"s1": make_record("s1", status="completed").to_dict()}}),
        encoding="utf-8",
    )

    async with _http_client() as http_client:
        async with ClientContext(
            _settings(tmp_path),
            workspace_root=workspace,
            notifier=notifier,
            status_indicator=indicator,
            http_client=http_client,
        ) as ctx:
            assert ctx.authenticator.tokens.access_token == "a"
            assert [record.id for record in ctx.results.get_all()] == ["s1"]
            assert ctx.scheduler.active_ids == []
            assert ctx.scans.scan_url("s1") == "https://agentlisa.ai/scan/s1"

    assert indicator.available == [True]


@pytest.mark.asyncio
async def test_init_without_client_id_fails(tmp_path):
    ctx = ClientContext(_settings(tmp_path, client_id=None), workspace_root=tmp_path)
    with pytest.raises(ConfigurationError):
        await ctx.init()
    with pytest.raises(ContextNotInitializedError):
        ctx.authenticator


def test_components_are_unavailable_before_init(tmp_path):
    ctx = ClientContext(_settings(tmp_path), workspace_root=tmp_path)
    with pytest.raises(ContextNotInitializedError, match="ClientContext.scans"):
        ctx.scans
    with pytest.raises(ContextNotInitializedError, match="ClientContext.scheduler"):
        ctx.scheduler
