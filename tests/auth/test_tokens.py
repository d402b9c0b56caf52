from __future__ import annotations

import json

import pytest

from lisa_client.auth import CredentialStore, TokenSet
from lisa_client.storage import JsonStateStore


def test_from_token_response_computes_absolute_expiry() -> None:
    tokens = TokenSet.from_token_response(
        {"access_token": "a", "refresh_token": "r", "expires_in": 3600},
        now=1000.0,
    )
    assert tokens.access_token == "a"
    assert tokens.refresh_token == "r"
    assert tokens.expires_at == 4600.0


def test_from_token_response_keeps_previous_refresh_token() -> None:
    tokens = TokenSet.from_token_response({"access_token": "a", "expires_in": 60}, now=0.0, previous_refresh_token="old")
    assert tokens.refresh_token == "old"


@pytest.mark.parametrize(
    "payload",
    [
        {"expires_in": 60},
        {"access_token": "a"},
        {"access_token": "a", "expires_in": "soon"},
    ],
)
def test_from_token_response_rejects_incomplete_payloads(payload) -> None:
    with pytest.raises(ValueError):
        TokenSet.from_token_response(payload, now=0.0)


def test_validity_is_strictly_before_expiry() -> None:
    tokens = TokenSet(access_token="a", expires_at=100.0)
    assert tokens.is_valid(99.999)
    assert not tokens.is_valid(100.0)
    assert not tokens.is_valid(150.0)


def test_persisted_shape_uses_milliseconds() -> None:
    tokens = TokenSet(access_token="a", expires_at=1234.5, refresh_token="r")
    assert tokens.to_dict() == {"accessToken": "a", "expiresAt": 1234500, "refreshToken": "r"}
    assert TokenSet.from_dict(tokens.to_dict()) == tokens


def test_repr_hides_secrets() -> None:
    text = repr(TokenSet(access_token="secret-access", expires_at=1.0, refresh_token="secret-refresh"))
    assert "secret" not in text


@pytest.mark.asyncio
async def test_credential_store_round_trip(state_store: JsonStateStore) -> None:
    await state_store.load()
    store = CredentialStore(state_store)
    assert store.load() is None

    tokens = TokenSet(access_token="a", expires_at=2000.0, refresh_token="r")
    await store.save(tokens)
    assert store.load() == tokens
    assert json.loads(state_store.path.read_text(encoding="utf-8"))["agentlisa.auth"]["accessToken"] == "a"

    await store.clear()
    assert store.load() is None


@pytest.mark.asyncio
async def test_credential_store_ignores_malformed_record(state_store: JsonStateStore) -> None:
    await state_store.load()
    await state_store.update(CredentialStore.STORAGE_KEY, {"refreshToken": "r"})

    assert CredentialStore(state_store).load() is None


@pytest.mark.asyncio
async def test_credential_store_swallows_write_errors(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    store = CredentialStore(JsonStateStore(blocker / "global_state.json"))

    await store.save(TokenSet(access_token="a", expires_at=1.0))
    await store.clear()
