from __future__ import annotations

from typing import List

import pytest

from conftest import make_record
from lisa_client.services.result_store import ResultStore
from lisa_client.storage import JsonStateStore


def _minute(n: int) -> str:
    return f"2024-05-01T12:{n:02d}:00Z"


@pytest.mark.asyncio
async def test_upsert_replaces_in_place_and_persists(state_store: JsonStateStore) -> None:
    store = ResultStore(state_store)
    await store.upsert(make_record("s1"))
    await store.upsert(make_record("s1", status="completed"))

    assert len(store) == 1
    assert store.get("s1").status.value == "completed"

    reloaded_storage = JsonStateStore(state_store.path)
    await reloaded_storage.load()
    reloaded = ResultStore(reloaded_storage)
    await reloaded.load()
    assert [record.id for record in reloaded.get_all()] == ["s1"]
    assert reloaded.get("s1") == store.get("s1")


@pytest.mark.asyncio
async def test_retention_keeps_twenty_newest(state_store: JsonStateStore) -> None:
    store = ResultStore(state_store)
    evicted: List[str] = []
    store.add_removal_listener(evicted.append)

    for n in range(21):
        await store.upsert(make_record(f"rec-{n:02d}", created_at=_minute(n)))

    assert len(store) == 20
    assert "rec-00" not in store
    assert evicted == ["rec-00"]
    assert store.get_all()[0].id == "rec-20"
    assert len(state_store.get(ResultStore.STORAGE_KEY)) == 20


@pytest.mark.asyncio
async def test_newest_first_with_ties_by_id(state_store: JsonStateStore) -> None:
    store = ResultStore(state_store)
    await store.upsert(make_record("b", created_at=_minute(5)))
    await store.upsert(make_record("a", created_at=_minute(5)))
    await store.upsert(make_record("c", created_at=_minute(1)))
    await store.upsert(make_record("d", created_at=_minute(9)))

    assert [record.id for record in store.get_all()] == ["d", "a", "b", "c"]


@pytest.mark.asyncio
async def test_remove_and_remove_all(state_store: JsonStateStore) -> None:
    store = ResultStore(state_store)
    changes: List[bool] = []
    store.subscribe(lambda: changes.append(True))
    removed: List[str] = []
    store.add_removal_listener(removed.append)

    await store.upsert(make_record("s1", created_at=_minute(1)))
    await store.upsert(make_record("s2", created_at=_minute(2)))
    assert len(changes) == 2

    assert await store.remove("missing") is False
    assert len(changes) == 2

    assert await store.remove("s1") is True
    assert removed == ["s1"]
    assert "s1" not in state_store.get(ResultStore.STORAGE_KEY)

    assert await store.remove_all() == 1
    assert not store.has_results
    assert state_store.get(ResultStore.STORAGE_KEY) == {}
    assert len(changes) == 4

    assert await store.remove_all() == 0
    assert len(changes) == 4


@pytest.mark.asyncio
async def test_unsubscribe_stops_notifications(state_store: JsonStateStore) -> None:
    store = ResultStore(state_store)
    changes: List[bool] = []
    unsubscribe = store.subscribe(lambda: changes.append(True))

    await store.upsert(make_record("s1"))
    unsubscribe()
    await store.upsert(make_record("s2"))

    assert changes == [True]


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_mutation(state_store: JsonStateStore) -> None:
    store = ResultStore(state_store)

    def boom() -> None:
        raise RuntimeError("listener failed")

    store.subscribe(boom)
    await store.upsert(make_record("s1"))
    assert "s1" in store


@pytest.mark.asyncio
async def test_write_failure_keeps_memory_authoritative(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    store = ResultStore(JsonStateStore(blocker / "workspace_state.json"))

    await store.upsert(make_record("s1"))

    assert store.get("s1") is not None
    assert store.has_results


@pytest.mark.asyncio
async def test_load_skips_bad_records_and_trims_oversized_history(state_store: JsonStateStore) -> None:
    stored = {f"rec-{n:02d}": make_record(f"rec-{n:02d}", created_at=_minute(n)).to_dict() for n in range(25)}
    stored["broken"] = {"id": "broken", "status": "exploded"}
    stored["no-id"] = {"status": "completed"}
    await state_store.update(ResultStore.STORAGE_KEY, stored)

    store = ResultStore(state_store)
    changes: List[bool] = []
    store.subscribe(lambda: changes.append(True))
    await store.load()

    assert len(store) == 20
    assert [record.id for record in store.get_all()][-1] == "rec-05"
    assert "broken" not in store
    assert len(state_store.get(ResultStore.STORAGE_KEY)) == 20
    assert changes == [True]


@pytest.mark.asyncio
async def test_load_ignores_unexpected_shape(state_store: JsonStateStore) -> None:
    await state_store.update(ResultStore.STORAGE_KEY, ["not", "a", "map"])
    store = ResultStore(state_store)
    await store.load()
    assert len(store) == 0
