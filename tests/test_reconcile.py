from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from studio.drafts import DraftStore
from studio.errors import PersistenceError
from studio.models import COMPLETED, PENDING, RENDERING, PersistedShot
from studio.reconcile import ReconciliationEngine, local_clip_id, reconcile
from studio.run_logger import EventLog

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _ago(minutes: float) -> str:
    return (NOW - timedelta(minutes=minutes)).isoformat().replace("+00:00", "Z")


class FailingStore:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def upsert(self, record, collection="clips"):
        self.calls.append("upsert")
        raise PersistenceError("store offline")

    async def list(self, collection="clips", status=None, limit=200):
        self.calls.append("list")
        raise PersistenceError("store offline")

    async def delete(self, record_id, collection="clips"):
        self.calls.append("delete")
        raise PersistenceError("store offline")


class GarbledStore:
    """Store whose responses fail to decode, as a proxy error page would."""

    async def upsert(self, record, collection="clips"):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")

    async def delete(self, record_id, collection="clips"):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")


def _drafts(tmp_path) -> DraftStore:
    return DraftStore(str(tmp_path / "drafts.json"))


def _ready_shot(drafts: DraftStore):
    shot = drafts.create("scene-1", keyframe_ref="https://x/k.png", name="Intro", speaker_ref="charA")
    drafts.update_block(shot.local_id, shot.dialogue_blocks[0].id, text="Hello")
    drafts.transition(shot.local_id, RENDERING)
    return drafts.require(shot.local_id)


def test_recency_window():
    old = PersistedShot(id="local_old", local_id="old", status=RENDERING, created_at=_ago(10))
    fresh = PersistedShot(id="local_new", local_id="new", status=RENDERING, created_at=_ago(1))
    merged = reconcile([], [old, fresh], now=NOW, window_sec=300)
    assert [e.id for e in merged] == ["local_new"]


def test_only_transient_local_entries_survive():
    done = PersistedShot(id="local_done", local_id="done", status=COMPLETED, created_at=_ago(1))
    pending = PersistedShot(id="local_p", local_id="p", status=PENDING, created_at=_ago(2))
    merged = reconcile([], [done, pending], now=NOW, window_sec=300)
    assert [e.id for e in merged] == ["local_p"]


def test_remote_is_authoritative_and_sorted():
    remote_a = PersistedShot(id="r1", local_id="s1", status=COMPLETED, name="remote", created_at=_ago(3))
    remote_b = PersistedShot(id="r2", status=COMPLETED, created_at=_ago(30))
    stale_copy = PersistedShot(id="r1", status=RENDERING, name="stale", created_at=_ago(3))
    optimistic = PersistedShot(id="local_s1", local_id="s1", status=RENDERING, created_at=_ago(1))
    in_flight = PersistedShot(id="local_s2", local_id="s2", status=RENDERING, created_at=_ago(0.5))
    merged = reconcile([remote_a, remote_b], [stale_copy, optimistic, in_flight], now=NOW, window_sec=300)
    assert [e.id for e in merged] == ["local_s2", "r1", "r2"]
    assert merged[1].name == "remote"


@pytest.mark.anyio
async def test_two_phase_persist_is_one_record(tmp_path, clip_store):
    drafts = _drafts(tmp_path)
    engine = ReconciliationEngine(clip_store, drafts, event_log=EventLog(str(tmp_path / "logs")))
    shot = _ready_shot(drafts)

    pending = await engine.persist(shot, is_final=False)
    assert pending.status == RENDERING
    assert pending.video_ref is None
    assert pending.is_remote
    assert drafts.require(shot.local_id).remote_id == pending.id

    drafts.transition(shot.local_id, "preview_ready", rendered_media_ref="https://x/c.mp4")
    final = await engine.persist(drafts.require(shot.local_id), is_final=True)
    again = await engine.persist(drafts.require(shot.local_id), is_final=True)

    assert final.id == pending.id == again.id
    records = await clip_store.list()
    assert len(records) == 1
    assert records[0]["status"] == COMPLETED
    assert records[0]["video_url"] == "https://x/c.mp4"
    assert records[0]["shot_type"] == "lipsync"
    assert records[0]["dialogue_blocks"][0]["speaker_name"] == "Unknown Speaker"
    assert [e.id for e in drafts.bin] == [pending.id]
    assert drafts.bin[0].status == COMPLETED


@pytest.mark.anyio
async def test_persist_after_reload_reuses_remote_id(tmp_path, clip_store):
    drafts = _drafts(tmp_path)
    shot = _ready_shot(drafts)
    pending = await ReconciliationEngine(clip_store, drafts).persist(shot, is_final=False)

    reloaded = _drafts(tmp_path)
    engine = ReconciliationEngine(clip_store, reloaded)
    healed = reloaded.require(shot.local_id)
    assert healed.remote_id == pending.id
    await engine.persist(healed, is_final=False)
    assert len(await clip_store.list()) == 1


@pytest.mark.anyio
async def test_pending_failure_keeps_optimistic_entry(tmp_path):
    drafts = _drafts(tmp_path)
    engine = ReconciliationEngine(FailingStore(), drafts)
    shot = _ready_shot(drafts)
    with pytest.raises(PersistenceError):
        await engine.persist(shot, is_final=False)
    assert [e.id for e in drafts.bin] == [local_clip_id(shot.local_id)]
    assert drafts.bin[0].status == RENDERING
    assert drafts.require(shot.local_id).remote_id is None


@pytest.mark.anyio
async def test_final_failure_rolls_back_optimistic_entry(tmp_path):
    drafts = _drafts(tmp_path)
    engine = ReconciliationEngine(FailingStore(), drafts)
    shot = _ready_shot(drafts)
    drafts.transition(shot.local_id, "preview_ready", rendered_media_ref="https://x/c.mp4")
    with pytest.raises(PersistenceError):
        await engine.persist(drafts.require(shot.local_id), is_final=True)
    assert drafts.bin == []


@pytest.mark.anyio
async def test_refresh_bin_merges(tmp_path, clip_store):
    drafts = _drafts(tmp_path)
    stored = await clip_store.upsert({"name": "Saved", "status": COMPLETED, "created_at": "2001-01-01T00:00:00Z"})
    in_flight = PersistedShot(id="local_s9", local_id="s9", status=RENDERING)
    abandoned = PersistedShot(id="local_s8", local_id="s8", status=RENDERING, created_at="2020-01-01T00:00:00Z")
    drafts.set_bin([in_flight, abandoned])
    merged = await ReconciliationEngine(clip_store, drafts).refresh_bin()
    assert [e.id for e in merged] == ["local_s9", stored["id"]]
    assert [e.id for e in drafts.bin] == ["local_s9", stored["id"]]


@pytest.mark.anyio
async def test_delete_reverts_on_failure(tmp_path):
    drafts = _drafts(tmp_path)
    drafts.set_bin([PersistedShot(id="r1"), PersistedShot(id="r2"), PersistedShot(id="r3")])
    store = FailingStore()
    engine = ReconciliationEngine(store, drafts)
    with pytest.raises(PersistenceError):
        await engine.delete("r2")
    assert [e.id for e in drafts.bin] == ["r1", "r2", "r3"]


@pytest.mark.anyio
async def test_delete_local_entry_skips_store(tmp_path):
    drafts = _drafts(tmp_path)
    drafts.set_bin([PersistedShot(id="local_s1", local_id="s1")])
    store = FailingStore()
    await ReconciliationEngine(store, drafts).delete("local_s1")
    assert drafts.bin == []
    assert store.calls == []


@pytest.mark.anyio
async def test_delete_remote_entry(tmp_path, clip_store):
    drafts = _drafts(tmp_path)
    stored = await clip_store.upsert({"name": "Saved", "status": COMPLETED})
    drafts.set_bin([PersistedShot.from_record(stored)])
    await ReconciliationEngine(clip_store, drafts).delete(stored["id"])
    assert drafts.bin == []
    assert await clip_store.get(stored["id"]) is None


@pytest.mark.anyio
async def test_delete_reverts_on_undecodable_response(tmp_path):
    drafts = _drafts(tmp_path)
    drafts.set_bin([PersistedShot(id="r1"), PersistedShot(id="r2")])
    with pytest.raises(PersistenceError):
        await ReconciliationEngine(GarbledStore(), drafts).delete("r2")
    assert [e.id for e in drafts.bin] == ["r1", "r2"]


@pytest.mark.anyio
async def test_final_undecodable_response_rolls_back(tmp_path):
    drafts = _drafts(tmp_path)
    engine = ReconciliationEngine(GarbledStore(), drafts)
    shot = _ready_shot(drafts)
    drafts.transition(shot.local_id, "preview_ready", rendered_media_ref="https://x/c.mp4")
    with pytest.raises(PersistenceError):
        await engine.persist(drafts.require(shot.local_id), is_final=True)
    assert drafts.bin == []
