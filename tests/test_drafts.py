from __future__ import annotations

import json

import pytest

from studio.drafts import DraftStore
from studio.errors import InvalidTransition, ValidationError
from studio.models import DRAFT, GENERATING, PREVIEW_READY, RENDERING, PersistedShot
from studio.run_logger import EventLog


def _write_snapshot(path, drafts, bin_entries=None):
    path.write_text(json.dumps({"version": 1, "drafts": drafts, "bin": bin_entries or []}), encoding="utf-8")


def test_heal_on_load(tmp_path):
    path = tmp_path / "drafts.json"
    _write_snapshot(
        path,
        [
            {"local_id": "shot-a", "status": RENDERING},
            {"local_id": "shot-b", "status": RENDERING, "rendered_media_ref": "https://x/b.mp4"},
            {
                "local_id": "shot-c",
                "status": GENERATING,
                "stitched_audio_ref": "https://x/c.wav",
                "dialogue_blocks": [{"id": "b1", "text": "hi", "is_generating": True}],
            },
            {"local_id": "shot-d", "status": PREVIEW_READY, "rendered_media_ref": "https://x/d.mp4"},
        ],
    )
    log = EventLog(str(tmp_path / "logs"))
    store = DraftStore(str(path), event_log=log)

    assert store.require("shot-a").status == DRAFT
    assert store.require("shot-b").status == PREVIEW_READY
    shot_c = store.require("shot-c")
    assert shot_c.status == DRAFT
    assert shot_c.stitched_audio_ref == "https://x/c.wav"
    assert shot_c.dialogue_blocks[0].is_generating is False
    assert store.require("shot-d").status == PREVIEW_READY

    # The healed snapshot is written back.
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert {d["local_id"]: d["status"] for d in saved["drafts"]}["shot-a"] == DRAFT
    assert "healed shot shot-a" in (tmp_path / "logs" / "studio.log").read_text(encoding="utf-8")


@pytest.mark.parametrize("content", ['{"version": 1, "drafts": [', "[]"])
def test_unreadable_snapshot_starts_empty(tmp_path, content):
    path = tmp_path / "drafts.json"
    path.write_text(content, encoding="utf-8")
    log = EventLog(str(tmp_path / "logs"))
    store = DraftStore(str(path), event_log=log)

    assert len(store) == 0
    assert store.bin == []
    assert (tmp_path / "drafts.json.corrupt").read_text(encoding="utf-8") == content
    assert "unreadable" in (tmp_path / "logs" / "studio.log").read_text(encoding="utf-8")

    shot = store.create("scene-1")
    assert DraftStore(str(path)).require(shot.local_id).scene_ref == "scene-1"


def test_create_and_reload(tmp_path):
    path = str(tmp_path / "studio" / "drafts.json")
    store = DraftStore(path, default_duration_sec=4.0)
    shot = store.create("scene-1", keyframe_ref="https://x/k.png", speaker_mode="narrator", speaker_ref="charA")
    assert shot.status == DRAFT
    assert shot.manual_duration_seconds == 4.0
    assert len(shot.dialogue_blocks) == 1
    assert shot.dialogue_blocks[0].speaker_ref == "charA"

    store.upsert_bin(PersistedShot(id="clip-1", name="Saved"))
    reloaded = DraftStore(path)
    assert reloaded.require(shot.local_id).speaker_mode == "narrator"
    assert [e.id for e in reloaded.bin] == ["clip-1"]


def test_create_rejects_unknown_mode(tmp_path):
    store = DraftStore(str(tmp_path / "drafts.json"))
    with pytest.raises(ValidationError):
        store.create("scene-1", speaker_mode="off_screen")


def test_update_only_touches_content_fields(tmp_path):
    store = DraftStore(str(tmp_path / "drafts.json"))
    shot = store.create("scene-1")
    updated = store.update(shot.local_id, visual_prompt="a quiet street", motion_preset="pan_left")
    assert updated.visual_prompt == "a quiet street"
    with pytest.raises(ValidationError):
        store.update(shot.local_id, status=PREVIEW_READY)


def test_transitions_enforced(tmp_path):
    store = DraftStore(str(tmp_path / "drafts.json"))
    shot = store.create("scene-1")
    with pytest.raises(InvalidTransition):
        store.transition(shot.local_id, PREVIEW_READY)
    store.transition(shot.local_id, RENDERING)
    with pytest.raises(InvalidTransition):
        store.apply(shot.local_id, status=GENERATING)
    store.transition(shot.local_id, PREVIEW_READY, rendered_media_ref="https://x/c.mp4")
    reopened = store.reopen(shot.local_id)
    assert reopened.status == DRAFT
    assert reopened.rendered_media_ref == "https://x/c.mp4"


def test_apply_on_missing_shot_is_dropped(tmp_path):
    store = DraftStore(str(tmp_path / "drafts.json"))
    shot = store.create("scene-1")
    assert store.discard(shot.local_id) is not None
    assert store.apply(shot.local_id, error_message="late") is None
    assert store.discard(shot.local_id) is None


def test_dialogue_blocks(tmp_path):
    store = DraftStore(str(tmp_path / "drafts.json"))
    shot = store.create("scene-1")
    first = shot.dialogue_blocks[0]
    second = store.add_block(shot.local_id, speaker_ref="charB", text="Second")
    assert second.pause_after_seconds == 0.5
    store.update_block(shot.local_id, first.id, text="First")
    shot = store.remove_block(shot.local_id, second.id)
    assert [b.text for b in shot.dialogue_blocks] == ["First"]
    with pytest.raises(ValidationError):
        store.remove_block(shot.local_id, first.id)
    with pytest.raises(ValidationError):
        store.update_block(shot.local_id, "missing", text="x")


def test_restore_creates_remix(tmp_path):
    store = DraftStore(str(tmp_path / "drafts.json"))
    clip = PersistedShot(
        id="clip-1",
        scene_ref="scene-9",
        name="Hero intro",
        status="completed",
        thumbnail_ref="https://x/k.png",
        prompt="sunset",
        duration_seconds=4.5,
        speaker_mode="narrator",
        dialogue_blocks=[{"speaker_ref": "charA", "speaker_name": "Ava", "text": "Hello", "pause_after_seconds": 1.0}],
    )
    shot = store.restore(clip)
    assert shot.name == "Hero intro (Remix)"
    assert shot.status == DRAFT
    assert shot.keyframe_ref == "https://x/k.png"
    assert shot.manual_duration_seconds == 4.5
    assert shot.dialogue_blocks[0].text == "Hello"
    assert shot.dialogue_blocks[0].audio_ref is None


def test_bin_insert_and_remove(tmp_path):
    store = DraftStore(str(tmp_path / "drafts.json"))
    store.set_bin([PersistedShot(id="a"), PersistedShot(id="b"), PersistedShot(id="c")])
    idx, entry = store.remove_bin("b")
    assert idx == 1
    store.insert_bin(idx, entry)
    assert [e.id for e in store.bin] == ["a", "b", "c"]
    store.upsert_bin(PersistedShot(id="remote-c", name="new"), replace_id="c")
    assert [e.id for e in store.bin] == ["a", "b", "remote-c"]
    assert store.remove_bin("zzz") == (-1, None)
