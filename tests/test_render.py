from __future__ import annotations

import json

import httpx
import pytest

from studio.errors import InvalidTransition, NoMediaFoundError, PersistenceError, ValidationError
from studio.mcp_clients import ClipStoreClient, MCPHttpClient
from studio.models import COMPLETED, DRAFT, PREVIEW_READY, RENDERING
from studio.pipeline import Studio
from studio.render import cap_prompt

RENDER_RESPONSE = {
    "output": {
        "nested": {"video_url": "https://x/clip.mp4"},
        "frames": {"last_frame_url": "https://x/last.png"},
    }
}


class FailingStore:
    async def upsert(self, record, collection="clips"):
        raise PersistenceError("store offline")


def _studio(config, store, handler) -> Studio:
    return Studio(config, store=store, transport=httpx.MockTransport(handler))


def _voiced_shot(studio: Studio, speaker_mode: str = "on_screen"):
    shot = studio.create_shot(
        "scene-1",
        keyframe_ref="https://x/k.png",
        speaker_mode=speaker_mode,
        name="Intro",
        speaker_ref="charA",
    )
    studio.drafts.update_block(shot.local_id, shot.dialogue_blocks[0].id, text="Hello")
    studio.drafts.update(shot.local_id, visual_prompt="a quiet street at dusk", start_delay_seconds=0.2)
    studio.drafts.apply(
        shot.local_id,
        stitched_audio_ref="https://x/line.wav",
        total_audio_duration_seconds=3.3,
        is_audio_locked=True,
    )
    return studio.drafts.require(shot.local_id)


def test_cap_prompt():
    assert cap_prompt("one  two three", 2) == "one two"
    assert cap_prompt("one two", 5) == "one two"
    assert cap_prompt("", 5) == ""


@pytest.mark.anyio
async def test_on_screen_render_uses_lipsync_and_persists(config, clip_store):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json=RENDER_RESPONSE)

    studio = _studio(config, clip_store, handler)
    shot = _voiced_shot(studio)
    result = await studio.render(shot.local_id)

    assert result.media_ref == "https://x/clip.mp4"
    assert result.last_frame_ref == "https://x/last.png"
    path, payload = seen[0]
    assert path == "/generate-lipsync"
    assert payload["num_frames"] == 105
    assert payload["fps"] == 30
    assert payload["image_url"] == "https://x/k.png"
    assert payload["audio_url"] == "https://x/line.wav"
    assert payload["motion"] == "static"
    assert payload["dialogue"] == [{"speaker_id": "charA", "text": "Hello"}]

    updated = studio.drafts.require(shot.local_id)
    assert updated.status == PREVIEW_READY
    assert updated.rendered_media_ref == "https://x/clip.mp4"
    assert updated.remote_id

    records = await clip_store.list()
    assert len(records) == 1
    assert records[0]["id"] == updated.remote_id
    assert records[0]["status"] == COMPLETED
    assert records[0]["video_url"] == "https://x/clip.mp4"
    assert [e.id for e in studio.drafts.bin] == [updated.remote_id]


@pytest.mark.anyio
async def test_narrator_render_uses_image_to_video(config, clip_store):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"video_url": "https://x/i2v.mp4"})

    studio = _studio(config, clip_store, handler)
    shot = studio.create_shot("scene-1", keyframe_ref="https://x/k.png", speaker_mode="narrator")
    studio.drafts.update(shot.local_id, manual_duration_seconds=2.0, visual_prompt="word " * 200)
    result = await studio.render(shot.local_id)

    assert result.media_ref == "https://x/i2v.mp4"
    assert seen[0]["num_frames"] == 60
    assert len(seen[0]["prompt"].split()) == 120
    # Blank audio is sent as null, not "".
    assert seen[0]["audio_url"] is None


@pytest.mark.anyio
async def test_render_rejected_when_already_rendering(config, clip_store):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    studio = _studio(config, clip_store, handler)
    shot = _voiced_shot(studio)
    studio.drafts.transition(shot.local_id, RENDERING)
    with pytest.raises(InvalidTransition):
        await studio.render(shot.local_id)
    with pytest.raises(InvalidTransition):
        await studio.renderer.run(shot.local_id)
    assert studio.drafts.require(shot.local_id).status == RENDERING


@pytest.mark.anyio
async def test_render_rejected_outside_draft(config, clip_store):
    studio = _studio(config, clip_store, lambda request: httpx.Response(200, json=RENDER_RESPONSE))
    shot = _voiced_shot(studio)
    await studio.render(shot.local_id)
    with pytest.raises(InvalidTransition):
        await studio.render(shot.local_id)
    studio.reopen(shot.local_id)
    assert (await studio.render(shot.local_id)).media_ref == "https://x/clip.mp4"


@pytest.mark.anyio
async def test_on_screen_requires_audio_and_keyframe(config, clip_store):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    studio = _studio(config, clip_store, handler)
    no_audio = studio.create_shot("scene-1", keyframe_ref="https://x/k.png")
    with pytest.raises(ValidationError):
        await studio.render(no_audio.local_id)
    assert studio.drafts.require(no_audio.local_id).status == DRAFT
    assert "audio" in studio.drafts.require(no_audio.local_id).error_message

    no_keyframe = studio.create_shot("scene-1", speaker_mode="narrator")
    with pytest.raises(ValidationError):
        await studio.render(no_keyframe.local_id)
    assert studio.drafts.require(no_keyframe.local_id).error_message == "Select a keyframe before rendering."


@pytest.mark.anyio
async def test_render_without_media_returns_to_draft(config, clip_store):
    studio = _studio(config, clip_store, lambda request: httpx.Response(200, json={"status": "done"}))
    shot = _voiced_shot(studio)
    with pytest.raises(NoMediaFoundError):
        await studio.render(shot.local_id)
    updated = studio.drafts.require(shot.local_id)
    assert updated.status == DRAFT
    assert updated.error_message.startswith("Render failed")
    # The pending anchor stays in the store for the merge window.
    records = await clip_store.list()
    assert [r["status"] for r in records] == [RENDERING]


@pytest.mark.anyio
async def test_store_outage_does_not_block_render(config):
    studio = _studio(config, FailingStore(), lambda request: httpx.Response(200, json=RENDER_RESPONSE))
    shot = _voiced_shot(studio)
    result = await studio.render(shot.local_id)
    assert result.media_ref == "https://x/clip.mp4"
    updated = studio.drafts.require(shot.local_id)
    assert updated.status == PREVIEW_READY
    assert updated.remote_id is None
    assert studio.drafts.bin[0].status == RENDERING


def _garbled_store(monkeypatch) -> ClipStoreClient:
    monkeypatch.setenv("STUDIO_STORE_URL", "http://mcp-clips:7110/mcp")
    monkeypatch.setenv("MCP_TRANSPORT", "http")
    store = ClipStoreClient()
    store.client = MCPHttpClient(
        store.url,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>502 gateway</html>")),
    )
    return store


@pytest.mark.anyio
async def test_garbled_store_response_does_not_strand_render(config, monkeypatch):
    studio = _studio(config, _garbled_store(monkeypatch), lambda request: httpx.Response(200, json=RENDER_RESPONSE))
    shot = _voiced_shot(studio, speaker_mode="narrator")
    result = await studio.render(shot.local_id)
    assert result.media_ref == "https://x/clip.mp4"
    updated = studio.drafts.require(shot.local_id)
    assert updated.status == PREVIEW_READY
    assert updated.remote_id is None


@pytest.mark.anyio
async def test_unexpected_pending_failure_returns_shot_to_draft(config, clip_store, monkeypatch):
    studio = _studio(config, clip_store, lambda request: httpx.Response(200, json=RENDER_RESPONSE))
    shot = _voiced_shot(studio)

    async def broken_persist(shot, is_final):
        raise RuntimeError("bin corrupted")

    monkeypatch.setattr(studio.engine, "persist", broken_persist)
    with pytest.raises(RuntimeError):
        await studio.render(shot.local_id)
    assert studio.drafts.require(shot.local_id).status == DRAFT
    assert studio.registry.active(shot.local_id) == []
