"""Two-phase clip persistence and merge of remote and local bin state."""
from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .drafts import DraftStore
from .errors import PersistenceError
from .mcp_clients import ClipStoreClient
from .models import (
    COMPLETED,
    ON_SCREEN,
    RENDERING,
    TRANSIENT_STATUSES,
    PersistedShot,
    Shot,
    now_iso,
    parse_iso,
)
from .run_logger import EventLog
from .voices import VoiceResolver

CLIPS = "clips"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def local_clip_id(local_id: str) -> str:
    return f"local_{local_id}"


def reconcile(
    remote_list: Sequence[PersistedShot],
    local_list: Sequence[PersistedShot],
    now: Optional[datetime] = None,
    window_sec: float = 300.0,
) -> List[PersistedShot]:
    """Merge a fresh remote listing with the locally cached bin.

    Remote entries always win. A local-only entry survives only while it is
    still in flight (pending/rendering), absent remotely and younger than
    window_sec; anything else local is dropped.
    """
    now = now or datetime.now(timezone.utc)
    remote_ids = {entry.id for entry in remote_list}
    remote_local_ids = {entry.local_id for entry in remote_list if entry.local_id}
    merged = list(remote_list)
    for entry in local_list:
        if entry.id in remote_ids:
            continue
        if entry.local_id and entry.local_id in remote_local_ids:
            continue
        if entry.status not in TRANSIENT_STATUSES:
            continue
        created = parse_iso(entry.created_at)
        if created is None or (now - created).total_seconds() > window_sec:
            continue
        merged.append(entry)
    merged.sort(key=lambda e: parse_iso(e.created_at) or _EPOCH, reverse=True)
    return merged


class ReconciliationEngine:
    def __init__(
        self,
        store: ClipStoreClient,
        drafts: DraftStore,
        resolver: Optional[VoiceResolver] = None,
        event_log: Optional[EventLog] = None,
        window_sec: float = 300.0,
        default_duration_sec: float = 3.0,
    ) -> None:
        self.store = store
        self.drafts = drafts
        self.resolver = resolver or VoiceResolver()
        self.event_log = event_log
        self.window_sec = window_sec
        self.default_duration_sec = default_duration_sec
        # (collection, local key) -> remote id; survives the shot leaving the draft list.
        self._remote_ids: Dict[Tuple[str, str], str] = {}

    def remote_id_for(self, shot: Shot) -> Optional[str]:
        if shot.remote_id:
            return shot.remote_id
        known = self._remote_ids.get((CLIPS, shot.local_id))
        if known:
            return known
        for entry in self.drafts.bin:
            if entry.local_id == shot.local_id and entry.is_remote:
                return entry.id
        return None

    def build_entry(self, shot: Shot, is_final: bool) -> PersistedShot:
        remote_id = self.remote_id_for(shot)
        entry_id = remote_id or local_clip_id(shot.local_id)
        created_at = now_iso()
        for existing in self.drafts.bin:
            if existing.id == entry_id or existing.local_id == shot.local_id:
                created_at = existing.created_at
                break
        blocks: List[Dict[str, Any]] = []
        for block in shot.dialogue_blocks:
            item = asdict(block)
            item.pop("is_generating", None)
            item["speaker_name"] = self.resolver.speaker_name(block.speaker_ref)
            blocks.append(item)
        return PersistedShot(
            id=entry_id,
            local_id=shot.local_id,
            scene_ref=shot.scene_ref,
            name=shot.name,
            status=COMPLETED if is_final else RENDERING,
            video_ref=shot.rendered_media_ref if is_final else None,
            last_frame_ref=shot.last_frame_ref if is_final else None,
            thumbnail_ref=shot.keyframe_ref,
            prompt=shot.visual_prompt,
            duration_seconds=shot.effective_duration(self.default_duration_sec),
            motion_preset=shot.motion_preset,
            speaker_mode=shot.speaker_mode,
            shot_type="lipsync" if shot.speaker_mode == ON_SCREEN else "cinematic",
            dialogue_blocks=blocks,
            stitched_audio_ref=shot.stitched_audio_ref,
            start_delay_seconds=shot.start_delay_seconds,
            created_at=created_at,
        )

    async def persist(self, shot: Shot, is_final: bool) -> PersistedShot:
        """Upsert one phase of a shot. The bin is updated before the network call."""
        entry = self.build_entry(shot, is_final)
        local_key = local_clip_id(shot.local_id)
        previous = next((e for e in self.drafts.bin if e.id in (entry.id, local_key)), None)
        self.drafts.upsert_bin(entry, replace_id=local_key)
        phase = "completion" if is_final else "pending"
        try:
            stored = await self.persist_record(CLIPS, shot.local_id, entry.to_record())
        except Exception as exc:
            if is_final:
                # A completed entry that never reached the store would be dropped on merge anyway.
                if previous is not None:
                    self.drafts.upsert_bin(previous, replace_id=entry.id)
                else:
                    self.drafts.remove_bin(entry.id)
            self._record(shot.local_id, phase, {"ok": False, "error": str(exc)})
            if isinstance(exc, PersistenceError):
                raise
            raise PersistenceError(f"clip_upsert failed: {exc}") from exc
        remote = PersistedShot.from_record(stored)
        self.drafts.apply(shot.local_id, remote_id=remote.id)
        self.drafts.upsert_bin(remote, replace_id=local_key)
        self._record(shot.local_id, phase, {"ok": True, "remote_id": remote.id, "status": remote.status})
        return remote

    async def persist_record(self, collection: str, local_key: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Upsert a record, reusing the remote id already captured for local_key."""
        data = dict(record)
        remote_id = self._remote_ids.get((collection, local_key))
        if remote_id:
            data["id"] = remote_id
        stored = await self.store.upsert(data, collection=collection)
        self._remote_ids[(collection, local_key)] = stored["id"]
        return stored

    async def refresh_bin(self) -> List[PersistedShot]:
        records = await self.store.list(collection=CLIPS)
        remote = [PersistedShot.from_record(r) for r in records if isinstance(r, dict) and r.get("id")]
        for entry in remote:
            if entry.local_id:
                self._remote_ids[(CLIPS, entry.local_id)] = entry.id
        merged = reconcile(remote, self.drafts.bin, window_sec=self.window_sec)
        self.drafts.set_bin(merged)
        return merged

    async def delete(self, clip_id: str) -> None:
        index, entry = self.drafts.remove_bin(clip_id)
        if entry is None or not entry.is_remote:
            return
        try:
            await self.store.delete(clip_id, collection=CLIPS)
        except Exception as exc:
            self.drafts.insert_bin(index, entry)
            self._log(f"delete of clip {clip_id} failed; restored at position {index}")
            if isinstance(exc, PersistenceError):
                raise
            raise PersistenceError(f"clip_delete failed: {exc}") from exc

    def _record(self, local_id: str, phase: str, payload: Dict[str, Any]) -> None:
        if self.event_log is None:
            return
        self.event_log.record_step(local_id, f"persist_{phase}", payload)
        if not payload.get("ok"):
            self.event_log.warn(f"persist {phase} for shot {local_id} failed: {payload.get('error')}")

    def _log(self, message: str) -> None:
        if self.event_log is not None:
            self.event_log.log(message)
