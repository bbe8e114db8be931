"""Locally persisted draft list, the single mutation surface for shots."""
from __future__ import annotations

import json
import os
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidTransition, ValidationError
from .models import (
    DRAFT,
    SPEAKER_MODES,
    DialogueBlock,
    PersistedShot,
    Shot,
    can_transition,
    heal,
    new_local_id,
)
from .run_logger import EventLog

SNAPSHOT_VERSION = 1
_CONTENT_FIELDS = frozenset(
    {
        "name",
        "scene_ref",
        "keyframe_ref",
        "visual_prompt",
        "motion_preset",
        "speaker_mode",
        "convert_voice",
        "manual_duration_seconds",
        "start_delay_seconds",
        "is_audio_locked",
    }
)


def _ensure_dir(path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)


class DraftStore:
    def __init__(
        self,
        path: str,
        event_log: Optional[EventLog] = None,
        default_duration_sec: float = 3.0,
        default_pause_sec: float = 0.5,
    ) -> None:
        self.path = path
        self.event_log = event_log
        self.default_duration_sec = default_duration_sec
        self.default_pause_sec = default_pause_sec
        self._shots: Dict[str, Shot] = {}
        self.bin: List[PersistedShot] = []
        self._load()

    # --- snapshot ---

    def _load(self) -> None:
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ValueError(f"expected an object, got {type(raw).__name__}")
        except (OSError, ValueError) as exc:
            # The snapshot is a local cache; start empty and keep the bad file for inspection.
            corrupt_path = self.path + ".corrupt"
            os.replace(self.path, corrupt_path)
            self._warn(f"draft snapshot {self.path} unreadable ({exc}); moved to {corrupt_path}")
            return
        healed = 0
        for item in raw.get("drafts", []):
            shot = Shot.from_dict(item)
            status = heal(shot.status, bool(shot.rendered_media_ref))
            blocks = [replace(b, is_generating=False) for b in shot.dialogue_blocks]
            if status != shot.status:
                healed += 1
                self._log(f"healed shot {shot.local_id}: {shot.status} -> {status}")
            self._shots[shot.local_id] = replace(shot, status=status, dialogue_blocks=blocks)
        self.bin = [PersistedShot.from_dict(item) for item in raw.get("bin", []) if isinstance(item, dict)]
        if healed:
            self._save()

    def _save(self) -> None:
        _ensure_dir(self.path)
        snapshot = {
            "version": SNAPSHOT_VERSION,
            "drafts": [shot.to_dict() for shot in self._shots.values()],
            "bin": [entry.to_dict() for entry in self.bin],
        }
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, ensure_ascii=True, indent=2)
        os.replace(tmp_path, self.path)

    def _log(self, message: str) -> None:
        if self.event_log is not None:
            self.event_log.log(message)

    def _warn(self, message: str) -> None:
        if self.event_log is not None:
            self.event_log.warn(message)

    # --- queries ---

    def __contains__(self, local_id: object) -> bool:
        return local_id in self._shots

    def __len__(self) -> int:
        return len(self._shots)

    def get(self, local_id: str) -> Optional[Shot]:
        return self._shots.get(local_id)

    def require(self, local_id: str) -> Shot:
        shot = self._shots.get(local_id)
        if shot is None:
            raise ValidationError(f"unknown shot: {local_id}")
        return shot

    def list(self) -> List[Shot]:
        return list(self._shots.values())

    # --- shot mutations ---

    def create(
        self,
        scene_ref: str,
        keyframe_ref: Optional[str] = None,
        speaker_mode: str = "on_screen",
        name: str = "",
        speaker_ref: str = "",
        **fields: Any,
    ) -> Shot:
        if speaker_mode not in SPEAKER_MODES:
            raise ValidationError(f"unknown speaker mode: {speaker_mode}")
        local_id = new_local_id()
        while local_id in self._shots:
            local_id = new_local_id()
        values: Dict[str, Any] = {
            "manual_duration_seconds": self.default_duration_sec,
            "dialogue_blocks": [DialogueBlock(speaker_ref=speaker_ref, pause_after_seconds=self.default_pause_sec)],
        }
        values.update(fields)
        shot = Shot(
            local_id=local_id,
            scene_ref=scene_ref,
            keyframe_ref=keyframe_ref,
            name=name,
            speaker_mode=speaker_mode,
            **values,
        )
        self._shots[local_id] = shot
        self._save()
        return shot

    def update(self, local_id: str, **changes: Any) -> Shot:
        """User edits of content fields. Status moves go through transition()."""
        unknown = set(changes) - _CONTENT_FIELDS
        if unknown:
            raise ValidationError(f"fields not editable: {', '.join(sorted(unknown))}")
        if "speaker_mode" in changes and changes["speaker_mode"] not in SPEAKER_MODES:
            raise ValidationError(f"unknown speaker mode: {changes['speaker_mode']}")
        shot = replace(self.require(local_id), **changes)
        self._shots[local_id] = shot
        self._save()
        return shot

    def apply(self, local_id: str, **changes: Any) -> Optional[Shot]:
        """Apply a job result; a shot that is gone drops it and returns None."""
        current = self._shots.get(local_id)
        if current is None:
            return None
        target = changes.get("status", current.status)
        if target != current.status and not can_transition(current.status, target):
            raise InvalidTransition(local_id, current.status, target)
        shot = replace(current, **changes)
        self._shots[local_id] = shot
        self._save()
        return shot

    def transition(self, local_id: str, target: str, **changes: Any) -> Shot:
        current = self.require(local_id)
        if not can_transition(current.status, target):
            raise InvalidTransition(local_id, current.status, target)
        shot = self.apply(local_id, status=target, **changes)
        assert shot is not None
        return shot

    def set_error(self, local_id: str, message: str) -> Optional[Shot]:
        return self.apply(local_id, error_message=message)

    def reopen(self, local_id: str) -> Shot:
        return self.transition(local_id, DRAFT, error_message="")

    def discard(self, local_id: str) -> Optional[Shot]:
        shot = self._shots.pop(local_id, None)
        if shot is not None:
            self._save()
        return shot

    # --- dialogue blocks ---

    def add_block(self, local_id: str, speaker_ref: str = "", text: str = "", pause_after_seconds: Optional[float] = None) -> DialogueBlock:
        shot = self.require(local_id)
        pause = self.default_pause_sec if pause_after_seconds is None else pause_after_seconds
        block = DialogueBlock(speaker_ref=speaker_ref, text=text, pause_after_seconds=pause)
        self._shots[local_id] = replace(shot, dialogue_blocks=shot.dialogue_blocks + [block])
        self._save()
        return block

    def update_block(self, local_id: str, block_id: str, **changes: Any) -> Shot:
        shot = self.require(local_id)
        if shot.block(block_id) is None:
            raise ValidationError(f"unknown dialogue block: {block_id}")
        blocks = [replace(b, **changes) if b.id == block_id else b for b in shot.dialogue_blocks]
        shot = replace(shot, dialogue_blocks=blocks)
        self._shots[local_id] = shot
        self._save()
        return shot

    def remove_block(self, local_id: str, block_id: str) -> Shot:
        shot = self.require(local_id)
        blocks = [b for b in shot.dialogue_blocks if b.id != block_id]
        if len(blocks) == len(shot.dialogue_blocks):
            raise ValidationError(f"unknown dialogue block: {block_id}")
        if not blocks:
            raise ValidationError("a shot needs at least one dialogue block")
        shot = replace(shot, dialogue_blocks=blocks)
        self._shots[local_id] = shot
        self._save()
        return shot

    def restore(self, clip: PersistedShot) -> Shot:
        """Bring a saved clip back as a fresh draft (a remix)."""
        blocks = [
            DialogueBlock(
                speaker_ref=str(b.get("speaker_ref") or ""),
                text=str(b.get("text") or ""),
                pause_after_seconds=float(b.get("pause_after_seconds", self.default_pause_sec)),
            )
            for b in clip.dialogue_blocks
            if isinstance(b, dict)
        ]
        shot = Shot(
            local_id=new_local_id(),
            scene_ref=clip.scene_ref,
            keyframe_ref=clip.thumbnail_ref,
            name=f"{clip.name} (Remix)" if clip.name else "",
            dialogue_blocks=blocks or [DialogueBlock(pause_after_seconds=self.default_pause_sec)],
            visual_prompt=clip.prompt,
            motion_preset=clip.motion_preset or "static",
            speaker_mode=clip.speaker_mode if clip.speaker_mode in SPEAKER_MODES else "on_screen",
            manual_duration_seconds=clip.duration_seconds or self.default_duration_sec,
            start_delay_seconds=clip.start_delay_seconds,
        )
        self._shots[shot.local_id] = shot
        self._save()
        return shot

    # --- bin cache ---

    def set_bin(self, entries: List[PersistedShot]) -> None:
        self.bin = list(entries)
        self._save()

    def upsert_bin(self, entry: PersistedShot, replace_id: Optional[str] = None) -> None:
        ids = {entry.id}
        if replace_id:
            ids.add(replace_id)
        for idx, existing in enumerate(self.bin):
            if existing.id in ids:
                self.bin[idx] = entry
                self.bin = [e for i, e in enumerate(self.bin) if i == idx or e.id not in ids]
                break
        else:
            self.bin.insert(0, entry)
        self._save()

    def remove_bin(self, clip_id: str) -> Tuple[int, Optional[PersistedShot]]:
        for idx, existing in enumerate(self.bin):
            if existing.id == clip_id:
                del self.bin[idx]
                self._save()
                return idx, existing
        return -1, None

    def insert_bin(self, index: int, entry: PersistedShot) -> None:
        self.bin.insert(max(0, min(index, len(self.bin))), entry)
        self._save()
