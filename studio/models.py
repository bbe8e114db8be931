"""Shot, dialogue and persisted clip records."""
from __future__ import annotations

import math
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

DRAFT = "draft"
GENERATING = "generating"
RENDERING = "rendering"
PREVIEW_READY = "preview_ready"
COMPLETED = "completed"
PENDING = "pending"

SHOT_STATUSES = frozenset({DRAFT, GENERATING, RENDERING, PREVIEW_READY, COMPLETED})
REMOTE_STATUSES = frozenset({PENDING, RENDERING, COMPLETED})
TRANSIENT_STATUSES = frozenset({PENDING, RENDERING})

TRANSITIONS: Dict[str, frozenset] = {
    DRAFT: frozenset({GENERATING, RENDERING}),
    GENERATING: frozenset({DRAFT}),
    RENDERING: frozenset({PREVIEW_READY, DRAFT}),
    PREVIEW_READY: frozenset({DRAFT, COMPLETED}),
    COMPLETED: frozenset(),
}

ON_SCREEN = "on_screen"
NARRATOR = "narrator"
SPEAKER_MODES = frozenset({ON_SCREEN, NARRATOR})


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_local_id() -> str:
    return f"shot-{uuid.uuid4().hex[:12]}"


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def heal(status: str, has_output: bool) -> str:
    """Repair a status whose in-flight call did not survive a reload.

    has_output means a rendered video reference. Stitched audio alone does not
    count: preview_ready promises a clip that save_to_bin can publish, so a shot
    that only finished synthesis heals to draft with its audio kept.
    """
    if status in (GENERATING, RENDERING):
        return PREVIEW_READY if has_output else DRAFT
    if status not in SHOT_STATUSES:
        return DRAFT
    return status


def frames_for_duration(duration_sec: float, fps: int) -> int:
    # Round up so the rendered clip never cuts the audio short.
    return int(math.ceil(round(duration_sec * fps, 6)))


def _known(cls: type, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class DialogueBlock:
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    speaker_ref: str = ""
    text: str = ""
    audio_ref: Optional[str] = None
    pause_after_seconds: float = 0.5
    is_generating: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DialogueBlock":
        return cls(**_known(cls, data))


@dataclass
class Shot:
    local_id: str = field(default_factory=new_local_id)
    remote_id: Optional[str] = None
    scene_ref: str = ""
    keyframe_ref: Optional[str] = None
    name: str = ""
    dialogue_blocks: List[DialogueBlock] = field(default_factory=lambda: [DialogueBlock()])
    visual_prompt: str = ""
    motion_preset: str = "static"
    speaker_mode: str = ON_SCREEN
    convert_voice: bool = False
    status: str = DRAFT
    stitched_audio_ref: Optional[str] = None
    rendered_media_ref: Optional[str] = None
    last_frame_ref: Optional[str] = None
    total_audio_duration_seconds: float = 0.0
    is_audio_locked: bool = False
    manual_duration_seconds: float = 3.0
    start_delay_seconds: float = 0.0
    error_message: str = ""
    created_at: str = field(default_factory=now_iso)

    def effective_duration(self, default_sec: float = 3.0) -> float:
        if self.is_audio_locked:
            duration = (self.total_audio_duration_seconds or 0.0) + (self.start_delay_seconds or 0.0)
        else:
            duration = self.manual_duration_seconds
        return duration if duration and duration > 0 else default_sec

    def block(self, block_id: str) -> Optional[DialogueBlock]:
        for block in self.dialogue_blocks:
            if block.id == block_id:
                return block
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Shot":
        values = _known(cls, data)
        blocks = [DialogueBlock.from_dict(b) for b in data.get("dialogue_blocks") or [] if isinstance(b, dict)]
        values["dialogue_blocks"] = blocks or [DialogueBlock()]
        return cls(**values)


@dataclass
class Character:
    id: str
    name: str = ""
    voice_id: str = ""
    voice_ref_url: str = ""

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Character":
        return cls(
            id=str(record.get("id") or "").strip(),
            name=str(record.get("name") or "").strip(),
            voice_id=str(record.get("voice_id") or record.get("voiceId") or "").strip(),
            voice_ref_url=str(record.get("voice_ref_url") or record.get("voiceRefUrl") or "").strip(),
        )


@dataclass
class RegistryVoiceEntry:
    id: str
    name: str = ""
    preview_url: str = ""

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "RegistryVoiceEntry":
        return cls(
            id=str(record.get("id") or record.get("voice_id") or "").strip(),
            name=str(record.get("name") or "").strip(),
            preview_url=str(
                record.get("preview_url") or record.get("audio_url") or record.get("url") or ""
            ).strip(),
        )


@dataclass
class PersistedShot:
    """Canonical clip record as held by the remote store."""

    id: str
    local_id: Optional[str] = None
    scene_ref: str = ""
    name: str = ""
    status: str = PENDING
    video_ref: Optional[str] = None
    last_frame_ref: Optional[str] = None
    thumbnail_ref: Optional[str] = None
    prompt: str = ""
    duration_seconds: float = 0.0
    motion_preset: str = "static"
    speaker_mode: str = ON_SCREEN
    shot_type: str = "lipsync"
    dialogue_blocks: List[Dict[str, Any]] = field(default_factory=list)
    stitched_audio_ref: Optional[str] = None
    start_delay_seconds: float = 0.0
    created_at: str = field(default_factory=now_iso)
    updated_at: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return not self.id.startswith("local_")

    def to_record(self) -> Dict[str, Any]:
        record = {
            "id": self.id if self.is_remote else None,
            "local_id": self.local_id,
            "scene_id": self.scene_ref,
            "name": self.name,
            "status": self.status,
            "video_url": self.video_ref,
            "last_frame_url": self.last_frame_ref,
            "thumbnail_url": self.thumbnail_ref,
            "prompt": self.prompt,
            "duration": self.duration_seconds,
            "motion_type": self.motion_preset,
            "speaker_type": self.speaker_mode,
            "shot_type": self.shot_type,
            "dialogue_blocks": self.dialogue_blocks,
            "stitched_audio_url": self.stitched_audio_ref,
            "start_delay": self.start_delay_seconds,
            "created_at": self.created_at,
        }
        if not record["id"]:
            record.pop("id")
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "PersistedShot":
        return cls(
            id=str(record.get("id") or ""),
            local_id=record.get("local_id"),
            scene_ref=record.get("scene_id") or "",
            name=record.get("name") or "",
            status=record.get("status") or PENDING,
            video_ref=record.get("video_url"),
            last_frame_ref=record.get("last_frame_url"),
            thumbnail_ref=record.get("thumbnail_url"),
            prompt=record.get("prompt") or "",
            duration_seconds=float(record.get("duration") or 0.0),
            motion_preset=record.get("motion_type") or "static",
            speaker_mode=record.get("speaker_type") or ON_SCREEN,
            shot_type=record.get("shot_type") or "lipsync",
            dialogue_blocks=list(record.get("dialogue_blocks") or []),
            stitched_audio_ref=record.get("stitched_audio_url"),
            start_delay_seconds=float(record.get("start_delay") or 0.0),
            created_at=record.get("created_at") or now_iso(),
            updated_at=record.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersistedShot":
        return cls(**_known(cls, data))
