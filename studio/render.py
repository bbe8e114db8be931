"""Video rendering for a shot: lip-sync or image-to-video by speaker mode."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .drafts import DraftStore
from .errors import RECOVERABLE_ERRORS, InvalidTransition, NoMediaFoundError, PersistenceError, ValidationError
from .generation_clients import RenderClient
from .jobs import JobHandle
from .media import extract_last_frame_ref, extract_video_ref
from .models import DRAFT, ON_SCREEN, PREVIEW_READY, RENDERING, Shot, frames_for_duration
from .reconcile import ReconciliationEngine
from .run_logger import EventLog


@dataclass
class RenderResult:
    media_ref: str
    last_frame_ref: Optional[str] = None
    num_frames: int = 0


def cap_prompt(prompt: str, max_tokens: int) -> str:
    tokens = (prompt or "").split()
    if max_tokens <= 0 or len(tokens) <= max_tokens:
        return " ".join(tokens)
    return " ".join(tokens[:max_tokens])


class RenderJob:
    def __init__(
        self,
        drafts: DraftStore,
        client: RenderClient,
        engine: Optional[ReconciliationEngine] = None,
        event_log: Optional[EventLog] = None,
        fps: int = 30,
        prompt_max_tokens: int = 120,
        default_duration_sec: float = 3.0,
    ) -> None:
        self.drafts = drafts
        self.client = client
        self.engine = engine
        self.event_log = event_log
        self.fps = fps
        self.prompt_max_tokens = prompt_max_tokens
        self.default_duration_sec = default_duration_sec

    def build_payload(self, shot: Shot) -> Dict[str, Any]:
        duration = shot.effective_duration(self.default_duration_sec)
        return {
            "clip_name": shot.name,
            "prompt": cap_prompt(shot.visual_prompt, self.prompt_max_tokens),
            "image_url": shot.keyframe_ref,
            "audio_url": shot.stitched_audio_ref,
            "motion": shot.motion_preset,
            "num_frames": frames_for_duration(duration, self.fps),
            "fps": self.fps,
            "dialogue": [{"speaker_id": b.speaker_ref, "text": b.text} for b in shot.dialogue_blocks],
        }

    def validate(self, shot: Shot) -> None:
        if shot.status != DRAFT:
            # Covers a second render on a shot that is already rendering.
            raise InvalidTransition(shot.local_id, shot.status, RENDERING)
        if not shot.keyframe_ref:
            raise ValidationError("Select a keyframe before rendering.")
        if shot.speaker_mode == ON_SCREEN and not shot.stitched_audio_ref:
            raise ValidationError("Generate dialogue audio before rendering an on-screen shot.")

    async def run(self, local_id: str, handle: Optional[JobHandle] = None) -> Optional[RenderResult]:
        shot = self.drafts.require(local_id)
        try:
            self.validate(shot)
        except InvalidTransition:
            raise
        except ValidationError as exc:
            self.drafts.set_error(local_id, str(exc))
            raise
        shot = self.drafts.transition(local_id, RENDERING, error_message="")
        payload = self.build_payload(shot)
        result: Optional[RenderResult] = None
        try:
            await self._persist(shot, is_final=False)
            self._log(
                f"rendering shot {local_id} via {'lipsync' if shot.speaker_mode == ON_SCREEN else 'i2v'} "
                f"frames={payload['num_frames']}"
            )
            if handle is not None:
                handle.check()
            data = await self.client.render(shot.speaker_mode, payload)
            if handle is not None:
                handle.check()
            media_ref = extract_video_ref(data)
            if not media_ref:
                raise NoMediaFoundError("no video reference in render response")
            result = RenderResult(
                media_ref=media_ref,
                last_frame_ref=extract_last_frame_ref(data),
                num_frames=payload["num_frames"],
            )
        except RECOVERABLE_ERRORS as exc:
            self._finish(local_id, error_message=f"Render failed: {exc}")
            self._record(local_id, {"ok": False, "error": str(exc)})
            raise
        finally:
            if result is None:
                self._finish(local_id)

        done = self.drafts.apply(
            local_id,
            status=PREVIEW_READY,
            rendered_media_ref=result.media_ref,
            last_frame_ref=result.last_frame_ref,
            error_message="",
        )
        if done is None:
            self._log(f"dropping render result for discarded shot {local_id}")
            return None
        self._record(local_id, {"ok": True, "media_ref": result.media_ref, "num_frames": result.num_frames})
        await self._persist(done, is_final=True)
        return result

    async def _persist(self, shot: Shot, is_final: bool) -> None:
        if self.engine is None:
            return
        try:
            await self.engine.persist(shot, is_final=is_final)
        except PersistenceError as exc:
            # The bin keeps the optimistic entry; save_to_bin retries the final write.
            self._warn(f"shot {shot.local_id}: {'completion' if is_final else 'pending'} persist failed: {exc}")

    def _finish(self, local_id: str, **changes: Any) -> None:
        shot = self.drafts.get(local_id)
        if shot is None or shot.status != RENDERING:
            return
        self.drafts.apply(local_id, status=DRAFT, **changes)

    def _record(self, local_id: str, payload: Dict[str, Any]) -> None:
        if self.event_log is not None:
            self.event_log.record_step(local_id, "render", payload)

    def _log(self, message: str) -> None:
        if self.event_log is not None:
            self.event_log.log(message)

    def _warn(self, message: str) -> None:
        if self.event_log is not None:
            self.event_log.warn(message)
