"""Studio facade: wires drafts, jobs, persistence and the background task group."""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import anyio
import httpx
from anyio.abc import TaskGroup

from .audio_utils import wav_duration_sec
from .config import StudioConfig
from .conversion import ConversionJob
from .drafts import DraftStore
from .errors import RECOVERABLE_ERRORS, InvalidTransition, PersistenceError, StudioError, ValidationError
from .generation_clients import ConversionClient, KeyframeClient, RenderClient
from .jobs import JobHandle, JobRegistry
from .keyframes import KeyframeJob
from .mcp_clients import ClipStoreClient
from .models import COMPLETED, DRAFT, GENERATING, PREVIEW_READY, RENDERING, PersistedShot, Shot
from .reconcile import ReconciliationEngine
from .render import RenderJob, RenderResult
from .run_logger import EventLog
from .synthesis import SynthesisJob, SynthesisResult
from .tts_client import TTSClient
from .voices import VoiceResolver, load_characters, load_voice_registry

JobFn = Callable[[str, Optional[JobHandle]], Awaitable[Any]]


class Studio:
    def __init__(
        self,
        config: Optional[StudioConfig] = None,
        store: Optional[ClipStoreClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        characters: Optional[Iterable[Dict[str, Any]]] = None,
        echo: bool = False,
    ) -> None:
        self.config = config or StudioConfig.from_env()
        cfg = self.config
        self.event_log = EventLog(cfg.log_dir, echo=echo)
        self.drafts = DraftStore(
            cfg.drafts_path,
            event_log=self.event_log,
            default_duration_sec=cfg.default_duration_sec,
            default_pause_sec=cfg.default_pause_sec,
        )
        self.resolver = VoiceResolver(
            load_characters(characters or []),
            load_voice_registry(cfg.voices_path),
            clone_sentinel=cfg.clone_sentinel,
            default_voice_id=cfg.default_voice_id,
        )
        self.store = store or ClipStoreClient()
        self.registry = JobRegistry()
        self.engine = ReconciliationEngine(
            self.store,
            self.drafts,
            resolver=self.resolver,
            event_log=self.event_log,
            window_sec=cfg.merge_window_sec,
            default_duration_sec=cfg.default_duration_sec,
        )
        self.conversion = ConversionJob(
            ConversionClient(cfg, transport=transport),
            params=cfg.conversion,
            poll_interval_sec=cfg.poll_interval_sec,
            poll_timeout_sec=cfg.poll_timeout_sec,
            event_log=self.event_log,
        )
        self.synthesis = SynthesisJob(
            self.drafts,
            TTSClient(cfg, transport=transport),
            self.resolver,
            conversion=self.conversion,
            event_log=self.event_log,
            default_duration_sec=cfg.default_duration_sec,
        )
        self.renderer = RenderJob(
            self.drafts,
            RenderClient(cfg, transport=transport),
            engine=self.engine,
            event_log=self.event_log,
            fps=cfg.fps,
            prompt_max_tokens=cfg.prompt_max_tokens,
            default_duration_sec=cfg.default_duration_sec,
        )
        self.keyframes = KeyframeJob(KeyframeClient(cfg, transport=transport), self.engine, event_log=self.event_log)
        self._task_group: Optional[TaskGroup] = None

    async def __aenter__(self) -> "Studio":
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        self.registry.task_group = self._task_group
        return self

    async def __aexit__(self, *exc_info: Any) -> Optional[bool]:
        assert self._task_group is not None
        try:
            return await self._task_group.__aexit__(*exc_info)
        finally:
            self.registry.task_group = None
            self._task_group = None

    # --- library ---

    def set_characters(self, records: Iterable[Dict[str, Any]]) -> None:
        self.resolver.characters = load_characters(records)

    def load_voices(self, path: Optional[str] = None) -> int:
        self.resolver.registry_voices = load_voice_registry(path or self.config.voices_path)
        return len(self.resolver.registry_voices)

    # --- drafts ---

    def create_shot(self, scene_ref: str, keyframe_ref: Optional[str] = None, **fields: Any) -> Shot:
        shot = self.drafts.create(scene_ref, keyframe_ref=keyframe_ref, **fields)
        self.event_log.log(f"created shot {shot.local_id} scene={scene_ref}")
        return shot

    def reopen(self, local_id: str) -> Shot:
        return self.drafts.reopen(local_id)

    def discard(self, local_id: str) -> bool:
        cancelled = self.registry.cancel(local_id)
        shot = self.drafts.discard(local_id)
        if shot is not None:
            self.event_log.forget(local_id)
            self.event_log.log(f"discarded shot {local_id} ({cancelled} job(s) cancelled)")
        return shot is not None

    # --- jobs, awaited ---

    async def generate_dialogue(self, local_id: str) -> Optional[SynthesisResult]:
        self._reject_if_busy(local_id, GENERATING)
        return await self._tracked(local_id, "synthesis", self.synthesis.run)

    async def render(self, local_id: str) -> Optional[RenderResult]:
        self._reject_if_busy(local_id, RENDERING)
        return await self._tracked(local_id, "render", self.renderer.run)

    async def produce(self, local_id: str) -> Optional[RenderResult]:
        """Synthesis (when audio is missing) then render, strictly in order."""
        self._reject_if_busy(local_id, RENDERING)
        return await self._tracked(local_id, "produce", self._produce)

    async def _produce(self, local_id: str, handle: Optional[JobHandle] = None) -> Optional[RenderResult]:
        shot = self.drafts.require(local_id)
        has_text = any((b.text or "").strip() for b in shot.dialogue_blocks)
        if has_text and not shot.stitched_audio_ref:
            if await self.synthesis.run(local_id, handle) is None:
                return None
        if handle is not None:
            handle.check()
        return await self.renderer.run(local_id, handle)

    # --- jobs, detached ---

    def spawn_generate(self, local_id: str, on_done: Optional[Callable[[Any], None]] = None) -> JobHandle:
        self._reject_if_busy(local_id, GENERATING)
        return self._spawn(local_id, "synthesis", self.synthesis.run, on_done)

    def spawn_render(self, local_id: str, on_done: Optional[Callable[[Any], None]] = None) -> JobHandle:
        self._reject_if_busy(local_id, RENDERING)
        shot = self.drafts.require(local_id)
        try:
            self.renderer.validate(shot)
        except InvalidTransition:
            raise
        except ValidationError as exc:
            self.drafts.set_error(local_id, str(exc))
            raise
        return self._spawn(local_id, "render", self.renderer.run, on_done)

    def spawn_produce(self, local_id: str, on_done: Optional[Callable[[Any], None]] = None) -> JobHandle:
        self._reject_if_busy(local_id, RENDERING)
        return self._spawn(local_id, "produce", self._produce, on_done)

    def _spawn(self, local_id: str, kind: str, fn: JobFn, on_done: Optional[Callable[[Any], None]]) -> JobHandle:
        handle = self.registry.begin(local_id, kind)

        async def _run() -> Any:
            try:
                return await fn(local_id, handle)
            finally:
                self.registry.finish(handle)

        def _failed(exc: StudioError) -> None:
            self.event_log.warn(f"{kind} for shot {local_id} failed: {exc}")

        try:
            self.registry.spawn(
                local_id,
                kind,
                _run,
                on_done=on_done,
                on_error=_failed,
                is_present=self.drafts.__contains__,
            )
        except RuntimeError:
            self.registry.finish(handle)
            raise
        return handle

    async def _tracked(self, local_id: str, kind: str, fn: JobFn) -> Any:
        handle = self.registry.begin(local_id, kind)
        try:
            return await fn(local_id, handle)
        finally:
            self.registry.finish(handle)

    def _reject_if_busy(self, local_id: str, target: str) -> None:
        # One job at a time per shot; a second request is rejected, not queued.
        shot = self.drafts.require(local_id)
        if self.registry.active(local_id) or shot.status in (GENERATING, RENDERING):
            raise InvalidTransition(local_id, shot.status, target)

    # --- bin ---

    async def save_to_bin(self, local_id: str) -> PersistedShot:
        """Promote a previewed shot into the remote collection and drop the draft."""
        shot = self.drafts.require(local_id)
        if shot.status != PREVIEW_READY or self.registry.active(local_id):
            # A render still writing its completion phase would race this upsert.
            raise InvalidTransition(local_id, shot.status, COMPLETED)
        handle = self.registry.begin(local_id, "save")
        try:
            persisted = await self.engine.persist(shot, is_final=True)
        except PersistenceError as exc:
            self.drafts.set_error(local_id, f"Save failed: {exc}")
            raise
        finally:
            self.registry.finish(handle)
        if self.drafts.apply(local_id, status=COMPLETED, error_message="") is not None:
            self.drafts.discard(local_id)
        self.event_log.forget(local_id)
        self.event_log.log(f"saved shot {local_id} to bin as {persisted.id}")
        return persisted

    async def refresh_bin(self) -> List[PersistedShot]:
        return await self.engine.refresh_bin()

    async def delete_clip(self, clip_id: str) -> None:
        await self.engine.delete(clip_id)
        self.event_log.log(f"deleted clip {clip_id}")

    def remix(self, clip_id: str) -> Shot:
        for entry in self.drafts.bin:
            if entry.id == clip_id:
                shot = self.drafts.restore(entry)
                self.event_log.log(f"remixed clip {clip_id} into shot {shot.local_id}")
                return shot
        raise ValidationError(f"unknown clip: {clip_id}")

    async def generate_keyframe(self, scene_ref: str, prompt: str, name: str = "", **metadata: Any) -> Dict[str, Any]:
        return await self.keyframes.run(scene_ref, prompt, name=name, **metadata)

    # --- direct capture ---

    def start_capture(self, local_id: str, sample_rate: int = 16000) -> None:
        self.drafts.require(local_id)
        recorder = self.registry.recorder_for(local_id, sample_rate=sample_rate)
        if recorder.recording:
            raise ValidationError(f"shot {local_id} is already recording")
        recorder.start()

    def stop_capture(self, local_id: str) -> bytes:
        recorder = self.registry.recorder_for(local_id)
        if not recorder.recording:
            self.registry.release_recorder(local_id)
            raise ValidationError(f"shot {local_id} is not recording")
        blob = recorder.stop()
        self.registry.release_recorder(local_id)
        return blob

    async def convert_capture(self, local_id: str, audio_bytes: Optional[bytes] = None) -> Optional[str]:
        """Re-voice captured audio toward the first block's voice and lock it onto the shot."""
        blob = audio_bytes if audio_bytes is not None else self.stop_capture(local_id)
        self._reject_if_busy(local_id, GENERATING)
        shot = self.drafts.require(local_id)
        target = self.resolver.conversion_target(self.resolver.resolve(shot.dialogue_blocks[0].speaker_ref))
        self.resolver.drain_warnings()
        if not target:
            self.drafts.set_error(local_id, "No reference voice to convert the recording toward.")
            raise ValidationError(f"shot {local_id} has no conversion target voice")
        duration = wav_duration_sec(blob) * self.config.conversion.length_adjust
        self.drafts.transition(local_id, GENERATING, error_message="")
        handle = self.registry.begin(local_id, "capture")
        audio_ref: Optional[str] = None
        try:
            audio_ref = await self.conversion.run_capture(blob, target, handle)
        except RECOVERABLE_ERRORS as exc:
            self._back_to_draft(local_id, error_message=f"Conversion failed: {exc}")
            raise
        finally:
            self.registry.finish(handle)
            if audio_ref is None:
                self._back_to_draft(local_id)
        current = self.drafts.get(local_id)
        if current is None:
            return None
        blocks = [replace(b, audio_ref=audio_ref) for b in current.dialogue_blocks]
        self.drafts.apply(
            local_id,
            status=DRAFT,
            dialogue_blocks=blocks,
            stitched_audio_ref=audio_ref,
            total_audio_duration_seconds=duration or self.config.default_duration_sec,
            is_audio_locked=True,
        )
        self.event_log.record_step(local_id, "capture_conversion", {"ok": True, "duration_seconds": duration})
        return audio_ref

    def _back_to_draft(self, local_id: str, **changes: Any) -> None:
        shot = self.drafts.get(local_id)
        if shot is not None and shot.status == GENERATING:
            self.drafts.apply(local_id, status=DRAFT, **changes)
