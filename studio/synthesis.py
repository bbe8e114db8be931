"""Batched dialogue synthesis for a shot, with optional voice conversion."""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from .conversion import ConversionJob
from .drafts import DraftStore
from .errors import RECOVERABLE_ERRORS, JobCancelled, NoMediaFoundError, StudioError, ValidationError
from .jobs import JobHandle
from .media import extract_audio_ref
from .models import DRAFT, GENERATING, Shot
from .run_logger import EventLog
from .tts_client import TTSClient
from .voices import VoiceResolver

_SAMPLE_KEYS = ("duration_samples", "durationSamples")
_RATE_KEYS = ("sample_rate", "sampling_rate", "sampleRate", "samplingRate")
_SECONDS_KEYS = ("duration_seconds", "durationSeconds", "duration")


@dataclass
class SynthesisResult:
    stitched_audio_ref: str
    duration_seconds: float
    converted: bool = False


def _first_number(scope: Dict[str, Any], keys: tuple) -> Optional[float]:
    for key in keys:
        value = scope.get(key)
        if isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if number > 0:
            return number
    return None


def parse_duration(data: Any) -> Optional[float]:
    """Seconds of stitched audio; sample counts win over explicit seconds."""
    if isinstance(data, list):
        data = data[0] if data else {}
    if not isinstance(data, dict):
        return None
    scopes = [data]
    if isinstance(data.get("output"), dict):
        scopes.append(data["output"])
    for scope in scopes:
        samples = _first_number(scope, _SAMPLE_KEYS)
        rate = _first_number(scope, _RATE_KEYS)
        if samples and rate:
            return samples / rate
    for scope in scopes:
        seconds = _first_number(scope, _SECONDS_KEYS)
        if seconds:
            return seconds
    return None


class SynthesisJob:
    def __init__(
        self,
        drafts: DraftStore,
        tts: TTSClient,
        resolver: VoiceResolver,
        conversion: Optional[ConversionJob] = None,
        event_log: Optional[EventLog] = None,
        default_duration_sec: float = 3.0,
    ) -> None:
        self.drafts = drafts
        self.tts = tts
        self.resolver = resolver
        self.conversion = conversion
        self.event_log = event_log
        self.default_duration_sec = default_duration_sec

    def build_turns(self, shot: Shot) -> List[Dict[str, Any]]:
        turns: List[Dict[str, Any]] = []
        for block in shot.dialogue_blocks:
            source = self.resolver.resolve(block.speaker_ref)
            turn = {
                "text": block.text.strip(),
                "speaker": self.resolver.speaker_name(block.speaker_ref),
                "pause_duration": block.pause_after_seconds,
            }
            turn.update(source.turn_fields())
            turns.append(turn)
        for warning in self.resolver.drain_warnings():
            self._warn(f"shot {shot.local_id}: {warning}")
        return turns

    async def run(self, local_id: str, handle: Optional[JobHandle] = None) -> Optional[SynthesisResult]:
        """Synthesize every block in one call. Returns None when the shot went away."""
        shot = self.drafts.require(local_id)
        if any(not (block.text or "").strip() for block in shot.dialogue_blocks):
            self.drafts.set_error(local_id, "Please enter text for all dialogue blocks.")
            raise ValidationError(f"shot {local_id} has dialogue blocks without text")

        generating = [replace(b, is_generating=True) for b in shot.dialogue_blocks]
        self.drafts.transition(local_id, GENERATING, error_message="", dialogue_blocks=generating)
        result: Optional[SynthesisResult] = None
        try:
            result = await self._synthesize(shot, handle)
        except JobCancelled:
            raise
        except RECOVERABLE_ERRORS as exc:
            self._finish(local_id, error_message=f"Generation failed: {exc}")
            self._record(local_id, {"ok": False, "error": str(exc)})
            raise
        finally:
            if result is None:
                # Any other exit still returns the shot to draft.
                self._finish(local_id)
        current = self.drafts.get(local_id)
        if current is None or (handle is not None and handle.cancelled):
            self._finish(local_id)
            self._log(f"dropping synthesis result for discarded shot {local_id}")
            return None
        blocks = [
            replace(b, audio_ref=result.stitched_audio_ref, is_generating=False) for b in current.dialogue_blocks
        ]
        self.drafts.apply(
            local_id,
            status=DRAFT,
            dialogue_blocks=blocks,
            stitched_audio_ref=result.stitched_audio_ref,
            total_audio_duration_seconds=result.duration_seconds,
            is_audio_locked=True,
            error_message="",
        )
        self._record(
            local_id,
            {
                "ok": True,
                "audio_ref": result.stitched_audio_ref,
                "duration_seconds": result.duration_seconds,
                "converted": result.converted,
            },
        )
        return result

    async def _synthesize(self, shot: Shot, handle: Optional[JobHandle]) -> SynthesisResult:
        turns = self.build_turns(shot)
        self._log(f"synthesizing {len(turns)} turns for shot {shot.local_id}")
        data = await self.tts.synthesize_dialogue(turns)
        if handle is not None:
            handle.check()
        audio_ref = extract_audio_ref(data)
        if not audio_ref:
            raise NoMediaFoundError("no audio reference in synthesis response")
        duration = parse_duration(data)
        if duration is None:
            duration = self.default_duration_sec
            self._log(f"shot {shot.local_id}: synthesis response has no duration; using {duration:.1f}s")
        converted = False
        if shot.convert_voice and self.conversion is not None:
            converted_ref = await self._convert(shot, audio_ref, handle)
            if converted_ref:
                audio_ref = converted_ref
                converted = True
        return SynthesisResult(stitched_audio_ref=audio_ref, duration_seconds=duration, converted=converted)

    async def _convert(self, shot: Shot, audio_ref: str, handle: Optional[JobHandle]) -> Optional[str]:
        assert self.conversion is not None
        first = shot.dialogue_blocks[0]
        target = self.resolver.conversion_target(self.resolver.resolve(first.speaker_ref))
        self.resolver.drain_warnings()
        if not target:
            self._log(f"shot {shot.local_id}: no reference audio for conversion; keeping synthesized voice")
            return None
        try:
            return await self.conversion.run(audio_ref, target, handle)
        except JobCancelled:
            raise
        except StudioError as exc:
            self._warn(f"shot {shot.local_id}: conversion failed, keeping unconverted audio: {exc}")
            return None

    def _finish(self, local_id: str, **changes: Any) -> None:
        shot = self.drafts.get(local_id)
        if shot is None or shot.status != GENERATING:
            return
        blocks = [replace(b, is_generating=False) for b in shot.dialogue_blocks]
        self.drafts.apply(local_id, status=DRAFT, dialogue_blocks=blocks, **changes)

    def _record(self, local_id: str, payload: Dict[str, Any]) -> None:
        if self.event_log is not None:
            self.event_log.record_step(local_id, "synthesis", payload)

    def _log(self, message: str) -> None:
        if self.event_log is not None:
            self.event_log.log(message)

    def _warn(self, message: str) -> None:
        if self.event_log is not None:
            self.event_log.warn(message)
