"""Voice timbre conversion against a queue-backed service (submit, then poll)."""
from __future__ import annotations

from typing import Any, Dict, Optional

import anyio

from .config import ConversionParams
from .errors import NetworkError, NoMediaFoundError, RemoteJobFailed, ValidationError
from .generation_clients import ConversionClient
from .jobs import JobHandle
from .media import audio_data_uri, extract_audio_ref
from .run_logger import EventLog

COMPLETED_STATUSES = frozenset({"COMPLETED", "SUCCEEDED", "SUCCESS", "DONE"})
FAILED_STATUSES = frozenset({"FAILED", "CANCELLED", "CANCELED", "TIMED_OUT", "ERROR"})
QUEUED_STATUSES = frozenset({"IN_QUEUE", "IN_PROGRESS", "QUEUED", "PENDING", "RUNNING", "STARTING"})

_INLINE_KEYS = ("audio_base64", "audio_b64", "audio")


def normalize_status(value: Any) -> str:
    return str(value or "").strip().upper().replace("-", "_").replace(" ", "_")


def _job_id(data: Dict[str, Any]) -> Optional[str]:
    for key in ("id", "job_id", "jobId"):
        value = data.get(key)
        if value:
            return str(value)
    return None


def audio_from_output(data: Dict[str, Any]) -> Optional[str]:
    """URL or inline audio carried by a conversion response, if any."""
    url = extract_audio_ref(data)
    if url:
        return url
    output = data.get("output")
    scopes = [output, data] if isinstance(output, dict) else [data]
    for scope in scopes:
        fmt = str(scope.get("format") or "wav")
        for key in _INLINE_KEYS:
            value = scope.get(key)
            if isinstance(value, str) and value.strip():
                return audio_data_uri(value, fmt)
    if isinstance(output, str) and output.strip():
        # Bare base64 payload in place of an output object.
        return audio_data_uri(output, "wav")
    return None


class ConversionJob:
    def __init__(
        self,
        client: ConversionClient,
        params: Optional[ConversionParams] = None,
        poll_interval_sec: float = 2.0,
        poll_timeout_sec: float = 600.0,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self.client = client
        self.params = params or ConversionParams()
        self.poll_interval_sec = poll_interval_sec
        self.poll_timeout_sec = poll_timeout_sec
        self.event_log = event_log

    async def run(
        self,
        source_audio_ref: str,
        target_voice_ref: str,
        handle: Optional[JobHandle] = None,
    ) -> str:
        if not source_audio_ref:
            raise ValidationError("conversion needs source audio")
        if not target_voice_ref:
            raise ValidationError("conversion needs a target voice reference")
        job_input: Dict[str, Any] = {
            "source_audio": source_audio_ref,
            "target_audio": target_voice_ref,
        }
        job_input.update(self.params.as_payload())
        response = await self.client.submit(job_input)
        if handle is not None:
            handle.check()
        status = normalize_status(response.get("status"))
        job_id = _job_id(response)
        if status in FAILED_STATUSES:
            raise RemoteJobFailed(f"conversion rejected: {status} {response.get('error') or ''}".strip(), job_id)
        audio = audio_from_output(response)
        if audio and status not in QUEUED_STATUSES:
            self._log(f"conversion returned immediately (job={job_id or '-'})")
            return audio
        if not job_id:
            raise NoMediaFoundError("conversion response carried neither audio nor a job id")
        self._log(f"conversion queued job={job_id} status={status or 'UNKNOWN'}")
        return await self._poll(job_id, handle)

    async def run_capture(
        self,
        audio_bytes: bytes,
        target_voice_ref: str,
        handle: Optional[JobHandle] = None,
    ) -> str:
        """Convert freshly captured WAV bytes, sent inline as the source audio."""
        if not audio_bytes:
            raise ValidationError("no captured audio to convert")
        return await self.run(audio_data_uri(audio_bytes, "wav"), target_voice_ref, handle)

    async def _poll(self, job_id: str, handle: Optional[JobHandle]) -> str:
        deadline = anyio.current_time() + self.poll_timeout_sec
        attempts = 0
        while True:
            if anyio.current_time() >= deadline:
                raise RemoteJobFailed(
                    f"conversion job {job_id} still running after {self.poll_timeout_sec:.0f}s",
                    job_id,
                )
            await anyio.sleep(self.poll_interval_sec)
            if handle is not None:
                handle.check()
            attempts += 1
            try:
                data = await self.client.status(job_id)
            except NetworkError as exc:
                # A blip or a 404 before the job is visible; retry on the next interval.
                self._log(f"conversion job={job_id} poll {attempts} failed, retrying: {exc}")
                continue
            if handle is not None:
                handle.check()
            status = normalize_status(data.get("status"))
            if status in COMPLETED_STATUSES:
                audio = audio_from_output(data)
                if not audio:
                    raise NoMediaFoundError(f"conversion job {job_id} completed without audio")
                self._log(f"conversion job={job_id} completed after {attempts} polls")
                return audio
            if status in FAILED_STATUSES:
                detail = data.get("error") or data.get("message") or ""
                raise RemoteJobFailed(f"conversion job {job_id} {status.lower()}: {detail}".rstrip(": "), job_id)

    def _log(self, message: str) -> None:
        if self.event_log is not None:
            self.event_log.log(message)
