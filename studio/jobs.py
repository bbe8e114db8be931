"""Per-shot job handles and detached task spawning."""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from anyio.abc import TaskGroup

from .capture import AudioRecorder
from .errors import JobCancelled, StudioError


@dataclass
class JobHandle:
    job_id: int
    local_id: str
    kind: str
    cancelled: bool = False

    def check(self) -> None:
        if self.cancelled:
            raise JobCancelled(f"{self.kind} for shot {self.local_id} was discarded")


@dataclass
class _ShotJobs:
    handles: List[JobHandle] = field(default_factory=list)
    recorder: Optional[AudioRecorder] = None


class JobRegistry:
    """Replaces loose recorder/poll handles with one entry per shot local_id."""

    def __init__(self) -> None:
        self._shots: Dict[str, _ShotJobs] = {}
        self._ids = itertools.count(1)
        self.task_group: Optional[TaskGroup] = None

    def begin(self, local_id: str, kind: str) -> JobHandle:
        handle = JobHandle(job_id=next(self._ids), local_id=local_id, kind=kind)
        self._shots.setdefault(local_id, _ShotJobs()).handles.append(handle)
        return handle

    def finish(self, handle: JobHandle) -> None:
        entry = self._shots.get(handle.local_id)
        if entry is None:
            return
        entry.handles = [h for h in entry.handles if h.job_id != handle.job_id]
        if not entry.handles and entry.recorder is None:
            self._shots.pop(handle.local_id, None)

    def active(self, local_id: str, kind: Optional[str] = None) -> List[JobHandle]:
        entry = self._shots.get(local_id)
        if entry is None:
            return []
        return [h for h in entry.handles if kind is None or h.kind == kind]

    def cancel(self, local_id: str) -> int:
        entry = self._shots.pop(local_id, None)
        if entry is None:
            return 0
        for handle in entry.handles:
            handle.cancelled = True
        if entry.recorder is not None and entry.recorder.recording:
            entry.recorder.stop()
        return len(entry.handles)

    def recorder_for(self, local_id: str, sample_rate: int = 16000) -> AudioRecorder:
        entry = self._shots.setdefault(local_id, _ShotJobs())
        if entry.recorder is None:
            entry.recorder = AudioRecorder(sample_rate=sample_rate)
        return entry.recorder

    def release_recorder(self, local_id: str) -> None:
        entry = self._shots.get(local_id)
        if entry is None:
            return
        entry.recorder = None
        if not entry.handles:
            self._shots.pop(local_id, None)

    def spawn(
        self,
        local_id: str,
        kind: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        on_done: Optional[Callable[[Any], None]] = None,
        on_error: Optional[Callable[[StudioError], None]] = None,
        is_present: Optional[Callable[[str], bool]] = None,
    ) -> None:
        """Start fn in the background; on_done is skipped once the shot is gone."""
        if self.task_group is None:
            raise RuntimeError("JobRegistry has no task group; open the Studio first")

        async def _runner() -> None:
            try:
                result = await fn(*args)
            except JobCancelled:
                return
            except StudioError as exc:
                # The job already wrote the failure onto the shot.
                if on_error is not None:
                    on_error(exc)
                return
            if on_done is None:
                return
            if is_present is not None and not is_present(local_id):
                return
            on_done(result)

        self.task_group.start_soon(_runner, name=f"{kind}:{local_id}")
