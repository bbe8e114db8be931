"""Keyframe image generation, persisted with the same pending/complete pattern as clips."""
from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from .errors import RECOVERABLE_ERRORS, NoMediaFoundError, PersistenceError, ValidationError
from .generation_clients import KeyframeClient
from .media import extract_image_ref
from .reconcile import ReconciliationEngine
from .run_logger import EventLog

KEYFRAMES = "keyframes"


class KeyframeJob:
    def __init__(
        self,
        client: KeyframeClient,
        engine: ReconciliationEngine,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self.client = client
        self.engine = engine
        self.event_log = event_log

    async def run(self, scene_ref: str, prompt: str, name: str = "", **metadata: Any) -> Dict[str, Any]:
        if not (prompt or "").strip():
            raise ValidationError("keyframe prompt is empty")
        local_key = f"keyframe-{uuid.uuid4().hex[:12]}"
        base: Dict[str, Any] = {"scene_id": scene_ref, "name": name, "prompt": prompt.strip()}
        base.update(metadata)

        await self._upsert(local_key, dict(base, status="pending", image_url=None), best_effort=True)
        try:
            data = await self.client.generate(dict(base))
            image_url = extract_image_ref(data)
            if not image_url:
                raise NoMediaFoundError("no image reference in keyframe response")
        except RECOVERABLE_ERRORS as exc:
            await self._upsert(local_key, dict(base, status="failed", image_url=None, error=str(exc)), best_effort=True)
            raise
        record = await self._upsert(local_key, dict(base, status="complete", image_url=image_url))
        if self.event_log is not None:
            self.event_log.record_step(local_key, "keyframe", {"ok": True, "image_url": image_url, "id": record.get("id")})
        return record

    async def _upsert(self, local_key: str, record: Dict[str, Any], best_effort: bool = False) -> Dict[str, Any]:
        try:
            return await self.engine.persist_record(KEYFRAMES, local_key, record)
        except PersistenceError as exc:
            if not best_effort:
                raise
            if self.event_log is not None:
                self.event_log.warn(f"keyframe {local_key}: {record.get('status')} write failed: {exc}")
            return {}
