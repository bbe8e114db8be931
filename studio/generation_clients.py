"""Clients for the voice conversion, video render and keyframe services."""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from .config import StudioConfig
from .http_client import WebhookClient
from .models import ON_SCREEN


class ConversionClient:
    """Queue-backed conversion endpoint: POST run, GET status/<id>."""

    def __init__(self, config: StudioConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.http = WebhookClient(
            config.conversion_url,
            timeout_sec=config.http_timeout_sec,
            api_key=config.conversion_api_key,
            transport=transport,
        )

    async def submit(self, job_input: Dict[str, Any]) -> Dict[str, Any]:
        return _as_dict(await self.http.post_json("run", {"input": job_input}))

    async def status(self, job_id: str) -> Dict[str, Any]:
        return _as_dict(await self.http.get_json(f"status/{job_id}"))


class RenderClient:
    def __init__(self, config: StudioConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.lipsync = WebhookClient(config.lipsync_url, timeout_sec=config.http_timeout_sec, transport=transport)
        self.i2v = WebhookClient(config.i2v_url, timeout_sec=config.http_timeout_sec, transport=transport)

    def renderer_for(self, speaker_mode: str) -> WebhookClient:
        return self.lipsync if speaker_mode == ON_SCREEN else self.i2v

    async def render(self, speaker_mode: str, payload: Dict[str, Any]) -> Any:
        return await self.renderer_for(speaker_mode).post_json("", payload)


class KeyframeClient:
    def __init__(self, config: StudioConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.http = WebhookClient(config.keyframe_url, timeout_sec=config.http_timeout_sec, transport=transport)

    async def generate(self, payload: Dict[str, Any]) -> Any:
        return await self.http.post_json("", payload)


def _as_dict(data: Any) -> Dict[str, Any]:
    if isinstance(data, list):
        data = data[0] if data else {}
    return data if isinstance(data, dict) else {"output": data}
