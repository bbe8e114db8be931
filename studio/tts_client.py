"""Client for the batched text-to-speech webhook."""
from typing import Any, Dict, List, Optional

import httpx

from .config import StudioConfig
from .http_client import WebhookClient


class TTSClient:
    def __init__(self, config: StudioConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.http = WebhookClient(config.tts_url, timeout_sec=config.http_timeout_sec, transport=transport)

    async def synthesize_dialogue(self, turns: List[Dict[str, Any]]) -> Any:
        return await self.http.post_json("", {"dialogue": turns})
