"""Async JSON client for generation webhooks."""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from .errors import NetworkError
from .sanitize import sanitize_payload


class WebhookClient:
    def __init__(
        self,
        base_url: str,
        timeout_sec: float = 300.0,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = float(timeout_sec)
        self.api_key = (api_key or "").strip()
        self.transport = transport

    def url_for(self, path: str = "") -> str:
        if not path:
            return self.base_url
        return f"{self.base_url}/{path.lstrip('/')}"

    async def post_json(self, path: str = "", payload: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("POST", path, sanitize_payload(payload or {}))

    async def get_json(self, path: str = "") -> Any:
        return await self._request("GET", path, None)

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]]) -> Any:
        url = self.url_for(path)
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_sec, transport=self.transport) as client:
                resp = await client.request(method, url, json=payload, headers=headers)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            body = exc.response.text[:500] if exc.response is not None else None
            status = exc.response.status_code if exc.response is not None else None
            raise NetworkError(
                f"{method} {url} failed: HTTP {status}",
                status_code=status,
                url=url,
                body=body,
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {url} failed: {type(exc).__name__}: {exc}", url=url) from exc
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise NetworkError(
                f"{method} {url} returned invalid JSON",
                status_code=resp.status_code,
                url=url,
                body=resp.text[:500],
            ) from exc
