"""Clip store client over MCP (HTTP or SSE) with a local SQLite fallback."""
from __future__ import annotations

import json
import os
from datetime import timedelta
from typing import Any, Dict, List, Optional

from anyio import to_thread
import httpx
from mcp.client.session import ClientSession
from mcp.client.sse import sse_client

from mcp_servers.clips.server import ClipStoreService

from .errors import NetworkError, PersistenceError, StudioError
from .sanitize import sanitize_payload


def _env_url(name: str) -> Optional[str]:
    value = (os.getenv(name) or "").strip()
    return value or None


class MCPHttpClient:
    def __init__(
        self,
        url: str,
        timeout_sec: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout_sec = float(timeout_sec or os.getenv("MCP_HTTP_TIMEOUT_SEC", "60"))
        self.transport = transport

    async def call(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "tools/call",
            "params": {"name": name, "arguments": args},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_sec, transport=self.transport) as client:
                resp = await client.post(self.url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            body = exc.response.text[:500]
            raise NetworkError(
                f"MCP HTTP {exc.response.status_code}: {body}",
                status_code=exc.response.status_code,
                url=self.url,
                body=body,
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"MCP HTTP connection failed: {exc}", url=self.url) from exc
        try:
            parsed = resp.json()
        except ValueError as exc:
            body = resp.text[:500]
            raise NetworkError(
                f"MCP HTTP returned a non-JSON body: {body[:120]}",
                status_code=resp.status_code,
                url=self.url,
                body=body,
            ) from exc
        if not isinstance(parsed, dict):
            raise StudioError(f"MCP tool {name} returned an unexpected payload")
        if "error" in parsed:
            raise StudioError(f"MCP tool {name} failed: {parsed['error']}")
        return parsed.get("result", {})


class MCPSSEClient:
    def __init__(self, url: str, timeout_sec: Optional[float] = None) -> None:
        self.url = url
        self.timeout_sec = float(timeout_sec or os.getenv("MCP_HTTP_TIMEOUT_SEC", "60"))
        self.read_timeout_sec = float(os.getenv("MCP_SSE_READ_TIMEOUT_SEC", "300"))

    async def call(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        async with sse_client(
            self.url,
            timeout=self.timeout_sec,
            sse_read_timeout=self.read_timeout_sec,
        ) as (read_stream, write_stream):
            async with ClientSession(
                read_stream,
                write_stream,
                read_timeout_seconds=timedelta(seconds=self.read_timeout_sec),
            ) as session:
                await session.initialize()
                result = await session.call_tool(name, arguments=args)
                if result.isError:
                    raise StudioError(f"MCP tool {name} failed: {result}")
                if result.structuredContent is not None:
                    return _unwrap(result.structuredContent)
                # Fallback to JSON in text content if present.
                for item in result.content:
                    if getattr(item, "type", None) == "text":
                        try:
                            return _unwrap(json.loads(item.text))
                        except ValueError:
                            break
                raise StudioError("MCP SSE response missing structured content")


def _unwrap(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, dict) and "result" in payload and isinstance(payload["result"], dict):
        return payload["result"]
    return payload if isinstance(payload, dict) else {}


def _transport() -> str:
    return (os.getenv("MCP_TRANSPORT") or "http").strip().lower()


def _make_client(url: str, timeout_sec: Optional[float] = None) -> MCPHttpClient | MCPSSEClient:
    if _transport() == "sse":
        return MCPSSEClient(url, timeout_sec=timeout_sec)
    return MCPHttpClient(url, timeout_sec=timeout_sec)


class ClipStoreClient:
    """Remote durable store. Every failure surfaces as PersistenceError."""

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.url = _env_url("STUDIO_STORE_URL")
        if self.url:
            self.client = _make_client(self.url, timeout_sec=os.getenv("STUDIO_STORE_TIMEOUT_SEC"))
            self.mode = _transport()
        else:
            self.service = ClipStoreService(db_path=db_path)
            self.mode = "local"

    async def upsert(self, record: Dict[str, Any], collection: str = "clips") -> Dict[str, Any]:
        clean = sanitize_payload(record)
        res = await self._call("clip_upsert", {"record": clean, "collection": collection})
        stored = res.get("record")
        if not isinstance(stored, dict) or not stored.get("id"):
            raise PersistenceError("clip_upsert returned no record id")
        return stored

    async def get(self, record_id: str, collection: str = "clips") -> Optional[Dict[str, Any]]:
        res = await self._call("clip_get", {"record_id": record_id, "collection": collection})
        return res.get("record")

    async def list(
        self,
        collection: str = "clips",
        status: Optional[str] = None,
        limit: int = 200,
    ) -> List[Dict[str, Any]]:
        res = await self._call("clip_list", {"collection": collection, "status": status, "limit": limit})
        return list(res.get("records") or [])

    async def delete(self, record_id: str, collection: str = "clips") -> bool:
        res = await self._call("clip_delete", {"record_id": record_id, "collection": collection})
        return bool(res.get("deleted"))

    async def _call(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        try:
            if self.mode != "local":
                return await self.client.call(name, args)
            # SQLite is blocking; keep it off the event loop.
            return await to_thread.run_sync(self._call_local, name, args)
        except PersistenceError:
            raise
        except Exception as exc:
            # Garbled bodies, transport and MCP session errors all count as the store being down.
            raise PersistenceError(f"{name} failed: {exc}") from exc

    def _call_local(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        if name == "clip_upsert":
            return self.service.clip_upsert(args["record"], collection=args["collection"])
        if name == "clip_get":
            return self.service.clip_get(args["record_id"], collection=args["collection"])
        if name == "clip_list":
            return self.service.clip_list(
                collection=args["collection"],
                status=args.get("status"),
                limit=args.get("limit", 200),
            )
        if name == "clip_delete":
            return self.service.clip_delete(args["record_id"], collection=args["collection"])
        raise ValueError(f"Unknown clip store tool: {name}")
