"""MCP server entrypoint for the clip store."""
import os
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from .server import ClipStoreService


host = os.getenv("MCP_HOST", "127.0.0.1")
port = int(os.getenv("MCP_PORT", "8000"))
path = os.getenv("MCP_PATH", "/mcp").rstrip("/")

mcp = FastMCP(
    "mcp-clips",
    json_response=True,
    host=host,
    port=port,
    sse_path=f"{path}/sse",
    message_path=f"{path}/messages/",
)
service = ClipStoreService()


@mcp.tool()
def clip_upsert(record: Dict[str, Any], collection: str = "clips") -> Dict[str, Any]:
    return service.clip_upsert(record, collection=collection)


@mcp.tool()
def clip_get(record_id: str, collection: str = "clips") -> Dict[str, Any]:
    return service.clip_get(record_id, collection=collection)


@mcp.tool()
def clip_list(collection: str = "clips", status: Optional[str] = None, limit: int = 200) -> Dict[str, Any]:
    return service.clip_list(collection=collection, status=status, limit=limit)


@mcp.tool()
def clip_delete(record_id: str, collection: str = "clips") -> Dict[str, Any]:
    return service.clip_delete(record_id, collection=collection)


if __name__ == "__main__":
    transport = os.getenv("MCP_TRANSPORT", "stdio")
    mcp.run(transport=transport)
