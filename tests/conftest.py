from __future__ import annotations

import pytest

from studio.config import StudioConfig
from studio.mcp_clients import ClipStoreClient


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def config(tmp_path):
    return StudioConfig(data_root=str(tmp_path), poll_interval_sec=0.0, poll_timeout_sec=5.0)


@pytest.fixture
def clip_store(tmp_path, monkeypatch):
    monkeypatch.delenv("STUDIO_STORE_URL", raising=False)
    return ClipStoreClient(db_path=str(tmp_path / "sqlite" / "clips.db"))
