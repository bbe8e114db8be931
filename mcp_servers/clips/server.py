"""
Clip store service: upsert-by-id records for clips and keyframes.
Backs the MCP entrypoint and the studio's local store mode.
"""
import json
from typing import Any, Dict, Optional

from .db import ClipDB


class ClipStoreService:
    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db = ClipDB(db_path=db_path)

    def clip_upsert(self, record: Dict[str, Any], collection: str = "clips") -> Dict[str, Any]:
        return {"record": self.db.upsert(record, collection=collection)}

    def clip_get(self, record_id: str, collection: str = "clips") -> Dict[str, Any]:
        return {"record": self.db.get(record_id, collection=collection)}

    def clip_list(
        self,
        collection: str = "clips",
        status: Optional[str] = None,
        limit: int = 200,
    ) -> Dict[str, Any]:
        return {"records": self.db.list(collection=collection, status=status, limit=limit)}

    def clip_delete(self, record_id: str, collection: str = "clips") -> Dict[str, Any]:
        return {"deleted": self.db.delete(record_id, collection=collection)}


def _example() -> None:
    service = ClipStoreService()
    res = service.clip_upsert({"name": "Hero intro", "status": "rendering"})
    print(json.dumps(res, indent=2))
    record_id = res["record"]["id"]
    res = service.clip_upsert({"id": record_id, "name": "Hero intro", "status": "completed"})
    print(json.dumps(res, indent=2))
    print(json.dumps(service.clip_list(), indent=2))


if __name__ == "__main__":
    _example()
