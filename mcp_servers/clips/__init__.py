from .db import ClipDB
from .server import ClipStoreService

__all__ = ["ClipDB", "ClipStoreService"]
