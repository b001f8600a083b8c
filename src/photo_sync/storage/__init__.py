"""Storage package exports for SQLAlchemy helpers and stores."""
from .cache import SqlPhotoCache  # noqa: F401
from .db import Database, get_engine  # noqa: F401
from .models import Base  # noqa: F401
from .queue import UploadQueueStore  # noqa: F401
from .state import SyncStateRepository  # noqa: F401

__all__ = ["Base", "Database", "SqlPhotoCache", "SyncStateRepository", "UploadQueueStore", "get_engine"]
