"""Sync engine services."""

from .cancellation import CancellationToken
from .hashing import HashCollector
from .orchestrator import SyncOrchestrator
from .preparation import SyncPreparation
from .retry import RetryPolicy
from .uploader import ChunkedUploadClient

__all__ = [
    "CancellationToken",
    "ChunkedUploadClient",
    "HashCollector",
    "RetryPolicy",
    "SyncOrchestrator",
    "SyncPreparation",
]
