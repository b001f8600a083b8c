"""Logging helpers."""

from .log import StructuredFormatter, SyncLogger, setup_logging, shutdown_logging

__all__ = ["StructuredFormatter", "SyncLogger", "setup_logging", "shutdown_logging"]
