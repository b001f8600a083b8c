from __future__ import annotations

import asyncio

from ..errors import SyncCancelled


class CancellationToken:
    """Cooperative cancellation flag shared by a drain task and its controller.

    ``raise_if_cancelled`` only reads the flag, so worker threads may call it.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelled()

    async def sleep(self, seconds: float) -> None:
        """Wait for ``seconds`` unless cancelled first, in which case raise at once."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return
        raise SyncCancelled()
