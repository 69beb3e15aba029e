"""Cooperative cancellation shared between the agent loop and its caller."""

from __future__ import annotations

import asyncio
import contextlib


class OperatorCancelled(Exception):
    """Raised at a cancellation checkpoint once stop() has been requested."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperatorCancelled("operator stopped")

    async def sleep(self, delay: float) -> None:
        """Sleep up to `delay` seconds, returning early when cancelled."""
        if delay <= 0:
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=delay)


__all__ = ["CancellationToken", "OperatorCancelled"]
