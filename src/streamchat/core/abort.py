"""Cooperative cancellation for a single exchange."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class AbortSignal:
    """Read side of an abort handle. Checked by the decoder after each chunk."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()


class AbortController:
    """Owns one ``AbortSignal``. A session holds at most one live controller."""

    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: str = "aborted") -> None:
        if self.signal.aborted:
            return
        logger.debug("Aborting exchange: %s", reason)
        self.signal._reason = reason
        self.signal._event.set()
