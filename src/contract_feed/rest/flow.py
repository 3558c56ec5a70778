"""Flow controller - strictly alternating handoff between scanner and consumer."""

from __future__ import annotations

import asyncio
import logging

log = logging.getLogger(__name__)


class FlowController:
    """Cooperative backpressure for the CursorScanner.

    After delivering a batch the scanner calls ``wait()`` and stays
    suspended until the consumer calls ``ack()``. Acknowledgements are
    counted tokens: N calls to ``ack()`` unblock exactly N waits, whether
    they arrive before or after the wait starts.
    """

    def __init__(self) -> None:
        self._tokens: asyncio.Queue[None] = asyncio.Queue()

    def ack(self) -> None:
        """Acknowledge the most recently delivered batch."""
        self._tokens.put_nowait(None)

    async def wait(self) -> None:
        """Consume one acknowledgement token, suspending until one is available."""
        await self._tokens.get()
        log.debug("Batch acknowledged")

    @property
    def pending(self) -> int:
        """Acknowledgements banked but not yet consumed."""
        return self._tokens.qsize()
