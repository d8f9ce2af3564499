"""Periodic polling of a mail receiver.

``MailReceiver.receive`` is blocking and never retries on its own; the poller
runs it in a worker thread on a fixed interval, hands non-empty batches to a
handler, and logs failures so the next cycle simply tries again.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Union

from .receiver import MailReceiver


logger = logging.getLogger(__name__)

BatchHandler = Callable[[List[Any]], Union[None, Awaitable[None]]]


class MailPoller:
    """Poll a receiver until stopped."""

    def __init__(
        self,
        *,
        receiver: MailReceiver,
        handler: BatchHandler,
        poll_interval: float = 60,
    ):
        """Initialize poller.

        Args:
            receiver: Receiver to poll
            handler: Called with every non-empty batch (sync or async)
            poll_interval: Seconds between polls
        """
        self.receiver = receiver
        self.handler = handler
        self.poll_interval = poll_interval
        self._stop_event = asyncio.Event()
        self._poll_task: Optional[asyncio.Task[None]] = None

    async def start(self) -> None:
        """Start polling."""
        if self._poll_task and not self._poll_task.done():
            raise RuntimeError("Mail poller already running")

        self._stop_event.clear()
        loop = asyncio.get_running_loop()
        self._poll_task = loop.create_task(self._poll_loop())

    async def stop(self) -> None:
        """Stop polling and wait for the current cycle to finish."""
        self._stop_event.set()
        if self._poll_task:
            await self._poll_task

    async def run_once(self) -> List[Any]:
        """Perform a single poll and dispatch its batch."""
        messages = await asyncio.to_thread(self.receiver.receive)
        if messages:
            logger.info(f"Received {len(messages)} messages from {self.receiver}")
            result = self.handler(messages)
            if inspect.isawaitable(result):
                await result
        return messages

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    f"Mail polling error for {self.receiver}: {exc}",
                    exc_info=exc,
                )

            # Wait for next poll interval or stop signal
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.poll_interval
                )
            except asyncio.TimeoutError:
                pass


__all__ = ["BatchHandler", "MailPoller"]
