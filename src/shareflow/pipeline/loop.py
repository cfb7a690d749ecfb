"""
Consumer loop shared by the pipeline stages.

Each stage pops one item per iteration and handles it fully before the next
pop. A stop event, set by SIGINT/SIGTERM, is checked between iterations, so
an in-flight item (including its retry sleeps) always finishes.
"""

import asyncio
import signal
from abc import ABC, abstractmethod

from shareflow.exceptions import QueueUnavailableError
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.pipeline.loop")

DEFAULT_POP_TIMEOUT = 5.0
DEFAULT_RECONNECT_DELAY = 5.0


class ConsumerLoop(ABC):
    """
    Base class for a long-running queue consumer.

    Subclasses implement run_once(); run() repeats it until stop() is called.
    """

    name = "consumer"

    def __init__(self, *, pop_timeout: float = DEFAULT_POP_TIMEOUT, reconnect_delay: float = DEFAULT_RECONNECT_DELAY):
        self.pop_timeout = pop_timeout
        self.reconnect_delay = reconnect_delay
        self._stop_event: asyncio.Event | None = None
        self.iterations = 0

    @property
    def stop_event(self) -> asyncio.Event:
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        return self._stop_event

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        """Request shutdown after the current iteration."""
        if not self.stopping:
            logger.info(f"Stopping {self.name} after the current item")
        self.stop_event.set()

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to stop()."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    @abstractmethod
    async def run_once(self) -> bool:
        """
        Pop and handle at most one item.

        Returns:
            True if an item was handled, False on a pop timeout
        """
        ...

    async def on_start(self) -> None:
        """Hook run once before the first iteration."""

    async def run(self) -> None:
        """Consume until stop() is called."""
        logger.info(f"{self.name} started")
        await self.on_start()
        while not self.stopping:
            self.iterations += 1
            try:
                await self.run_once()
            except QueueUnavailableError as e:
                logger.error(f"Queue unavailable: {e}. Reconnecting in {self.reconnect_delay}s")
                await self._pause(self.reconnect_delay)
            except Exception as e:
                logger.exception(f"Unexpected error in {self.name} loop: {e}")
                await self._pause(self.reconnect_delay)
        logger.info(f"{self.name} stopped")

    async def _pause(self, delay: float) -> None:
        # Returns early when stop() is called
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=delay)
        except TimeoutError:
            pass
