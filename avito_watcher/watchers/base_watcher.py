"""Abstract base class for long-running, self-restarting watchers."""

import asyncio
import logging
from abc import ABC, abstractmethod


async def sleep_until_stopped(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to ``seconds``; returns True if ``stop_event`` was set meanwhile."""
    if stop_event.is_set():
        return True
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, seconds))
    except asyncio.TimeoutError:
        return False
    return True


class BaseWatcher(ABC):
    """Base class for watchers that run one cycle until it fails, then restart.

    Subclasses must implement:
        - run_cycle() -> runs until stopped or an error is raised
        - recover(exc) -> report the failure
        - teardown() -> release resources, must not raise
    """

    def __init__(self, cooldown: float = 2.5):
        self.cooldown = cooldown
        self.logger = logging.getLogger(self.__class__.__name__)
        self._stop_event = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Ask the loop to finish; every wait inside it returns promptly."""
        self._stop_event.set()

    @abstractmethod
    async def run_cycle(self) -> None:
        """One full start-to-watch cycle."""

    @abstractmethod
    async def recover(self, exc: BaseException) -> None:
        """Report a failed cycle before teardown."""

    @abstractmethod
    async def teardown(self) -> None:
        """Release everything the cycle acquired."""

    async def run(self) -> None:
        """Main loop: cycle, recover on error, cool down, repeat until stopped."""
        self.logger.info("Starting %s", self.__class__.__name__)
        try:
            while not self.stopping:
                try:
                    await self.run_cycle()
                except Exception as exc:
                    if self.stopping:
                        break
                    await self.recover(exc)
                    await self.teardown()
                    await sleep_until_stopped(self._stop_event, self.cooldown)
        finally:
            await self.teardown()
            self.logger.info("%s stopped", self.__class__.__name__)
