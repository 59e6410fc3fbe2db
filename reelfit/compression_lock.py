import asyncio
import logging
import threading
import time
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Optional

from .config import get_compression_poll_interval


logger = logging.getLogger(__name__)


class LockState(str, Enum):
    IDLE = "idle"
    BUSY = "busy"


class CompressionLock:
    """
    Process-wide exclusivity for transcode jobs.

    Claiming is a non-blocking test-and-set; waiters poll at a fixed interval
    instead of queueing, so there is no fairness between them.
    """

    def __init__(self, poll_interval: Optional[float] = None):
        self._flag = threading.Lock()
        self.poll_interval = poll_interval if poll_interval is not None else get_compression_poll_interval()
        self.owner: Optional[str] = None

    @property
    def state(self) -> LockState:
        return LockState.BUSY if self._flag.locked() else LockState.IDLE

    def try_acquire(self, owner: str = "?") -> bool:
        if self._flag.acquire(blocking=False):
            self.owner = owner
            return True
        return False

    def release(self) -> None:
        self.owner = None
        self._flag.release()

    @asynccontextmanager
    async def hold(self, owner: str = "?") -> AsyncIterator[None]:
        started = time.monotonic()
        logger.info("compression %s: waiting for lock", owner)
        while not self.try_acquire(owner):
            await asyncio.sleep(self.poll_interval)
        logger.info("compression %s: lock acquired after %.1fs", owner, time.monotonic() - started)
        try:
            yield
        finally:
            self.release()
            logger.info("compression %s: lock released", owner)


COMPRESSION_LOCK = CompressionLock()
