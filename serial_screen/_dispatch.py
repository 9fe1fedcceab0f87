import asyncio
import collections
import logging
import threading
from collections.abc import Callable

from serial_screen import _timeout_math

log = logging.getLogger("serial_screen.dispatch")


class Dispatcher:
    """Hands callbacks from I/O threads to one coordinating thread, in order"""

    def __init__(self) -> None:
        self._monitor = threading.Condition()
        self._pending: collections.deque[Callable[[], None]] = (
            collections.deque()
        )
        self._async_futures: list[asyncio.Future[None]] = []
        self._async_loop: asyncio.AbstractEventLoop | None = None

    def pending_count(self) -> int:
        with self._monitor:
            return len(self._pending)

    def post(self, callback: Callable[[], None]) -> None:
        """Queues 'callback'; safe to call from any thread"""

        with self._monitor:
            self._pending.append(callback)
            self._notify_all_locked()

    def run_pending(self, timeout: float | int | None = 0) -> int:
        """Runs queued callbacks on this thread, waiting up to 'timeout'"""

        deadline = _timeout_math.to_deadline(timeout)
        with self._monitor:
            while not self._pending:
                wait = _timeout_math.from_deadline(deadline)
                if wait <= 0:
                    return 0
                self._monitor.wait(timeout=wait)
            batch = list(self._pending)
            self._pending.clear()

        for callback in batch:
            callback()
        return len(batch)

    async def run_pending_async(self) -> int:
        """Waits for at least one queued callback, then runs them all"""

        while True:
            future = self._create_future_in_loop()  # BEFORE run_pending
            if ran := self.run_pending(timeout=0):
                return ran
            await future

    def _notify_all_locked(self) -> None:
        """Must be run with self._monitor lock held."""

        self._monitor.notify_all()
        if self._async_futures:
            assert self._async_loop
            self._async_loop.call_soon_threadsafe(self._resolve_futures_in_loop)

    def _create_future_in_loop(self) -> asyncio.Future[None]:
        """Must be run from asyncio event loop."""

        with self._monitor:
            self._async_loop = asyncio.get_running_loop()
            future = self._async_loop.create_future()
            self._async_futures.append(future)
            return future

    def _resolve_futures_in_loop(self) -> None:
        """Must be run from asyncio event loop."""

        with self._monitor:
            futures, self._async_futures = self._async_futures, []
        log.debug("Waking %d async futures", len(futures))
        for f in futures:
            if not f.done():
                f.set_result(None)
