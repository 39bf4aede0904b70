"""Strategies for getting outgoing lines onto the wire.

A :class:`~ircwire.client.Client` picks one strategy when it's created: lines
are either written as soon as they're sent (:class:`DirectSend`), or queued and
written at a limited rate to avoid being disconnected for flooding
(:class:`QueuedSend`).
"""
from collections import deque
import asyncio
import logging


LOG = logging.getLogger(__name__)


class SendStrategy:
    """Base class for send strategies.

    Calling the strategy with encoded line *data* arranges for
    ``write(data)`` to be called.  :meth:`start` and :meth:`stop` are called
    when a connection is made and lost.
    """
    def __init__(self, write):
        self.write = write

    def __call__(self, data: bytes):
        raise NotImplementedError

    def start(self):
        pass

    def stop(self, clear=True):
        return []


class DirectSend(SendStrategy):
    """Write every line immediately."""
    def __call__(self, data: bytes):
        self.write(data)


class QueuedSend(SendStrategy):
    """Write lines in order, no more than *count* lines per *period* seconds.

    Calling the strategy returns a future that completes with the result of
    writing the line.  :meth:`start` and :meth:`stop` control whether or not
    lines are actually written.
    """
    def __init__(self, write, *, period: float = 1.0, count: int = 1, log=LOG):
        super().__init__(write)
        assert period > 0.0
        assert count > 0
        self._period = period
        self._count = count
        self._log = log
        self._call_queue = asyncio.Queue()
        self._call_history = deque()
        self._task = None

    def __call__(self, data: bytes):
        future = asyncio.get_running_loop().create_future()
        self._call_queue.put_nowait((data, future))
        return future

    @property
    def pending(self) -> int:
        """Number of lines waiting to be written."""
        return self._call_queue.qsize()

    def get_delay(self) -> float:
        """Get number of seconds to wait before writing the next line."""
        now = asyncio.get_running_loop().time()
        # Prune write history to the relevant period
        queue_start = now - self._period
        while len(self._call_history) > 0 and self._call_history[0] <= queue_start:
            self._call_history.popleft()
        # If we still have space, then can write immediately
        if len(self._call_history) < self._count:
            return 0.0
        # Otherwise, we can write when the first item will drop out of the relevant period
        next_call = self._call_history[0] + self._period
        return next_call - now

    async def run(self):
        loop = asyncio.get_running_loop()
        while True:
            delay = self.get_delay()
            if delay > 0.0:
                self._log.debug(f"waiting {delay:.3f} seconds until next line")
                await asyncio.sleep(delay)
            data, future = await self._call_queue.get()
            try:
                result = self.write(data)
                if not future.done():
                    future.set_result(result)
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            self._call_queue.task_done()
            self._call_history.append(loop.time())

    def start(self):
        """Start async task to write queued lines."""
        assert self._task is None
        self._task = asyncio.ensure_future(self.run())

    def stop(self, clear=True):
        """Stop writing queued lines.

        If *clear* is True (the default), any lines not yet written have their
        futures cancelled. If it's False, then those lines will still be queued
        when :meth:`start` is called again.

        Returns list of discarded lines.
        """
        if self._task is not None:
            self._task.cancel()
            self._task = None
        cancelled = []
        if clear:
            self._call_history.clear()
            while True:
                try:
                    data, future = self._call_queue.get_nowait()
                    future.cancel()
                    self._call_queue.task_done()
                    cancelled.append(data)
                except asyncio.QueueEmpty:
                    break
        return cancelled
