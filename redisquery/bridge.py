"""Blocking calls on top of asyncio.

:class:`LoopThread` runs an event loop in a daemon thread. Coroutines are
handed over with :func:`asyncio.run_coroutine_threadsafe` and the calling
thread blocks on the returned :class:`concurrent.futures.Future`, which
waits on a condition variable until the loop thread resolves it.
"""
import asyncio
import itertools
import threading

from .log import logger

__all__ = ['LoopThread']

_counter = itertools.count(1)


class LoopThread:
    """Event loop running in its own daemon thread."""

    def __init__(self, name=None):
        self._name = name or 'redisquery-loop-{}'.format(next(_counter))
        self._loop = None
        self._thread = None
        self._started = threading.Event()
        self._lock = threading.Lock()

    def __repr__(self):
        state = 'running' if self.is_running() else 'stopped'
        return '<LoopThread {} [{}]>'.format(self._name, state)

    @property
    def loop(self):
        return self._loop

    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def is_current(self):
        """True when called from the loop thread itself."""
        return threading.current_thread() is self._thread

    def start(self):
        with self._lock:
            if self.is_running():
                return
            self._loop = asyncio.new_event_loop()
            self._started.clear()
            self._thread = threading.Thread(
                target=self._run, name=self._name, daemon=True)
            self._thread.start()
        self._started.wait()

    def _run(self):
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._started.set)
        try:
            self._loop.run_forever()
        finally:
            self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            self._loop.close()
            logger.debug("%s stopped", self._name)

    def run(self, coro):
        """Run coroutine on the loop thread and block until it finishes.

        Returns the coroutine result or raises its exception.
        """
        if not self.is_running():
            coro.close()
            raise RuntimeError("{!r} is not running".format(self))
        if self.is_current():
            coro.close()
            raise RuntimeError(
                "Blocking call issued from the event loop thread itself")
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result()

    def stop(self):
        """Stop the loop and join the thread; safe to call repeatedly."""
        with self._lock:
            thread, self._thread = self._thread, None
            if thread is None or not thread.is_alive():
                return
            self._loop.call_soon_threadsafe(self._loop.stop)
        if threading.current_thread() is not thread:
            thread.join()
