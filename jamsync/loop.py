"""
Single-threaded dispatcher for jamsync.

Every state change in a process (operator input, timer ticks, push
notifications from other stations) is funnelled through one EventLoop so the
StateStore only ever sees whole, serialized updates.
"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, Optional


class TimerHandle:
    """Handle for a callback scheduled with EventLoop.call_later."""

    def __init__(self, loop: "EventLoop", delay: float, callback: Callable, args: tuple):
        self._loop = loop
        self._callback = callback
        self._args = args
        self._cancelled = False
        self._timer = threading.Timer(delay, self._fire)
        self._timer.daemon = True

    def _start(self):
        self._timer.start()

    def _fire(self):
        # Runs on the timer thread: hand over to the dispatcher
        self._loop.call_soon(self._run)

    def _run(self):
        # A cancel may land after the timer fired but before dispatch
        if not self._cancelled:
            self._callback(*self._args)

    def cancel(self):
        self._cancelled = True
        self._timer.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class EventLoop:
    """Runs callbacks one at a time on a dedicated dispatcher thread."""

    def __init__(self, name: str = "JamLoop"):
        self.name = name
        self.logger = logging.getLogger(__name__)
        self._queue: "queue.Queue[Optional[tuple]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._timers = set()
        self._timers_lock = threading.Lock()

    def start(self):
        """Start the dispatcher thread."""
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()
        self.logger.info("Event loop started")

    def _run(self):
        while True:
            item = self._queue.get()
            if item is None:
                break
            callback, args, future = item
            if future is not None and not future.set_running_or_notify_cancel():
                continue
            try:
                result = callback(*args)
            except Exception as e:
                if future is not None:
                    future.set_exception(e)
                else:
                    self.logger.error("Error in loop callback %r: %s", callback, e, exc_info=True)
            else:
                if future is not None:
                    future.set_result(result)

    def in_loop_thread(self) -> bool:
        return threading.current_thread() is self._thread

    def call_soon(self, callback: Callable, *args):
        """Queue a callback; safe to call from any thread."""
        self._queue.put((callback, args, None))

    def call_later(self, delay: float, callback: Callable, *args) -> TimerHandle:
        """
        Schedule a callback after delay seconds.

        Returns:
            TimerHandle whose cancel() guarantees the callback will not run
        """
        handle = TimerHandle(self, delay, callback, args)
        with self._timers_lock:
            self._timers = {timer for timer in self._timers if not timer.cancelled}
            self._timers.add(handle)
        handle._start()
        return handle

    def submit(self, callback: Callable, *args) -> Future:
        """
        Queue a callback and return a Future for its result.

        When called from the dispatcher thread itself the callback runs inline,
        otherwise it would wait on itself.
        """
        future: Future = Future()
        if self.in_loop_thread():
            future.set_running_or_notify_cancel()
            try:
                future.set_result(callback(*args))
            except Exception as e:
                future.set_exception(e)
            return future
        self._queue.put((callback, args, future))
        return future

    def run_sync(self, callback: Callable, *args, timeout: Optional[float] = 5.0) -> Any:
        """Run a callback on the loop and block for its result."""
        return self.submit(callback, *args).result(timeout=timeout)

    def stop(self):
        """Cancel every pending timer and stop the dispatcher thread."""
        if not self._running:
            return
        self.logger.info("Stopping event loop...")
        with self._timers_lock:
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()
        self._running = False
        self._queue.put(None)
        if self._thread and self._thread.is_alive() and not self.in_loop_thread():
            self._thread.join(timeout=2.0)
            if self._thread.is_alive():
                self.logger.warning("Event loop thread did not stop within timeout")
        self.logger.info("Event loop stopped")
