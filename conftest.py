"""
Pytest configuration for jamsync tests.

Provides:
- ManualLoop, a drop-in EventLoop whose timers only fire when a test advances
  the clock
- `manual_loop` fixture
"""

from concurrent.futures import Future

import pytest


class ManualTimerHandle:
    """TimerHandle stand-in scheduled on a ManualLoop clock."""

    def __init__(self, due: float, callback, args):
        self.due = due
        self._callback = callback
        self._args = args
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def fire(self):
        if not self._cancelled:
            self._cancelled = True
            self._callback(*self._args)


class ManualLoop:
    """Runs callbacks inline; call_later callbacks run from advance()."""

    def __init__(self):
        self.now = 0.0
        self.handles = []

    def call_soon(self, callback, *args):
        callback(*args)

    def call_later(self, delay, callback, *args):
        handle = ManualTimerHandle(self.now + delay, callback, args)
        self.handles.append(handle)
        return handle

    def submit(self, callback, *args):
        future = Future()
        future.set_running_or_notify_cancel()
        try:
            future.set_result(callback(*args))
        except Exception as e:
            future.set_exception(e)
        return future

    def run_sync(self, callback, *args, timeout=None):
        return self.submit(callback, *args).result()

    def in_loop_thread(self):
        return True

    def pending(self):
        return [handle for handle in self.handles if not handle.cancelled]

    def advance(self, seconds: float):
        """Move the clock forward, firing due callbacks in order."""
        target = self.now + seconds
        while True:
            due = [h for h in self.pending() if h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.due)
            self.now = max(self.now, handle.due)
            handle.fire()
        self.now = target

    def start(self):
        pass

    def stop(self):
        for handle in self.handles:
            handle.cancel()


@pytest.fixture
def manual_loop():
    """Deterministic event loop for timer tests."""
    return ManualLoop()
