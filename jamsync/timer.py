"""
Stage countdown for the band currently performing.

The machine keeps at most one tick callback armed. Every transition that
changes whether it should tick cancels the armed callback first.
"""

import logging
import math
from enum import Enum
from typing import Optional

from .loop import EventLoop, TimerHandle
from .models import DEFAULT_BAND_DURATION_MINUTES, Band
from .queue import BandQueueManager

TICK_SECONDS = 1.0


class TimerState(Enum):
    """Live timer state enumeration."""
    READY = 'ready'  # Nothing on stage yet
    RUNNING = 'running'
    PAUSED = 'paused'
    EXPIRED = 'expired'  # Reached zero, alarm showing until dismissed or adjusted


def parse_timer_input(text: str) -> int:
    """
    Parse an operator-entered time into seconds.

    "5" and "6.5" are minutes; "5:30" is minutes and seconds. Unreadable parts
    count as zero, and the result is never negative.
    """
    text = (text or '').strip()
    if ':' in text:
        minutes_part, _, seconds_part = text.partition(':')
        minutes = _lenient_int(minutes_part)
        seconds = _lenient_int(seconds_part)
        return max(0, minutes * 60 + seconds)
    try:
        minutes = float(text)
    except ValueError:
        return 0
    if math.isnan(minutes) or math.isinf(minutes):
        return 0
    return max(0, math.floor(minutes * 60))


def _lenient_int(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        return 0


def band_duration_seconds(band: Band) -> int:
    """Slot length of a band in whole seconds; zero or missing means the default."""
    minutes = band.duration_minutes or DEFAULT_BAND_DURATION_MINUTES
    return math.floor(minutes * 60)


class LiveTimerMachine:
    """Countdown bound to the head of the band queue."""

    def __init__(
        self,
        loop: EventLoop,
        queue_manager: BandQueueManager,
        urgent_threshold: int = 30,
        tick_interval: float = TICK_SECONDS,
    ):
        """
        Initialize LiveTimerMachine.

        Args:
            loop: Event loop that runs the tick callback
            queue_manager: Queue whose head band this timer follows
            urgent_threshold: Seconds at or below which the display turns urgent
            tick_interval: Seconds between ticks
        """
        self.loop = loop
        self.queue_manager = queue_manager
        self.urgent_threshold = urgent_threshold
        self.tick_interval = tick_interval
        self.logger = logging.getLogger(__name__)

        self.state = TimerState.READY
        self.remaining = 0
        self.confirming = False  # Waiting for confirm/cancel of "next band"
        self._tick_handle: Optional[TimerHandle] = None

    @property
    def is_running(self) -> bool:
        return self.state == TimerState.RUNNING

    @property
    def is_expired(self) -> bool:
        return self.state == TimerState.EXPIRED

    def is_urgent(self, overlay_open: bool = False) -> bool:
        """Derived display condition; never changes the stored state."""
        return 0 < self.remaining <= self.urgent_threshold and not overlay_open

    # =========================================================================
    # Tick Loop
    # =========================================================================

    def _arm(self):
        self._disarm()
        self._tick_handle = self.loop.call_later(self.tick_interval, self._tick)

    def _disarm(self):
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def _tick(self):
        self._tick_handle = None
        if self.state != TimerState.RUNNING:
            return
        if self.remaining <= 1:
            self.remaining = 0
            self.state = TimerState.EXPIRED
            self.logger.info('Time is up')
            return
        self.remaining -= 1
        self._arm()

    # =========================================================================
    # Transitions
    # =========================================================================

    def start(self) -> bool:
        """
        Start or resume the countdown.

        Returns:
            True if the timer is now running
        """
        if self.state == TimerState.RUNNING:
            return True
        if self.state not in (TimerState.READY, TimerState.PAUSED):
            self.logger.debug('Cannot start from %s', self.state.value)
            return False
        if self.remaining <= 0:
            self.logger.debug('No time left, not starting')
            return False
        self.state = TimerState.RUNNING
        self._arm()
        self.logger.info('Timer started at %ss', self.remaining)
        return True

    def pause(self) -> bool:
        if self.state != TimerState.RUNNING:
            return False
        self._disarm()
        self.state = TimerState.PAUSED
        self.logger.info('Timer paused at %ss', self.remaining)
        return True

    def toggle(self) -> bool:
        """Pause when running, start otherwise. Returns the running flag."""
        if self.is_running:
            self.pause()
        else:
            self.start()
        return self.is_running

    def adjust(self, delta_seconds: int) -> int:
        """
        Add or remove time from any state.

        An expired timer always goes back to PAUSED, whatever the sign of delta.

        Returns:
            The new remaining time
        """
        self.remaining = max(0, self.remaining + int(delta_seconds))
        if self.state == TimerState.EXPIRED:
            self.state = TimerState.PAUSED
        self.logger.info('Timer adjusted by %+ds to %ss', delta_seconds, self.remaining)
        return self.remaining

    def set_absolute(self, text: str) -> int:
        """Overwrite the remaining time from operator input; running flag untouched."""
        self.remaining = parse_timer_input(text)
        self.logger.info('Timer set to %ss', self.remaining)
        return self.remaining

    def reset(self, band: Optional[Band] = None) -> int:
        """
        Reload the full slot length of the head band, paused.

        Args:
            band: Band to load; defaults to the current head of the queue

        Returns:
            The new remaining time
        """
        self._disarm()
        band = band if band is not None else self.queue_manager.head()
        if band is None:
            self.remaining = 0
            self.state = TimerState.READY
        else:
            self.remaining = band_duration_seconds(band)
            self.state = TimerState.PAUSED
        return self.remaining

    def dismiss(self) -> bool:
        """Silence the alarm; only valid once the countdown expired."""
        if self.state != TimerState.EXPIRED:
            return False
        self._disarm()
        self.state = TimerState.PAUSED
        self.remaining = 0
        return True

    # =========================================================================
    # Advancing
    # =========================================================================

    def request_advance(self) -> bool:
        """First step of "next band": ask for confirmation."""
        if self.queue_manager.head() is None:
            return False
        self.confirming = True
        return True

    def cancel_advance(self):
        self.confirming = False

    def confirm_advance(self) -> Optional[Band]:
        """
        Second step of "next band": archive the band on stage.

        The resulting head change resets this timer through on_head_changed().

        Returns:
            The archived band, or None if there was no pending request
        """
        if not self.confirming:
            return None
        self.confirming = False
        return self.queue_manager.archive_head()

    def on_head_changed(self, band: Optional[Band]):
        """A different band is now on stage (or none): reload its slot."""
        self.confirming = False
        self.reset(band)
        self.logger.info(
            'Head band is now %s (%ss)', band.name if band else 'nobody', self.remaining
        )

    def close(self):
        """Disarm the tick callback unconditionally."""
        self._disarm()
