"""
Stage mini-games shown over the live display.

The overlay has its own countdown, independent of the band timer. The only
link between the two: starting a game also starts a paused band timer.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

from .loop import EventLoop, TimerHandle
from .timer import TICK_SECONDS, LiveTimerMachine, TimerState


@dataclass(frozen=True)
class Game:
    """A stage challenge the musicians play along with."""

    id: str
    title: str
    description: str
    icon: str
    color: str


GAMES: List[Game] = [
    Game(
        id="game-hand",
        title="UNA MANO SOLA",
        description="Tutti i musicisti devono suonare utilizzando esclusivamente una mano "
        "(sinistra o destra a scelta).",
        icon="hand",
        color="from-pink-600 to-rose-600",
    ),
    Game(
        id="game-foot",
        title="SU UN PIEDE SOLO",
        description="Bisogna suonare rimanendo in equilibrio su una gamba sola. "
        "Se tocchi terra, smetti di suonare per 5 secondi!",
        icon="footprints",
        color="from-amber-500 to-orange-600",
    ),
]

DEFAULT_DURATION_OPTIONS = (30, 60, 120, 180)


class OverlayState(Enum):
    """Game overlay state enumeration."""

    OFF = "off"
    EXPLAIN = "explain"  # Rules and duration picker
    PLAYING = "playing"
    FULLSCREEN_PLAYING = "fullscreen_playing"


class GameOverlayMachine:
    """Game selection, explanation and countdown."""

    def __init__(
        self,
        loop: EventLoop,
        live_timer: LiveTimerMachine,
        games: Optional[Sequence[Game]] = None,
        duration_options: Sequence[int] = DEFAULT_DURATION_OPTIONS,
        default_duration: int = 60,
        add_time_step: int = 30,
        tick_interval: float = TICK_SECONDS,
    ):
        """
        Initialize GameOverlayMachine.

        Args:
            loop: Event loop that runs the game tick callback
            live_timer: Band timer, started when a game starts
            games: Catalog of games (defaults to GAMES)
            duration_options: Durations in seconds offered in EXPLAIN
            default_duration: Preselected duration on every game selection
            add_time_step: Seconds added by add_time() without an argument
            tick_interval: Seconds between ticks
        """
        self.loop = loop
        self.live_timer = live_timer
        self.games: Dict[str, Game] = {game.id: game for game in (games or GAMES)}
        self.duration_options = tuple(duration_options)
        self.default_duration = default_duration
        self.add_time_step = add_time_step
        self.tick_interval = tick_interval
        self.logger = logging.getLogger(__name__)

        self.state = OverlayState.OFF
        self.active_game: Optional[Game] = None
        self.selected_duration = default_duration
        self.remaining = 0
        self.running = False
        self.expired = False
        self._tick_handle: Optional[TimerHandle] = None

    @property
    def is_open(self) -> bool:
        return self.state != OverlayState.OFF

    @property
    def is_playing(self) -> bool:
        return self.state in (OverlayState.PLAYING, OverlayState.FULLSCREEN_PLAYING)

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
        if not (self.is_playing and self.running):
            return
        if self.remaining <= 1:
            self.remaining = 0
            self.running = False
            self.expired = True
            self.logger.info("Game %s is over", self.active_game.id if self.active_game else "?")
            return
        self.remaining -= 1
        self._arm()

    # =========================================================================
    # Transitions
    # =========================================================================

    def select_game(self, game_id: str) -> bool:
        """
        Open a game's explanation screen.

        Returns:
            False if the overlay is already open or the game is unknown
        """
        if self.state != OverlayState.OFF:
            return False
        game = self.games.get(game_id)
        if game is None:
            self.logger.warning("Unknown game %s", game_id)
            return False
        self.active_game = game
        self.selected_duration = self.default_duration
        self.expired = False
        self.running = False
        self.remaining = 0
        self.state = OverlayState.EXPLAIN
        self.logger.info("Explaining game %s", game.title)
        return True

    def choose_duration(self, seconds: int) -> bool:
        if self.state != OverlayState.EXPLAIN or seconds not in self.duration_options:
            return False
        self.selected_duration = seconds
        return True

    def start(self) -> bool:
        """
        Start the chosen game and its countdown.

        A paused band timer is started too.
        """
        if self.state != OverlayState.EXPLAIN:
            return False
        self.remaining = self.selected_duration
        self.running = True
        self.expired = False
        self.state = OverlayState.PLAYING
        self._arm()
        self.logger.info("Game %s started for %ss", self.active_game.id, self.remaining)

        if self.live_timer.state == TimerState.PAUSED and self.live_timer.remaining > 0:
            self.live_timer.start()
        return True

    def toggle_running(self) -> bool:
        """Pause or resume the game countdown. Returns the running flag."""
        if not self.is_playing or self.expired:
            return self.running
        if self.running:
            self.running = False
            self._disarm()
        elif self.remaining > 0:
            self.running = True
            self._arm()
        return self.running

    def add_time(self, seconds: Optional[int] = None) -> int:
        """
        Extend the game countdown. An expired game restarts with the extra time.

        Returns:
            The new remaining time
        """
        if not self.is_playing:
            return self.remaining
        self.remaining += self.add_time_step if seconds is None else int(seconds)
        if self.expired and self.remaining > 0:
            self.expired = False
            self.running = True
            self._arm()
        return self.remaining

    def toggle_fullscreen(self) -> bool:
        if self.state == OverlayState.PLAYING:
            self.state = OverlayState.FULLSCREEN_PLAYING
            return True
        if self.state == OverlayState.FULLSCREEN_PLAYING:
            self.state = OverlayState.PLAYING
            return True
        return False

    def close(self):
        """Back to OFF from any state; the countdown stops."""
        self._disarm()
        if self.state != OverlayState.OFF:
            self.logger.info("Game overlay closed")
        self.state = OverlayState.OFF
        self.active_game = None
        self.running = False
        self.expired = False
        self.remaining = 0
