"""
Stage display helpers.

Decides which full-screen view the kiosk shows and formats countdowns.
"""

from enum import Enum
from typing import Optional

from .game import GameOverlayMachine, OverlayState
from .models import Band
from .timer import LiveTimerMachine


class DisplayView(Enum):
    """What the stage screen is showing."""

    WAITING = "waiting"  # Empty queue
    GAME = "game"
    GAME_FULLSCREEN = "game_fullscreen"
    ALARM = "alarm"  # Time is up
    URGENT = "urgent"  # Big countdown, last seconds
    STAGE = "stage"  # Band on stage with its lineup


def resolve_view(
    band: Optional[Band],
    timer: LiveTimerMachine,
    game: GameOverlayMachine,
    modal_open: bool = False,
) -> DisplayView:
    """
    Pick the stage view, first match wins.

    Args:
        band: Head band, or None
        timer: Band countdown
        game: Game overlay
        modal_open: An operator dialog covers the stage (suppresses URGENT)

    Returns:
        The DisplayView to render
    """
    if band is None:
        return DisplayView.WAITING
    if game.state == OverlayState.FULLSCREEN_PLAYING:
        return DisplayView.GAME_FULLSCREEN
    if game.is_open:
        return DisplayView.GAME
    if timer.is_expired:
        return DisplayView.ALARM
    if timer.is_urgent(overlay_open=modal_open):
        return DisplayView.URGENT
    return DisplayView.STAGE


def format_time(seconds: int) -> str:
    """
    Format a countdown as MM:SS.

    Args:
        seconds: Remaining seconds; negative values show as 00:00

    Returns:
        Zero-padded minutes and seconds
    """
    seconds = max(0, int(seconds))
    minutes, seconds = divmod(seconds, 60)
    return f"{minutes:02d}:{seconds:02d}"


def format_duration_choice(seconds: int) -> str:
    """Short label for a game length button: 30s, 1m, 1m30s."""
    minutes, rest = divmod(int(seconds), 60)
    if not minutes:
        return f"{rest}s"
    if not rest:
        return f"{minutes}m"
    return f"{minutes}m{rest}s"
