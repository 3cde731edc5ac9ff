"""
Live stage session.

Ties the band countdown and the game overlay to the head of the queue and
offers the small set of edits allowed from the stage kiosk.
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple, Union

from .display import format_time, resolve_view
from .game import GameOverlayMachine
from .models import Band, InstrumentType, JamState, User
from .queue import BandQueueManager
from .state import BANDS, StateStore
from .timer import LiveTimerMachine
from .user import UserManager

# Dialogs that cover the stage
ADD_MEMBER_MODAL = "add_member"
GAMES_MENU = "games_menu"
MODALS = (ADD_MEMBER_MODAL, GAMES_MENU)


def _head_key(band: Optional[Band]) -> Optional[Tuple[str, float]]:
    if band is None:
        return None
    return band.id, band.duration_minutes


class LiveSession:
    """Stage-side view of the queue: head band, countdown, games."""

    def __init__(
        self,
        state_store: StateStore,
        queue_manager: BandQueueManager,
        user_manager: UserManager,
        timer: LiveTimerMachine,
        game: GameOverlayMachine,
    ):
        """
        Initialize LiveSession.

        Args:
            state_store: Shared process state, watched for head changes
            queue_manager: Queue operations
            user_manager: Roster lookups
            timer: Band countdown
            game: Game overlay
        """
        self.state_store = state_store
        self.queue_manager = queue_manager
        self.user_manager = user_manager
        self.timer = timer
        self.game = game
        self.logger = logging.getLogger(__name__)

        self.modals: Set[str] = set()
        self._head = _head_key(queue_manager.head())
        self.state_store.add_listener(self._on_state_changed)
        self.timer.reset()

    # =========================================================================
    # Head Tracking
    # =========================================================================

    def _on_state_changed(
        self, old: JamState, new: JamState, changed: FrozenSet[str], source: str
    ):
        if BANDS not in changed:
            return
        head = new.bands[0] if new.bands else None
        key = _head_key(head)
        if key == self._head:
            return
        self._head = key
        self.logger.info("Stage head changed (%s)", source)
        self.game.close()
        self.modals.discard(GAMES_MENU)
        self.timer.on_head_changed(head)

    # =========================================================================
    # Head Band Edits
    # =========================================================================

    def add_member(self, user_id: str, role: Union[InstrumentType, str]) -> bool:
        """
        Add a roster user to the band on stage.

        Raises:
            KeyError: If the user does not exist
            ValueError: If the user did not declare the role
        """
        user = self.user_manager.get_user(user_id)
        if user is None:
            raise KeyError(user_id)
        return self.queue_manager.add_member_to_head(user, role)

    def remove_member(self, user_id: str) -> bool:
        return self.queue_manager.remove_member_from_head(user_id)

    def rename_head(self, name: str) -> bool:
        head = self.queue_manager.head()
        if head is None:
            return False
        return self.queue_manager.rename(head.id, name)

    def select_game(self, game_id: str) -> bool:
        """Open a game from the games menu, closing the menu."""
        selected = self.game.select_game(game_id)
        if selected:
            self.modals.discard(GAMES_MENU)
        return selected

    def available_users(
        self, search: Optional[str] = None, instrument: Optional[InstrumentType] = None
    ) -> List[User]:
        return self.user_manager.available_for_band(
            self.queue_manager.head(), search=search, instrument=instrument
        )

    # =========================================================================
    # Dialogs
    # =========================================================================

    def open_modal(self, name: str) -> bool:
        if name not in MODALS:
            return False
        self.modals.add(name)
        return True

    def close_modal(self, name: Optional[str] = None):
        """Close one dialog, or all of them."""
        if name is None:
            self.modals.clear()
        else:
            self.modals.discard(name)

    # =========================================================================
    # Snapshot
    # =========================================================================

    def snapshot(self) -> Dict[str, Any]:
        """Everything the stage screen needs to render one frame."""
        head = self.queue_manager.head()
        next_band = self.queue_manager.next_band()
        modal_open = bool(self.modals)
        overlay_open = modal_open or self.game.is_open
        view = resolve_view(head, self.timer, self.game, modal_open=modal_open)

        game = self.game
        return {
            "view": view.value,
            "band": head.to_dict() if head else None,
            "nextBand": next_band.to_dict() if next_band else None,
            "queueLength": len(self.state_store.bands),
            "modals": sorted(self.modals),
            "timer": {
                "state": self.timer.state.value,
                "remaining": self.timer.remaining,
                "display": format_time(self.timer.remaining),
                "urgent": self.timer.is_urgent(overlay_open=overlay_open),
                "confirming": self.timer.confirming,
            },
            "game": {
                "state": game.state.value,
                "game": asdict(game.active_game) if game.active_game else None,
                "selectedDuration": game.selected_duration,
                "durationOptions": list(game.duration_options),
                "remaining": game.remaining,
                "display": format_time(game.remaining),
                "running": game.running,
                "expired": game.expired,
            },
        }

    def close(self):
        """Stop watching the store and disarm both countdowns."""
        self.state_store.remove_listener(self._on_state_changed)
        self.timer.close()
        self.game.close()
