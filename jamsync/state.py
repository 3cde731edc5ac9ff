"""
Process-local state for jamsync.

The StateStore is the single source of truth for the roster, the active band
queue and the archived history inside one process. Every mutation replaces the
whole snapshot at once so readers never see half an update.
"""

import logging
from typing import Callable, Dict, FrozenSet, List, Tuple

from .models import Band, JamState, User

# Logical channel names, shared with the row store
USERS = "users"
BANDS = "bands"
HISTORY = "history"
KEYS = (USERS, BANDS, HISTORY)

# Which JamState attribute backs each channel
_FIELDS = {USERS: "users", BANDS: "bands", HISTORY: "history"}

# Listener signature: (old, new, changed_keys, source)
StateListener = Callable[[JamState, JamState, FrozenSet[str], str], None]


def encode_collection(key: str, items) -> List[dict]:
    """Serialize one collection to its JSON wire form."""
    if key not in _FIELDS:
        raise KeyError(key)
    return [item.to_dict() for item in items]


def decode_collection(key: str, value) -> Tuple:
    """
    Parse one collection from its JSON wire form.

    Raises:
        KeyError: For an unknown key or a record missing a required field
        TypeError: If the value is not a list of objects
        ValueError: For unknown enum values or malformed timestamps
    """
    if not isinstance(value, list):
        raise TypeError(f"{key} payload must be a list, got {type(value).__name__}")
    if key == USERS:
        return tuple(User.from_dict(item) for item in value)
    if key in (BANDS, HISTORY):
        return tuple(Band.from_dict(item) for item in value)
    raise KeyError(key)


class StateStore:
    """Holds the current JamState and notifies listeners on every change."""

    def __init__(self, initial: JamState = None):
        self._state = initial or JamState()
        self._listeners: List[StateListener] = []
        self.logger = logging.getLogger(__name__)

    @property
    def state(self) -> JamState:
        return self._state

    @property
    def users(self) -> Tuple[User, ...]:
        return self._state.users

    @property
    def bands(self) -> Tuple[Band, ...]:
        return self._state.bands

    @property
    def history(self) -> Tuple[Band, ...]:
        return self._state.history

    def get(self, key: str) -> Tuple:
        return getattr(self._state, _FIELDS[key])

    def add_listener(self, listener: StateListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def apply(self, mutation: Callable[[JamState], JamState], source: str = "local") -> bool:
        """
        Apply a mutation as one atomic update.

        Args:
            mutation: Function receiving the current snapshot and returning the
                next one (return the same object for a no-op)
            source: Who caused the change ('local', 'remote', 'bootstrap')

        Returns:
            True if any collection changed
        """
        old = self._state
        new = mutation(old)
        if new is old:
            return False

        changed = frozenset(
            key for key, attr in _FIELDS.items() if getattr(old, attr) != getattr(new, attr)
        )
        if not changed:
            return False

        self._state = new
        self.logger.debug("State changed (%s): %s", source, ", ".join(sorted(changed)))
        for listener in list(self._listeners):
            try:
                listener(old, new, changed, source)
            except Exception as e:
                self.logger.error("State listener %r failed: %s", listener, e, exc_info=True)
        return True

    def replace(self, source: str = "local", **collections) -> bool:
        """Replace whole collections, e.g. replace(bands=[...])."""
        return self.apply(lambda state: state.with_changes(**collections), source=source)

    def snapshot(self) -> Dict[str, List[dict]]:
        """The whole state in wire form."""
        return {key: encode_collection(key, self.get(key)) for key in KEYS}
