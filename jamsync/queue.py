"""
Band queue management for jamsync.

Every operation builds a new queue/history and hands it to the StateStore in a
single update; nothing here edits a collection in place.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Set, Tuple, Union

from .models import DEFAULT_BAND_DURATION_MINUTES, Band, BandMember, InstrumentType, JamState, User
from .naming import get_unique_band_name
from .state import StateStore

if TYPE_CHECKING:
    from .config_manager import ConfigManager

# generate_next_band(users, queue, history, desired_size) -> Band | None
BandGenerator = Callable[[List[User], List[Band], List[Band], Optional[int]], Optional[Band]]


class QueueLimitError(Exception):
    """A generated band was refused because a roster or queue limit applies."""

    def __init__(self, message: str, needs_confirmation: bool = False):
        super().__init__(message)
        self.needs_confirmation = needs_confirmation


class BandQueueManager:
    """Mutation API over the active band queue and the archived history."""

    def __init__(self, state_store: StateStore, config_manager: Optional["ConfigManager"] = None):
        """
        Initialize BandQueueManager.

        Args:
            state_store: StateStore holding the queue
            config_manager: Optional ConfigManager for slot length and queue limits
        """
        self.state_store = state_store
        self.config_manager = config_manager
        self.logger = logging.getLogger(__name__)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_queue(self) -> List[Band]:
        return list(self.state_store.bands)

    def get_history(self) -> List[Band]:
        return list(self.state_store.history)

    def head(self) -> Optional[Band]:
        """The band currently on stage, or None for an empty queue."""
        bands = self.state_store.bands
        return bands[0] if bands else None

    def next_band(self) -> Optional[Band]:
        bands = self.state_store.bands
        return bands[1] if len(bands) > 1 else None

    def get_band(self, band_id: str) -> Optional[Band]:
        for band in self.state_store.bands:
            if band.id == band_id:
                return band
        return None

    def used_names(self) -> Set[str]:
        """Names present in the queue or the history."""
        return {band.name for band in self.state_store.bands} | {
            band.name for band in self.state_store.history
        }

    def default_duration(self) -> float:
        if self.config_manager is None:
            return DEFAULT_BAND_DURATION_MINUTES
        return self.config_manager.get_float(
            "default_band_duration_minutes", DEFAULT_BAND_DURATION_MINUTES
        )

    # =========================================================================
    # Queue Operations
    # =========================================================================

    def append(self, band: Band) -> bool:
        """Add a band to the end of the queue."""
        self.state_store.apply(lambda state: state.with_changes(bands=state.bands + (band,)))
        self.logger.info("Queued band %s (%s, %d members)", band.name, band.id, len(band.members))
        return True

    def archive_head(self) -> Optional[Band]:
        """
        Move the head band to the history, stamped with its end time.

        Returns:
            The archived band, or None if the queue was empty
        """
        archived = []

        def mutation(state: JamState) -> JamState:
            if not state.bands:
                return state
            finished = replace(state.bands[0], end_time=datetime.now(timezone.utc))
            archived.append(finished)
            return state.with_changes(bands=state.bands[1:], history=state.history + (finished,))

        self.state_store.apply(mutation)
        if not archived:
            self.logger.info("Queue empty, nothing to archive")
            return None
        self.logger.info("Archived band %s", archived[0].name)
        return archived[0]

    def reorder(self, from_index: int, to_index: int) -> bool:
        """
        Move a band to a new position in the queue.

        Returns:
            True if moved, False for equal or out of range indices
        """
        if from_index == to_index:
            return False

        def mutation(state: JamState) -> JamState:
            size = len(state.bands)
            if not (0 <= from_index < size and 0 <= to_index < size):
                return state
            bands = list(state.bands)
            moved = bands.pop(from_index)
            bands.insert(to_index, moved)
            return state.with_changes(bands=bands)

        changed = self.state_store.apply(mutation)
        if changed:
            self.logger.info("Moved band from position %s to %s", from_index, to_index)
        return changed

    def remove_at(self, index: int) -> Optional[Band]:
        """
        Delete the band at a queue position. Confirmation is the caller's concern.

        Returns:
            The removed band, or None if the index is out of range
        """
        removed = []

        def mutation(state: JamState) -> JamState:
            if not 0 <= index < len(state.bands):
                return state
            removed.append(state.bands[index])
            return state.with_changes(bands=state.bands[:index] + state.bands[index + 1:])

        self.state_store.apply(mutation)
        if removed:
            self.logger.info("Removed band %s from position %s", removed[0].name, index)
            return removed[0]
        return None

    def _update_band(self, band_id: str, update: Callable[[Band], Band]) -> bool:
        def mutation(state: JamState) -> JamState:
            for index, band in enumerate(state.bands):
                if band.id == band_id:
                    bands = list(state.bands)
                    bands[index] = update(band)
                    return state.with_changes(bands=bands)
            return state

        return self.state_store.apply(mutation)

    def rename(self, band_id: str, new_name: str) -> bool:
        """Rename a band anywhere in the queue. Blank names are ignored."""
        name = new_name.strip()
        if not name:
            return False
        return self._update_band(band_id, lambda band: replace(band, name=name))

    def set_duration(self, band_id: str, minutes: float) -> bool:
        """Set a band's target slot length in (possibly fractional) minutes."""
        if minutes < 0:
            raise ValueError("Duration cannot be negative")
        return self._update_band(band_id, lambda band: replace(band, duration_minutes=minutes))

    def set_members(
        self, band_id: str, assignments: Iterable[Tuple[User, Union[InstrumentType, str]]]
    ) -> bool:
        """
        Replace a band's lineup.

        Args:
            band_id: Band to edit
            assignments: (user, role) pairs; each role is validated once, here

        Raises:
            ValueError: If a role is not declared by its user, or a user is listed twice
        """
        members = self._build_members(assignments)
        return self._update_band(band_id, lambda band: replace(band, members=members))

    def _build_members(
        self, assignments: Iterable[Tuple[User, Union[InstrumentType, str]]]
    ) -> List[BandMember]:
        members = []
        seen = set()
        for user, role in assignments:
            if user.id in seen:
                raise ValueError(f"{user.username} is listed twice")
            seen.add(user.id)
            members.append(BandMember.from_user(user, role))
        return members

    def update_band(
        self,
        band_id: str,
        name: Optional[str] = None,
        duration_minutes: Optional[float] = None,
        assignments: Optional[Iterable[Tuple[User, Union[InstrumentType, str]]]] = None,
    ) -> bool:
        """
        Edit several fields of a band as one change.

        Every field is validated before anything is applied, so a bad lineup
        leaves the name and duration untouched too.

        Args:
            band_id: Band to edit
            name: New name; None or blank keeps the current one
            duration_minutes: New slot length, or None
            assignments: Complete lineup as (user, role) pairs, or None

        Returns:
            True if the band changed

        Raises:
            ValueError: If the duration is negative or the lineup is invalid
        """
        changes = {}
        if name is not None and name.strip():
            changes["name"] = name.strip()
        if duration_minutes is not None:
            if duration_minutes < 0:
                raise ValueError("Duration cannot be negative")
            changes["duration_minutes"] = duration_minutes
        if assignments is not None:
            changes["members"] = self._build_members(assignments)
        if not changes:
            return False
        changed = self._update_band(band_id, lambda band: replace(band, **changes))
        if changed:
            self.logger.info("Updated band %s: %s", band_id, ", ".join(sorted(changes)))
        return changed

    def shuffle_name(self, band_id: str) -> Optional[str]:
        """Give a band a fresh name from the pool, avoiding names in use."""
        name = get_unique_band_name(self.used_names())
        if self.rename(band_id, name):
            return name
        return None

    def create_manual_band(self) -> Band:
        """Append an empty, operator-built band with a unique name."""
        band = Band(
            id=f"manual-{uuid.uuid4().hex[:12]}",
            name=get_unique_band_name(self.used_names()),
            members=[],
            is_manual=True,
            duration_minutes=self.default_duration(),
        )
        self.append(band)
        return band

    def add_generated_band(
        self,
        generator: BandGenerator,
        desired_size: Optional[int] = None,
        force: bool = False,
    ) -> Optional[Band]:
        """
        Ask the matching collaborator for the next band and queue it.

        Args:
            generator: generate_next_band-compatible callable
            desired_size: Optional forced band size
            force: Skip the long-queue confirmation

        Returns:
            The queued band, or None if no valid band could be formed

        Raises:
            QueueLimitError: Too few active musicians, or a long queue without force
        """
        users = list(self.state_store.users)
        min_active = 3
        max_queue = 15
        if self.config_manager is not None:
            min_active = self.config_manager.get_int("min_active_users", 3)
            max_queue = self.config_manager.get_int("max_queue_warning", 15)

        active = sum(1 for user in users if user.is_active)
        if active < min_active:
            raise QueueLimitError(f"At least {min_active} active musicians are needed, found {active}")
        if len(self.state_store.bands) >= max_queue and not force:
            raise QueueLimitError(
                f"The queue already holds {len(self.state_store.bands)} bands", needs_confirmation=True
            )

        band = generator(users, self.get_queue(), self.get_history(), desired_size)
        if band is None:
            self.logger.warning("Matching engine could not form a band from %d active users", active)
            return None
        if band.duration_minutes == DEFAULT_BAND_DURATION_MINUTES:
            band = replace(band, duration_minutes=self.default_duration())
        self.append(band)
        return band

    # =========================================================================
    # Head Band (live display)
    # =========================================================================

    def add_member_to_head(self, user: User, role: Union[InstrumentType, str]) -> bool:
        """
        Add a musician to the band on stage.

        Returns:
            False for an empty queue or a user already in the band

        Raises:
            ValueError: If the role is not one the user declared
        """
        head = self.head()
        if head is None or head.has_member(user.id):
            return False
        member = BandMember.from_user(user, role)

        def mutation(state: JamState) -> JamState:
            if not state.bands or state.bands[0].has_member(user.id):
                return state
            current = state.bands[0]
            updated = replace(current, members=list(current.members) + [member])
            return state.with_changes(bands=(updated,) + state.bands[1:])

        changed = self.state_store.apply(mutation)
        if changed:
            self.logger.info("Added %s to %s as %s", user.username, head.name, member.role_label)
        return changed

    def remove_member_from_head(self, user_id: str) -> bool:
        """Remove a musician from the band on stage, immediately."""

        def mutation(state: JamState) -> JamState:
            if not state.bands or not state.bands[0].has_member(user_id):
                return state
            current = state.bands[0]
            members = [member for member in current.members if member.id != user_id]
            return state.with_changes(bands=(replace(current, members=members),) + state.bands[1:])

        changed = self.state_store.apply(mutation)
        if changed:
            self.logger.info("Removed member %s from the band on stage", user_id)
        return changed
