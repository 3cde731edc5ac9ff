"""
Roster management for jamsync.

Handles musician registration, pause/resume and removal, and answers who can
still be added to a given band.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .models import Band, InstrumentType, JamState, User, UserStatus
from .state import StateStore


class UserManager:
    """Manages the roster held in the StateStore."""

    def __init__(self, state_store: StateStore):
        """
        Initialize UserManager.

        Args:
            state_store: StateStore holding the roster
        """
        self.state_store = state_store
        self.logger = logging.getLogger(__name__)

    def register(
        self,
        first_name: str,
        last_name: str,
        username: str,
        instruments: Iterable[InstrumentType],
        custom_instrument: Optional[str] = None,
        avatar_seed: Optional[str] = None,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        instagram: Optional[str] = None,
        facebook: Optional[str] = None,
        x: Optional[str] = None,
    ) -> User:
        """
        Register a new musician as ACTIVE.

        Args:
            first_name: First name (required)
            last_name: Last name (required)
            username: Handle shown on stage (required)
            instruments: Declared instruments (at least one)
            custom_instrument: Free-text instrument, required when OTHER is declared
            avatar_seed: Avatar identifier
            email, phone_number, instagram, facebook, x: Optional contacts

        Returns:
            The new User

        Raises:
            ValueError: If a required field is missing
        """
        first_name = (first_name or "").strip()
        last_name = (last_name or "").strip()
        username = (username or "").strip()
        if not first_name or not last_name or not username:
            raise ValueError("First name, last name and username are required")

        declared = []
        for instrument in instruments:
            if instrument not in declared:
                declared.append(instrument)
        if not declared:
            raise ValueError("Select at least one instrument")

        custom = (custom_instrument or "").strip()
        if InstrumentType.OTHER in declared and not custom:
            raise ValueError("Describe the instrument declared as 'other'")

        def clean(value: Optional[str]) -> Optional[str]:
            value = (value or "").strip()
            return value or None

        user = User(
            id=uuid.uuid4().hex,
            first_name=first_name,
            last_name=last_name,
            username=username,
            instruments=declared,
            custom_instrument=custom if InstrumentType.OTHER in declared else None,
            status=UserStatus.ACTIVE,
            avatar_seed=clean(avatar_seed),
            email=clean(email),
            phone_number=clean(phone_number),
            instagram=clean(instagram),
            facebook=clean(facebook),
            x=clean(x),
            created_at=datetime.now(timezone.utc),
        )
        self.state_store.apply(lambda state: state.with_changes(users=state.users + (user,)))
        self.logger.info("Registered %s (%s) playing %s", user.display_name, user.id,
                         ", ".join(i.value for i in declared))
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        """
        Get a user by ID.

        Returns:
            User object, or None if not found
        """
        for user in self.state_store.users:
            if user.id == user_id:
                return user
        return None

    def get_users(self) -> List[User]:
        return list(self.state_store.users)

    def active_count(self) -> int:
        return sum(1 for user in self.state_store.users if user.is_active)

    def set_status(self, user_id: str, status: UserStatus) -> bool:
        """Set a user's roster status. Returns False if unknown or unchanged."""

        def mutation(state: JamState) -> JamState:
            users = list(state.users)
            for index, user in enumerate(users):
                if user.id == user_id:
                    if user.status == status:
                        return state
                    users[index] = replace(user, status=status)
                    return state.with_changes(users=users)
            return state

        changed = self.state_store.apply(mutation)
        if changed:
            self.logger.info("User %s is now %s", user_id, status.value)
        return changed

    def toggle_status(self, user_id: str) -> Optional[UserStatus]:
        """
        Flip a user between ACTIVE and PAUSED.

        Returns:
            The new status, or None if the user does not exist
        """
        user = self.get_user(user_id)
        if user is None:
            return None
        new_status = UserStatus.PAUSED if user.is_active else UserStatus.ACTIVE
        self.set_status(user_id, new_status)
        return new_status

    def delete_user(self, user_id: str) -> bool:
        """
        Remove a user from the roster. Confirmation is the caller's concern.

        Bands keep their own member snapshots, so lineups are unaffected.
        """

        def mutation(state: JamState) -> JamState:
            users = [user for user in state.users if user.id != user_id]
            if len(users) == len(state.users):
                return state
            return state.with_changes(users=users)

        changed = self.state_store.apply(mutation)
        if changed:
            self.logger.info("Deleted user %s", user_id)
        return changed

    def available_for_band(
        self,
        band: Optional[Band],
        search: Optional[str] = None,
        instrument: Optional[InstrumentType] = None,
    ) -> List[User]:
        """
        Users that may be added to a band.

        Args:
            band: Target band (None means no members yet)
            search: Case-insensitive match on name or username
            instrument: Only users declaring this instrument

        Returns:
            ACTIVE users not already in the band, in roster order
        """
        member_ids = band.member_ids() if band else frozenset()
        term = (search or "").strip().lower()
        result = []
        for user in self.state_store.users:
            if not user.is_active or user.id in member_ids:
                continue
            if instrument is not None and instrument not in user.instruments:
                continue
            if term and term not in user.display_name.lower() and term not in user.username.lower():
                continue
            result.append(user)
        return result
