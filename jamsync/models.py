"""
Data models for jamsync.

Defines typed dataclasses for the roster, bands and the shared state snapshot,
plus their JSON wire format (camelCase keys, as stored in the shared rows).
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

DEFAULT_BAND_DURATION_MINUTES = 6


class InstrumentType(Enum):
    """Instruments a musician can declare at registration."""

    VOICE = "voice"
    GUITAR = "guitar"
    BASS = "bass"
    DRUMS = "drums"
    KEYS = "keys"
    OTHER = "other"


class UserStatus(Enum):
    """Roster status. Paused users stay registered but are never picked."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


def _parse_time(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp or epoch milliseconds into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class User:
    """Roster entry. Identity is the immutable id."""

    id: str
    first_name: str
    last_name: str
    username: str
    instruments: List[InstrumentType]
    status: UserStatus = UserStatus.ACTIVE
    custom_instrument: Optional[str] = None  # Only meaningful with OTHER
    avatar_seed: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    instagram: Optional[str] = None
    facebook: Optional[str] = None
    x: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "username": self.username,
            "instruments": [instrument.value for instrument in self.instruments],
            "customInstrument": self.custom_instrument,
            "status": self.status.value,
            "avatarSeed": self.avatar_seed,
            "email": self.email,
            "phoneNumber": self.phone_number,
            "instagram": self.instagram,
            "facebook": self.facebook,
            "x": self.x,
            "createdAt": _format_time(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=str(data["id"]),
            first_name=data["firstName"],
            last_name=data["lastName"],
            username=data["username"],
            instruments=[InstrumentType(value) for value in data["instruments"]],
            custom_instrument=data.get("customInstrument"),
            status=UserStatus(data.get("status", UserStatus.ACTIVE.value)),
            avatar_seed=data.get("avatarSeed"),
            email=data.get("email"),
            phone_number=data.get("phoneNumber"),
            instagram=data.get("instagram"),
            facebook=data.get("facebook"),
            x=data.get("x"),
            created_at=_parse_time(data.get("createdAt")),
        )


@dataclass
class BandMember(User):
    """
    Snapshot of a User embedded in a Band, with the role played in it.

    Copied, not referenced: later roster edits never change a past lineup.
    """

    # Filled by from_user() and from_dict(); construction without it fails
    assigned_role: Optional[InstrumentType] = None

    def __post_init__(self):
        if not isinstance(self.assigned_role, InstrumentType):
            raise ValueError(f"{self.username} needs an assigned role")

    @classmethod
    def from_user(cls, user: User, role: Union[InstrumentType, str]) -> "BandMember":
        """
        Snapshot a roster user with a validated role.

        Args:
            user: Roster user to copy
            role: One of the user's declared instruments, or the user's custom
                label when OTHER is declared

        Returns:
            New BandMember

        Raises:
            ValueError: If the role is not one the user declared
        """
        resolved = resolve_role(user, role)
        values = {f.name: getattr(user, f.name) for f in fields(User)}
        values["instruments"] = list(user.instruments)
        return cls(assigned_role=resolved, **values)

    @property
    def role_label(self) -> str:
        """Label shown on stage: the custom label stands in for OTHER."""
        if self.assigned_role == InstrumentType.OTHER and self.custom_instrument:
            return self.custom_instrument
        return self.assigned_role.value

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["assignedRole"] = self.assigned_role.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BandMember":
        user = User.from_dict(data)
        values = {f.name: getattr(user, f.name) for f in fields(User)}
        return cls(assigned_role=InstrumentType(data["assignedRole"]), **values)


def resolve_role(user: User, role: Union[InstrumentType, str]) -> InstrumentType:
    """
    Resolve an operator-chosen role against a user's declared instruments.

    Raises:
        ValueError: If the role is not declared by the user
    """
    if isinstance(role, InstrumentType):
        candidate = role
    else:
        try:
            candidate = InstrumentType(role)
        except ValueError:
            candidate = None
        if candidate is None:
            custom = (user.custom_instrument or "").strip().lower()
            if custom and role.strip().lower() == custom:
                candidate = InstrumentType.OTHER
    if candidate is None or candidate not in user.instruments:
        raise ValueError(f"{user.username} does not play {role!r}")
    return candidate


@dataclass
class Band:
    """A temporary grouping of musicians performing one slot."""

    id: str
    name: str
    members: List[BandMember] = field(default_factory=list)
    is_manual: bool = False
    duration_minutes: float = DEFAULT_BAND_DURATION_MINUTES
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        # Normalized so int and float durations serialize identically
        self.duration_minutes = float(self.duration_minutes)

    def has_member(self, user_id: str) -> bool:
        return any(member.id == user_id for member in self.members)

    def member_ids(self) -> frozenset:
        return frozenset(member.id for member in self.members)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "members": [member.to_dict() for member in self.members],
            "isManual": self.is_manual,
            "durationMinutes": self.duration_minutes,
            "startTime": _format_time(self.start_time),
            "endTime": _format_time(self.end_time),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Band":
        duration = data.get("durationMinutes")
        return cls(
            id=str(data["id"]),
            name=data["name"],
            members=[BandMember.from_dict(member) for member in data.get("members", [])],
            is_manual=bool(data.get("isManual", False)),
            duration_minutes=duration if duration is not None else DEFAULT_BAND_DURATION_MINUTES,
            start_time=_parse_time(data.get("startTime")),
            end_time=_parse_time(data.get("endTime")),
        )


@dataclass(frozen=True)
class JamState:
    """Immutable snapshot of the three shared collections."""

    users: Tuple[User, ...] = ()
    bands: Tuple[Band, ...] = ()
    history: Tuple[Band, ...] = ()

    def with_changes(self, **changes) -> "JamState":
        return replace(self, **{key: tuple(value) for key, value in changes.items()})


@dataclass
class ConfigEntry:
    """Configuration entry."""

    key: str
    value: str
    updated_at: Optional[datetime] = None
