"""
Automatic band formation.

Builds the next lineup from the active roster, giving priority to musicians
who have played the least so far.
"""

import logging
import random
import uuid
from collections import Counter
from typing import FrozenSet, List, Optional, Sequence, Set

from .models import DEFAULT_BAND_DURATION_MINUTES, Band, BandMember, InstrumentType, User
from .naming import get_unique_band_name

logger = logging.getLogger(__name__)

# At most one of each per band
SINGLE_SEAT_ROLES = (InstrumentType.DRUMS, InstrumentType.BASS)

DEFAULT_SIZES = (4, 5)
MIN_BAND_SIZE = 3
MAX_ATTEMPTS = 10


def count_appearances(bands: Sequence[Band]) -> Counter:
    """How many times each user id appears across the given bands."""
    counts: Counter = Counter()
    for band in bands:
        for member in band.members:
            counts[member.id] += 1
    return counts


def _pick_role(user: User, taken: Set[InstrumentType]) -> Optional[InstrumentType]:
    # Fill an empty rhythm seat first, then anything not yet in the band
    options = [
        role for role in user.instruments
        if not (role in SINGLE_SEAT_ROLES and role in taken)
    ]
    if not options:
        return None
    for role in SINGLE_SEAT_ROLES:
        if role in options:
            return role
    fresh = [role for role in options if role not in taken]
    return (fresh or options)[0]


def _form_lineup(
    candidates: List[User], size: int
) -> List[BandMember]:
    members: List[BandMember] = []
    taken: Set[InstrumentType] = set()
    for user in candidates:
        if len(members) >= size:
            break
        role = _pick_role(user, taken)
        if role is None:
            continue
        members.append(BandMember.from_user(user, role))
        taken.add(role)
    return members


def generate_next_band(
    users: Sequence[User],
    queue: Sequence[Band],
    history: Sequence[Band],
    desired_size: Optional[int] = None,
    rng: Optional[random.Random] = None,
    min_size: int = MIN_BAND_SIZE,
) -> Optional[Band]:
    """
    Form the next band.

    Args:
        users: Whole roster; only ACTIVE users are considered
        queue: Bands already waiting
        history: Bands that already played
        desired_size: Forced band size (defaults to 4 or 5)
        rng: Random source for tie-breaks and naming
        min_size: Smallest acceptable lineup

    Returns:
        A new Band, or None if not enough musicians can be placed
    """
    rng = rng or random.Random()
    active = [user for user in users if user.is_active]
    if desired_size is not None and desired_size > 0:
        size = desired_size
        min_size = min(min_size, desired_size)
    else:
        size = rng.choice(DEFAULT_SIZES)
    size = min(size, len(active))

    appearances = count_appearances(list(history) + list(queue))
    existing: Set[FrozenSet[str]] = {band.member_ids() for band in list(queue) + list(history)}

    lineup: List[BandMember] = []
    for attempt in range(MAX_ATTEMPTS):
        candidates = sorted(active, key=lambda user: (appearances[user.id], rng.random()))
        lineup = _form_lineup(candidates, size)
        if frozenset(member.id for member in lineup) not in existing:
            break
        logger.debug("Lineup attempt %d repeats an existing band, retrying", attempt + 1)

    if len(lineup) < min_size or not lineup:
        logger.info("Only %d of %d musicians could be placed", len(lineup), min_size)
        return None

    used_names = {band.name for band in queue} | {band.name for band in history}
    band = Band(
        id=f"band-{uuid.uuid4().hex[:12]}",
        name=get_unique_band_name(used_names, rng=rng),
        members=lineup,
        is_manual=False,
        duration_minutes=DEFAULT_BAND_DURATION_MINUTES,
    )
    logger.info(
        "Formed %s: %s", band.name,
        ", ".join(f"{m.username} ({m.role_label})" for m in lineup),
    )
    return band
