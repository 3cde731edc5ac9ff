"""
Evening statistics for the admin console.
"""

from collections import Counter
from typing import Any, Dict, Sequence

from .matching import count_appearances
from .models import Band, User

TOP_PLAYERS = 5


def compute_stats(
    users: Sequence[User], bands: Sequence[Band], history: Sequence[Band]
) -> Dict[str, Any]:
    """
    Summarize the session so far, counting both played and queued bands.

    Returns:
        Dictionary with 'totalJams', 'topUsers' (up to five roster users with
        their appearance count, most first) and 'instrumentCounts' (role ->
        number of seats played, most first)
    """
    all_bands = list(history) + list(bands)
    appearances = count_appearances(all_bands)

    roles: Counter = Counter()
    for band in all_bands:
        for member in band.members:
            roles[member.assigned_role.value] += 1

    # sorted() is stable: equal counts keep roster order
    top = sorted(users, key=lambda user: appearances[user.id], reverse=True)[:TOP_PLAYERS]
    return {
        "totalJams": len(all_bands),
        "topUsers": [
            {"user": user.to_dict(), "appearances": appearances[user.id]} for user in top
        ],
        "instrumentCounts": [
            {"instrument": role, "count": count} for role, count in roles.most_common()
        ],
    }
