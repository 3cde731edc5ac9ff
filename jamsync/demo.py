"""
Demo roster used when the shared store has no users or cannot be reached.
"""

import uuid
from datetime import datetime, timezone
from typing import List

from .models import InstrumentType, User, UserStatus

AVATAR_SEEDS = [
    "Felix", "Aneka", "Simba", "Jack", "Molly", "Bella",
    "Buster", "Sam", "Oliver", "Sophie", "Lola", "Leo",
]

_DEMO_MUSICIANS = [
    ("Marco", "Rossi", [InstrumentType.GUITAR, InstrumentType.VOICE]),
    ("Giulia", "Bianchi", [InstrumentType.VOICE]),
    ("Luca", "Ferrari", [InstrumentType.DRUMS]),
    ("Sara", "Romano", [InstrumentType.BASS, InstrumentType.GUITAR]),
    ("Paolo", "Colombo", [InstrumentType.KEYS]),
    ("Elena", "Ricci", [InstrumentType.VOICE, InstrumentType.KEYS]),
    ("Davide", "Marino", [InstrumentType.DRUMS, InstrumentType.BASS]),
    ("Chiara", "Greco", [InstrumentType.OTHER]),
    ("Andrea", "Bruno", [InstrumentType.GUITAR]),
    ("Francesca", "Gallo", [InstrumentType.BASS]),
    ("Matteo", "Conti", [InstrumentType.GUITAR, InstrumentType.KEYS]),
    ("Martina", "Costa", [InstrumentType.VOICE, InstrumentType.OTHER]),
]


def generate_demo_users() -> List[User]:
    """Build a fresh demo roster that covers every instrument."""
    now = datetime.now(timezone.utc)
    users = []
    for index, (first_name, last_name, instruments) in enumerate(_DEMO_MUSICIANS):
        users.append(
            User(
                id=f"demo-{uuid.uuid4().hex[:12]}",
                first_name=first_name,
                last_name=last_name,
                username=f"{first_name.lower()}.{last_name.lower()}",
                instruments=list(instruments),
                custom_instrument="Sax" if InstrumentType.OTHER in instruments else None,
                status=UserStatus.ACTIVE,
                avatar_seed=AVATAR_SEEDS[index % len(AVATAR_SEEDS)],
                created_at=now,
            )
        )
    return users
