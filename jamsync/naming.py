"""
Band name helper.

Names are drawn from a fixed pool. Uniqueness is a soft goal: the helper avoids
names already used in the queue or history while the pool lasts.
"""

import random
from typing import Iterable, Optional

BAND_NAMES = [
    "La Corazzata Pentatonica",
    "O Famo in Do?",
    "Supercazzola in Si Bemolle",
    "Ajeje Bandzorf",
    "Non ci resta che Plettrare",
    "Vieni avanti col Solo",
    "Febbre da Palco",
    "Attila Flagello del Jazz",
    "Totò, Peppino e la Melodia",
    "I Ragazzi della 3ª Corda",
    "A Qualcuno Piace Calante",
    "Frankensuon Junior",
    "The Blues Blathers",
    "Scemo & Più Stonato",
    "Monty Plettro",
    "Full Metal Jazz",
    "Ritorno al Ritornello",
    "Pulp Fiction & Tonic",
    "Forrest Funk",
    "Le Iene Ridens",
    "Aspettando il Bassista",
    "Molto Rumore per Nulla",
    "L'Importanza di essere Accordati",
    "Buona la Prima (Magari)",
    "I Soliti Accordi",
    "Accordi e Disaccordi",
    "Il Malato Immaginario del Rock",
    "Tutto quello che avreste voluto sapere sul Jazz",
    "Rumori Fuori Scena",
    "Birra Gratis",
]


def get_unique_band_name(
    used_names: Iterable[str], rng: Optional[random.Random] = None
) -> str:
    """
    Pick a band name that is not in used_names.

    When every pool name is taken, a numbered variant ("Forrest Funk II",
    "Forrest Funk III", ...) of a random pool name is returned instead.

    Args:
        used_names: Names already present in the queue or history
        rng: Random source (for deterministic tests)

    Returns:
        A name absent from used_names
    """
    rng = rng or random
    used = set(used_names)
    available = [name for name in BAND_NAMES if name not in used]
    if available:
        return rng.choice(available)

    base = rng.choice(BAND_NAMES)
    counter = 2
    while True:
        candidate = f"{base} {_roman(counter)}"
        if candidate not in used:
            return candidate
        counter += 1


def _roman(number: int) -> str:
    numerals = [
        (1000, "M"), (900, "CM"), (500, "D"), (400, "CD"), (100, "C"), (90, "XC"),
        (50, "L"), (40, "XL"), (10, "X"), (9, "IX"), (5, "V"), (4, "IV"), (1, "I"),
    ]
    result = ""
    for value, numeral in numerals:
        while number >= value:
            result += numeral
            number -= value
    return result
