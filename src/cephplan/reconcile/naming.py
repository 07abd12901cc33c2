"""Ordinal daemon names.

Singleton-style daemons are named by letter: 0 -> "a", 25 -> "z",
26 -> "aa", 27 -> "ab". The mapping is a bijection between non-negative
integers and non-empty lowercase strings.
"""

import re

_NAME_RE = re.compile(r"^[a-z]+$")
_ALPHABET_SIZE = 26


def index_to_name(index: int) -> str:
    """Convert an ordinal to its daemon name.

    Raises:
        ValueError: If the index is negative
    """
    if index < 0:
        raise ValueError(f"daemon index must not be negative, got {index}")

    letters = []
    n = index + 1
    while n > 0:
        n -= 1
        letters.append(chr(ord("a") + n % _ALPHABET_SIZE))
        n //= _ALPHABET_SIZE
    return "".join(reversed(letters))


def name_to_index(name: str) -> int:
    """Convert a daemon name back to its ordinal.

    Raises:
        ValueError: If the name is not a lowercase letter sequence
    """
    if not _NAME_RE.match(name or ""):
        raise ValueError(f"unrecognized daemon name {name!r}")

    n = 0
    for letter in name:
        n = n * _ALPHABET_SIZE + (ord(letter) - ord("a") + 1)
    return n - 1
