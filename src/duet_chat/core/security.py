"""Identity and bearer-token helpers."""

from __future__ import annotations

import secrets
from collections.abc import Callable

TOKEN_BYTES = 32
MAX_USER_ID = 2**63 - 1


def generate_user_token() -> str:
    """Return a fresh bearer token: 32 CSPRNG bytes as uppercase hex."""
    return secrets.token_bytes(TOKEN_BYTES).hex().upper()


def random_user_id() -> int:
    """Draw a nonzero user id from the OS CSPRNG."""
    return secrets.randbelow(MAX_USER_ID) + 1


def allocate_user_id(
    exists: Callable[[int], bool],
    id_source: Callable[[], int] | None = None,
) -> int:
    """Allocate a user id that is not already taken.

    Args:
        exists: Predicate telling whether an id is already in use.
        id_source: Optional generator of candidate ids, mainly for tests.

    Returns:
        A nonzero id for which ``exists`` returned False.
    """
    draw = id_source or random_user_id
    candidate = draw()
    while candidate == 0 or exists(candidate):
        candidate = draw()
    return candidate


def tokens_match(expected: str | None, supplied: str | None) -> bool:
    """Compare two bearer tokens in constant time."""
    if not expected or not supplied:
        return False
    return secrets.compare_digest(expected.encode(), supplied.encode())


def message_group(user_a: int, user_b: int) -> str:
    """Return the canonical pair-group name, smaller id first."""
    low, high = sorted((user_a, user_b))
    return f"{low}@{high}"
