"""
Vote receipt tokens.

A token is ``VOTE-XXXX-XXXX`` with each X in ``[0-9A-Z]``. It is derived
deterministically from a voter name and a millisecond timestamp so the same
inputs always regenerate the same receipt. It is a receipt format, not a
cryptographic commitment.
"""

import hashlib
import re

TOKEN_PREFIX = "VOTE-"
TOKEN_PATTERN = re.compile(r"VOTE-[0-9A-Z]{4}-[0-9A-Z]{4}")

_BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
_GROUP_LENGTH = 4


def normalize_name(name) -> str:
    """Uppercase and collapse all whitespace runs to single spaces."""
    if not name:
        return ""
    return " ".join(str(name).split()).upper()


def _hash_inputs(name: str, timestamp) -> int:
    digest = hashlib.sha256(f"{name}:{timestamp}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def _to_base36(number: int, length: int) -> str:
    chars = []
    for _ in range(length):
        number, remainder = divmod(number, 36)
        chars.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(chars))


def generate_vote_token(name: str, timestamp: int) -> str:
    """Generate the receipt token for a voter name at a millisecond timestamp.

    >>> generate_vote_token("john doe", 1703673600000) == generate_vote_token("  JOHN   Doe ", 1703673600000)
    True
    """
    normalized = normalize_name(name)
    first = _hash_inputs(normalized, timestamp)
    second = _hash_inputs(f"{normalized}:salt", timestamp)
    return f"{TOKEN_PREFIX}{_to_base36(first, _GROUP_LENGTH)}-{_to_base36(second, _GROUP_LENGTH)}"


def is_valid_token_format(token) -> bool:
    """Strict structural check of a claimed token. Performs no hashing."""
    if not isinstance(token, str):
        return False
    return TOKEN_PATTERN.fullmatch(token) is not None


def normalize_token(token) -> str:
    """Prepare user-typed input for lookup against issued tokens."""
    if not isinstance(token, str):
        return ""
    return token.strip().upper()
