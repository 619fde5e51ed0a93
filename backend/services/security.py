"""Password hashing with bcrypt."""

from __future__ import annotations

import bcrypt

# bcrypt only reads the first 72 bytes of a password
_BCRYPT_MAX_BYTES = 72

# Hash of a throwaway password. Checked when the username is unknown so both
# login failure paths pay for one bcrypt round.
_DUMMY_HASH = bcrypt.hashpw(b"ruby-dummy-password", bcrypt.gensalt()).decode()


def _encode(password: str) -> bytes:
    return password.encode()[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt()).decode()


def verify_password(stored_hash: str | None, password: str) -> bool:
    """Verify password against stored bcrypt hash.

    With no stored hash the dummy hash is checked anyway and the result
    discarded.
    """
    candidate = stored_hash or _DUMMY_HASH
    try:
        matched = bcrypt.checkpw(_encode(password), candidate.encode())
    except (ValueError, UnicodeDecodeError):
        return False
    return matched and bool(stored_hash)
