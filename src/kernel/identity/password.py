"""
Password hashing and temporary password generation.
"""

import secrets
import string
from typing import Optional

import bcrypt

from src.config import get_settings

# Ambiguous glyphs (0/O, 1/l/I) are left out of generated passwords
_TEMP_ALPHABET = "".join(c for c in string.ascii_letters + string.digits if c not in "0O1lI")
_TEMP_SYMBOLS = "!@#$%&*?"


class PasswordHasher:
    """bcrypt-backed password hashing."""

    def __init__(self, rounds: Optional[int] = None):
        self.rounds = rounds or get_settings().bcrypt_rounds

    @staticmethod
    def _encode(password: str) -> bytes:
        # bcrypt only looks at the first 72 bytes
        return password.encode("utf-8")[:72]

    def hash(self, password: str) -> str:
        """
        Hash a password using bcrypt.

        Args:
            password: Plain text password

        Returns:
            Hashed password string
        """
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(self._encode(password), salt).decode("utf-8")

    def verify(self, plain_password: str, hashed_password: str) -> bool:
        """Check a password against a stored hash. Malformed hashes never match."""
        try:
            return bcrypt.checkpw(self._encode(plain_password), hashed_password.encode("utf-8"))
        except ValueError:
            return False


def generate_temporary_password(length: int = 12) -> str:
    """
    Random password guaranteed to contain an upper, a lower, a digit and a symbol.

    Args:
        length: Total length, at least 8

    Returns:
        The plain text password
    """
    length = max(length, 8)
    required = [
        secrets.choice("ABCDEFGHJKLMNPQRSTUVWXYZ"),
        secrets.choice("abcdefghijkmnopqrstuvwxyz"),
        secrets.choice("23456789"),
        secrets.choice(_TEMP_SYMBOLS),
    ]
    rest = [secrets.choice(_TEMP_ALPHABET) for _ in range(length - len(required))]
    chars = required + rest
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


# Convenience functions
def hash_password(password: str) -> str:
    """Hash a password."""
    return PasswordHasher().hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password."""
    return PasswordHasher().verify(plain_password, hashed_password)
