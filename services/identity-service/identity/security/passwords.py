"""Slow, salted password hashing backed by bcrypt."""

from __future__ import annotations

import bcrypt

# bcrypt only considers the first 72 bytes of its input.
MAX_PASSWORD_BYTES = 72


class CredentialHasher:
    """Hash and verify passwords with a configurable bcrypt cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        """Store the cost factor and precompute the hash used for dummy checks."""
        self._rounds = rounds
        self._dummy_hash = self.hash("dummy-password-for-timing")

    def hash(self, password: str) -> str:
        """Return a bcrypt hash string for ``password`` using a fresh salt."""
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify(self, password: str, hashed: str) -> bool:
        """Return ``True`` when ``password`` matches ``hashed``.

        Empty or malformed hashes never match.
        """
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    def dummy_verify(self, password: str) -> None:
        """Spend the same work as a real verification against a throwaway hash."""
        self.verify(password, self._dummy_hash)
