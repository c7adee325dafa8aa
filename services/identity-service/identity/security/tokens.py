"""Utilities for issuing and validating session JWTs and single-use secrets."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Any, Callable

import jwt

from ..domain.account import Account, utcnow


def generate_pending_token() -> str:
    """Return an opaque single-use secret with 256 bits of entropy."""
    return secrets.token_urlsafe(32)


class TokenIssuer:
    """Sign and verify session tokens with a secret fixed at construction."""

    algorithm = "HS256"

    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        ttl_seconds: int = 86400,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret = secret
        self._issuer = issuer
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def issue(self, account: Account) -> str:
        """Create a signed JWT representing an authenticated account.

        Parameters
        ----------
        account:
            Confirmed account whose identifier, email and role become claims.

        Returns
        -------
        str
            The encoded JWT; ``exp`` is exactly ``iat`` plus the configured TTL.
        """

        now = int(self._clock().timestamp())
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "user_id": account.account_id,
            "email": account.email,
            "role": account.role,
            "iat": now,
            "exp": now + self.ttl_seconds,
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def decode(self, token: str) -> dict[str, Any]:
        """Decode and verify a JWT returning its payload.

        Raises
        ------
        jwt.PyJWTError
            Propagated when the signature does not match, the token has
            expired, or it was minted by another issuer.
        """

        return jwt.decode(
            token,
            self._secret,
            algorithms=[self.algorithm],
            issuer=self._issuer,
            options={"require": ["exp", "iat", "user_id"]},
        )
