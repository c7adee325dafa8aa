"""Credential verification and session token issuance."""

from __future__ import annotations

import logging
from typing import Any

import jwt

from ..security.passwords import CredentialHasher
from ..security.tokens import TokenIssuer
from .account import normalize_email
from .contracts import AccountStore
from .errors import InvalidCredentials, InvalidToken, RegistrationIncomplete, UnconfirmedEmail

logger = logging.getLogger(__name__)


class AuthenticationService:
    """Check email/password pairs and mint signed session tokens."""

    def __init__(
        self,
        store: AccountStore,
        hasher: CredentialHasher,
        issuer: TokenIssuer,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._issuer = issuer

    @property
    def session_ttl_seconds(self) -> int:
        return self._issuer.ttl_seconds

    def authenticate(self, email: str, password: str) -> str:
        """Return a session token for valid credentials.

        Unknown emails and wrong passwords raise the same ``InvalidCredentials``
        after comparable bcrypt work, so neither the error nor the latency
        reveals whether the address is registered.
        """
        account = self._store.find_by_email(normalize_email(email or ""))
        if account is None:
            self._hasher.dummy_verify(password or "")
            logger.info("login failed: invalid credentials")
            raise InvalidCredentials()

        if not account.confirmed:
            self._hasher.dummy_verify(password or "")
            logger.info("login refused for unconfirmed account %s", account.account_id)
            raise UnconfirmedEmail()

        if not account.password_hash:
            self._hasher.dummy_verify(password or "")
            logger.warning("confirmed account %s has no password hash", account.account_id)
            raise RegistrationIncomplete()

        if not self._hasher.verify(password or "", account.password_hash):
            logger.info("login failed: invalid credentials")
            raise InvalidCredentials()

        logger.info("session issued for account %s", account.account_id)
        return self._issuer.issue(account)

    def verify(self, token: str) -> dict[str, Any]:
        """Return the claims of a valid session token or raise ``InvalidToken``."""
        try:
            return self._issuer.decode(token)
        except jwt.PyJWTError as exc:
            logger.info("rejected session token: %s", exc)
            raise InvalidToken() from exc
