"""Password reset flow reusing the account's single pending-token slot."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from ..notifier import reset_message
from ..security.passwords import CredentialHasher
from . import pending_tokens
from .account import TokenPurpose, utcnow
from .contracts import AccountStore, Notifier
from .errors import InternalError, NotificationError, ValidationError

logger = logging.getLogger(__name__)


class PasswordResetService:
    """Issue reset tokens and apply new passwords without touching confirmation state."""

    def __init__(
        self,
        store: AccountStore,
        hasher: CredentialHasher,
        notifier: Notifier,
        *,
        base_url: str,
        token_ttl_seconds: int = 86400,
        min_password_length: int = 8,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._notifier = notifier
        self._base_url = base_url
        self._token_ttl = timedelta(seconds=token_ttl_seconds)
        self._min_password_length = min_password_length
        self._clock = clock

    def initiate(self, email: str) -> None:
        """Send a reset token to ``email`` if it belongs to an active account.

        Returns normally whether or not the address is known; callers cannot
        tell the two cases apart.
        """
        try:
            address = pending_tokens.validate_email(email)
        except ValidationError:
            logger.info("password reset requested with malformed email")
            return

        account = self._store.find_by_email(address)
        if account is None:
            logger.info("password reset requested for unknown email")
            return

        # replaces any outstanding confirmation or reset token
        fields = pending_tokens.new_token_fields(TokenPurpose.reset, self._clock(), self._token_ttl)
        if self._store.update_fields(account.email, fields) == 0:
            logger.info("account %s disappeared before reset token was stored", account.account_id)
            return

        message = reset_message(
            self._base_url,
            fields["pending_token"],
            int(self._token_ttl.total_seconds() // 3600),
        )
        try:
            self._notifier.send(account.email, message.subject, message.body)
        except NotificationError as exc:
            logger.exception("password reset email failed for account %s", account.account_id)
            raise InternalError() from exc
        logger.info("password reset token issued for account %s", account.account_id)

    def complete(self, token: str, new_password: str) -> None:
        """Consume a reset token and replace the stored password hash."""
        now = self._clock()
        account = pending_tokens.load_valid(self._store, token, TokenPurpose.reset, now)
        pending_tokens.validate_password(new_password, self._min_password_length)

        pending_tokens.consume(
            self._store,
            account,
            token,
            TokenPurpose.reset,
            {"password_hash": self._hasher.hash(new_password)},
            now,
        )
        logger.info("password reset completed for account %s", account.account_id)
