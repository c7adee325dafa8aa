"""Two-step registration: email first, password once the email is confirmed."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable

from ..notifier import confirmation_message
from ..security.passwords import CredentialHasher
from . import pending_tokens
from .account import Account, AccountState, TokenPurpose, state_of, utcnow
from .contracts import AccountStore, Notifier
from .errors import ConflictError, InternalError, NotificationError

logger = logging.getLogger(__name__)


class RegistrationService:
    """Drive an account from ``unregistered`` through ``pending_confirmation`` to ``active``."""

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
        """Store collaborators used to persist accounts and deliver confirmation mail."""
        self._store = store
        self._hasher = hasher
        self._notifier = notifier
        self._base_url = base_url
        self._token_ttl = timedelta(seconds=token_ttl_seconds)
        self._min_password_length = min_password_length
        self._clock = clock

    def initiate(self, email: str) -> Account:
        """Create an unconfirmed account for ``email`` and mail it a confirmation token.

        If the message cannot be sent the freshly created account is removed
        again so the caller can retry with the same address.
        """
        address = pending_tokens.validate_email(email)
        if state_of(self._store.find_by_email(address)) is not AccountState.unregistered:
            raise ConflictError()

        now = self._clock()
        account = Account(
            account_id=str(uuid.uuid4()),
            email=address,
            created_at=now,
            **pending_tokens.new_token_fields(TokenPurpose.confirm, now, self._token_ttl),
        )
        # the store enforces uniqueness too; a concurrent create surfaces here as ConflictError
        account = self._store.create(account)

        message = confirmation_message(
            self._base_url, account.pending_token, self._ttl_hours
        )
        try:
            self._notifier.send(account.email, message.subject, message.body)
        except NotificationError as exc:
            logger.exception("confirmation email failed for account %s", account.account_id)
            removed = self._store.delete_pending(account.email, account.pending_token)
            logger.info(
                "rolled back account %s after notification failure (removed=%d)",
                account.account_id,
                removed,
            )
            raise InternalError() from exc

        logger.info("registration initiated for account %s", account.account_id)
        return account

    def complete(self, token: str, password: str) -> Account:
        """Consume a confirmation token, set the password, and activate the account."""
        now = self._clock()
        account = pending_tokens.load_valid(self._store, token, TokenPurpose.confirm, now)
        pending_tokens.validate_password(password, self._min_password_length)

        password_hash = self._hasher.hash(password)
        pending_tokens.consume(
            self._store,
            account,
            token,
            TokenPurpose.confirm,
            {"password_hash": password_hash, "confirmed": True},
            now,
        )

        account.password_hash = password_hash
        account.confirmed = True
        account.pending_token = None
        account.token_purpose = None
        account.token_expiry = None
        logger.info("registration completed for account %s", account.account_id)
        return account

    @property
    def _ttl_hours(self) -> int:
        return int(self._token_ttl.total_seconds() // 3600)
