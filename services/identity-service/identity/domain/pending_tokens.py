"""Issue and consume the single-use token stored on an account."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from email_validator import EmailNotValidError, validate_email as _validate_email

from ..security.passwords import MAX_PASSWORD_BYTES
from ..security.tokens import generate_pending_token
from .account import Account, TokenPurpose, normalize_email
from .contracts import AccountStore
from .errors import ExpiredToken, InvalidToken, ValidationError, WeakPassword

logger = logging.getLogger(__name__)

CLEARED_TOKEN_FIELDS: dict[str, Any] = {
    "pending_token": None,
    "token_purpose": None,
    "token_expiry": None,
}


def validate_email(email: str) -> str:
    """Return the normalised address or raise ``ValidationError``."""
    candidate = normalize_email(email or "")
    try:
        _validate_email(candidate, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError() from exc
    return candidate


def validate_password(password: str, min_length: int) -> None:
    if password is None or len(password) < min_length:
        raise WeakPassword(f"password must be at least {min_length} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise WeakPassword(f"password must be at most {MAX_PASSWORD_BYTES} bytes")


def new_token_fields(purpose: TokenPurpose, now: datetime, ttl: timedelta) -> dict[str, Any]:
    """Build the field set that places a fresh token of ``purpose`` on an account."""
    return {
        "pending_token": generate_pending_token(),
        "token_purpose": purpose,
        "token_expiry": now + ttl,
    }


def load_valid(store: AccountStore, token: str, purpose: TokenPurpose, now: datetime) -> Account:
    """Return the account holding an unexpired ``token`` of ``purpose``."""
    if not token:
        raise InvalidToken()
    account = store.find_by_token(token, purpose)
    if account is None:
        raise InvalidToken()
    if account.token_expired(now):
        raise ExpiredToken()
    return account


def consume(
    store: AccountStore,
    account: Account,
    token: str,
    purpose: TokenPurpose,
    effect: dict[str, Any],
    now: datetime,
) -> None:
    """Apply ``effect`` and clear the token in one guarded update.

    A zero affected count means a concurrent request consumed (or replaced)
    the token between lookup and update.
    """
    fields = {**effect, **CLEARED_TOKEN_FIELDS}
    updated = store.update_fields(
        account.email, fields, expected_token=token, purpose=purpose, now=now
    )
    if updated == 0:
        logger.info("token for account %s was consumed concurrently", account.account_id)
        raise InvalidToken()
