from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class AccountState(str, Enum):
    """Lifecycle position of an email address; ``unregistered`` means no account row exists."""

    unregistered = "unregistered"
    pending_confirmation = "pending_confirmation"
    active = "active"


class TokenPurpose(str, Enum):
    confirm = "confirm"
    reset = "reset"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    """Return the canonical (trimmed, lower-cased) form used for storage and lookups."""
    return email.strip().lower()


@dataclass(slots=True)
class Account:
    """Aggregate root for a registered (or registering) user identity."""

    account_id: str
    email: str
    created_at: datetime
    password_hash: str = ""
    confirmed: bool = False
    pending_token: str | None = None
    token_purpose: TokenPurpose | None = None
    token_expiry: datetime | None = None
    role: str = "user"

    @property
    def state(self) -> AccountState:
        if self.confirmed:
            return AccountState.active
        return AccountState.pending_confirmation

    def token_expired(self, now: datetime) -> bool:
        return self.token_expiry is None or now > self.token_expiry


def state_of(account: Account | None) -> AccountState:
    """Return the lifecycle state for a store lookup result, treating a miss as ``unregistered``."""
    if account is None:
        return AccountState.unregistered
    return account.state
