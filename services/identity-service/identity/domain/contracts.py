"""Domain-level collaborator contracts shared by multiple layers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from .account import Account, TokenPurpose


class AccountStore(Protocol):
    """Persistence operations the account workflows rely on.

    Implementations must reject duplicate emails at write time and apply
    ``update_fields`` / deletes atomically per account.
    """

    def create(self, account: Account) -> Account:
        """Insert a new account, raising ``ConflictError`` when the email exists."""
        ...

    def find_by_email(self, email: str) -> Account | None:
        ...

    def find_by_token(self, token: str, purpose: TokenPurpose) -> Account | None:
        ...

    def update_fields(
        self,
        email: str,
        fields: dict[str, Any],
        *,
        expected_token: str | None = None,
        purpose: TokenPurpose | None = None,
        now: datetime | None = None,
    ) -> int:
        """Apply ``fields`` to the account and return the affected count.

        When ``expected_token`` is given the update only applies while that
        token, with ``purpose``, is still pending and unexpired at ``now``.
        """
        ...

    def delete_unconfirmed_before(self, cutoff: datetime) -> int:
        """Delete unconfirmed accounts created before ``cutoff`` in one statement."""
        ...

    def delete_pending(self, email: str, token: str) -> int:
        """Delete an unconfirmed account still holding ``token``."""
        ...


class Notifier(Protocol):
    """Outbound message transport; raises on delivery failure."""

    def send(self, to: str, subject: str, body: str) -> None:
        ...
