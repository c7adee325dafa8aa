from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any

import pytest

from identity.domain.account import Account, TokenPurpose
from identity.domain.errors import ConflictError, NotificationError
from identity.domain.password_reset import PasswordResetService
from identity.domain.registration import RegistrationService
from identity.security.passwords import CredentialHasher

BASE_URL = "https://eurovision.test"


class FakeClock:
    """Mutable clock handed to services in place of ``utcnow``."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 5, 16, 19, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeRepository:
    """In-memory account store mimicking the Postgres repository's guarantees."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._lock = Lock()
        self.mutations: list[tuple[str, Any]] = []

    def create(self, account: Account) -> Account:
        with self._lock:
            if account.email in self._accounts:
                raise ConflictError()
            self._accounts[account.email] = replace(account)
            self.mutations.append(("create", account.email))
        return replace(account)

    def find_by_email(self, email: str) -> Account | None:
        account = self._accounts.get(email)
        return replace(account) if account else None

    def find_by_token(self, token: str, purpose: TokenPurpose) -> Account | None:
        for account in self._accounts.values():
            if account.pending_token == token and account.token_purpose == purpose:
                return replace(account)
        return None

    def update_fields(
        self,
        email: str,
        fields: dict[str, Any],
        *,
        expected_token: str | None = None,
        purpose: TokenPurpose | None = None,
        now: datetime | None = None,
    ) -> int:
        with self._lock:
            account = self._accounts.get(email)
            if account is None:
                return 0
            if expected_token is not None:
                if account.pending_token != expected_token:
                    return 0
                if purpose is not None and account.token_purpose != purpose:
                    return 0
                if now is not None and (account.token_expiry is None or account.token_expiry < now):
                    return 0
            for name, value in fields.items():
                setattr(account, name, value)
            self.mutations.append(("update", email))
            return 1

    def delete_unconfirmed_before(self, cutoff: datetime) -> int:
        with self._lock:
            doomed = [
                email
                for email, account in self._accounts.items()
                if not account.confirmed and account.created_at < cutoff
            ]
            for email in doomed:
                del self._accounts[email]
            self.mutations.append(("delete_unconfirmed_before", cutoff))
            return len(doomed)

    def delete_pending(self, email: str, token: str) -> int:
        with self._lock:
            account = self._accounts.get(email)
            if account is None or account.confirmed or account.pending_token != token:
                return 0
            del self._accounts[email]
            self.mutations.append(("delete_pending", email))
            return 1

    # test helpers

    def put(self, account: Account) -> None:
        self._accounts[account.email] = account

    def get(self, email: str) -> Account | None:
        return self._accounts.get(email)

    def __len__(self) -> int:
        return len(self._accounts)


class RecordingNotifier:
    """Captures outgoing messages; set ``fail`` to simulate a transport outage."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def send(self, to: str, subject: str, body: str) -> None:
        if self.fail:
            raise NotificationError("relay unavailable")
        self.sent.append((to, subject, body))


def token_from(body: str) -> str:
    """Extract the token query parameter from a message body."""
    return body.split("token=", 1)[1].split()[0]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(scope="session")
def hasher() -> CredentialHasher:
    # minimum bcrypt cost keeps the suite fast
    return CredentialHasher(rounds=4)


@pytest.fixture
def registration(repository, hasher, notifier, clock) -> RegistrationService:
    return RegistrationService(repository, hasher, notifier, base_url=BASE_URL, clock=clock)


@pytest.fixture
def password_reset(repository, hasher, notifier, clock) -> PasswordResetService:
    return PasswordResetService(repository, hasher, notifier, base_url=BASE_URL, clock=clock)
