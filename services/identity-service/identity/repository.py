"""Database repository for identity/account data."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

import psycopg
from psycopg import sql
from psycopg.errors import UniqueViolation
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account, TokenPurpose
from .domain.errors import ConflictError, InternalError

logger = logging.getLogger(__name__)

_COLUMNS = (
    "account_id, email, password_hash, confirmed, pending_token, "
    "token_purpose, token_expiry, role, created_at"
)

# created_at and account_id are immutable after insert
_UPDATABLE_FIELDS = frozenset(
    {"password_hash", "confirmed", "pending_token", "token_purpose", "token_expiry", "role"}
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    account_id     TEXT PRIMARY KEY,
    email          TEXT NOT NULL UNIQUE,
    password_hash  TEXT NOT NULL DEFAULT '',
    confirmed      BOOLEAN NOT NULL DEFAULT FALSE,
    pending_token  TEXT UNIQUE,
    token_purpose  TEXT,
    token_expiry   TIMESTAMPTZ,
    role           TEXT NOT NULL DEFAULT 'user',
    created_at     TIMESTAMPTZ NOT NULL,
    CONSTRAINT accounts_token_fields_paired CHECK (
        (pending_token IS NULL) = (token_expiry IS NULL)
        AND (pending_token IS NULL) = (token_purpose IS NULL)
    ),
    CONSTRAINT accounts_confirmed_has_password CHECK (NOT confirmed OR password_hash <> '')
);
CREATE INDEX IF NOT EXISTS accounts_unconfirmed_created_at_idx
    ON accounts (created_at) WHERE NOT confirmed;
"""


class AccountRepository:
    """Postgres-backed account persistence with per-row atomic updates."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    @contextmanager
    def _connection(self, operation: str) -> Iterator[psycopg.Connection]:
        """Yield a pooled connection, translating driver failures into domain errors."""
        try:
            with self._pool.connection() as conn:
                yield conn
        except UniqueViolation as exc:
            raise ConflictError() from exc
        except psycopg.Error as exc:
            logger.exception("account store %s failed", operation)
            raise InternalError() from exc

    def ensure_schema(self) -> None:
        """Create the accounts table and its indexes when missing."""
        with self._connection("ensure_schema") as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()

    def create(self, account: Account) -> Account:
        """Insert ``account``; the unique email index turns duplicates into ``ConflictError``."""
        with self._connection("create") as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO accounts ({_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_COLUMNS}
                    """,
                    (
                        account.account_id,
                        account.email,
                        account.password_hash,
                        account.confirmed,
                        account.pending_token,
                        account.token_purpose.value if account.token_purpose else None,
                        account.token_expiry,
                        account.role,
                        account.created_at,
                    ),
                )
                record = cur.fetchone()
            conn.commit()
        return self._map_record(record)

    def find_by_email(self, email: str) -> Account | None:
        return self._find_one("find_by_email", "email = %s", (email,))

    def find_by_token(self, token: str, purpose: TokenPurpose) -> Account | None:
        return self._find_one(
            "find_by_token",
            "pending_token = %s AND token_purpose = %s",
            (token, purpose.value),
        )

    def update_fields(
        self,
        email: str,
        fields: dict[str, Any],
        *,
        expected_token: str | None = None,
        purpose: TokenPurpose | None = None,
        now: datetime | None = None,
    ) -> int:
        """Apply ``fields`` in a single UPDATE and return the affected row count.

        With ``expected_token`` the WHERE clause also requires the token, its
        purpose and an unexpired ``token_expiry``; the database evaluates the
        guard and the write together, so only one concurrent consumer wins.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update fields: {sorted(unknown)}")
        if not fields:
            return 0

        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(name)) for name in fields
        )
        params: list[Any] = [
            value.value if isinstance(value, TokenPurpose) else value for value in fields.values()
        ]
        clauses = [sql.SQL("email = %s")]
        params.append(email)
        if expected_token is not None:
            clauses.append(sql.SQL("pending_token = %s"))
            params.append(expected_token)
            if purpose is not None:
                clauses.append(sql.SQL("token_purpose = %s"))
                params.append(purpose.value)
            if now is not None:
                clauses.append(sql.SQL("token_expiry >= %s"))
                params.append(now)

        query = sql.SQL("UPDATE accounts SET {} WHERE {}").format(
            assignments, sql.SQL(" AND ").join(clauses)
        )
        with self._connection("update_fields") as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                affected = cur.rowcount
            conn.commit()
        return affected

    def delete_unconfirmed_before(self, cutoff: datetime) -> int:
        """Delete unconfirmed accounts older than ``cutoff`` in one predicate delete."""
        with self._connection("delete_unconfirmed_before") as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM accounts WHERE confirmed = FALSE AND created_at < %s",
                    (cutoff,),
                )
                deleted = cur.rowcount
            conn.commit()
        return deleted

    def delete_pending(self, email: str, token: str) -> int:
        """Remove an account that is still unconfirmed and still holds ``token``."""
        with self._connection("delete_pending") as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    DELETE FROM accounts
                    WHERE email = %s AND pending_token = %s AND confirmed = FALSE
                    """,
                    (email, token),
                )
                deleted = cur.rowcount
            conn.commit()
        return deleted

    def _find_one(self, operation: str, where: str, params: tuple[Any, ...]) -> Account | None:
        with self._connection(operation) as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT {_COLUMNS} FROM accounts WHERE {where}", params)
                row = cur.fetchone()
                if not row:
                    return None
        return self._map_record(row)

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            email=row[1],
            password_hash=row[2],
            confirmed=row[3],
            pending_token=row[4],
            token_purpose=TokenPurpose(row[5]) if row[5] else None,
            token_expiry=row[6],
            role=row[7],
            created_at=row[8],
        )
