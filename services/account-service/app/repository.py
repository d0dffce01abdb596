"""Database repository for account aggregates and their refresh token index."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool
from psycopg.types.json import Json

from .domain.account import Account, CodePurpose, RefreshToken, VerificationCode
from .security.tokens import hash_refresh_token

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    account_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    normalized_name TEXT NOT NULL,
    email TEXT NOT NULL,
    email_normalized TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    pending_password_hash TEXT,
    external_id TEXT,
    verified BOOLEAN NOT NULL DEFAULT FALSE,
    refresh_tokens JSONB NOT NULL DEFAULT '[]'::jsonb,
    verification_codes JSONB NOT NULL DEFAULT '[]'::jsonb,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS accounts_verified_name_idx
    ON accounts (normalized_name) WHERE verified;
CREATE UNIQUE INDEX IF NOT EXISTS accounts_verified_email_idx
    ON accounts (email_normalized) WHERE verified;
CREATE INDEX IF NOT EXISTS accounts_name_idx ON accounts (normalized_name);
CREATE INDEX IF NOT EXISTS accounts_email_idx ON accounts (email_normalized);
CREATE TABLE IF NOT EXISTS account_refresh_tokens (
    token_hash TEXT PRIMARY KEY,
    account_id TEXT NOT NULL REFERENCES accounts (account_id) ON DELETE CASCADE
);
"""

_COLUMNS = """
    account_id, name, email, password_hash, created_at, external_id, verified,
    refresh_tokens, verification_codes, pending_password_hash
"""


class PostgresAccountStore:
    """Postgres-backed account persistence.

    Each aggregate is one ``accounts`` row with tokens and codes embedded as JSONB.
    ``account_refresh_tokens`` maps refresh token hashes to their owner and is
    rewritten in the same transaction as the row it indexes.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def ensure_schema(self) -> None:
        """Create the account tables and indexes when they do not exist yet."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
                conn.commit()

    def get_account(self, account_id: str) -> Account | None:
        """Fetch an account by identifier or return ``None``."""
        return self._fetch_one(f"SELECT {_COLUMNS} FROM accounts WHERE account_id = %s", (account_id,))

    def find_by_name(self, normalized_name: str, verified: bool | None = None) -> Account | None:
        """Return the account with the given lowercase name, preferring verified ones."""
        return self._find("normalized_name = %s", normalized_name.lower(), verified)

    def find_by_email(self, email: str, verified: bool | None = None) -> Account | None:
        """Return the account registered with ``email`` (case-insensitive), preferring verified ones."""
        return self._find("email_normalized = %s", email.lower(), verified)

    def list_by_email(self, email: str) -> list[Account]:
        """Return every account sharing ``email``, verified first then newest first."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM accounts
                    WHERE email_normalized = %s
                    ORDER BY verified DESC, created_at DESC
                    """,
                    (email.lower(),),
                )
                return [self._map_record(row) for row in cur.fetchall()]

    def find_by_refresh_token(self, token: str) -> Account | None:
        """Resolve the owner of a refresh token through the token index."""
        return self._fetch_one(
            f"""
            SELECT {_COLUMNS}
            FROM accounts
            WHERE account_id = (
                SELECT account_id FROM account_refresh_tokens WHERE token_hash = %s
            )
            """,
            (hash_refresh_token(token),),
        )

    def list_accounts(self) -> list[Account]:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT {_COLUMNS} FROM accounts ORDER BY created_at")
                return [self._map_record(row) for row in cur.fetchall()]

    def insert_account(self, account: Account) -> None:
        """Persist a new aggregate together with its token index entries."""
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO accounts (
                        account_id, name, normalized_name, email, email_normalized,
                        password_hash, pending_password_hash, external_id, verified,
                        refresh_tokens, verification_codes, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        account.account_id,
                        account.name,
                        account.normalized_name,
                        account.email,
                        account.normalized_email,
                        account.password_hash,
                        account.pending_password_hash,
                        account.external_id,
                        account.verified,
                        Json(self._dump_tokens(account)),
                        Json(self._dump_codes(account)),
                        account.created_at,
                        now,
                    ),
                )
                self._write_token_index(cur, account)
                conn.commit()

    def update_account(self, account: Account) -> None:
        """Replace the stored aggregate and its token index entries."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE accounts
                    SET name = %s,
                        normalized_name = %s,
                        email = %s,
                        email_normalized = %s,
                        password_hash = %s,
                        pending_password_hash = %s,
                        external_id = %s,
                        verified = %s,
                        refresh_tokens = %s,
                        verification_codes = %s,
                        updated_at = NOW()
                    WHERE account_id = %s
                    """,
                    (
                        account.name,
                        account.normalized_name,
                        account.email,
                        account.normalized_email,
                        account.password_hash,
                        account.pending_password_hash,
                        account.external_id,
                        account.verified,
                        Json(self._dump_tokens(account)),
                        Json(self._dump_codes(account)),
                        account.account_id,
                    ),
                )
                cur.execute(
                    "DELETE FROM account_refresh_tokens WHERE account_id = %s",
                    (account.account_id,),
                )
                self._write_token_index(cur, account)
                conn.commit()

    def delete_account(self, account_id: str) -> None:
        """Hard-delete an aggregate; its token index rows cascade."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM accounts WHERE account_id = %s", (account_id,))
                conn.commit()

    def _find(self, clause: str, value: str, verified: bool | None) -> Account | None:
        params: list[Any] = [value]
        if verified is not None:
            clause += " AND verified = %s"
            params.append(verified)
        return self._fetch_one(
            f"""
            SELECT {_COLUMNS}
            FROM accounts
            WHERE {clause}
            ORDER BY verified DESC, created_at DESC
            LIMIT 1
            """,
            tuple(params),
        )

    def _fetch_one(self, query: str, params: tuple) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
                if not row:
                    return None
        return self._map_record(row)

    def _write_token_index(self, cur: Any, account: Account) -> None:
        if not account.refresh_tokens:
            return
        cur.executemany(
            "INSERT INTO account_refresh_tokens (token_hash, account_id) VALUES (%s, %s)",
            [(hash_refresh_token(item.token), account.account_id) for item in account.refresh_tokens],
        )

    def _dump_tokens(self, account: Account) -> list[dict[str, str]]:
        return [
            {"token": item.token, "expires_at": item.expires_at.isoformat()}
            for item in account.refresh_tokens
        ]

    def _dump_codes(self, account: Account) -> list[dict[str, str]]:
        return [
            {
                "code": item.code,
                "expires_at": item.expires_at.isoformat(),
                "purpose": item.purpose.value,
            }
            for item in account.verification_codes
        ]

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            name=row[1],
            email=row[2],
            password_hash=row[3],
            created_at=row[4],
            external_id=row[5],
            verified=row[6],
            refresh_tokens=[
                RefreshToken(token=item["token"], expires_at=datetime.fromisoformat(item["expires_at"]))
                for item in row[7] or []
            ],
            verification_codes=[
                VerificationCode(
                    code=item["code"],
                    expires_at=datetime.fromisoformat(item["expires_at"]),
                    purpose=CodePurpose(item["purpose"]),
                )
                for item in row[8] or []
            ],
            pending_password_hash=row[9],
        )
