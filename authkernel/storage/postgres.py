from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from authkernel.logging import get_logger
from authkernel.storage.errors import ConstraintViolation, StoreUnavailable
from authkernel.storage.models import Principal

_PRINCIPAL_COLUMNS = (
    "id, username, password_hash, role, refresh_token_hash, created_at, updated_at"
)


class PostgresStore:
    """Postgres-backed principal store.

    The refresh-token compare-and-swap is a single conditional ``UPDATE``, so
    concurrent rotations on the same principal serialize on the row lock and
    at most one of them sees its expected digest.
    """

    def __init__(self, dsn: str, *, statement_timeout_ms: int = 5000) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            timeout=max(statement_timeout_ms / 1000.0, 1.0),
            kwargs={
                "row_factory": dict_row,
                "autocommit": False,
                "options": f"-c statement_timeout={int(statement_timeout_ms)}",
            },
        )
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[psycopg.Connection]:
        # The pool rolls back the transaction when the block raises
        try:
            with self.pool.connection() as conn:
                yield conn
        except psycopg.OperationalError as exc:
            self.logger.error("postgres_unavailable", error=str(exc))
            raise StoreUnavailable("principal store unavailable") from exc

    def _ensure_schema(self) -> None:
        """Create the ``principal`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS principal (
                    id TEXT PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    role TEXT NOT NULL,
                    refresh_token_hash TEXT,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )

    def verify_connection(self) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT 1 AS ok").fetchone()
        return bool(row and row.get("ok") == 1)

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _principal_from_row(row: dict) -> Principal:
        now = datetime.now(timezone.utc)
        return Principal(
            id=str(row["id"]),
            username=row["username"],
            password_hash=row["password_hash"],
            role=row.get("role", "USER"),
            refresh_token_hash=row.get("refresh_token_hash"),
            created_at=row.get("created_at") or now,
            updated_at=row.get("updated_at") or now,
        )

    def create_principal(self, username: str, password_hash: str, role: str) -> Principal:
        principal_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO principal (id, username, password_hash, role)
                    VALUES (%s, %s, %s, %s)
                    RETURNING {_PRINCIPAL_COLUMNS}
                    """,
                    (principal_id, username, password_hash, role),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("username already exists", {"field": "username"})
        return self._principal_from_row(row)

    def get_principal(self, principal_id: str) -> Optional[Principal]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_PRINCIPAL_COLUMNS} FROM principal WHERE id = %s",
                (principal_id,),
            ).fetchone()
        return self._principal_from_row(row) if row else None

    def get_principal_by_username(self, username: str) -> Optional[Principal]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_PRINCIPAL_COLUMNS} FROM principal WHERE username = %s",
                (username,),
            ).fetchone()
        return self._principal_from_row(row) if row else None

    def list_principals(self, limit: int = 100) -> List[Principal]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_PRINCIPAL_COLUMNS} FROM principal ORDER BY created_at LIMIT %s",
                (limit,),
            ).fetchall()
        return [self._principal_from_row(row) for row in rows]

    def update_principal_role(self, principal_id: str, role: str) -> Optional[Principal]:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                UPDATE principal SET role = %s, updated_at = now()
                WHERE id = %s RETURNING {_PRINCIPAL_COLUMNS}
                """,
                (role, principal_id),
            ).fetchone()
        return self._principal_from_row(row) if row else None

    def set_refresh_token(self, principal_id: str, token_hash: Optional[str]) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE principal SET refresh_token_hash = %s, updated_at = now() WHERE id = %s",
                (token_hash, principal_id),
            )

    def clear_refresh_token(self, principal_id: str) -> None:
        self.set_refresh_token(principal_id, None)

    def swap_refresh_token(
        self, principal_id: str, expected_hash: str, new_hash: Optional[str]
    ) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE principal SET refresh_token_hash = %s, updated_at = now()
                WHERE id = %s AND refresh_token_hash = %s
                RETURNING id
                """,
                (new_hash, principal_id, expected_hash),
            ).fetchone()
        return row is not None
