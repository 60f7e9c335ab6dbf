from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from estategate.logging import get_logger
from estategate.storage.errors import DuplicateRecord, MissingReference
from estategate.storage.models import (
    Community,
    SecurityToken,
    SecurityTokenType,
    User,
    utcnow,
)


_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        name TEXT,
        password_hash TEXT,
        email_confirmed BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS security_token (
        id TEXT PRIMARY KEY,
        token_type TEXT NOT NULL,
        value TEXT NOT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL,
        used BOOLEAN NOT NULL DEFAULT FALSE,
        owner_id TEXT NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        CHECK (expires_at > created_at)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS community (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        district TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS community_admin (
        community_id TEXT NOT NULL REFERENCES community(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        PRIMARY KEY (community_id, user_id)
    )
    """,
]


class PostgresStore:
    """Postgres-backed store for users, security tokens and communities."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _user_from_row(row: Dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            email=row["email"],
            name=row.get("name"),
            password_hash=row.get("password_hash"),
            email_confirmed=bool(row.get("email_confirmed", False)),
            created_at=row.get("created_at") or utcnow(),
        )

    @staticmethod
    def _token_from_row(row: Dict[str, Any]) -> SecurityToken:
        return SecurityToken(
            id=str(row["id"]),
            token_type=SecurityTokenType(row["token_type"]),
            value=row["value"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            owner_id=str(row["owner_id"]),
            used=bool(row["used"]),
        )

    # -- users -----------------------------------------------------------

    def create_user(
        self,
        email: str,
        *,
        name: Optional[str] = None,
        password_hash: Optional[str] = None,
    ) -> User:
        user_id = str(uuid.uuid4())
        normalized = email.strip().lower()
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_user (id, email, name, password_hash)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *
                    """,
                    (user_id, normalized, name, password_hash),
                ).fetchone()
        except errors.UniqueViolation:
            raise DuplicateRecord("email already exists", {"field": "email"})
        return self._user_from_row(row)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE id = %s", (user_id,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s", (email.strip().lower(),)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def save_password(self, user_id: str, password_hash: str) -> None:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET password_hash = %s WHERE id = %s RETURNING id",
                (password_hash, user_id),
            ).fetchone()
        if not row:
            raise MissingReference("user not found", {"user_id": user_id})

    def mark_email_confirmed(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET email_confirmed = TRUE WHERE id = %s RETURNING *",
                (user_id,),
            ).fetchone()
        return self._user_from_row(row) if row else None

    # -- security tokens -------------------------------------------------

    def save_token(self, token: SecurityToken) -> SecurityToken:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO security_token
                        (id, token_type, value, created_at, expires_at, used, owner_id)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        token_type = EXCLUDED.token_type,
                        value = EXCLUDED.value,
                        created_at = EXCLUDED.created_at,
                        expires_at = EXCLUDED.expires_at,
                        used = security_token.used OR EXCLUDED.used,
                        owner_id = EXCLUDED.owner_id
                    RETURNING *
                    """,
                    (
                        token.id,
                        token.token_type.value,
                        token.value,
                        token.created_at,
                        token.expires_at,
                        token.used,
                        token.owner_id,
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise DuplicateRecord("token value already exists", {"field": "value"})
        except errors.ForeignKeyViolation:
            raise MissingReference("token owner not found", {"owner_id": token.owner_id})
        return self._token_from_row(row)

    def find_token_by_value(self, value: str) -> Optional[SecurityToken]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM security_token WHERE value = %s", (value,)
            ).fetchone()
        return self._token_from_row(row) if row else None

    def list_user_tokens(
        self, user_id: str, token_type: Optional[SecurityTokenType] = None
    ) -> List[SecurityToken]:
        query = "SELECT * FROM security_token WHERE owner_id = %s"
        params: list[Any] = [user_id]
        if token_type is not None:
            query += " AND token_type = %s"
            params.append(SecurityTokenType(token_type).value)
        query += " ORDER BY created_at"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._token_from_row(row) for row in rows]

    def delete_unused_tokens(self, user_id: str, token_type: SecurityTokenType) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                """
                DELETE FROM security_token
                WHERE owner_id = %s AND token_type = %s AND used = FALSE
                """,
                (user_id, SecurityTokenType(token_type).value),
            )
            return cur.rowcount

    def mark_token_used(self, token_id: str) -> Optional[SecurityToken]:
        """Flip ``used`` from False to True; return None if it was not False."""
        # The row lock taken by UPDATE serializes concurrent consumers; the
        # loser re-evaluates ``used = FALSE`` after the winner commits.
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE security_token SET used = TRUE
                WHERE id = %s AND used = FALSE
                RETURNING *
                """,
                (token_id,),
            ).fetchone()
        return self._token_from_row(row) if row else None

    # -- communities -----------------------------------------------------

    def create_community(self, name: str, *, district: Optional[str] = None) -> Community:
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO community (id, name, district)
                VALUES (%s, %s, %s)
                RETURNING *
                """,
                (str(uuid.uuid4()), name, district),
            ).fetchone()
        return Community(
            id=str(row["id"]),
            name=row["name"],
            district=row.get("district"),
            created_at=row.get("created_at") or utcnow(),
        )

    def get_community(self, community_id: str) -> Optional[Community]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM community WHERE id = %s", (community_id,)
            ).fetchone()
            if not row:
                return None
            admin_rows = conn.execute(
                "SELECT user_id FROM community_admin WHERE community_id = %s",
                (community_id,),
            ).fetchall()
        return Community(
            id=str(row["id"]),
            name=row["name"],
            district=row.get("district"),
            admin_ids=[str(r["user_id"]) for r in admin_rows],
            created_at=row.get("created_at") or utcnow(),
        )

    def add_community_admin(self, community_id: str, user_id: str) -> bool:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO community_admin (community_id, user_id)
                    VALUES (%s, %s)
                    ON CONFLICT DO NOTHING
                    """,
                    (community_id, user_id),
                )
        except errors.ForeignKeyViolation:
            return False
        return True

    def add_community_admins(self, community_id: str, user_ids: List[str]) -> Community:
        """Grant admin to every user id in one transaction, or to none of them."""
        with self._connect() as conn:
            exists = conn.execute(
                "SELECT 1 FROM community WHERE id = %s", (community_id,)
            ).fetchone()
            if not exists:
                raise MissingReference(
                    "community not found", {"community_id": community_id}
                )
            rows = conn.execute(
                "SELECT id FROM app_user WHERE id = ANY(%s)", (list(user_ids),)
            ).fetchall()
            found = {str(r["id"]) for r in rows}
            missing = [uid for uid in user_ids if uid not in found]
            if missing:
                raise MissingReference("user not found", {"user_ids": missing})
            try:
                for uid in user_ids:
                    conn.execute(
                        """
                        INSERT INTO community_admin (community_id, user_id)
                        VALUES (%s, %s)
                        ON CONFLICT DO NOTHING
                        """,
                        (community_id, uid),
                    )
            except errors.ForeignKeyViolation:
                # a user or the community was deleted after the lookup
                raise MissingReference("user not found", {"user_ids": list(user_ids)})
        community = self.get_community(community_id)
        if community is None:
            raise MissingReference("community not found", {"community_id": community_id})
        return community

    def find_community_admins(self, community_id: str) -> Optional[List[User]]:
        """Admins of a community, or None when the community does not exist."""
        with self._connect() as conn:
            exists = conn.execute(
                "SELECT 1 FROM community WHERE id = %s", (community_id,)
            ).fetchone()
            if not exists:
                return None
            rows = conn.execute(
                """
                SELECT u.* FROM app_user u
                JOIN community_admin ca ON ca.user_id = u.id
                WHERE ca.community_id = %s
                """,
                (community_id,),
            ).fetchall()
        return [self._user_from_row(row) for row in rows]


__all__ = ["PostgresStore"]
