"""
Read-only user lookups. User rows are owned by the identity provider.
"""

from collections.abc import Iterable

import psycopg

from app.db.helpers import fetch_all, fetch_one
from app.features.coordination.domain import User
from app.security.hashing import normalize_email


class UserRepository:
    """Resolves user ids and email addresses to identities."""

    SELECT_COLUMNS = "id, email, name"

    @staticmethod
    def _row_to_user(row: dict | None) -> User | None:
        if not row:
            return None
        return User(id=str(row["id"]), email=normalize_email(row["email"]), display_name=row["name"])

    async def get_by_id(self, conn: psycopg.AsyncConnection, user_id: str) -> User | None:
        query = f"SELECT {self.SELECT_COLUMNS} FROM users WHERE id = %s AND deleted_at IS NULL"
        row = await fetch_one(query, (user_id,), connection=conn)
        return self._row_to_user(row)

    async def get_by_emails(
        self, conn: psycopg.AsyncConnection, emails: Iterable[str]
    ) -> dict[str, User]:
        """Map normalized email -> user for the addresses that belong to known users."""
        normalized = sorted({normalize_email(e) for e in emails if e})
        if not normalized:
            return {}

        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM users
            WHERE lower(email) = ANY(%s) AND deleted_at IS NULL
        """
        rows = await fetch_all(query, (normalized,), connection=conn)
        users = (self._row_to_user(row) for row in rows)
        return {user.email: user for user in users}
