"""
Persistence for response tokens (hashes only).
"""

from datetime import datetime

import psycopg

from app.db.helpers import execute_query, fetch_one
from app.features.coordination.domain import TokenRecord


class TokenRepository:
    """SQL for the response_tokens table."""

    SELECT_COLUMNS = "token_hash, proposal_id, recipient_email, expires_at, consumed_at, created_at"

    @staticmethod
    def _row_to_token(row: dict | None) -> TokenRecord | None:
        if not row:
            return None
        return TokenRecord(
            token_hash=row["token_hash"],
            proposal_id=str(row["proposal_id"]),
            recipient_email=row["recipient_email"],
            expires_at=row["expires_at"],
            consumed_at=row.get("consumed_at"),
            created_at=row["created_at"],
        )

    async def revoke_unconsumed(
        self, conn: psycopg.AsyncConnection, proposal_id: str, recipient_email: str
    ) -> int:
        """Drop outstanding tokens for the pair. Consumed ones are kept for replay detection."""
        query = """
            DELETE FROM response_tokens
            WHERE proposal_id = %s AND recipient_email = %s AND consumed_at IS NULL
        """
        return await execute_query(query, (proposal_id, recipient_email), connection=conn)

    async def insert(
        self,
        conn: psycopg.AsyncConnection,
        *,
        token_hash: str,
        proposal_id: str,
        recipient_email: str,
        expires_at: datetime,
    ) -> TokenRecord:
        query = f"""
            INSERT INTO response_tokens (token_hash, proposal_id, recipient_email, expires_at)
            VALUES (%s, %s, %s, %s)
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query, (token_hash, proposal_id, recipient_email, expires_at), connection=conn
        )
        return self._row_to_token(row)

    async def consume(
        self, conn: psycopg.AsyncConnection, token_hash: str, now: datetime
    ) -> TokenRecord | None:
        """
        Atomically mark an unused, unexpired token as consumed.

        Returns None when no row qualified. Concurrent callers with the same
        hash serialize on the row lock; the loser re-evaluates the WHERE
        clause after the winner commits and gets no row.
        """
        query = f"""
            UPDATE response_tokens
            SET consumed_at = %s
            WHERE token_hash = %s AND consumed_at IS NULL AND expires_at > %s
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (now, token_hash, now), connection=conn)
        return self._row_to_token(row)

    async def find(self, conn: psycopg.AsyncConnection, token_hash: str) -> TokenRecord | None:
        query = f"SELECT {self.SELECT_COLUMNS} FROM response_tokens WHERE token_hash = %s"
        row = await fetch_one(query, (token_hash,), connection=conn)
        return self._row_to_token(row)

    async def purge_expired(self, conn: psycopg.AsyncConnection, before: datetime) -> int:
        query = "DELETE FROM response_tokens WHERE expires_at < %s"
        return await execute_query(query, (before,), connection=conn)
