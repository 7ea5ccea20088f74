"""
Persistence for proposal responses: one current row per (proposal, recipient).
"""

import psycopg

from app.db.helpers import fetch_all, fetch_one
from app.features.coordination.domain import (
    AlternateTime,
    ProposalResponse,
    ResponseAnswer,
)


class ResponseRepository:
    """SQL for the proposal_responses table."""

    SELECT_COLUMNS = """
        id, proposal_id, recipient_email, user_id, answer,
        alternate_date, alternate_start_time, alternate_message, responded_at
    """

    @staticmethod
    def _row_to_response(row: dict | None) -> ProposalResponse | None:
        if not row:
            return None
        alternate = None
        if row.get("alternate_date") and row.get("alternate_start_time"):
            alternate = AlternateTime(
                proposed_date=row["alternate_date"],
                start_time=row["alternate_start_time"],
                message=row.get("alternate_message"),
            )
        return ProposalResponse(
            id=str(row["id"]),
            proposal_id=str(row["proposal_id"]),
            recipient_email=row["recipient_email"],
            user_id=str(row["user_id"]) if row.get("user_id") else None,
            answer=ResponseAnswer(row["answer"]),
            alternate=alternate,
            responded_at=row["responded_at"],
        )

    async def upsert(
        self,
        conn: psycopg.AsyncConnection,
        *,
        proposal_id: str,
        recipient_email: str,
        user_id: str | None,
        answer: ResponseAnswer,
        alternate: AlternateTime | None,
    ) -> tuple[ProposalResponse, bool]:
        """
        Insert or replace the recipient's response.

        Returns the stored row and whether it was newly inserted (xmax = 0
        only for rows created by this statement).
        """
        query = f"""
            INSERT INTO proposal_responses (
                proposal_id, recipient_email, user_id, answer,
                alternate_date, alternate_start_time, alternate_message, responded_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, NOW())
            ON CONFLICT ON CONSTRAINT unique_recipient_response DO UPDATE
            SET answer = EXCLUDED.answer,
                user_id = COALESCE(EXCLUDED.user_id, proposal_responses.user_id),
                alternate_date = EXCLUDED.alternate_date,
                alternate_start_time = EXCLUDED.alternate_start_time,
                alternate_message = EXCLUDED.alternate_message,
                responded_at = EXCLUDED.responded_at
            RETURNING {self.SELECT_COLUMNS}, (xmax = 0) AS inserted
        """
        params = (
            proposal_id,
            recipient_email,
            user_id,
            answer.value,
            alternate.proposed_date if alternate else None,
            alternate.start_time if alternate else None,
            alternate.message if alternate else None,
        )
        row = await fetch_one(query, params, connection=conn)
        return self._row_to_response(row), bool(row["inserted"])

    async def get(
        self, conn: psycopg.AsyncConnection, proposal_id: str, recipient_email: str
    ) -> ProposalResponse | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM proposal_responses
            WHERE proposal_id = %s AND recipient_email = %s
        """
        row = await fetch_one(query, (proposal_id, recipient_email), connection=conn)
        return self._row_to_response(row)

    async def list_for_proposal(
        self, conn: psycopg.AsyncConnection, proposal_id: str
    ) -> list[ProposalResponse]:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM proposal_responses
            WHERE proposal_id = %s
            ORDER BY responded_at
        """
        rows = await fetch_all(query, (proposal_id,), connection=conn)
        return [self._row_to_response(row) for row in rows]
