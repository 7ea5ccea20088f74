"""
Persistence for meeting proposals and their expected recipients.
"""

from collections.abc import Iterable

import psycopg

from app.db.helpers import fetch_all, fetch_one
from app.features.coordination.domain import (
    MeetingProposal,
    ProposalDraft,
    ProposalStatus,
    Recipient,
)


class ProposalRepository:
    """SQL for meeting_proposals and proposal_recipients."""

    SELECT_COLUMNS = """
        id, proposed_by, group_id, title, description, proposed_date,
        start_time, end_time, status, expected_responses, responded_count,
        created_at, updated_at, closed_at
    """

    @staticmethod
    def _row_to_proposal(row: dict | None) -> MeetingProposal | None:
        if not row:
            return None
        return MeetingProposal(
            id=str(row["id"]),
            proposed_by=str(row["proposed_by"]),
            group_id=str(row["group_id"]) if row.get("group_id") else None,
            title=row["title"],
            description=row.get("description"),
            proposed_date=row["proposed_date"],
            start_time=row["start_time"],
            end_time=row.get("end_time"),
            status=ProposalStatus(row["status"]),
            expected_responses=row["expected_responses"],
            responded_count=row["responded_count"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            closed_at=row.get("closed_at"),
        )

    @staticmethod
    def _row_to_recipient(row: dict) -> Recipient:
        return Recipient(
            email=row["email"],
            display_name=row["display_name"],
            user_id=str(row["user_id"]) if row.get("user_id") else None,
        )

    async def insert_proposal(
        self,
        conn: psycopg.AsyncConnection,
        draft: ProposalDraft,
        *,
        organizer_id: str,
        expected_responses: int,
    ) -> MeetingProposal:
        query = f"""
            INSERT INTO meeting_proposals (
                group_id, proposed_by, title, description,
                proposed_date, start_time, end_time, status, expected_responses
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, 'open', %s)
            RETURNING {self.SELECT_COLUMNS}
        """
        params = (
            draft.group_id,
            organizer_id,
            draft.title,
            draft.description,
            draft.proposed_date,
            draft.start_time,
            draft.end_time,
            expected_responses,
        )
        row = await fetch_one(query, params, connection=conn)
        return self._row_to_proposal(row)

    async def insert_recipients(
        self, conn: psycopg.AsyncConnection, proposal_id: str, recipients: Iterable[Recipient]
    ) -> None:
        query = """
            INSERT INTO proposal_recipients (proposal_id, email, user_id, display_name)
            VALUES (%s, %s, %s, %s)
        """
        payload = [(proposal_id, r.email, r.user_id, r.display_name) for r in recipients]
        async with conn.cursor() as cur:
            await cur.executemany(query, payload)

    async def get_proposal(
        self, conn: psycopg.AsyncConnection, proposal_id: str
    ) -> MeetingProposal | None:
        query = f"SELECT {self.SELECT_COLUMNS} FROM meeting_proposals WHERE id = %s"
        row = await fetch_one(query, (proposal_id,), connection=conn)
        return self._row_to_proposal(row)

    async def list_for_group(
        self, conn: psycopg.AsyncConnection, group_id: str
    ) -> list[MeetingProposal]:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM meeting_proposals
            WHERE group_id = %s
            ORDER BY created_at DESC
        """
        rows = await fetch_all(query, (group_id,), connection=conn)
        return [self._row_to_proposal(row) for row in rows]

    async def list_recipients(
        self, conn: psycopg.AsyncConnection, proposal_id: str
    ) -> list[Recipient]:
        query = """
            SELECT email, user_id, display_name
            FROM proposal_recipients
            WHERE proposal_id = %s
            ORDER BY display_name, email
        """
        rows = await fetch_all(query, (proposal_id,), connection=conn)
        return [self._row_to_recipient(row) for row in rows]

    async def get_recipient(
        self, conn: psycopg.AsyncConnection, proposal_id: str, email: str
    ) -> Recipient | None:
        query = """
            SELECT email, user_id, display_name
            FROM proposal_recipients
            WHERE proposal_id = %s AND email = %s
        """
        row = await fetch_one(query, (proposal_id, email), connection=conn)
        return self._row_to_recipient(row) if row else None

    async def transition(
        self,
        conn: psycopg.AsyncConnection,
        proposal_id: str,
        *,
        from_statuses: Iterable[ProposalStatus],
        to_status: ProposalStatus,
    ) -> MeetingProposal | None:
        """Conditional status change; None when the proposal was not in from_statuses."""
        allowed = [status.value for status in from_statuses]
        query = f"""
            UPDATE meeting_proposals
            SET status = %s,
                updated_at = NOW(),
                closed_at = COALESCE(closed_at, NOW())
            WHERE id = %s AND status = ANY(%s)
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (to_status.value, proposal_id, allowed), connection=conn)
        return self._row_to_proposal(row)

    async def register_response(
        self, conn: psycopg.AsyncConnection, proposal_id: str, *, new_response: bool
    ) -> MeetingProposal | None:
        """
        Update the aggregate after a response upsert.

        A first response bumps responded_count and flips the status to
        resolved in the same statement once every expected recipient has
        answered. That UPDATE takes the proposal row lock, so first
        responses to one proposal commit one at a time; the lock is held
        only for the rest of the response transaction. A changed answer
        leaves the aggregate alone and only takes a FOR SHARE lock, which
        still waits for a concurrent cancel or close but not for other
        changed answers. Returns None when the proposal is no longer open.
        """
        if not new_response:
            query = f"""
                SELECT {self.SELECT_COLUMNS}
                FROM meeting_proposals
                WHERE id = %s AND status = 'open'
                FOR SHARE
            """
            row = await fetch_one(query, (proposal_id,), connection=conn)
            return self._row_to_proposal(row)

        query = f"""
            UPDATE meeting_proposals
            SET responded_count = responded_count + 1,
                status = CASE
                    WHEN responded_count + 1 >= expected_responses THEN 'resolved'
                    ELSE status
                END,
                closed_at = CASE
                    WHEN responded_count + 1 >= expected_responses THEN NOW()
                    ELSE closed_at
                END,
                updated_at = NOW()
            WHERE id = %s AND status = 'open'
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (proposal_id,), connection=conn)
        return self._row_to_proposal(row)
