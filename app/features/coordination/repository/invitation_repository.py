"""
Persistence for group invitations.

A pending invitation is unique per (group, invitee) through the
unique_pending_invitation index; inserting a second one raises
UniqueConstraintError from the helpers.
"""

import psycopg

from app.db.helpers import fetch_all, fetch_one
from app.features.coordination.domain import GroupRole, Invitation, InvitationStatus
from app.security.hashing import normalize_email


class InvitationRepository:
    """SQL for the group_invitations table."""

    INVITATION_COLUMNS = """
        i.id, i.group_id, i.invited_by, i.invitee_id, i.role, i.status,
        i.created_at, i.responded_at
    """

    DISPLAY_COLUMNS = "g.name AS group_name, inviter.name AS inviter_name, invitee.email AS invitee_email"

    DISPLAY_JOINS = """
        INNER JOIN groups g ON g.id = i.group_id
        INNER JOIN users inviter ON inviter.id = i.invited_by
        INNER JOIN users invitee ON invitee.id = i.invitee_id
    """

    @staticmethod
    def _row_to_invitation(row: dict | None) -> Invitation | None:
        if not row:
            return None
        email = row.get("invitee_email")
        return Invitation(
            id=str(row["id"]),
            group_id=str(row["group_id"]),
            invited_by=str(row["invited_by"]),
            invitee_id=str(row["invitee_id"]),
            role=GroupRole.parse(row["role"]),
            status=InvitationStatus(row["status"]),
            created_at=row["created_at"],
            responded_at=row.get("responded_at"),
            group_name=row.get("group_name"),
            inviter_name=row.get("inviter_name"),
            invitee_email=normalize_email(email) if email else None,
        )

    async def insert(
        self,
        conn: psycopg.AsyncConnection,
        *,
        group_id: str,
        invited_by: str,
        invitee_id: str,
        role: GroupRole,
    ) -> Invitation:
        query = f"""
            INSERT INTO group_invitations AS i (group_id, invited_by, invitee_id, role)
            VALUES (%s, %s, %s, %s)
            RETURNING {self.INVITATION_COLUMNS}
        """
        row = await fetch_one(query, (group_id, invited_by, invitee_id, role.label), connection=conn)
        return self._row_to_invitation(row)

    async def get(
        self, conn: psycopg.AsyncConnection, invitation_id: str, *, for_update: bool = False
    ) -> Invitation | None:
        """Invitation to an alive group. for_update locks the invitation row."""
        query = f"""
            SELECT {self.INVITATION_COLUMNS}, {self.DISPLAY_COLUMNS}
            FROM group_invitations i
            {self.DISPLAY_JOINS}
            WHERE i.id = %s AND g.deleted_at IS NULL
        """
        if for_update:
            query += " FOR UPDATE OF i"
        row = await fetch_one(query, (invitation_id,), connection=conn)
        return self._row_to_invitation(row)

    async def list_for_invitee(
        self,
        conn: psycopg.AsyncConnection,
        invitee_id: str,
        status: InvitationStatus | None = InvitationStatus.PENDING,
    ) -> list[Invitation]:
        """Invitations addressed to a user, newest first."""
        query = f"""
            SELECT {self.INVITATION_COLUMNS}, {self.DISPLAY_COLUMNS}
            FROM group_invitations i
            {self.DISPLAY_JOINS}
            WHERE i.invitee_id = %s AND g.deleted_at IS NULL
        """
        params: tuple = (invitee_id,)
        if status is not None:
            query += " AND i.status = %s"
            params += (status.value,)
        query += " ORDER BY i.created_at DESC"

        rows = await fetch_all(query, params, connection=conn)
        return [self._row_to_invitation(row) for row in rows]

    async def respond(
        self, conn: psycopg.AsyncConnection, invitation_id: str, status: InvitationStatus
    ) -> Invitation | None:
        """Answer a pending invitation. None when it was no longer pending."""
        query = f"""
            UPDATE group_invitations AS i
            SET status = %s, responded_at = NOW()
            WHERE i.id = %s AND i.status = 'pending'
            RETURNING {self.INVITATION_COLUMNS}
        """
        row = await fetch_one(query, (status.value, invitation_id), connection=conn)
        return self._row_to_invitation(row)
