"""
Persistence for groups and group memberships.

All methods run on a connection supplied by the caller; the membership
store decides which of them share a transaction.
"""

import psycopg

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from app.features.coordination.domain import (
    Group,
    GroupMember,
    GroupRole,
    GroupSummary,
)
from app.infrastructure.observability.logging import get_logger
from app.security.hashing import normalize_email

logger = get_logger(__name__)


class MembershipRepository:
    """SQL for the groups and group_members tables."""

    GROUP_COLUMNS = """
        g.id, g.name, g.description, g.type, g.created_by,
        g.created_at, g.updated_at, g.deleted_at
    """

    MEMBER_COLUMNS = "gm.group_id, gm.user_id, gm.role, gm.joined_at"

    @staticmethod
    def _row_to_group(row: dict | None) -> Group | None:
        if not row:
            return None
        return Group(
            id=str(row["id"]),
            name=row["name"],
            description=row.get("description"),
            type=row["type"],
            created_by=str(row["created_by"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row.get("deleted_at"),
        )

    @staticmethod
    def _row_to_member(row: dict | None) -> GroupMember | None:
        if not row:
            return None
        email = row.get("email")
        return GroupMember(
            group_id=str(row["group_id"]),
            user_id=str(row["user_id"]),
            role=GroupRole.parse(row["role"]),
            joined_at=row["joined_at"],
            email=normalize_email(email) if email else None,
            display_name=row.get("name"),
        )

    async def insert_group(
        self,
        conn: psycopg.AsyncConnection,
        *,
        name: str,
        description: str | None,
        group_type: str,
        created_by: str,
    ) -> Group:
        query = f"""
            INSERT INTO groups AS g (name, description, type, created_by)
            VALUES (%s, %s, %s, %s)
            RETURNING {self.GROUP_COLUMNS}
        """
        row = await fetch_one(query, (name, description, group_type, created_by), connection=conn)
        return self._row_to_group(row)

    async def find_alive_group_by_name(
        self, conn: psycopg.AsyncConnection, owner_id: str, name: str
    ) -> Group | None:
        query = f"""
            SELECT {self.GROUP_COLUMNS}
            FROM groups g
            WHERE g.created_by = %s AND lower(g.name) = lower(%s) AND g.deleted_at IS NULL
            LIMIT 1
        """
        row = await fetch_one(query, (owner_id, name), connection=conn)
        return self._row_to_group(row)

    async def get_group(
        self, conn: psycopg.AsyncConnection, group_id: str, *, for_update: bool = False
    ) -> Group | None:
        """Alive group by id. for_update locks the row until the transaction ends."""
        query = f"""
            SELECT {self.GROUP_COLUMNS}
            FROM groups g
            WHERE g.id = %s AND g.deleted_at IS NULL
        """
        if for_update:
            query += " FOR UPDATE"
        row = await fetch_one(query, (group_id,), connection=conn)
        return self._row_to_group(row)

    async def update_group(
        self,
        conn: psycopg.AsyncConnection,
        group_id: str,
        *,
        name: str,
        description: str | None,
        group_type: str,
    ) -> Group | None:
        query = f"""
            UPDATE groups AS g
            SET name = %s, description = %s, type = %s, updated_at = NOW()
            WHERE g.id = %s AND g.deleted_at IS NULL
            RETURNING {self.GROUP_COLUMNS}
        """
        row = await fetch_one(query, (name, description, group_type, group_id), connection=conn)
        return self._row_to_group(row)

    async def soft_delete_group(self, conn: psycopg.AsyncConnection, group_id: str) -> bool:
        query = """
            UPDATE groups
            SET deleted_at = NOW(), updated_at = NOW()
            WHERE id = %s AND deleted_at IS NULL
        """
        return await execute_query(query, (group_id,), connection=conn) > 0

    async def insert_member(
        self, conn: psycopg.AsyncConnection, group_id: str, user_id: str, role: GroupRole
    ) -> GroupMember | None:
        """Insert a membership; returns None when (group, user) already exists."""
        query = """
            INSERT INTO group_members AS gm (group_id, user_id, role)
            VALUES (%s, %s, %s)
            ON CONFLICT ON CONSTRAINT unique_group_member DO NOTHING
            RETURNING gm.group_id, gm.user_id, gm.role, gm.joined_at
        """
        row = await fetch_one(query, (group_id, user_id, role.label), connection=conn)
        return self._row_to_member(row)

    async def get_member(
        self, conn: psycopg.AsyncConnection, group_id: str, user_id: str
    ) -> GroupMember | None:
        """Membership in an alive group."""
        query = f"""
            SELECT {self.MEMBER_COLUMNS}
            FROM group_members gm
            INNER JOIN groups g ON g.id = gm.group_id
            WHERE gm.group_id = %s AND gm.user_id = %s AND g.deleted_at IS NULL
        """
        row = await fetch_one(query, (group_id, user_id), connection=conn)
        return self._row_to_member(row)

    async def update_member_role(
        self, conn: psycopg.AsyncConnection, group_id: str, user_id: str, role: GroupRole
    ) -> GroupMember | None:
        query = f"""
            UPDATE group_members AS gm
            SET role = %s
            WHERE gm.group_id = %s AND gm.user_id = %s
            RETURNING {self.MEMBER_COLUMNS}
        """
        row = await fetch_one(query, (role.label, group_id, user_id), connection=conn)
        return self._row_to_member(row)

    async def delete_member(self, conn: psycopg.AsyncConnection, group_id: str, user_id: str) -> bool:
        query = "DELETE FROM group_members WHERE group_id = %s AND user_id = %s"
        return await execute_query(query, (group_id, user_id), connection=conn) > 0

    async def count_owners(self, conn: psycopg.AsyncConnection, group_id: str) -> int:
        query = "SELECT COUNT(*) FROM group_members WHERE group_id = %s AND role = 'owner'"
        return int(await fetch_val(query, (group_id,), connection=conn) or 0)

    async def list_members(self, conn: psycopg.AsyncConnection, group_id: str) -> list[GroupMember]:
        """Members with user details, owner first, then admins, then by join time."""
        query = f"""
            SELECT {self.MEMBER_COLUMNS}, u.email, u.name
            FROM group_members gm
            INNER JOIN users u ON u.id = gm.user_id
            WHERE gm.group_id = %s AND u.deleted_at IS NULL
            ORDER BY
                CASE gm.role WHEN 'owner' THEN 1 WHEN 'admin' THEN 2 ELSE 3 END,
                gm.joined_at
        """
        rows = await fetch_all(query, (group_id,), connection=conn)
        return [self._row_to_member(row) for row in rows]

    async def list_groups_for_user(
        self, conn: psycopg.AsyncConnection, user_id: str
    ) -> list[GroupSummary]:
        query = f"""
            SELECT
                {self.GROUP_COLUMNS},
                gm.role,
                COUNT(DISTINCT gm2.user_id)::int AS member_count
            FROM groups g
            INNER JOIN group_members gm ON g.id = gm.group_id
            LEFT JOIN group_members gm2 ON g.id = gm2.group_id
            WHERE gm.user_id = %s AND g.deleted_at IS NULL
            GROUP BY g.id, gm.role
            ORDER BY g.updated_at DESC
        """
        rows = await fetch_all(query, (user_id,), connection=conn)
        return [
            GroupSummary(
                group=self._row_to_group(row),
                role=GroupRole.parse(row["role"]),
                member_count=row["member_count"],
            )
            for row in rows
        ]
