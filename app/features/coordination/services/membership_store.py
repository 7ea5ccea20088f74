"""
Membership Store: groups, members and the roles that gate group actions.

Every method takes the connection of a transaction owned by the caller.
Operations that touch the owner row lock the group row first, so two
concurrent ownership changes on one group cannot interleave.
"""

import psycopg

from app.config import settings
from app.features.coordination.domain import (
    AuthorizationError,
    ConflictError,
    Group,
    GroupDetail,
    GroupMember,
    GroupRole,
    GroupSummary,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from app.features.coordination.repository import MembershipRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_GROUP_TYPE = "regular"
MAX_GROUP_NAME_LENGTH = 255


def _clean_group_name(name: str | None) -> str:
    clean_name = (name or "").strip()
    if not clean_name:
        raise ValidationError("Group name is required")
    if len(clean_name) > MAX_GROUP_NAME_LENGTH:
        raise ValidationError(f"Group name must be at most {MAX_GROUP_NAME_LENGTH} characters")
    return clean_name


class MembershipStore:
    def __init__(
        self,
        repository: MembershipRepository | None = None,
        *,
        enforce_unique_names: bool | None = None,
    ):
        self._repo = repository or MembershipRepository()
        self._enforce_unique_names = (
            settings.ENFORCE_UNIQUE_GROUP_NAMES if enforce_unique_names is None else enforce_unique_names
        )

    async def create_group(
        self,
        conn: psycopg.AsyncConnection,
        *,
        name: str,
        description: str | None,
        group_type: str | None,
        owner_id: str,
    ) -> Group:
        """
        Create a group and its owner membership.

        Both inserts run on the caller's transaction; if the membership insert
        fails the group insert is rolled back with it.
        """
        clean_name = _clean_group_name(name)
        await self._check_name_available(conn, owner_id, clean_name)

        group = await self._repo.insert_group(
            conn,
            name=clean_name,
            description=(description or "").strip() or None,
            group_type=(group_type or DEFAULT_GROUP_TYPE).strip() or DEFAULT_GROUP_TYPE,
            created_by=owner_id,
        )
        membership = await self._repo.insert_member(conn, group.id, owner_id, GroupRole.OWNER)
        if membership is None:
            raise InvariantViolation("Owner membership could not be created", group_id=group.id)

        logger.info("Group created", group_id=group.id, owner_id=owner_id)
        return group

    async def update_group(
        self,
        conn: psycopg.AsyncConnection,
        group_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        group_type: str | None = None,
    ) -> Group:
        """
        Change name, description or type. None leaves a field as it is; an
        empty description clears it.
        """
        group = await self._repo.get_group(conn, group_id, for_update=True)
        if group is None:
            raise NotFoundError("Group not found", group_id=group_id)

        new_name = group.name
        if name is not None:
            new_name = _clean_group_name(name)
            if new_name.lower() != group.name.lower():
                await self._check_name_available(conn, group.created_by, new_name, exclude=group_id)

        new_description = group.description
        if description is not None:
            new_description = description.strip() or None

        new_type = group.type
        if group_type is not None:
            new_type = group_type.strip() or DEFAULT_GROUP_TYPE

        updated = await self._repo.update_group(
            conn, group_id, name=new_name, description=new_description, group_type=new_type
        )
        if updated is None:
            raise NotFoundError("Group not found", group_id=group_id)

        logger.info("Group updated", group_id=group_id)
        return updated

    async def _check_name_available(
        self,
        conn: psycopg.AsyncConnection,
        owner_id: str,
        name: str,
        exclude: str | None = None,
    ) -> None:
        if not self._enforce_unique_names:
            return
        existing = await self._repo.find_alive_group_by_name(conn, owner_id, name)
        if existing and existing.id != exclude:
            raise ConflictError(f"You already own a group named '{name}'", group_id=existing.id)

    async def get_role(
        self, conn: psycopg.AsyncConnection, group_id: str, user_id: str
    ) -> GroupRole | None:
        """Role of the user in an alive group, or None when not a member."""
        member = await self._repo.get_member(conn, group_id, user_id)
        return member.role if member else None

    async def require_role(
        self,
        conn: psycopg.AsyncConnection,
        group_id: str,
        user_id: str,
        required: GroupRole,
    ) -> GroupRole:
        """The one capability check used by every group-scoped operation."""
        role = await self.get_role(conn, group_id, user_id)
        if role is None:
            group = await self._repo.get_group(conn, group_id)
            if group is None:
                raise NotFoundError("Group not found", group_id=group_id)
            raise AuthorizationError("You are not a member of this group", group_id=group_id)
        if not role.at_least(required):
            raise AuthorizationError(
                f"{required.label.capitalize()} permissions required",
                group_id=group_id,
                role=role.label,
            )
        return role

    async def add_member(
        self,
        conn: psycopg.AsyncConnection,
        group_id: str,
        user_id: str,
        role: GroupRole = GroupRole.MEMBER,
    ) -> GroupMember:
        """
        Add a member. Re-adding an existing member is a no-op that returns the
        existing membership with its current role.
        """
        if role is GroupRole.OWNER:
            raise ValidationError("Ownership can only be transferred, not granted")

        group = await self._repo.get_group(conn, group_id)
        if group is None:
            raise NotFoundError("Group not found", group_id=group_id)

        inserted = await self._repo.insert_member(conn, group_id, user_id, role)
        if inserted is not None:
            logger.info("Group member added", group_id=group_id, user_id=user_id, role=role.label)
            return inserted

        existing = await self._repo.get_member(conn, group_id, user_id)
        if existing is None:
            raise ConflictError("Membership changed concurrently", group_id=group_id, user_id=user_id)
        logger.debug("Group member already present", group_id=group_id, user_id=user_id)
        return existing

    async def remove_member(self, conn: psycopg.AsyncConnection, group_id: str, user_id: str) -> bool:
        """Remove a membership. False when there was none; the owner cannot be removed."""
        await self._repo.get_group(conn, group_id, for_update=True)
        member = await self._repo.get_member(conn, group_id, user_id)
        if member is None:
            return False

        if member.role is GroupRole.OWNER:
            raise InvariantViolation(
                "The group owner cannot be removed; transfer ownership first",
                group_id=group_id,
                user_id=user_id,
            )

        removed = await self._repo.delete_member(conn, group_id, user_id)
        if removed:
            logger.info("Group member removed", group_id=group_id, user_id=user_id)
        return removed

    async def update_member_role(
        self, conn: psycopg.AsyncConnection, group_id: str, user_id: str, role: GroupRole
    ) -> GroupMember:
        if role is GroupRole.OWNER:
            raise ValidationError("Use ownership transfer to make someone the owner")

        await self._repo.get_group(conn, group_id, for_update=True)
        member = await self._repo.get_member(conn, group_id, user_id)
        if member is None:
            raise NotFoundError("Member not found in this group", group_id=group_id, user_id=user_id)
        if member.role is GroupRole.OWNER:
            raise InvariantViolation(
                "The owner's role cannot be changed; transfer ownership instead",
                group_id=group_id,
            )
        if member.role is role:
            return member

        updated = await self._repo.update_member_role(conn, group_id, user_id, role)
        logger.info("Group member role updated", group_id=group_id, user_id=user_id, role=role.label)
        return updated

    async def transfer_ownership(
        self, conn: psycopg.AsyncConnection, group_id: str, new_owner_id: str
    ) -> GroupMember:
        """
        Make another existing member the owner; the previous owner becomes admin.

        Demotion happens before promotion so there is never a second owner row.
        """
        group = await self._repo.get_group(conn, group_id, for_update=True)
        if group is None:
            raise NotFoundError("Group not found", group_id=group_id)

        target = await self._repo.get_member(conn, group_id, new_owner_id)
        if target is None:
            raise ValidationError("The new owner must already be a member", group_id=group_id)
        if target.role is GroupRole.OWNER:
            return target

        members = await self._repo.list_members(conn, group_id)
        current_owners = [m for m in members if m.role is GroupRole.OWNER]
        if len(current_owners) != 1:
            raise InvariantViolation(
                "Group does not have exactly one owner", group_id=group_id, owners=len(current_owners)
            )

        await self._repo.update_member_role(conn, group_id, current_owners[0].user_id, GroupRole.ADMIN)
        promoted = await self._repo.update_member_role(conn, group_id, new_owner_id, GroupRole.OWNER)

        if await self._repo.count_owners(conn, group_id) != 1:
            raise InvariantViolation("Ownership transfer left the group without a single owner")

        logger.info(
            "Group ownership transferred",
            group_id=group_id,
            previous_owner_id=current_owners[0].user_id,
            new_owner_id=new_owner_id,
        )
        return promoted

    async def soft_delete_group(self, conn: psycopg.AsyncConnection, group_id: str) -> bool:
        deleted = await self._repo.soft_delete_group(conn, group_id)
        if deleted:
            logger.info("Group soft-deleted", group_id=group_id)
        return deleted

    async def get_group(self, conn: psycopg.AsyncConnection, group_id: str) -> Group:
        group = await self._repo.get_group(conn, group_id)
        if group is None:
            raise NotFoundError("Group not found", group_id=group_id)
        return group

    async def get_group_detail(
        self, conn: psycopg.AsyncConnection, group_id: str, viewer_id: str | None = None
    ) -> GroupDetail:
        group = await self.get_group(conn, group_id)
        members = await self._repo.list_members(conn, group_id)
        viewer_role = next((m.role for m in members if m.user_id == viewer_id), None)
        return GroupDetail(group=group, members=members, viewer_role=viewer_role)

    async def list_members(self, conn: psycopg.AsyncConnection, group_id: str) -> list[GroupMember]:
        return await self._repo.list_members(conn, group_id)

    async def list_groups_for_user(
        self, conn: psycopg.AsyncConnection, user_id: str
    ) -> list[GroupSummary]:
        return await self._repo.list_groups_for_user(conn, user_id)
