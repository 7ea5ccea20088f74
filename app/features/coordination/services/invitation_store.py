"""
Invitation Store: consent-based group membership.

An admin invites a registered user; the membership is only created when
the invitee accepts. Accepting goes through MembershipStore.add_member on
the same transaction, so an accepted invitation and its membership commit
together.
"""

import psycopg

from app.db.helpers import UniqueConstraintError
from app.features.coordination.domain import (
    ConflictError,
    GroupRole,
    Invitation,
    InvitationReply,
    InvitationStatus,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from app.features.coordination.repository import InvitationRepository
from app.features.coordination.services.membership_store import MembershipStore
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class InvitationStore:
    def __init__(
        self,
        membership: MembershipStore,
        repository: InvitationRepository | None = None,
    ):
        self._membership = membership
        self._repo = repository or InvitationRepository()

    async def invite(
        self,
        conn: psycopg.AsyncConnection,
        group_id: str,
        *,
        invited_by: str,
        invitee_id: str,
        role: GroupRole = GroupRole.MEMBER,
    ) -> Invitation:
        if role is GroupRole.OWNER:
            raise ValidationError("Ownership can only be transferred, not granted")

        await self._membership.get_group(conn, group_id)
        if await self._membership.get_role(conn, group_id, invitee_id) is not None:
            raise ConflictError(
                "User is already a member of this group", group_id=group_id, user_id=invitee_id
            )

        try:
            invitation = await self._repo.insert(
                conn, group_id=group_id, invited_by=invited_by, invitee_id=invitee_id, role=role
            )
        except UniqueConstraintError as e:
            raise ConflictError(
                "Invitation already sent to this user", group_id=group_id, user_id=invitee_id
            ) from e

        logger.info(
            "Group invitation created",
            invitation_id=invitation.id,
            group_id=group_id,
            invited_by=invited_by,
            invitee_id=invitee_id,
            role=role.label,
        )
        return invitation

    async def get(self, conn: psycopg.AsyncConnection, invitation_id: str) -> Invitation:
        invitation = await self._repo.get(conn, invitation_id)
        if invitation is None:
            raise NotFoundError("Invitation not found", invitation_id=invitation_id)
        return invitation

    async def list_pending(self, conn: psycopg.AsyncConnection, user_id: str) -> list[Invitation]:
        return await self._repo.list_for_invitee(conn, user_id, InvitationStatus.PENDING)

    async def respond(
        self,
        conn: psycopg.AsyncConnection,
        invitation_id: str,
        user_id: str,
        *,
        accept: bool,
    ) -> InvitationReply:
        """Accept or decline an invitation addressed to user_id."""
        invitation = await self._repo.get(conn, invitation_id, for_update=True)
        # Someone else's invitation looks the same as a missing one
        if invitation is None or invitation.invitee_id != user_id:
            raise NotFoundError("Invitation not found", invitation_id=invitation_id)
        if invitation.status is not InvitationStatus.PENDING:
            raise InvalidTransition(
                f"Invitation has already been {invitation.status.value}",
                invitation_id=invitation_id,
            )

        status = InvitationStatus.ACCEPTED if accept else InvitationStatus.DECLINED
        answered = await self._repo.respond(conn, invitation_id, status)
        if answered is None:
            raise InvalidTransition(
                "Invitation has already been answered", invitation_id=invitation_id
            )
        answered.group_name = invitation.group_name
        answered.inviter_name = invitation.inviter_name
        answered.invitee_email = invitation.invitee_email

        membership = None
        if accept:
            membership = await self._membership.add_member(
                conn, invitation.group_id, user_id, invitation.role
            )

        logger.info(
            "Group invitation answered",
            invitation_id=invitation_id,
            group_id=invitation.group_id,
            user_id=user_id,
            status=status.value,
        )
        return InvitationReply(invitation=answered, membership=membership)
