"""
Coordination façade: the single entry point used by the HTTP layer.

Each public method opens one connection or transaction scope on the
DatabasePoolManager, runs the store operations inside it, and only after
the scope has closed hands notifications to the dispatcher. Store errors
propagate unchanged except for one case: a repeated click on a response
link whose answer is already recorded is reported as success.
"""

from dataclasses import dataclass
from typing import Any

import psycopg

from app.db.helpers import with_db_retry
from app.features.coordination.domain import (
    AlternateTime,
    AuthorizationError,
    Delivery,
    GroupDetail,
    GroupMember,
    GroupRole,
    GroupSummary,
    Invitation,
    InvitationReply,
    MeetingProposal,
    NotFoundError,
    ProposalCreated,
    ProposalDetail,
    ProposalDraft,
    Recipient,
    RecordedResponse,
    ResponseAnswer,
    ResponseOutcome,
    TokenConsumed,
    TokenProposalView,
    User,
    ValidationError,
)
from app.features.coordination.repository import UserRepository
from app.features.coordination.services.email_templates import NotificationKind
from app.features.coordination.services.invitation_store import InvitationStore
from app.features.coordination.services.membership_store import MembershipStore
from app.features.coordination.services.notifier import NotificationDispatcher
from app.features.coordination.services.proposal_store import ProposalStore
from app.features.coordination.services.response_collector import (
    ResponseCollector,
    normalize_answer,
)
from app.features.coordination.services.token_issuer import TokenIssuer
from app.infrastructure.observability.logging import get_logger
from app.security.hashing import normalize_email

logger = get_logger(__name__)

MAX_ATTENDEES = 200


@dataclass(frozen=True, slots=True)
class CoordinationPolicy:
    """Minimum group role per action. Transfer and deletion always need the owner."""

    propose: GroupRole = GroupRole.ADMIN
    manage_group: GroupRole = GroupRole.ADMIN
    manage_members: GroupRole = GroupRole.ADMIN
    manage_proposals: GroupRole = GroupRole.ADMIN
    update_roles: GroupRole = GroupRole.ADMIN
    view_proposals: GroupRole = GroupRole.MEMBER


def _is_email(value: str) -> bool:
    local, _, domain = value.partition("@")
    return bool(local) and "." in domain and " " not in value


def _proposal_payload(proposal: MeetingProposal, **extra: Any) -> dict[str, Any]:
    payload = {
        "proposal_id": proposal.id,
        "title": proposal.title,
        "description": proposal.description,
        "proposed_date": proposal.proposed_date,
        "start_time": proposal.start_time,
        "end_time": proposal.end_time,
        "status": proposal.status.value,
        "responded_count": proposal.responded_count,
        "expected_responses": proposal.expected_responses,
    }
    payload.update(extra)
    return payload


class CoordinationService:
    def __init__(
        self,
        db,
        dispatcher: NotificationDispatcher,
        *,
        membership: MembershipStore | None = None,
        proposals: ProposalStore | None = None,
        tokens: TokenIssuer | None = None,
        collector: ResponseCollector | None = None,
        users: UserRepository | None = None,
        invitations: InvitationStore | None = None,
        policy: CoordinationPolicy | None = None,
    ):
        self._db = db
        self._dispatcher = dispatcher
        self._membership = membership or MembershipStore()
        self._invitations = invitations or InvitationStore(self._membership)
        self._proposals = proposals or ProposalStore()
        self._tokens = tokens or TokenIssuer()
        self._collector = collector or ResponseCollector(self._tokens, self._proposals)
        self._users = users or UserRepository()
        self._policy = policy or CoordinationPolicy()

    @property
    def policy(self) -> CoordinationPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def create_group(
        self,
        actor_id: str,
        *,
        name: str,
        description: str | None = None,
        group_type: str | None = None,
    ) -> GroupDetail:
        async with self._db.transaction() as conn:
            group = await self._membership.create_group(
                conn, name=name, description=description, group_type=group_type, owner_id=actor_id
            )
            return await self._membership.get_group_detail(conn, group.id, viewer_id=actor_id)

    @with_db_retry(max_retries=2)
    async def list_groups(self, actor_id: str) -> list[GroupSummary]:
        async with self._db.connection() as conn:
            return await self._membership.list_groups_for_user(conn, actor_id)

    @with_db_retry(max_retries=2)
    async def get_group(self, actor_id: str, group_id: str) -> GroupDetail:
        async with self._db.connection() as conn:
            await self._membership.require_role(conn, group_id, actor_id, GroupRole.MEMBER)
            return await self._membership.get_group_detail(conn, group_id, viewer_id=actor_id)

    async def update_group(
        self,
        actor_id: str,
        group_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        group_type: str | None = None,
    ) -> GroupDetail:
        async with self._db.transaction() as conn:
            await self._membership.require_role(conn, group_id, actor_id, self._policy.manage_group)
            await self._membership.update_group(
                conn, group_id, name=name, description=description, group_type=group_type
            )
            return await self._membership.get_group_detail(conn, group_id, viewer_id=actor_id)

    async def delete_group(self, actor_id: str, group_id: str) -> bool:
        async with self._db.transaction() as conn:
            await self._membership.require_role(conn, group_id, actor_id, GroupRole.OWNER)
            return await self._membership.soft_delete_group(conn, group_id)

    async def add_member(
        self,
        actor_id: str,
        group_id: str,
        *,
        user_id: str | None = None,
        email: str | None = None,
        role: GroupRole = GroupRole.MEMBER,
    ) -> GroupMember:
        """
        Add a registered user directly, identified by id or by email address.

        This skips the invitee's consent and is meant for admins; the usual
        path is invite_member followed by respond_to_invitation.
        """
        if not user_id and not email:
            raise ValidationError("Either user_id or email is required")

        async with self._db.transaction() as conn:
            await self._membership.require_role(
                conn, group_id, actor_id, self._policy.manage_members
            )
            user = await self._resolve_user(conn, user_id=user_id, email=email)
            return await self._membership.add_member(conn, group_id, user.id, role)

    async def remove_member(self, actor_id: str, group_id: str, user_id: str) -> bool:
        """Remove a member; any member may remove themselves unless they own the group."""
        required = GroupRole.MEMBER if actor_id == user_id else self._policy.manage_members
        async with self._db.transaction() as conn:
            await self._membership.require_role(conn, group_id, actor_id, required)
            return await self._membership.remove_member(conn, group_id, user_id)

    async def update_member_role(
        self, actor_id: str, group_id: str, user_id: str, role: GroupRole
    ) -> GroupMember:
        async with self._db.transaction() as conn:
            await self._membership.require_role(conn, group_id, actor_id, self._policy.update_roles)
            return await self._membership.update_member_role(conn, group_id, user_id, role)

    async def transfer_ownership(
        self, actor_id: str, group_id: str, new_owner_id: str
    ) -> GroupMember:
        async with self._db.transaction() as conn:
            await self._membership.require_role(conn, group_id, actor_id, GroupRole.OWNER)
            return await self._membership.transfer_ownership(conn, group_id, new_owner_id)

    async def invite_member(
        self,
        actor_id: str,
        group_id: str,
        *,
        user_id: str | None = None,
        email: str | None = None,
        role: GroupRole = GroupRole.MEMBER,
    ) -> Invitation:
        """Invite a registered user; they become a member only once they accept."""
        if not user_id and not email:
            raise ValidationError("Either user_id or email is required")

        async with self._db.transaction() as conn:
            await self._membership.require_role(
                conn, group_id, actor_id, self._policy.manage_members
            )
            invitee = await self._resolve_user(conn, user_id=user_id, email=email)
            invitation = await self._invitations.invite(
                conn, group_id, invited_by=actor_id, invitee_id=invitee.id, role=role
            )
            group = await self._membership.get_group(conn, group_id)
            inviter = await self._users.get_by_id(conn, actor_id)

        invitation.group_name = group.name
        invitation.inviter_name = inviter.display_name if inviter else None
        invitation.invitee_email = invitee.email
        await self._dispatcher.submit(
            invitee.email,
            NotificationKind.GROUP_INVITATION,
            {
                "invitation_id": invitation.id,
                "group_name": group.name,
                "inviter_name": invitation.inviter_name,
                "recipient_name": invitee.display_name,
                "role": role.label,
            },
        )
        return invitation

    @with_db_retry(max_retries=2)
    async def list_invitations(self, actor_id: str) -> list[Invitation]:
        """Pending invitations addressed to the caller."""
        async with self._db.connection() as conn:
            return await self._invitations.list_pending(conn, actor_id)

    async def respond_to_invitation(
        self, actor_id: str, invitation_id: str, *, accept: bool
    ) -> InvitationReply:
        async with self._db.transaction() as conn:
            return await self._invitations.respond(conn, invitation_id, actor_id, accept=accept)

    async def _resolve_user(
        self, conn: psycopg.AsyncConnection, *, user_id: str | None, email: str | None
    ) -> User:
        if user_id:
            user = await self._users.get_by_id(conn, user_id)
        else:
            user = (await self._users.get_by_emails(conn, [email])).get(normalize_email(email))
        if user is None:
            raise NotFoundError("User not found", user_id=user_id)
        return user

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    async def propose_meeting(self, organizer_id: str, draft: ProposalDraft) -> ProposalCreated:
        """
        Create a proposal with one response token per recipient.

        Group proposals default to every member except the organizer; an
        explicit attendee list narrows that to the listed members. Ad hoc
        proposals (no group) go to the attendee list. Invitations are sent
        after the transaction commits.
        """
        async with self._db.transaction() as conn:
            organizer = await self._users.get_by_id(conn, organizer_id)
            group_name = None
            if draft.group_id:
                await self._membership.require_role(
                    conn, draft.group_id, organizer_id, self._policy.propose
                )
                group = await self._membership.get_group(conn, draft.group_id)
                group_name = group.name
                recipients = await self._group_recipients(conn, draft, organizer_id, organizer)
            else:
                recipients = await self._adhoc_recipients(conn, draft, organizer)

            proposal = await self._proposals.create(
                conn, organizer_id=organizer_id, draft=draft, recipients=recipients
            )
            deliveries = []
            for recipient in recipients:
                issued = await self._tokens.issue(conn, proposal.id, recipient.email)
                deliveries.append(Delivery(recipient=recipient, token=issued))

        organizer_name = organizer.display_name if organizer else None
        for delivery in deliveries:
            await self._send_invitation(proposal, delivery, organizer_name, group_name)

        return ProposalCreated(proposal=proposal, deliveries=deliveries)

    async def _group_recipients(
        self,
        conn: psycopg.AsyncConnection,
        draft: ProposalDraft,
        organizer_id: str,
        organizer: User | None,
    ) -> list[Recipient]:
        members = await self._membership.list_members(conn, draft.group_id)
        organizer_emails = {
            normalize_email(m.email) for m in members if m.email and m.user_id == organizer_id
        }
        if organizer is not None:
            organizer_emails.add(normalize_email(organizer.email))
        by_email = {
            normalize_email(m.email): m
            for m in members
            if m.email and m.user_id != organizer_id
        }

        if draft.attendee_emails:
            wanted = [
                e
                for e in dict.fromkeys(normalize_email(e) for e in draft.attendee_emails if e)
                if e not in organizer_emails
            ]
            outsiders = [e for e in wanted if e not in by_email]
            if outsiders:
                raise ValidationError(
                    "Attendees must be members of the group", emails=outsiders
                )
            selected = [by_email[e] for e in wanted]
        else:
            selected = list(by_email.values())

        if not selected:
            raise ValidationError("The group has no other members to invite", group_id=draft.group_id)
        return [
            Recipient(
                email=normalize_email(m.email),
                display_name=m.display_name or m.email,
                user_id=m.user_id,
            )
            for m in selected
        ]

    async def _adhoc_recipients(
        self, conn: psycopg.AsyncConnection, draft: ProposalDraft, organizer: User | None
    ) -> list[Recipient]:
        emails = list(dict.fromkeys(normalize_email(e) for e in draft.attendee_emails if e))
        if organizer is not None:
            emails = [e for e in emails if e != organizer.email]
        if not emails:
            raise ValidationError("At least one attendee email is required")
        if len(emails) > MAX_ATTENDEES:
            raise ValidationError(f"At most {MAX_ATTENDEES} attendees per proposal")
        invalid = [e for e in emails if not _is_email(e)]
        if invalid:
            raise ValidationError("Invalid attendee email address", emails=invalid)

        known = await self._users.get_by_emails(conn, emails)
        return [
            Recipient(
                email=email,
                display_name=known[email].display_name if email in known else email,
                user_id=known[email].id if email in known else None,
            )
            for email in emails
        ]

    @with_db_retry(max_retries=2)
    async def get_proposal(self, actor_id: str, proposal_id: str) -> ProposalDetail:
        async with self._db.connection() as conn:
            proposal = await self._proposals.get(conn, proposal_id)
            recipients = await self._proposals.recipients(conn, proposal_id)
            await self._require_view(conn, actor_id, proposal, recipients)
            responses = await self._collector.list_responses(conn, proposal_id)
            return ProposalDetail(proposal=proposal, recipients=recipients, responses=responses)

    @with_db_retry(max_retries=2)
    async def list_group_proposals(self, actor_id: str, group_id: str) -> list[MeetingProposal]:
        async with self._db.connection() as conn:
            await self._membership.require_role(
                conn, group_id, actor_id, self._policy.view_proposals
            )
            return await self._proposals.list_for_group(conn, group_id)

    async def cancel_proposal(self, actor_id: str, proposal_id: str) -> MeetingProposal:
        """Cancel an open proposal and tell recipients who have not answered yet."""
        async with self._db.transaction() as conn:
            proposal = await self._proposals.get(conn, proposal_id)
            await self._require_manage(conn, actor_id, proposal)
            cancelled = await self._proposals.cancel(conn, proposal_id)
            recipients = await self._proposals.recipients(conn, proposal_id)
            responses = await self._collector.list_responses(conn, proposal_id)

        detail = ProposalDetail(proposal=cancelled, recipients=recipients, responses=responses)
        for recipient in detail.pending_recipients:
            await self._dispatcher.submit(
                recipient.email,
                NotificationKind.PROPOSAL_CANCELLED,
                _proposal_payload(cancelled, recipient_name=recipient.display_name),
            )
        return cancelled

    async def close_proposal(self, actor_id: str, proposal_id: str) -> MeetingProposal:
        async with self._db.transaction() as conn:
            proposal = await self._proposals.get(conn, proposal_id)
            await self._require_manage(conn, actor_id, proposal)
            return await self._proposals.close(conn, proposal_id)

    async def archive_proposal(self, actor_id: str, proposal_id: str) -> MeetingProposal:
        async with self._db.transaction() as conn:
            proposal = await self._proposals.get(conn, proposal_id)
            await self._require_manage(conn, actor_id, proposal)
            return await self._proposals.archive(conn, proposal_id)

    async def reissue_token(
        self, actor_id: str, proposal_id: str, recipient_email: str
    ) -> Delivery:
        """Send a recipient a fresh link; their previous unused link stops working."""
        async with self._db.transaction() as conn:
            proposal = await self._proposals.get(conn, proposal_id)
            await self._require_manage(conn, actor_id, proposal)
            await self._proposals.ensure_open(conn, proposal_id)
            recipient = await self._proposals.recipient(
                conn, proposal_id, normalize_email(recipient_email)
            )
            issued = await self._tokens.issue(conn, proposal_id, recipient.email)
            organizer = await self._users.get_by_id(conn, proposal.proposed_by)
            group_name = None
            if proposal.group_id:
                group = await self._membership.get_group(conn, proposal.group_id)
                group_name = group.name

        delivery = Delivery(recipient=recipient, token=issued)
        await self._send_invitation(
            proposal, delivery, organizer.display_name if organizer else None, group_name
        )
        return delivery

    async def _require_manage(
        self, conn: psycopg.AsyncConnection, actor_id: str, proposal: MeetingProposal
    ) -> None:
        if proposal.proposed_by == actor_id:
            return
        if proposal.group_id is None:
            raise AuthorizationError(
                "Only the organizer can manage this proposal", proposal_id=proposal.id
            )
        await self._membership.require_role(
            conn, proposal.group_id, actor_id, self._policy.manage_proposals
        )

    async def _require_view(
        self,
        conn: psycopg.AsyncConnection,
        actor_id: str,
        proposal: MeetingProposal,
        recipients: list[Recipient],
    ) -> None:
        if proposal.proposed_by == actor_id:
            return
        if any(r.user_id == actor_id for r in recipients):
            return
        if proposal.group_id is None:
            raise AuthorizationError(
                "Not authorized to view this proposal", proposal_id=proposal.id
            )
        await self._membership.require_role(
            conn, proposal.group_id, actor_id, self._policy.view_proposals
        )

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    async def handle_response(
        self,
        token: str,
        answer: ResponseAnswer | str,
        alternate: AlternateTime | None = None,
    ) -> ResponseOutcome:
        """
        Record an answer submitted through a response link.

        A second submission of the same link with the same answer returns the
        recorded response with already_recorded=True; a different answer on a
        used link raises TokenConsumed.
        """
        parsed_answer, parsed_alternate = normalize_answer(answer, alternate)

        try:
            async with self._db.transaction() as conn:
                recorded = await self._collector.record_response(
                    conn, token, parsed_answer, parsed_alternate
                )
                organizer = await self._users.get_by_id(conn, recorded.proposal.proposed_by)
        except TokenConsumed as e:
            return await self._already_recorded(e, parsed_answer, parsed_alternate)

        await self._notify_response(recorded, organizer)
        return ResponseOutcome(
            proposal=recorded.proposal,
            response=recorded.response,
            superseded=recorded.superseded,
        )

    async def _already_recorded(
        self,
        error: TokenConsumed,
        answer: ResponseAnswer,
        alternate: AlternateTime | None,
    ) -> ResponseOutcome:
        async with self._db.connection() as conn:
            current = await self._collector.current_response(
                conn, error.proposal_id, error.recipient_email
            )
            if current is None or not current.matches(answer, alternate):
                raise error
            proposal = await self._proposals.get(conn, error.proposal_id)

        logger.info(
            "Repeated response link submission",
            proposal_id=error.proposal_id,
            recipient=error.recipient_email,
            answer=answer.value,
        )
        return ResponseOutcome(proposal=proposal, response=current, already_recorded=True)

    async def _notify_response(self, recorded: RecordedResponse, organizer: User | None) -> None:
        response = recorded.response
        alternate = response.alternate
        common = {
            "answer": response.answer.value,
            "respondent_email": recorded.recipient.email,
            "respondent_name": recorded.recipient.display_name,
            "recipient_name": recorded.recipient.display_name,
            "alternate_date": alternate.proposed_date if alternate else None,
            "alternate_start_time": alternate.start_time if alternate else None,
            "alternate_message": alternate.message if alternate else None,
        }

        if organizer is not None:
            await self._dispatcher.submit(
                organizer.email,
                NotificationKind.RESPONSE_RECEIVED,
                _proposal_payload(recorded.proposal, **common),
            )
        await self._dispatcher.submit(
            recorded.recipient.email,
            NotificationKind.RESPONSE_CONFIRMATION,
            _proposal_payload(recorded.proposal, **common),
        )

    async def _send_invitation(
        self,
        proposal: MeetingProposal,
        delivery: Delivery,
        organizer_name: str | None,
        group_name: str | None,
    ) -> None:
        await self._dispatcher.submit(
            delivery.recipient.email,
            NotificationKind.PROPOSAL_INVITATION,
            _proposal_payload(
                proposal,
                token=delivery.token.token,
                organizer_name=organizer_name,
                group_name=group_name,
                recipient_name=delivery.recipient.display_name,
            ),
        )

    @with_db_retry(max_retries=2)
    async def get_proposal_for_token(self, token: str) -> TokenProposalView:
        """Response-page lookup; does not consume the token."""
        async with self._db.connection() as conn:
            record = await self._tokens.peek(conn, token)
            proposal = await self._proposals.get(conn, record.proposal_id)
            recipient = await self._proposals.recipient(
                conn, record.proposal_id, record.recipient_email
            )
            current = await self._collector.current_response(
                conn, record.proposal_id, record.recipient_email
            )
        return TokenProposalView(
            proposal=proposal,
            recipient=recipient,
            current_response=current,
            token_consumed=record.consumed_at is not None,
        )

