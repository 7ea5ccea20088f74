"""
Coordination API request and response models.
Used by the router for input validation and output formatting.
"""

import uuid
from datetime import date, datetime, time
from typing import Literal

from pydantic import BaseModel, Field

from app.features.coordination.domain import (
    AlternateTime,
    GroupDetail,
    GroupMember,
    GroupSummary,
    Invitation,
    InvitationReply,
    MeetingProposal,
    ProposalDetail,
    ProposalDraft,
    ProposalResponse,
    Recipient,
    ResponseOutcome,
    TokenProposalView,
)

RoleName = Literal["member", "admin"]


# ----------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------


class CreateGroupRequest(BaseModel):
    """Request for creating a group; the caller becomes its owner."""

    name: str = Field(..., min_length=1, max_length=255, description="Group name")
    description: str | None = Field(default=None, max_length=2000, description="Group description")
    type: str | None = Field(default=None, max_length=50, description="Group type")


class UpdateGroupRequest(BaseModel):
    """Partial group update; omitted fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=255, description="Group name")
    description: str | None = Field(
        default=None, max_length=2000, description="Group description; empty string clears it"
    )
    type: str | None = Field(default=None, max_length=50, description="Group type")


class AddMemberRequest(BaseModel):
    """Add a registered user by id or by email address."""

    user_id: uuid.UUID | None = Field(default=None, description="User ID to add")
    email: str | None = Field(default=None, max_length=320, description="Email of the user to add")
    role: RoleName = Field(default="member", description="Initial role")


class InviteMemberRequest(BaseModel):
    """Invite a registered user by id or by email address."""

    user_id: uuid.UUID | None = Field(default=None, description="User ID to invite")
    email: str | None = Field(default=None, max_length=320, description="Email of the user to invite")
    role: RoleName = Field(default="member", description="Role granted on acceptance")


class UpdateRoleRequest(BaseModel):
    role: RoleName = Field(..., description="New role")


class TransferOwnershipRequest(BaseModel):
    new_owner_id: uuid.UUID = Field(..., description="Existing member who becomes owner")


class CreateProposalRequest(BaseModel):
    """Request for proposing a meeting to a group or to a list of attendees."""

    title: str = Field(..., min_length=1, max_length=255, description="Meeting title")
    description: str | None = Field(default=None, max_length=2000, description="Meeting description")
    proposed_date: date = Field(..., description="Proposed meeting date")
    start_time: time = Field(..., description="Proposed start time")
    end_time: time | None = Field(default=None, description="Proposed end time")
    group_id: uuid.UUID | None = Field(default=None, description="Group the proposal is for")
    attendee_emails: list[str] = Field(
        default_factory=list, description="Recipients (group members only, or ad hoc emails)"
    )

    def to_draft(self) -> ProposalDraft:
        return ProposalDraft(
            title=self.title,
            description=self.description,
            proposed_date=self.proposed_date,
            start_time=self.start_time,
            end_time=self.end_time,
            group_id=str(self.group_id) if self.group_id else None,
            attendee_emails=list(self.attendee_emails),
        )


class ReissueTokenRequest(BaseModel):
    recipient_email: str = Field(..., min_length=3, max_length=320, description="Recipient email")


class AlternatePayload(BaseModel):
    proposed_date: date = Field(..., description="Suggested date")
    start_time: time = Field(..., description="Suggested start time")
    message: str | None = Field(default=None, max_length=1000, description="Note to the organizer")

    def to_domain(self) -> AlternateTime:
        return AlternateTime(
            proposed_date=self.proposed_date, start_time=self.start_time, message=self.message
        )


class SubmitResponseRequest(BaseModel):
    """Response submitted from the response page (supports alternate times)."""

    token: str = Field(..., min_length=1, description="Response token from the email link")
    response: Literal["yes", "no", "alternate"] = Field(..., description="Answer")
    alternate: AlternatePayload | None = Field(default=None, description="Required for 'alternate'")


# ----------------------------------------------------------------------
# Responses
# ----------------------------------------------------------------------


class MemberResponse(BaseModel):
    user_id: str = Field(..., description="User ID")
    role: str = Field(..., description="owner, admin or member")
    joined_at: datetime = Field(..., description="When the user joined")
    email: str | None = Field(None, description="User email")
    display_name: str | None = Field(None, description="User display name")

    @classmethod
    def from_domain(cls, member: GroupMember) -> "MemberResponse":
        return cls(
            user_id=member.user_id,
            role=member.role.label,
            joined_at=member.joined_at,
            email=member.email,
            display_name=member.display_name,
        )


class GroupResponse(BaseModel):
    id: str = Field(..., description="Group ID")
    name: str = Field(..., description="Group name")
    description: str | None = Field(None, description="Group description")
    type: str = Field(..., description="Group type")
    created_by: str = Field(..., description="Creator user ID")
    created_at: datetime = Field(..., description="Creation time")
    role: str | None = Field(None, description="Caller's role in the group")
    member_count: int = Field(..., description="Number of members")


class GroupDetailResponse(GroupResponse):
    members: list[MemberResponse] = Field(..., description="Members, owner first")

    @classmethod
    def from_domain(cls, detail: GroupDetail) -> "GroupDetailResponse":
        group = detail.group
        return cls(
            id=group.id,
            name=group.name,
            description=group.description,
            type=group.type,
            created_by=group.created_by,
            created_at=group.created_at,
            role=detail.viewer_role.label if detail.viewer_role else None,
            member_count=len(detail.members),
            members=[MemberResponse.from_domain(m) for m in detail.members],
        )


class GroupsListResponse(BaseModel):
    groups: list[GroupResponse] = Field(..., description="Groups the caller belongs to")
    total_count: int = Field(..., description="Number of groups")

    @classmethod
    def from_domain(cls, summaries: list[GroupSummary]) -> "GroupsListResponse":
        groups = [
            GroupResponse(
                id=s.group.id,
                name=s.group.name,
                description=s.group.description,
                type=s.group.type,
                created_by=s.group.created_by,
                created_at=s.group.created_at,
                role=s.role.label,
                member_count=s.member_count,
            )
            for s in summaries
        ]
        return cls(groups=groups, total_count=len(groups))


class InvitationResponse(BaseModel):
    id: str = Field(..., description="Invitation ID")
    group_id: str = Field(..., description="Group ID")
    group_name: str | None = Field(None, description="Group name")
    invited_by: str = Field(..., description="Inviting user ID")
    inviter_name: str | None = Field(None, description="Inviting user's name")
    invitee_id: str = Field(..., description="Invited user ID")
    invitee_email: str | None = Field(None, description="Invited user's email")
    role: str = Field(..., description="Role granted on acceptance")
    status: str = Field(..., description="pending, accepted or declined")
    created_at: datetime = Field(..., description="When the invitation was sent")
    responded_at: datetime | None = Field(None, description="When it was answered")

    @classmethod
    def from_domain(cls, invitation: Invitation) -> "InvitationResponse":
        return cls(
            id=invitation.id,
            group_id=invitation.group_id,
            group_name=invitation.group_name,
            invited_by=invitation.invited_by,
            inviter_name=invitation.inviter_name,
            invitee_id=invitation.invitee_id,
            invitee_email=invitation.invitee_email,
            role=invitation.role.label,
            status=invitation.status.value,
            created_at=invitation.created_at,
            responded_at=invitation.responded_at,
        )


class InvitationsListResponse(BaseModel):
    invitations: list[InvitationResponse]
    total_count: int


class InvitationReplyResponse(BaseModel):
    message: str
    invitation: InvitationResponse
    membership: MemberResponse | None = Field(None, description="Set when the invitation was accepted")

    @classmethod
    def from_domain(cls, reply: InvitationReply) -> "InvitationReplyResponse":
        return cls(
            message=f"Invitation {reply.invitation.status.value}",
            invitation=InvitationResponse.from_domain(reply.invitation),
            membership=MemberResponse.from_domain(reply.membership) if reply.membership else None,
        )


class ProposalResponseModel(BaseModel):
    """Public view of a proposal aggregate."""

    id: str = Field(..., description="Proposal ID")
    proposed_by: str = Field(..., description="Organizer user ID")
    group_id: str | None = Field(None, description="Group ID, if any")
    title: str = Field(..., description="Meeting title")
    description: str | None = Field(None, description="Meeting description")
    proposed_date: date = Field(..., description="Proposed date")
    start_time: time = Field(..., description="Proposed start time")
    end_time: time | None = Field(None, description="Proposed end time")
    status: str = Field(..., description="open, resolved, archived or cancelled")
    expected_responses: int = Field(..., description="Number of recipients")
    responded_count: int = Field(..., description="Recipients who answered")
    created_at: datetime = Field(..., description="Creation time")
    closed_at: datetime | None = Field(None, description="When the proposal left 'open'")

    @classmethod
    def from_domain(cls, proposal: MeetingProposal) -> "ProposalResponseModel":
        return cls(
            id=proposal.id,
            proposed_by=proposal.proposed_by,
            group_id=proposal.group_id,
            title=proposal.title,
            description=proposal.description,
            proposed_date=proposal.proposed_date,
            start_time=proposal.start_time,
            end_time=proposal.end_time,
            status=proposal.status.value,
            expected_responses=proposal.expected_responses,
            responded_count=proposal.responded_count,
            created_at=proposal.created_at,
            closed_at=proposal.closed_at,
        )


class RecipientResponse(BaseModel):
    email: str = Field(..., description="Recipient email")
    display_name: str = Field(..., description="Recipient name")
    user_id: str | None = Field(None, description="User ID when the recipient is registered")

    @classmethod
    def from_domain(cls, recipient: Recipient) -> "RecipientResponse":
        return cls(
            email=recipient.email, display_name=recipient.display_name, user_id=recipient.user_id
        )


class AnswerResponse(BaseModel):
    """One recorded answer. Tokens are never part of any response."""

    recipient_email: str = Field(..., description="Respondent email")
    user_id: str | None = Field(None, description="Respondent user ID")
    response: str = Field(..., description="yes, no or alternate")
    alternate_date: date | None = Field(None, description="Suggested date")
    alternate_time: time | None = Field(None, description="Suggested start time")
    alternate_message: str | None = Field(None, description="Note to the organizer")
    responded_at: datetime = Field(..., description="When the answer was recorded")

    @classmethod
    def from_domain(cls, response: ProposalResponse) -> "AnswerResponse":
        alternate = response.alternate
        return cls(
            recipient_email=response.recipient_email,
            user_id=response.user_id,
            response=response.answer.value,
            alternate_date=alternate.proposed_date if alternate else None,
            alternate_time=alternate.start_time if alternate else None,
            alternate_message=alternate.message if alternate else None,
            responded_at=response.responded_at,
        )


class ProposalDetailResponse(BaseModel):
    proposal: ProposalResponseModel
    recipients: list[RecipientResponse]
    responses: list[AnswerResponse]
    pending: list[str] = Field(..., description="Emails of recipients who have not answered")

    @classmethod
    def from_domain(cls, detail: ProposalDetail) -> "ProposalDetailResponse":
        return cls(
            proposal=ProposalResponseModel.from_domain(detail.proposal),
            recipients=[RecipientResponse.from_domain(r) for r in detail.recipients],
            responses=[AnswerResponse.from_domain(r) for r in detail.responses],
            pending=[r.email for r in detail.pending_recipients],
        )


class ProposalCreatedResponse(BaseModel):
    message: str
    proposal: ProposalResponseModel
    invited: list[str] = Field(..., description="Emails an invitation was queued for")


class ProposalsListResponse(BaseModel):
    proposals: list[ProposalResponseModel]
    total_count: int


class ReissueTokenResponse(BaseModel):
    message: str
    recipient_email: str
    expires_at: datetime


class ResponseOutcomeResponse(BaseModel):
    message: str
    already_recorded: bool = Field(default=False, description="The same answer was already on file")
    updated: bool = Field(default=False, description="A previous answer was replaced")
    response: AnswerResponse
    proposal: ProposalResponseModel

    @classmethod
    def from_domain(cls, outcome: ResponseOutcome) -> "ResponseOutcomeResponse":
        if outcome.already_recorded:
            message = "Your response was already recorded"
        elif outcome.superseded:
            message = "Your response has been updated"
        else:
            message = "Your response has been recorded"
        return cls(
            message=message,
            already_recorded=outcome.already_recorded,
            updated=outcome.superseded,
            response=AnswerResponse.from_domain(outcome.response),
            proposal=ProposalResponseModel.from_domain(outcome.proposal),
        )


class TokenProposalResponse(BaseModel):
    """What the response page shows before the recipient answers."""

    proposal: ProposalResponseModel
    recipient: RecipientResponse
    current_response: AnswerResponse | None = None
    token_used: bool = Field(..., description="The link has already been used")

    @classmethod
    def from_domain(cls, view: TokenProposalView) -> "TokenProposalResponse":
        return cls(
            proposal=ProposalResponseModel.from_domain(view.proposal),
            recipient=RecipientResponse.from_domain(view.recipient),
            current_response=(
                AnswerResponse.from_domain(view.current_response) if view.current_response else None
            ),
            token_used=view.token_consumed,
        )
