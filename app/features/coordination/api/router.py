"""
Coordination API Routes
HTTP endpoints for groups, meeting proposals and response links.

Authenticated endpoints take the caller's user id from the bearer JWT.
The response-link endpoints are public: possession of the token is the
credential.
"""

import uuid
from html import escape

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse

from app.auth.verify import current_user_id
from app.db.helpers import DatabaseError
from app.features.coordination.api.models import (
    AddMemberRequest,
    CreateGroupRequest,
    CreateProposalRequest,
    GroupDetailResponse,
    GroupsListResponse,
    InvitationReplyResponse,
    InvitationResponse,
    InvitationsListResponse,
    InviteMemberRequest,
    MemberResponse,
    ProposalCreatedResponse,
    ProposalDetailResponse,
    ProposalResponseModel,
    ProposalsListResponse,
    ReissueTokenRequest,
    ReissueTokenResponse,
    ResponseOutcomeResponse,
    SubmitResponseRequest,
    TokenProposalResponse,
    TransferOwnershipRequest,
    UpdateGroupRequest,
    UpdateRoleRequest,
)
from app.features.coordination.domain import (
    AuthorizationError,
    CoordinationError,
    GroupRole,
    NotFoundError,
    TokenExpired,
    TokenNotFound,
    ValidationError,
)
from app.features.coordination.services.coordination_service import CoordinationService
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["coordination"])

_STATUS_BY_ERROR: list[tuple[type[CoordinationError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (TokenNotFound, status.HTTP_404_NOT_FOUND),
    (TokenExpired, status.HTTP_410_GONE),
]


def get_coordination_service(request: Request) -> CoordinationService:
    service = getattr(request.app.state, "coordination", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Coordination service not initialized",
        )
    db = getattr(request.app.state, "db", None)
    if db is not None and not db.is_ready:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database pool not ready",
        )
    return service


def status_for_error(error: Exception) -> int:
    if isinstance(error, CoordinationError):
        for error_type, code in _STATUS_BY_ERROR:
            if isinstance(error, error_type):
                return code
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _http_error(error: Exception, operation: str, **context) -> HTTPException:
    """Map a coordination or database error onto an HTTPException."""
    code = status_for_error(error)
    if isinstance(error, CoordinationError):
        logger.info(
            "Coordination request rejected",
            operation=operation,
            error_code=error.code,
            status_code=code,
            error=error.message,
            **context,
        )
        return HTTPException(status_code=code, detail={"code": error.code, "message": error.message})

    logger.error(
        "Coordination request failed",
        operation=operation,
        error=str(error),
        error_type=type(error).__name__,
        **context,
    )
    return HTTPException(status_code=code, detail="Internal error; please try again")


# ----------------------------------------------------------------------
# Groups
# ----------------------------------------------------------------------


@router.post("/groups", response_model=GroupDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    body: CreateGroupRequest,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    """Create a group owned by the caller."""
    try:
        detail = await service.create_group(
            user_id, name=body.name, description=body.description, group_type=body.type
        )
        return GroupDetailResponse.from_domain(detail)
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "create_group", user_id=user_id) from e


@router.get("/groups", response_model=GroupsListResponse)
async def list_groups(
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    try:
        return GroupsListResponse.from_domain(await service.list_groups(user_id))
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "list_groups", user_id=user_id) from e


@router.get("/groups/{group_id}", response_model=GroupDetailResponse)
async def get_group(
    group_id: uuid.UUID,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    try:
        return GroupDetailResponse.from_domain(await service.get_group(user_id, str(group_id)))
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "get_group", user_id=user_id, group_id=group_id) from e


@router.patch("/groups/{group_id}", response_model=GroupDetailResponse)
async def update_group(
    group_id: uuid.UUID,
    body: UpdateGroupRequest,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    """Change a group's name, description or type (admin or owner)."""
    try:
        detail = await service.update_group(
            user_id,
            str(group_id),
            name=body.name,
            description=body.description,
            group_type=body.type,
        )
        return GroupDetailResponse.from_domain(detail)
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "update_group", user_id=user_id, group_id=group_id) from e


@router.delete("/groups/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(
    group_id: uuid.UUID,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    """Soft-delete a group (owner only)."""
    try:
        await service.delete_group(user_id, str(group_id))
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "delete_group", user_id=user_id, group_id=group_id) from e


@router.post(
    "/groups/{group_id}/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_member(
    group_id: uuid.UUID,
    body: AddMemberRequest,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    try:
        member = await service.add_member(
            user_id,
            str(group_id),
            user_id=str(body.user_id) if body.user_id else None,
            email=body.email,
            role=GroupRole.parse(body.role),
        )
        return MemberResponse.from_domain(member)
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "add_member", user_id=user_id, group_id=group_id) from e


@router.patch("/groups/{group_id}/members/{member_id}", response_model=MemberResponse)
async def update_member_role(
    group_id: uuid.UUID,
    member_id: uuid.UUID,
    body: UpdateRoleRequest,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    try:
        member = await service.update_member_role(
            user_id, str(group_id), str(member_id), GroupRole.parse(body.role)
        )
        return MemberResponse.from_domain(member)
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "update_member_role", user_id=user_id, group_id=group_id) from e


@router.delete("/groups/{group_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    group_id: uuid.UUID,
    member_id: uuid.UUID,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    """Remove a member, or leave the group when member_id is the caller."""
    try:
        removed = await service.remove_member(user_id, str(group_id), str(member_id))
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "remove_member", user_id=user_id, group_id=group_id) from e

    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "not_found", "message": "Member not found in this group"},
        )


@router.post("/groups/{group_id}/owner", response_model=MemberResponse)
async def transfer_ownership(
    group_id: uuid.UUID,
    body: TransferOwnershipRequest,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    try:
        member = await service.transfer_ownership(
            user_id, str(group_id), str(body.new_owner_id)
        )
        return MemberResponse.from_domain(member)
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "transfer_ownership", user_id=user_id, group_id=group_id) from e


@router.post(
    "/groups/{group_id}/invitations",
    response_model=InvitationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def invite_member(
    group_id: uuid.UUID,
    body: InviteMemberRequest,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    """Invite a registered user; they join once they accept."""
    try:
        invitation = await service.invite_member(
            user_id,
            str(group_id),
            user_id=str(body.user_id) if body.user_id else None,
            email=body.email,
            role=GroupRole.parse(body.role),
        )
        return InvitationResponse.from_domain(invitation)
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "invite_member", user_id=user_id, group_id=group_id) from e


@router.get("/invitations", response_model=InvitationsListResponse)
async def list_invitations(
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    """Pending group invitations addressed to the caller."""
    try:
        invitations = await service.list_invitations(user_id)
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "list_invitations", user_id=user_id) from e

    return InvitationsListResponse(
        invitations=[InvitationResponse.from_domain(i) for i in invitations],
        total_count=len(invitations),
    )


async def _answer_invitation(
    service: CoordinationService, user_id: str, invitation_id: uuid.UUID, *, accept: bool
) -> InvitationReplyResponse:
    try:
        reply = await service.respond_to_invitation(user_id, str(invitation_id), accept=accept)
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(
            e, "respond_to_invitation", user_id=user_id, invitation_id=invitation_id
        ) from e
    return InvitationReplyResponse.from_domain(reply)


@router.post("/invitations/{invitation_id}/accept", response_model=InvitationReplyResponse)
async def accept_invitation(
    invitation_id: uuid.UUID,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    return await _answer_invitation(service, user_id, invitation_id, accept=True)


@router.post("/invitations/{invitation_id}/decline", response_model=InvitationReplyResponse)
async def decline_invitation(
    invitation_id: uuid.UUID,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    return await _answer_invitation(service, user_id, invitation_id, accept=False)


@router.get("/groups/{group_id}/proposals", response_model=ProposalsListResponse)
async def list_group_proposals(
    group_id: uuid.UUID,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    try:
        proposals = await service.list_group_proposals(user_id, str(group_id))
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "list_group_proposals", user_id=user_id, group_id=group_id) from e

    return ProposalsListResponse(
        proposals=[ProposalResponseModel.from_domain(p) for p in proposals],
        total_count=len(proposals),
    )


# ----------------------------------------------------------------------
# Proposals
# ----------------------------------------------------------------------


@router.post(
    "/meetings/proposals",
    response_model=ProposalCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_proposal(
    body: CreateProposalRequest,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    """Create a proposal and queue one invitation per recipient."""
    try:
        created = await service.propose_meeting(user_id, body.to_draft())
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "create_proposal", user_id=user_id, group_id=body.group_id) from e

    return ProposalCreatedResponse(
        message="Meeting proposal created and invitations sent",
        proposal=ProposalResponseModel.from_domain(created.proposal),
        invited=[d.recipient.email for d in created.deliveries],
    )


@router.get("/meetings/proposals/{proposal_id}", response_model=ProposalDetailResponse)
async def get_proposal(
    proposal_id: uuid.UUID,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    try:
        detail = await service.get_proposal(user_id, str(proposal_id))
        return ProposalDetailResponse.from_domain(detail)
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "get_proposal", user_id=user_id, proposal_id=proposal_id) from e


@router.post("/meetings/proposals/{proposal_id}/cancel", response_model=ProposalResponseModel)
async def cancel_proposal(
    proposal_id: uuid.UUID,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    try:
        proposal = await service.cancel_proposal(user_id, str(proposal_id))
        return ProposalResponseModel.from_domain(proposal)
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "cancel_proposal", user_id=user_id, proposal_id=proposal_id) from e


@router.post("/meetings/proposals/{proposal_id}/close", response_model=ProposalResponseModel)
async def close_proposal(
    proposal_id: uuid.UUID,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    try:
        proposal = await service.close_proposal(user_id, str(proposal_id))
        return ProposalResponseModel.from_domain(proposal)
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "close_proposal", user_id=user_id, proposal_id=proposal_id) from e


@router.post("/meetings/proposals/{proposal_id}/archive", response_model=ProposalResponseModel)
async def archive_proposal(
    proposal_id: uuid.UUID,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    try:
        return ProposalResponseModel.from_domain(
            await service.archive_proposal(user_id, str(proposal_id))
        )
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "archive_proposal", user_id=user_id, proposal_id=proposal_id) from e


@router.post(
    "/meetings/proposals/{proposal_id}/recipients/reissue", response_model=ReissueTokenResponse
)
async def reissue_token(
    proposal_id: uuid.UUID,
    body: ReissueTokenRequest,
    user_id: str = Depends(current_user_id),
    service: CoordinationService = Depends(get_coordination_service),
):
    """Send a recipient a new response link; the previous one stops working."""
    try:
        delivery = await service.reissue_token(
            user_id, str(proposal_id), body.recipient_email
        )
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "reissue_token", user_id=user_id, proposal_id=proposal_id) from e

    return ReissueTokenResponse(
        message="A new response link has been sent",
        recipient_email=delivery.recipient.email,
        expires_at=delivery.token.expires_at,
    )


# ----------------------------------------------------------------------
# Response links (public)
# ----------------------------------------------------------------------

_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>{title}</title></head>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 40px auto; text-align: center;">
<h1>{title}</h1>
<p>{message}</p>
</body>
</html>
"""


def _html_page(title: str, message: str, status_code: int = status.HTTP_200_OK) -> HTMLResponse:
    return HTMLResponse(
        content=_PAGE.format(title=escape(title), message=escape(message)),
        status_code=status_code,
    )


@router.get("/meetings/respond", response_class=HTMLResponse)
async def respond_via_link(
    token: str = Query(..., min_length=1, description="Response token"),
    response: str = Query(..., pattern="^(yes|no)$", description="yes or no"),
    service: CoordinationService = Depends(get_coordination_service),
):
    """One-click yes/no from the invitation email."""
    try:
        outcome = await service.handle_response(token, response)
    except (CoordinationError, DatabaseError) as e:
        http_error = _http_error(e, "respond_via_link")
        message = e.message if isinstance(e, CoordinationError) else "Please try again later."
        return _html_page("We could not record your response", message, http_error.status_code)

    title = outcome.proposal.title
    if outcome.already_recorded:
        return _html_page("Response already recorded", f"Your answer to '{title}' is already on file.")
    answer = "attending" if outcome.response.answer.value == "yes" else "not attending"
    return _html_page(
        "Thank you!",
        f"Your response to '{title}' has been recorded: {answer}. The organizer has been notified.",
    )


@router.post("/meetings/respond", response_model=ResponseOutcomeResponse)
async def submit_response(
    body: SubmitResponseRequest,
    service: CoordinationService = Depends(get_coordination_service),
):
    """Response page submission; the only path that accepts an alternate time."""
    alternate = body.alternate.to_domain() if body.alternate else None
    try:
        outcome = await service.handle_response(body.token, body.response, alternate)
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "submit_response") from e
    return ResponseOutcomeResponse.from_domain(outcome)


@router.get("/meetings/proposal-by-token/{token}", response_model=TokenProposalResponse)
async def get_proposal_by_token(
    token: str,
    service: CoordinationService = Depends(get_coordination_service),
):
    """Proposal details for the response page; does not use up the link."""
    try:
        return TokenProposalResponse.from_domain(await service.get_proposal_for_token(token))
    except (CoordinationError, DatabaseError) as e:
        raise _http_error(e, "get_proposal_by_token") from e
