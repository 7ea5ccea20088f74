"""
Domain subpackage for meeting-proposal coordination.
"""

from .errors import (
    AuthorizationError,
    ConflictError,
    CoordinationError,
    InvalidTransition,
    InvariantViolation,
    NotFoundError,
    ProposalClosed,
    TokenConsumed,
    TokenError,
    TokenExpired,
    TokenNotFound,
    ValidationError,
)
from .models import (
    AlternateTime,
    Delivery,
    Group,
    GroupDetail,
    GroupMember,
    GroupRole,
    GroupSummary,
    Invitation,
    InvitationReply,
    InvitationStatus,
    IssuedToken,
    MeetingProposal,
    ProposalCreated,
    ProposalDetail,
    ProposalDraft,
    ProposalResponse,
    ProposalStatus,
    Recipient,
    RecordedResponse,
    ResponseAnswer,
    ResponseOutcome,
    TokenBinding,
    TokenProposalView,
    TokenRecord,
    User,
)

__all__ = [
    "AlternateTime",
    "AuthorizationError",
    "ConflictError",
    "CoordinationError",
    "Delivery",
    "Group",
    "GroupDetail",
    "GroupMember",
    "GroupRole",
    "GroupSummary",
    "InvalidTransition",
    "InvariantViolation",
    "Invitation",
    "InvitationReply",
    "InvitationStatus",
    "IssuedToken",
    "MeetingProposal",
    "NotFoundError",
    "ProposalClosed",
    "ProposalCreated",
    "ProposalDetail",
    "ProposalDraft",
    "ProposalResponse",
    "ProposalStatus",
    "Recipient",
    "RecordedResponse",
    "ResponseAnswer",
    "ResponseOutcome",
    "TokenBinding",
    "TokenConsumed",
    "TokenError",
    "TokenExpired",
    "TokenNotFound",
    "TokenProposalView",
    "TokenRecord",
    "User",
    "ValidationError",
]
