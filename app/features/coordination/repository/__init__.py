"""
Persistence layer for meeting-proposal coordination.
"""

from .invitation_repository import InvitationRepository
from .membership_repository import MembershipRepository
from .proposal_repository import ProposalRepository
from .response_repository import ResponseRepository
from .token_repository import TokenRepository
from .user_repository import UserRepository

__all__ = [
    "InvitationRepository",
    "MembershipRepository",
    "ProposalRepository",
    "ResponseRepository",
    "TokenRepository",
    "UserRepository",
]
