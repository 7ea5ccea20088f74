"""
Service layer for meeting-proposal coordination.
"""

from .coordination_service import (
    CoordinationPolicy,
    CoordinationService,
)
from .email_templates import NotificationKind, render
from .invitation_store import InvitationStore
from .membership_store import MembershipStore
from .notifier import (
    DeliveryReceipt,
    HttpEmailNotifier,
    LogOnlyNotifier,
    NotificationDispatcher,
    NotificationError,
    build_notifier,
)
from .proposal_store import ProposalStore
from .response_collector import ResponseCollector, normalize_answer
from .token_issuer import TokenIssuer

__all__ = [
    "CoordinationPolicy",
    "CoordinationService",
    "NotificationKind",
    "render",
    "InvitationStore",
    "MembershipStore",
    "DeliveryReceipt",
    "HttpEmailNotifier",
    "LogOnlyNotifier",
    "NotificationDispatcher",
    "NotificationError",
    "build_notifier",
    "ProposalStore",
    "ResponseCollector",
    "normalize_answer",
    "TokenIssuer",
]
