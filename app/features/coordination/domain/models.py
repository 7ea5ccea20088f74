"""
Domain models for meeting-proposal coordination.

Plain dataclasses shared by repositories, services and the API layer. Rows
coming back from Postgres are mapped into these in the repository modules.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum, IntEnum


class GroupRole(IntEnum):
    """Membership role, ordered so that a higher role implies the lower ones."""

    MEMBER = 1
    ADMIN = 2
    OWNER = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: "str | GroupRole") -> "GroupRole":
        if isinstance(value, GroupRole):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown group role: {value!r}") from None

    def at_least(self, required: "GroupRole") -> bool:
        return self >= required


class ProposalStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"

    @property
    def accepts_responses(self) -> bool:
        return self is ProposalStatus.OPEN


class ResponseAnswer(str, Enum):
    YES = "yes"
    NO = "no"
    ALTERNATE = "alternate"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


@dataclass(slots=True)
class User:
    id: str
    email: str
    display_name: str


@dataclass(slots=True)
class Group:
    """Represents a groups row."""

    id: str
    name: str
    description: str | None
    type: str
    created_by: str
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    @property
    def is_alive(self) -> bool:
        return self.deleted_at is None


@dataclass(slots=True)
class GroupMember:
    group_id: str
    user_id: str
    role: GroupRole
    joined_at: datetime
    email: str | None = None
    display_name: str | None = None


@dataclass(slots=True)
class GroupSummary:
    """A group as seen from one member's group list."""

    group: Group
    role: GroupRole
    member_count: int


@dataclass(slots=True)
class GroupDetail:
    group: Group
    members: list[GroupMember]
    viewer_role: GroupRole | None = None


@dataclass(slots=True)
class Invitation:
    """Represents a group_invitations row, with display fields joined in."""

    id: str
    group_id: str
    invited_by: str
    invitee_id: str
    role: GroupRole
    status: InvitationStatus
    created_at: datetime
    responded_at: datetime | None = None
    group_name: str | None = None
    inviter_name: str | None = None
    invitee_email: str | None = None


@dataclass(slots=True)
class InvitationReply:
    """An answered invitation and, when accepted, the resulting membership."""

    invitation: Invitation
    membership: GroupMember | None = None


@dataclass(slots=True)
class AlternateTime:
    """Counter-proposal carried by an `alternate` answer."""

    proposed_date: date
    start_time: time
    message: str | None = None


@dataclass(slots=True)
class ProposalDraft:
    """Organizer input for a new proposal."""

    title: str
    proposed_date: date
    start_time: time
    end_time: time | None = None
    description: str | None = None
    group_id: str | None = None
    attendee_emails: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MeetingProposal:
    """Represents a meeting_proposals row."""

    id: str
    proposed_by: str
    group_id: str | None
    title: str
    description: str | None
    proposed_date: date
    start_time: time
    end_time: time | None
    status: ProposalStatus
    expected_responses: int
    responded_count: int
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None

    @property
    def pending_count(self) -> int:
        return max(0, self.expected_responses - self.responded_count)


@dataclass(slots=True)
class Recipient:
    """One expected respondent of a proposal, keyed by normalized email."""

    email: str
    display_name: str
    user_id: str | None = None


@dataclass(slots=True)
class TokenRecord:
    """Represents a response_tokens row. The raw token is never stored."""

    token_hash: str
    proposal_id: str
    recipient_email: str
    expires_at: datetime
    consumed_at: datetime | None
    created_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(slots=True)
class IssuedToken:
    """A freshly issued raw token, handed to the notifier and then dropped."""

    token: str
    proposal_id: str
    recipient_email: str
    expires_at: datetime


@dataclass(slots=True)
class TokenBinding:
    """What a successfully consumed token resolves to."""

    proposal_id: str
    recipient_email: str


@dataclass(slots=True)
class ProposalResponse:
    """Represents the current proposal_responses row for one recipient."""

    id: str
    proposal_id: str
    recipient_email: str
    user_id: str | None
    answer: ResponseAnswer
    alternate: AlternateTime | None
    responded_at: datetime

    def matches(self, answer: ResponseAnswer, alternate: AlternateTime | None = None) -> bool:
        if self.answer is not answer:
            return False
        if answer is ResponseAnswer.ALTERNATE:
            return self.alternate == alternate
        return True


@dataclass(slots=True)
class Delivery:
    """A (recipient, token) pair to be sent after the creating transaction commits."""

    recipient: Recipient
    token: IssuedToken


@dataclass(slots=True)
class ProposalCreated:
    proposal: MeetingProposal
    deliveries: list[Delivery]


@dataclass(slots=True)
class RecordedResponse:
    proposal: MeetingProposal
    response: ProposalResponse
    recipient: Recipient
    superseded: bool


@dataclass(slots=True)
class ResponseOutcome:
    """Result of handling a response link, as shown to the respondent."""

    proposal: MeetingProposal
    response: ProposalResponse
    already_recorded: bool = False
    superseded: bool = False


@dataclass(slots=True)
class ProposalDetail:
    proposal: MeetingProposal
    recipients: list[Recipient]
    responses: list[ProposalResponse]

    @property
    def pending_recipients(self) -> list[Recipient]:
        answered = {r.recipient_email for r in self.responses}
        return [r for r in self.recipients if r.email not in answered]


@dataclass(slots=True)
class TokenProposalView:
    """Response-page view of a proposal reached through a token link."""

    proposal: MeetingProposal
    recipient: Recipient
    current_response: ProposalResponse | None
    token_consumed: bool
