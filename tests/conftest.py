import asyncio
import copy
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

import pytest

from app.auth.verify import auth_dependency
from app.db.helpers import DatabaseError, UniqueConstraintError
from app.features.coordination.domain import (
    Group,
    GroupMember,
    GroupRole,
    GroupSummary,
    Invitation,
    InvitationStatus,
    MeetingProposal,
    ProposalResponse,
    ProposalStatus,
    Recipient,
    TokenRecord,
    User,
)
from app.features.coordination.services.coordination_service import CoordinationService
from app.features.coordination.services.invitation_store import InvitationStore
from app.features.coordination.services.membership_store import MembershipStore
from app.features.coordination.services.notifier import (
    DeliveryReceipt,
    NotificationDispatcher,
    NotificationError,
)
from app.features.coordination.services.proposal_store import ProposalStore
from app.features.coordination.services.response_collector import ResponseCollector
from app.features.coordination.services.token_issuer import TokenIssuer
from app.security.hashing import normalize_email

TEST_HASHING_SECRET = "test-hashing-secret-0123456789"


@pytest.fixture(autouse=True)
def hashing_secret(monkeypatch):
    monkeypatch.setattr("app.security.hashing.settings.TOKEN_HASHING_SECRET", TEST_HASHING_SECRET)


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


# ----------------------------------------------------------------------
# In-memory database
# ----------------------------------------------------------------------


class MutableClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class FakeState:
    """Tables of the fake database. Fake repositories receive this as `conn`."""

    clock: MutableClock
    users: dict = field(default_factory=dict)
    groups: dict = field(default_factory=dict)
    members: dict = field(default_factory=dict)
    proposals: dict = field(default_factory=dict)
    recipients: dict = field(default_factory=dict)
    tokens: dict = field(default_factory=dict)
    responses: dict = field(default_factory=dict)
    invitations: dict = field(default_factory=dict)
    sequence: int = 0

    TABLES = (
        "users",
        "groups",
        "members",
        "invitations",
        "proposals",
        "recipients",
        "tokens",
        "responses",
    )

    def tick(self) -> datetime:
        self.sequence += 1
        return self.clock() + timedelta(microseconds=self.sequence)

    def snapshot(self) -> dict:
        return {name: copy.deepcopy(getattr(self, name)) for name in self.TABLES}

    def restore(self, snapshot: dict) -> None:
        for name, table in snapshot.items():
            setattr(self, name, table)


class FakeDatabase:
    """
    Stands in for DatabasePoolManager.

    transaction() serializes writers on a lock and restores the table
    snapshot taken at entry when the block raises; connection() gives
    unlocked read access.
    """

    def __init__(self, clock: MutableClock):
        self.state = FakeState(clock=clock)
        self._lock = asyncio.Lock()
        self.commits = 0
        self.rollbacks = 0

    def add_user(self, user_id: str, email: str, name: str | None = None) -> User:
        user = User(id=user_id, email=normalize_email(email), display_name=name or user_id)
        self.state.users[user_id] = user
        return user

    @asynccontextmanager
    async def transaction(self):
        async with self._lock:
            snapshot = self.state.snapshot()
            try:
                yield self.state
            except BaseException:
                self.state.restore(snapshot)
                self.rollbacks += 1
                raise
            self.commits += 1

    @asynccontextmanager
    async def connection(self):
        yield self.state


async def _switch():
    # Give other tasks a chance to run between statements
    await asyncio.sleep(0)


class FakeUserRepository:
    async def get_by_id(self, conn, user_id):
        await _switch()
        return conn.users.get(user_id)

    async def get_by_emails(self, conn, emails):
        await _switch()
        wanted = {normalize_email(e) for e in emails if e}
        return {u.email: u for u in conn.users.values() if u.email in wanted}


class FakeMembershipRepository:
    async def insert_group(self, conn, *, name, description, group_type, created_by):
        await _switch()
        now = conn.tick()
        group = Group(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            type=group_type,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        conn.groups[group.id] = group
        return replace(group)

    async def find_alive_group_by_name(self, conn, owner_id, name):
        await _switch()
        for group in conn.groups.values():
            if group.created_by == owner_id and group.name.lower() == name.lower() and group.is_alive:
                return replace(group)
        return None

    async def get_group(self, conn, group_id, *, for_update=False):
        await _switch()
        group = conn.groups.get(group_id)
        return replace(group) if group and group.is_alive else None

    async def soft_delete_group(self, conn, group_id):
        await _switch()
        group = conn.groups.get(group_id)
        if group is None or not group.is_alive:
            return False
        group.deleted_at = conn.tick()
        return True

    async def update_group(self, conn, group_id, *, name, description, group_type):
        await _switch()
        group = conn.groups.get(group_id)
        if group is None or not group.is_alive:
            return None
        group.name = name
        group.description = description
        group.type = group_type
        group.updated_at = conn.tick()
        return replace(group)

    def _check_single_owner(self, conn, group_id, user_id, role):
        if role is not GroupRole.OWNER:
            return
        for (gid, uid), member in conn.members.items():
            if gid == group_id and uid != user_id and member.role is GroupRole.OWNER:
                raise UniqueConstraintError(
                    "duplicate owner", operation="fetch_one", constraint="unique_group_owner"
                )

    async def insert_member(self, conn, group_id, user_id, role):
        await _switch()
        if (group_id, user_id) in conn.members:
            return None
        self._check_single_owner(conn, group_id, user_id, role)
        member = GroupMember(group_id=group_id, user_id=user_id, role=role, joined_at=conn.tick())
        conn.members[(group_id, user_id)] = member
        return replace(member)

    async def get_member(self, conn, group_id, user_id):
        await _switch()
        group = conn.groups.get(group_id)
        member = conn.members.get((group_id, user_id))
        if member is None or group is None or not group.is_alive:
            return None
        return replace(member)

    async def update_member_role(self, conn, group_id, user_id, role):
        await _switch()
        member = conn.members.get((group_id, user_id))
        if member is None:
            return None
        self._check_single_owner(conn, group_id, user_id, role)
        member.role = role
        return replace(member)

    async def delete_member(self, conn, group_id, user_id):
        await _switch()
        return conn.members.pop((group_id, user_id), None) is not None

    async def count_owners(self, conn, group_id):
        await _switch()
        return sum(
            1 for (gid, _), m in conn.members.items() if gid == group_id and m.role is GroupRole.OWNER
        )

    async def list_members(self, conn, group_id):
        await _switch()
        members = []
        for (gid, uid), member in conn.members.items():
            user = conn.users.get(uid)
            if gid != group_id or user is None:
                continue
            members.append(replace(member, email=user.email, display_name=user.display_name))
        return sorted(members, key=lambda m: (-int(m.role), m.joined_at))

    async def list_groups_for_user(self, conn, user_id):
        await _switch()
        summaries = []
        for group in conn.groups.values():
            membership = conn.members.get((group.id, user_id))
            if membership is None or not group.is_alive:
                continue
            count = sum(1 for (gid, _) in conn.members if gid == group.id)
            summaries.append(
                GroupSummary(group=replace(group), role=membership.role, member_count=count)
            )
        return sorted(summaries, key=lambda s: s.group.updated_at, reverse=True)


class FakeInvitationRepository:
    def _with_display(self, conn, invitation):
        group = conn.groups.get(invitation.group_id)
        inviter = conn.users.get(invitation.invited_by)
        invitee = conn.users.get(invitation.invitee_id)
        return replace(
            invitation,
            group_name=group.name if group else None,
            inviter_name=inviter.display_name if inviter else None,
            invitee_email=invitee.email if invitee else None,
        )

    async def insert(self, conn, *, group_id, invited_by, invitee_id, role):
        await _switch()
        for existing in conn.invitations.values():
            if (
                existing.group_id == group_id
                and existing.invitee_id == invitee_id
                and existing.status is InvitationStatus.PENDING
            ):
                raise UniqueConstraintError(
                    "duplicate pending invitation",
                    operation="fetch_one",
                    constraint="unique_pending_invitation",
                )
        invitation = Invitation(
            id=str(uuid.uuid4()),
            group_id=group_id,
            invited_by=invited_by,
            invitee_id=invitee_id,
            role=role,
            status=InvitationStatus.PENDING,
            created_at=conn.tick(),
        )
        conn.invitations[invitation.id] = invitation
        return replace(invitation)

    async def get(self, conn, invitation_id, *, for_update=False):
        await _switch()
        invitation = conn.invitations.get(invitation_id)
        if invitation is None:
            return None
        group = conn.groups.get(invitation.group_id)
        if group is None or not group.is_alive:
            return None
        return self._with_display(conn, invitation)

    async def list_for_invitee(self, conn, invitee_id, status=InvitationStatus.PENDING):
        await _switch()
        found = []
        for invitation in conn.invitations.values():
            group = conn.groups.get(invitation.group_id)
            if invitation.invitee_id != invitee_id or group is None or not group.is_alive:
                continue
            if status is not None and invitation.status is not status:
                continue
            found.append(self._with_display(conn, invitation))
        return sorted(found, key=lambda i: i.created_at, reverse=True)

    async def respond(self, conn, invitation_id, status):
        await _switch()
        invitation = conn.invitations.get(invitation_id)
        if invitation is None or invitation.status is not InvitationStatus.PENDING:
            return None
        invitation.status = status
        invitation.responded_at = conn.tick()
        return replace(invitation)


class FakeTokenRepository:
    async def revoke_unconsumed(self, conn, proposal_id, recipient_email):
        await _switch()
        doomed = [
            h
            for h, t in conn.tokens.items()
            if t.proposal_id == proposal_id
            and t.recipient_email == recipient_email
            and t.consumed_at is None
        ]
        for token_hash in doomed:
            del conn.tokens[token_hash]
        return len(doomed)

    async def insert(self, conn, *, token_hash, proposal_id, recipient_email, expires_at):
        await _switch()
        if token_hash in conn.tokens:
            raise UniqueConstraintError("duplicate token", constraint="response_tokens_pkey")
        record = TokenRecord(
            token_hash=token_hash,
            proposal_id=proposal_id,
            recipient_email=recipient_email,
            expires_at=expires_at,
            consumed_at=None,
            created_at=conn.tick(),
        )
        conn.tokens[token_hash] = record
        return replace(record)

    async def consume(self, conn, token_hash, now):
        await _switch()
        record = conn.tokens.get(token_hash)
        if record is None or record.consumed_at is not None or record.expires_at <= now:
            return None
        record.consumed_at = now
        return replace(record)

    async def find(self, conn, token_hash):
        await _switch()
        record = conn.tokens.get(token_hash)
        return replace(record) if record else None

    async def purge_expired(self, conn, before):
        await _switch()
        doomed = [h for h, t in conn.tokens.items() if t.expires_at < before]
        for token_hash in doomed:
            del conn.tokens[token_hash]
        return len(doomed)


class FakeProposalRepository:
    async def insert_proposal(self, conn, draft, *, organizer_id, expected_responses):
        await _switch()
        now = conn.tick()
        proposal = MeetingProposal(
            id=str(uuid.uuid4()),
            proposed_by=organizer_id,
            group_id=draft.group_id,
            title=draft.title,
            description=draft.description,
            proposed_date=draft.proposed_date,
            start_time=draft.start_time,
            end_time=draft.end_time,
            status=ProposalStatus.OPEN,
            expected_responses=expected_responses,
            responded_count=0,
            created_at=now,
            updated_at=now,
        )
        conn.proposals[proposal.id] = proposal
        conn.recipients[proposal.id] = {}
        return replace(proposal)

    async def insert_recipients(self, conn, proposal_id, recipients):
        await _switch()
        table = conn.recipients.setdefault(proposal_id, {})
        for recipient in recipients:
            if recipient.email in table:
                raise UniqueConstraintError("duplicate recipient", constraint="proposal_recipients_pkey")
            table[recipient.email] = replace(recipient)

    async def get_proposal(self, conn, proposal_id):
        await _switch()
        proposal = conn.proposals.get(proposal_id)
        return replace(proposal) if proposal else None

    async def list_for_group(self, conn, group_id):
        await _switch()
        found = [replace(p) for p in conn.proposals.values() if p.group_id == group_id]
        return sorted(found, key=lambda p: p.created_at, reverse=True)

    async def list_recipients(self, conn, proposal_id):
        await _switch()
        table = conn.recipients.get(proposal_id, {})
        return sorted((replace(r) for r in table.values()), key=lambda r: (r.display_name, r.email))

    async def get_recipient(self, conn, proposal_id, email):
        await _switch()
        recipient = conn.recipients.get(proposal_id, {}).get(email)
        return replace(recipient) if recipient else None

    async def transition(self, conn, proposal_id, *, from_statuses, to_status):
        await _switch()
        proposal = conn.proposals.get(proposal_id)
        if proposal is None or proposal.status not in list(from_statuses):
            return None
        proposal.status = to_status
        proposal.updated_at = conn.tick()
        proposal.closed_at = proposal.closed_at or proposal.updated_at
        return replace(proposal)

    async def register_response(self, conn, proposal_id, *, new_response):
        await _switch()
        proposal = conn.proposals.get(proposal_id)
        if proposal is None or proposal.status is not ProposalStatus.OPEN:
            return None
        if not new_response:
            return replace(proposal)
        proposal.responded_count += 1
        proposal.updated_at = conn.tick()
        if proposal.responded_count >= proposal.expected_responses:
            proposal.status = ProposalStatus.RESOLVED
            proposal.closed_at = proposal.updated_at
        return replace(proposal)


class FakeResponseRepository:
    def __init__(self):
        self.fail_next_upsert = False

    async def upsert(self, conn, *, proposal_id, recipient_email, user_id, answer, alternate):
        await _switch()
        if self.fail_next_upsert:
            self.fail_next_upsert = False
            raise DatabaseError("simulated write failure", operation="fetch_one", recoverable=False)

        key = (proposal_id, recipient_email)
        existing = conn.responses.get(key)
        response = ProposalResponse(
            id=existing.id if existing else str(uuid.uuid4()),
            proposal_id=proposal_id,
            recipient_email=recipient_email,
            user_id=user_id or (existing.user_id if existing else None),
            answer=answer,
            alternate=replace(alternate) if alternate else None,
            responded_at=conn.tick(),
        )
        conn.responses[key] = response
        return replace(response), existing is None

    async def get(self, conn, proposal_id, recipient_email):
        await _switch()
        response = conn.responses.get((proposal_id, recipient_email))
        return replace(response) if response else None

    async def list_for_proposal(self, conn, proposal_id):
        await _switch()
        found = [replace(r) for (pid, _), r in conn.responses.items() if pid == proposal_id]
        return sorted(found, key=lambda r: r.responded_at)


class RecordingNotifier:
    """Collects deliveries; addresses in fail_for raise NotificationError."""

    def __init__(self):
        self.sent: list[tuple[str, str, dict]] = []
        self.fail_for: set[str] = set()
        self.closed = False

    async def send(self, recipient_address, template_kind, payload):
        if recipient_address in self.fail_for:
            raise NotificationError(f"delivery to {recipient_address} failed", status_code=503)
        self.sent.append((recipient_address, str(template_kind.value), payload))
        return DeliveryReceipt(
            message_id=f"msg-{len(self.sent)}", recipient=recipient_address, kind=template_kind
        )

    async def close(self):
        self.closed = True

    def of_kind(self, kind: str) -> list[tuple[str, str, dict]]:
        return [entry for entry in self.sent if entry[1] == kind]

    def token_for(self, address: str) -> str:
        """Raw token from the most recent invitation sent to address."""
        for to, kind, payload in reversed(self.sent):
            if to == address and kind == "proposal_invitation":
                return payload["token"]
        raise AssertionError(f"no invitation sent to {address}")


@dataclass
class Harness:
    db: FakeDatabase
    clock: MutableClock
    notifier: RecordingNotifier
    membership: MembershipStore
    invitations: InvitationStore
    proposals: ProposalStore
    tokens: TokenIssuer
    collector: ResponseCollector
    response_repo: FakeResponseRepository
    service: CoordinationService


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def fake_db(clock):
    return FakeDatabase(clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def harness(fake_db, clock, notifier):
    membership = MembershipStore(FakeMembershipRepository(), enforce_unique_names=False)
    invitations = InvitationStore(membership, FakeInvitationRepository())
    proposals = ProposalStore(FakeProposalRepository())
    tokens = TokenIssuer(FakeTokenRepository(), default_ttl=timedelta(hours=72), clock=clock)
    response_repo = FakeResponseRepository()
    collector = ResponseCollector(tokens, proposals, response_repo)
    service = CoordinationService(
        fake_db,
        NotificationDispatcher(notifier, background=False),
        membership=membership,
        proposals=proposals,
        tokens=tokens,
        collector=collector,
        users=FakeUserRepository(),
        invitations=invitations,
    )
    return Harness(
        db=fake_db,
        clock=clock,
        notifier=notifier,
        membership=membership,
        invitations=invitations,
        proposals=proposals,
        tokens=tokens,
        collector=collector,
        response_repo=response_repo,
        service=service,
    )
