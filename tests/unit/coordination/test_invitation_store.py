import pytest
import pytest_asyncio

from app.features.coordination.domain import (
    ConflictError,
    GroupRole,
    InvalidTransition,
    InvitationStatus,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
def users(fake_db):
    fake_db.add_user("alice", "alice@example.com", "Alice")
    fake_db.add_user("bob", "bob@example.com", "Bob")
    fake_db.add_user("carol", "carol@example.com", "Carol")


@pytest_asyncio.fixture
async def group(harness, users):
    async with harness.db.transaction() as conn:
        return await harness.membership.create_group(
            conn, name="Book Club", description=None, group_type=None, owner_id="alice"
        )


async def _invite(harness, group_id, invitee="bob", role=GroupRole.MEMBER):
    async with harness.db.transaction() as conn:
        return await harness.invitations.invite(
            conn, group_id, invited_by="alice", invitee_id=invitee, role=role
        )


async def _respond(harness, invitation_id, user_id, accept):
    async with harness.db.transaction() as conn:
        return await harness.invitations.respond(conn, invitation_id, user_id, accept=accept)


@pytest.mark.asyncio
async def test_invitation_does_not_add_member(harness, group):
    invitation = await _invite(harness, group.id)

    assert invitation.status is InvitationStatus.PENDING
    async with harness.db.connection() as conn:
        assert await harness.membership.get_role(conn, group.id, "bob") is None
        pending = await harness.invitations.list_pending(conn, "bob")
    assert [i.id for i in pending] == [invitation.id]
    assert pending[0].group_name == "Book Club"
    assert pending[0].inviter_name == "Alice"


@pytest.mark.asyncio
async def test_accept_adds_member_with_invited_role(harness, group):
    invitation = await _invite(harness, group.id, role=GroupRole.ADMIN)

    reply = await _respond(harness, invitation.id, "bob", accept=True)

    assert reply.invitation.status is InvitationStatus.ACCEPTED
    assert reply.invitation.responded_at is not None
    assert reply.membership.role is GroupRole.ADMIN
    async with harness.db.connection() as conn:
        assert await harness.membership.get_role(conn, group.id, "bob") is GroupRole.ADMIN
        assert await harness.invitations.list_pending(conn, "bob") == []


@pytest.mark.asyncio
async def test_decline_leaves_membership_alone(harness, group):
    invitation = await _invite(harness, group.id)

    reply = await _respond(harness, invitation.id, "bob", accept=False)

    assert reply.invitation.status is InvitationStatus.DECLINED
    assert reply.membership is None
    async with harness.db.connection() as conn:
        assert await harness.membership.get_role(conn, group.id, "bob") is None


@pytest.mark.asyncio
async def test_answered_invitation_cannot_be_answered_again(harness, group):
    invitation = await _invite(harness, group.id)
    await _respond(harness, invitation.id, "bob", accept=False)

    with pytest.raises(InvalidTransition):
        await _respond(harness, invitation.id, "bob", accept=True)


@pytest.mark.asyncio
async def test_only_the_invitee_can_answer(harness, group):
    invitation = await _invite(harness, group.id)

    with pytest.raises(NotFoundError):
        await _respond(harness, invitation.id, "carol", accept=True)
    with pytest.raises(NotFoundError):
        await _respond(harness, "missing", "bob", accept=True)


@pytest.mark.asyncio
async def test_second_pending_invitation_conflicts(harness, group):
    await _invite(harness, group.id)

    with pytest.raises(ConflictError):
        await _invite(harness, group.id)
    assert len(harness.db.state.invitations) == 1


@pytest.mark.asyncio
async def test_reinvite_after_decline(harness, group):
    first = await _invite(harness, group.id)
    await _respond(harness, first.id, "bob", accept=False)

    second = await _invite(harness, group.id)

    assert second.id != first.id
    assert second.status is InvitationStatus.PENDING


@pytest.mark.asyncio
async def test_cannot_invite_members_or_grant_ownership(harness, group):
    with pytest.raises(ConflictError):
        await _invite(harness, group.id, invitee="alice")
    with pytest.raises(ValidationError):
        await _invite(harness, group.id, role=GroupRole.OWNER)
    assert harness.db.state.invitations == {}


@pytest.mark.asyncio
async def test_invitations_to_deleted_groups_disappear(harness, group):
    invitation = await _invite(harness, group.id)
    async with harness.db.transaction() as conn:
        await harness.membership.soft_delete_group(conn, group.id)

    async with harness.db.connection() as conn:
        assert await harness.invitations.list_pending(conn, "bob") == []
    with pytest.raises(NotFoundError):
        await _respond(harness, invitation.id, "bob", accept=True)
