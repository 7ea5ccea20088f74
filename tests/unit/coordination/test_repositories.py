"""
SQL-level tests for the coordination repositories against a mocked psycopg connection.
"""

from datetime import UTC, date, datetime, time, timedelta
from unittest.mock import AsyncMock, MagicMock

import psycopg
import pytest
from psycopg import errors as pg_errors

from app.db.helpers import DatabaseError, UniqueConstraintError, fetch_one
from app.db.schema import SCHEMA_STATEMENTS, apply_schema
from app.features.coordination.domain import (
    AlternateTime,
    GroupRole,
    InvitationStatus,
    ProposalStatus,
    ResponseAnswer,
)
from app.features.coordination.repository import (
    InvitationRepository,
    MembershipRepository,
    ProposalRepository,
    ResponseRepository,
    TokenRepository,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def _connection(fetchone=None, fetchall=None, rowcount=0):
    """Mock AsyncConnection whose cursor returns the given rows."""
    cursor = MagicMock()
    cursor.execute = AsyncMock()
    cursor.fetchone = AsyncMock(return_value=fetchone)
    cursor.fetchall = AsyncMock(return_value=fetchall or [])

    cursor_cm = MagicMock()
    cursor_cm.__aenter__ = AsyncMock(return_value=cursor)
    cursor_cm.__aexit__ = AsyncMock(return_value=False)

    conn = MagicMock()
    conn.cursor.return_value = cursor_cm
    conn.execute = AsyncMock(return_value=MagicMock(rowcount=rowcount))
    return conn, cursor


def _token_row(**overrides):
    row = {
        "token_hash": "a" * 64,
        "proposal_id": "p-1",
        "recipient_email": "bob@example.com",
        "expires_at": NOW + timedelta(days=7),
        "consumed_at": NOW,
        "created_at": NOW,
    }
    row.update(overrides)
    return row


def _response_row(**overrides):
    row = {
        "id": "r-1",
        "proposal_id": "p-1",
        "recipient_email": "bob@example.com",
        "user_id": None,
        "answer": "alternate",
        "alternate_date": date(2024, 7, 2),
        "alternate_start_time": time(9, 30),
        "alternate_message": "Mornings?",
        "responded_at": NOW,
        "inserted": True,
    }
    row.update(overrides)
    return row


def _proposal_row(**overrides):
    row = {
        "id": "p-1",
        "proposed_by": "alice",
        "group_id": None,
        "title": "Sync",
        "description": None,
        "proposed_date": date(2024, 7, 1),
        "start_time": time(10, 0),
        "end_time": None,
        "status": "open",
        "expected_responses": 2,
        "responded_count": 1,
        "created_at": NOW,
        "updated_at": NOW,
        "closed_at": None,
    }
    row.update(overrides)
    return row


def _invitation_row(**overrides):
    row = {
        "id": "i-1",
        "group_id": "g-1",
        "invited_by": "alice",
        "invitee_id": "bob",
        "role": "member",
        "status": "pending",
        "created_at": NOW,
        "responded_at": None,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_consume_is_a_conditional_update():
    conn, cursor = _connection(fetchone=_token_row())

    record = await TokenRepository().consume(conn, "a" * 64, NOW)

    query, params = cursor.execute.call_args.args
    assert "UPDATE response_tokens" in query
    assert "consumed_at IS NULL" in query
    assert "expires_at > %s" in query
    assert params == (NOW, "a" * 64, NOW)
    assert record.consumed_at == NOW


@pytest.mark.asyncio
async def test_consume_returns_none_when_no_row_qualifies():
    conn, _ = _connection(fetchone=None)

    assert await TokenRepository().consume(conn, "a" * 64, NOW) is None


@pytest.mark.asyncio
async def test_revoke_keeps_consumed_tokens():
    conn, _ = _connection(rowcount=2)

    removed = await TokenRepository().revoke_unconsumed(conn, "p-1", "bob@example.com")

    query, params = conn.execute.call_args.args
    assert removed == 2
    assert "DELETE FROM response_tokens" in query
    assert "consumed_at IS NULL" in query
    assert params == ("p-1", "bob@example.com")


@pytest.mark.asyncio
async def test_upsert_reports_insert_flag():
    conn, cursor = _connection(fetchone=_response_row(inserted=False))

    response, inserted = await ResponseRepository().upsert(
        conn,
        proposal_id="p-1",
        recipient_email="bob@example.com",
        user_id=None,
        answer=ResponseAnswer.ALTERNATE,
        alternate=AlternateTime(
            proposed_date=date(2024, 7, 2), start_time=time(9, 30), message="Mornings?"
        ),
    )

    query, params = cursor.execute.call_args.args
    assert "ON CONFLICT ON CONSTRAINT unique_recipient_response DO UPDATE" in query
    assert "(xmax = 0) AS inserted" in query
    assert params[3] == "alternate"
    assert inserted is False
    assert response.answer is ResponseAnswer.ALTERNATE
    assert response.alternate.start_time == time(9, 30)


@pytest.mark.asyncio
async def test_register_response_only_touches_open_proposals():
    conn, cursor = _connection(fetchone=_proposal_row(status="resolved", responded_count=2))

    proposal = await ProposalRepository().register_response(conn, "p-1", new_response=True)

    query, params = cursor.execute.call_args.args
    assert "UPDATE meeting_proposals" in query
    assert "responded_count = responded_count + 1" in query
    assert "WHERE id = %s AND status = 'open'" in query
    assert params == ("p-1",)
    assert proposal.status is ProposalStatus.RESOLVED


@pytest.mark.asyncio
async def test_changed_answer_only_share_locks_the_proposal():
    conn, cursor = _connection(fetchone=_proposal_row())

    proposal = await ProposalRepository().register_response(conn, "p-1", new_response=False)

    query, params = cursor.execute.call_args.args
    assert "UPDATE" not in query
    assert "status = 'open'" in query
    assert query.rstrip().endswith("FOR SHARE")
    assert params == ("p-1",)
    assert proposal.responded_count == 1


@pytest.mark.asyncio
async def test_changed_answer_on_closed_proposal():
    conn, _ = _connection(fetchone=None)

    assert await ProposalRepository().register_response(conn, "p-1", new_response=False) is None


@pytest.mark.asyncio
async def test_transition_filters_on_current_status():
    conn, cursor = _connection(fetchone=_proposal_row(status="cancelled"))

    proposal = await ProposalRepository().transition(
        conn, "p-1", from_statuses=[ProposalStatus.OPEN], to_status=ProposalStatus.CANCELLED
    )

    query, params = cursor.execute.call_args.args
    assert "status = ANY(%s)" in query
    assert params == ("cancelled", "p-1", ["open"])
    assert proposal.status is ProposalStatus.CANCELLED


@pytest.mark.asyncio
async def test_insert_member_returns_none_on_conflict():
    conn, cursor = _connection(fetchone=None)

    member = await MembershipRepository().insert_member(conn, "g-1", "bob", GroupRole.ADMIN)

    query, params = cursor.execute.call_args.args
    assert "DO NOTHING" in query
    assert params == ("g-1", "bob", "admin")
    assert member is None


@pytest.mark.asyncio
async def test_unique_violation_is_wrapped():
    conn, cursor = _connection()
    cursor.execute.side_effect = pg_errors.UniqueViolation("duplicate key")

    with pytest.raises(DatabaseError) as exc_info:
        await fetch_one("INSERT INTO groups DEFAULT VALUES", connection=conn)

    assert exc_info.value.recoverable is False


@pytest.mark.asyncio
async def test_operational_error_is_recoverable():
    conn, cursor = _connection()
    cursor.execute.side_effect = psycopg.OperationalError("server closed the connection")

    with pytest.raises(DatabaseError) as exc_info:
        await fetch_one("SELECT 1", connection=conn)

    assert exc_info.value.recoverable is True


@pytest.mark.asyncio
async def test_apply_schema_runs_every_statement():
    conn, _ = _connection()
    transaction_cm = MagicMock()
    transaction_cm.__aenter__ = AsyncMock(return_value=conn)
    transaction_cm.__aexit__ = AsyncMock(return_value=False)
    db = MagicMock()
    db.transaction.return_value = transaction_cm

    count = await apply_schema(db)

    assert count == len(SCHEMA_STATEMENTS)
    assert conn.execute.await_count == len(SCHEMA_STATEMENTS)
    assert any("response_tokens" in s for s in SCHEMA_STATEMENTS)


@pytest.mark.asyncio
async def test_invitation_respond_only_touches_pending():
    conn, cursor = _connection(fetchone=_invitation_row(status="accepted", responded_at=NOW))

    invitation = await InvitationRepository().respond(conn, "i-1", InvitationStatus.ACCEPTED)

    query, params = cursor.execute.call_args.args
    assert "UPDATE group_invitations" in query
    assert "i.status = 'pending'" in query
    assert params == ("accepted", "i-1")
    assert invitation.status is InvitationStatus.ACCEPTED


@pytest.mark.asyncio
async def test_invitation_lookup_locks_and_skips_deleted_groups():
    conn, cursor = _connection(
        fetchone=_invitation_row(
            role="admin", group_name="Book Club", inviter_name="Alice", invitee_email="Bob@Example.com"
        )
    )

    invitation = await InvitationRepository().get(conn, "i-1", for_update=True)

    query, _ = cursor.execute.call_args.args
    assert "g.deleted_at IS NULL" in query
    assert query.rstrip().endswith("FOR UPDATE OF i")
    assert invitation.role is GroupRole.ADMIN
    assert invitation.invitee_email == "bob@example.com"


@pytest.mark.asyncio
async def test_duplicate_pending_invitation_raises_unique_error():
    conn, cursor = _connection()
    cursor.execute.side_effect = pg_errors.UniqueViolation("duplicate key")

    with pytest.raises(UniqueConstraintError):
        await InvitationRepository().insert(
            conn, group_id="g-1", invited_by="alice", invitee_id="bob", role=GroupRole.MEMBER
        )


def test_pending_invitations_are_unique_per_invitee():
    [index] = [s for s in SCHEMA_STATEMENTS if "unique_pending_invitation" in s]
    assert "group_invitations (group_id, invitee_id)" in index
    assert "WHERE status = 'pending'" in index
