from datetime import UTC, date, datetime, time, timedelta

import pytest

from app.features.coordination.domain import (
    AlternateTime,
    GroupRole,
    ProposalResponse,
    ProposalStatus,
    ResponseAnswer,
    TokenConsumed,
    TokenRecord,
)


def test_roles_are_ordered():
    assert GroupRole.OWNER.at_least(GroupRole.ADMIN)
    assert GroupRole.ADMIN.at_least(GroupRole.MEMBER)
    assert GroupRole.ADMIN.at_least(GroupRole.ADMIN)
    assert not GroupRole.MEMBER.at_least(GroupRole.ADMIN)


def test_role_parse_accepts_labels_and_roles():
    assert GroupRole.parse("owner") is GroupRole.OWNER
    assert GroupRole.parse(" Admin ") is GroupRole.ADMIN
    assert GroupRole.parse(GroupRole.MEMBER) is GroupRole.MEMBER
    assert GroupRole.ADMIN.label == "admin"


def test_role_parse_rejects_unknown():
    with pytest.raises(ValueError):
        GroupRole.parse("superuser")


def test_only_open_proposals_accept_responses():
    assert ProposalStatus.OPEN.accepts_responses
    for status in (ProposalStatus.RESOLVED, ProposalStatus.ARCHIVED, ProposalStatus.CANCELLED):
        assert not status.accepts_responses


def test_token_expiry_boundary():
    now = datetime(2024, 1, 1, tzinfo=UTC)
    record = TokenRecord(
        token_hash="h" * 64,
        proposal_id="p1",
        recipient_email="b@example.com",
        expires_at=now,
        consumed_at=None,
        created_at=now - timedelta(days=1),
    )
    assert record.is_expired(now)
    assert not record.is_expired(now - timedelta(seconds=1))


def _response(answer, alternate=None):
    return ProposalResponse(
        id="r1",
        proposal_id="p1",
        recipient_email="b@example.com",
        user_id=None,
        answer=answer,
        alternate=alternate,
        responded_at=datetime(2024, 1, 1, tzinfo=UTC),
    )


def test_response_matches_same_answer():
    assert _response(ResponseAnswer.YES).matches(ResponseAnswer.YES)
    assert not _response(ResponseAnswer.YES).matches(ResponseAnswer.NO)


def test_alternate_response_matches_on_alternate_time():
    alt = AlternateTime(proposed_date=date(2024, 2, 1), start_time=time(10, 0))
    other = AlternateTime(proposed_date=date(2024, 2, 2), start_time=time(10, 0))
    response = _response(ResponseAnswer.ALTERNATE, alt)

    assert response.matches(ResponseAnswer.ALTERNATE, alt)
    assert not response.matches(ResponseAnswer.ALTERNATE, other)


def test_token_consumed_carries_binding():
    error = TokenConsumed("used", proposal_id="p1", recipient_email="b@example.com")
    assert error.proposal_id == "p1"
    assert error.recipient_email == "b@example.com"
    assert error.code == "token_consumed"
    assert error.context == {"proposal_id": "p1", "recipient_email": "b@example.com"}
