from datetime import date, time

import pytest

from app.features.coordination.domain import (
    InvalidTransition,
    NotFoundError,
    ProposalClosed,
    ProposalDraft,
    ProposalStatus,
    Recipient,
    ValidationError,
)

RECIPIENTS = [
    Recipient(email="bob@example.com", display_name="Bob", user_id="bob"),
    Recipient(email="carol@example.com", display_name="Carol"),
]


def _draft(**overrides):
    values = {
        "title": "Quarterly planning",
        "proposed_date": date(2024, 7, 1),
        "start_time": time(14, 0),
        "end_time": time(15, 0),
    }
    values.update(overrides)
    return ProposalDraft(**values)


async def _create(harness, draft=None, recipients=RECIPIENTS):
    async with harness.db.transaction() as conn:
        return await harness.proposals.create(
            conn, organizer_id="alice", draft=draft or _draft(), recipients=recipients
        )


@pytest.mark.asyncio
async def test_create_opens_proposal_with_expected_responses(harness):
    proposal = await _create(harness, _draft(title="  Planning  "))

    assert proposal.status is ProposalStatus.OPEN
    assert proposal.title == "Planning"
    assert proposal.expected_responses == 2
    assert proposal.responded_count == 0

    async with harness.db.connection() as conn:
        recipients = await harness.proposals.recipients(conn, proposal.id)
    assert [r.email for r in recipients] == ["bob@example.com", "carol@example.com"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "draft, recipients",
    [
        (_draft(title=" "), RECIPIENTS),
        (_draft(title="t" * 256), RECIPIENTS),
        (_draft(end_time=time(13, 0)), RECIPIENTS),
        (_draft(end_time=time(14, 0)), RECIPIENTS),
        (_draft(), []),
    ],
)
async def test_create_validation(harness, draft, recipients):
    with pytest.raises(ValidationError):
        await _create(harness, draft, recipients)
    assert harness.db.state.proposals == {}


@pytest.mark.asyncio
async def test_get_missing_proposal(harness):
    async with harness.db.connection() as conn:
        with pytest.raises(NotFoundError):
            await harness.proposals.get(conn, "missing")
        with pytest.raises(NotFoundError):
            await harness.proposals.recipient(conn, "missing", "bob@example.com")


@pytest.mark.asyncio
async def test_register_response_resolves_when_all_answered(harness):
    proposal = await _create(harness)

    async with harness.db.transaction() as conn:
        first = await harness.proposals.register_response(conn, proposal.id, new_response=True)
        assert first.status is ProposalStatus.OPEN
        assert first.pending_count == 1

        again = await harness.proposals.register_response(conn, proposal.id, new_response=False)
        assert again.responded_count == 1
        assert again.updated_at == first.updated_at

        second = await harness.proposals.register_response(conn, proposal.id, new_response=True)

    assert second.status is ProposalStatus.RESOLVED
    assert second.responded_count == 2
    assert second.closed_at is not None


@pytest.mark.asyncio
async def test_register_response_on_cancelled_proposal(harness):
    proposal = await _create(harness)
    async with harness.db.transaction() as conn:
        await harness.proposals.cancel(conn, proposal.id)

    with pytest.raises(ProposalClosed):
        async with harness.db.transaction() as conn:
            await harness.proposals.register_response(conn, proposal.id, new_response=True)
    with pytest.raises(ProposalClosed):
        async with harness.db.transaction() as conn:
            await harness.proposals.register_response(conn, proposal.id, new_response=False)


@pytest.mark.asyncio
async def test_close_then_archive(harness):
    proposal = await _create(harness)

    async with harness.db.transaction() as conn:
        closed = await harness.proposals.close(conn, proposal.id)
        archived = await harness.proposals.archive(conn, proposal.id)

    assert closed.status is ProposalStatus.RESOLVED
    assert archived.status is ProposalStatus.ARCHIVED
    assert archived.closed_at == closed.closed_at


@pytest.mark.asyncio
async def test_archive_requires_resolved(harness):
    proposal = await _create(harness)

    with pytest.raises(InvalidTransition):
        async with harness.db.transaction() as conn:
            await harness.proposals.archive(conn, proposal.id)


@pytest.mark.asyncio
async def test_cancel_only_from_open(harness):
    proposal = await _create(harness)
    async with harness.db.transaction() as conn:
        await harness.proposals.close(conn, proposal.id)

    with pytest.raises(ProposalClosed):
        async with harness.db.transaction() as conn:
            await harness.proposals.cancel(conn, proposal.id)

    async with harness.db.connection() as conn:
        assert (await harness.proposals.get(conn, proposal.id)).status is ProposalStatus.RESOLVED
        with pytest.raises(ProposalClosed):
            await harness.proposals.ensure_open(conn, proposal.id)


@pytest.mark.asyncio
async def test_list_for_group(harness):
    await _create(harness, _draft(group_id="g1", title="First"))
    await _create(harness, _draft(group_id="g1", title="Second"))
    await _create(harness, _draft(group_id="g2"))

    async with harness.db.connection() as conn:
        proposals = await harness.proposals.list_for_group(conn, "g1")

    assert [p.title for p in proposals] == ["Second", "First"]
