"""
Proposal Store: meeting proposals and their state machine.

    open -> resolved -> archived
    open -> cancelled

Each transition is one conditional UPDATE on the caller's transaction;
nothing here retries.
"""

from dataclasses import replace

import psycopg

from app.features.coordination.domain import (
    InvalidTransition,
    MeetingProposal,
    NotFoundError,
    ProposalClosed,
    ProposalDraft,
    ProposalStatus,
    Recipient,
    ValidationError,
)
from app.features.coordination.repository import ProposalRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_TITLE_LENGTH = 255


class ProposalStore:
    def __init__(self, repository: ProposalRepository | None = None):
        self._repo = repository or ProposalRepository()

    async def create(
        self,
        conn: psycopg.AsyncConnection,
        *,
        organizer_id: str,
        draft: ProposalDraft,
        recipients: list[Recipient],
    ) -> MeetingProposal:
        title = (draft.title or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
        if draft.end_time is not None and draft.end_time <= draft.start_time:
            raise ValidationError("End time must be after start time")
        if not recipients:
            raise ValidationError("At least one recipient is required")

        proposal = await self._repo.insert_proposal(
            conn,
            replace(draft, title=title),
            organizer_id=organizer_id,
            expected_responses=len(recipients),
        )
        await self._repo.insert_recipients(conn, proposal.id, recipients)

        logger.info(
            "Meeting proposal created",
            proposal_id=proposal.id,
            group_id=proposal.group_id,
            organizer_id=organizer_id,
            recipients=len(recipients),
        )
        return proposal

    async def get(self, conn: psycopg.AsyncConnection, proposal_id: str) -> MeetingProposal:
        proposal = await self._repo.get_proposal(conn, proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal not found", proposal_id=proposal_id)
        return proposal

    async def ensure_open(self, conn: psycopg.AsyncConnection, proposal_id: str) -> MeetingProposal:
        proposal = await self.get(conn, proposal_id)
        if not proposal.status.accepts_responses:
            raise ProposalClosed(
                f"This proposal is {proposal.status.value} and no longer accepts responses",
                proposal_id=proposal_id,
                status=proposal.status.value,
            )
        return proposal

    async def list_for_group(
        self, conn: psycopg.AsyncConnection, group_id: str
    ) -> list[MeetingProposal]:
        return await self._repo.list_for_group(conn, group_id)

    async def recipients(self, conn: psycopg.AsyncConnection, proposal_id: str) -> list[Recipient]:
        return await self._repo.list_recipients(conn, proposal_id)

    async def recipient(
        self, conn: psycopg.AsyncConnection, proposal_id: str, email: str
    ) -> Recipient:
        recipient = await self._repo.get_recipient(conn, proposal_id, email)
        if recipient is None:
            raise NotFoundError("Recipient is not part of this proposal", proposal_id=proposal_id)
        return recipient

    async def register_response(
        self, conn: psycopg.AsyncConnection, proposal_id: str, *, new_response: bool
    ) -> MeetingProposal:
        """
        Refresh the aggregate after a response; resolves once everyone answered.

        First responses write the proposal row and so queue behind each
        other on its lock until commit. Changed answers only share-lock it.
        """
        proposal = await self._repo.register_response(conn, proposal_id, new_response=new_response)
        if proposal is None:
            current = await self.get(conn, proposal_id)
            raise ProposalClosed(
                f"This proposal is {current.status.value} and no longer accepts responses",
                proposal_id=proposal_id,
                status=current.status.value,
            )
        if proposal.status is ProposalStatus.RESOLVED:
            logger.info(
                "Meeting proposal resolved",
                proposal_id=proposal_id,
                responses=proposal.responded_count,
            )
        return proposal

    async def close(self, conn: psycopg.AsyncConnection, proposal_id: str) -> MeetingProposal:
        """Organizer closes an open proposal early."""
        return await self._transition_from_open(conn, proposal_id, ProposalStatus.RESOLVED)

    async def cancel(self, conn: psycopg.AsyncConnection, proposal_id: str) -> MeetingProposal:
        return await self._transition_from_open(conn, proposal_id, ProposalStatus.CANCELLED)

    async def archive(self, conn: psycopg.AsyncConnection, proposal_id: str) -> MeetingProposal:
        proposal = await self._repo.transition(
            conn,
            proposal_id,
            from_statuses=[ProposalStatus.RESOLVED],
            to_status=ProposalStatus.ARCHIVED,
        )
        if proposal is None:
            current = await self.get(conn, proposal_id)
            raise InvalidTransition(
                f"Only resolved proposals can be archived (status: {current.status.value})",
                proposal_id=proposal_id,
            )
        logger.info("Meeting proposal archived", proposal_id=proposal_id)
        return proposal

    async def _transition_from_open(
        self, conn: psycopg.AsyncConnection, proposal_id: str, to_status: ProposalStatus
    ) -> MeetingProposal:
        proposal = await self._repo.transition(
            conn, proposal_id, from_statuses=[ProposalStatus.OPEN], to_status=to_status
        )
        if proposal is None:
            current = await self.get(conn, proposal_id)
            raise ProposalClosed(
                f"This proposal is already {current.status.value}",
                proposal_id=proposal_id,
                status=current.status.value,
            )
        logger.info("Meeting proposal transitioned", proposal_id=proposal_id, status=to_status.value)
        return proposal
