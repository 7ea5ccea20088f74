"""
Response Collector: records attendee answers against a proposal.

record_response() must run inside the caller's transaction. Token
consumption, the response upsert and the aggregate update commit or roll
back together, so a failed insert never leaves a recipient with a used link
and no recorded answer.
"""

import psycopg

from app.features.coordination.domain import (
    AlternateTime,
    RecordedResponse,
    ResponseAnswer,
    ValidationError,
)
from app.features.coordination.repository import ResponseRepository
from app.features.coordination.services.proposal_store import ProposalStore
from app.features.coordination.services.token_issuer import TokenIssuer
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_ALTERNATE_MESSAGE_LENGTH = 1000


def normalize_answer(
    answer: ResponseAnswer | str, alternate: AlternateTime | None
) -> tuple[ResponseAnswer, AlternateTime | None]:
    """Validate an answer/alternate pair; yes and no drop any alternate payload."""
    try:
        parsed = ResponseAnswer(answer)
    except ValueError:
        raise ValidationError("Response must be 'yes', 'no' or 'alternate'") from None

    if parsed is not ResponseAnswer.ALTERNATE:
        return parsed, None

    if alternate is None:
        raise ValidationError("An alternate response needs an alternate date and time")
    if alternate.message and len(alternate.message) > MAX_ALTERNATE_MESSAGE_LENGTH:
        raise ValidationError(
            f"Alternate message must be at most {MAX_ALTERNATE_MESSAGE_LENGTH} characters"
        )
    message = (alternate.message or "").strip() or None
    return parsed, AlternateTime(
        proposed_date=alternate.proposed_date, start_time=alternate.start_time, message=message
    )


class ResponseCollector:
    def __init__(
        self,
        tokens: TokenIssuer,
        proposals: ProposalStore,
        repository: ResponseRepository | None = None,
    ):
        self._tokens = tokens
        self._proposals = proposals
        self._repo = repository or ResponseRepository()

    async def record_response(
        self,
        conn: psycopg.AsyncConnection,
        token: str,
        answer: ResponseAnswer | str,
        alternate: AlternateTime | None = None,
    ) -> RecordedResponse:
        parsed_answer, parsed_alternate = normalize_answer(answer, alternate)

        binding = await self._tokens.validate(conn, token)
        await self._proposals.ensure_open(conn, binding.proposal_id)
        recipient = await self._proposals.recipient(
            conn, binding.proposal_id, binding.recipient_email
        )

        response, inserted = await self._repo.upsert(
            conn,
            proposal_id=binding.proposal_id,
            recipient_email=recipient.email,
            user_id=recipient.user_id,
            answer=parsed_answer,
            alternate=parsed_alternate,
        )
        proposal = await self._proposals.register_response(
            conn, binding.proposal_id, new_response=inserted
        )

        logger.info(
            "Proposal response recorded",
            proposal_id=proposal.id,
            recipient=recipient.email,
            answer=parsed_answer.value,
            superseded=not inserted,
            status=proposal.status.value,
        )
        return RecordedResponse(
            proposal=proposal, response=response, recipient=recipient, superseded=not inserted
        )

    async def current_response(
        self, conn: psycopg.AsyncConnection, proposal_id: str, recipient_email: str
    ):
        return await self._repo.get(conn, proposal_id, recipient_email)

    async def list_responses(self, conn: psycopg.AsyncConnection, proposal_id: str):
        return await self._repo.list_for_proposal(conn, proposal_id)
