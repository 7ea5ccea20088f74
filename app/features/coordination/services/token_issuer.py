"""
Token Issuer: single-use, time-bound response tokens.

Tokens are generated with 256 bits of entropy and only their keyed hash is
persisted. Validation and consumption are one conditional UPDATE, which is
the critical section for concurrent submissions of the same link.

Re-issuing for a (proposal, recipient) pair deletes the pair's unconsumed
tokens, so a replaced link fails with TokenNotFound.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import psycopg

from app.config import settings
from app.features.coordination.domain import (
    IssuedToken,
    TokenBinding,
    TokenConsumed,
    TokenExpired,
    TokenNotFound,
    TokenRecord,
)
from app.features.coordination.repository import TokenRepository
from app.infrastructure.observability.logging import get_logger
from app.security.hashing import generate_token, hash_token

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class TokenIssuer:
    def __init__(
        self,
        repository: TokenRepository | None = None,
        *,
        default_ttl: timedelta | None = None,
        clock: Clock = utc_now,
    ):
        self._repo = repository or TokenRepository()
        self._default_ttl = default_ttl or timedelta(hours=settings.RESPONSE_TOKEN_TTL_HOURS)
        self._clock = clock

    async def issue(
        self,
        conn: psycopg.AsyncConnection,
        proposal_id: str,
        recipient_email: str,
        ttl: timedelta | None = None,
    ) -> IssuedToken:
        """Create a token for the pair, invalidating any outstanding one."""
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= timedelta(0):
            raise ValueError("Token TTL must be positive")

        revoked = await self._repo.revoke_unconsumed(conn, proposal_id, recipient_email)

        raw_token = generate_token()
        expires_at = self._clock() + ttl
        await self._repo.insert(
            conn,
            token_hash=hash_token(raw_token),
            proposal_id=proposal_id,
            recipient_email=recipient_email,
            expires_at=expires_at,
        )

        logger.info(
            "Response token issued",
            proposal_id=proposal_id,
            recipient=recipient_email,
            expires_at=expires_at.isoformat(),
            revoked_previous=revoked,
        )
        return IssuedToken(
            token=raw_token,
            proposal_id=proposal_id,
            recipient_email=recipient_email,
            expires_at=expires_at,
        )

    async def validate(self, conn: psycopg.AsyncConnection, token: str) -> TokenBinding:
        """
        Validate and consume a token in one atomic step.

        Raises:
            TokenNotFound: unknown or replaced token
            TokenConsumed: already used (takes precedence over expiry)
            TokenExpired: past its expiry
        """
        if not token:
            raise TokenNotFound("Response link is invalid")

        token_hash = hash_token(token)
        now = self._clock()

        consumed = await self._repo.consume(conn, token_hash, now)
        if consumed is not None:
            logger.info(
                "Response token consumed",
                proposal_id=consumed.proposal_id,
                recipient=consumed.recipient_email,
            )
            return TokenBinding(
                proposal_id=consumed.proposal_id, recipient_email=consumed.recipient_email
            )

        record = await self._repo.find(conn, token_hash)
        self._raise_for_unusable(record, now)
        raise TokenNotFound("Response link is invalid")

    async def peek(self, conn: psycopg.AsyncConnection, token: str) -> TokenRecord:
        """
        Look a token up without consuming it. Consumed tokens are returned so the
        response page can show the recorded answer; unknown or expired unused
        tokens raise.
        """
        if not token:
            raise TokenNotFound("Response link is invalid")

        record = await self._repo.find(conn, hash_token(token))
        if record is None:
            raise TokenNotFound("Response link is invalid")
        if record.consumed_at is None and record.is_expired(self._clock()):
            raise TokenExpired(
                "This response link has expired",
                proposal_id=record.proposal_id,
            )
        return record

    async def purge_expired(self, conn: psycopg.AsyncConnection, before: datetime) -> int:
        return await self._repo.purge_expired(conn, before)

    @staticmethod
    def _raise_for_unusable(record: TokenRecord | None, now: datetime) -> None:
        if record is None:
            raise TokenNotFound("Response link is invalid")
        if record.consumed_at is not None:
            raise TokenConsumed(
                "This response link has already been used",
                proposal_id=record.proposal_id,
                recipient_email=record.recipient_email,
            )
        if record.is_expired(now):
            raise TokenExpired("This response link has expired", proposal_id=record.proposal_id)
