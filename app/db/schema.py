"""
Bootstrap DDL for the coordination tables.

This is not a migration framework: apply_schema() only creates what is
missing, which is enough for local development and test databases.
"""

from app.db.pool import DatabasePoolManager
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_STATEMENTS: list[str] = [
    'CREATE EXTENSION IF NOT EXISTS "pgcrypto"',
    """
    CREATE TABLE IF NOT EXISTS users (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        email VARCHAR(255) NOT NULL UNIQUE,
        name VARCHAR(255) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        deleted_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS groups (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name VARCHAR(255) NOT NULL,
        description TEXT,
        type VARCHAR(50) NOT NULL DEFAULT 'regular',
        created_by UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        deleted_at TIMESTAMPTZ
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_groups_created_by ON groups (created_by)",
    """
    CREATE TABLE IF NOT EXISTS group_members (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        group_id UUID NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        role VARCHAR(16) NOT NULL DEFAULT 'member'
            CHECK (role IN ('member', 'admin', 'owner')),
        joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT unique_group_member UNIQUE (group_id, user_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_group_members_user ON group_members (user_id)",
    # At most one owner row per group; the application keeps it at exactly one
    """
    CREATE UNIQUE INDEX IF NOT EXISTS unique_group_owner
        ON group_members (group_id) WHERE role = 'owner'
    """,
    """
    CREATE TABLE IF NOT EXISTS group_invitations (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        group_id UUID NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
        invited_by UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        invitee_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        role VARCHAR(16) NOT NULL DEFAULT 'member' CHECK (role IN ('member', 'admin')),
        status VARCHAR(16) NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'accepted', 'declined')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        responded_at TIMESTAMPTZ
    )
    """,
    # One pending invitation per (group, invitee); answered ones are kept as history
    """
    CREATE UNIQUE INDEX IF NOT EXISTS unique_pending_invitation
        ON group_invitations (group_id, invitee_id) WHERE status = 'pending'
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_group_invitations_invitee
        ON group_invitations (invitee_id, status)
    """,
    """
    CREATE TABLE IF NOT EXISTS meeting_proposals (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        group_id UUID REFERENCES groups(id) ON DELETE CASCADE,
        proposed_by UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        title VARCHAR(255) NOT NULL,
        description TEXT,
        proposed_date DATE NOT NULL,
        start_time TIME NOT NULL,
        end_time TIME,
        status VARCHAR(16) NOT NULL DEFAULT 'open'
            CHECK (status IN ('open', 'resolved', 'archived', 'cancelled')),
        expected_responses INTEGER NOT NULL CHECK (expected_responses > 0),
        responded_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        closed_at TIMESTAMPTZ
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_meeting_proposals_group ON meeting_proposals (group_id, status)",
    """
    CREATE TABLE IF NOT EXISTS proposal_recipients (
        proposal_id UUID NOT NULL REFERENCES meeting_proposals(id) ON DELETE CASCADE,
        email VARCHAR(255) NOT NULL,
        user_id UUID REFERENCES users(id) ON DELETE SET NULL,
        display_name VARCHAR(255) NOT NULL,
        PRIMARY KEY (proposal_id, email)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS response_tokens (
        token_hash CHAR(64) PRIMARY KEY,
        proposal_id UUID NOT NULL REFERENCES meeting_proposals(id) ON DELETE CASCADE,
        recipient_email VARCHAR(255) NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL,
        consumed_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_response_tokens_pair
        ON response_tokens (proposal_id, recipient_email)
    """,
    """
    CREATE TABLE IF NOT EXISTS proposal_responses (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        proposal_id UUID NOT NULL REFERENCES meeting_proposals(id) ON DELETE CASCADE,
        recipient_email VARCHAR(255) NOT NULL,
        user_id UUID REFERENCES users(id) ON DELETE SET NULL,
        answer VARCHAR(16) NOT NULL CHECK (answer IN ('yes', 'no', 'alternate')),
        alternate_date DATE,
        alternate_start_time TIME,
        alternate_message TEXT,
        responded_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT unique_recipient_response UNIQUE (proposal_id, recipient_email)
    )
    """,
]


async def apply_schema(db: DatabasePoolManager) -> int:
    """Create missing tables and indexes. Returns the number of statements run."""
    async with db.transaction() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)

    logger.info("Coordination schema applied", statements=len(SCHEMA_STATEMENTS))
    return len(SCHEMA_STATEMENTS)
