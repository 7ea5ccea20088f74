"""
Error taxonomy for the coordination engine.

Store components raise these unmodified; only the façade may turn one into
a user-facing success (a repeated click on an already used response link).
"""


class CoordinationError(Exception):
    """Base class for coordination failures."""

    code = "coordination_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(CoordinationError):
    """Malformed input; the caller can fix it and retry."""

    code = "validation_error"


class NotFoundError(CoordinationError):
    code = "not_found"


class ConflictError(CoordinationError):
    """Uniqueness violation."""

    code = "conflict"


class AuthorizationError(CoordinationError):
    """Caller's role is insufficient for the operation."""

    code = "forbidden"


class InvariantViolation(CoordinationError):
    """Operation would break a group or proposal invariant."""

    code = "invariant_violation"


class ProposalClosed(CoordinationError):
    """The proposal no longer accepts responses or this transition."""

    code = "proposal_closed"


class InvalidTransition(CoordinationError):
    code = "invalid_transition"


class TokenError(CoordinationError):
    code = "token_error"


class TokenNotFound(TokenError):
    code = "token_not_found"


class TokenExpired(TokenError):
    code = "token_expired"


class TokenConsumed(TokenError):
    """The token was already used. Carries the pair it was bound to."""

    code = "token_consumed"

    def __init__(self, message: str, *, proposal_id: str, recipient_email: str):
        super().__init__(message, proposal_id=proposal_id, recipient_email=recipient_email)
        self.proposal_id = proposal_id
        self.recipient_email = recipient_email
