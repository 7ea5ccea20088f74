"""
Meeting-proposal coordination feature package.

Groups and roles, meeting proposals, single-use response tokens and the
responses collected through them live together in this slice (domain
models, repositories, services, API router, jobs).
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as coordination_router  # noqa: F401
from .services.coordination_service import (  # noqa: F401
    CoordinationPolicy,
    CoordinationService,
)
from .jobs.token_cleanup_job import start_token_cleanup_scheduler  # noqa: F401
