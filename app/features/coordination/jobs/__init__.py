"""
Background jobs for meeting-proposal coordination.
"""

from .token_cleanup_job import run_token_cleanup_job, start_token_cleanup_scheduler

__all__ = ["run_token_cleanup_job", "start_token_cleanup_scheduler"]
