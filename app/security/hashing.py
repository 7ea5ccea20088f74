"""
Keyed hashing and generation of response tokens.

Only the HMAC-SHA256 digest of a response token is ever persisted; the raw
value exists in memory long enough to be placed in an email link.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from app.config import settings

SECRET_MIN_LENGTH = 16  # catch obvious misconfiguration
TOKEN_BYTES = 32  # 256 bits of entropy

__all__ = [
    "HashingError",
    "compute_hmac",
    "generate_token",
    "hash_token",
    "normalize_email",
]


class HashingError(RuntimeError):
    """Raised when hashing prerequisites are not satisfied."""


def _secret_bytes() -> bytes:
    secret = getattr(settings, "TOKEN_HASHING_SECRET", None)
    if not secret:
        raise HashingError("TOKEN_HASHING_SECRET is not configured")
    if len(secret) < SECRET_MIN_LENGTH:
        raise HashingError("TOKEN_HASHING_SECRET is too short; please rotate it")
    return secret.encode("utf-8")


def compute_hmac(value: str, *, namespace: str) -> str:
    """
    Compute a namespaced hex HMAC-SHA256 digest.

    Args:
        value: Raw string value to hash.
        namespace: Logical namespace to avoid cross-field collisions.
    """
    scoped = f"{namespace}:{value or ''}"
    digest = hmac.new(_secret_bytes(), scoped.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()


def generate_token() -> str:
    """Return a fresh URL-safe response token."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str) -> str:
    """Digest stored in response_tokens.token_hash (64 hex chars)."""
    return compute_hmac(token, namespace="response_token")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()
