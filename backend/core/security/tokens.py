"""
Capability token helpers for invitations and public album links.

Invitation secrets are bearer capabilities: only the SHA-256 hash is stored,
and the raw secret is handed back exactly once, at creation.
"""

import hashlib
import hmac
import secrets
from dataclasses import dataclass

INVITATION_TOKEN_BYTES = 32
PUBLIC_TOKEN_BYTES = 32


@dataclass(frozen=True)
class TokenPair:
    """Raw secret plus its one-way hash."""

    raw: str  # Returned to the caller once, never persisted
    hashed: str  # Persisted, 64 hex chars


def hash_token(raw_token: str) -> str:
    """
    Hash a raw token for storage or lookup.

    Args:
        raw_token: Raw secret as delivered to the invitee

    Returns:
        Hex-encoded SHA-256 digest
    """
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_invitation_token() -> TokenPair:
    """
    Generate a high-entropy invitation secret and its hash.

    Returns:
        TokenPair with the raw token (64 hex chars) and its SHA-256 hash
    """
    raw = secrets.token_hex(INVITATION_TOKEN_BYTES)
    return TokenPair(raw=raw, hashed=hash_token(raw))


def verify_token(raw_token: str, token_hash: str) -> bool:
    """Constant-time comparison of a raw token against a stored hash."""
    return hmac.compare_digest(hash_token(raw_token), token_hash)


def generate_public_token() -> str:
    """Generate the token used in a public album URL."""
    return secrets.token_hex(PUBLIC_TOKEN_BYTES)
