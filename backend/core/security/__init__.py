"""
Security utilities for capability tokens.
"""

from .tokens import (
    TokenPair,
    generate_invitation_token,
    generate_public_token,
    hash_token,
    verify_token,
)

__all__ = [
    "TokenPair",
    "generate_invitation_token",
    "generate_public_token",
    "hash_token",
    "verify_token",
]
