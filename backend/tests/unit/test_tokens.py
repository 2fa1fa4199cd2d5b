"""
Unit tests for capability token helpers.
"""

from core.security.tokens import (
    generate_invitation_token,
    generate_public_token,
    hash_token,
    verify_token,
)


class TestInvitationTokens:
    def test_pair_hash_matches_raw(self):
        pair = generate_invitation_token()

        assert len(pair.raw) == 64
        assert len(pair.hashed) == 64
        assert pair.hashed == hash_token(pair.raw)
        assert pair.raw != pair.hashed

    def test_tokens_are_unique(self):
        assert generate_invitation_token().raw != generate_invitation_token().raw

    def test_verify_token(self):
        pair = generate_invitation_token()

        assert verify_token(pair.raw, pair.hashed)
        assert not verify_token("guess", pair.hashed)


def test_public_token_shape():
    token = generate_public_token()

    assert len(token) == 64
    assert token != generate_public_token()
