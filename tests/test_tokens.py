"""Unit tests for auth/tokens.py -- password hashing and access-token signing.

Covers:
- bcrypt hash/verify, including fail-closed behaviour on malformed digests
- the 72-byte bcrypt limit is counted in UTF-8 bytes
- create_access_token() / decode_access_token() round trip
- exp claim == issue time + configured TTL
- expired, tampered, foreign-key, and subject-less tokens are rejected
- opaque token generation
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import InvalidToken, PasswordTooLong, TokenExpired
from auth.tokens import (
    create_access_token,
    decode_access_token,
    generate_opaque_token,
    hash_password,
    verify_password,
)
from core.config import get_settings


class TestPasswordHashing:
    def test_hash_is_not_plaintext_and_verifies(self) -> None:
        digest = hash_password("correct horse battery staple")
        assert digest != "correct horse battery staple"
        assert digest.startswith("$2")
        assert verify_password("correct horse battery staple", digest)

    def test_wrong_password_rejected(self) -> None:
        digest = hash_password("s3cret-pass")
        assert not verify_password("s3cret-pasS", digest)

    def test_same_password_gets_distinct_salts(self) -> None:
        assert hash_password("repeat-me") != hash_password("repeat-me")

    @pytest.mark.parametrize("digest", ["", "not-a-bcrypt-hash", "$2b$12$short"])
    def test_malformed_digest_fails_closed(self, digest: str) -> None:
        """A corrupt stored hash must read as 'no match', never as an exception."""
        assert verify_password("anything", digest) is False

    def test_multibyte_password_over_72_bytes_rejected(self) -> None:
        """72 characters but 144 bytes: too long for bcrypt, so never hashed."""
        with pytest.raises(PasswordTooLong):
            hash_password("é" * 72)

    def test_multibyte_password_within_72_bytes_accepted(self) -> None:
        digest = hash_password("é" * 36)
        assert verify_password("é" * 36, digest)
        assert not verify_password("é" * 37, digest)


class TestAccessTokens:
    def test_round_trip_returns_subject(self) -> None:
        token, _expires_at = create_access_token("alice")
        assert decode_access_token(token) == "alice"

    def test_exp_claim_matches_configured_ttl(self) -> None:
        issued = datetime.now(timezone.utc)
        token, expires_at = create_access_token("alice", now=issued)
        claims = jwt.get_unverified_claims(token)
        expected = issued + timedelta(seconds=get_settings().access_token_expire_seconds)
        assert claims["sub"] == "alice"
        assert claims["exp"] == int(expires_at.timestamp())
        assert abs(expires_at - expected) < timedelta(seconds=1)

    def test_explicit_lifetime_overrides_default(self) -> None:
        issued = datetime.now(timezone.utc)
        _token, expires_at = create_access_token("alice", expire_seconds=30, now=issued)
        assert abs(expires_at - (issued + timedelta(seconds=30))) < timedelta(seconds=1)

    def test_expired_token_raises_token_expired(self) -> None:
        """A token validates until its TTL elapses, then fails with TokenExpired."""
        issued = datetime.now(timezone.utc) - timedelta(hours=1)
        token, _ = create_access_token("alice", expire_seconds=60, now=issued)
        with pytest.raises(TokenExpired):
            decode_access_token(token)

    def test_swapped_signature_is_invalid(self) -> None:
        alice_token, _ = create_access_token("alice")
        bob_token, _ = create_access_token("bob")
        header, payload, _sig = alice_token.split(".")
        forged = ".".join([header, payload, bob_token.split(".")[2]])
        with pytest.raises(InvalidToken):
            decode_access_token(forged)

    def test_token_signed_with_other_key_is_invalid(self) -> None:
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        foreign = jwt.encode({"sub": "alice", "exp": exp}, "x" * 48, algorithm="HS256")
        with pytest.raises(InvalidToken):
            decode_access_token(foreign)

    def test_token_without_subject_is_invalid(self) -> None:
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode({"exp": exp}, get_settings().secret_key, algorithm="HS256")
        with pytest.raises(InvalidToken):
            decode_access_token(token)

    def test_garbage_is_invalid(self) -> None:
        with pytest.raises(InvalidToken):
            decode_access_token("not.a.jwt")


def test_opaque_tokens_are_unique_and_long() -> None:
    tokens = {generate_opaque_token() for _ in range(100)}
    assert len(tokens) == 100
    assert all(len(t) >= 43 for t in tokens)
