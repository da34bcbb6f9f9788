"""Unit tests for auth/tokens.py -- JWT issue and verification.

Covers:
- issued tokens carry subject, type and expiry
- expiry boundary: valid at T-1s, expired at T and T+1s (injected clock)
- tokens signed with another secret never verify
- tampering, algorithm substitution ("none", HS512) and garbage input
- missing claims and wrong token type are Malformed
- every issued token is unique (jti), and the secret never shows in repr
"""

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.tokens import (
    ACCESS,
    REFRESH,
    ExpiredToken,
    InvalidSignature,
    MalformedToken,
    TokenCodec,
)

SECRET_A = "a" * 32 + "-first-signing-secret"
SECRET_B = "b" * 32 + "-other-signing-secret"
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


class TestIssueAndVerify:
    def test_round_trip_claims(self) -> None:
        codec = TokenCodec(SECRET_A, clock=FakeClock(T0))
        token = codec.issue("principal-1", 900)
        claims = codec.verify(token)
        assert claims.subject == "principal-1"
        assert claims.token_type == ACCESS
        assert claims.expiry == T0 + timedelta(seconds=900)
        assert claims.issued_at == T0
        assert claims.token_id

    def test_refresh_type_round_trip(self) -> None:
        codec = TokenCodec(SECRET_A)
        token = codec.issue("principal-1", timedelta(days=7), REFRESH)
        assert codec.verify(token, expected_type=REFRESH).token_type == REFRESH

    def test_tokens_are_unique(self) -> None:
        codec = TokenCodec(SECRET_A, clock=FakeClock(T0))
        assert codec.issue("p", 60) != codec.issue("p", 60)

    def test_unknown_token_type_rejected_on_issue(self) -> None:
        with pytest.raises(ValueError):
            TokenCodec(SECRET_A).issue("p", 60, "session")


class TestExpiry:
    def test_valid_just_before_expiry(self) -> None:
        clock = FakeClock(T0)
        codec = TokenCodec(SECRET_A, clock=clock)
        token = codec.issue("p", 60)
        clock.now = T0 + timedelta(seconds=59)
        assert codec.verify(token).subject == "p"

    def test_expired_at_and_after_expiry(self) -> None:
        clock = FakeClock(T0)
        codec = TokenCodec(SECRET_A, clock=clock)
        token = codec.issue("p", 60)
        clock.now = T0 + timedelta(seconds=60)
        with pytest.raises(ExpiredToken):
            codec.verify(token)
        clock.now = T0 + timedelta(seconds=61)
        with pytest.raises(ExpiredToken):
            codec.verify(token)

    def test_sub_second_issue_time_truncates_expiry(self) -> None:
        """exp is whole seconds: issued at T0+0.9s with ttl 60, it expires at T0+60s."""
        clock = FakeClock(T0 + timedelta(milliseconds=900))
        codec = TokenCodec(SECRET_A, clock=clock)
        token = codec.issue("p", 60)
        assert codec.verify(token).expiry == T0 + timedelta(seconds=60)
        clock.now = T0 + timedelta(seconds=59, milliseconds=900)
        assert codec.verify(token).subject == "p"
        clock.now = T0 + timedelta(seconds=60)
        with pytest.raises(ExpiredToken):
            codec.verify(token)

    def test_signature_checked_before_expiry(self) -> None:
        """An expired token under the wrong key reports the signature, not the expiry."""
        past = TokenCodec(SECRET_A, clock=FakeClock(T0)).issue("p", 60)
        with pytest.raises(InvalidSignature):
            TokenCodec(SECRET_B, clock=FakeClock(T0 + timedelta(days=1))).verify(past)


class TestSignature:
    def test_other_secret_never_verifies(self) -> None:
        token = TokenCodec(SECRET_A).issue("p", 60)
        with pytest.raises(InvalidSignature):
            TokenCodec(SECRET_B).verify(token)

    def test_tampered_payload_rejected(self) -> None:
        codec = TokenCodec(SECRET_A, clock=FakeClock(T0))
        header, _payload, signature = codec.issue("victim", 60).split(".")
        forged = _b64({"sub": "attacker", "typ": "access", "exp": int(T0.timestamp()) + 60})
        with pytest.raises(InvalidSignature):
            codec.verify(f"{header}.{forged}.{signature}")

    def test_alg_none_rejected(self) -> None:
        codec = TokenCodec(SECRET_A, clock=FakeClock(T0))
        header = _b64({"alg": "none", "typ": "JWT"})
        payload = _b64({"sub": "p", "typ": "access", "exp": int(T0.timestamp()) + 60})
        with pytest.raises(InvalidSignature):
            codec.verify(f"{header}.{payload}.")

    def test_other_algorithm_with_same_secret_rejected(self) -> None:
        codec = TokenCodec(SECRET_A, clock=FakeClock(T0))
        token = jwt.encode(
            {"sub": "p", "typ": "access", "exp": int(T0.timestamp()) + 60},
            SECRET_A,
            algorithm="HS512",
        )
        with pytest.raises(InvalidSignature):
            codec.verify(token)


class TestMalformed:
    @pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b", "a.b.c", "....."])
    def test_structurally_invalid(self, garbage: str) -> None:
        with pytest.raises(MalformedToken):
            TokenCodec(SECRET_A).verify(garbage)

    def test_missing_subject(self) -> None:
        codec = TokenCodec(SECRET_A, clock=FakeClock(T0))
        token = jwt.encode({"typ": "access", "exp": int(T0.timestamp()) + 60}, SECRET_A, algorithm="HS256")
        with pytest.raises(MalformedToken):
            codec.verify(token)

    def test_missing_expiry(self) -> None:
        codec = TokenCodec(SECRET_A, clock=FakeClock(T0))
        token = jwt.encode({"sub": "p", "typ": "access"}, SECRET_A, algorithm="HS256")
        with pytest.raises(MalformedToken):
            codec.verify(token)

    def test_wrong_token_type(self) -> None:
        codec = TokenCodec(SECRET_A)
        refresh = codec.issue("p", 60, REFRESH)
        with pytest.raises(MalformedToken):
            codec.verify(refresh, expected_type=ACCESS)


class TestSecretHandling:
    def test_short_secret_rejected(self) -> None:
        with pytest.raises(ValueError):
            TokenCodec("too-short")

    def test_repr_hides_secret(self) -> None:
        assert SECRET_A not in repr(TokenCodec(SECRET_A))
