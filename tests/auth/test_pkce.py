"""Tests for PKCE generation and verification.

Covers RFC 7636 S256 behaviour:
- Verifier length bounds and character set
- Deterministic challenge derivation (RFC 7636 Appendix B vector)
- Rejection of any method other than S256
- Authorization server support checks
"""

import re

import pytest

from mcpauth.models.errors import ErrorCode, PKCEError
from mcpauth.models.security import PKCEPair
from mcpauth.primitives.pkce import (
    generate_code_challenge,
    generate_code_verifier,
    generate_pkce,
    is_valid_code_verifier,
    require_s256_support,
    supports_s256,
    verify_code_challenge,
)

RFC_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
RFC_CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"
UNRESERVED = re.compile(r"^[A-Za-z0-9\-._~]+$")


class TestCodeVerifier:
    @pytest.mark.parametrize("length", [43, 64, 100, 128])
    def test_generates_requested_length_with_unreserved_characters(self, length):
        # Act
        verifier = generate_code_verifier(length)

        # Assert
        assert len(verifier) == length
        assert UNRESERVED.match(verifier)

    def test_default_length_is_64(self):
        assert len(generate_code_verifier()) == 64

    @pytest.mark.parametrize("length", [0, 42, 129])
    def test_rejects_out_of_range_length(self, length):
        with pytest.raises(PKCEError) as exc_info:
            generate_code_verifier(length)

        assert exc_info.value.code == ErrorCode.PKCE_INVALID_LENGTH

    def test_verifiers_are_unique(self):
        verifiers = {generate_code_verifier() for _ in range(50)}
        assert len(verifiers) == 50

    def test_is_valid_code_verifier(self):
        assert is_valid_code_verifier(RFC_VERIFIER)
        assert not is_valid_code_verifier("short")
        assert not is_valid_code_verifier("a" * 129)
        assert not is_valid_code_verifier("a" * 42 + "!")


class TestCodeChallenge:
    def test_matches_rfc_7636_example(self):
        """RFC 7636 Appendix B test vector."""
        assert generate_code_challenge(RFC_VERIFIER) == RFC_CHALLENGE

    def test_is_deterministic_and_unpadded(self):
        verifier = generate_code_verifier()

        first = generate_code_challenge(verifier)
        second = generate_code_challenge(verifier)

        assert first == second
        assert "=" not in first
        assert len(first) == 43

    def test_distinct_verifiers_give_distinct_challenges(self):
        challenges = {
            generate_code_challenge(generate_code_verifier()) for _ in range(20)
        }
        assert len(challenges) == 20

    @pytest.mark.parametrize("verifier", ["", "too-short"])
    def test_rejects_short_verifier(self, verifier):
        with pytest.raises(PKCEError) as exc_info:
            generate_code_challenge(verifier)

        assert exc_info.value.code == ErrorCode.PKCE_INVALID_VERIFIER


class TestGeneratePKCE:
    def test_generates_s256_pair(self):
        # Act
        pair = generate_pkce()

        # Assert
        assert isinstance(pair, PKCEPair)
        assert pair.code_challenge_method == "S256"
        assert len(pair.code_verifier) == 64
        assert pair.code_challenge == generate_code_challenge(pair.code_verifier)

    def test_honours_custom_length(self):
        assert len(generate_pkce(100).code_verifier) == 100

    def test_pair_rejects_plain_method(self):
        with pytest.raises(ValueError):
            PKCEPair(
                code_verifier=RFC_VERIFIER,
                code_challenge=RFC_VERIFIER,
                code_challenge_method="plain",
            )


class TestVerifyCodeChallenge:
    def test_accepts_matching_pair(self):
        verifier = generate_code_verifier()
        challenge = generate_code_challenge(verifier)
        assert verify_code_challenge(verifier, challenge, "S256")

    def test_rejects_mismatched_pair(self):
        assert not verify_code_challenge(generate_code_verifier(), RFC_CHALLENGE)

    def test_plain_method_raises(self):
        with pytest.raises(PKCEError) as exc_info:
            verify_code_challenge(RFC_VERIFIER, RFC_VERIFIER, "plain")

        assert exc_info.value.code == ErrorCode.PKCE_INVALID_METHOD

    def test_empty_inputs_fail_verification(self):
        assert verify_code_challenge("", RFC_CHALLENGE) is False
        assert verify_code_challenge(RFC_VERIFIER, "") is False

    def test_short_verifier_fails_verification(self):
        assert verify_code_challenge("short", RFC_CHALLENGE) is False


class TestS256Support:
    def test_supports_s256(self):
        assert supports_s256(["plain", "S256"])
        assert not supports_s256(["plain"])
        assert not supports_s256([])

    def test_absent_method_list_is_not_supported(self):
        assert not supports_s256(None)

    def test_require_s256_support_raises_when_missing(self):
        with pytest.raises(PKCEError) as exc_info:
            require_s256_support(None)

        assert exc_info.value.code == ErrorCode.PKCE_NOT_SUPPORTED

    def test_require_s256_support_passes(self):
        require_s256_support(["S256"])
