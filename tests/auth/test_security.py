import pytest

from mcpauth.models.errors import AuthorizationCallbackError, ErrorCode
from mcpauth.primitives.security import (
    generate_nonce,
    generate_state,
    is_secure_url,
    validate_state,
)


class TestStateParameter:
    def test_generate_state_is_random_hex(self):
        first = generate_state()
        second = generate_state()

        assert len(first) == 64
        assert int(first, 16) >= 0
        assert first != second

    def test_nonce_differs_from_state(self):
        assert generate_nonce() != generate_state()

    def test_matching_state_passes(self):
        state = generate_state()

        validate_state(state, state)

    @pytest.mark.parametrize("actual", [None, "", "forged"])
    def test_mismatched_state_raises(self, actual):
        with pytest.raises(AuthorizationCallbackError) as exc_info:
            validate_state(generate_state(), actual)

        assert exc_info.value.code == ErrorCode.STATE_MISMATCH


class TestSecureUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "https://client.example.com/metadata.json",
            "http://localhost:3000/callback",
            "http://127.0.0.1/cb",
            "http://[::1]:8080/cb",
        ],
    )
    def test_secure_urls(self, url):
        assert is_secure_url(url)

    @pytest.mark.parametrize(
        "url",
        ["http://client.example.com", "ftp://localhost/x", "not a url", ""],
    )
    def test_insecure_urls(self, url):
        assert not is_secure_url(url)
