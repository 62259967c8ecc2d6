"""Tests for authflow.oauth2.pkce."""

from __future__ import annotations

import pytest

from authflow.exceptions import ConfigurationError
from authflow.models import PkceMethod
from authflow.oauth2.pkce import code_challenge, gen_code_verifier, generate_pkce

# RFC 7636, Appendix B.
RFC_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
RFC_CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


class TestCodeVerifier:
    def test_length_and_alphabet(self) -> None:
        verifier = gen_code_verifier()
        assert len(verifier) == 43
        assert not set(verifier) & set("+/=")

    def test_verifiers_differ(self) -> None:
        assert len({gen_code_verifier() for _ in range(20)}) == 20


class TestCodeChallenge:
    def test_rfc_vector(self) -> None:
        assert code_challenge(RFC_VERIFIER, "S256") == RFC_CHALLENGE

    def test_accepts_enum(self) -> None:
        assert code_challenge(RFC_VERIFIER, PkceMethod.S256) == RFC_CHALLENGE

    @pytest.mark.parametrize("method", ["S256", "plain"])
    def test_deterministic(self, method: str) -> None:
        verifier = gen_code_verifier()
        assert code_challenge(verifier, method) == code_challenge(verifier, method)

    def test_s256_is_url_safe_without_padding(self) -> None:
        for _ in range(50):
            challenge = code_challenge(gen_code_verifier(), "S256")
            assert not set(challenge) & set("+/=")
            assert len(challenge) == 43

    def test_plain_returns_verifier(self) -> None:
        assert code_challenge("abc", "plain") == "abc"

    def test_unknown_method(self) -> None:
        with pytest.raises(ConfigurationError, match="Unsupported PKCE code challenge method: S512"):
            code_challenge("abc", "S512")


class TestGeneratePkce:
    def test_defaults_to_s256(self) -> None:
        params = generate_pkce()
        assert params.challenge_method == PkceMethod.S256
        assert len(params.code_verifier) == 43

    def test_keeps_supplied_verifier(self) -> None:
        params = generate_pkce("plain", verifier=RFC_VERIFIER)
        assert params.code_verifier == RFC_VERIFIER
        assert params.challenge_method == PkceMethod.PLAIN

    def test_unknown_method(self) -> None:
        with pytest.raises(ConfigurationError):
            generate_pkce("md5")
