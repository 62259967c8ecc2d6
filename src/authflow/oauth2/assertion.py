"""Signed JWT client assertions for token-endpoint authentication (:rfc:`7523`).

The signing key is one of three tagged variants:

- :class:`JwkKey` -- a private key as a JSON Web Key object.
- :class:`PemKey` -- a PEM-encoded private key.
- :class:`HmacSecret` -- a shared secret for the ``HS*`` algorithms.

:func:`parse_signing_key` builds the variant from the configured secret and
:class:`~authflow.models.KeyFormat`. ``KeyFormat.AUTO`` sniffs the secret's
shape, which is ambiguous for some inputs, so configurations should name the
format explicitly.

Signing uses PyJWT; PEM keys are loaded with ``cryptography``.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from authflow.exceptions import ConfigurationError
from authflow.models import KeyFormat

JWT_ALGORITHMS = (
    "HS256",
    "HS384",
    "HS512",
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
    "ES256",
    "ES384",
    "ES512",
    "none",
)
DEFAULT_JWT_ALGORITHM = JWT_ALGORITHMS[0]

ASSERTION_LIFETIME_SECONDS = 300
CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


@dataclass(frozen=True)
class JwkKey:
    jwk: dict[str, Any] = field(repr=False)
    kid: Optional[str] = None


@dataclass(frozen=True)
class PemKey:
    pem: str = field(repr=False)


@dataclass(frozen=True)
class HmacSecret:
    secret: bytes = field(repr=False)


SigningKey = Union[JwkKey, PemKey, HmacSecret]


def is_hmac_algorithm(algorithm: str) -> bool:
    """``HS*`` and ``none`` take a raw secret rather than a private key."""
    return algorithm.startswith("HS") or algorithm == "none"


def decode_assertion_secret(secret: str, base64_encoded: bool) -> str:
    """Undo the optional base64 wrapping of a configured assertion secret."""
    if not base64_encoded:
        return secret
    try:
        return base64.b64decode(secret.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ConfigurationError(
            "Client Assertion secret is marked as base64 but could not be decoded"
        ) from exc


def _parse_jwk(text: str) -> JwkKey:
    try:
        jwk = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            "Client Assertion secret looks like JSON but is not valid"
        ) from exc
    if not isinstance(jwk, dict):
        raise ConfigurationError("Client Assertion JWK must be a JSON object")
    kid = jwk.get("kid")
    return JwkKey(jwk=jwk, kid=str(kid) if kid else None)


def parse_signing_key(
    secret: Union[str, bytes],
    algorithm: str,
    key_format: Union[str, KeyFormat] = KeyFormat.AUTO,
) -> SigningKey:
    """Classify *secret* as a JWK, a PEM key, or an HMAC secret.

    Args:
        secret: The configured secret, already base64-decoded if needed.
        algorithm: One of :data:`JWT_ALGORITHMS`.
        key_format: Explicit format, or ``auto`` to sniff: HMAC algorithms
            use the raw secret, ``{`` starts a JWK, ``-----`` starts a PEM.

    Raises:
        ConfigurationError: If the algorithm is unknown, or the secret does
            not fit the algorithm or format.
    """
    if algorithm not in JWT_ALGORITHMS:
        raise ConfigurationError(
            f"Unsupported client assertion algorithm '{algorithm}'. "
            f"Supported: {', '.join(JWT_ALGORITHMS)}"
        )
    fmt = KeyFormat(key_format)
    raw = secret if isinstance(secret, bytes) else secret.encode("utf-8")
    text = raw.decode("utf-8", errors="replace")
    trimmed = text.strip()

    if fmt == KeyFormat.AUTO:
        if is_hmac_algorithm(algorithm):
            return HmacSecret(secret=raw)
        if trimmed.startswith("{"):
            return _parse_jwk(trimmed)
        if trimmed.startswith("-----"):
            return PemKey(pem=trimmed)
        raise ConfigurationError(
            "Client Assertion secret must be a JWK JSON object, a PEM-encoded key "
            "(starting with -----), or a raw secret for HMAC algorithms."
        )

    if fmt == KeyFormat.HMAC:
        if not is_hmac_algorithm(algorithm):
            raise ConfigurationError(
                f"An HMAC secret cannot be used with the {algorithm} algorithm"
            )
        return HmacSecret(secret=raw)
    if fmt == KeyFormat.JWK:
        return _parse_jwk(trimmed)
    if is_hmac_algorithm(algorithm):
        raise ConfigurationError(f"A PEM key cannot be used with the {algorithm} algorithm")
    if not trimmed.startswith("-----"):
        raise ConfigurationError("Client Assertion PEM key must start with -----")
    return PemKey(pem=trimmed)


def _signing_material(key: SigningKey, algorithm: str) -> Any:
    if algorithm == "none":
        return None
    if isinstance(key, HmacSecret):
        return key.secret
    if isinstance(key, PemKey):
        try:
            return serialization.load_pem_private_key(key.pem.encode("utf-8"), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise ConfigurationError(f"Could not load Client Assertion PEM key: {exc}") from exc
    try:
        return jwt.PyJWK(key.jwk, algorithm=algorithm).key
    except jwt.PyJWTError as exc:
        raise ConfigurationError(f"Could not load Client Assertion JWK: {exc}") from exc


def build_client_assertion(
    client_id: str,
    access_token_url: str,
    secret: Union[str, bytes],
    algorithm: str = DEFAULT_JWT_ALGORITHM,
    key_format: Union[str, KeyFormat] = KeyFormat.AUTO,
    now: Optional[float] = None,
) -> str:
    """Build a compact signed JWT for the ``client_assertion`` parameter.

    Claims are ``iss`` and ``sub`` (the client id), ``aud`` (the token
    endpoint), ``iat``, ``exp`` five minutes later, and a random ``jti``.
    The header carries ``alg``, ``typ`` and, for a JWK that has one,
    ``kid``.

    Args:
        client_id: OAuth client identifier.
        access_token_url: Token endpoint, used as the audience.
        secret: Key material, see :func:`parse_signing_key`.
        algorithm: One of :data:`JWT_ALGORITHMS`.
        key_format: How to interpret *secret*.
        now: Issue time in epoch seconds. Defaults to the current time.

    Raises:
        ConfigurationError: If the key cannot be parsed or used with
            *algorithm*.
    """
    key = parse_signing_key(secret, algorithm, key_format)
    issued_at = int(now if now is not None else time.time())
    payload = {
        "iss": client_id,
        "sub": client_id,
        "aud": access_token_url,
        "iat": issued_at,
        "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
        "jti": str(uuid.uuid4()),
    }
    headers = {"kid": key.kid} if isinstance(key, JwkKey) and key.kid else None
    material = _signing_material(key, algorithm)
    try:
        return jwt.encode(payload, material, algorithm=algorithm, headers=headers)
    except (jwt.PyJWTError, ValueError, TypeError) as exc:
        raise ConfigurationError(
            f"Could not sign client assertion with {algorithm}: {exc}"
        ) from exc
