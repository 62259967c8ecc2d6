"""PKCE verifier and challenge helpers (:rfc:`7636`).

:func:`code_challenge` is a pure function of ``(verifier, method)``; the
grant keeps the verifier and sends it again in the token exchange.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Optional, Union

from authflow.exceptions import ConfigurationError
from authflow.models import PkceMethod, PkceParameters

PKCE_SHA256 = PkceMethod.S256.value
PKCE_PLAIN = PkceMethod.PLAIN.value
DEFAULT_PKCE_METHOD = PKCE_SHA256


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def gen_code_verifier() -> str:
    """Return 32 random bytes encoded as unpadded base64url (43 characters)."""
    return _b64url(secrets.token_bytes(32))


def code_challenge(verifier: str, method: Union[str, PkceMethod] = DEFAULT_PKCE_METHOD) -> str:
    """Derive the code challenge for *verifier*.

    Args:
        verifier: The PKCE code verifier.
        method: ``"S256"`` or ``"plain"``.

    Returns:
        ``verifier`` itself for ``plain``; base64url(SHA256(verifier)) without
        padding for ``S256``.

    Raises:
        ConfigurationError: For any other method.
    """
    method_value = method.value if isinstance(method, PkceMethod) else method
    if method_value == PKCE_PLAIN:
        return verifier
    if method_value == PKCE_SHA256:
        return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    raise ConfigurationError(f"Unsupported PKCE code challenge method: {method_value}")


def generate_pkce(
    method: Union[str, PkceMethod] = DEFAULT_PKCE_METHOD,
    verifier: Optional[str] = None,
) -> PkceParameters:
    """Return a verifier (generated unless given) together with *method*."""
    try:
        challenge_method = PkceMethod(method)
    except ValueError as exc:
        raise ConfigurationError(f"Unsupported PKCE code challenge method: {method}") from exc
    return PkceParameters(
        code_verifier=verifier or gen_code_verifier(),
        challenge_method=challenge_method,
    )
