"""Canonical Pydantic models shared across all authflow modules.

The models fall into three groups:

**Grant configuration** -- what a host passes in for one authorization:
    :class:`OAuth2Config`, :class:`ExternalBrowserOptions`, and the enums
    :class:`GrantType`, :class:`CallbackType`, :class:`PkceMethod`,
    :class:`ClientCredentialsMethod`, :class:`KeyFormat`.

**Token state** -- what gets cached between requests:
    :class:`AuthorizationContext`, :class:`AccessToken`,
    :class:`PkceParameters`.

**Engine settings** -- :class:`GlobalConfig`, persisted as JSON in the user's
config directory and resolved by :func:`authflow.config.resolve_settings`.
"""

from __future__ import annotations

import enum
import hashlib
import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)

IMPLICIT_RESPONSE_TYPES = ("token", "id_token", "id_token token")
"""Response types accepted by the implicit grant."""


# --- Enums ---


class GrantType(str, enum.Enum):
    """OAuth2 grant types handled by the engine."""

    AUTHORIZATION_CODE = "authorization_code"
    IMPLICIT = "implicit"
    CLIENT_CREDENTIALS = "client_credentials"


class CallbackType(str, enum.Enum):
    """Where the OAuth provider redirects to in the external-browser flow.

    ``LOCALHOST`` redirects straight to the local callback server.
    ``HOSTED`` redirects to a forwarding page that relays the response to the
    local server, for providers whose allow-list cannot include arbitrary
    localhost ports.
    """

    LOCALHOST = "localhost"
    HOSTED = "hosted"


class PkceMethod(str, enum.Enum):
    """PKCE code challenge methods (:rfc:`7636` section 4.2)."""

    S256 = "S256"
    PLAIN = "plain"


class ClientCredentialsMethod(str, enum.Enum):
    """How the client authenticates in the client credentials grant."""

    CLIENT_SECRET = "client_secret"
    CLIENT_ASSERTION = "client_assertion"


class KeyFormat(str, enum.Enum):
    """Encoding of the client assertion signing key.

    ``AUTO`` sniffs the secret (``{`` for JWK, ``-----`` for PEM, anything
    else is a raw HMAC secret) and exists for configurations that predate
    the explicit formats.
    """

    AUTO = "auto"
    JWK = "jwk"
    PEM = "pem"
    HMAC = "hmac"


# --- Grant configuration ---


class ExternalBrowserOptions(BaseModel):
    """Options for running the authorization in the system browser.

    When ``use_external_browser`` is false the host's embedded browser window
    is used instead and the remaining fields are ignored.
    """

    use_external_browser: bool = False
    callback_type: CallbackType = CallbackType.LOCALHOST
    callback_port: Optional[int] = Field(
        default=None,
        ge=0,
        le=65535,
        description="Port for the localhost callback (default from GlobalConfig)",
    )


class OAuth2Config(BaseModel):
    """Arguments for one OAuth2 authorization, as configured on a request.

    Only the fields relevant to ``grant_type`` are consulted. Empty strings
    are normalised to ``None``, and URLs given without a scheme get
    ``https://`` prepended. Secret fields may use the ``env:VAR`` and
    ``file:/path`` sources understood by
    :func:`authflow.config.resolve_credential`.

    Example::

        OAuth2Config(
            grant_type="authorization_code",
            client_id="my-app",
            client_secret="env:MY_APP_SECRET",
            authorization_url="https://auth.example.com/authorize",
            access_token_url="https://auth.example.com/token",
            use_pkce=True,
        )
    """

    model_config = ConfigDict(extra="allow")

    grant_type: GrantType = GrantType.AUTHORIZATION_CODE
    client_id: str
    client_secret: Optional[str] = None
    authorization_url: Optional[str] = None
    access_token_url: Optional[str] = None
    redirect_uri: Optional[str] = None
    scope: Optional[str] = None
    state: Optional[str] = None
    audience: Optional[str] = None
    credentials_in_body: bool = Field(
        default=False,
        description="Send client credentials in the form body instead of a Basic header",
    )
    # PKCE (authorization code only)
    use_pkce: bool = False
    pkce_challenge_method: PkceMethod = PkceMethod.S256
    pkce_code_verifier: Optional[str] = Field(
        default=None, description="Generated when not provided"
    )
    # Implicit
    response_type: str = "token"
    token_name: Literal["access_token", "id_token"] = "access_token"
    # Header applied to the outgoing request
    header_name: str = "Authorization"
    header_prefix: str = "Bearer"
    # Client credentials
    client_credentials_method: ClientCredentialsMethod = ClientCredentialsMethod.CLIENT_SECRET
    client_assertion_secret: Optional[str] = None
    client_assertion_secret_base64: bool = False
    client_assertion_algorithm: str = "HS256"
    client_assertion_key_format: KeyFormat = KeyFormat.AUTO
    external_browser: ExternalBrowserOptions = Field(default_factory=ExternalBrowserOptions)

    @field_validator(
        "client_secret",
        "authorization_url",
        "access_token_url",
        "redirect_uri",
        "scope",
        "state",
        "audience",
        "pkce_code_verifier",
        "client_assertion_secret",
        mode="before",
    )
    @classmethod
    def _empty_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and value == "":
            return None
        return value

    @field_validator("authorization_url", "access_token_url")
    @classmethod
    def _default_scheme(cls, value: Optional[str]) -> Optional[str]:
        if value is None or _SCHEME_RE.match(value):
            return value
        return f"https://{value}"

    @field_validator("response_type")
    @classmethod
    def _check_response_type(cls, value: str) -> str:
        if value not in IMPLICIT_RESPONSE_TYPES:
            raise ValueError(
                f"response_type must be one of {IMPLICIT_RESPONSE_TYPES}, got {value!r}"
            )
        return value


# --- Token state ---


class AuthorizationContext(BaseModel):
    """Identifies one cached-token slot.

    Two authorizations share a token only when all four fields match, so
    changing the client or either endpoint starts from a clean slate.
    """

    model_config = ConfigDict(frozen=True)

    context_id: str
    client_id: str
    access_token_url: Optional[str] = None
    authorization_url: Optional[str] = None

    @property
    def store_key(self) -> str:
        """Stable key-value store key for this context."""
        raw = json.dumps(
            [self.context_id, self.client_id, self.access_token_url, self.authorization_url]
        )
        return "token_" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


class PkceParameters(BaseModel):
    """A PKCE verifier together with the method used to derive its challenge."""

    model_config = ConfigDict(frozen=True)

    code_verifier: str
    challenge_method: PkceMethod = PkceMethod.S256


def _parse_expires_in(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds > 0 else None


class AccessToken(BaseModel):
    """A token obtained from a provider, persisted by :class:`~authflow.auth.token_store.TokenStore`.

    Instances are frozen: a refresh produces a new ``AccessToken`` that
    replaces the stored one wholesale.

    Attributes:
        access_token: The access token. May be ``None`` for an implicit grant
            that only requested an ``id_token``.
        expires_at: ``fetched_at + expires_in``, or ``None`` when the provider
            did not say (the token is then treated as never expiring).
        raw: The provider's full response, kept for display and debugging.
    """

    model_config = ConfigDict(frozen=True)

    access_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    fetched_at: datetime
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_response(cls, response: dict[str, Any], fetched_at: datetime) -> AccessToken:
        """Build a token from a token-endpoint (or fragment) response."""
        expires_in = _parse_expires_in(response.get("expires_in"))
        expires_at = fetched_at + timedelta(seconds=expires_in) if expires_in else None

        def _opt(name: str) -> Optional[str]:
            value = response.get(name)
            return str(value) if value not in (None, "") else None

        return cls(
            access_token=_opt("access_token"),
            token_type=_opt("token_type"),
            expires_at=expires_at,
            scope=_opt("scope"),
            refresh_token=_opt("refresh_token"),
            id_token=_opt("id_token"),
            fetched_at=fetched_at,
            raw=dict(response),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` once ``now`` is past :attr:`expires_at`."""
        if self.expires_at is None:
            return False
        if now is None:
            now = datetime.now(timezone.utc)
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return now > expires

    def value(self, token_name: str = "access_token") -> Optional[str]:
        """Return the token to send: the access token or the id token."""
        if token_name == "id_token":
            return self.id_token
        return self.access_token


# --- Engine settings ---


class GlobalConfig(BaseModel):
    """Engine settings persisted at ``~/.config/authflow/config.json``.

    Loaded by :func:`~authflow.config.load_global_config`; environment
    variables override individual fields, see
    :func:`~authflow.config.resolve_settings`.
    """

    callback_timeout_seconds: float = Field(
        default=300.0, gt=0, description="How long to wait for the OAuth redirect"
    )
    callback_path: str = Field(default="/callback", description="Local callback path")
    default_callback_port: int = Field(
        default=8765,
        ge=0,
        le=65535,
        description="Port for localhost callbacks when none is configured",
    )
    hosted_callback_url: Optional[str] = Field(
        default=None,
        description="Forwarding page for the hosted callback type (must be set to use it)",
    )
    token_request_timeout: float = Field(default=30.0, gt=0)
    user_agent: str = "authflow"

    @field_validator("callback_path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"
