"""Pieces shared by the grant engines: URL handling, code extraction, refresh."""

from __future__ import annotations

import enum
import logging
from typing import Optional
from urllib.parse import parse_qsl, urlsplit

import httpx

from authflow.auth.token_store import TokenStore
from authflow.exceptions import ConfigurationError, NetworkError, ProviderError
from authflow.models import AccessToken, AuthorizationContext, GrantType, OAuth2Config
from authflow.oauth2.browser import BrowserAuthorizer
from authflow.oauth2.fetcher import TokenFetcher

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}


class GrantState(str, enum.Enum):
    """Steps a grant moves through; logged at debug level."""

    CHECK_CACHE = "check_cache"
    CACHED = "cached"
    NEEDS_AUTHORIZATION = "needs_authorization"
    EXCHANGING_TOKEN = "exchanging_token"


def parse_authorization_url(raw: Optional[str]) -> httpx.URL:
    """Parse the configured authorization URL.

    Raises:
        ConfigurationError: Unless *raw* is an absolute http(s) URL with a host.
    """
    try:
        url = httpx.URL(raw or "")
    except (httpx.InvalidURL, TypeError, ValueError) as exc:
        raise ConfigurationError(f'Invalid authorization URL "{raw}"') from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(f'Invalid authorization URL "{raw}"')
    return url


def set_params(url: httpx.URL, **params: Optional[str]) -> httpx.URL:
    """Return *url* with each non-empty param set, replacing existing values."""
    for name, value in params.items():
        if value:
            url = url.copy_set_param(name, value)
    return url


def _parse_url(value: str) -> Optional[httpx.URL]:
    try:
        return httpx.URL(value)
    except (httpx.InvalidURL, TypeError, ValueError):
        return None


def _normalized(url: httpx.URL) -> tuple[str, str, Optional[int], str]:
    scheme = url.scheme.lower()
    port = url.port if url.port is not None else _DEFAULT_PORTS.get(scheme)
    path = url.path.rstrip("/") or "/"
    return scheme, url.host.lower(), port, path


def url_matches_redirect(url: str, redirect_uri: Optional[str]) -> bool:
    """Whether *url* points at *redirect_uri* (scheme, host, port and path).

    Default ports and a trailing slash are ignored. Without a redirect URI
    every URL matches.
    """
    if not redirect_uri:
        return True
    candidate = _parse_url(url)
    expected = _parse_url(redirect_uri)
    if candidate is None or expected is None:
        return False
    return _normalized(candidate) == _normalized(expected)


def _raise_for_error(params: dict[str, str]) -> None:
    error = params.get("error")
    if error:
        description = params.get("error_description")
        suffix = f" ({description})" if description else ""
        raise ProviderError(f"Failed to authorize: {error}{suffix}")


def split_callback_url(url: str) -> tuple[dict[str, str], dict[str, str]]:
    """Return the ``(query, fragment)`` parameters of a callback URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return {}, {}
    return dict(parse_qsl(parts.query)), dict(parse_qsl(parts.fragment))


def extract_code(url: str, redirect_uri: Optional[str]) -> Optional[str]:
    """Return the authorization code carried by *url*, or ``None``.

    URLs that do not match *redirect_uri* are ignored. The code is looked
    up in the query first, then in the fragment.

    Raises:
        ProviderError: If the matching URL carries an ``error`` parameter.
    """
    if not url_matches_redirect(url, redirect_uri):
        return None
    query, fragment = split_callback_url(url)
    _raise_for_error(query)
    if query.get("code"):
        return query["code"]
    _raise_for_error(fragment)
    return fragment.get("code") or None


def token_response_from_fragment(url: str, token_name: str) -> Optional[dict[str, str]]:
    """Return the fragment parameters of *url* if they carry *token_name*."""
    query, fragment = split_callback_url(url)
    _raise_for_error(query)
    _raise_for_error(fragment)
    if not fragment.get(token_name):
        return None
    return fragment


def token_response_from_callback(url: str, token_name: str) -> dict[str, str]:
    """Read an implicit-grant response from a callback URL, fragment first then query.

    Raises:
        ProviderError: On an ``error`` parameter or when *token_name* is missing.
    """
    query, fragment = split_callback_url(url)
    _raise_for_error(query)
    _raise_for_error(fragment)
    response = {**query, **fragment}
    if not response.get(token_name):
        raise ProviderError(f"No {token_name} found in callback URL")
    return response


async def get_or_refresh_access_token(
    store: TokenStore,
    fetcher: TokenFetcher,
    context: AuthorizationContext,
    *,
    access_token_url: str,
    client_id: str,
    client_secret: Optional[str] = None,
    scope: Optional[str] = None,
    audience: Optional[str] = None,
    credentials_in_body: bool = False,
    token_name: str = "access_token",
    force_refresh: bool = False,
) -> Optional[AccessToken]:
    """Return a usable cached token, refreshing an expired one when possible.

    Returns ``None`` when a new authorization round is needed: nothing is
    cached, the token expired without a refresh token, or the provider
    rejected the refresh with a 401 (the stale token is deleted).
    """
    token = await store.get_token(context)
    if token is None:
        return None
    if not force_refresh and not store.is_expired(token):
        return token
    if not token.refresh_token:
        return None

    logger.info("Refreshing access token for context %s", context.context_id)
    try:
        response = await fetcher.refresh_access_token(
            access_token_url=access_token_url,
            client_id=client_id,
            refresh_token=token.refresh_token,
            scope=scope,
            audience=audience,
            client_secret=client_secret,
            credentials_in_body=credentials_in_body,
        )
    except NetworkError as exc:
        if exc.status_code == 401:
            logger.info("Refresh token rejected; discarding cached token")
            await store.delete_token(context)
            return None
        raise
    return await store.store_token(context, response, token_name)


class Grant:
    """Base for the grant engines.

    Args:
        store: Token cache.
        fetcher: Token endpoint client.
        browser: Browser orchestration (unused by non-interactive grants).
    """

    grant_type: GrantType

    def __init__(
        self,
        store: TokenStore,
        fetcher: TokenFetcher,
        browser: BrowserAuthorizer,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._browser = browser

    def _transition(self, context: AuthorizationContext, state: GrantState) -> None:
        logger.debug("%s [%s] -> %s", self.grant_type.value, context.context_id, state.value)

    @staticmethod
    def context_for(context_id: str, config: OAuth2Config) -> AuthorizationContext:
        """Return the cache slot this grant uses for *context_id*."""
        raise NotImplementedError

    async def get_token(self, context_id: str, config: OAuth2Config) -> AccessToken:
        raise NotImplementedError
