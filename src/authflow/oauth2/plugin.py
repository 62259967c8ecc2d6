"""The ``oauth2`` auth plugin.

:class:`OAuth2Plugin` dispatches to the grant engine for the configured
grant type and turns the resulting token into a request header. Concurrent
calls for the same authorization context share one authorization round, so
two requests fired together open one browser window, not two.

Besides :meth:`~OAuth2Plugin.authenticate`, the plugin offers the actions a
host exposes next to the auth settings: reading the cached token, deleting
it, forcing a refresh, and clearing the embedded browser session.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Union

from pydantic import ValidationError

from authflow.auth.base import AuthPlugin, AuthResult
from authflow.auth.token_store import TokenStore
from authflow.config import resolve_secrets
from authflow.exceptions import ConfigurationError, ProviderError
from authflow.models import (
    AccessToken,
    AuthorizationContext,
    ClientCredentialsMethod,
    GrantType,
    OAuth2Config,
)
from authflow.oauth2.assertion import JWT_ALGORITHMS
from authflow.oauth2.browser import BrowserAuthorizer
from authflow.oauth2.fetcher import TokenFetcher
from authflow.oauth2.grants import (
    AuthorizationCodeGrant,
    ClientCredentialsGrant,
    Grant,
    ImplicitGrant,
)
from authflow.oauth2.grants.common import parse_authorization_url

logger = logging.getLogger(__name__)

ConfigLike = Union[OAuth2Config, dict[str, Any]]


def _coerce_config(config: ConfigLike) -> OAuth2Config:
    if isinstance(config, OAuth2Config):
        return config
    try:
        return OAuth2Config.model_validate(config)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid OAuth2 configuration: {exc}") from exc


class OAuth2Plugin(AuthPlugin):
    """Authenticate requests with OAuth2 access tokens.

    Args:
        store: Token cache shared by all grants.
        fetcher: Token endpoint client.
        browser: Browser orchestration for the interactive grants.
    """

    def __init__(
        self,
        store: TokenStore,
        fetcher: TokenFetcher,
        browser: BrowserAuthorizer,
    ) -> None:
        self._store = store
        self._grants: dict[GrantType, Grant] = {
            GrantType.AUTHORIZATION_CODE: AuthorizationCodeGrant(store, fetcher, browser),
            GrantType.IMPLICIT: ImplicitGrant(store, fetcher, browser),
            GrantType.CLIENT_CREDENTIALS: ClientCredentialsGrant(store, fetcher, browser),
        }
        self._in_flight: dict[str, asyncio.Task[AccessToken]] = {}

    @property
    def auth_type(self) -> str:
        return "oauth2"

    def context_for(self, context_id: str, config: ConfigLike) -> AuthorizationContext:
        """Return the cache slot *config* uses for *context_id*."""
        config = _coerce_config(config)
        return self._grants[config.grant_type].context_for(context_id, config)

    async def get_access_token(
        self,
        context_id: str,
        config: ConfigLike,
        force_refresh: bool = False,
    ) -> AccessToken:
        """Return a valid token, running the grant if nothing usable is cached.

        A call that arrives while another is authorizing the same context
        waits for that round instead of starting its own.
        """
        config = resolve_secrets(_coerce_config(config))
        grant = self._grants[config.grant_type]
        key = grant.context_for(context_id, config).store_key

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(grant, context_id, config, force_refresh))
            self._in_flight[key] = task

            def _forget(done: asyncio.Task[AccessToken], key: str = key) -> None:
                if self._in_flight.get(key) is done:
                    del self._in_flight[key]
                # Every caller may have been cancelled; mark the outcome as seen.
                if not done.cancelled():
                    done.exception()

            task.add_done_callback(_forget)
        else:
            logger.debug("Joining in-flight authorization for context %s", context_id)
        return await asyncio.shield(task)

    async def _run(
        self,
        grant: Grant,
        context_id: str,
        config: OAuth2Config,
        force_refresh: bool,
    ) -> AccessToken:
        if isinstance(grant, AuthorizationCodeGrant):
            return await grant.get_token(context_id, config, force_refresh=force_refresh)
        if force_refresh:
            await self._store.delete_token(grant.context_for(context_id, config))
        return await grant.get_token(context_id, config)

    @staticmethod
    def _result_for(token: AccessToken, config: OAuth2Config) -> AuthResult:
        value = token.value(config.token_name)
        if not value:
            raise ProviderError(f"No {config.token_name} available in the current token")
        header_value = f"{config.header_prefix} {value}".strip()
        return AuthResult(headers={config.header_name: header_value})

    async def authenticate(self, context_id: str, config: ConfigLike) -> AuthResult:
        """Return the header carrying the token, e.g. ``Authorization: Bearer <token>``."""
        config = _coerce_config(config)
        token = await self.get_access_token(context_id, config)
        return self._result_for(token, config)

    async def refresh(self, context_id: str, config: ConfigLike) -> AuthResult:
        """Force a new token: refresh grant where possible, otherwise a new round."""
        config = _coerce_config(config)
        token = await self.get_access_token(context_id, config, force_refresh=True)
        return self._result_for(token, config)

    # ------------------------------------------------------------------ #
    # Actions
    # ------------------------------------------------------------------ #

    async def get_token(self, context_id: str, config: ConfigLike) -> Optional[AccessToken]:
        """Return the cached token, expired or not, without authorizing."""
        return await self._store.get_token(self.context_for(context_id, config))

    async def delete_token(self, context_id: str, config: ConfigLike) -> bool:
        """Delete the cached token. Returns ``False`` if there was none."""
        deleted = await self._store.delete_token(self.context_for(context_id, config))
        if deleted:
            logger.info("Deleted cached token for context %s", context_id)
        return deleted

    async def clear_window_session(self, context_id: str) -> None:
        """Forget the embedded browser's cookies for *context_id*."""
        await self._store.reset_data_dir_key(context_id)
        logger.info("Cleared browser session for context %s", context_id)

    def validate_config(self, config: ConfigLike) -> list[str]:
        try:
            cfg = _coerce_config(config)
        except ConfigurationError as exc:
            return [str(exc)]

        errors: list[str] = []
        if cfg.grant_type in (GrantType.AUTHORIZATION_CODE, GrantType.IMPLICIT):
            try:
                parse_authorization_url(cfg.authorization_url)
            except ConfigurationError as exc:
                errors.append(str(exc))
        if cfg.grant_type in (GrantType.AUTHORIZATION_CODE, GrantType.CLIENT_CREDENTIALS):
            if not cfg.access_token_url:
                errors.append(f"access_token_url is required for the {cfg.grant_type.value} grant")
        if cfg.grant_type == GrantType.CLIENT_CREDENTIALS:
            if cfg.client_credentials_method == ClientCredentialsMethod.CLIENT_ASSERTION:
                if not cfg.client_assertion_secret:
                    errors.append("client_assertion_secret is required for client_assertion")
                if cfg.client_assertion_algorithm not in JWT_ALGORITHMS:
                    errors.append(
                        f"Unsupported client assertion algorithm '{cfg.client_assertion_algorithm}'"
                    )
        return errors
