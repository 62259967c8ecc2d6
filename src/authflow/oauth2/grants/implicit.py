"""Implicit grant (:rfc:`6749` section 4.2).

The token comes straight back in the redirect, normally in the URL fragment,
so there is no exchange step. Implicit tokens carry no refresh token; an
expired one means another browser round.
"""

from __future__ import annotations

import secrets

from authflow.models import AccessToken, AuthorizationContext, GrantType, OAuth2Config
from authflow.oauth2.grants.common import (
    Grant,
    GrantState,
    parse_authorization_url,
    set_params,
    token_response_from_callback,
    token_response_from_fragment,
)

_NONCE_BOUND = 9999999999999


def generate_nonce() -> str:
    return str(secrets.randbelow(_NONCE_BOUND) + 1)


class ImplicitGrant(Grant):
    """Reads the token from the provider's redirect."""

    grant_type = GrantType.IMPLICIT

    @staticmethod
    def context_for(context_id: str, config: OAuth2Config) -> AuthorizationContext:
        return AuthorizationContext(
            context_id=context_id,
            client_id=config.client_id,
            access_token_url=None,
            authorization_url=config.authorization_url,
        )

    async def get_token(self, context_id: str, config: OAuth2Config) -> AccessToken:
        """Return a valid token for *context_id*, authorizing if needed.

        Raises:
            ConfigurationError: If the authorization URL is malformed.
            UserCancelledError: If the user closes the embedded window.
            ProviderError: If the redirect carries an ``error`` or, in the
                external flow, no token.
        """
        context = self.context_for(context_id, config)
        token_name = config.token_name

        self._transition(context, GrantState.CHECK_CACHE)
        token = await self._store.get_token(context)
        if token is not None and not self._store.is_expired(token):
            self._transition(context, GrantState.CACHED)
            return token

        self._transition(context, GrantState.NEEDS_AUTHORIZATION)
        url = parse_authorization_url(config.authorization_url)
        url = set_params(
            url,
            response_type=config.response_type,
            client_id=config.client_id,
            scope=config.scope,
            state=config.state,
            audience=config.audience,
        )
        if "id_token" in config.response_type:
            url = set_params(url, nonce=generate_nonce())

        if config.external_browser.use_external_browser:
            result = await self._browser.authorize_external(
                url, config.external_browser, config.redirect_uri
            )
            response = token_response_from_callback(result.callback_url, token_name)
        else:
            url = set_params(url, redirect_uri=config.redirect_uri)
            data_dir_key = await self._store.get_data_dir_key(context_id)
            response = await self._browser.authorize_embedded(
                url,
                data_dir_key,
                lambda navigated: token_response_from_fragment(navigated, token_name),
            )

        token = await self._store.store_token(context, response, token_name)
        self._transition(context, GrantState.CACHED)
        return token
