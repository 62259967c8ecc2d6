"""Authorization code grant, with optional PKCE (:rfc:`6749` section 4.1, :rfc:`7636`)."""

from __future__ import annotations

import logging

from authflow.exceptions import ConfigurationError, ProviderError
from authflow.models import AccessToken, AuthorizationContext, GrantType, OAuth2Config
from authflow.oauth2.grants.common import (
    Grant,
    GrantState,
    extract_code,
    get_or_refresh_access_token,
    parse_authorization_url,
    set_params,
)
from authflow.oauth2.pkce import code_challenge, generate_pkce

logger = logging.getLogger(__name__)


class AuthorizationCodeGrant(Grant):
    """Obtains a code through the browser and exchanges it for a token.

    A cached token is reused while valid. An expired one is refreshed when
    it has a refresh token; otherwise, or when the refresh is rejected, the
    user goes through the browser again.
    """

    grant_type = GrantType.AUTHORIZATION_CODE

    @staticmethod
    def context_for(context_id: str, config: OAuth2Config) -> AuthorizationContext:
        return AuthorizationContext(
            context_id=context_id,
            client_id=config.client_id,
            access_token_url=config.access_token_url,
            authorization_url=config.authorization_url,
        )

    async def get_token(
        self, context_id: str, config: OAuth2Config, force_refresh: bool = False
    ) -> AccessToken:
        """Return a valid token for *context_id*, authorizing if needed.

        Raises:
            ConfigurationError: If a URL is missing or malformed. Raised
                before any browser or network activity.
            UserCancelledError: If the user closes the embedded window.
            ProviderError: If the provider reports an error.
            NetworkError: If the token endpoint fails.
        """
        if not config.access_token_url:
            raise ConfigurationError("access_token_url is required for the authorization_code grant")
        context = self.context_for(context_id, config)

        self._transition(context, GrantState.CHECK_CACHE)
        token = await get_or_refresh_access_token(
            self._store,
            self._fetcher,
            context,
            access_token_url=config.access_token_url,
            client_id=config.client_id,
            client_secret=config.client_secret,
            scope=config.scope,
            credentials_in_body=config.credentials_in_body,
            token_name=config.token_name,
            force_refresh=force_refresh,
        )
        if token is not None:
            self._transition(context, GrantState.CACHED)
            return token

        self._transition(context, GrantState.NEEDS_AUTHORIZATION)
        url = parse_authorization_url(config.authorization_url)
        url = set_params(
            url,
            response_type="code",
            client_id=config.client_id,
            scope=config.scope,
            state=config.state,
            audience=config.audience,
        )
        pkce = None
        if config.use_pkce:
            pkce = generate_pkce(config.pkce_challenge_method, config.pkce_code_verifier)
            url = set_params(
                url,
                code_challenge=code_challenge(pkce.code_verifier, pkce.challenge_method),
                code_challenge_method=pkce.challenge_method.value,
            )

        if config.external_browser.use_external_browser:
            result = await self._browser.authorize_external(
                url, config.external_browser, config.redirect_uri
            )
            # The listener only ever receives its own callback, so no redirect matching.
            code = extract_code(result.callback_url, None)
            if not code:
                raise ProviderError("No authorization code found in callback URL")
            redirect_uri = result.redirect_uri
        else:
            url = set_params(url, redirect_uri=config.redirect_uri)
            data_dir_key = await self._store.get_data_dir_key(context_id)
            code = await self._browser.authorize_embedded(
                url,
                data_dir_key,
                lambda navigated: extract_code(navigated, config.redirect_uri),
            )
            redirect_uri = config.redirect_uri
        logger.info("Authorization code received")

        self._transition(context, GrantState.EXCHANGING_TOKEN)
        params = [("code", code)]
        if pkce is not None:
            params.append(("code_verifier", pkce.code_verifier))
        if redirect_uri:
            params.append(("redirect_uri", redirect_uri))
        response = await self._fetcher.fetch_access_token(
            grant_type="authorization_code",
            access_token_url=config.access_token_url,
            client_id=config.client_id,
            params=params,
            scope=config.scope,
            audience=config.audience,
            client_secret=config.client_secret,
            credentials_in_body=config.credentials_in_body,
        )
        token = await self._store.store_token(context, response, config.token_name)
        self._transition(context, GrantState.CACHED)
        return token
