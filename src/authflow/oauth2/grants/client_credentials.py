"""Client credentials grant (:rfc:`6749` section 4.4).

No user interaction. The client authenticates to the token endpoint with its
secret (form body or Basic header) or with a signed JWT assertion
(:rfc:`7523`), chosen by ``client_credentials_method``.
"""

from __future__ import annotations

from authflow.exceptions import ConfigurationError
from authflow.models import (
    AccessToken,
    AuthorizationContext,
    ClientCredentialsMethod,
    GrantType,
    OAuth2Config,
)
from authflow.oauth2.assertion import build_client_assertion, decode_assertion_secret
from authflow.oauth2.grants.common import Grant, GrantState


class ClientCredentialsGrant(Grant):
    grant_type = GrantType.CLIENT_CREDENTIALS

    @staticmethod
    def context_for(context_id: str, config: OAuth2Config) -> AuthorizationContext:
        return AuthorizationContext(
            context_id=context_id,
            client_id=config.client_id,
            access_token_url=config.access_token_url,
            authorization_url=None,
        )

    async def get_token(self, context_id: str, config: OAuth2Config) -> AccessToken:
        """Return a valid token for *context_id*, requesting one if needed.

        Raises:
            ConfigurationError: If the token URL or assertion key is missing
                or unusable.
            ProviderError: If the provider reports an error.
            NetworkError: If the token endpoint fails.
        """
        if not config.access_token_url:
            raise ConfigurationError("access_token_url is required for the client_credentials grant")
        context = self.context_for(context_id, config)

        self._transition(context, GrantState.CHECK_CACHE)
        token = await self._store.get_token(context)
        if token is not None and not self._store.is_expired(token):
            self._transition(context, GrantState.CACHED)
            return token

        self._transition(context, GrantState.EXCHANGING_TOKEN)
        if config.client_credentials_method == ClientCredentialsMethod.CLIENT_ASSERTION:
            if not config.client_assertion_secret:
                raise ConfigurationError(
                    "client_assertion_secret is required when client_credentials_method "
                    "is client_assertion"
                )
            secret = decode_assertion_secret(
                config.client_assertion_secret, config.client_assertion_secret_base64
            )
            assertion = build_client_assertion(
                client_id=config.client_id,
                access_token_url=config.access_token_url,
                secret=secret,
                algorithm=config.client_assertion_algorithm,
                key_format=config.client_assertion_key_format,
            )
            response = await self._fetcher.fetch_access_token(
                grant_type="client_credentials",
                access_token_url=config.access_token_url,
                client_id=config.client_id,
                scope=config.scope,
                audience=config.audience,
                client_assertion=assertion,
            )
        else:
            response = await self._fetcher.fetch_access_token(
                grant_type="client_credentials",
                access_token_url=config.access_token_url,
                client_id=config.client_id,
                scope=config.scope,
                audience=config.audience,
                client_secret=config.client_secret,
                credentials_in_body=config.credentials_in_body,
            )

        token = await self._store.store_token(context, response, config.token_name)
        self._transition(context, GrantState.CACHED)
        return token
