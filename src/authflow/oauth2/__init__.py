"""OAuth2 client machinery.

Modules, leaves first:

- :mod:`~authflow.oauth2.pkce` -- PKCE verifier/challenge pairs.
- :mod:`~authflow.oauth2.assertion` -- signed JWT client assertions.
- :mod:`~authflow.oauth2.callback_server` -- loopback redirect listener.
- :mod:`~authflow.oauth2.fetcher` -- token endpoint client.
- :mod:`~authflow.oauth2.browser` -- embedded and external browser rounds.
- :mod:`~authflow.oauth2.grants` -- one engine per grant type.
- :mod:`~authflow.oauth2.plugin` -- the ``oauth2`` auth plugin tying it together.
"""
