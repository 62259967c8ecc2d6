"""Tests for authflow.oauth2.plugin -- the ``oauth2`` auth plugin."""

from __future__ import annotations

import asyncio
import base64
import gc

import httpx
import pytest

from authflow.auth.token_store import MemoryKeyValueStore, TokenStore
from authflow.exceptions import ConfigurationError, NetworkError
from authflow.oauth2.browser import BrowserAuthorizer
from authflow.oauth2.callback_server import AuthCallbackManager
from authflow.oauth2.fetcher import TokenFetcher
from authflow.oauth2.plugin import OAuth2Plugin

TOKEN_URL = "https://auth.example.com/token"

CLIENT_CREDENTIALS = {
    "grant_type": "client_credentials",
    "client_id": "cid",
    "client_secret": "sec",
    "access_token_url": TOKEN_URL,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _SlowEndpoint:
    """Token endpoint that answers after a short delay, issuing numbered tokens."""

    def __init__(self, status: int = 200, delay: float = 0.05) -> None:
        self.status = status
        self.delay = delay
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        await asyncio.sleep(self.delay)
        if self.status != 200:
            return httpx.Response(self.status, text="unavailable")
        return httpx.Response(
            200, json={"access_token": f"tok{len(self.requests)}", "expires_in": 3600}
        )


def _plugin(window_host, toast_host, settings, clock, endpoint) -> tuple[OAuth2Plugin, TokenStore]:
    tokens = TokenStore(MemoryKeyValueStore(), clock=clock)
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    browser = BrowserAuthorizer(window_host, toast_host, AuthCallbackManager(), settings)
    return OAuth2Plugin(tokens, TokenFetcher(client=client), browser), tokens


# ---------------------------------------------------------------------------
# authenticate / refresh
# ---------------------------------------------------------------------------


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_bearer_header(self, window_host, toast_host, settings, clock) -> None:
        endpoint = _SlowEndpoint(delay=0)
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)

        result = await plugin.authenticate("ctx", CLIENT_CREDENTIALS)

        assert plugin.auth_type == "oauth2"
        assert result.headers == {"Authorization": "Bearer tok1"}
        assert result.params == {}

    @pytest.mark.asyncio
    async def test_custom_header(self, window_host, toast_host, settings, clock) -> None:
        endpoint = _SlowEndpoint(delay=0)
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)

        result = await plugin.authenticate(
            "ctx", {**CLIENT_CREDENTIALS, "header_name": "X-Api-Token", "header_prefix": "Token"}
        )
        assert result.headers == {"X-Api-Token": "Token tok1"}

    @pytest.mark.asyncio
    async def test_empty_prefix(self, window_host, toast_host, settings, clock) -> None:
        endpoint = _SlowEndpoint(delay=0)
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)

        result = await plugin.authenticate("ctx", {**CLIENT_CREDENTIALS, "header_prefix": ""})
        assert result.headers == {"Authorization": "tok1"}

    @pytest.mark.asyncio
    async def test_invalid_config(self, window_host, toast_host, settings, clock) -> None:
        endpoint = _SlowEndpoint(delay=0)
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)

        with pytest.raises(ConfigurationError, match="Invalid OAuth2 configuration"):
            await plugin.authenticate("ctx", {"grant_type": "client_credentials"})
        assert endpoint.requests == []

    @pytest.mark.asyncio
    async def test_secret_resolved_from_env(
        self, window_host, toast_host, settings, clock, monkeypatch
    ) -> None:
        monkeypatch.setenv("CLIENT_SECRET_FOR_TEST", "from-env")
        endpoint = _SlowEndpoint(delay=0)
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)

        await plugin.authenticate(
            "ctx", {**CLIENT_CREDENTIALS, "client_secret": "env:CLIENT_SECRET_FOR_TEST"}
        )

        expected = base64.b64encode(b"cid:from-env").decode("ascii")
        assert endpoint.requests[0].headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_unset_env_secret(self, window_host, toast_host, settings, clock, monkeypatch) -> None:
        monkeypatch.delenv("CLIENT_SECRET_FOR_TEST", raising=False)
        endpoint = _SlowEndpoint(delay=0)
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)

        with pytest.raises(ConfigurationError, match="CLIENT_SECRET_FOR_TEST"):
            await plugin.authenticate(
                "ctx", {**CLIENT_CREDENTIALS, "client_secret": "env:CLIENT_SECRET_FOR_TEST"}
            )

    @pytest.mark.asyncio
    async def test_refresh_replaces_token(self, window_host, toast_host, settings, clock) -> None:
        endpoint = _SlowEndpoint(delay=0)
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)

        first = await plugin.authenticate("ctx", CLIENT_CREDENTIALS)
        cached = await plugin.authenticate("ctx", CLIENT_CREDENTIALS)
        refreshed = await plugin.refresh("ctx", CLIENT_CREDENTIALS)

        assert first.headers == cached.headers == {"Authorization": "Bearer tok1"}
        assert refreshed.headers == {"Authorization": "Bearer tok2"}
        assert len(endpoint.requests) == 2


# ---------------------------------------------------------------------------
# Concurrent requests
# ---------------------------------------------------------------------------


class TestInFlight:
    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_round(
        self, window_host, toast_host, settings, clock
    ) -> None:
        endpoint = _SlowEndpoint()
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)

        results = await asyncio.gather(
            plugin.authenticate("ctx", CLIENT_CREDENTIALS),
            plugin.authenticate("ctx", CLIENT_CREDENTIALS),
            plugin.authenticate("ctx", CLIENT_CREDENTIALS),
        )

        assert len(endpoint.requests) == 1
        assert {r.headers["Authorization"] for r in results} == {"Bearer tok1"}

    @pytest.mark.asyncio
    async def test_different_contexts_run_separately(
        self, window_host, toast_host, settings, clock
    ) -> None:
        endpoint = _SlowEndpoint()
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)

        await asyncio.gather(
            plugin.authenticate("one", CLIENT_CREDENTIALS),
            plugin.authenticate("two", CLIENT_CREDENTIALS),
        )
        assert len(endpoint.requests) == 2

    @pytest.mark.asyncio
    async def test_failure_reaches_every_caller(self, window_host, toast_host, settings, clock) -> None:
        endpoint = _SlowEndpoint(status=503)
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)

        results = await asyncio.gather(
            plugin.authenticate("ctx", CLIENT_CREDENTIALS),
            plugin.authenticate("ctx", CLIENT_CREDENTIALS),
            return_exceptions=True,
        )

        assert all(isinstance(r, NetworkError) for r in results)
        assert len(endpoint.requests) == 1

        # A later call starts a fresh round.
        endpoint.status = 200
        result = await plugin.authenticate("ctx", CLIENT_CREDENTIALS)
        assert result.headers["Authorization"] == "Bearer tok2"

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_round(
        self, window_host, toast_host, settings, clock
    ) -> None:
        endpoint = _SlowEndpoint(delay=0.1)
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)

        impatient = asyncio.ensure_future(plugin.authenticate("ctx", CLIENT_CREDENTIALS))
        patient = asyncio.ensure_future(plugin.authenticate("ctx", CLIENT_CREDENTIALS))
        await asyncio.sleep(0.01)
        impatient.cancel()

        result = await patient
        assert result.headers["Authorization"] == "Bearer tok1"
        assert impatient.cancelled()
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_abandoned_round_failure_is_not_reported(
        self, window_host, toast_host, settings, clock
    ) -> None:
        endpoint = _SlowEndpoint(status=503, delay=0.05)
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)
        loop = asyncio.get_running_loop()
        reports: list[dict] = []
        loop.set_exception_handler(lambda _loop, context: reports.append(context))
        try:
            caller = asyncio.ensure_future(plugin.authenticate("ctx", CLIENT_CREDENTIALS))
            await asyncio.sleep(0.01)
            caller.cancel()
            with pytest.raises(asyncio.CancelledError):
                await caller
            await asyncio.sleep(0.1)

            assert plugin._in_flight == {}
            del caller
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert len(endpoint.requests) == 1
        assert not [r for r in reports if "never retrieved" in r.get("message", "")]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class TestActions:
    @pytest.mark.asyncio
    async def test_get_and_delete_token(self, window_host, toast_host, settings, clock) -> None:
        endpoint = _SlowEndpoint(delay=0)
        plugin, _ = _plugin(window_host, toast_host, settings, clock, endpoint)

        assert await plugin.get_token("ctx", CLIENT_CREDENTIALS) is None
        await plugin.authenticate("ctx", CLIENT_CREDENTIALS)

        token = await plugin.get_token("ctx", CLIENT_CREDENTIALS)
        assert token is not None
        assert token.access_token == "tok1"

        assert await plugin.delete_token("ctx", CLIENT_CREDENTIALS) is True
        assert await plugin.delete_token("ctx", CLIENT_CREDENTIALS) is False
        assert await plugin.get_token("ctx", CLIENT_CREDENTIALS) is None

    @pytest.mark.asyncio
    async def test_get_token_returns_expired_token(self, window_host, toast_host, settings, clock) -> None:
        endpoint = _SlowEndpoint(delay=0)
        plugin, tokens = _plugin(window_host, toast_host, settings, clock, endpoint)

        await plugin.authenticate("ctx", CLIENT_CREDENTIALS)
        clock.advance(7200)

        token = await plugin.get_token("ctx", CLIENT_CREDENTIALS)
        assert token is not None
        assert tokens.is_expired(token)
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_clear_window_session(self, window_host, toast_host, settings, clock) -> None:
        endpoint = _SlowEndpoint(delay=0)
        plugin, tokens = _plugin(window_host, toast_host, settings, clock, endpoint)

        before = await tokens.get_data_dir_key("ctx")
        await plugin.clear_window_session("ctx")
        after = await tokens.get_data_dir_key("ctx")

        assert before != after
        assert await tokens.get_data_dir_key("other") != after

    def test_context_for_dict(self, window_host, toast_host, settings, clock) -> None:
        plugin, _ = _plugin(window_host, toast_host, settings, clock, _SlowEndpoint())
        context = plugin.context_for("ctx", CLIENT_CREDENTIALS)
        assert context.context_id == "ctx"
        assert context.access_token_url == TOKEN_URL
        assert context.authorization_url is None


# ---------------------------------------------------------------------------
# validate_config
# ---------------------------------------------------------------------------


class TestValidateConfig:
    @pytest.fixture()
    def plugin(self, window_host, toast_host, settings, clock) -> OAuth2Plugin:
        return _plugin(window_host, toast_host, settings, clock, _SlowEndpoint())[0]

    def test_valid(self, plugin: OAuth2Plugin) -> None:
        assert plugin.validate_config(CLIENT_CREDENTIALS) == []

    def test_authorization_code_needs_urls(self, plugin: OAuth2Plugin) -> None:
        errors = plugin.validate_config({"grant_type": "authorization_code", "client_id": "cid"})
        assert errors == [
            'Invalid authorization URL "None"',
            "access_token_url is required for the authorization_code grant",
        ]

    def test_implicit_does_not_need_token_url(self, plugin: OAuth2Plugin) -> None:
        errors = plugin.validate_config(
            {
                "grant_type": "implicit",
                "client_id": "cid",
                "authorization_url": "auth.example.com/authorize",
            }
        )
        assert errors == []

    def test_client_assertion(self, plugin: OAuth2Plugin) -> None:
        errors = plugin.validate_config(
            {
                **CLIENT_CREDENTIALS,
                "client_credentials_method": "client_assertion",
                "client_assertion_algorithm": "XX999",
            }
        )
        assert errors == [
            "client_assertion_secret is required for client_assertion",
            "Unsupported client assertion algorithm 'XX999'",
        ]

    def test_unparseable(self, plugin: OAuth2Plugin) -> None:
        errors = plugin.validate_config({"grant_type": "password", "client_id": "cid"})
        assert len(errors) == 1
        assert errors[0].startswith("Invalid OAuth2 configuration")
