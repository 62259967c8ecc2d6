"""Token endpoint client.

:class:`TokenFetcher` POSTs a form-urlencoded grant to the token endpoint and
returns the parsed response. It is used by every grant: authorization code
exchange, refresh, and client credentials.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Optional, Sequence
from urllib.parse import parse_qsl, urlencode

import httpx

from authflow.exceptions import NetworkError, ProviderError
from authflow.oauth2.assertion import CLIENT_ASSERTION_TYPE

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "application/x-www-form-urlencoded, application/json"


def parse_token_response(body: str) -> dict[str, Any]:
    """Parse a token response body as JSON, falling back to form encoding."""
    try:
        parsed = json.loads(body)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    return dict(parse_qsl(body, keep_blank_values=True))


def _basic_credentials(client_id: str, client_secret: str) -> str:
    raw = f"{client_id}:{client_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


class TokenFetcher:
    """Performs token-endpoint requests.

    Args:
        client: Shared :class:`httpx.AsyncClient`. When ``None`` a client is
            created for each request and closed afterwards.
        timeout: Request timeout in seconds for self-created clients.
        user_agent: Value of the ``User-Agent`` header.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        user_agent: str = "authflow",
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._user_agent = user_agent

    async def fetch_access_token(
        self,
        *,
        grant_type: str,
        access_token_url: str,
        client_id: str,
        params: Sequence[tuple[str, str]] = (),
        scope: Optional[str] = None,
        audience: Optional[str] = None,
        client_secret: Optional[str] = None,
        client_assertion: Optional[str] = None,
        credentials_in_body: bool = False,
    ) -> dict[str, Any]:
        """Request a token and return the provider's response.

        The client authenticates with *client_assertion* when given,
        otherwise with *client_secret* in the body (``credentials_in_body``)
        or in a Basic ``Authorization`` header.

        Raises:
            NetworkError: If the endpoint is unreachable or answers non-2xx.
            ProviderError: If the response body carries an ``error``.
        """
        form: list[tuple[str, str]] = [("grant_type", grant_type), *params]
        if scope:
            form.append(("scope", scope))
        if audience:
            form.append(("audience", audience))

        headers = {
            "User-Agent": self._user_agent,
            "Accept": ACCEPT_HEADER,
            "Content-Type": "application/x-www-form-urlencoded",
        }
        if client_assertion is not None:
            form.append(("client_id", client_id))
            form.append(("client_assertion_type", CLIENT_ASSERTION_TYPE))
            form.append(("client_assertion", client_assertion))
        elif credentials_in_body:
            form.append(("client_id", client_id))
            form.append(("client_secret", client_secret or ""))
        else:
            headers["Authorization"] = _basic_credentials(client_id, client_secret or "")

        logger.debug("Requesting %s token from %s", grant_type, access_token_url)
        response = await self._post(access_token_url, urlencode(form), headers)
        logger.debug("Token endpoint answered %s", response.status_code)

        body = response.text
        if not response.is_success:
            raise NetworkError(
                f"Failed to fetch access token with status={response.status_code} and body={body}",
                status_code=response.status_code,
                body=body,
            )

        data = parse_token_response(body)
        if data.get("error"):
            message = f"Failed to fetch access token with {data['error']}"
            if data.get("error_description"):
                message += f": {data['error_description']}"
            raise ProviderError(message)
        return data

    async def refresh_access_token(
        self,
        *,
        access_token_url: str,
        client_id: str,
        refresh_token: str,
        scope: Optional[str] = None,
        audience: Optional[str] = None,
        client_secret: Optional[str] = None,
        credentials_in_body: bool = False,
    ) -> dict[str, Any]:
        """Exchange *refresh_token* for a new token.

        If the provider does not rotate the refresh token, the old one is
        carried over into the returned response.
        """
        data = await self.fetch_access_token(
            grant_type="refresh_token",
            access_token_url=access_token_url,
            client_id=client_id,
            params=[("refresh_token", refresh_token)],
            scope=scope,
            audience=audience,
            client_secret=client_secret,
            credentials_in_body=credentials_in_body,
        )
        if not data.get("refresh_token"):
            data = {**data, "refresh_token": refresh_token}
        return data

    async def _post(self, url: str, content: str, headers: dict[str, str]) -> httpx.Response:
        try:
            if self._client is not None:
                return await self._client.post(url, content=content, headers=headers, auth=None)
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.post(url, content=content, headers=headers, auth=None)
        except httpx.HTTPError as exc:
            raise NetworkError(f"Failed to fetch access token: {exc}") from exc
