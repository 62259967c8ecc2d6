"""Grant engines, one per supported OAuth2 grant type."""

from authflow.oauth2.grants.authorization_code import AuthorizationCodeGrant
from authflow.oauth2.grants.client_credentials import ClientCredentialsGrant
from authflow.oauth2.grants.common import Grant, GrantState
from authflow.oauth2.grants.implicit import ImplicitGrant

__all__ = [
    "AuthorizationCodeGrant",
    "ClientCredentialsGrant",
    "Grant",
    "GrantState",
    "ImplicitGrant",
]
