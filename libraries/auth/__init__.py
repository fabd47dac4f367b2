"""
WEBCORE - Authentication Libraries

Validator, authenticator and authorizer chain plus the auth stores it
resolves identities from.
"""

from libraries.auth.authn import AuthN, Authenticator, Authorizer, permission_matches
from libraries.auth.store import AuthStore, User, YamlAuthStore
from libraries.auth.validators import (
    ApiKeyValidator,
    Credential,
    JwtValidator,
    KeyValidator,
    generate_api_key,
    hash_api_key,
)

__all__ = [
    "AuthN",
    "Authenticator",
    "Authorizer",
    "permission_matches",
    "AuthStore",
    "User",
    "YamlAuthStore",
    "ApiKeyValidator",
    "Credential",
    "JwtValidator",
    "KeyValidator",
    "generate_api_key",
    "hash_api_key",
]
