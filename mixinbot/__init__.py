"""
mixinbot — signed-request HTTP client with host failover.

Usage:
    from mixinbot import Credential, MixinClient

    credential = Credential.ed25519(user_id, session_id, seed)
    with MixinClient(credential, auto_switch=True) as client:
        me = client.get("/me")

        # Act on behalf of a user until cleared
        client.set_user_credential(user_credential)
        assets = client.get("/assets")
        client.set_user_credential(None)
"""

from mixinbot.client import MixinClient
from mixinbot.async_client import AsyncMixinClient
from mixinbot.auth import TOKEN_TTL, decode_token, request_digest, sign_token
from mixinbot.config import ClientConfig, __version__
from mixinbot.credentials import Credential, EdDSAKey, RSAKey, resolve_key
from mixinbot.hosts import HostRegistry
from mixinbot.errors import (
    MixinBotError,
    SigningError,
    KeyResolutionError,
    ClientErrorException,
    AuthenticationError,
    NotFoundError,
    RateLimitError,
    ServerErrorException,
    ServiceUnavailableError,
    TransportError,
)

__all__ = [
    "MixinClient",
    "AsyncMixinClient",
    "ClientConfig",
    "Credential",
    "RSAKey",
    "EdDSAKey",
    "resolve_key",
    "HostRegistry",
    "TOKEN_TTL",
    "sign_token",
    "decode_token",
    "request_digest",
    "MixinBotError",
    "SigningError",
    "KeyResolutionError",
    "ClientErrorException",
    "AuthenticationError",
    "NotFoundError",
    "RateLimitError",
    "ServerErrorException",
    "ServiceUnavailableError",
    "TransportError",
    "__version__",
]
