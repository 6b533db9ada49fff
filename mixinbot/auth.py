"""
Signed bearer tokens for API authentication.

Every request carries:
    Authorization: Bearer <header>.<payload>.<signature>

The payload binds the token to one request through ``sig``, the SHA-256 of
``method\\npath\\nsha256(body)``. The signature covers that same request
digest followed by the encoded header and payload, so changing the method,
path, query or body after signing invalidates the token.
"""

from __future__ import annotations

import hashlib
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from mixinbot.credentials import Credential, resolve_key
from mixinbot.errors import SigningError

TOKEN_TTL = 30  # seconds


def _b64(data: bytes) -> str:
    return urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _unb64(segment: str) -> bytes:
    return urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def _segment(obj: dict) -> str:
    return _b64(json.dumps(obj, separators=(",", ":"), sort_keys=True).encode("utf-8"))


def _canonical_request(method: str, path: str, body: Optional[bytes]) -> str:
    body_hash = hashlib.sha256(body or b"").hexdigest()
    return f"{method.upper()}\n{path}\n{body_hash}"


def request_digest(method: str, path: str, body: Optional[bytes] = None) -> str:
    """Hex digest binding method, path (with query) and body hash."""
    return hashlib.sha256(_canonical_request(method, path, body).encode("utf-8")).hexdigest()


def sign_token(
    credential: Credential,
    method: str,
    path: str,
    body: Optional[bytes] = None,
    now: Optional[float] = None,
    ttl: int = TOKEN_TTL,
) -> str:
    """
    Sign one request and return the bearer token (without the "Bearer " prefix).

    Args:
        credential: Signing identity.
        method: HTTP method.
        path: Absolute request path including the query string.
        body: Raw request body, None or b"" when there is none.
        now: Issue time in seconds. Defaults to the current time.
        ttl: Seconds until the token expires.

    Raises:
        KeyResolutionError: the credential's key material is malformed.
        SigningError: the signature primitive rejected the input.
    """
    issued_at = int(time.time() if now is None else now)
    header = {"alg": credential.algorithm, "typ": "JWT"}
    payload = {
        "uid": credential.user_id,
        "sid": credential.session_id,
        "iat": issued_at,
        "exp": issued_at + ttl,
        "sig": request_digest(method, path, body),
    }

    signed_part = f"{_segment(header)}.{_segment(payload)}"
    message = f"{_canonical_request(method, path, body)}\n{signed_part}".encode("utf-8")

    private_key = resolve_key(credential.key)
    try:
        if isinstance(private_key, rsa.RSAPrivateKey):
            signature = private_key.sign(message, padding.PKCS1v15(), hashes.SHA256())
        else:
            signature = private_key.sign(message).signature
    except (ValueError, TypeError) as e:
        raise SigningError(f"Could not sign {method.upper()} {path}: {e}") from e

    return f"{signed_part}.{_b64(signature)}"


def decode_token(token: str) -> tuple[dict, dict]:
    """Split a token into its header and payload. Does not verify anything."""
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("Token must have three segments")
    return json.loads(_unb64(parts[0])), json.loads(_unb64(parts[1]))


def signing_input(token: str, method: str, path: str, body: Optional[bytes] = None) -> bytes:
    """Rebuild the bytes a token's signature covers, for verification by peers."""
    header_b64, payload_b64, _ = token.split(".")
    return f"{_canonical_request(method, path, body)}\n{header_b64}.{payload_b64}".encode("utf-8")


def token_signature(token: str) -> bytes:
    return _unb64(token.rsplit(".", 1)[1])
