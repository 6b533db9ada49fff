"""
Signing identities.

A credential ties a user id and session id to one kind of key material:
an RSA private key (PEM) or an Ed25519 seed. The variant is fixed when the
credential is built.
"""

from __future__ import annotations

import binascii
import os
from base64 import b64decode, urlsafe_b64decode, urlsafe_b64encode
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from nacl.signing import SigningKey

from mixinbot.errors import KeyResolutionError


_SEED_SIZE = 32


@dataclass(frozen=True)
class RSAKey:
    """PEM encoded RSA private key (PKCS#1 or PKCS#8)."""

    pem: str

    algorithm = "RS256"

    def __repr__(self) -> str:
        return "RSAKey(pem=<redacted>)"


@dataclass(frozen=True)
class EdDSAKey:
    """Ed25519 seed as base64, base64url or hex text."""

    seed: str

    algorithm = "EdDSA"

    def __repr__(self) -> str:
        return "EdDSAKey(seed=<redacted>)"


KeyMaterial = Union[RSAKey, EdDSAKey]
PrivateKey = Union[rsa.RSAPrivateKey, SigningKey]


@dataclass(frozen=True)
class Credential:
    """User id + session id + key material used to sign requests."""

    user_id: str
    session_id: str
    key: KeyMaterial

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id is required")
        if not self.session_id:
            raise ValueError("session_id is required")
        if not isinstance(self.key, (RSAKey, EdDSAKey)):
            raise TypeError(f"Unsupported key material: {type(self.key).__name__}")

    @property
    def algorithm(self) -> str:
        return self.key.algorithm

    @classmethod
    def rsa(cls, user_id: str, session_id: str, pem: str | bytes) -> "Credential":
        if isinstance(pem, bytes):
            pem = pem.decode("ascii")
        return cls(user_id, session_id, RSAKey(pem))

    @classmethod
    def ed25519(cls, user_id: str, session_id: str, seed: str | bytes) -> "Credential":
        """Create from seed text, or from raw 32-byte seed bytes."""
        if isinstance(seed, bytes):
            seed = urlsafe_b64encode(seed).rstrip(b"=").decode("ascii")
        return cls(user_id, session_id, EdDSAKey(seed))

    @classmethod
    def generate_ed25519(cls, user_id: str, session_id: str) -> "Credential":
        """Create a credential around a new random Ed25519 key."""
        return cls.ed25519(user_id, session_id, bytes(SigningKey.generate()))

    @classmethod
    def from_env(cls, prefix: str = "MIXIN") -> Optional["Credential"]:
        """
        Build a credential from ``<prefix>_CLIENT_ID``, ``<prefix>_SESSION_ID``
        and ``<prefix>_PRIVATE_KEY``. A PEM block selects RSA, anything else
        is read as an Ed25519 seed. Returns None when any variable is missing.
        """
        user_id = os.environ.get(f"{prefix}_CLIENT_ID")
        session_id = os.environ.get(f"{prefix}_SESSION_ID")
        private_key = os.environ.get(f"{prefix}_PRIVATE_KEY")
        if not (user_id and session_id and private_key):
            return None
        if "-----BEGIN" in private_key:
            return cls.rsa(user_id, session_id, private_key)
        return cls.ed25519(user_id, session_id, private_key.strip())


@lru_cache(maxsize=32)
def resolve_key(key: KeyMaterial) -> PrivateKey:
    """Turn key material into a usable private key.

    Raises:
        KeyResolutionError: the material is malformed or of the wrong type.
    """
    if isinstance(key, RSAKey):
        return _load_rsa(key.pem)
    if isinstance(key, EdDSAKey):
        return SigningKey(_decode_seed(key.seed))
    raise KeyResolutionError(f"Unsupported key material: {type(key).__name__}")


def _load_rsa(pem: str) -> rsa.RSAPrivateKey:
    try:
        private_key = serialization.load_pem_private_key(pem.encode("ascii"), password=None)
    except (ValueError, TypeError, UnicodeEncodeError, UnsupportedAlgorithm) as e:
        raise KeyResolutionError(f"Invalid RSA private key: {e}") from e
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise KeyResolutionError(f"Not an RSA key: {type(private_key).__name__}")
    return private_key


def _decode_seed(text: str) -> bytes:
    text = text.strip()
    raw: Optional[bytes] = None
    if len(text) in (2 * _SEED_SIZE, 4 * _SEED_SIZE):
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            raw = None
    if raw is None:
        padded = text + "=" * (-len(text) % 4)
        try:
            if "-" in text or "_" in text:
                raw = urlsafe_b64decode(padded)
            else:
                raw = b64decode(padded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise KeyResolutionError(f"Ed25519 seed is not valid base64 or hex: {e}") from e

    # 64-byte keys carry the public key after the seed
    if len(raw) == 2 * _SEED_SIZE:
        raw = raw[:_SEED_SIZE]
    if len(raw) != _SEED_SIZE:
        raise KeyResolutionError(
            f"Ed25519 seed must be {_SEED_SIZE} bytes, got {len(raw)}"
        )
    return raw
