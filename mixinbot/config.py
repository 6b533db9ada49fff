"""
Client configuration.

Settings are fixed when a client is built. Anything not passed explicitly
falls back to MIXIN_* environment variables, then to defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

import httpx

from mixinbot.credentials import Credential
from mixinbot.hosts import ALTERNATE_REGION_HOSTS, DEFAULT_HOSTS

__version__ = "0.1.0"

_DEFAULT_TIMEOUT = 10.0
_DEFAULT_KEEPALIVE = 15.0
_DEFAULT_USER_AGENT = f"mixinbot-python/{__version__}"


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ClientConfig:
    """
    Builder-time settings for MixinClient / AsyncMixinClient.

    Args:
        credential: Client-level signing identity.
        prefer_alternate_region: Start on the alternate-region host set.
        debug: Log requests and responses on the ``mixinbot.wire`` logger.
        auto_switch: Move to the next host when the active one looks unreachable.
        hosts: Explicit base URLs; overrides the region host sets.
    """

    credential: Credential
    prefer_alternate_region: bool = False
    debug: bool = False
    auto_switch: bool = False
    hosts: Optional[tuple[str, ...]] = None
    connect_timeout: float = _DEFAULT_TIMEOUT
    read_timeout: float = _DEFAULT_TIMEOUT
    write_timeout: float = _DEFAULT_TIMEOUT
    keepalive_expiry: float = _DEFAULT_KEEPALIVE
    user_agent: str = _DEFAULT_USER_AGENT
    language: Optional[str] = None
    proxy: Optional[str] = None
    extra_headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.credential is None:
            raise ValueError(
                "A credential is required. Pass one explicitly or set "
                "MIXIN_CLIENT_ID, MIXIN_SESSION_ID and MIXIN_PRIVATE_KEY."
            )
        if self.hosts is not None:
            self.hosts = tuple(self.hosts)

    @classmethod
    def from_env(cls, **overrides) -> "ClientConfig":
        """Read MIXIN_* environment variables; keyword arguments win."""
        values: dict = {
            "credential": Credential.from_env(),
            "prefer_alternate_region": _env_flag("MIXIN_PREFER_ALTERNATE_REGION"),
            "debug": _env_flag("MIXIN_DEBUG"),
            "auto_switch": _env_flag("MIXIN_AUTO_SWITCH"),
        }
        hosts = os.environ.get("MIXIN_HOSTS")
        if hosts:
            values["hosts"] = tuple(h.strip() for h in hosts.split(",") if h.strip())
        if os.environ.get("MIXIN_PROXY"):
            values["proxy"] = os.environ["MIXIN_PROXY"]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def base_urls(self) -> tuple[str, ...]:
        if self.hosts:
            return self.hosts
        return ALTERNATE_REGION_HOSTS if self.prefer_alternate_region else DEFAULT_HOSTS

    @property
    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect_timeout,
            read=self.read_timeout,
            write=self.write_timeout,
            pool=self.connect_timeout,
        )

    @property
    def limits(self) -> httpx.Limits:
        return httpx.Limits(keepalive_expiry=self.keepalive_expiry)
