"""
API host registry with failover.

The registry holds an ordered list of base URLs and the index of the one in
use. ``switch`` advances to the next host. Each switch bumps a generation
counter; a failure reports the generation it was sent under so several
requests failing against the same dead host move the registry one hop, not
one hop each.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_HOSTS = (
    "https://api.mixin.one",
    "https://mixin-api.zeromesh.net",
)
ALTERNATE_REGION_HOSTS = (
    "https://mixin-api.zeromesh.net",
    "https://api.mixin.one",
)


def _origin(host: str) -> str:
    """Normalize a base URL; only scheme, host and port are allowed."""
    url = httpx.URL(host.strip())
    if url.scheme not in ("http", "https") or not url.host:
        raise ValueError(f"Host must be an http(s) URL: {host!r}")
    if url.path not in ("", "/") or url.query or url.fragment:
        raise ValueError(f"Host must not carry a path, query or fragment: {host!r}")
    return host.strip().rstrip("/")


class HostRegistry:
    """Thread-safe list of candidate base URLs with an active pointer."""

    def __init__(self, hosts: Iterable[str] = DEFAULT_HOSTS):
        cleaned = tuple(dict.fromkeys(_origin(h) for h in hosts if h and h.strip()))
        if not cleaned:
            raise ValueError("HostRegistry needs at least one host")
        self._hosts = cleaned
        self._index = 0
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def hosts(self) -> tuple[str, ...]:
        return self._hosts

    @property
    def index(self) -> int:
        with self._lock:
            return self._index

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def current(self) -> str:
        """Base URL of the active host."""
        with self._lock:
            return self._hosts[self._index]

    def snapshot(self) -> tuple[str, int]:
        """Active base URL together with the generation it belongs to."""
        with self._lock:
            return self._hosts[self._index], self._generation

    def switch(self, observed_generation: Optional[int] = None) -> bool:
        """
        Move to the next host.

        Args:
            observed_generation: Generation the caller saw when its request
                failed. If the registry has switched since, the failure is
                already accounted for and nothing happens.

        Returns:
            True if the active host changed.
        """
        with self._lock:
            if len(self._hosts) < 2:
                return False
            if observed_generation is not None and observed_generation != self._generation:
                logger.debug(
                    "Host switch skipped: generation %s already superseded by %s",
                    observed_generation, self._generation,
                )
                return False
            previous = self._hosts[self._index]
            self._index = (self._index + 1) % len(self._hosts)
            self._generation += 1
            current = self._hosts[self._index]

        logger.warning("Switched API host %s -> %s", previous, current)
        return True

    def __repr__(self) -> str:
        return f"HostRegistry(hosts={self._hosts!r}, index={self._index})"
