"""
Failure classification and host failover.

Transport failures and HTTP statuses are turned into exactly one typed
error. Transport failures that look like the host itself is down (timeouts,
refused or unresolvable connections, TLS handshake failures, reset
connections) are flagged so the failover controller can move the host
registry before the error reaches the caller.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

import httpx

from mixinbot.errors import MixinBotError, ServerErrorException, TransportError
from mixinbot.hosts import HostRegistry

logger = logging.getLogger(__name__)

HOST_GENERATION_KEY = "mixinbot.host_generation"

_UNREACHABLE = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)


def needs_switch(exc: BaseException) -> bool:
    """True if the failure says the host is unreachable, not that the request was bad."""
    return isinstance(exc, _UNREACHABLE)


def classify_transport_error(exc: BaseException) -> MixinBotError:
    """Map a transport-level exception to a typed error."""
    # A proxy answering the tunnel request with a gateway error is the only
    # place a 502 shows up as a transport failure instead of a status code.
    if isinstance(exc, httpx.ProxyError) and "502" in str(exc):
        logger.debug("Proxy reported bad gateway: %s", exc)
        return ServerErrorException(502, message=str(exc))

    switch = needs_switch(exc)
    logger.debug("Transport failure %s (needs_switch=%s): %s", type(exc).__name__, switch, exc)
    return TransportError(
        f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__,
        original=exc,
        needs_switch=switch,
    )


def classify_status(
    status_code: int,
    body: bytes | str | dict | None = None,
    headers: Optional[Mapping[str, str]] = None,
) -> Optional[MixinBotError]:
    """Typed error for a 4xx/5xx status, None for anything else."""
    return MixinBotError.from_response(status_code, body, headers)


class FailoverController:
    """
    Error stage that switches hosts on unreachable-host failures.

    Only acts when ``enabled``. The error is returned unchanged; the request
    is not retried against the new host.
    """

    def __init__(self, registry: HostRegistry, enabled: bool = False):
        self.registry = registry
        self.enabled = enabled

    def __call__(self, request: httpx.Request, error: Exception) -> Exception:
        if not self.enabled:
            return error
        if isinstance(error, TransportError) and error.needs_switch:
            generation = request.extensions.get(HOST_GENERATION_KEY)
            self.registry.switch(generation)
        return error


def classify_error(request: httpx.Request, error: Exception) -> Exception:
    """Error stage wrapping raw httpx failures into typed errors."""
    if isinstance(error, MixinBotError):
        return error
    if isinstance(error, httpx.TransportError):
        return classify_transport_error(error)
    return error
