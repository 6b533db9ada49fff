"""
mixinbot error types.

Every failure surfaces as one typed exception. HTTP error responses are
mapped by status code; transport failures keep the original httpx error
as ``original`` and as the exception cause.
"""

from __future__ import annotations

import json
from typing import Mapping, Optional


class MixinBotError(Exception):
    """Base exception for all mixinbot errors."""

    def __init__(self, message: str, status_code: int = 0, code: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)

    @classmethod
    def from_response(
        cls,
        status_code: int,
        body: bytes | str | dict | None = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Optional["MixinBotError"]:
        """Create the appropriate error type for an HTTP status.

        Returns ``None`` for statuses that are not errors.
        """
        if 500 <= status_code <= 599:
            base: type[MixinBotError] = ServerErrorException
        elif 400 <= status_code <= 499:
            base = ClientErrorException
        else:
            return None

        error_map = {
            401: AuthenticationError,
            403: AuthenticationError,
            404: NotFoundError,
            429: RateLimitError,
            503: ServiceUnavailableError,
        }
        error_cls = error_map.get(status_code, base)

        parsed = _parse_error_body(body)
        error = parsed.get("error") if isinstance(parsed.get("error"), dict) else {}
        message = (
            error.get("description")
            or error.get("message")
            or parsed.get("text")
            or f"HTTP {status_code}"
        )
        code = error.get("code")
        code = str(code) if code is not None else None

        if error_cls is RateLimitError:
            retry_after = None
            if headers is not None and headers.get("Retry-After", "").isdigit():
                retry_after = int(headers["Retry-After"])
            return RateLimitError(status_code, message=message, code=code, body=parsed,
                                  retry_after=retry_after)
        return error_cls(status_code, message=message, code=code, body=parsed)


def _parse_error_body(body: bytes | str | dict | None) -> dict:
    if body is None or body == b"" or body == "":
        return {}
    if isinstance(body, dict):
        return body
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    try:
        parsed = json.loads(body)
    except ValueError:
        return {"text": body}
    return parsed if isinstance(parsed, dict) else {"text": body}


class SigningError(MixinBotError):
    """The request could not be signed. Always a local problem, never retried."""

    def __init__(self, message: str):
        super().__init__(message, status_code=0, code="SIGNING_ERROR")


class KeyResolutionError(SigningError):
    """Key material could not be turned into a private key."""


class ClientErrorException(MixinBotError):
    """The API rejected the request (HTTP 4xx). Never triggers a host switch."""

    def __init__(self, status_code: int, message: Optional[str] = None,
                 code: Optional[str] = None, body: Optional[dict] = None):
        super().__init__(message or f"HTTP {status_code}", status_code, code)
        self.body = body or {}


class AuthenticationError(ClientErrorException):
    """Authentication failed. Check the session id and private key."""
    pass


class NotFoundError(ClientErrorException):
    """Resource not found."""
    pass


class RateLimitError(ClientErrorException):
    """Rate limit exceeded. Back off and retry."""

    def __init__(self, status_code: int = 429, message: Optional[str] = None,
                 code: Optional[str] = None, body: Optional[dict] = None,
                 retry_after: Optional[int] = None):
        super().__init__(status_code, message, code, body)
        self.retry_after = retry_after


class ServerErrorException(MixinBotError):
    """The API failed to handle the request (HTTP 5xx)."""

    def __init__(self, status_code: int, message: Optional[str] = None,
                 code: Optional[str] = None, body: Optional[dict] = None):
        super().__init__(message or f"HTTP {status_code}", status_code, code)
        self.body = body or {}


class ServiceUnavailableError(ServerErrorException):
    """Service temporarily unavailable."""
    pass


class TransportError(MixinBotError):
    """The request never produced an HTTP response.

    ``needs_switch`` is set when the failure looks like the host itself is
    unreachable rather than a problem with this particular request.
    """

    def __init__(self, message: str, original: Optional[BaseException] = None,
                 needs_switch: bool = False):
        super().__init__(message, status_code=0, code="TRANSPORT_ERROR")
        self.original = original
        self.needs_switch = needs_switch
