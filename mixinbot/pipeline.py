"""
Request pipeline.

Outgoing requests go through an ordered list of stages composed when the
client is built:

    request stages   (httpx.Request) -> httpx.Request      host, headers, auth
    send             inner httpx transport
    error stages     (httpx.Request, Exception) -> Exception   classify, failover
    response stages  (httpx.Response) -> httpx.Response    status check, logging

The pipeline runs inside an httpx transport wrapper so any httpx transport
(real, mocked, proxied) can sit underneath it.
"""

from __future__ import annotations

import locale
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from mixinbot.auth import sign_token
from mixinbot.credentials import Credential
from mixinbot.failover import HOST_GENERATION_KEY, classify_status
from mixinbot.hosts import HostRegistry

wire_logger = logging.getLogger("mixinbot.wire")

RequestStage = Callable[[httpx.Request], httpx.Request]
ResponseStage = Callable[[httpx.Response], httpx.Response]
ErrorStage = Callable[[httpx.Request, Exception], Exception]


@dataclass
class Pipeline:
    """Ordered request, response and error stages."""

    request_stages: list[RequestStage] = field(default_factory=list)
    response_stages: list[ResponseStage] = field(default_factory=list)
    error_stages: list[ErrorStage] = field(default_factory=list)

    def prepare(self, request: httpx.Request) -> httpx.Request:
        for stage in self.request_stages:
            request = stage(request)
        return request

    def finish(self, response: httpx.Response) -> httpx.Response:
        for stage in self.response_stages:
            response = stage(response)
        return response

    def fail(self, request: httpx.Request, error: Exception) -> Exception:
        for stage in self.error_stages:
            error = stage(request, error)
        return error


class PipelineTransport(httpx.BaseTransport):
    """Runs a Pipeline around a synchronous httpx transport."""

    def __init__(self, inner: httpx.BaseTransport, pipeline: Pipeline):
        self._inner = inner
        self.pipeline = pipeline

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        request.read()
        request = self.pipeline.prepare(request)
        try:
            response = self._inner.handle_request(request)
        except httpx.TransportError as exc:
            raise self.pipeline.fail(request, exc) from exc

        try:
            response.read()
        except httpx.TransportError as exc:
            response.close()
            raise self.pipeline.fail(request, exc) from exc

        try:
            return self.pipeline.finish(response)
        except BaseException:
            response.close()
            raise

    def close(self) -> None:
        self._inner.close()


class AsyncPipelineTransport(httpx.AsyncBaseTransport):
    """Runs a Pipeline around an asynchronous httpx transport."""

    def __init__(self, inner: httpx.AsyncBaseTransport, pipeline: Pipeline):
        self._inner = inner
        self.pipeline = pipeline

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        request = self.pipeline.prepare(request)
        try:
            response = await self._inner.handle_async_request(request)
        except httpx.TransportError as exc:
            raise self.pipeline.fail(request, exc) from exc

        try:
            await response.aread()
        except httpx.TransportError as exc:
            await response.aclose()
            raise self.pipeline.fail(request, exc) from exc

        try:
            return self.pipeline.finish(response)
        except BaseException:
            await response.aclose()
            raise

    async def aclose(self) -> None:
        await self._inner.aclose()


# ========================
# Request stages
# ========================

def select_host(registry: HostRegistry) -> RequestStage:
    """Point the request at the registry's active host."""

    def stage(request: httpx.Request) -> httpx.Request:
        base_url, generation = registry.snapshot()
        base = httpx.URL(base_url)
        request.url = request.url.copy_with(scheme=base.scheme, host=base.host, port=base.port)
        request.headers["Host"] = request.url.netloc.decode("ascii")
        request.extensions[HOST_GENERATION_KEY] = generation
        return request

    return stage


def authenticator(
    active_credential: Callable[[], Credential],
    clock: Optional[Callable[[], float]] = None,
) -> RequestStage:
    """Sign the request with whichever credential is active right now."""

    def stage(request: httpx.Request) -> httpx.Request:
        credential = active_credential()
        token = sign_token(
            credential,
            request.method,
            request.url.raw_path.decode("ascii"),
            request.content,
            now=clock() if clock is not None else None,
        )
        request.headers["Authorization"] = f"Bearer {token}"
        return request

    return stage


def default_language() -> str:
    language = locale.getlocale()[0]
    if not language or language == "C":
        return "en"
    return language.split("_")[0]


def standard_headers(user_agent: str, language: Optional[str] = None) -> RequestStage:
    accept_language = language or default_language()

    def stage(request: httpx.Request) -> httpx.Request:
        request.headers["User-Agent"] = user_agent
        request.headers["Accept-Language"] = accept_language
        return request

    return stage


def log_request(request: httpx.Request) -> httpx.Request:
    headers = {
        k: ("<redacted>" if k.lower() == "authorization" else v)
        for k, v in request.headers.items()
    }
    wire_logger.debug("--> %s %s %s", request.method, request.url, headers)
    if request.content:
        wire_logger.debug("--> body %s", request.content.decode("utf-8", errors="replace"))
    return request


# ========================
# Response stages
# ========================

def raise_for_status(response: httpx.Response) -> httpx.Response:
    """Raise the typed error for 4xx/5xx statuses; pass everything else through."""
    if response.status_code < 400:
        return response
    error = classify_status(response.status_code, response.content, response.headers)
    if error is not None:
        raise error
    return response


def log_response(response: httpx.Response) -> httpx.Response:
    wire_logger.debug("<-- %s %s", response.status_code, dict(response.headers))
    if response.content:
        wire_logger.debug("<-- body %s", response.content.decode("utf-8", errors="replace"))
    return response
