"""
mixinbot -- Async Client.

Drop-in async replacement for the synchronous MixinClient.
Uses httpx.AsyncClient for non-blocking I/O; signing, failover and the
credential slot behave exactly as in the sync client.

Usage:
    from mixinbot.async_client import AsyncMixinClient

    async with AsyncMixinClient(credential, auto_switch=True) as client:
        me = await client.get("/me")
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from mixinbot.client import Body, _BaseClient
from mixinbot.config import ClientConfig
from mixinbot.credentials import Credential
from mixinbot.pipeline import AsyncPipelineTransport


class AsyncMixinClient(_BaseClient):
    """Async client. Takes the same arguments as MixinClient."""

    def __init__(
        self,
        credential: Optional[Credential] = None,
        *,
        prefer_alternate_region: Optional[bool] = None,
        debug: Optional[bool] = None,
        auto_switch: Optional[bool] = None,
        hosts: Optional[tuple[str, ...]] = None,
        config: Optional[ClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            credential,
            prefer_alternate_region=prefer_alternate_region,
            debug=debug,
            auto_switch=auto_switch,
            hosts=hosts,
            config=config,
        )
        inner = transport or httpx.AsyncHTTPTransport(
            limits=self.config.limits, proxy=self.config.proxy, retries=0
        )
        self._client = httpx.AsyncClient(
            base_url=self.hosts.current(),
            transport=AsyncPipelineTransport(inner, self.pipeline),
            timeout=self.config.timeout,
            trust_env=False,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncMixinClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # ========================
    # HTTP helpers
    # ========================

    async def authenticate_and_send(
        self,
        method: str,
        path: str,
        body: Body = None,
        params: Optional[dict] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        content, merged = self._prepare(body, headers)
        return await self._client.request(
            method.upper(), path, content=content, params=params, headers=merged
        )

    request = authenticate_and_send

    async def get(self, path: str, params: Optional[dict] = None) -> Any:
        return self._decode(await self.authenticate_and_send("GET", path, params=params))

    async def post(self, path: str, body: Body = None) -> Any:
        return self._decode(
            await self.authenticate_and_send("POST", path, body=body if body is not None else {})
        )

    async def put(self, path: str, body: Body = None) -> Any:
        return self._decode(
            await self.authenticate_and_send("PUT", path, body=body if body is not None else {})
        )

    async def delete(self, path: str) -> Any:
        return self._decode(await self.authenticate_and_send("DELETE", path))
