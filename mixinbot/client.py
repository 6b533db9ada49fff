"""
mixinbot client.

Authenticated HTTP client with per-request signed bearer tokens and
optional host failover.

Usage:
    from mixinbot import MixinClient

    with MixinClient.from_ed25519(user_id, session_id, seed, auto_switch=True) as client:
        me = client.get("/me")
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Optional

import httpx

from mixinbot.config import ClientConfig
from mixinbot.credentials import Credential
from mixinbot.errors import MixinBotError
from mixinbot.failover import FailoverController, classify_error
from mixinbot.hosts import HostRegistry
from mixinbot.pipeline import (
    Pipeline,
    PipelineTransport,
    authenticator,
    log_request,
    log_response,
    raise_for_status,
    select_host,
    standard_headers,
)

logger = logging.getLogger(__name__)

Body = Optional[Any]


class _BaseClient:
    """State and pipeline shared by the sync and async clients."""

    def __init__(
        self,
        credential: Optional[Credential] = None,
        *,
        prefer_alternate_region: Optional[bool] = None,
        debug: Optional[bool] = None,
        auto_switch: Optional[bool] = None,
        hosts: Optional[tuple[str, ...]] = None,
        config: Optional[ClientConfig] = None,
    ):
        if config is None:
            config = ClientConfig.from_env(
                credential=credential,
                prefer_alternate_region=prefer_alternate_region,
                debug=debug,
                auto_switch=auto_switch,
                hosts=hosts,
            )
        self.config = config
        self.hosts = HostRegistry(config.base_urls)
        self.failover = FailoverController(self.hosts, enabled=config.auto_switch)

        self._client_credential = config.credential
        self._user_credential: Optional[Credential] = None
        self._credential_lock = threading.Lock()

        self.pipeline = self._build_pipeline()
        logger.info(
            "%s initialized: %s (auto_switch=%s, debug=%s)",
            type(self).__name__, self.hosts.current(), config.auto_switch, config.debug,
        )

    def _build_pipeline(self) -> Pipeline:
        request_stages = [
            select_host(self.hosts),
            standard_headers(self.config.user_agent, self.config.language),
            authenticator(self._active_credential),
        ]
        response_stages = [raise_for_status]
        if self.config.debug:
            request_stages.append(log_request)
            response_stages.insert(0, log_response)
        return Pipeline(
            request_stages=request_stages,
            response_stages=response_stages,
            error_stages=[classify_error, self.failover],
        )

    # ========================
    # Credentials
    # ========================

    @property
    def client_credential(self) -> Credential:
        return self._client_credential

    @property
    def user_credential(self) -> Optional[Credential]:
        with self._credential_lock:
            return self._user_credential

    def set_user_credential(self, credential: Optional[Credential]) -> None:
        """
        Sign all following requests as ``credential``; None reverts to the
        client credential. Requests already being signed are unaffected.
        """
        with self._credential_lock:
            self._user_credential = credential
        if credential is None:
            logger.debug("User credential cleared")
        else:
            logger.debug("User credential set for user %s", credential.user_id)

    def _active_credential(self) -> Credential:
        with self._credential_lock:
            return self._user_credential or self._client_credential

    @property
    def active_credential(self) -> Credential:
        return self._active_credential()

    @property
    def base_url(self) -> str:
        return self.hosts.current()

    # ========================
    # Encoding helpers
    # ========================

    def _prepare(self, body: Body, headers: Optional[dict[str, str]]) -> tuple[Optional[bytes], dict[str, str]]:
        merged: dict[str, str] = dict(self.config.extra_headers)
        if body is None:
            content = None
        elif isinstance(body, bytes):
            content = body
        elif isinstance(body, str):
            content = body.encode("utf-8")
        else:
            content = json.dumps(body, separators=(",", ":")).encode("utf-8")
            merged["Content-Type"] = "application/json"
        if headers:
            merged.update(headers)
        return content, merged

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        """Decoded JSON body; unwraps ``data`` and raises embedded API errors."""
        if not response.content:
            return None
        payload = response.json()
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict):
                status = error.get("code") if isinstance(error.get("code"), int) else 0
                raised = MixinBotError.from_response(status, payload, response.headers)
                raise raised or MixinBotError(
                    error.get("description") or "API error",
                    status_code=response.status_code,
                    code=str(error.get("code")) if error.get("code") is not None else None,
                )
            if "data" in payload:
                return payload["data"]
        return payload


class MixinClient(_BaseClient):
    """
    Synchronous client.

    Args:
        credential: Client-level credential. Defaults to MIXIN_* env vars.
        prefer_alternate_region: Start on the alternate-region hosts.
        debug: Wire logging on the ``mixinbot.wire`` logger.
        auto_switch: Fail over to the next host on unreachable-host errors.
        hosts: Explicit base URLs.
        config: Full ClientConfig; overrides the keyword arguments above.
        transport: httpx transport to send through. Defaults to a real
            HTTP transport with connection retries disabled.
    """

    def __init__(
        self,
        credential: Optional[Credential] = None,
        *,
        prefer_alternate_region: Optional[bool] = None,
        debug: Optional[bool] = None,
        auto_switch: Optional[bool] = None,
        hosts: Optional[tuple[str, ...]] = None,
        config: Optional[ClientConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        super().__init__(
            credential,
            prefer_alternate_region=prefer_alternate_region,
            debug=debug,
            auto_switch=auto_switch,
            hosts=hosts,
            config=config,
        )
        inner = transport or httpx.HTTPTransport(
            limits=self.config.limits, proxy=self.config.proxy, retries=0
        )
        self._client = httpx.Client(
            base_url=self.hosts.current(),
            transport=PipelineTransport(inner, self.pipeline),
            timeout=self.config.timeout,
            trust_env=False,
        )

    @classmethod
    def from_rsa(cls, user_id: str, session_id: str, pem: str | bytes, **kwargs: Any) -> "MixinClient":
        return cls(Credential.rsa(user_id, session_id, pem), **kwargs)

    @classmethod
    def from_ed25519(cls, user_id: str, session_id: str, seed: str | bytes, **kwargs: Any) -> "MixinClient":
        return cls(Credential.ed25519(user_id, session_id, seed), **kwargs)

    @classmethod
    def from_env(cls, **kwargs: Any) -> "MixinClient":
        return cls(**kwargs)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "MixinClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ========================
    # HTTP helpers
    # ========================

    def authenticate_and_send(
        self,
        method: str,
        path: str,
        body: Body = None,
        params: Optional[dict] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Sign and send one request against the active host.

        Raises:
            SigningError: the active credential cannot sign.
            ClientErrorException: HTTP 4xx.
            ServerErrorException: HTTP 5xx, or a bad gateway reported by a proxy.
            TransportError: no response was received. With auto_switch the
                host has already been switched; resubmit to use it.
        """
        content, merged = self._prepare(body, headers)
        return self._client.request(method.upper(), path, content=content, params=params, headers=merged)

    request = authenticate_and_send

    def get(self, path: str, params: Optional[dict] = None) -> Any:
        return self._decode(self.authenticate_and_send("GET", path, params=params))

    def post(self, path: str, body: Body = None) -> Any:
        return self._decode(self.authenticate_and_send("POST", path, body=body if body is not None else {}))

    def put(self, path: str, body: Body = None) -> Any:
        return self._decode(self.authenticate_and_send("PUT", path, body=body if body is not None else {}))

    def delete(self, path: str) -> Any:
        return self._decode(self.authenticate_and_send("DELETE", path))
