"""Tests for MixinClient — mocked transport."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import httpx
import pytest

from mixinbot.auth import decode_token, request_digest
from mixinbot.client import MixinClient
from mixinbot.config import ClientConfig
from mixinbot.credentials import Credential
from mixinbot.errors import (
    AuthenticationError,
    ClientErrorException,
    KeyResolutionError,
    MixinBotError,
    NotFoundError,
    ServerErrorException,
    TransportError,
)
from mixinbot.hosts import ALTERNATE_REGION_HOSTS

HOSTS = ("https://a.example", "https://b.example")


class Recorder:
    """MockTransport handler that records requests and replays a response."""

    def __init__(self, response=None, fail_hosts=()):
        self.requests = []
        self.response = response or (lambda request: httpx.Response(200, json={"data": {"ok": True}}))
        self.fail_hosts = set(fail_hosts)

    def __call__(self, request):
        self.requests.append(request)
        if request.url.host in self.fail_hosts:
            raise httpx.ConnectError("[Errno -2] Name or service not known")
        return self.response(request)

    @property
    def last(self):
        return self.requests[-1]

    def token(self, index=-1):
        header = self.requests[index].headers["Authorization"]
        assert header.startswith("Bearer ")
        return decode_token(header[len("Bearer "):])


@pytest.fixture
def credential():
    return Credential.ed25519("client-user", "client-session", "a" * 64)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def client(credential, recorder):
    with MixinClient(credential, hosts=HOSTS, transport=httpx.MockTransport(recorder)) as c:
        yield c


def make_client(credential, recorder, **kwargs):
    kwargs.setdefault("hosts", HOSTS)
    return MixinClient(credential, transport=httpx.MockTransport(recorder), **kwargs)


class TestAuthentication:
    def test_bearer_token_attached(self, client, recorder):
        client.request("GET", "/me")
        _, payload = recorder.token()
        assert payload["uid"] == "client-user"
        assert payload["sid"] == "client-session"
        assert payload["sig"] == request_digest("GET", "/me", b"")

    def test_query_and_body_are_bound(self, client, recorder):
        client.request("POST", "/transfers", body={"amount": "1"}, params={"trace": "t-1"})
        _, payload = recorder.token()

        assert recorder.last.url.raw_path == b"/transfers?trace=t-1"
        assert recorder.last.content == b'{"amount":"1"}'
        assert payload["sig"] == request_digest("POST", "/transfers?trace=t-1", b'{"amount":"1"}')

    def test_body_not_modified(self, client, recorder):
        client.request("POST", "/raw", body=b"\x00\x01binary")
        assert recorder.last.content == b"\x00\x01binary"

    def test_standard_headers(self, credential, recorder):
        config = ClientConfig(credential, hosts=HOSTS, user_agent="bot/1.0", language="de")
        with MixinClient(config=config, transport=httpx.MockTransport(recorder)) as c:
            c.request("GET", "/me")
        assert recorder.last.headers["User-Agent"] == "bot/1.0"
        assert recorder.last.headers["Accept-Language"] == "de"

    def test_fresh_token_per_request(self, client, recorder):
        with patch("mixinbot.auth.time") as mock_time:
            mock_time.time.side_effect = [1000.0, 1001.0]
            client.request("GET", "/me")
            client.request("GET", "/me")

        _, first = recorder.token(0)
        _, second = recorder.token(1)
        assert (first["iat"], second["iat"]) == (1000, 1001)
        assert first["sig"] == second["sig"]

    def test_signing_error_is_raised_before_sending(self, recorder):
        broken = Credential.ed25519("user", "session", "abcd")
        with make_client(broken, recorder) as c:
            with pytest.raises(KeyResolutionError):
                c.request("GET", "/me")
        assert recorder.requests == []


class TestUserCredential:
    def test_user_credential_overrides_and_clears(self, client, recorder):
        user = Credential.generate_ed25519("end-user", "end-session")

        client.set_user_credential(user)
        assert client.active_credential is user
        client.request("GET", "/assets")
        client.request("GET", "/snapshots")

        client.set_user_credential(None)
        assert client.user_credential is None
        client.request("GET", "/me")

        uids = [recorder.token(i)[1]["uid"] for i in range(3)]
        assert uids == ["end-user", "end-user", "client-user"]
        assert client.client_credential.user_id == "client-user"


class TestStatusHandling:
    def test_success_passes_through(self, credential):
        recorder = Recorder(lambda r: httpx.Response(200, json={"data": {"user_id": "u"}}))
        with make_client(credential, recorder) as c:
            response = c.request("GET", "/me")
        assert response.status_code == 200
        assert response.json() == {"data": {"user_id": "u"}}

    def test_not_found(self, credential):
        recorder = Recorder(lambda r: httpx.Response(404, json={"error": {"code": 404, "description": "Not found"}}))
        with make_client(credential, recorder, auto_switch=True) as c:
            with pytest.raises(ClientErrorException) as exc_info:
                c.request("GET", "/users/missing")
            assert c.hosts.index == 0
        assert isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Not found"

    def test_server_error_does_not_switch(self, credential):
        recorder = Recorder(lambda r: httpx.Response(503, text="unavailable"))
        with make_client(credential, recorder, auto_switch=True) as c:
            with pytest.raises(ServerErrorException) as exc_info:
                c.request("GET", "/me")
            assert c.hosts.index == 0
        assert exc_info.value.status_code == 503

    def test_get_unwraps_data(self, credential):
        recorder = Recorder(lambda r: httpx.Response(200, json={"data": {"user_id": "u"}}))
        with make_client(credential, recorder) as c:
            assert c.get("/me") == {"user_id": "u"}

    def test_embedded_error_body(self, credential):
        recorder = Recorder(lambda r: httpx.Response(
            202, json={"error": {"status": 202, "code": 401, "description": "Unauthorized"}}
        ))
        with make_client(credential, recorder) as c:
            with pytest.raises(AuthenticationError):
                c.get("/me")

    def test_embedded_application_error(self, credential):
        recorder = Recorder(lambda r: httpx.Response(
            202, json={"error": {"status": 202, "code": 20117, "description": "Insufficient balance"}}
        ))
        with make_client(credential, recorder) as c:
            with pytest.raises(MixinBotError, match="Insufficient balance") as exc_info:
                c.post("/transfers", {"amount": "1"})
        assert exc_info.value.code == "20117"

    def test_streamed_success_is_read(self, credential):
        recorder = Recorder(lambda r: httpx.Response(
            200, stream=httpx.ByteStream(b'{"data":{"user_id":"u"}}')
        ))
        with make_client(credential, recorder) as c:
            assert c.get("/me") == {"user_id": "u"}
            response = c.request("GET", "/me")
        assert response.status_code == 200
        assert response.content == b'{"data":{"user_id":"u"}}'

    def test_streamed_error_body(self, credential):
        recorder = Recorder(lambda r: httpx.Response(
            404, stream=httpx.ByteStream(b'{"error":{"code":404,"description":"Not found"}}')
        ))
        with make_client(credential, recorder) as c:
            with pytest.raises(NotFoundError, match="Not found"):
                c.request("GET", "/users/missing")


class TestFailover:
    def test_dns_failure_switches_once_and_raises(self, credential):
        recorder = Recorder(fail_hosts={"a.example"})
        with make_client(credential, recorder, auto_switch=True) as c:
            with pytest.raises(TransportError) as exc_info:
                c.request("GET", "/me")

            assert c.hosts.index == 1
            assert c.hosts.generation == 1
            assert isinstance(exc_info.value.original, httpx.ConnectError)
            assert exc_info.value.__cause__ is exc_info.value.original
            assert len(recorder.requests) == 1

            # Resubmitting goes to the new host
            c.request("GET", "/me")
            assert recorder.last.url.host == "b.example"
            assert recorder.last.headers["Host"] == "b.example"

    def test_auto_switch_disabled(self, credential):
        recorder = Recorder(fail_hosts={"a.example"})
        with make_client(credential, recorder) as c:
            with pytest.raises(TransportError):
                c.request("GET", "/me")
            assert c.hosts.index == 0

    def test_single_host_never_moves(self, credential):
        recorder = Recorder(fail_hosts={"a.example"})
        with make_client(credential, recorder, hosts=("https://a.example",), auto_switch=True) as c:
            with pytest.raises(TransportError):
                c.request("GET", "/me")
            assert c.hosts.index == 0

    def test_concurrent_failures_switch_once(self, credential):
        barrier = threading.Barrier(4)

        def respond(request):
            return httpx.Response(200, json={})

        class BlockingRecorder(Recorder):
            def __call__(self, request):
                barrier.wait(timeout=5)
                return super().__call__(request)

        recorder = BlockingRecorder(respond, fail_hosts={"a.example"})
        with make_client(credential, recorder, auto_switch=True) as c:
            def call():
                with pytest.raises(TransportError):
                    c.request("GET", "/me")

            with ThreadPoolExecutor(max_workers=4) as pool:
                for future in [pool.submit(call) for _ in range(4)]:
                    future.result()

            assert c.hosts.index == 1
            assert c.hosts.generation == 1

    def test_reset_while_reading_body(self, credential):
        class ResetStream(httpx.SyncByteStream):
            def __iter__(self):
                yield b'{"da'
                raise httpx.ReadError("[Errno 104] Connection reset by peer")

        recorder = Recorder(lambda r: httpx.Response(200, stream=ResetStream()))
        for debug in (False, True):
            with make_client(credential, recorder, auto_switch=True, debug=debug) as c:
                with pytest.raises(TransportError) as exc_info:
                    c.request("GET", "/me")
                assert isinstance(exc_info.value.original, httpx.ReadError)
                assert exc_info.value.needs_switch is True
                assert c.hosts.index == 1


class TestConfiguration:
    def test_alternate_region(self, credential, recorder):
        with MixinClient(credential, prefer_alternate_region=True,
                         transport=httpx.MockTransport(recorder)) as c:
            assert c.base_url == ALTERNATE_REGION_HOSTS[0]
            c.request("GET", "/me")
        assert recorder.last.url.host == httpx.URL(ALTERNATE_REGION_HOSTS[0]).host

    def test_timeouts(self, client):
        timeout = client._client.timeout
        assert (timeout.connect, timeout.read, timeout.write) == (10.0, 10.0, 10.0)

    def test_auto_switch_does_not_enable_debug(self, credential):
        config = ClientConfig(credential, auto_switch=True)
        assert config.debug is False

    def test_credential_required(self, monkeypatch):
        for name in ("MIXIN_CLIENT_ID", "MIXIN_SESSION_ID", "MIXIN_PRIVATE_KEY"):
            monkeypatch.delenv(name, raising=False)
        with pytest.raises(ValueError, match="credential is required"):
            MixinClient()

    def test_from_env(self, monkeypatch, recorder):
        monkeypatch.setenv("MIXIN_CLIENT_ID", "env-user")
        monkeypatch.setenv("MIXIN_SESSION_ID", "env-session")
        monkeypatch.setenv("MIXIN_PRIVATE_KEY", "b" * 64)
        monkeypatch.setenv("MIXIN_AUTO_SWITCH", "true")
        monkeypatch.setenv("MIXIN_HOSTS", "https://a.example, https://b.example")

        with MixinClient.from_env(transport=httpx.MockTransport(recorder)) as c:
            assert c.config.auto_switch is True
            assert c.hosts.hosts == HOSTS
            c.request("GET", "/me")
        assert recorder.token()[1]["uid"] == "env-user"

    def test_explicit_false_overrides_env(self, monkeypatch, credential):
        monkeypatch.setenv("MIXIN_AUTO_SWITCH", "1")
        with MixinClient(credential, auto_switch=False,
                         transport=httpx.MockTransport(Recorder())) as c:
            assert c.failover.enabled is False


class TestDebugLogging:
    def test_wire_logging_redacts_token(self, credential, recorder, caplog):
        with make_client(credential, recorder, debug=True) as c:
            with caplog.at_level(logging.DEBUG, logger="mixinbot.wire"):
                c.request("POST", "/messages", body={"text": "hi"})

        assert "--> POST https://a.example/messages" in caplog.text
        assert '{"text":"hi"}' in caplog.text
        assert "<-- 200" in caplog.text
        token = recorder.last.headers["Authorization"].split(" ", 1)[1]
        assert token not in caplog.text

    def test_no_wire_logging_by_default(self, client, caplog):
        with caplog.at_level(logging.DEBUG, logger="mixinbot.wire"):
            client.request("GET", "/me")
        assert "-->" not in caplog.text


class TestClientLifecycle:
    def test_context_manager(self, credential):
        with MixinClient(credential, transport=httpx.MockTransport(Recorder())) as c:
            assert c.active_credential.user_id == "client-user"
        assert c._client.is_closed

    def test_from_ed25519(self):
        c = MixinClient.from_ed25519("u", "s", "a" * 64, transport=httpx.MockTransport(Recorder()))
        assert c.client_credential.algorithm == "EdDSA"
        c.close()
