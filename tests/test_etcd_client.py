from __future__ import annotations

from urllib.parse import parse_qs

import httpx
import pytest

from faultline.clients.etcd import EtcdClient, build_etcd_backend
from faultline.domain.operations import Completion, Function, Invocation, Outcome
from faultline.faults.network import IptablesNetwork
from faultline.options import TestOptions


def _client(handler, quorum_read: bool = False) -> EtcdClient:
    template = EtcdClient(quorum_read=quorum_read, transport=httpx.MockTransport(handler))
    return template.open("n1")


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


READ = Invocation(process=0, function=Function.READ, key=7)
WRITE = Invocation(process=0, function=Function.WRITE, key=7, value=3)
CAS = Invocation(process=0, function=Function.CAS, key=7, value=(3, 4))


def test_read_returns_value() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"node": {"key": "/7", "value": "3"}})

    client = _client(handler, quorum_read=True)

    assert client.invoke(READ) == Completion.ok(3)
    assert seen[0].url.host == "n1"
    assert seen[0].url.port == 2379
    assert seen[0].url.path == "/v2/keys/7"
    assert seen[0].url.params["quorum"] == "true"


def test_read_missing_key_is_nil() -> None:
    client = _client(lambda request: httpx.Response(404, json={"errorCode": 100}))
    assert client.invoke(READ) == Completion.ok(None)


def test_write_puts_value() -> None:
    seen: list[dict[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(_form(request))
        return httpx.Response(201, json={"node": {"value": "3"}})

    assert _client(handler).invoke(WRITE) == Completion.ok(3)
    assert seen == [{"value": "3"}]


def test_cas_sends_prev_value() -> None:
    seen: list[dict[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PUT"
        seen.append(_form(request))
        return httpx.Response(200, json={"node": {"value": "4"}})

    assert _client(handler).invoke(CAS) == Completion.ok((3, 4))
    assert seen == [{"value": "4", "prevValue": "3"}]


def test_cas_compare_failed_is_fail() -> None:
    client = _client(lambda request: httpx.Response(412, json={"errorCode": 101}))
    result = client.invoke(CAS)
    assert result.outcome is Outcome.FAIL


def test_cas_on_missing_key_is_fail() -> None:
    client = _client(lambda request: httpx.Response(404, json={"errorCode": 100}))
    assert client.invoke(CAS).outcome is Outcome.FAIL


def test_server_error_on_write_is_ambiguous() -> None:
    client = _client(lambda request: httpx.Response(500, json={"errorCode": 300}))
    assert client.invoke(WRITE).outcome is Outcome.INFO


@pytest.mark.parametrize(
    ("invocation", "expected"),
    [(READ, Outcome.FAIL), (WRITE, Outcome.INFO), (CAS, Outcome.INFO)],
)
def test_timeouts_follow_read_write_asymmetry(invocation: Invocation, expected: Outcome) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    result = _client(handler).invoke(invocation)

    assert result.outcome is expected
    assert result.error == "timeout"


@pytest.mark.parametrize(
    ("invocation", "expected"),
    [(READ, Outcome.FAIL), (WRITE, Outcome.INFO), (CAS, Outcome.INFO)],
)
def test_transport_errors(invocation: Invocation, expected: Outcome) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = _client(handler).invoke(invocation)

    assert result.outcome is expected
    assert result.error == "ConnectError"


def test_close_releases_http_client() -> None:
    client = _client(lambda request: httpx.Response(200, json={"node": {"value": "1"}}))
    client.close()
    with pytest.raises(RuntimeError):
        client.invoke(READ)


def test_backend_partitions_with_iptables() -> None:
    instance = build_etcd_backend(TestOptions(quorum_read=True), timeout=2.0)
    assert isinstance(instance.nemesis._network, IptablesNetwork)
    assert list(instance.nodes) == ["n1", "n2", "n3", "n4", "n5"]
