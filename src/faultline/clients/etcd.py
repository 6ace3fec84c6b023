"""etcd v2 keys API client adapter."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from faultline.clients.base import BackendInstance
from faultline.domain.operations import Completion, Function, Invocation, timed_out
from faultline.faults.injector import PartitionRandomHalves
from faultline.faults.network import IptablesNetwork
from faultline.options import TestOptions

logger = logging.getLogger(__name__)

CLIENT_PORT = 2379

ERROR_KEY_NOT_FOUND = 100
ERROR_COMPARE_FAILED = 101

# Client-side rejections prove nothing was applied.
_DEFINITE_ERROR_CODES = frozenset({ERROR_KEY_NOT_FOUND, ERROR_COMPARE_FAILED, 102, 104, 105, 107})


def client_url(node: str) -> str:
    return f"http://{node}:{CLIENT_PORT}"


def _parse_value(raw: Any) -> int | None:
    if raw is None:
        return None
    return int(raw)


class EtcdClient:
    def __init__(
        self,
        quorum_read: bool = False,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
        node: str | None = None,
    ) -> None:
        self._quorum_read = quorum_read
        self._timeout = timeout
        self._transport = transport
        self.node = node
        self._http: httpx.Client | None = None

    def open(self, node: str) -> EtcdClient:
        opened = EtcdClient(
            quorum_read=self._quorum_read,
            timeout=self._timeout,
            transport=self._transport,
            node=node,
        )
        opened._http = httpx.Client(
            base_url=client_url(node),
            timeout=self._timeout,
            transport=self._transport,
        )
        return opened

    def setup(self) -> None:
        return None

    def teardown(self) -> None:
        return None

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None

    def invoke(self, invocation: Invocation) -> Completion:
        if self._http is None:
            raise RuntimeError("client is not open")
        path = f"/v2/keys/{invocation.key}"
        try:
            if invocation.function is Function.READ:
                return self._read(path)
            if invocation.function is Function.WRITE:
                return self._write(path, invocation.value)
            if invocation.function is Function.CAS:
                expected, new = invocation.value
                return self._cas(path, expected, new, invocation.value)
        except httpx.TimeoutException:
            return timed_out(invocation.function)
        except (httpx.TransportError, ValueError) as exc:
            logger.debug("etcd %s on %s failed: %s", invocation.function.value, self.node, exc)
            if invocation.function is Function.READ:
                return Completion.fail(type(exc).__name__)
            return Completion.info(type(exc).__name__)
        raise ValueError(f"unsupported function {invocation.function}")

    def _read(self, path: str) -> Completion:
        params = {"quorum": "true"} if self._quorum_read else None
        response = self._http.get(path, params=params)
        body = response.json()
        if response.status_code == 200:
            return Completion.ok(_parse_value(body.get("node", {}).get("value")))
        if body.get("errorCode") == ERROR_KEY_NOT_FOUND:
            return Completion.ok(None)
        return Completion.fail(f"etcd error {body.get('errorCode', response.status_code)}")

    def _write(self, path: str, value: int) -> Completion:
        response = self._http.put(path, data={"value": str(value)})
        if response.status_code in (200, 201):
            return Completion.ok(value)
        return self._mutation_error(response, value)

    def _cas(self, path: str, expected: int, new: int, value: Any) -> Completion:
        response = self._http.put(path, data={"value": str(new), "prevValue": str(expected)})
        if response.status_code == 200:
            return Completion.ok(value)
        return self._mutation_error(response, value)

    def _mutation_error(self, response: httpx.Response, value: Any) -> Completion:
        try:
            code = response.json().get("errorCode")
        except ValueError:
            code = None
        if code == ERROR_COMPARE_FAILED:
            return Completion.fail(value=value)
        if code in _DEFINITE_ERROR_CODES:
            return Completion.fail(f"etcd error {code}", value=value)
        return Completion.info(f"etcd error {code or response.status_code}", value=value)


def build_etcd_backend(options: TestOptions, timeout: float = 5.0) -> BackendInstance:
    return BackendInstance(
        client=EtcdClient(quorum_read=options.quorum_read, timeout=timeout),
        nemesis=PartitionRandomHalves(IptablesNetwork(options.nodes)),
        nodes=options.nodes,
    )
