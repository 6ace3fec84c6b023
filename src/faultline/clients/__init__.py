"""Backend registry."""

from __future__ import annotations

from faultline.clients.base import Backend, BackendInstance, Client
from faultline.clients.etcd import build_etcd_backend
from faultline.clients.mailbox import build_mailbox_backend
from faultline.clients.memory import build_memory_backend
from faultline.config import load_settings
from faultline.errors import UnknownBackendError
from faultline.options import TestOptions


def _build_etcd(options: TestOptions) -> BackendInstance:
    return build_etcd_backend(options, timeout=load_settings().client.invoke_timeout_seconds)


BACKENDS: dict[str, Backend] = {
    backend.name: backend
    for backend in (
        Backend("memory", "in-process replicated register cluster", build_memory_backend),
        Backend("etcd", "etcd v2 keys API over HTTP", _build_etcd),
        Backend("mailbox", "register composed over durable per-peer queues", build_mailbox_backend),
    )
}


def get_backend(name: str) -> Backend:
    try:
        return BACKENDS[name]
    except KeyError:
        known = ", ".join(sorted(BACKENDS))
        raise UnknownBackendError(f"Unknown system name: {name} (known: {known})") from None


__all__ = ["BACKENDS", "Backend", "BackendInstance", "Client", "get_backend"]
