from __future__ import annotations

import pytest

from faultline.clients.mailbox import BrokerUnavailable, MailboxBroker, MailboxClient, queue_name
from faultline.domain.operations import Completion, Function, Invocation, Outcome
from faultline.errors import SetupError


def _read(key: int = 1) -> Invocation:
    return Invocation(process=0, function=Function.READ, key=key)


def _write(value: int, key: int = 1) -> Invocation:
    return Invocation(process=0, function=Function.WRITE, key=key, value=value)


def _cas(expected: int, new: int, key: int = 1) -> Invocation:
    return Invocation(process=0, function=Function.CAS, key=key, value=(expected, new))


@pytest.fixture
def pair() -> tuple[MailboxBroker, MailboxClient, MailboxClient]:
    broker = MailboxBroker(["n1", "n2"])
    template = MailboxClient(broker)
    template.setup()
    return broker, template.open("n1"), template.open("n2")


def test_single_node_cannot_open() -> None:
    with pytest.raises(SetupError):
        MailboxClient(MailboxBroker(["n1"])).open("n1")


def test_write_is_pulled_by_peer(pair) -> None:
    _, first, second = pair

    assert first.invoke(_write(3)) == Completion.ok(3)
    assert second.invoke(_read()) == Completion.ok(3)
    # Nothing new queued; the peer keeps its adopted view.
    assert second.invoke(_read()) == Completion.ok(3)


def test_cas_composes_pull_compare_push(pair) -> None:
    _, first, second = pair
    first.invoke(_write(3))

    assert second.invoke(_cas(3, 4)) == Completion.ok((3, 4))
    assert first.invoke(_read()) == Completion.ok(4)


def test_cas_mismatch_fails_without_publishing(pair) -> None:
    broker, first, second = pair
    first.invoke(_write(3))

    result = second.invoke(_cas(1, 2))

    assert result.outcome is Outcome.FAIL
    assert broker.get("n1", queue_name("n2", "n1")) is None


def test_partition_makes_queues_unreachable(pair) -> None:
    broker, first, _ = pair
    broker.partition([["n1"], ["n2"]])

    assert first.invoke(_write(1)) == Completion.fail("unavailable", value=1)
    assert first.invoke(_read()) == Completion.fail("unavailable")

    broker.heal()
    assert first.invoke(_write(1)) == Completion.ok(1)


def test_queue_needs_both_ends_reachable() -> None:
    broker = MailboxBroker(["n1", "n2", "n3"])
    MailboxClient(broker).setup()
    broker.partition([["n1", "n2"], ["n3"]])

    assert broker.get("n1", queue_name("n2", "n1")) is None
    assert broker.publish("n1", queue_name("n1", "n2"), {1: 1})
    with pytest.raises(BrokerUnavailable, match="n3"):
        broker.get("n1", queue_name("n3", "n1"))
    with pytest.raises(BrokerUnavailable, match="n3"):
        broker.publish("n1", queue_name("n1", "n3"), {1: 1})
    with pytest.raises(BrokerUnavailable):
        broker.get("n3", queue_name("n1", "n3"))


def test_unconfirmed_publish_is_ambiguous() -> None:
    broker = MailboxBroker(["n1", "n2"], confirm_loss=1.0)
    template = MailboxClient(broker)
    template.setup()
    client = template.open("n1")

    result = client.invoke(_write(2))

    assert result == Completion.info("unconfirmed", value=2)
    assert client.invoke(_read()) == Completion.ok(None)


def test_teardown_purges_queues(pair) -> None:
    broker, first, _ = pair
    first.invoke(_write(5))

    first.teardown()

    assert broker.get("n2", queue_name("n1", "n2")) is None


def test_undeclared_queue_raises() -> None:
    broker = MailboxBroker(["n1", "n2"])
    with pytest.raises(KeyError):
        broker.get("n1", "q-n2-n1")
