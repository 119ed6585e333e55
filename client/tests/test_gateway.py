"""Tests for choosing between sending and queueing mutations."""

import httpx
import pytest

from bperks_client.errors import RequestRejectedError
from bperks_client.gateway import (
    ConnectivityGateway,
    ImmediateExecutor,
    Mutation,
    QueueingExecutor,
)
from bperks_client.network import ConnectivityMonitor
from bperks_client.queue import ActionKind, ActionQueue, HttpMethod, RecordRef

from conftest import Handler, make_client, offline_handler


def _report_mutation() -> Mutation:
    return Mutation(
        kind=ActionKind.CREATE,
        endpoint="/api/reports",
        method=HttpMethod.POST,
        payload={"title": "Clogged drainage"},
        records=[RecordRef(collection="reports", record_id="r1")],
    )


def _gateway(
    queue: ActionQueue,
    handler: Handler,
    monitor: ConnectivityMonitor,
    always_queue: bool = False,
) -> ConnectivityGateway:
    queueing = QueueingExecutor(queue)
    return ConnectivityGateway(
        monitor=monitor,
        immediate=ImmediateExecutor(make_client(handler), fallback=queueing, monitor=monitor),
        queueing=queueing,
        always_queue=always_queue,
    )


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise AssertionError("no request expected")


class TestConnectivityGateway:
    def test_offline_queues(self, queue: ActionQueue) -> None:
        gateway = _gateway(queue, _unreachable, ConnectivityMonitor(initially_online=False))

        result = gateway.submit(_report_mutation())

        assert result.is_queued
        assert queue.peek_all() == [result.queued]
        assert result.queued.records == [RecordRef(collection="reports", record_id="r1")]

    def test_always_queue(self, queue: ActionQueue) -> None:
        gateway = _gateway(queue, _unreachable, ConnectivityMonitor(), always_queue=True)

        assert gateway.submit(_report_mutation()).is_queued
        assert queue.pending_count() == 1

    def test_online_sends(self, queue: ActionQueue) -> None:
        gateway = _gateway(
            queue,
            lambda request: httpx.Response(201, json={"id": 12, "title": "Clogged drainage"}),
            ConnectivityMonitor(),
        )

        result = gateway.submit(_report_mutation())

        assert not result.is_queued
        assert result.response_body == {"id": 12, "title": "Clogged drainage"}
        assert queue.pending_count() == 0

    def test_empty_response_body(self, queue: ActionQueue) -> None:
        gateway = _gateway(queue, lambda request: httpx.Response(204), ConnectivityMonitor())

        result = gateway.submit(_report_mutation())

        assert not result.is_queued
        assert result.response_body is None


class TestImmediateExecutorFailures:
    def test_transport_error_queues_and_goes_offline(self, queue: ActionQueue) -> None:
        monitor = ConnectivityMonitor()
        gateway = _gateway(queue, offline_handler, monitor)

        result = gateway.submit(_report_mutation())

        assert result.is_queued
        assert monitor.is_offline()
        assert queue.pending_count() == 1

    def test_server_error_queues(self, queue: ActionQueue) -> None:
        monitor = ConnectivityMonitor()
        gateway = _gateway(queue, lambda request: httpx.Response(502), monitor)

        assert gateway.submit(_report_mutation()).is_queued
        assert monitor.is_online()

    def test_client_error_is_raised(self, queue: ActionQueue) -> None:
        gateway = _gateway(
            queue,
            lambda request: httpx.Response(400, json={"error": "Insufficient points"}),
            ConnectivityMonitor(),
        )

        with pytest.raises(RequestRejectedError, match="Insufficient points") as exc_info:
            gateway.submit(_report_mutation())

        assert exc_info.value.status_code == 400
        assert queue.pending_count() == 0

    def test_client_error_without_json_body(self, queue: ActionQueue) -> None:
        gateway = _gateway(queue, lambda request: httpx.Response(404, text="nope"), ConnectivityMonitor())

        with pytest.raises(RequestRejectedError, match="Not Found"):
            gateway.submit(_report_mutation())
