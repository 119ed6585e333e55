"""Where mutations go: straight to the API, or into the offline queue."""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from .errors import RequestRejectedError
from .network import ConnectivityMonitor
from .queue import ActionKind, ActionQueue, HttpMethod, QueuedAction, RecordRef

logger = logging.getLogger(__name__)


@dataclass
class Mutation:
    """A request that changes server state."""

    kind: ActionKind
    endpoint: str
    method: HttpMethod
    payload: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    records: list[RecordRef] = field(default_factory=list)


@dataclass
class MutationResult:
    """What happened to a submitted mutation.

    Exactly one of ``response_body`` (sent) or ``queued`` (deferred) is set.
    """

    response_body: Any = None
    queued: QueuedAction | None = None

    @property
    def is_queued(self) -> bool:
        return self.queued is not None


class MutationGateway(Protocol):
    def submit(self, mutation: Mutation) -> MutationResult: ...


class QueueingExecutor:
    """Records every mutation for later replay."""

    def __init__(self, queue: ActionQueue):
        self._queue = queue

    def submit(self, mutation: Mutation) -> MutationResult:
        action = self._queue.enqueue(
            kind=mutation.kind,
            endpoint=mutation.endpoint,
            method=mutation.method,
            payload=mutation.payload,
            headers=mutation.headers,
            records=mutation.records,
        )
        return MutationResult(queued=action)


class ImmediateExecutor:
    """Sends mutations right away.

    Transport errors and 5xx responses are transient: the mutation is handed
    to ``fallback`` and the monitor is told we are offline. A 4xx answer is
    final and raised as ``RequestRejectedError``.
    """

    def __init__(
        self,
        client: httpx.Client,
        fallback: QueueingExecutor,
        monitor: ConnectivityMonitor | None = None,
    ):
        self._client = client
        self._fallback = fallback
        self._monitor = monitor

    def submit(self, mutation: Mutation) -> MutationResult:
        try:
            response = self._client.request(
                mutation.method.value,
                mutation.endpoint,
                json=mutation.payload,
                headers=mutation.headers,
            )
        except httpx.HTTPError:
            logger.warning(
                "Failed to send %s %s, queueing locally",
                mutation.method,
                mutation.endpoint,
            )
            if self._monitor is not None:
                self._monitor.set_online(False)
            return self._fallback.submit(mutation)

        if response.is_server_error:
            logger.warning(
                "Server error %d for %s %s, queueing locally",
                response.status_code,
                mutation.method,
                mutation.endpoint,
            )
            return self._fallback.submit(mutation)

        if not response.is_success:
            raise RequestRejectedError(response.status_code, error_message(response))

        return MutationResult(response_body=response_json(response))


class ConnectivityGateway:
    """Picks the executor for each mutation from the current connectivity."""

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        immediate: ImmediateExecutor,
        queueing: QueueingExecutor,
        always_queue: bool = False,
    ):
        self._monitor = monitor
        self._immediate = immediate
        self._queueing = queueing
        self._always_queue = always_queue

    def submit(self, mutation: Mutation) -> MutationResult:
        if self._always_queue or self._monitor.is_offline():
            return self._queueing.submit(mutation)
        return self._immediate.submit(mutation)


def response_json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def error_message(response: httpx.Response) -> str:
    body = response_json(response)
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return response.reason_phrase or "request failed"
