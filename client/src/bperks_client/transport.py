"""httpx transport that keeps API reads working without a connection."""

import logging

import httpx
from pydantic import BaseModel

from .cache import now_ms
from .store import LocalStore

logger = logging.getLogger(__name__)

CACHE_HEADER = "X-BPerks-Cache"
API_PREFIX = "/api/"


class CachedResponse(BaseModel):
    status_code: int
    content_type: str | None = None
    body: str
    stored_at_ms: int


def offline_response(request: httpx.Request) -> httpx.Response:
    """Synthesized answer for an API read with nothing cached."""
    return httpx.Response(
        503,
        json={"error": "Offline", "message": "This feature is not available offline"},
        headers={CACHE_HEADER: "offline"},
        request=request,
    )


class OfflineFallbackTransport(httpx.BaseTransport):
    """Network-first for API GETs, falling back to the last good response.

    Successful JSON reads under ``/api/`` are stored. When the network fails,
    the stored body is replayed (marked with ``X-BPerks-Cache: hit``); if
    nothing is stored a 503 is synthesized. Other requests pass straight
    through and transport errors propagate.
    """

    def __init__(self, store: LocalStore, transport: httpx.BaseTransport | None = None):
        self._store = store
        self._transport = transport or httpx.HTTPTransport()

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        if request.method != "GET" or not request.url.path.startswith(API_PREFIX):
            return self._transport.handle_request(request)

        key = request.url.raw_path.decode("ascii")
        try:
            response = self._transport.handle_request(request)
        except httpx.TransportError as e:
            logger.debug("Network read failed for %s: %s", key, e)
            return self._from_cache(key, request)

        if response.is_success and "json" in response.headers.get("content-type", ""):
            response.read()
            cached = CachedResponse(
                status_code=response.status_code,
                content_type=response.headers.get("content-type"),
                body=response.text,
                stored_at_ms=now_ms(),
            )
            self._store.set(key, cached.model_dump(mode="json"))
        return response

    def close(self) -> None:
        self._transport.close()

    def _from_cache(self, key: str, request: httpx.Request) -> httpx.Response:
        raw = self._store.get(key)
        if raw is None:
            return offline_response(request)
        try:
            cached = CachedResponse.model_validate(raw)
        except ValueError:
            logger.exception("Discarding malformed cached response for %s", key)
            return offline_response(request)

        headers = {CACHE_HEADER: "hit"}
        if cached.content_type:
            headers["Content-Type"] = cached.content_type
        return httpx.Response(
            cached.status_code,
            headers=headers,
            content=cached.body.encode("utf-8"),
            request=request,
        )
