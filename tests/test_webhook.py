"""
Tests for the webhook gateway: envelope, decoding, failures and the
in-flight duplicate guard.
Run with: pytest tests/test_webhook.py
"""

import asyncio
import json

import httpx
import pytest

from aidedecamp.backends.webhook import WebhookGateway, request_signature
from aidedecamp.errors import (
    HOST_UNREACHABLE,
    OTHER,
    ApiError,
    DecodingError,
    NetworkError,
    ServerReportedError,
)

URL = "https://hook.test/events"

OK_BODY = {
    "success": True,
    "request_id": "r1",
    "data": [{"id": 1, "event_type": "meal", "calories": 250}],
    "metadata": {
        "count": 1,
        "aggregations": {"total_calories": 250},
        "date_range": {"from": "2025-09-01", "to": "2025-09-07"},
    },
    "error": None,
}


def _gateway(handler) -> WebhookGateway:
    return WebhookGateway(URL, transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Signature
# ---------------------------------------------------------------------------

def test_signature_sorts_filter_keys():
    sig = request_signature("GET", "retrieve", {"event_type": "meal", "date_from": "2025-09-01"})
    assert sig == "GET|retrieve|date_from:2025-09-01,event_type:meal"


def test_signature_without_filters():
    assert request_signature("POST", "create") == "POST|create|none"
    assert request_signature("GET", "retrieve", {}) == "GET|retrieve|none"


# ---------------------------------------------------------------------------
# Envelope and decoding
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_sends_envelope_with_data():
    """create_event posts method/operation/request_id/data."""
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "data": []})

    result = await _gateway(handler).create_event({"event_type": "meal", "calories": 250})

    assert result.success is True
    assert seen["method"] == "POST"
    body = seen["body"]
    assert body["method"] == "POST"
    assert body["operation"] == "create"
    assert body["data"] == {"event_type": "meal", "calories": 250}
    assert "filters" not in body
    assert len(body["request_id"]) == 32


@pytest.mark.asyncio
async def test_retrieve_decodes_metadata():
    """Retrieve responses expose count, aggregations and date range."""
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=OK_BODY)

    envelope = await _gateway(handler).retrieve_events({"event_type": "meal"})

    assert seen["body"]["operation"] == "retrieve"
    assert seen["body"]["method"] == "GET"
    assert seen["body"]["filters"] == {"event_type": "meal"}
    assert envelope.metadata.count == 1
    assert envelope.metadata.aggregations.total_calories == 250
    assert envelope.metadata.date_range.start == "2025-09-01"
    assert envelope.data[0]["calories"] == 250


@pytest.mark.asyncio
async def test_success_false_raises_server_error():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "sheet locked"})

    with pytest.raises(ServerReportedError) as exc_info:
        await _gateway(handler).retrieve_events({"event_type": "meal"})
    assert exc_info.value.message == "sheet locked"


@pytest.mark.asyncio
async def test_invalid_json_raises_decoding_error():
    def handler(request):
        return httpx.Response(200, text="<html>hi</html>")

    with pytest.raises(DecodingError):
        await _gateway(handler).create_event({"event_type": "meal"})


@pytest.mark.asyncio
async def test_non_envelope_json_raises_decoding_error():
    def handler(request):
        return httpx.Response(200, json={"ok": 1})

    with pytest.raises(DecodingError):
        await _gateway(handler).create_event({"event_type": "meal"})


@pytest.mark.asyncio
async def test_non_2xx_raises_api_error():
    def handler(request):
        return httpx.Response(500, text="boom")

    with pytest.raises(ApiError) as exc_info:
        await _gateway(handler).create_event({"event_type": "meal"})
    assert exc_info.value.status_code == 500
    assert exc_info.value.detail == "boom"


@pytest.mark.asyncio
async def test_transport_error_raises_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError) as exc_info:
        await _gateway(handler).create_event({"event_type": "meal"})
    assert exc_info.value.kind == HOST_UNREACHABLE


@pytest.mark.asyncio
async def test_unparseable_url_raises_network_error():
    """A webhook URL httpx cannot parse fails like any other network error."""
    def handler(request):
        return httpx.Response(200, json=OK_BODY)

    gateway = WebhookGateway("http://exa mple.com:abc/x", transport=httpx.MockTransport(handler))
    with pytest.raises(NetworkError) as exc_info:
        await gateway.create_event({"event_type": "meal"})

    assert exc_info.value.kind == OTHER
    assert gateway.pending == frozenset()


# ---------------------------------------------------------------------------
# In-flight duplicates
# ---------------------------------------------------------------------------

class GatedHandler:
    """Async handler that holds every request until release() is called."""

    def __init__(self, respond):
        self.respond = respond
        self.gate = asyncio.Event()
        self.arrived = asyncio.Event()
        self.count = 0

    async def __call__(self, request):
        self.count += 1
        self.arrived.set()
        await self.gate.wait()
        return self.respond()

    def release(self):
        self.gate.set()


@pytest.mark.asyncio
async def test_identical_request_in_flight_is_dropped():
    """The second identical retrieve returns None without touching the network."""
    handler = GatedHandler(lambda: httpx.Response(200, json=OK_BODY))
    gateway = _gateway(handler)
    filters = {"event_type": "meal", "date_from": "2025-09-01"}

    first = asyncio.create_task(gateway.retrieve_events(filters))
    await handler.arrived.wait()
    assert gateway.pending == {request_signature("GET", "retrieve", filters)}

    # Same filters in a different key order
    second = await gateway.retrieve_events({"date_from": "2025-09-01", "event_type": "meal"})
    assert second is None

    handler.release()
    envelope = await first
    assert envelope.success is True
    assert handler.count == 1
    assert gateway.pending == frozenset()


@pytest.mark.asyncio
async def test_signature_released_after_failure():
    """A failed request frees its signature for the next attempt."""
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, json=OK_BODY)

    gateway = _gateway(handler)
    with pytest.raises(ApiError):
        await gateway.retrieve_events({"event_type": "meal"})
    assert gateway.pending == frozenset()

    envelope = await gateway.retrieve_events({"event_type": "meal"})
    assert envelope.success is True
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_different_filters_run_concurrently():
    """Only identical signatures collide."""
    handler = GatedHandler(lambda: httpx.Response(200, json=OK_BODY))
    gateway = _gateway(handler)

    a = asyncio.create_task(gateway.retrieve_events({"event_type": "meal"}))
    b = asyncio.create_task(gateway.retrieve_events({"event_type": "expense"}))
    await asyncio.sleep(0)
    await handler.arrived.wait()
    handler.release()

    results = await asyncio.gather(a, b)
    assert all(r is not None for r in results)
    assert handler.count == 2


def test_from_config_uses_webhook_timeout():
    gateway = WebhookGateway.from_config("  " + URL + " ", {"webhook": {"timeout": 5}})
    assert gateway.url == URL
    assert gateway.timeout == 5
