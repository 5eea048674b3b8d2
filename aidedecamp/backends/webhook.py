"""
Webhook gateway: the single endpoint that stores and queries events.

Every call is a JSON POST of an envelope:
    {"method": "POST", "operation": "create", "request_id": "...", "data": {...}}
    {"method": "GET", "operation": "retrieve", "request_id": "...", "filters": {...}}

and expects back:
    {"success": true, "request_id": "...", "data": [...], "metadata": {...}, "error": null}

Identical requests (same method, operation and filters) are not sent twice
concurrently: while one is in flight, a second is dropped and execute()
returns None. The signature is released when the first one finishes,
successfully or not.
"""

from __future__ import annotations

import json
import logging
import time
from uuid import uuid4

import httpx

from aidedecamp.config import get_config
from aidedecamp.errors import ApiError, DecodingError, ServerReportedError, classify_transport_error
from aidedecamp.storage.models import EventEnvelope

logger = logging.getLogger(__name__)

CREATE = ("POST", "create")
RETRIEVE = ("GET", "retrieve")


def request_signature(method: str, operation: str, filters: dict | None = None) -> str:
    """method|operation|k1:v1,k2:v2 with keys sorted, or "none" without filters."""
    if filters:
        parts = ",".join(f"{k}:{filters[k]}" for k in sorted(filters))
    else:
        parts = "none"
    return f"{method}|{operation}|{parts}"


class WebhookGateway:
    """Executes create/retrieve operations against one webhook URL."""

    def __init__(
        self,
        url: str,
        timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.strip()
        self.timeout = timeout
        self._transport = transport
        self._pending: set[str] = set()

    @classmethod
    def from_config(cls, url: str, cfg: dict | None = None, **kwargs) -> WebhookGateway:
        wh = (cfg or get_config()).get("webhook", {})
        return cls(url, timeout=wh.get("timeout", 30), **kwargs)

    @property
    def pending(self) -> frozenset[str]:
        return frozenset(self._pending)

    async def execute(
        self,
        method: str,
        operation: str,
        filters: dict | None = None,
        data: dict | None = None,
    ) -> EventEnvelope | None:
        """
        Send one operation. Returns the decoded envelope, or None when an
        identical request is already in flight.

        Raises NetworkError, ApiError (non-2xx), DecodingError, or
        ServerReportedError (success=false).
        """
        signature = request_signature(method, operation, filters)
        if signature in self._pending:
            logger.info("Dropping duplicate in-flight webhook request %s", signature)
            return None

        self._pending.add(signature)
        try:
            return await self._send(method, operation, filters, data)
        finally:
            self._pending.discard(signature)

    async def _send(
        self,
        method: str,
        operation: str,
        filters: dict | None,
        data: dict | None,
    ) -> EventEnvelope:
        envelope = {
            "method": method,
            "operation": operation,
            "request_id": uuid4().hex,
        }
        if filters is not None:
            envelope["filters"] = filters
        if data is not None:
            envelope["data"] = data

        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=envelope)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            err = classify_transport_error(e)
            logger.warning("Webhook %s/%s failed (%s): %s", method, operation, err.kind, e)
            raise err from e

        latency = (time.monotonic() - t0) * 1000
        if not 200 <= resp.status_code < 300:
            logger.warning(
                "Webhook %s/%s returned HTTP %d after %.0fms: %s",
                method, operation, resp.status_code, latency, resp.text[:200],
            )
            raise ApiError(resp.status_code, resp.text[:200])

        try:
            decoded = EventEnvelope.from_dict(resp.json())
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning("Webhook %s/%s sent an undecodable body: %s", method, operation, e)
            raise DecodingError(f"Could not decode webhook response: {e}") from e

        if not decoded.success:
            raise ServerReportedError(decoded.error or "")

        logger.debug(
            "Webhook %s/%s ok in %.0fms (request_id=%s, %d records)",
            method, operation, latency, envelope["request_id"], len(decoded.data),
        )
        return decoded

    async def create_event(self, record: dict) -> EventEnvelope | None:
        return await self.execute(*CREATE, data=record)

    async def retrieve_events(self, filters: dict | None = None) -> EventEnvelope | None:
        return await self.execute(*RETRIEVE, filters=filters or None)
