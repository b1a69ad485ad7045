"""Webhook fan-out for monitoring events.

The dispatcher keeps the current webhook registrations in memory (reloaded from
the persistence backend after every change) and delivers each event to every
matching target concurrently. Delivery is at-least-once best effort: a target
that times out, fails to connect or answers with a non-2xx status is counted as
failed and not retried, and one target's failure never affects another's.

Payloads are signed with HMAC-SHA256 over the exact request body when the
registration carries a secret. Receivers verify `X-Webhook-Signature` against
the raw bytes they received.
"""

import asyncio
from datetime import datetime, timezone
from enum import Enum
import hashlib
import hmac
import json
import logging
from time import time
from typing import Any, List, Optional, Set, Tuple

import aiohttp
import sentry_sdk
from aiohttp import ClientSession, ClientTimeout
from pydantic import BaseModel

from net.cloudmon.app.metrics import MetricsClient, NoOpMetricsClient
from net.cloudmon.errors import TransportFailure
from net.cloudmon.store.base import PersistenceBackend
from net.cloudmon.store.types import WebhookRegistration

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 10.0
USER_AGENT = "cloudmon-webhook/1.0"

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"


class EventType(str, Enum):
    quota_warning = "quota_warning"
    quota_exceeded = "quota_exceeded"
    service_down = "service_down"
    service_error = "service_error"
    login_failed = "login_failed"
    account_added = "account_added"
    account_removed = "account_removed"


TEST_EVENT = "test"
"""Synthetic event sent by `test_webhook`; never fanned out."""


class DispatchSummary(BaseModel):
    success: int = 0
    failed: int = 0


class WebhookTestResult(BaseModel):
    success: bool
    status: Optional[int] = None
    body: Optional[str] = None
    error: Optional[str] = None


def _event_name(event: Any) -> str:
    return event.value if isinstance(event, Enum) else str(event)


def build_payload(event: Any, data: Any, now: Optional[datetime] = None) -> bytes:
    """Serialise the `{event, timestamp, data}` envelope once, for sending and signing."""
    now = now or datetime.now(timezone.utc)
    envelope = {
        "event": _event_name(event),
        "timestamp": now.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z"),
        "data": data,
    }
    return json.dumps(envelope, default=str).encode("utf-8")


def sign_payload(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class NotificationDispatcher:
    def __init__(
        self,
        http_session: ClientSession,
        metrics_client: Optional[MetricsClient] = None,
        timeout: float = WEBHOOK_TIMEOUT,
    ) -> None:
        self.http_session = http_session
        self.metrics_client = metrics_client or NoOpMetricsClient()
        self.timeout = timeout
        self._webhooks: List[WebhookRegistration] = []
        self._pending: Set[asyncio.Task] = set()

    def set_webhooks(self, webhooks: Optional[List[WebhookRegistration]]) -> None:
        self._webhooks = list(webhooks or [])

    def get_webhooks(self) -> List[WebhookRegistration]:
        return list(self._webhooks)

    def add_webhook(
        self,
        url: str,
        events: Optional[List[str]] = None,
        secret: Optional[str] = None,
        name: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> str:
        """Register a webhook in memory only and return its generated id."""
        webhook = WebhookRegistration(
            url=url, events=events, secret=secret, name=name, user_id=user_id
        )
        self._webhooks.append(webhook)
        return webhook.id

    def remove_webhook(self, webhook_id: str) -> bool:
        for index, webhook in enumerate(self._webhooks):
            if webhook.id == webhook_id:
                del self._webhooks[index]
                return True
        return False

    async def reload(self, backend: PersistenceBackend) -> int:
        """Replace the in-memory registrations with every persisted webhook."""
        self.set_webhooks(await backend.get_webhooks())
        return len(self._webhooks)

    def matching(self, event: Any) -> List[WebhookRegistration]:
        name = _event_name(event)
        return [webhook for webhook in self._webhooks if webhook.accepts(name)]

    async def _deliver(
        self, url: str, secret: Optional[str], event: str, payload: bytes
    ) -> Tuple[int, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            EVENT_HEADER: event,
        }
        if secret:
            headers[SIGNATURE_HEADER] = sign_payload(payload, secret)

        try:
            async with self.http_session.post(
                url,
                data=payload,
                headers=headers,
                timeout=ClientTimeout(total=self.timeout),
            ) as response:
                body = await response.text()
                if not 200 <= response.status < 300:
                    raise TransportFailure.bad_status(response.status, body)
                return response.status, body
        except asyncio.TimeoutError as e:
            raise TransportFailure.timeout() from e
        except (aiohttp.ClientError, ValueError) as e:
            raise TransportFailure.connection(f"{type(e).__name__}: {e}") from e

    async def send_webhook(self, event: Any, data: Any) -> DispatchSummary:
        """
        Deliver an event to every matching registration and wait for all outcomes.

        Never raises for delivery problems; the returned summary carries the
        per-target success and failure counts.
        """
        name = _event_name(event)
        targets = self.matching(name)
        if not targets:
            return DispatchSummary()

        payload = build_payload(name, data)
        start_time = time()
        results = await asyncio.gather(
            *(self._deliver(t.url, t.secret, name, payload) for t in targets),
            return_exceptions=True,
        )

        summary = DispatchSummary()
        for target, result in zip(targets, results):
            if isinstance(result, BaseException):
                summary.failed += 1
                logger.debug("Webhook %s failed for %s: %s", target.id, name, result)
            else:
                summary.success += 1

        self.metrics_client.timer(
            "cloudmon.webhook.dispatch.time", time() - start_time, tag_dict={"event": name}
        )
        self.metrics_client.increment(
            "cloudmon.webhook.delivery.success", summary.success, tag_dict={"event": name}
        )
        self.metrics_client.increment(
            "cloudmon.webhook.delivery.failed", summary.failed, tag_dict={"event": name}
        )

        if summary.failed > 0:
            logger.warning(
                "Webhook notification %s: %d succeeded, %d failed",
                name,
                summary.success,
                summary.failed,
            )
        return summary

    async def test_webhook(
        self, url: str, secret: Optional[str] = None
    ) -> WebhookTestResult:
        """Send one synthetic event to url and report the raw outcome."""
        payload = build_payload(TEST_EVENT, {"message": "This is a test message"})
        try:
            status, body = await self._deliver(url, secret, TEST_EVENT, payload)
        except TransportFailure as e:
            return WebhookTestResult(success=False, error=str(e))
        return WebhookTestResult(success=True, status=status, body=body)

    def dispatch_in_background(self, event: Any, data: Any) -> asyncio.Task:
        """
        Fire-and-forget variant of `send_webhook` for business actions.

        The caller never awaits the returned task. Its outcome is only logged,
        and a strong reference is held until it finishes.
        """
        task = asyncio.create_task(self.send_webhook(event, data))
        self._pending.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            sentry_sdk.capture_exception(exc)
            logger.error("Background webhook dispatch failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait for background dispatches still in flight (used at shutdown)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
