"""Alert sinks — where rendered alerts are published."""

from __future__ import annotations

import json

import httpx
import structlog

from watchman.engines.notification.mailer import Mailer
from watchman.engines.notification.template import render_email, render_webhook_payload
from watchman.exceptions import MessageDecodeError
from watchman.interfaces import Alert, AlertSink, MessageBus

log = structlog.get_logger("watchman.notification")

ALERT_TOPIC = "alert"


def encode_alert(alert: Alert) -> str:
    return json.dumps({"subject": alert.subject, "body": alert.body})


def decode_alert(payload: str) -> Alert:
    """Parse a ``{"subject": ..., "body": ...}`` payload."""
    try:
        data = json.loads(payload)
        subject, body = data["subject"], data["body"]
    except (json.JSONDecodeError, KeyError, TypeError) as exc:
        raise MessageDecodeError(f"invalid alert payload: {payload!r}") from exc
    if not isinstance(subject, str) or not isinstance(body, str):
        raise MessageDecodeError(f"invalid alert payload: {payload!r}")
    return Alert(subject=subject, body=body)


class BusAlertSink(AlertSink):
    """Publishes alerts onto the message bus for asynchronous delivery."""

    def __init__(self, bus: MessageBus, topic: str = ALERT_TOPIC) -> None:
        self._bus = bus
        self._topic = topic

    async def send(self, alert: Alert) -> None:
        await self._bus.publish(self._topic, encode_alert(alert))


class WebhookAlertSink(AlertSink):
    """Posts alerts to a chat incoming-webhook URL."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, alert: Alert) -> None:
        response = await self._client.post(self._url, json=render_webhook_payload(alert))
        response.raise_for_status()


class EmailAlertSink(AlertSink):
    """Emails alerts through :class:`Mailer`."""

    def __init__(self, mailer: Mailer, to: str) -> None:
        self._mailer = mailer
        self._to = to or mailer.from_addr

    async def send(self, alert: Alert) -> None:
        subject, body = render_email(alert)
        await self._mailer.send(self._to, subject, body)


class LogAlertSink(AlertSink):
    """Writes alerts to the structured log; used when no channel is configured."""

    async def send(self, alert: Alert) -> None:
        log.warning("alert", subject=alert.subject, body=alert.body)


class AlertDispatcher:
    """Bus handler for the alert topic: decode and forward to a delivery sink."""

    def __init__(self, sink: AlertSink) -> None:
        self._sink = sink

    async def handle(self, payload: str) -> None:
        alert = decode_alert(payload)
        await self._sink.send(alert)
        log.info("alert.delivered", subject=alert.subject, sink=type(self._sink).__name__)
