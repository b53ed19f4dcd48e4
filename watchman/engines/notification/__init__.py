"""Notification engine — render and deliver security alerts."""

from watchman.engines.notification.mailer import Mailer
from watchman.engines.notification.notifier import Notifier
from watchman.engines.notification.sinks import (
    AlertDispatcher,
    BusAlertSink,
    EmailAlertSink,
    LogAlertSink,
    WebhookAlertSink,
    decode_alert,
    encode_alert,
)
from watchman.engines.notification.template import render_alert, render_webhook_payload

__all__ = [
    "AlertDispatcher",
    "BusAlertSink",
    "EmailAlertSink",
    "LogAlertSink",
    "Mailer",
    "Notifier",
    "WebhookAlertSink",
    "decode_alert",
    "encode_alert",
    "render_alert",
    "render_webhook_payload",
]
