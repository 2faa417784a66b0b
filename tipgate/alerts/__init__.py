"""Alerting: security and payment events fanned out to logs and Slack."""

from tipgate.alerts.protocol import (
    PAYMENT,
    SECURITY,
    AlertDispatcher,
    AlertEvent,
    AlertSink,
    LoggingAlertSink,
    payment_event,
    security_alert,
)
from tipgate.alerts.slack import SlackAlertSink

__all__ = [
    "PAYMENT",
    "SECURITY",
    "AlertDispatcher",
    "AlertEvent",
    "AlertSink",
    "LoggingAlertSink",
    "SlackAlertSink",
    "payment_event",
    "security_alert",
]
