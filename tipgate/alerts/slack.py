"""Slack alert sink: posts alerts via Slack Incoming Webhook.

Security: webhook URL comes from settings, never logged.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import requests

from tipgate.alerts.protocol import PAYMENT, AlertEvent

logger = logging.getLogger(__name__)

_SEVERITY_EMOJI = {
    "info": "",
    "warning": ":warning:",
    "error": ":x:",
    "critical": ":rotating_light:",
}

_SEVERITY_COLOR = {
    "info": "#36a64f",     # green
    "warning": "#ff9900",  # orange
    "error": "#cc0000",    # red
    "critical": "#8b0000", # dark red
}


class SlackAlertSink:
    """Slack sink via Incoming Webhook."""

    def __init__(self, webhook_url: str, sink_id: str = "slack", timeout: float = 10.0):
        self._sink_id = sink_id
        self._webhook_url = webhook_url
        self._timeout = timeout

    @property
    def sink_id(self) -> str:
        return self._sink_id

    @property
    def is_configured(self) -> bool:
        return bool(self._webhook_url)

    def format_message(self, event: AlertEvent) -> dict[str, Any]:
        """Format as a Slack attachment message."""
        emoji = ":moneybag:" if event.category == PAYMENT else _SEVERITY_EMOJI.get(event.severity, "")
        color = _SEVERITY_COLOR.get(event.severity, "#36a64f")
        label = "Payment" if event.category == PAYMENT else "Security Alert"
        title = f"{emoji} {label}: {event.kind}".strip()

        fields = [
            {"title": "Processor", "value": event.processor or "n/a", "short": True},
            {"title": "Timestamp", "value": event.timestamp, "short": True},
            {"title": "Source IP", "value": event.source_address or "unknown", "short": True},
            {"title": "Severity", "value": event.severity, "short": True},
        ]
        if event.detail:
            fields.append({
                "title": "Details",
                "value": f"```{json.dumps(event.detail, indent=2, default=str)[:1500]}```",
                "short": False,
            })

        return {
            "text": title,
            "attachments": [
                {
                    "color": color,
                    "fields": fields,
                    "fallback": title,
                }
            ],
        }

    def send(self, event: AlertEvent) -> None:
        """Post the event. Raises on transport or API errors."""
        resp = requests.post(
            self._webhook_url,
            json=self.format_message(event),
            timeout=self._timeout,
        )
        if resp.status_code != 200:
            raise RuntimeError(f"Slack API error: {resp.status_code}")
