from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)


def send_slack_message(*, webhook_url: str, text: str, timeout_seconds: float = 20.0) -> None:
    with httpx.Client(timeout=timeout_seconds) as client:
        r = client.post(webhook_url, json={"text": text})
        r.raise_for_status()


class SlackNotifier:
    """Best-effort delivery to a Slack incoming webhook.

    Without a webhook URL every send is a no-op. Delivery errors are logged and
    never reach the caller.
    """

    def __init__(self, webhook_url: str | None) -> None:
        self.webhook_url = webhook_url

    def send(self, text: str) -> None:
        if not self.webhook_url:
            logger.debug("SLACK_WEBHOOK_URL not set, skipping notification")
            return
        try:
            send_slack_message(webhook_url=self.webhook_url, text=text)
        except Exception as e:
            logger.warning("Failed to send Slack message (%s: %s)", type(e).__name__, e)
