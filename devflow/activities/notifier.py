"""Notification activity: posts human-facing messages to a webhook.

With notifications disabled or no webhook configured the message is only
logged, which keeps local runs and tests quiet.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from devflow.core.config import NotificationConfig
from devflow.core.exceptions import NotificationError
from devflow.core.models import Notification

logger = logging.getLogger("devflow.activities.notifier")


class WebhookNotifier:
    """Sends notifications as JSON to a webhook URL.

    Injected dependencies:
        config: Webhook URL, timeout and on/off switch.
        client: Optional pre-built httpx client (tests pass a MockTransport).
    """

    def __init__(self, config: NotificationConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout_seconds)
        return self._client

    def send_notification(self, notification: Notification) -> None:
        """Deliver one notification.

        Raises:
            NotificationError: The webhook could not be reached or rejected it.
        """
        if not self.config.enabled or not self.config.webhook_url:
            logger.info("Notification (not delivered): %s", notification.subject)
            return

        payload = {
            "subject": notification.subject,
            "body": notification.body,
            "priority": notification.priority.value,
        }
        try:
            response = self.client.post(self.config.webhook_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"Webhook rejected notification ({e.response.status_code}): {notification.subject}"
            ) from e
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook unreachable: {e}") from e

        logger.info("Notification sent: %s", notification.subject)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
