"""Fire-and-forget notification of new appointments.

The coordinator hands a payload to ``submit``; the POST to the webhook
runs on a small background executor so a slow or failing receiver never
delays or rolls back the booking.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

import httpx

from booking_agent.config import NOTIFY_WEBHOOK_URL

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 5.0


class WebhookNotifier:
    def __init__(
        self,
        url: str | None = None,
        *,
        executor: ThreadPoolExecutor | None = None,
        http_client: httpx.Client | None = None,
    ):
        self._url = NOTIFY_WEBHOOK_URL if url is None else url
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify")
        self._client = http_client or httpx.Client(timeout=REQUEST_TIMEOUT_SECONDS)

    def submit(self, payload: dict[str, Any]) -> Future:
        return self._executor.submit(self.send, payload)

    def send(self, payload: dict[str, Any]) -> bool:
        """POST *payload*; returns whether the receiver accepted it."""
        if not self._url:
            logger.info("New appointment %s (no webhook configured)", payload.get("appointment_id"))
            return False
        try:
            response = self._client.post(self._url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "Notification for appointment %s failed: %s",
                payload.get("appointment_id"), exc,
            )
            return False
        logger.info("Notification sent for appointment %s", payload.get("appointment_id"))
        return True

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._client.close()
