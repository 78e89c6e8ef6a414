"""
Push notification service client (httpx sync). Fire-and-forget from the
settlement handlers' point of view: they always call it through best_effort.
"""
import logging
import time
from typing import Any

import httpx

from app.core.config import settings
from app.utils.metrics import outbound_requests_total

logger = logging.getLogger(__name__)


class NotificationClient:
    def __init__(self, base_url: str | None = None, api_key: str | None = None) -> None:
        self._base_url = (settings.notifications_api_url if base_url is None else base_url).rstrip("/")
        self._api_key = settings.notifications_api_key if api_key is None else api_key
        self._client: httpx.Client | None = None

    @property
    def enabled(self) -> bool:
        return bool(self._base_url)

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
            self._client = httpx.Client(
                base_url=self._base_url,
                timeout=settings.http_client_timeout,
                headers=headers,
            )
        return self._client

    def _send(self, path: str, body: dict[str, Any]) -> None:
        if not self.enabled:
            logger.debug("notifications_disabled")
            return
        start = time.time()
        try:
            resp = self.client.post(path, json=body)
            resp.raise_for_status()
            outbound_requests_total.labels(service="notifications", status="success").inc()
        except httpx.HTTPError:
            outbound_requests_total.labels(service="notifications", status="error").inc()
            raise
        finally:
            logger.debug("notification_sent", extra={"latency_ms": int((time.time() - start) * 1000)})

    def notify(self, user_id: str, notification: dict[str, Any]) -> None:
        """notification: {title, message, data, url}"""
        self._send("/notify", {"user_ids": [user_id], **notification})

    def notify_many(self, user_ids: list[str], notification: dict[str, Any]) -> None:
        if not user_ids:
            return
        self._send("/notify", {"user_ids": list(user_ids), **notification})

    def send_template(self, user_id: str, template: str, variables: dict[str, Any]) -> None:
        self._send("/templates/send", {"user_id": user_id, "template": template, "variables": variables})


notification_client = NotificationClient()
