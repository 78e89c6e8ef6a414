"""Business event tracking (httpx sync). Disabled when analytics_api_url is empty."""
import logging
from typing import Any

import httpx

from app.core.config import settings
from app.utils.dates import utcnow
from app.utils.metrics import outbound_requests_total

logger = logging.getLogger(__name__)

EVENT_PAYMENT_SUCCESS = "payment_success"
EVENT_PAYMENT_FAILED = "payment_failed"


class AnalyticsClient:
    def __init__(self, base_url: str | None = None, api_key: str | None = None) -> None:
        self._base_url = (settings.analytics_api_url if base_url is None else base_url).rstrip("/")
        self._api_key = settings.analytics_api_key if api_key is None else api_key
        self._client: httpx.Client | None = None

    @property
    def enabled(self) -> bool:
        return bool(self._base_url)

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(base_url=self._base_url, timeout=settings.http_client_timeout)
        return self._client

    def track(self, name: str, properties: dict[str, Any], user_id: str | None = None) -> None:
        if not self.enabled:
            return
        event = {
            "event_type": name,
            "user_id": user_id,
            "event_properties": properties,
            "time": int(utcnow().timestamp() * 1000),
        }
        try:
            resp = self.client.post("/track", json={"api_key": self._api_key, "events": [event]})
            resp.raise_for_status()
            outbound_requests_total.labels(service="analytics", status="success").inc()
        except httpx.HTTPError:
            outbound_requests_total.labels(service="analytics", status="error").inc()
            raise


analytics_client = AnalyticsClient()
