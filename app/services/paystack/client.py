"""
Paystack REST client (customers, subscriptions) using httpx sync client.
Calls go through a Redis-backed circuit breaker so a gateway outage fails fast
in every worker instead of piling up on timeouts.
"""
import logging
import time
from typing import Any

import httpx
import pybreaker

from app.core.config import settings
from app.services.circuit_breaker import get_circuit_breaker
from app.utils.metrics import paystack_request_duration_seconds, paystack_requests_total

logger = logging.getLogger(__name__)


class PaystackAPIError(Exception):
    def __init__(self, method: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method
        self.status_code = status_code


class PaystackClient:
    def __init__(self, secret_key: str | None = None, base_url: str | None = None) -> None:
        self._secret_key = secret_key or settings.paystack_secret_key
        self._base_url = (base_url or settings.paystack_api_base).rstrip("/")
        self._client: httpx.Client | None = None
        self._breaker = get_circuit_breaker("paystack")

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self._base_url,
                timeout=settings.paystack_timeout,
                headers={
                    "Authorization": f"Bearer {self._secret_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    def _record_request(self, method: str, status: str, duration: float) -> None:
        paystack_requests_total.labels(method=method, status=status).inc()
        paystack_request_duration_seconds.labels(method=method).observe(duration)

    def _post(self, method: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        resp = self.client.post(path, json=payload)
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400 or not body.get("status"):
            message = body.get("message") or f"HTTP {resp.status_code}"
            raise PaystackAPIError(method, message, resp.status_code)
        return body.get("data") or {}

    def _api_call(self, method: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        start = time.time()
        try:
            data = self._breaker.call(self._post, method, path, payload)
            self._record_request(method, "success", time.time() - start)
            return data
        except pybreaker.CircuitBreakerError:
            self._record_request(method, "circuit_open", time.time() - start)
            raise PaystackAPIError(method, "circuit open")
        except (PaystackAPIError, httpx.HTTPError) as e:
            self._record_request(method, "error", time.time() - start)
            logger.warning("paystack_request_failed", extra={"method": method, "error": str(e)})
            raise

    def create_customer(self, email: str, name: str | None = None, phone: str | None = None) -> str:
        """Returns the customer code."""
        first_name, _, last_name = (name or "").partition(" ")
        payload = {"email": email, "first_name": first_name or None, "last_name": last_name or None, "phone": phone}
        data = self._api_call("create_customer", "/customer", {k: v for k, v in payload.items() if v})
        code = data.get("customer_code")
        if not code:
            raise PaystackAPIError("create_customer", "response carried no customer_code")
        return code

    def create_subscription(self, customer: str, plan: str, authorization: str) -> dict[str, Any]:
        """Returns {"subscription_code", "next_payment_date", "status", ...} as sent by the gateway."""
        data = self._api_call(
            "create_subscription",
            "/subscription",
            {"customer": customer, "plan": plan, "authorization": authorization},
        )
        if not data.get("subscription_code"):
            raise PaystackAPIError("create_subscription", "response carried no subscription_code")
        return data

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
