"""Paystack and notification clients against an httpx mock transport."""
import json
from unittest.mock import patch

import httpx
import pybreaker
import pytest

from app.services.analytics.client import EVENT_PAYMENT_SUCCESS, AnalyticsClient
from app.services.notifications.client import NotificationClient
from app.services.paystack.client import PaystackAPIError, PaystackClient


def _paystack(handler, breaker=None):
    with patch("app.services.paystack.client.get_circuit_breaker", return_value=breaker or pybreaker.CircuitBreaker()):
        client = PaystackClient(secret_key="sk_test_client", base_url="https://paystack.test")
    client._client = httpx.Client(base_url="https://paystack.test", transport=httpx.MockTransport(handler))
    return client


class TestPaystackClient:
    def test_create_subscription(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": True, "data": {"subscription_code": "SUB_x"}})

        data = _paystack(handler).create_subscription(customer="CUS_1", plan="PLN_1", authorization="AUTH_1")

        assert data["subscription_code"] == "SUB_x"
        assert seen["path"] == "/subscription"
        assert seen["body"] == {"customer": "CUS_1", "plan": "PLN_1", "authorization": "AUTH_1"}

    def test_create_customer_splits_name(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": True, "data": {"customer_code": "CUS_new"}})

        assert _paystack(handler).create_customer("a@example.com", "Ada Lovelace") == "CUS_new"
        assert seen["body"] == {"email": "a@example.com", "first_name": "Ada", "last_name": "Lovelace"}

    def test_status_false_is_error(self):
        def handler(request):
            return httpx.Response(200, json={"status": False, "message": "Invalid plan"})

        with pytest.raises(PaystackAPIError, match="Invalid plan"):
            _paystack(handler).create_subscription(customer="CUS_1", plan="bad", authorization="AUTH_1")

    def test_open_breaker_fails_fast(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"status": False})

        breaker = pybreaker.CircuitBreaker(fail_max=1, reset_timeout=60)
        client = _paystack(handler, breaker)
        with pytest.raises((PaystackAPIError, pybreaker.CircuitBreakerError)):
            client.create_subscription(customer="CUS_1", plan="PLN_1", authorization="AUTH_1")
        with pytest.raises(PaystackAPIError, match="circuit open"):
            client.create_subscription(customer="CUS_1", plan="PLN_1", authorization="AUTH_1")
        assert len(calls) == 1


class TestNotificationClient:
    def test_disabled_without_url(self):
        client = NotificationClient(base_url="", api_key="")
        client.notify("u1", {"title": "t", "message": "m"})
        assert client._client is None

    def test_posts_recipients(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(202)

        client = NotificationClient(base_url="https://notify.test", api_key="k")
        client._client = httpx.Client(base_url="https://notify.test", transport=httpx.MockTransport(handler))
        client.notify_many(["u1", "u2"], {"title": "Paid", "message": "ok"})

        assert seen["path"] == "/notify"
        assert seen["body"]["user_ids"] == ["u1", "u2"]
        assert seen["body"]["title"] == "Paid"

    def test_http_error_propagates(self):
        client = NotificationClient(base_url="https://notify.test", api_key="k")
        client._client = httpx.Client(
            base_url="https://notify.test", transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )
        with pytest.raises(httpx.HTTPStatusError):
            client.send_template("u1", "subscription_renewed", {})


class TestAnalyticsClient:
    def test_track_posts_event(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200)

        client = AnalyticsClient(base_url="https://analytics.test", api_key="key")
        client._client = httpx.Client(base_url="https://analytics.test", transport=httpx.MockTransport(handler))
        client.track(EVENT_PAYMENT_SUCCESS, {"booking_id": "b1"}, "u1")

        assert seen["path"] == "/track"
        event = seen["body"]["events"][0]
        assert event["event_type"] == "payment_success"
        assert event["user_id"] == "u1"
        assert event["event_properties"] == {"booking_id": "b1"}

    def test_disabled_without_url(self):
        client = AnalyticsClient(base_url="")
        client.track(EVENT_PAYMENT_SUCCESS, {})
        assert client._client is None
