import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from healingvoice.errors import AuthenticationError, ConfigurationError, PaymentError
from healingvoice.payments import (
    PaystackClient,
    compute_signature,
    handle_callback,
    handle_webhook,
    verify_webhook_signature,
)
from healingvoice.subscription import InMemorySubscriptionStore, add_months

SECRET = "sk_test_secret"
NOW = datetime(2026, 3, 10, tzinfo=timezone.utc)


def _charge_success(user_id="u1"):
    return json.dumps(
        {"event": "charge.success", "data": {"reference": "ref", "metadata": {"user_id": user_id}}}
    ).encode("utf-8")


def _response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


def test_signature_is_hmac_sha512_hex():
    sig = compute_signature(SECRET, b"{}")
    assert len(sig) == 128
    verify_webhook_signature(SECRET, b"{}", sig)


def test_valid_webhook_grants_premium():
    store = InMemorySubscriptionStore()
    payload = _charge_success()
    granted = handle_webhook(SECRET, payload, compute_signature(SECRET, payload), store, NOW)
    assert granted == "u1"
    status = store.get_status("u1", NOW)
    assert status.is_premium
    assert status.expires_at == add_months(NOW)


def test_bad_signature_is_rejected_without_state_change():
    store = InMemorySubscriptionStore()
    with pytest.raises(AuthenticationError):
        handle_webhook(SECRET, _charge_success(), "deadbeef", store, NOW)
    assert not store.get_status("u1", NOW).is_premium


def test_missing_signature_is_rejected():
    with pytest.raises(AuthenticationError):
        verify_webhook_signature(SECRET, b"{}", None)


def test_webhook_requires_secret():
    with pytest.raises(ConfigurationError):
        verify_webhook_signature(None, b"{}", "x")


def test_other_events_are_acknowledged_but_ignored():
    store = InMemorySubscriptionStore()
    payload = json.dumps({"event": "transfer.success", "data": {}}).encode()
    assert handle_webhook(SECRET, payload, compute_signature(SECRET, payload), store, NOW) is None


def test_initialize_payment_returns_authorization_url():
    client = PaystackClient(SECRET, app_url="https://app.example/")
    resp = _response({"status": True, "data": {"authorization_url": "https://checkout/abc"}})
    with patch("healingvoice.payments.requests.post", return_value=resp) as post:
        url = client.initialize_payment("u1", "u1@example.com")
    assert url == "https://checkout/abc"
    body = post.call_args.kwargs["json"]
    assert body["amount"] == 500000
    assert body["callback_url"] == "https://app.example/api/payment/callback"
    assert body["metadata"]["user_id"] == "u1"
    assert post.call_args.kwargs["headers"]["Authorization"] == f"Bearer {SECRET}"


def test_initialize_payment_wraps_http_errors():
    client = PaystackClient(SECRET)
    with patch(
        "healingvoice.payments.requests.post",
        side_effect=requests.ConnectionError("down"),
    ):
        with pytest.raises(PaymentError):
            client.initialize_payment("u1", "u1@example.com")


def test_initialize_payment_requires_secret():
    with pytest.raises(ConfigurationError):
        PaystackClient(None).initialize_payment("u1", "u1@example.com")


def test_callback_grants_premium_on_verified_transaction():
    store = InMemorySubscriptionStore()
    client = PaystackClient(SECRET)
    resp = _response({"status": True, "data": {"status": "success"}})
    with patch("healingvoice.payments.requests.get", return_value=resp) as get:
        result = handle_callback(client, "ref123", "u1", store, NOW)
    assert result == "payment_success=true"
    assert get.call_args.args[0].endswith("/transaction/verify/ref123")
    assert store.get_status("u1", NOW).is_premium


def test_callback_outcomes():
    store = InMemorySubscriptionStore()
    client = PaystackClient(SECRET)
    assert handle_callback(client, None, "u1", store, NOW) == "payment_error=missing_data"
    assert handle_callback(PaystackClient(None), "ref", "u1", store, NOW) == "payment_error=server_config"

    failed = _response({"status": True, "data": {"status": "abandoned"}})
    with patch("healingvoice.payments.requests.get", return_value=failed):
        assert handle_callback(client, "ref", "u1", store, NOW) == "payment_error=verification_failed"

    with patch("healingvoice.payments.requests.get", side_effect=requests.Timeout("slow")):
        assert handle_callback(client, "ref", "u1", store, NOW) == "payment_error=api_error"

    assert not store.get_status("u1", NOW).is_premium


def test_signed_but_malformed_webhook_is_rejected():
    store = InMemorySubscriptionStore()
    for payload in (b"not json", b"[1, 2]"):
        with pytest.raises(PaymentError):
            handle_webhook(SECRET, payload, compute_signature(SECRET, payload), store, NOW)
    assert not store.get_status("u1", NOW).is_premium
