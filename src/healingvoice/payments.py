"""Paystack payment initialization, verification and webhooks."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

import requests

from .errors import AuthenticationError, ConfigurationError, PaymentError
from .subscription import SubscriptionStore

logger = logging.getLogger("healingvoice")

PAYSTACK_API_BASE = "https://api.paystack.co"
SIGNATURE_HEADER = "x-paystack-signature"
DEFAULT_AMOUNT_KOBO = 5000 * 100


class PaystackClient:
    def __init__(
        self,
        secret_key: Optional[str],
        app_url: str = "http://localhost:3000",
        amount_kobo: int = DEFAULT_AMOUNT_KOBO,
        api_base: str = PAYSTACK_API_BASE,
        timeout: float = 20,
    ) -> None:
        self.secret_key = secret_key
        self.app_url = app_url.rstrip("/")
        self.amount_kobo = amount_kobo
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    @property
    def callback_url(self) -> str:
        return f"{self.app_url}/api/payment/callback"

    def _headers(self) -> Dict[str, str]:
        if not self.secret_key:
            raise ConfigurationError("PAYSTACK_SECRET_KEY is missing.")
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def initialize_payment(self, user_id: str, email: str) -> str:
        """Start a checkout and return the hosted authorization url."""
        if not user_id or not email:
            raise ValueError("user_id and email are required.")
        payload = {
            "email": email,
            "amount": self.amount_kobo,
            "callback_url": self.callback_url,
            "metadata": {
                "user_id": user_id,
                "custom_fields": [
                    {
                        "display_name": "User ID",
                        "variable_name": "user_id",
                        "value": user_id,
                    }
                ],
            },
        }
        try:
            r = requests.post(
                f"{self.api_base}/transaction/initialize",
                headers=self._headers(),
                json=payload,
                timeout=self.timeout,
            )
            r.raise_for_status()
            return r.json()["data"]["authorization_url"]
        except (requests.RequestException, KeyError, TypeError, ValueError) as exc:
            logger.error("Paystack initialization error: %s", exc)
            raise PaymentError("Failed to initialize payment") from exc

    def verify_transaction(self, reference: str) -> bool:
        try:
            r = requests.get(
                f"{self.api_base}/transaction/verify/{reference}",
                headers=self._headers(),
                timeout=self.timeout,
            )
            r.raise_for_status()
            body = r.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Paystack verification error: %s", exc)
            raise PaymentError("Failed to verify transaction") from exc
        data = body.get("data") or {}
        return bool(body.get("status")) and data.get("status") == "success"


def _as_bytes(payload: Union[bytes, str]) -> bytes:
    return payload.encode("utf-8") if isinstance(payload, str) else payload


def compute_signature(secret_key: str, payload: Union[bytes, str]) -> str:
    return hmac.new(secret_key.encode("utf-8"), _as_bytes(payload), hashlib.sha512).hexdigest()


def verify_webhook_signature(
    secret_key: Optional[str], payload: Union[bytes, str], signature: Optional[str]
) -> None:
    if not secret_key:
        raise ConfigurationError("PAYSTACK_SECRET_KEY is missing.")
    expected = compute_signature(secret_key, payload)
    if not signature or not hmac.compare_digest(expected, signature):
        raise AuthenticationError("Invalid signature")


def handle_webhook(
    secret_key: Optional[str],
    payload: Union[bytes, str],
    signature: Optional[str],
    store: SubscriptionStore,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """Apply a signed webhook; returns the user granted premium, if any."""
    verify_webhook_signature(secret_key, payload, signature)
    try:
        event: Dict[str, Any] = json.loads(_as_bytes(payload))
    except ValueError as exc:
        raise PaymentError("Malformed webhook payload") from exc
    if not isinstance(event, dict):
        raise PaymentError("Malformed webhook payload")
    if event.get("event") != "charge.success":
        logger.debug("Ignoring webhook event %s", event.get("event"))
        return None
    metadata = (event.get("data") or {}).get("metadata") or {}
    user_id = metadata.get("user_id") if isinstance(metadata, dict) else None
    if not user_id:
        logger.warning("charge.success webhook without user_id metadata")
        return None
    store.grant_premium(user_id, now)
    logger.info("Webhook: premium granted to user %s", user_id)
    return user_id


def handle_callback(
    client: PaystackClient,
    reference: Optional[str],
    user_id: Optional[str],
    store: SubscriptionStore,
    now: Optional[datetime] = None,
) -> str:
    """Verify a checkout redirect and return the query string to send the user back with."""
    if not reference or not user_id:
        return "payment_error=missing_data"
    if not client.secret_key:
        logger.error("PAYSTACK_SECRET_KEY is missing")
        return "payment_error=server_config"
    try:
        verified = client.verify_transaction(reference)
    except PaymentError:
        return "payment_error=api_error"
    if not verified:
        return "payment_error=verification_failed"
    store.grant_premium(user_id, now)
    return "payment_success=true"
