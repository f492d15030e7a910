"""Razorpay-style payment gateway client.

Orders are created through the gateway's REST API (HTTP basic auth with the
key id and secret, amounts in paise). When no keys are configured an offline
order id is generated so the escrow flow can run end to end in development.
Payment callbacks are authenticated with HMAC-SHA256 over
``"{order_id}|{payment_id}"`` keyed by the gateway secret.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
from decimal import Decimal

import httpx

from wasteex.app.config import get_settings
from wasteex.domain.errors import GatewayError

logger = logging.getLogger(__name__)


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class PaymentGateway:
    """Thin async client for order creation and callback verification."""

    def __init__(self, key_id: str, key_secret: str, base_url: str, timeout: float = 10.0) -> None:
        self._key_id = key_id
        self._key_secret = key_secret
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._key_id and self._key_secret)

    async def create_order(self, amount: Decimal, currency: str, receipt: str) -> str:
        """Create a gateway order and return its id."""
        if not self.configured:
            order_id = f"order_offline_{uuid.uuid4().hex[:14]}"
            logger.info("Payment gateway not configured, issuing offline order %s", order_id)
            return order_id

        payload = {
            "amount": int((amount * 100).to_integral_value()),
            "currency": currency,
            "receipt": receipt,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    f"{self._base_url}/orders",
                    json=payload,
                    auth=(self._key_id, self._key_secret),
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error("Gateway order creation failed for %s: HTTP %s", receipt, exc.response.status_code)
            raise GatewayError(f"gateway rejected order for {receipt} (HTTP {exc.response.status_code})") from exc
        except httpx.RequestError as exc:
            logger.error("Gateway order request failed for %s: %s", receipt, exc)
            raise GatewayError(f"gateway unreachable while creating order for {receipt}") from exc

        order_id = data.get("id")
        if not order_id:
            raise GatewayError(f"gateway response for {receipt} has no order id")
        return order_id

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Constant-time check of the gateway callback signature.

        Without a key secret nothing verifies; an empty HMAC key would let
        anyone forge a callback.
        """
        if not self._key_secret:
            logger.warning("Payment gateway has no key secret, rejecting signature for order %s", order_id)
            return False
        if not order_id or not payment_id or not signature:
            return False
        expected = compute_signature(order_id, payment_id, self._key_secret)
        return hmac.compare_digest(expected, signature)


def get_payment_gateway() -> PaymentGateway:
    settings = get_settings()
    return PaymentGateway(
        settings.razorpay_key_id,
        settings.razorpay_key_secret,
        settings.razorpay_base_url,
    )
