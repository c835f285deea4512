"""
Razorpay gateway client.

Only the server side calls live here: creating a gateway order, fetching a
payment and checking signatures. The hosted checkout widget runs in the
browser with the public key id.
"""
import hashlib
import hmac
import logging
import math
import random
import time
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional

import httpx
from fastapi import Request

from storefront.shared.utils import settings

logger = logging.getLogger("storefront.payments")


class GatewayError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidAmountError(ValueError):
    pass


def to_minor_units(amount) -> int:
    """Convert a major-unit amount (rupees) to the gateway's minor unit (paise)."""
    if isinstance(amount, bool) or amount is None:
        raise InvalidAmountError("Amount must be a positive number")
    if isinstance(amount, float) and not math.isfinite(amount):
        raise InvalidAmountError("Amount must be a positive number")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError("Amount must be a positive number")
    if not value.is_finite() or value <= 0:
        raise InvalidAmountError("Amount must be a positive number")
    minor = int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if minor <= 0:
        raise InvalidAmountError("Amount is below the smallest chargeable unit")
    return minor


def sign(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_payment_signature(razorpay_order_id: str, razorpay_payment_id: str, signature: str,
                             secret: str = settings.RAZORPAY_KEY_SECRET) -> bool:
    if not (razorpay_order_id and razorpay_payment_id and signature):
        return False
    expected = sign(secret, f"{razorpay_order_id}|{razorpay_payment_id}".encode())
    return hmac.compare_digest(expected, signature)


def verify_webhook_signature(body: bytes, signature: Optional[str],
                             secret: str = settings.RAZORPAY_WEBHOOK_SECRET) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign(secret, body), signature)


def make_receipt() -> str:
    return f"receipt_{int(time.time() * 1000)}_{random.randint(0, 999)}"


class RazorpayClient:
    def __init__(
        self,
        key_id: str = settings.RAZORPAY_KEY_ID,
        key_secret: str = settings.RAZORPAY_KEY_SECRET,
        base_url: str = settings.RAZORPAY_API_URL,
        timeout: float = settings.GATEWAY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self.transport
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        async with self._client() as client:
            try:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                description = _error_description(e.response)
                logger.error(f"Razorpay {method} {path} failed: {description}")
                raise GatewayError(description, e.response.status_code)
            except httpx.RequestError as e:
                logger.error(f"Razorpay {method} {path} unreachable: {e}")
                raise GatewayError("Payment gateway unavailable")

    async def create_order(self, amount, currency: str = settings.CURRENCY,
                           notes: Optional[dict] = None, receipt: Optional[str] = None) -> dict:
        """Create a gateway order. ``amount`` is in major units."""
        minor = to_minor_units(amount)
        payload = {
            "amount": minor,
            "currency": currency,
            "receipt": receipt or make_receipt(),
            "payment_capture": 1,
            "notes": {k: str(v) for k, v in (notes or {}).items()},
        }
        order = await self._request("POST", "/orders", json=payload)
        logger.info(f"Razorpay order created: {order.get('id')} ({order.get('amount')} {order.get('currency')})")
        return order

    async def fetch_payment(self, payment_id: str) -> dict:
        return await self._request("GET", f"/payments/{payment_id}")


def get_gateway(request: Request) -> RazorpayClient:
    return request.app.state.gateway


def _error_description(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("description"):
        return error["description"]
    return f"HTTP {response.status_code}"
