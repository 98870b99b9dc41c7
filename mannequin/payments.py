import hashlib
import hmac
import logging
from typing import Dict, NamedTuple, Optional, Union

import httpx

from .exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


class Plan(NamedTuple):
    name: str
    title: str
    credits: int
    amount: int  # paise
    currency: str = "INR"


PLANS: Dict[str, Plan] = {
    "pro": Plan("pro", "Pro Plan", credits=200, amount=2000),
    "startup": Plan("startup", "Startup Plan", credits=500, amount=4000),
    "business": Plan("business", "Business Plan", credits=1500, amount=10000),
}


def get_plan(name: Optional[str]) -> Optional[Plan]:
    if not name:
        return None
    return PLANS.get(name)


def _hmac_hex(secret: str, message: Union[str, bytes]) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _equal(expected: str, supplied: Optional[str]) -> bool:
    if not supplied:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))


def payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    return _hmac_hex(secret, f"{order_id}|{payment_id}")


def verify_payment_signature(order_id: str, payment_id: str, signature: Optional[str], secret: str) -> bool:
    """Checkout signature: HMAC-SHA256 over ``order_id|payment_id`` with the key secret."""
    if not secret:
        return False
    return _equal(payment_signature(order_id, payment_id, secret), signature)


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Webhook signature: HMAC-SHA256 over the raw request body with the webhook secret."""
    if not secret:
        return False
    return _equal(_hmac_hex(secret, body), signature)


class RazorpayGateway:
    """Minimal Razorpay Orders API client."""

    def __init__(self, key_id: str, key_secret: str, base_url: str = "https://api.razorpay.com/v1",
                 timeout: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def create_order(self, amount: int, currency: str, receipt: str, notes: Optional[dict] = None) -> dict:
        if not self.key_id or not self.key_secret:
            raise PaymentGatewayError("Payment gateway is not configured")
        body = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}}
        async with httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            try:
                response = await client.post("/orders", json=body)
                response.raise_for_status()
                order = response.json()
            except httpx.HTTPStatusError as e:
                detail = _gateway_error_description(e.response)
                logger.error("Razorpay rejected order %s: %s", receipt, detail)
                raise PaymentGatewayError(detail or "Failed to create order") from e
            except httpx.RequestError as e:
                logger.error("Razorpay request failed for %s: %s", receipt, e)
                raise PaymentGatewayError("Failed to reach payment gateway") from e
            except ValueError as e:
                logger.error("Razorpay returned a non-JSON body for %s", receipt)
                raise PaymentGatewayError("Failed to create order") from e
        if not isinstance(order, dict) or not order.get("id"):
            logger.error("Razorpay response for %s has no order id", receipt)
            raise PaymentGatewayError("Failed to create order")
        return order


def _gateway_error_description(response: httpx.Response) -> Optional[str]:
    try:
        return response.json().get("error", {}).get("description")
    except (ValueError, AttributeError):
        return None
