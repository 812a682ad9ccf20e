"""
Thin wrappers around the Stripe and Razorpay SDKs.

Both gateways are built at start-up and injected into the checkout routes so
tests can replace them. An unconfigured gateway only fails when it is used.
"""
from typing import Any, Dict, List, Optional

import razorpay
import stripe
import structlog
from fastapi import Request
from razorpay.errors import SignatureVerificationError

from config import Settings

logger = structlog.get_logger(__name__)


class PaymentConfigurationError(RuntimeError):
    pass


class StripeGateway:
    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    def _key(self) -> str:
        if not self.api_key:
            raise PaymentConfigurationError("Stripe is not configured. Set STRIPE_SECRET_KEY.")
        return self.api_key

    def create_coupon(self, percent_off: int) -> str:
        coupon = stripe.Coupon.create(percent_off=percent_off, duration="once", api_key=self._key())
        return coupon["id"]

    def create_checkout_session(self, line_items: List[dict], success_url: str, cancel_url: str, metadata: Dict[str, str], discounts: Optional[List[dict]] = None) -> Any:
        return stripe.checkout.Session.create(
            payment_method_types=["card"],
            line_items=line_items,
            mode="payment",
            success_url=success_url,
            cancel_url=cancel_url,
            discounts=discounts or [],
            metadata=metadata,
            api_key=self._key(),
        )

    def retrieve_checkout_session(self, session_id: str) -> Any:
        return stripe.checkout.Session.retrieve(session_id, api_key=self._key())


class RazorpayGateway:
    def __init__(self, key_id: Optional[str], key_secret: Optional[str], client: Optional[razorpay.Client] = None):
        self.key_id = key_id
        if client is None and key_id and key_secret:
            client = razorpay.Client(auth=(key_id, key_secret))
        self.client = client

    def _client(self) -> razorpay.Client:
        if self.client is None:
            raise PaymentConfigurationError(
                "Razorpay is not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        return self.client

    def create_order(self, amount: int, currency: str, receipt: str, notes: Dict[str, str]) -> dict:
        return self._client().order.create(data={
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
        })

    def fetch_order(self, order_id: str) -> dict:
        return self._client().order.fetch(order_id)

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """HMAC-SHA256 of ``order_id|payment_id`` with the key secret, compared in constant time."""
        try:
            return bool(self._client().utility.verify_payment_signature({
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            }))
        except SignatureVerificationError:
            logger.warning("razorpay_signature_mismatch", order_id=order_id, payment_id=payment_id)
            return False


def build_gateways(settings: Settings):
    stripe_gateway = StripeGateway(settings.stripe_secret_key)
    razorpay_gateway = RazorpayGateway(settings.razorpay_key_id, settings.razorpay_key_secret)
    if not settings.stripe_secret_key:
        logger.warning("stripe_not_configured")
    if razorpay_gateway.client is None:
        logger.warning("razorpay_not_configured")
    return stripe_gateway, razorpay_gateway


def get_stripe(request: Request) -> StripeGateway:
    return request.app.state.stripe


def get_razorpay(request: Request) -> RazorpayGateway:
    return request.app.state.razorpay
