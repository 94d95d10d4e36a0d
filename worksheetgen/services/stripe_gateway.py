"""
Stripe gateway for checkout, subscription commands, prices and webhook verification.

This is the only module that talks to Stripe. Transient Stripe failures
(network, rate limit, API errors) are retried with backoff; invalid requests
and authentication problems are not.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from worksheetgen.core.config import (
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    STRIPE_PRICE_ID,
    STRIPE_API_VERSION,
)
from worksheetgen.core.errors import (
    GatewayCommandFailed,
    GatewayNotConfigured,
    GatewaySignatureInvalid,
    GatewayUnavailable,
)
from worksheetgen.core.retry import retry_call

logger = logging.getLogger(__name__)

# Stripe errors worth retrying
TRANSIENT_STRIPE_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


class StripeGateway:
    """
    Thin command/query wrapper over the Stripe SDK.

    Args:
        api_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
        webhook_secret: Signing secret for webhook payloads
        price_id: Default price used for checkout
        retry_kwargs: Overrides for retry_call (attempts, sleep, ...)
    """

    def __init__(
        self,
        api_key: Optional[str] = STRIPE_SECRET_KEY,
        webhook_secret: Optional[str] = STRIPE_WEBHOOK_SECRET,
        price_id: Optional[str] = STRIPE_PRICE_ID,
        retry_kwargs: Optional[Dict[str, Any]] = None,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.price_id = price_id
        self.retry_kwargs = retry_kwargs or {}
        if api_key:
            stripe.api_key = api_key
            stripe.api_version = STRIPE_API_VERSION
        else:
            logger.warning("STRIPE_SECRET_KEY not configured - Stripe commands disabled")

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify a webhook signature against the raw body, then parse it.

        Args:
            payload: Raw request body bytes, untouched
            signature: Stripe-Signature header value

        Returns:
            Parsed event dictionary

        Raises:
            GatewayNotConfigured: if no webhook secret is configured
            GatewaySignatureInvalid: if the signature or payload is invalid
        """
        if not self.webhook_secret:
            raise GatewayNotConfigured("STRIPE_WEBHOOK_SECRET not configured")
        if not signature:
            raise GatewaySignatureInvalid("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.error(f"Webhook signature verification failed: {e}")
            raise GatewaySignatureInvalid(f"Invalid signature: {e}") from e
        except UnicodeDecodeError as e:
            raise GatewaySignatureInvalid(f"Invalid webhook payload encoding: {e}") from e

        try:
            event = json.loads(body)
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise GatewaySignatureInvalid(f"Invalid webhook payload: {e}") from e
        if not isinstance(event, dict):
            raise GatewaySignatureInvalid(f"Webhook payload is not an event object: {type(event).__name__}")

        logger.info(f"Verified webhook event: type={event.get('type')}, id={event.get('id')}")
        return event

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _call(self, operation: str, fn):
        if not self.api_key:
            raise GatewayNotConfigured("STRIPE_SECRET_KEY not configured")

        def attempt():
            try:
                return fn()
            except TRANSIENT_STRIPE_ERRORS as e:
                raise GatewayUnavailable(f"{operation}: {e}") from e
            except stripe.StripeError as e:
                logger.error(f"Stripe error during {operation}: {e}")
                raise GatewayCommandFailed(f"{operation}: {e}") from e

        try:
            return retry_call(attempt, operation=f"stripe.{operation}", **self.retry_kwargs)
        except GatewayUnavailable as e:
            raise GatewayCommandFailed(str(e)) from e

    def set_cancel_at_period_end(self, provider_subscription_id: str, cancel_at_period_end: bool):
        """Schedule (True) or withdraw (False) cancellation at the end of the billing period."""
        result = self._call(
            "set_cancel_at_period_end",
            lambda: stripe.Subscription.modify(
                provider_subscription_id,
                cancel_at_period_end=cancel_at_period_end,
            ),
        )
        logger.info(
            f"Stripe subscription updated: subscription_id={provider_subscription_id}, "
            f"cancel_at_period_end={cancel_at_period_end}"
        )
        return result

    def cancel_now(self, provider_subscription_id: str):
        """Cancel a subscription immediately."""
        result = self._call(
            "cancel_now",
            lambda: stripe.Subscription.cancel(provider_subscription_id),
        )
        logger.info(f"Stripe subscription canceled immediately: subscription_id={provider_subscription_id}")
        return result

    def find_or_create_customer(self, email: str, user_id: str) -> str:
        """Return the id of the Stripe customer with this email, creating one if needed."""
        existing = self._call(
            "list_customers",
            lambda: stripe.Customer.list(email=email, limit=1),
        )
        if existing.data:
            return existing.data[0].id

        customer = self._call(
            "create_customer",
            lambda: stripe.Customer.create(email=email, metadata={"userId": user_id}),
        )
        logger.info(f"Created Stripe customer: customer_id={customer.id}, user_id={user_id}")
        return customer.id

    def create_checkout_session(
        self,
        customer_id: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
        price_id: Optional[str] = None,
    ):
        """
        Create a subscription-mode checkout session.

        The user id is copied into the subscription metadata so the
        customer.subscription.created webhook can find its owner.
        """
        price = price_id or self.price_id
        if not price:
            raise GatewayNotConfigured("STRIPE_PRICE_ID not configured")

        session = self._call(
            "create_checkout_session",
            lambda: stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{"price": price, "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={"userId": user_id},
                subscription_data={"metadata": {"userId": user_id}},
            ),
        )
        logger.info(f"Created checkout session: session_id={session.id}, user_id={user_id}")
        return session

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        session = self._call(
            "retrieve_checkout_session",
            lambda: stripe.checkout.Session.retrieve(session_id),
        )
        customer_details = getattr(session, "customer_details", None)
        return {
            "status": session.payment_status,
            "customer_email": getattr(customer_details, "email", None) if customer_details else None,
            "subscription_id": session.subscription,
        }

    # ------------------------------------------------------------------
    # Plan metadata (informational only)
    # ------------------------------------------------------------------

    def retrieve_price(self, price_id: Optional[str] = None) -> Dict[str, Any]:
        price_ref = price_id or self.price_id
        if not price_ref:
            raise GatewayNotConfigured("STRIPE_PRICE_ID not configured")
        price = self._call(
            "retrieve_price",
            lambda: stripe.Price.retrieve(price_ref, expand=["product"]),
        )
        return _price_to_dict(price)

    def list_prices(self) -> List[Dict[str, Any]]:
        prices = self._call(
            "list_prices",
            lambda: stripe.Price.list(active=True, expand=["data.product"]),
        )
        return [_price_to_dict(price) for price in prices.data]


def _price_to_dict(price) -> Dict[str, Any]:
    recurring = getattr(price, "recurring", None)
    product = getattr(price, "product", None)
    product_info = None
    if product is not None and not isinstance(product, str):
        product_info = {
            "id": product.id,
            "name": getattr(product, "name", None),
            "description": getattr(product, "description", None),
        }
    return {
        "price_id": price.id,
        "amount": price.unit_amount,
        "currency": price.currency,
        "interval": getattr(recurring, "interval", None) if recurring else None,
        "interval_count": getattr(recurring, "interval_count", None) if recurring else None,
        "product": product_info,
    }
