"""
Stripe checkout and plan configuration endpoints.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from worksheetgen.core.auth_dependency import get_current_user
from worksheetgen.core.config import FRONTEND_URL
from worksheetgen.core.dependencies import get_entitlement_service, get_stripe_gateway
from worksheetgen.core.errors import GatewayCommandFailed, GatewayNotConfigured
from worksheetgen.db.models.user import User
from worksheetgen.schemas.billing import (
    BillingErrorResponse,
    CheckoutSessionStatus,
    CreateCheckoutSessionRequest,
    CreateCheckoutSessionResponse,
    PriceConfig,
)
from worksheetgen.services.entitlement_service import EntitlementService
from worksheetgen.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["Billing"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@router.post(
    "/create-checkout-session",
    response_model=CreateCheckoutSessionResponse,
    responses={400: {"model": BillingErrorResponse}, 502: {"model": BillingErrorResponse}},
)
def create_checkout_session(
    request: Request,
    payload: Optional[CreateCheckoutSessionRequest] = None,
    user: User = Depends(get_current_user),
    service: EntitlementService = Depends(get_entitlement_service),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    """Start a Stripe checkout for the Pro plan. Refused when already subscribed."""
    if service.get_subscription_status(user.id).is_active:
        return _error(status.HTTP_400_BAD_REQUEST, "User already has an active subscription")

    origin = request.headers.get("origin") or FRONTEND_URL
    success_url = (payload and payload.success_url) or f"{origin}?payment=success"
    cancel_url = (payload and payload.cancel_url) or f"{origin}?payment=cancelled"

    try:
        customer_id = gateway.find_or_create_customer(user.email, user.id)
        session = gateway.create_checkout_session(
            customer_id=customer_id,
            user_id=user.id,
            success_url=success_url,
            cancel_url=cancel_url,
        )
    except GatewayNotConfigured as e:
        logger.error(f"Checkout unavailable: {e}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Payment configuration not available")
    except GatewayCommandFailed as e:
        logger.error(f"Checkout session creation failed: user_id={user.id}, error={e}")
        return _error(status.HTTP_502_BAD_GATEWAY, "Payment provider error")

    return CreateCheckoutSessionResponse(session_id=session.id, url=getattr(session, "url", None))


@router.get("/session/{session_id}", response_model=CheckoutSessionStatus)
def get_checkout_session(
    session_id: str,
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    try:
        return CheckoutSessionStatus(**gateway.retrieve_checkout_session(session_id))
    except GatewayCommandFailed:
        return _error(status.HTTP_404_NOT_FOUND, "Session not found")


@router.get("/config", response_model=PriceConfig)
def get_price_config(gateway: StripeGateway = Depends(get_stripe_gateway)):
    """Price and product metadata for the Pro plan."""
    try:
        return PriceConfig(**gateway.retrieve_price())
    except GatewayNotConfigured:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Price configuration not available")
    except GatewayCommandFailed:
        return _error(status.HTTP_404_NOT_FOUND, "Price not found")


@router.get("/prices", response_model=List[PriceConfig])
def list_prices(gateway: StripeGateway = Depends(get_stripe_gateway)):
    try:
        return [PriceConfig(**price) for price in gateway.list_prices()]
    except GatewayNotConfigured:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Price configuration not available")
    except GatewayCommandFailed:
        return _error(status.HTTP_502_BAD_GATEWAY, "Payment provider error")
