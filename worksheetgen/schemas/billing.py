"""
Pydantic schemas for Stripe checkout and plan configuration endpoints.
"""
from typing import Optional
from pydantic import BaseModel, Field

from worksheetgen.schemas.subscription import CamelModel


class CreateCheckoutSessionRequest(CamelModel):
    """Optional redirect overrides; defaults are derived from the request origin."""
    success_url: Optional[str] = Field(None, description="URL to redirect after successful payment")
    cancel_url: Optional[str] = Field(None, description="URL to redirect if payment is canceled")


class CreateCheckoutSessionResponse(CamelModel):
    session_id: str = Field(..., description="Stripe checkout session ID")
    url: Optional[str] = Field(None, description="Stripe checkout session URL")

    class Config:
        json_schema_extra = {
            "example": {
                "sessionId": "cs_test_...",
                "url": "https://checkout.stripe.com/c/pay/cs_test_..."
            }
        }


class CheckoutSessionStatus(CamelModel):
    status: Optional[str] = Field(None, description="Stripe payment_status")
    customer_email: Optional[str] = None
    subscription_id: Optional[str] = None


class ProductInfo(CamelModel):
    id: str
    name: Optional[str] = None
    description: Optional[str] = None


class PriceConfig(CamelModel):
    """Plan metadata shown on the pricing page. Informational only."""
    price_id: str
    amount: Optional[int] = Field(None, description="Unit amount in the smallest currency unit")
    currency: str
    interval: Optional[str] = None
    interval_count: Optional[int] = None
    product: Optional[ProductInfo] = None


class WebhookAck(BaseModel):
    received: bool = True


class BillingErrorResponse(BaseModel):
    """Error response schema for billing operations."""
    success: bool = False
    error: str = Field(..., description="Error message")

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "User already has an active subscription"
            }
        }
