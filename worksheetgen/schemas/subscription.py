"""
Pydantic schemas for subscription and entitlement endpoints.

The service layer returns these models directly; they are serialized with
camelCase aliases for the UI.
"""
from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True


class SubscriptionSummary(CamelModel):
    """Subscription fields exposed to the owning user."""
    id: str
    status: str = Field(..., description="active | past_due | canceled | expired")
    plan: str
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


class UsageInfo(CamelModel):
    current: int = Field(..., description="Documents generated so far")
    limit: int = Field(..., description="Usage ceiling, -1 when unlimited")
    unlimited: bool


class SubscriptionStatus(CamelModel):
    """Derived entitlement state for one user."""
    is_active: bool
    is_pro: bool
    subscription: Optional[SubscriptionSummary] = None
    usage: UsageInfo

    class Config:
        json_schema_extra = {
            "example": {
                "isActive": True,
                "isPro": True,
                "subscription": {
                    "id": "7c9e6679-7425-40de-944b-e07fc1f90ae7",
                    "status": "active",
                    "plan": "pro",
                    "currentPeriodEnd": "2026-11-17T00:00:00",
                    "cancelAtPeriodEnd": False
                },
                "usage": {"current": 14, "limit": -1, "unlimited": True}
            }
        }


class GenerationDecision(CamelModel):
    can_generate: bool
    reason: Optional[str] = Field(None, description="User-facing message when generation is refused")


class UsageRecordResult(CamelModel):
    success: bool
    remaining_uses: Optional[int] = Field(None, description="Remaining documents, -1 when unlimited")
    error: Optional[str] = None


class SubscriptionCommandResult(CamelModel):
    """Outcome of a subscription command (cancel, reactivate, grant, override)."""
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    subscription_id: Optional[str] = None
    cancel_at: Optional[datetime] = None
    gateway_synced: bool = Field(True, description="False when the payment provider call failed and will be reconciled by webhook")


class RecordUsageRequest(CamelModel):
    document_type: str = Field(..., description="worksheet | exam")
    subject: Optional[str] = None
    grade: Optional[str] = None
    language: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "documentType": "worksheet",
                "subject": "Mathematics",
                "grade": "5",
                "language": "es"
            }
        }


class CancelSubscriptionRequest(CamelModel):
    immediate: bool = Field(False, description="Cancel now instead of at the end of the billing period")


T = TypeVar("T")


class Envelope(CamelModel, Generic[T]):
    """Standard {success, data} response wrapper."""
    success: bool = True
    data: T
