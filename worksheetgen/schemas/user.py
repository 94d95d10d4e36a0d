"""
Pydantic schemas for user profile and admin endpoints.
"""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import Field

from worksheetgen.schemas.subscription import CamelModel, SubscriptionStatus


class UserProfile(CamelModel):
    id: str
    email: str
    name: str
    picture: Optional[str] = None
    role: str
    usage_count: int = Field(..., description="Lifetime documents generated")
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProfileResponse(CamelModel):
    user: UserProfile
    subscription_status: SubscriptionStatus
    usage_by_type: Dict[str, int] = Field(default_factory=dict)


class AdminUserRef(CamelModel):
    id: str
    name: str
    email: str
    picture: Optional[str] = None

    class Config:
        from_attributes = True


class AdminSubscription(CamelModel):
    """Full subscription row as shown in the admin panel."""
    id: str
    user_id: str
    status: str
    plan: str
    price_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    user: Optional[AdminUserRef] = None

    class Config:
        from_attributes = True


class Pagination(CamelModel):
    total: int
    limit: int
    offset: int


class AdminSubscriptionList(CamelModel):
    subscriptions: List[AdminSubscription]
    pagination: Pagination


class AdminSubscriptionUpdate(CamelModel):
    status: str = Field(..., description="active | canceled | expired")
    cancel_at_period_end: Optional[bool] = None


class AdminUserList(CamelModel):
    users: List[UserProfile]
    pagination: Pagination


class AdminUserDetail(CamelModel):
    user: UserProfile
    subscriptions: List[AdminSubscription]
    usage_by_type: Dict[str, int] = Field(default_factory=dict)


class AdminUserUpdate(CamelModel):
    role: str = Field(..., description="user | admin")
    name: Optional[str] = None


class AdminUserSubscriptionAction(CamelModel):
    """Manage a user's subscription from the admin panel."""
    action: str = Field(..., description="create | cancel | reactivate")
    plan: str = "pro"
    immediate: bool = Field(False, description="For cancel: end access now instead of at period end")

    class Config:
        json_schema_extra = {
            "example": {"action": "create", "plan": "pro"}
        }
