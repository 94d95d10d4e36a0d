"""
Plan-based usage limits configuration.

Single source of truth for the free-tier ceiling and the unlimited sentinel.
Usage is counted over the lifetime of the account, not per month.
"""
from typing import List

from worksheetgen.core.config import FREE_TIER_LIMIT

# Sentinel for "no limit" in limits and remaining-use counts
UNLIMITED: int = -1

FREE_LIMIT: int = FREE_TIER_LIMIT
PRO_LIMIT: int = UNLIMITED

SUPPORTED_DOCUMENT_TYPES: List[str] = [
    "worksheet",
    "exam",
]

# Subscription statuses stored locally
SUBSCRIPTION_STATUSES: List[str] = [
    "active",
    "past_due",
    "canceled",
    "expired",
]

# Statuses an admin may set directly on a subscription
ADMIN_SETTABLE_STATUSES: List[str] = [
    "active",
    "canceled",
    "expired",
]

USER_ROLES: List[str] = [
    "user",
    "admin",
]

# Length of a Pro grant made by an admin without a Stripe subscription
MANUAL_GRANT_DAYS: int = 30


def get_usage_limit(is_pro: bool, free_limit: int = FREE_LIMIT) -> int:
    """Usage limit for a user: the free ceiling, or UNLIMITED for Pro."""
    return PRO_LIMIT if is_pro else free_limit


def remaining_uses(is_pro: bool, used: int, free_limit: int = FREE_LIMIT) -> int:
    """Remaining generations after `used` documents; UNLIMITED for Pro."""
    if is_pro:
        return UNLIMITED
    return max(0, free_limit - used)


def limit_reached_message(free_limit: int = FREE_LIMIT) -> str:
    return (
        f"You have reached the limit of {free_limit} free documents. "
        "Upgrade to Pro for unlimited access."
    )
