"""
Typed Stripe webhook events.

parse_event() turns a verified webhook payload into one variant of
WebhookEvent. Types the reconciler does not handle become IgnoredEvent
instead of falling through a default branch.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union

from worksheetgen.core.timeutils import from_unix


# Provider status -> local status
PROVIDER_STATUS_MAP: Dict[str, str] = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "unpaid": "past_due",
    "incomplete": "past_due",
    "canceled": "canceled",
    "incomplete_expired": "expired",
}


def normalize_status(provider_status: Optional[str]) -> str:
    return PROVIDER_STATUS_MAP.get(provider_status or "", "past_due")


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    session_id: str
    user_id: Optional[str]
    provider_subscription_id: Optional[str]
    customer_id: Optional[str]


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Latest known state of a provider subscription, as carried by subscription.* events."""
    provider_subscription_id: str
    user_id: Optional[str]
    customer_id: Optional[str]
    status: str
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool
    price_id: Optional[str]


@dataclass(frozen=True)
class SubscriptionCreated:
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class SubscriptionUpdated:
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class InvoicePaymentSucceeded:
    event_id: str
    invoice_id: str
    provider_subscription_id: Optional[str]


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    invoice_id: str
    provider_subscription_id: Optional[str]


@dataclass(frozen=True)
class IgnoredEvent:
    event_id: str
    event_type: str


WebhookEvent = Union[
    CheckoutCompleted,
    SubscriptionCreated,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaymentSucceeded,
    InvoicePaymentFailed,
    IgnoredEvent,
]

EVENT_TYPE_NAMES = {
    CheckoutCompleted: "checkout.session.completed",
    SubscriptionCreated: "customer.subscription.created",
    SubscriptionUpdated: "customer.subscription.updated",
    SubscriptionDeleted: "customer.subscription.deleted",
    InvoicePaymentSucceeded: "invoice.payment_succeeded",
    InvoicePaymentFailed: "invoice.payment_failed",
}


def event_type_name(event: WebhookEvent) -> str:
    if isinstance(event, IgnoredEvent):
        return event.event_type
    return EVENT_TYPE_NAMES[type(event)]


def _metadata_user_id(obj: Dict[str, Any]) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    user_id = metadata.get("userId") or metadata.get("user_id")
    return str(user_id) if user_id else None


def _first_price_id(obj: Dict[str, Any]) -> Optional[str]:
    items = (obj.get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")


def _period_end(obj: Dict[str, Any]) -> Optional[datetime]:
    # Newer API versions moved current_period_end onto the subscription items
    timestamp = obj.get("current_period_end")
    if timestamp is None:
        items = (obj.get("items") or {}).get("data") or []
        if items:
            timestamp = items[0].get("current_period_end")
    return from_unix(timestamp)


def _invoice_subscription_id(obj: Dict[str, Any]) -> Optional[str]:
    subscription = obj.get("subscription")
    if subscription is None:
        # Newer API versions nest it under parent.subscription_details
        details = (obj.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    return subscription


def _snapshot(obj: Dict[str, Any]) -> SubscriptionSnapshot:
    return SubscriptionSnapshot(
        provider_subscription_id=obj["id"],
        user_id=_metadata_user_id(obj),
        customer_id=obj.get("customer"),
        status=normalize_status(obj.get("status")),
        current_period_end=_period_end(obj),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end", False)),
        price_id=_first_price_id(obj),
    )


def parse_event(payload: Dict[str, Any]) -> WebhookEvent:
    """
    Build a typed event from a verified webhook payload.

    Raises:
        ValueError: if a recognized event type is missing its object or id
    """
    event_id = payload.get("id", "")
    event_type = payload.get("type", "")
    obj = (payload.get("data") or {}).get("object")

    if event_type not in EVENT_TYPE_NAMES.values():
        return IgnoredEvent(event_id=event_id, event_type=event_type)

    if not isinstance(obj, dict) or not obj.get("id"):
        raise ValueError(f"Malformed {event_type} event {event_id}: missing data.object.id")

    if event_type == "checkout.session.completed":
        return CheckoutCompleted(
            event_id=event_id,
            session_id=obj["id"],
            user_id=_metadata_user_id(obj),
            provider_subscription_id=obj.get("subscription"),
            customer_id=obj.get("customer"),
        )
    if event_type == "customer.subscription.created":
        return SubscriptionCreated(event_id=event_id, subscription=_snapshot(obj))
    if event_type == "customer.subscription.updated":
        return SubscriptionUpdated(event_id=event_id, subscription=_snapshot(obj))
    if event_type == "customer.subscription.deleted":
        return SubscriptionDeleted(event_id=event_id, subscription=_snapshot(obj))
    if event_type == "invoice.payment_succeeded":
        return InvoicePaymentSucceeded(
            event_id=event_id,
            invoice_id=obj["id"],
            provider_subscription_id=_invoice_subscription_id(obj),
        )
    return InvoicePaymentFailed(
        event_id=event_id,
        invoice_id=obj["id"],
        provider_subscription_id=_invoice_subscription_id(obj),
    )
