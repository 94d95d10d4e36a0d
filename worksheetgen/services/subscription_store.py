"""
Subscription persistence helpers.

Every write is a single-row insert or update scoped by primary key or by the
unique provider subscription id, committed before returning.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Any

from sqlalchemy.orm import Session

from worksheetgen.db.models.subscription import Subscription
from worksheetgen.db.store import store_call

logger = logging.getLogger(__name__)


def is_entitled(subscription: Optional[Subscription], now: datetime) -> bool:
    """
    A subscription grants access only while its status is active AND its
    billing period end is known and still in the future. An active-status row
    whose period has elapsed grants nothing; the row is left for the sweep.
    """
    if subscription is None or subscription.status != "active":
        return False
    if subscription.current_period_end is None:
        return False
    return subscription.current_period_end > now


def get_latest_subscription(db: Session, user_id: str) -> Optional[Subscription]:
    """Most recent subscription row for a user, whatever its status."""
    return store_call(
        db,
        lambda: db.query(Subscription)
        .filter(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first(),
        "get_latest_subscription",
    )


def get_active_subscription(db: Session, user_id: str, now: datetime) -> Optional[Subscription]:
    """Most recent subscription that currently grants access, or None."""
    return store_call(
        db,
        lambda: db.query(Subscription)
        .filter(
            Subscription.user_id == user_id,
            Subscription.status == "active",
            Subscription.current_period_end > now,
        )
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first(),
        "get_active_subscription",
    )


def get_subscription_by_provider_id(db: Session, provider_subscription_id: str) -> Optional[Subscription]:
    return store_call(
        db,
        lambda: db.query(Subscription)
        .filter(Subscription.stripe_subscription_id == provider_subscription_id)
        .first(),
        "get_subscription_by_provider_id",
    )


def get_subscription_by_id(db: Session, subscription_id: str) -> Optional[Subscription]:
    return store_call(
        db,
        lambda: db.query(Subscription).filter(Subscription.id == subscription_id).first(),
        "get_subscription_by_id",
    )


def create_subscription(db: Session, **fields) -> Subscription:
    """Insert a subscription row and commit."""
    def insert() -> Subscription:
        subscription = Subscription(**fields)
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
        return subscription

    subscription = store_call(db, insert, "create_subscription")
    logger.info(
        f"Subscription created: id={subscription.id}, user_id={subscription.user_id}, "
        f"stripe_subscription_id={subscription.stripe_subscription_id}, status={subscription.status}"
    )
    return subscription


def update_subscription(db: Session, subscription: Subscription, changes: Dict[str, Any]) -> bool:
    """
    Set the given fields on a subscription row and commit.

    Returns:
        True when at least one field changed value. The commit happens either way
        so a redundant write of identical values stays a harmless no-op.
    """
    def write() -> bool:
        changed = False
        for field, value in changes.items():
            if getattr(subscription, field) != value:
                setattr(subscription, field, value)
                changed = True
        db.commit()
        db.refresh(subscription)
        return changed

    return store_call(db, write, "update_subscription")


def list_user_subscriptions(db: Session, user_id: str) -> List[Subscription]:
    """All of a user's subscription rows, newest first."""
    return store_call(
        db,
        lambda: db.query(Subscription)
        .filter(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .all(),
        "list_user_subscriptions",
    )

def list_subscriptions(
    db: Session,
    limit: int = 50,
    offset: int = 0,
    status: Optional[str] = None,
) -> Tuple[List[Subscription], int]:
    """Page of subscriptions (newest first) plus the total count for the filter."""
    def query() -> Tuple[List[Subscription], int]:
        base = db.query(Subscription)
        if status:
            base = base.filter(Subscription.status == status)
        total = base.count()
        rows = (
            base.order_by(Subscription.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return rows, total

    return store_call(db, query, "list_subscriptions")


def find_lapsed_subscriptions(db: Session, now: datetime) -> List[Subscription]:
    """Rows still marked active whose billing period has already ended."""
    return store_call(
        db,
        lambda: db.query(Subscription)
        .filter(
            Subscription.status == "active",
            Subscription.current_period_end.isnot(None),
            Subscription.current_period_end <= now,
        )
        .all(),
        "find_lapsed_subscriptions",
    )
