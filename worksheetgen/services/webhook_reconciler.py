"""
Webhook reconciler.

Applies verified Stripe events to the subscriptions table. Each event is
treated as "set the latest known state" for one provider subscription id,
so duplicate or slightly out-of-order deliveries converge without a
seen-events ledger. Cache entries for the owning user are invalidated only
after the write commits.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from worksheetgen.core.timeutils import utcnow
from worksheetgen.db.models.subscription import Subscription
from worksheetgen.db.models.user import User
from worksheetgen.db.store import store_call
from worksheetgen.services.entitlement_cache import EntitlementCache
from worksheetgen.services import subscription_store
from worksheetgen.services.webhook_events import (
    CheckoutCompleted,
    IgnoredEvent,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionSnapshot,
    SubscriptionUpdated,
    WebhookEvent,
    event_type_name,
)

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("canceled", "expired")


@dataclass(frozen=True)
class ReconcileOutcome:
    event_type: str
    action: str  # created | updated | unchanged | skipped | ignored | noop
    user_id: Optional[str] = None
    subscription_id: Optional[str] = None


class WebhookReconciler:
    def __init__(self, db: Session, cache: EntitlementCache, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.cache = cache
        self.clock = clock

    def reconcile(self, event: WebhookEvent) -> ReconcileOutcome:
        """Dispatch one typed event. Store failures propagate to the caller."""
        if isinstance(event, CheckoutCompleted):
            return self._checkout_completed(event)
        if isinstance(event, SubscriptionCreated):
            return self._subscription_created(event)
        if isinstance(event, SubscriptionUpdated):
            return self._subscription_updated(event)
        if isinstance(event, SubscriptionDeleted):
            return self._subscription_deleted(event)
        if isinstance(event, InvoicePaymentSucceeded):
            return self._set_status_from_invoice(event, "active")
        if isinstance(event, InvoicePaymentFailed):
            return self._set_status_from_invoice(event, "past_due")
        if isinstance(event, IgnoredEvent):
            logger.info(f"Unhandled webhook event ignored: type={event.event_type}, id={event.event_id}")
            return ReconcileOutcome(event_type=event.event_type, action="ignored")
        raise TypeError(f"Unsupported webhook event: {event!r}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _checkout_completed(self, event: CheckoutCompleted) -> ReconcileOutcome:
        event_type = event_type_name(event)
        if not event.user_id:
            logger.warning(f"checkout.session.completed without userId metadata: session_id={event.session_id}")
            return ReconcileOutcome(event_type=event_type, action="skipped")

        if self._get_user(event.user_id) is None:
            logger.warning(f"checkout.session.completed for unknown user: user_id={event.user_id}")
            return ReconcileOutcome(event_type=event_type, action="skipped", user_id=event.user_id)

        # The subscription row is created by customer.subscription.created
        logger.info(
            f"Checkout completed: session_id={event.session_id}, user_id={event.user_id}, "
            f"subscription_id={event.provider_subscription_id}"
        )
        return ReconcileOutcome(event_type=event_type, action="noop", user_id=event.user_id)

    def _subscription_created(self, event: SubscriptionCreated) -> ReconcileOutcome:
        event_type = event_type_name(event)
        snapshot = event.subscription
        existing = subscription_store.get_subscription_by_provider_id(
            self.db, snapshot.provider_subscription_id
        )
        if existing is not None:
            # Duplicate or late delivery: only backfill what is still missing so a
            # replayed "created" never rolls back a newer status.
            changes = {}
            if existing.current_period_end is None and snapshot.current_period_end is not None:
                changes["current_period_end"] = snapshot.current_period_end
            if existing.price_id is None and snapshot.price_id:
                changes["price_id"] = snapshot.price_id
            if existing.stripe_customer_id is None and snapshot.customer_id:
                changes["stripe_customer_id"] = snapshot.customer_id
            return self._write(event_type, existing, changes)

        return self._insert(event_type, snapshot, status="active")

    def _subscription_updated(self, event: SubscriptionUpdated) -> ReconcileOutcome:
        event_type = event_type_name(event)
        snapshot = event.subscription
        existing = subscription_store.get_subscription_by_provider_id(
            self.db, snapshot.provider_subscription_id
        )
        if existing is None:
            # Update arrived before create: insert the latest known state.
            return self._insert(event_type, snapshot, status=snapshot.status)

        changes = {
            "status": snapshot.status,
            "cancel_at_period_end": snapshot.cancel_at_period_end,
        }
        if snapshot.current_period_end is not None:
            changes["current_period_end"] = snapshot.current_period_end
        if snapshot.price_id:
            changes["price_id"] = snapshot.price_id
        if snapshot.status == "canceled" and existing.canceled_at is None:
            changes["canceled_at"] = self.clock()
        return self._write(event_type, existing, changes)

    def _subscription_deleted(self, event: SubscriptionDeleted) -> ReconcileOutcome:
        event_type = event_type_name(event)
        provider_id = event.subscription.provider_subscription_id
        existing = subscription_store.get_subscription_by_provider_id(self.db, provider_id)
        if existing is None:
            logger.warning(f"{event_type}: subscription not found for subscription_id={provider_id}")
            return ReconcileOutcome(event_type=event_type, action="skipped")

        changes = {"status": "canceled"}
        if existing.canceled_at is None:
            changes["canceled_at"] = self.clock()
        return self._write(event_type, existing, changes)

    def _set_status_from_invoice(self, event, status: str) -> ReconcileOutcome:
        event_type = event_type_name(event)
        provider_id = event.provider_subscription_id
        if not provider_id:
            logger.warning(f"{event_type}: no subscription id on invoice {event.invoice_id}")
            return ReconcileOutcome(event_type=event_type, action="skipped")

        existing = subscription_store.get_subscription_by_provider_id(self.db, provider_id)
        if existing is None:
            logger.warning(f"{event_type}: subscription not found for subscription_id={provider_id}")
            return ReconcileOutcome(event_type=event_type, action="skipped")

        # Invoices carry no subscription state; they never reopen a closed row.
        if existing.status in TERMINAL_STATUSES:
            logger.warning(
                f"{event_type}: subscription_id={provider_id} is {existing.status}, invoice not applied"
            )
            return ReconcileOutcome(
                event_type=event_type,
                action="skipped",
                user_id=existing.user_id,
                subscription_id=existing.id,
            )

        outcome = self._write(event_type, existing, {"status": status})
        if status == "past_due":
            logger.warning(f"Invoice payment failed: user_id={existing.user_id}, subscription_id={provider_id}")
        return outcome

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _insert(self, event_type: str, snapshot: SubscriptionSnapshot, status: str) -> ReconcileOutcome:
        if not snapshot.user_id:
            logger.warning(
                f"{event_type}: no userId metadata on subscription_id={snapshot.provider_subscription_id}"
            )
            return ReconcileOutcome(event_type=event_type, action="skipped")

        if self._get_user(snapshot.user_id) is None:
            logger.warning(
                f"{event_type}: user {snapshot.user_id} not found for "
                f"subscription_id={snapshot.provider_subscription_id}"
            )
            return ReconcileOutcome(event_type=event_type, action="skipped", user_id=snapshot.user_id)

        try:
            subscription = subscription_store.create_subscription(
                self.db,
                user_id=snapshot.user_id,
                stripe_customer_id=snapshot.customer_id,
                stripe_subscription_id=snapshot.provider_subscription_id,
                status=status,
                current_period_end=snapshot.current_period_end,
                cancel_at_period_end=snapshot.cancel_at_period_end,
                plan="pro",
                price_id=snapshot.price_id,
                canceled_at=self.clock() if status == "canceled" else None,
            )
        except IntegrityError:
            # A concurrent delivery inserted the same provider id first.
            self.db.rollback()
            existing = subscription_store.get_subscription_by_provider_id(
                self.db, snapshot.provider_subscription_id
            )
            if existing is None:
                raise
            logger.info(
                f"{event_type}: concurrent insert detected for "
                f"subscription_id={snapshot.provider_subscription_id}"
            )
            return self._write(event_type, existing, {})

        self.cache.invalidate_user(subscription.user_id)
        logger.info(
            f"{event_type}: subscription stored for user_id={subscription.user_id}, "
            f"status={subscription.status}, subscription_id={snapshot.provider_subscription_id}"
        )
        return ReconcileOutcome(
            event_type=event_type,
            action="created",
            user_id=subscription.user_id,
            subscription_id=subscription.id,
        )

    def _write(self, event_type: str, subscription: Subscription, changes: dict) -> ReconcileOutcome:
        changed = subscription_store.update_subscription(self.db, subscription, changes)
        self.cache.invalidate_user(subscription.user_id)
        logger.info(
            f"{event_type}: subscription_id={subscription.stripe_subscription_id}, "
            f"user_id={subscription.user_id}, status={subscription.status}, changed={changed}"
        )
        return ReconcileOutcome(
            event_type=event_type,
            action="updated" if changed else "unchanged",
            user_id=subscription.user_id,
            subscription_id=subscription.id,
        )

    def _get_user(self, user_id: str) -> Optional[User]:
        return store_call(
            self.db,
            lambda: self.db.query(User).filter(User.id == user_id).first(),
            "get_user",
        )


def expire_lapsed_subscriptions(
    db: Session,
    cache: EntitlementCache,
    now: Optional[datetime] = None,
) -> List[Subscription]:
    """
    Close out rows still marked active after their period ended.

    These exist only when a provider event was missed. Rows with a pending
    cancellation become canceled, the rest expired.
    """
    now = now or utcnow()
    lapsed = subscription_store.find_lapsed_subscriptions(db, now)
    for subscription in lapsed:
        if subscription.cancel_at_period_end:
            changes = {"status": "canceled", "canceled_at": subscription.current_period_end}
        else:
            changes = {"status": "expired"}
        subscription_store.update_subscription(db, subscription, changes)
        cache.invalidate_user(subscription.user_id)
        logger.info(
            f"Lapsed subscription closed: id={subscription.id}, user_id={subscription.user_id}, "
            f"status={subscription.status}"
        )
    return lapsed
