"""
Entitlement service.

Query/command facade over subscriptions and the usage ledger: subscription
status, "can generate" decisions, usage recording, and cancel/reactivate
commands. Reads go through the entitlement cache; every write invalidates
the user's cache entries after it commits.

Two deliberate leniencies:

- can_generate_document() and record_document_usage() are separate steps with
  no lock between them. Two concurrent requests from the same free user can
  both pass the check and both record, overshooting the limit by a small
  bounded amount.
- Cancel/reactivate update local state even when the Stripe command fails.
  The provider's next subscription webhook restores agreement.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from worksheetgen.core.errors import GatewayCommandFailed, GatewayNotConfigured, StoreUnavailable
from worksheetgen.core.plan_limits import (
    ADMIN_SETTABLE_STATUSES,
    FREE_LIMIT,
    MANUAL_GRANT_DAYS,
    UNLIMITED,
    SUPPORTED_DOCUMENT_TYPES,
    get_usage_limit,
    limit_reached_message,
    remaining_uses,
)
from worksheetgen.core.timeutils import utcnow
from worksheetgen.db.models.subscription import Subscription
from worksheetgen.schemas.subscription import (
    GenerationDecision,
    SubscriptionCommandResult,
    SubscriptionStatus,
    SubscriptionSummary,
    UsageInfo,
    UsageRecordResult,
)
from worksheetgen.services import subscription_store, usage_ledger
from worksheetgen.services.entitlement_cache import (
    CAN_GENERATE_NAMESPACE,
    SUBSCRIPTION_STATUS_NAMESPACE,
    EntitlementCache,
)
from worksheetgen.services.stripe_gateway import StripeGateway
from worksheetgen.services.user_service import get_user

logger = logging.getLogger(__name__)

NO_ACTIVE_SUBSCRIPTION = "No active subscription found"
NOT_PENDING_CANCELLATION = "The subscription is not scheduled for cancellation"
NOT_REACTIVATABLE = "Only an active subscription can be reactivated"
SUBSCRIPTION_NOT_FOUND = "Subscription not found"
USER_NOT_FOUND = "User not found"
ALREADY_SUBSCRIBED = "User already has an active subscription"
INVALID_STATUS = "Invalid subscription status"
RECORD_USAGE_FAILED = "Could not record document usage"


class EntitlementService:
    """
    Args:
        db: Database session for this request
        cache: Entitlement cache shared across requests
        gateway: Payment provider gateway
        clock: Returns the current naive-UTC time
        free_limit: Free-tier ceiling
    """

    def __init__(
        self,
        db: Session,
        cache: EntitlementCache,
        gateway: Optional[StripeGateway] = None,
        clock: Callable[[], datetime] = utcnow,
        free_limit: int = FREE_LIMIT,
    ):
        self.db = db
        self.cache = cache
        self.gateway = gateway
        self.clock = clock
        self.free_limit = free_limit

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_subscription_status(self, user_id: str) -> SubscriptionStatus:
        """
        Current entitlement state for a user, read through the cache.

        Raises:
            StoreUnavailable: if the store cannot be read after retries
        """
        return self.cache.get_or_set(
            SUBSCRIPTION_STATUS_NAMESPACE,
            user_id,
            lambda: self._compute_subscription_status(user_id),
        )

    def _compute_subscription_status(self, user_id: str) -> SubscriptionStatus:
        subscription = subscription_store.get_latest_subscription(self.db, user_id)
        usage_count = usage_ledger.count_usage(self.db, user_id)

        is_active = subscription_store.is_entitled(subscription, self.clock())
        is_pro = is_active and subscription.status == "active"

        return SubscriptionStatus(
            is_active=is_active,
            is_pro=is_pro,
            subscription=_summarize(subscription) if subscription else None,
            usage=UsageInfo(
                current=usage_count,
                limit=get_usage_limit(is_pro, self.free_limit),
                unlimited=is_pro,
            ),
        )

    def can_generate_document(self, user_id: str) -> GenerationDecision:
        """Pro users always may; free users while current usage is below the ceiling."""
        return self.cache.get_or_set(
            CAN_GENERATE_NAMESPACE,
            user_id,
            lambda: self._compute_generation_decision(user_id),
        )

    def _compute_generation_decision(self, user_id: str) -> GenerationDecision:
        status = self.get_subscription_status(user_id)
        if status.is_pro:
            return GenerationDecision(can_generate=True)

        if status.usage.current >= status.usage.limit:
            return GenerationDecision(
                can_generate=False,
                reason=limit_reached_message(status.usage.limit),
            )
        return GenerationDecision(can_generate=True)

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def record_document_usage(
        self,
        user_id: str,
        document_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> UsageRecordResult:
        """
        Record one generated document if the user is still entitled to it.

        The check and the insert are not atomic; see the module docstring.
        """
        if document_type not in SUPPORTED_DOCUMENT_TYPES:
            return UsageRecordResult(success=False, error=f"Invalid document type: {document_type}")

        decision = self.can_generate_document(user_id)
        if not decision.can_generate:
            logger.info(f"Usage refused: user_id={user_id}, document_type={document_type}")
            return UsageRecordResult(success=False, error=decision.reason)

        # Snapshot before the write; remaining uses are derived from it
        status = self.get_subscription_status(user_id)

        try:
            usage_ledger.append_usage(self.db, user_id, document_type, metadata)
        except (StoreUnavailable, IntegrityError) as e:
            logger.error(f"Failed to record usage: user_id={user_id}, error={e}")
            return UsageRecordResult(success=False, error=RECORD_USAGE_FAILED)

        self.invalidate(user_id)

        if status.is_pro:
            remaining = UNLIMITED
        else:
            remaining = remaining_uses(False, status.usage.current + 1, status.usage.limit)
        return UsageRecordResult(success=True, remaining_uses=remaining)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def cancel_subscription(self, user_id: str, immediate: bool = False) -> SubscriptionCommandResult:
        """
        Cancel the user's active subscription, at period end by default.

        Returns an error result (never raises) when there is nothing to cancel.
        """
        subscription = subscription_store.get_active_subscription(self.db, user_id, self.clock())
        if subscription is None:
            return SubscriptionCommandResult(success=False, error=NO_ACTIVE_SUBSCRIPTION)
        return self._cancel(subscription, immediate)

    def reactivate_subscription(self, user_id: str) -> SubscriptionCommandResult:
        """Withdraw a pending period-end cancellation. Status is left as it is."""
        subscription = subscription_store.get_active_subscription(self.db, user_id, self.clock())
        if subscription is None:
            return SubscriptionCommandResult(success=False, error=NO_ACTIVE_SUBSCRIPTION)
        return self._reactivate(subscription)

    def cancel_subscription_by_id(self, subscription_id: str, immediate: bool = False) -> SubscriptionCommandResult:
        """Admin variant addressed by internal subscription id."""
        subscription = subscription_store.get_subscription_by_id(self.db, subscription_id)
        if subscription is None:
            return SubscriptionCommandResult(success=False, error=SUBSCRIPTION_NOT_FOUND)
        if subscription.status == "canceled":
            return SubscriptionCommandResult(success=False, error="Subscription is already canceled")
        return self._cancel(subscription, immediate)

    def reactivate_subscription_by_id(self, subscription_id: str) -> SubscriptionCommandResult:
        """Admin variant addressed by internal subscription id."""
        subscription = subscription_store.get_subscription_by_id(self.db, subscription_id)
        if subscription is None:
            return SubscriptionCommandResult(success=False, error=SUBSCRIPTION_NOT_FOUND)
        return self._reactivate(subscription)

    def grant_manual_subscription(self, user_id: str, plan: str = "pro") -> SubscriptionCommandResult:
        """
        Admin grant of Pro access with no Stripe subscription behind it.

        The row runs for MANUAL_GRANT_DAYS and lapses through the normal
        period-end rule; there is nothing to send to the provider.
        """
        if get_user(self.db, user_id) is None:
            return SubscriptionCommandResult(success=False, error=USER_NOT_FOUND)
        now = self.clock()
        if subscription_store.get_active_subscription(self.db, user_id, now) is not None:
            return SubscriptionCommandResult(success=False, error=ALREADY_SUBSCRIBED)

        subscription = subscription_store.create_subscription(
            self.db,
            user_id=user_id,
            status="active",
            plan=plan,
            current_period_end=now + timedelta(days=MANUAL_GRANT_DAYS),
            cancel_at_period_end=False,
        )
        self.invalidate(user_id)
        logger.info(f"Manual subscription granted: id={subscription.id}, user_id={user_id}, plan={plan}")
        return SubscriptionCommandResult(
            success=True,
            message="Subscription granted",
            subscription_id=subscription.id,
            cancel_at=subscription.current_period_end,
            gateway_synced=False,
        )

    def override_subscription_status(
        self,
        subscription_id: str,
        status: str,
        cancel_at_period_end: Optional[bool] = None,
    ) -> SubscriptionCommandResult:
        """
        Admin correction of the local row. Stripe is not told; a later
        subscription webhook for a Stripe-backed row overwrites the change.
        """
        if status not in ADMIN_SETTABLE_STATUSES:
            return SubscriptionCommandResult(success=False, error=INVALID_STATUS)
        subscription = subscription_store.get_subscription_by_id(self.db, subscription_id)
        if subscription is None:
            return SubscriptionCommandResult(success=False, error=SUBSCRIPTION_NOT_FOUND)

        changes = {"status": status}
        if cancel_at_period_end is not None:
            changes["cancel_at_period_end"] = cancel_at_period_end
        if status == "canceled" and subscription.canceled_at is None:
            changes["canceled_at"] = self.clock()
        subscription_store.update_subscription(self.db, subscription, changes)
        self.invalidate(subscription.user_id)
        if subscription.stripe_subscription_id:
            logger.warning(
                f"Local status override on Stripe-backed subscription_id={subscription.stripe_subscription_id}; "
                f"provider state unchanged"
            )
        logger.info(f"Subscription status overridden: id={subscription.id}, status={status}")
        return SubscriptionCommandResult(
            success=True,
            message="Subscription updated",
            subscription_id=subscription.id,
            gateway_synced=False,
        )

        return self._reactivate(subscription)

    def _cancel(self, subscription: Subscription, immediate: bool) -> SubscriptionCommandResult:
        if immediate:
            gateway_synced = self._send_to_gateway(
                subscription, "cancel_now", lambda gw, sid: gw.cancel_now(sid)
            )
            now = self.clock()
            subscription_store.update_subscription(
                self.db,
                subscription,
                {"status": "canceled", "canceled_at": now},
            )
            self.invalidate(subscription.user_id)
            logger.info(f"Subscription canceled immediately: id={subscription.id}, user_id={subscription.user_id}")
            return SubscriptionCommandResult(
                success=True,
                message="Subscription canceled",
                cancel_at=now,
                gateway_synced=gateway_synced,
            )

        gateway_synced = self._send_to_gateway(
            subscription,
            "set_cancel_at_period_end",
            lambda gw, sid: gw.set_cancel_at_period_end(sid, True),
        )
        subscription_store.update_subscription(self.db, subscription, {"cancel_at_period_end": True})
        self.invalidate(subscription.user_id)
        logger.info(
            f"Subscription scheduled for cancellation: id={subscription.id}, user_id={subscription.user_id}, "
            f"cancel_at={subscription.current_period_end}"
        )
        return SubscriptionCommandResult(
            success=True,
            message="Subscription scheduled for cancellation at the end of the billing period",
            cancel_at=subscription.current_period_end,
            gateway_synced=gateway_synced,
        )

    def _reactivate(self, subscription: Subscription) -> SubscriptionCommandResult:
        if subscription.status != "active":
            return SubscriptionCommandResult(success=False, error=NOT_REACTIVATABLE)
        if not subscription.cancel_at_period_end:
            return SubscriptionCommandResult(success=False, error=NOT_PENDING_CANCELLATION)

        gateway_synced = self._send_to_gateway(
            subscription,
            "set_cancel_at_period_end",
            lambda gw, sid: gw.set_cancel_at_period_end(sid, False),
        )
        subscription_store.update_subscription(self.db, subscription, {"cancel_at_period_end": False})
        self.invalidate(subscription.user_id)
        logger.info(f"Subscription reactivated: id={subscription.id}, user_id={subscription.user_id}")
        return SubscriptionCommandResult(
            success=True,
            message="Subscription reactivated",
            gateway_synced=gateway_synced,
        )

    def _send_to_gateway(self, subscription: Subscription, command: str, send) -> bool:
        """
        Best-effort provider command. Failures are logged and reported back as
        gateway_synced=False; they never block the local update.
        """
        if self.gateway is None or not subscription.stripe_subscription_id:
            logger.warning(f"Skipping Stripe {command}: no gateway or provider id for subscription {subscription.id}")
            return False
        try:
            send(self.gateway, subscription.stripe_subscription_id)
            return True
        except (GatewayCommandFailed, GatewayNotConfigured) as e:
            logger.error(
                f"Stripe {command} failed for subscription_id={subscription.stripe_subscription_id}; "
                f"applying local change, webhook will reconcile: {e}"
            )
            return False

    def invalidate(self, user_id: str) -> None:
        self.cache.delete(SUBSCRIPTION_STATUS_NAMESPACE, user_id)
        self.cache.delete(CAN_GENERATE_NAMESPACE, user_id)


def _summarize(subscription: Subscription) -> SubscriptionSummary:
    return SubscriptionSummary(
        id=subscription.id,
        status=subscription.status,
        plan=subscription.plan,
        current_period_end=subscription.current_period_end,
        cancel_at_period_end=bool(subscription.cancel_at_period_end),
    )
