"""
Unit tests for the entitlement service.
Covers status derivation, generation checks, usage recording and
cancel/reactivate commands.
"""
from datetime import timedelta

import pytest

from worksheetgen.core.errors import StoreUnavailable
from worksheetgen.core.plan_limits import UNLIMITED, limit_reached_message
from worksheetgen.core.timeutils import utcnow
from worksheetgen.db.models.subscription import Subscription
from worksheetgen.db.models.usage import UsageEvent
from worksheetgen.db.models.user import User
from worksheetgen.services import usage_ledger
from worksheetgen.services.entitlement_service import (
    ALREADY_SUBSCRIBED,
    INVALID_STATUS,
    NO_ACTIVE_SUBSCRIPTION,
    NOT_PENDING_CANCELLATION,
    NOT_REACTIVATABLE,
    RECORD_USAGE_FAILED,
    SUBSCRIPTION_NOT_FOUND,
    USER_NOT_FOUND,
    EntitlementService,
)
from worksheetgen.services.user_service import delete_user


@pytest.fixture
def service(db, cache, gateway):
    return EntitlementService(db, cache, gateway, free_limit=2)


@pytest.fixture
def free_user(make_user):
    return make_user("user-1")


def add_usage(db, user_id, count, document_type="worksheet"):
    for _ in range(count):
        usage_ledger.append_usage(db, user_id, document_type)


# ============================================
# Status
# ============================================

def test_user_without_subscription_is_free(service, free_user):
    status = service.get_subscription_status(free_user.id)

    assert status.is_active is False
    assert status.is_pro is False
    assert status.subscription is None
    assert status.usage.current == 0
    assert status.usage.limit == 2
    assert status.usage.unlimited is False


def test_active_subscription_is_pro(service, free_user, make_subscription):
    subscription = make_subscription(free_user)
    add_usage(service.db, free_user.id, 5)

    status = service.get_subscription_status(free_user.id)

    assert status.is_active is True
    assert status.is_pro is True
    assert status.usage.limit == UNLIMITED
    assert status.usage.unlimited is True
    assert status.usage.current == 5
    assert status.subscription.id == subscription.id
    assert service.can_generate_document(free_user.id).can_generate is True


def test_elapsed_period_is_not_pro_and_row_is_untouched(service, db, free_user, make_subscription):
    subscription = make_subscription(free_user, current_period_end=utcnow() - timedelta(minutes=1))

    status = service.get_subscription_status(free_user.id)

    assert status.is_active is False
    assert status.is_pro is False
    assert status.usage.limit == 2
    db.expire_all()
    assert db.query(Subscription).filter(Subscription.id == subscription.id).first().status == "active"


def test_missing_period_end_is_not_pro(service, free_user, make_subscription):
    make_subscription(free_user, current_period_end=None)

    assert service.get_subscription_status(free_user.id).is_pro is False


@pytest.mark.parametrize("status", ["past_due", "canceled", "expired"])
def test_non_active_statuses_are_not_pro(service, free_user, make_subscription, status):
    make_subscription(free_user, status=status)

    result = service.get_subscription_status(free_user.id)

    assert result.is_pro is False
    assert result.subscription.status == status


def test_most_recent_subscription_wins(service, free_user, make_subscription):
    now = utcnow()
    make_subscription(free_user, stripe_subscription_id="sub_old", created_at=now - timedelta(days=60))
    make_subscription(
        free_user,
        stripe_subscription_id="sub_new",
        status="canceled",
        created_at=now - timedelta(days=1),
    )

    assert service.get_subscription_status(free_user.id).is_pro is False


def test_pending_cancellation_is_still_pro(service, free_user, make_subscription):
    make_subscription(free_user, cancel_at_period_end=True)

    status = service.get_subscription_status(free_user.id)

    assert status.is_pro is True
    assert status.subscription.cancel_at_period_end is True


# ============================================
# Generation checks
# ============================================

def test_free_user_below_limit_can_generate(service, free_user):
    add_usage(service.db, free_user.id, 1)

    decision = service.can_generate_document(free_user.id)

    assert decision.can_generate is True
    assert decision.reason is None


def test_free_user_at_limit_is_refused_with_reason(service, free_user):
    add_usage(service.db, free_user.id, 2)

    decision = service.can_generate_document(free_user.id)

    assert decision.can_generate is False
    assert decision.reason == limit_reached_message(2)


def test_usage_is_counted_across_document_types(service, free_user):
    add_usage(service.db, free_user.id, 1, "worksheet")
    add_usage(service.db, free_user.id, 1, "exam")

    assert service.can_generate_document(free_user.id).can_generate is False


def test_store_failure_propagates_instead_of_defaulting(service, free_user, monkeypatch):
    def unavailable(db, user_id):
        raise StoreUnavailable("count_usage failed")

    monkeypatch.setattr(usage_ledger, "count_usage", unavailable)

    with pytest.raises(StoreUnavailable):
        service.get_subscription_status(free_user.id)
    assert len(service.cache) == 0


# ============================================
# Usage recording
# ============================================

def test_new_free_user_records_until_limit(service, db, free_user):
    first = service.record_document_usage(free_user.id, "worksheet", {"subject": "Math"})
    second = service.record_document_usage(free_user.id, "exam")
    third = service.record_document_usage(free_user.id, "worksheet")

    assert first.success is True and first.remaining_uses == 1
    assert second.success is True and second.remaining_uses == 0
    assert third.success is False
    assert third.error == limit_reached_message(2)

    assert usage_ledger.count_usage(db, free_user.id) == 2
    db.expire_all()
    assert db.query(User).filter(User.id == free_user.id).first().usage_count == 2


def test_recorded_event_keeps_metadata_and_defaults(service, db, free_user):
    service.record_document_usage(free_user.id, "worksheet", {"subject": "Science", "grade": "4"})

    event = db.query(UsageEvent).filter(UsageEvent.user_id == free_user.id).one()
    assert event.document_type == "worksheet"
    assert event.subject == "Science"
    assert event.grade == "4"
    assert event.language == "es"


def test_pro_user_records_without_limit(service, free_user, make_subscription):
    make_subscription(free_user)
    add_usage(service.db, free_user.id, 10)

    result = service.record_document_usage(free_user.id, "exam")

    assert result.success is True
    assert result.remaining_uses == UNLIMITED


def test_invalid_document_type_writes_nothing(service, db, free_user):
    result = service.record_document_usage(free_user.id, "poster")

    assert result.success is False
    assert "Invalid document type" in result.error
    assert usage_ledger.count_usage(db, free_user.id) == 0


def test_record_invalidates_cached_decisions(service, free_user):
    add_usage(service.db, free_user.id, 1)
    assert service.can_generate_document(free_user.id).can_generate is True
    assert service.get_subscription_status(free_user.id).usage.current == 1

    service.record_document_usage(free_user.id, "worksheet")

    assert service.get_subscription_status(free_user.id).usage.current == 2
    assert service.can_generate_document(free_user.id).can_generate is False


def test_failed_write_reports_error_and_applies_nothing(service, db, free_user, monkeypatch):
    def unavailable(*args, **kwargs):
        raise StoreUnavailable("append_usage failed")

    monkeypatch.setattr(usage_ledger, "append_usage", unavailable)

    result = service.record_document_usage(free_user.id, "worksheet")

    assert result.success is False
    assert result.error == RECORD_USAGE_FAILED
    monkeypatch.undo()
    assert usage_ledger.count_usage(db, free_user.id) == 0


def test_record_for_user_deleted_mid_request_reports_error(service, db, free_user):
    user_id = free_user.id
    assert service.can_generate_document(user_id).can_generate is True
    delete_user(db, user_id)

    result = service.record_document_usage(user_id, "worksheet")

    assert result.success is False
    assert result.error == RECORD_USAGE_FAILED
    assert db.query(UsageEvent).count() == 0


def test_check_then_record_overshoot_is_bounded_leniency(service, db, free_user):
    # The decision for one tab is cached while a second device records
    # directly; the first tab's record still passes on its stale decision.
    add_usage(db, free_user.id, 1)
    assert service.can_generate_document(free_user.id).can_generate is True

    usage_ledger.append_usage(db, free_user.id, "worksheet")
    result = service.record_document_usage(free_user.id, "worksheet")

    assert result.success is True
    assert usage_ledger.count_usage(db, free_user.id) == 3

    # Once the cache is refreshed the user is refused again
    assert service.can_generate_document(free_user.id).can_generate is False


# ============================================
# Cancel / reactivate
# ============================================

def test_cancel_without_subscription_is_an_error_result(service, free_user, gateway):
    result = service.cancel_subscription(free_user.id)

    assert result.success is False
    assert result.error == NO_ACTIVE_SUBSCRIPTION
    assert gateway.calls == []


def test_cancel_elapsed_subscription_is_an_error_result(service, free_user, make_subscription):
    make_subscription(free_user, current_period_end=utcnow() - timedelta(days=1))

    assert service.cancel_subscription(free_user.id).error == NO_ACTIVE_SUBSCRIPTION


def test_cancel_then_reactivate_round_trip(service, db, free_user, make_subscription, gateway):
    subscription = make_subscription(free_user)

    cancelled = service.cancel_subscription(free_user.id)

    assert cancelled.success is True
    assert cancelled.gateway_synced is True
    assert cancelled.cancel_at == subscription.current_period_end
    assert gateway.calls == [("set_cancel_at_period_end", "sub_123", True)]
    status = service.get_subscription_status(free_user.id)
    assert status.is_pro is True
    assert status.subscription.cancel_at_period_end is True

    reactivated = service.reactivate_subscription(free_user.id)

    assert reactivated.success is True
    assert gateway.calls[-1] == ("set_cancel_at_period_end", "sub_123", False)
    db.expire_all()
    stored = db.query(Subscription).filter(Subscription.id == subscription.id).first()
    assert stored.cancel_at_period_end is False
    assert stored.status == "active"
    assert service.get_subscription_status(free_user.id).subscription.cancel_at_period_end is False


def test_reactivate_without_pending_cancellation(service, free_user, make_subscription, gateway):
    make_subscription(free_user)

    result = service.reactivate_subscription(free_user.id)

    assert result.success is False
    assert result.error == NOT_PENDING_CANCELLATION
    assert gateway.calls == []


def test_gateway_failure_still_applies_locally(service, db, free_user, make_subscription, gateway):
    subscription = make_subscription(free_user)
    gateway.fail = True

    result = service.cancel_subscription(free_user.id)

    assert result.success is True
    assert result.gateway_synced is False
    db.expire_all()
    assert db.query(Subscription).filter(Subscription.id == subscription.id).first().cancel_at_period_end is True


def test_cancel_without_gateway_applies_locally(db, cache, free_user, make_subscription):
    make_subscription(free_user)
    service = EntitlementService(db, cache, gateway=None)

    result = service.cancel_subscription(free_user.id)

    assert result.success is True
    assert result.gateway_synced is False


def test_immediate_cancel_ends_entitlement(service, db, free_user, make_subscription, gateway):
    subscription = make_subscription(free_user)
    assert service.get_subscription_status(free_user.id).is_pro is True

    result = service.cancel_subscription_by_id(subscription.id, immediate=True)

    assert result.success is True
    assert gateway.calls == [("cancel_now", "sub_123")]
    db.expire_all()
    stored = db.query(Subscription).filter(Subscription.id == subscription.id).first()
    assert stored.status == "canceled"
    assert stored.canceled_at is not None
    assert service.get_subscription_status(free_user.id).is_pro is False


def test_admin_cancel_unknown_or_already_canceled(service, free_user, make_subscription):
    canceled = make_subscription(free_user, status="canceled")

    assert service.cancel_subscription_by_id("missing").error == SUBSCRIPTION_NOT_FOUND
    assert service.cancel_subscription_by_id(canceled.id).success is False
    assert service.reactivate_subscription_by_id("missing").error == SUBSCRIPTION_NOT_FOUND


def test_reactivate_after_immediate_cancel_is_refused(service, db, free_user, make_subscription, gateway):
    subscription = make_subscription(free_user)
    service.cancel_subscription(free_user.id)
    service.cancel_subscription_by_id(subscription.id, immediate=True)
    calls_before = list(gateway.calls)

    result = service.reactivate_subscription_by_id(subscription.id)

    assert result.success is False
    assert result.error == NOT_REACTIVATABLE
    assert gateway.calls == calls_before
    db.expire_all()
    assert db.query(Subscription).filter(Subscription.id == subscription.id).first().status == "canceled"


# ============================================
# Admin grants and overrides
# ============================================

def test_manual_grant_is_pro_for_grant_period(service, db, free_user, gateway):
    result = service.grant_manual_subscription(free_user.id)

    assert result.success is True
    assert result.gateway_synced is False
    assert gateway.calls == []
    row = db.query(Subscription).filter(Subscription.id == result.subscription_id).one()
    assert row.stripe_subscription_id is None
    assert row.current_period_end - row.created_at > timedelta(days=29)
    assert service.get_subscription_status(free_user.id).is_pro is True


def test_manual_grant_preconditions(service, free_user, make_subscription):
    assert service.grant_manual_subscription("missing").error == USER_NOT_FOUND

    make_subscription(free_user)

    assert service.grant_manual_subscription(free_user.id).error == ALREADY_SUBSCRIBED


def test_status_override_invalidates_cache(service, free_user, make_subscription, gateway):
    subscription = make_subscription(free_user)
    assert service.get_subscription_status(free_user.id).is_pro is True

    result = service.override_subscription_status(subscription.id, "expired")

    assert result.success is True
    assert gateway.calls == []
    assert service.get_subscription_status(free_user.id).is_pro is False


def test_status_override_rejects_statuses_owned_by_billing(service, free_user, make_subscription):
    subscription = make_subscription(free_user)

    assert service.override_subscription_status(subscription.id, "past_due").error == INVALID_STATUS
    assert service.override_subscription_status("missing", "active").error == SUBSCRIPTION_NOT_FOUND
