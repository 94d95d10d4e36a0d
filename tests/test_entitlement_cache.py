"""
Unit tests for the entitlement cache.
"""
from worksheetgen.services.entitlement_cache import (
    CAN_GENERATE_NAMESPACE,
    SUBSCRIPTION_STATUS_NAMESPACE,
    EntitlementCache,
    NullEntitlementCache,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class CountingCompute:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.value


def test_hit_does_not_call_compute():
    cache = EntitlementCache(default_ttl_seconds=300)
    compute = CountingCompute({"isPro": True})

    first = cache.get_or_set(SUBSCRIPTION_STATUS_NAMESPACE, "user-1", compute)
    second = cache.get_or_set(SUBSCRIPTION_STATUS_NAMESPACE, "user-1", compute)

    assert first == second == {"isPro": True}
    assert compute.calls == 1


def test_ttl_expiry_recomputes():
    clock = FakeClock()
    cache = EntitlementCache(default_ttl_seconds=300, clock=clock)
    compute = CountingCompute("fresh")

    cache.get_or_set(CAN_GENERATE_NAMESPACE, "user-1", compute)
    clock.now += 299
    cache.get_or_set(CAN_GENERATE_NAMESPACE, "user-1", compute)
    assert compute.calls == 1

    clock.now += 1
    cache.get_or_set(CAN_GENERATE_NAMESPACE, "user-1", compute)
    assert compute.calls == 2


def test_expired_entry_is_dropped_on_read():
    clock = FakeClock()
    cache = EntitlementCache(default_ttl_seconds=10, clock=clock)
    cache.set(CAN_GENERATE_NAMESPACE, "user-1", True)
    assert len(cache) == 1

    clock.now += 10
    assert cache.get(CAN_GENERATE_NAMESPACE, "user-1") is None
    assert len(cache) == 0


def test_per_entry_ttl_overrides_default():
    clock = FakeClock()
    cache = EntitlementCache(default_ttl_seconds=300, clock=clock)
    cache.set(CAN_GENERATE_NAMESPACE, "user-1", True, ttl_seconds=5)

    clock.now += 6
    assert cache.get(CAN_GENERATE_NAMESPACE, "user-1") is None


def test_none_results_are_not_cached():
    cache = EntitlementCache()
    compute = CountingCompute(None)

    assert cache.get_or_set(SUBSCRIPTION_STATUS_NAMESPACE, "user-1", compute) is None
    assert cache.get_or_set(SUBSCRIPTION_STATUS_NAMESPACE, "user-1", compute) is None
    assert compute.calls == 2


def test_compute_exception_stores_nothing():
    cache = EntitlementCache()

    def boom():
        raise RuntimeError("store down")

    try:
        cache.get_or_set(SUBSCRIPTION_STATUS_NAMESPACE, "user-1", boom)
    except RuntimeError:
        pass
    assert len(cache) == 0


def test_namespaces_are_independent():
    cache = EntitlementCache()
    cache.set(SUBSCRIPTION_STATUS_NAMESPACE, "user-1", "status")
    cache.set(CAN_GENERATE_NAMESPACE, "user-1", "decision")

    cache.delete(CAN_GENERATE_NAMESPACE, "user-1")

    assert cache.get(SUBSCRIPTION_STATUS_NAMESPACE, "user-1") == "status"
    assert cache.get(CAN_GENERATE_NAMESPACE, "user-1") is None


def test_invalidate_user_drops_only_that_user():
    cache = EntitlementCache()
    for user_id in ("user-1", "user-2"):
        cache.set(SUBSCRIPTION_STATUS_NAMESPACE, user_id, "status")
        cache.set(CAN_GENERATE_NAMESPACE, user_id, "decision")

    cache.invalidate_user("user-1")

    assert cache.get(SUBSCRIPTION_STATUS_NAMESPACE, "user-1") is None
    assert cache.get(CAN_GENERATE_NAMESPACE, "user-1") is None
    assert cache.get(SUBSCRIPTION_STATUS_NAMESPACE, "user-2") == "status"
    assert len(cache) == 2


def test_clear_namespace_and_clear():
    cache = EntitlementCache()
    cache.set(SUBSCRIPTION_STATUS_NAMESPACE, "user-1", "status")
    cache.set(CAN_GENERATE_NAMESPACE, "user-1", "decision")

    cache.clear_namespace(SUBSCRIPTION_STATUS_NAMESPACE)
    assert len(cache) == 1
    assert cache.get(CAN_GENERATE_NAMESPACE, "user-1") == "decision"

    cache.clear()
    assert len(cache) == 0


def test_null_cache_always_computes():
    cache = NullEntitlementCache()
    compute = CountingCompute("value")

    cache.get_or_set(SUBSCRIPTION_STATUS_NAMESPACE, "user-1", compute)
    cache.get_or_set(SUBSCRIPTION_STATUS_NAMESPACE, "user-1", compute)

    assert compute.calls == 2
    assert len(cache) == 0
