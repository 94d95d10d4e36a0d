"""
Integration tests for /api/user endpoints.
"""
from worksheetgen.db.models.subscription import Subscription
from worksheetgen.db.models.usage import UsageEvent
from worksheetgen.db.models.user import User
from worksheetgen.services import usage_ledger


def test_login_creates_user(client, db, auth_headers):
    response = client.post(
        "/api/user/login", headers=auth_headers("google-123", email="ana@example.com", name="Ana")
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["id"] == "google-123"
    assert data["email"] == "ana@example.com"
    assert data["name"] == "Ana"
    assert data["role"] == "user"
    assert data["usageCount"] == 0


def test_login_refreshes_profile(client, db, make_user, auth_headers):
    user = make_user("user-1")
    previous_login = user.last_login

    response = client.post("/api/user/login", headers=auth_headers("user-1", name="Renamed Educator"))

    assert response.json()["data"]["name"] == "Renamed Educator"
    db.expire_all()
    refreshed = db.query(User).filter(User.id == "user-1").first()
    assert refreshed.name == "Renamed Educator"
    assert refreshed.last_login >= previous_login


def test_profile_includes_status_and_usage_by_type(client, db, make_user, auth_headers):
    make_user("user-1")
    usage_ledger.append_usage(db, "user-1", "worksheet")
    usage_ledger.append_usage(db, "user-1", "exam")
    usage_ledger.append_usage(db, "user-1", "exam")

    data = client.get("/api/user/profile", headers=auth_headers("user-1")).json()["data"]

    assert data["user"]["usageCount"] == 3
    assert data["usageByType"] == {"worksheet": 1, "exam": 2}
    assert data["subscriptionStatus"]["usage"]["current"] == 3


def test_delete_account_cascades(client, db, make_user, make_subscription, auth_headers, gateway):
    user = make_user("user-1")
    make_subscription(user)
    usage_ledger.append_usage(db, "user-1", "worksheet")

    response = client.delete("/api/user/account", headers=auth_headers("user-1"))

    assert response.status_code == 200
    db.expire_all()
    assert db.query(User).filter(User.id == "user-1").count() == 0
    assert db.query(Subscription).count() == 0
    assert db.query(UsageEvent).count() == 0
    assert gateway.calls == [("cancel_now", "sub_123")]


def test_delete_account_survives_provider_failure(client, db, make_user, make_subscription, auth_headers, gateway):
    make_subscription(make_user("user-1"))
    gateway.fail = True

    response = client.delete("/api/user/account", headers=auth_headers("user-1"))

    assert response.status_code == 200
    assert gateway.calls == [("cancel_now", "sub_123")]
    db.expire_all()
    assert db.query(User).filter(User.id == "user-1").count() == 0


def test_delete_account_without_subscription_skips_provider(client, make_user, auth_headers, gateway):
    make_user("user-1")

    response = client.delete("/api/user/account", headers=auth_headers("user-1"))

    assert response.status_code == 200
    assert gateway.calls == []
