"""Back-office CRUD routes and the Stripe checkout helpers."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from billing_app.main import create_app
from billing_app.payments import StripeGateway

from tests.conftest import WEBHOOK_SECRET, failed_intent, post_webhook, stripe_event


class FakeStripeGateway(StripeGateway):
    """Records calls instead of talking to Stripe."""

    def __init__(self):
        super().__init__("sk_test_fake")
        self.calls = []
        self.subscription_status = "incomplete"

    def create_payment_intent(self, amount, currency="usd"):
        self.calls.append(("payment_intent", amount, currency))
        return {"id": "pi_fake", "client_secret": "pi_fake_secret"}

    def create_customer(self, email, name=None):
        self.calls.append(("customer", email, name))
        return "cus_new"

    def create_subscription(self, customer_id, price_id):
        self.calls.append(("subscription", customer_id, price_id))
        return {"id": "sub_remote_1", "status": self.subscription_status, "client_secret": "seti_secret_1"}


@pytest.fixture
def gateway():
    return FakeStripeGateway()


@pytest.fixture
def checkout_client(storage, gateway):
    app = create_app(storage=storage, processor=gateway, webhook_secret=WEBHOOK_SECRET, seed_plans=False)
    with TestClient(app) as client:
        yield client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_default_plans_seeded_on_startup(storage):
    app = create_app(storage=storage, processor=StripeGateway("sk_test_dummy"), seed_plans=True)
    with TestClient(app) as client:
        plans = client.get("/api/subscription-plans").json()

    assert [p["name"] for p in plans] == ["Basic Plan", "Professional", "Enterprise"]


class TestPlanRoutes:
    def test_create_list_update_delete(self, client):
        created = client.post(
            "/api/subscription-plans",
            json={"name": "Team", "price": 49, "billingCycle": "monthly", "features": ["SSO"]},
        )
        assert created.status_code == 200
        plan = created.json()
        assert plan["billingCycle"] == "monthly"
        assert plan["isActive"] is True
        assert plan["features"] == ["SSO"]

        listed = client.get("/api/subscription-plans").json()
        assert [p["id"] for p in listed] == [plan["id"]]

        updated = client.put(f"/api/subscription-plans/{plan['id']}", json={"price": 59})
        assert updated.status_code == 200
        assert Decimal(str(updated.json()["price"])) == Decimal("59")
        assert updated.json()["name"] == "Team"

        deleted = client.delete(f"/api/subscription-plans/{plan['id']}")
        assert deleted.json() == {"success": True}
        assert client.get("/api/subscription-plans").json() == []

    def test_invalid_billing_cycle(self, client):
        response = client.post(
            "/api/subscription-plans", json={"name": "Weekly", "price": 5, "billingCycle": "weekly"}
        )

        assert response.status_code == 422

    def test_missing_plan(self, client):
        assert client.put("/api/subscription-plans/999", json={"name": "x"}).status_code == 404
        response = client.delete("/api/subscription-plans/999")
        assert response.status_code == 404
        assert response.json() == {"message": "Plan not found", "code": "NOT_FOUND"}


class TestSubscriptionRoutes:
    def test_list_and_detail_include_user_and_plan(self, client, customer):
        listed = client.get("/api/subscriptions").json()

        assert len(listed) == 1
        assert listed[0]["user"]["username"] == "alice"
        assert listed[0]["plan"]["name"] == "Pro"

        detail = client.get(f"/api/subscriptions/{customer['subscription'].id}").json()
        assert detail["status"] == "active"
        assert client.get("/api/subscriptions/999").status_code == 404

    def test_recent(self, client, customer):
        recent = client.get("/api/subscriptions/recent").json()

        assert [s["id"] for s in recent] == [customer["subscription"].id]

    def test_create_then_cancel(self, client, customer):
        created = client.post("/api/subscriptions", json={
            "userId": customer["user"].id,
            "planId": customer["plan"].id,
            "status": "trial",
        })
        assert created.status_code == 200
        sub_id = created.json()["id"]

        cancelled = client.put(f"/api/subscriptions/{sub_id}", json={"status": "cancelled"})
        assert cancelled.status_code == 200
        assert cancelled.json()["cancelledAt"] is not None

        reactivated = client.put(f"/api/subscriptions/{sub_id}", json={"status": "active"})
        assert reactivated.status_code == 400
        assert reactivated.json()["code"] == "VALIDATION_ERROR"

    def test_create_for_unknown_user(self, client, customer):
        response = client.post("/api/subscriptions", json={
            "userId": 999,
            "planId": customer["plan"].id,
            "status": "active",
        })

        assert response.status_code == 404

    def test_rejects_unknown_status(self, client, customer):
        response = client.put(f"/api/subscriptions/{customer['subscription'].id}", json={"status": "paused"})

        assert response.status_code == 422


class TestPaymentIssueRoutes:
    def test_list_and_resolve(self, client, storage, customer):
        issue, _ = storage.create_payment_issue(
            subscription_id=customer["subscription"].id,
            user_id=customer["user"].id,
            reason="Card declined",
            amount=Decimal("49.00"),
        )

        listed = client.get("/api/payment-issues").json()
        assert listed[0]["user"]["email"] == "alice@example.com"
        assert listed[0]["subscription"]["id"] == customer["subscription"].id

        resolved = client.post(f"/api/payment-issues/{issue.id}/resolve")
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "resolved"
        assert resolved.json()["resolvedAt"] is not None

    def test_resolve_missing(self, client):
        response = client.post("/api/payment-issues/999/resolve")

        assert response.status_code == 404
        assert response.json()["message"] == "Payment issue not found"


def test_dashboard_metrics(client, storage, customer):
    storage.create_payment_issue(
        subscription_id=customer["subscription"].id,
        user_id=customer["user"].id,
        reason="Card declined",
        amount=Decimal("49.00"),
    )

    metrics = client.get("/api/dashboard/metrics").json()

    assert metrics == {
        "totalRevenue": 49.0,
        "activeSubscriptions": 1,
        "churnRate": 0.0,
        "failedPayments": 1,
    }


class TestCheckoutRoutes:
    def test_create_payment_intent(self, checkout_client, gateway):
        response = checkout_client.post("/api/create-payment-intent", json={"amount": 12.5})

        assert response.status_code == 200
        assert response.json() == {"clientSecret": "pi_fake_secret"}
        assert gateway.calls == [("payment_intent", 12.5, "usd")]

    def test_payment_intent_amount_must_be_positive(self, checkout_client):
        assert checkout_client.post("/api/create-payment-intent", json={"amount": 0}).status_code == 422

    def test_create_subscription_links_local_records(self, checkout_client, gateway, storage):
        plan = storage.create_subscription_plan({
            "name": "Pro", "price": Decimal("99"), "billing_cycle": "monthly", "stripe_price_id": "price_123",
        })

        response = checkout_client.post("/api/create-subscription", json={
            "planId": plan.id, "email": "new@example.com", "name": "New Customer",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["subscriptionId"] == "sub_remote_1"
        assert body["clientSecret"] == "seti_secret_1"

        user = storage.get_user_by_email("new@example.com")
        assert user.stripe_customer_id == "cus_new"
        assert user.stripe_subscription_id == "sub_remote_1"
        local = storage.get_subscription(body["localSubscriptionId"])
        assert local.status == "trial"
        assert local.stripe_subscription_id == "sub_remote_1"
        assert gateway.calls[-1] == ("subscription", "cus_new", "price_123")

    def test_create_subscription_reuses_existing_user(self, checkout_client, gateway, storage, customer):
        storage.update_subscription_plan(customer["plan"].id, {"stripe_price_id": "price_pro"})

        response = checkout_client.post("/api/create-subscription", json={
            "planId": customer["plan"].id, "email": "alice@example.com",
        })

        assert response.status_code == 200
        assert len(storage.get_user_subscriptions(customer["user"].id)) == 2
        assert storage.get_user(customer["user"].id).stripe_customer_id == "cus_123"
        assert gateway.calls == [("subscription", "cus_123", "price_pro")]

    def test_returning_customer_failures_still_recorded(self, checkout_client, storage, customer):
        storage.update_subscription_plan(customer["plan"].id, {"stripe_price_id": "price_pro"})
        for _ in range(2):
            response = checkout_client.post("/api/create-subscription", json={
                "planId": customer["plan"].id, "email": "alice@example.com",
            })
            assert response.status_code == 200

        failure = stripe_event("payment_intent.payment_failed", failed_intent(customer="cus_123"), event_id="evt_returning")
        assert post_webhook(checkout_client, failure).status_code == 200

        issues = storage.get_payment_issues()
        assert len(issues) == 1
        assert issues[0].user_id == customer["user"].id

    def test_active_stripe_subscription_stored_active(self, checkout_client, gateway, storage):
        gateway.subscription_status = "active"
        plan = storage.create_subscription_plan({
            "name": "Pro", "price": Decimal("99"), "billing_cycle": "monthly", "stripe_price_id": "price_123",
        })

        response = checkout_client.post("/api/create-subscription", json={
            "planId": plan.id, "email": "paid@example.com",
        })

        assert response.status_code == 200
        assert storage.get_subscription(response.json()["localSubscriptionId"]).status == "active"

    def test_inactive_plan_rejected(self, checkout_client, gateway, storage):
        plan = storage.create_subscription_plan({
            "name": "Legacy", "price": Decimal("5"), "billing_cycle": "monthly", "stripe_price_id": "price_old",
        })
        storage.delete_subscription_plan(plan.id)

        response = checkout_client.post("/api/create-subscription", json={
            "planId": plan.id, "email": "late@example.com",
        })

        assert response.status_code == 400
        assert gateway.calls == []

    def test_plan_without_price_rejected(self, checkout_client, customer, gateway):
        response = checkout_client.post("/api/create-subscription", json={
            "planId": customer["plan"].id, "email": "x@example.com",
        })

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid plan or Stripe price not configured"
        assert gateway.calls == []

    def test_invalid_email(self, checkout_client, customer):
        response = checkout_client.post("/api/create-subscription", json={
            "planId": customer["plan"].id, "email": "not-an-email",
        })

        assert response.status_code == 422

    def test_stripe_not_configured(self, storage, customer):
        app = create_app(storage=storage, processor=StripeGateway(""), seed_plans=False)
        with TestClient(app) as client:
            response = client.post("/api/create-subscription", json={
                "planId": customer["plan"].id, "email": "x@example.com",
            })

        assert response.status_code == 500
        assert response.json()["code"] == "PROCESSOR_NOT_CONFIGURED"
