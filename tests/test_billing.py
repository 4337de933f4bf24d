from urllib.parse import parse_qs, urlparse

import pytest
import stripe
from sqlmodel import select

from audisell.models.notification import Notification
from audisell.models.plan_config import PlanConfig
from audisell.models.subscription import Subscription
from audisell.models.user import User


@pytest.fixture
def stripe_calls(monkeypatch):
    """Record Stripe SDK calls made by the billing router and return canned objects."""
    calls = {}

    def _record(name, result):
        def _call(*args, **kwargs):
            calls.setdefault(name, []).append((args, kwargs))
            return result(*args, **kwargs) if callable(result) else result
        return _call

    monkeypatch.setattr(stripe, "api_key", "sk_test_dummy")
    monkeypatch.setattr(stripe.Customer, "create", _record("customer", {"id": "cus_created"}))
    monkeypatch.setattr(stripe.Price, "list", _record("price_list", {"data": []}))
    monkeypatch.setattr(stripe.Product, "create", _record("product", {"id": "prod_1"}))
    monkeypatch.setattr(stripe.Price, "create", _record("price", {"id": "price_new"}))
    monkeypatch.setattr(
        stripe.checkout.Session, "create", _record("checkout", {"id": "cs_test", "url": "https://checkout.stripe.test/cs_test"})
    )
    monkeypatch.setattr(
        stripe.billing_portal.Session, "create", _record("portal", {"url": "https://billing.stripe.test/portal"})
    )
    monkeypatch.setattr(stripe.Subscription, "modify", _record("modify", {"id": "sub_test"}))
    monkeypatch.setattr(stripe.Coupon, "retrieve", _record("coupon", {"id": "RETENTION_50_OFF"}))
    return calls


def test_checkout_creates_customer_and_price(client, session, make_user, auth_headers, stripe_calls):
    user = make_user()
    resp = client.post("/api/billing/checkout", json={"plan_tier": "creator"}, headers=auth_headers(user))
    assert resp.status_code == 200
    assert resp.json() == {"url": "https://checkout.stripe.test/cs_test", "session_id": "cs_test"}

    _, price_kwargs = stripe_calls["price"][0]
    assert price_kwargs["unit_amount"] == 9990
    assert price_kwargs["currency"] == "brl"
    _, checkout_kwargs = stripe_calls["checkout"][0]
    assert checkout_kwargs["customer"] == "cus_created"
    assert checkout_kwargs["line_items"] == [{"price": "price_new", "quantity": 1}]
    assert checkout_kwargs["metadata"] == {"plan_tier": "creator", "user_id": str(user.id)}

    session.expire_all()
    assert session.get(User, user.id).stripe_customer_id == "cus_created"


def test_checkout_reuses_matching_price_and_caches_it(client, session, make_user, auth_headers, stripe_calls, monkeypatch):
    session.add(PlanConfig(tier="starter", name="Starter", price_brl=2990))
    session.commit()
    existing = {
        "data": [
            {
                "id": "price_existing",
                "unit_amount": 508,
                "recurring": {"interval": "month"},
                "product": {"name": "Audisell Starter"},
            }
        ]
    }
    monkeypatch.setattr(stripe.Price, "list", lambda **kw: existing)

    user = make_user(stripe_customer_id="cus_known")
    resp = client.post("/api/billing/checkout", json={"plan_tier": "starter", "currency": "usd"}, headers=auth_headers(user))
    assert resp.status_code == 200
    assert "customer" not in stripe_calls
    assert "price" not in stripe_calls
    assert stripe_calls["checkout"][0][1]["line_items"][0]["price"] == "price_existing"

    session.expire_all()
    row = session.exec(select(PlanConfig).where(PlanConfig.tier == "starter")).one()
    assert row.stripe_price_id_usd == "price_existing"


def test_checkout_link_short_circuits_stripe(client, session, make_user, auth_headers, stripe_calls):
    session.add(PlanConfig(tier="agency", name="Agency", checkout_link_brl="https://buy.stripe.test/agency"))
    session.commit()
    user = make_user("link@example.com")

    resp = client.post("/api/billing/checkout", json={"plan_tier": "agency"}, headers=auth_headers(user))
    assert resp.status_code == 200
    url = urlparse(resp.json()["url"])
    assert url.netloc == "buy.stripe.test"
    assert parse_qs(url.query) == {"prefilled_email": ["link@example.com"], "client_reference_id": [str(user.id)]}
    assert "checkout" not in stripe_calls


def test_checkout_rejects_inactive_plan(client, session, make_user, auth_headers, stripe_calls):
    session.add(PlanConfig(tier="agency", name="Agency", is_active=False))
    session.commit()
    resp = client.post("/api/billing/checkout", json={"plan_tier": "agency"}, headers=auth_headers(make_user()))
    assert resp.status_code == 400


def test_checkout_rejects_free_tier(client, make_user, auth_headers, stripe_calls):
    resp = client.post("/api/billing/checkout", json={"plan_tier": "free"}, headers=auth_headers(make_user()))
    assert resp.status_code == 422


def test_checkout_without_stripe_key(client, make_user, auth_headers, monkeypatch):
    monkeypatch.setattr(stripe, "api_key", "")
    resp = client.post("/api/billing/checkout", json={"plan_tier": "creator"}, headers=auth_headers(make_user()))
    assert resp.status_code == 500
    assert resp.json()["error"]["message"] == "Stripe not configured"


def test_stripe_errors_surface_as_500(client, make_user, auth_headers, stripe_calls, monkeypatch):
    def _fail(**kwargs):
        raise stripe.InvalidRequestError("No such price", "price")

    monkeypatch.setattr(stripe.checkout.Session, "create", _fail)
    resp = client.post("/api/billing/checkout", json={"plan_tier": "creator"}, headers=auth_headers(make_user()))
    assert resp.status_code == 500


def test_portal_requires_billing_account(client, make_user, auth_headers, stripe_calls):
    assert client.post("/api/billing/portal", headers=auth_headers(make_user())).status_code == 404

    customer = make_user("paying@example.com", stripe_customer_id="cus_paying")
    resp = client.post("/api/billing/portal", headers=auth_headers(customer))
    assert resp.status_code == 200
    assert resp.json()["url"] == "https://billing.stripe.test/portal"
    assert stripe_calls["portal"][0][1]["customer"] == "cus_paying"


def test_cancel_schedules_downgrade(client, session, make_user, auth_headers, subscribe, stripe_calls):
    user = make_user()
    subscribe(user, "creator", days_left=10)

    resp = client.post("/api/billing/cancel", headers=auth_headers(user))
    assert resp.status_code == 200
    assert resp.json()["cancel_at_period_end"] is True
    assert stripe_calls["modify"] == [(("sub_test",), {"cancel_at_period_end": True})]

    session.expire_all()
    sub = session.exec(select(Subscription).where(Subscription.user_id == user.id)).one()
    assert sub.cancel_at_period_end is True
    assert sub.scheduled_downgrade_tier == "free"
    note = session.exec(select(Notification).where(Notification.user_id == user.id)).one()
    assert note.type == "subscription_cancelled"
    assert "9 dia(s)" in note.body or "10 dia(s)" in note.body


def test_cancel_without_subscription(client, make_user, auth_headers, stripe_calls):
    assert client.post("/api/billing/cancel", headers=auth_headers(make_user())).status_code == 404


def test_retention_offer_applies_once(client, session, make_user, auth_headers, subscribe, stripe_calls):
    user = make_user()
    subscribe(user, "creator", cancel_at_period_end=True, scheduled_downgrade_tier="free")
    headers = auth_headers(user)

    resp = client.post("/api/billing/retention-offer", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "discount_percent": 50}
    _, kwargs = stripe_calls["modify"][0]
    assert kwargs == {"discounts": [{"coupon": "RETENTION_50_OFF"}], "cancel_at_period_end": False}

    session.expire_all()
    sub = session.exec(select(Subscription).where(Subscription.user_id == user.id)).one()
    assert sub.cancel_at_period_end is False
    assert sub.scheduled_downgrade_tier is None
    assert session.get(User, user.id).retention_offer_used_at is not None

    assert client.post("/api/billing/retention-offer", headers=headers).status_code == 409


def test_retention_coupon_is_created_when_missing(client, make_user, auth_headers, subscribe, stripe_calls, monkeypatch):
    def _missing(coupon_id):
        raise stripe.InvalidRequestError("No such coupon", "id")

    created = []
    monkeypatch.setattr(stripe.Coupon, "retrieve", _missing)
    monkeypatch.setattr(stripe.Coupon, "create", lambda **kw: created.append(kw) or {"id": kw["id"]})

    user = make_user()
    subscribe(user, "starter")
    assert client.post("/api/billing/retention-offer", headers=auth_headers(user)).status_code == 200
    assert created[0]["percent_off"] == 50
    assert created[0]["duration"] == "once"


def test_subscription_state_endpoint(client, make_user, auth_headers, subscribe):
    user = make_user()
    subscribe(user, "creator")
    body = client.get("/api/subscription", headers=auth_headers(user)).json()
    assert body["plan"] == "creator"
    assert body["subscribed"] is True
    assert body["daily_limit"] == 8
