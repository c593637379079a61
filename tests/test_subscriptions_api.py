"""/subscriptions, /subscription-plans ve /admin uçları."""
from datetime import timedelta

from fastapi.testclient import TestClient

from voltsub.models import Subscription

ADMIN = {"X-Admin-Secret": "test-admin-secret"}


def test_list_plans(client: TestClient):
    r = client.get("/subscription-plans")
    assert r.status_code == 200
    plans = r.json()
    assert len(plans) == 9
    assert [p["displayOrder"] for p in plans] == sorted(p["displayOrder"] for p in plans)
    assert plans[0]["durationDays"] == 30


def test_subscription_payment(client: TestClient, auth_headers, plan_id, codec):
    r = client.post("/subscriptions/payment", json={"planId": plan_id("standard", "12_months")}, headers=auth_headers)
    assert r.status_code == 200, r.text
    j = r.json()
    assert j["correlationKey"] == str(j["subscriptionId"])
    assert j["subscription"]["status"] == "pending"
    assert j["subscription"]["price"] == 1999000
    assert j["plan"]["type"] == "standard"
    assert "vnp_SecureHash=" in j["paymentUrl"]


def test_subscription_payment_unknown_plan(client: TestClient, auth_headers):
    r = client.post("/subscriptions/payment", json={"planId": 9999}, headers=auth_headers)
    assert r.status_code == 404
    assert r.json()["error"] == "NotFound"


def test_check_payment_status_flow(client: TestClient, auth_headers, plan_id, gateway_fields):
    created = client.post("/subscriptions/payment", json={"planId": plan_id()}, headers=auth_headers).json()
    sub_id = created["subscriptionId"]

    r = client.post("/subscriptions/check-payment-status", json=gateway_fields(created["correlationKey"], 99000), headers=auth_headers)
    assert r.status_code == 400
    assert "subscriptionId" in r.json()["message"]

    body = dict(gateway_fields(created["correlationKey"], 99000), subscriptionId=sub_id)
    r = client.post("/subscriptions/check-payment-status", json=body, headers=auth_headers)
    assert r.status_code == 200, r.text
    j = r.json()
    assert j["outcome"] == "success"
    assert j["subscription"]["status"] == "current_active"
    assert j["redirect"]["url"].startswith("http://localhost:5173/payment-success?")
    assert j["redirect"]["params"]["subscriptionId"] == str(sub_id)
    assert j["redirect"]["params"]["vnp_TxnRef"] == created["correlationKey"]

    r = client.get("/subscriptions/current-active", headers=auth_headers)
    assert r.json()["subscription"]["id"] == sub_id


def test_check_payment_status_of_foreign_subscription(client: TestClient, auth_headers, make_user, headers_for, plan_id, gateway_fields):
    created = client.post("/subscriptions/payment", json={"planId": plan_id()}, headers=auth_headers).json()
    stranger = headers_for(make_user())
    body = dict(gateway_fields(created["correlationKey"], 99000), subscriptionId=created["subscriptionId"])
    r = client.post("/subscriptions/check-payment-status", json=body, headers=stranger)
    assert r.status_code == 404


def test_upgrade_endpoint(client: TestClient, auth_headers, plan_id, gateway_fields):
    r = client.post("/subscriptions/upgrade", json={"planId": plan_id("standard", "1_month")}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "InvalidInput"

    basic = client.post("/subscriptions/payment", json={"planId": plan_id("basic", "1_month")}, headers=auth_headers).json()
    client.get("/vnpay/ipn", params=gateway_fields(basic["correlationKey"], 99000))

    r = client.post("/subscriptions/upgrade", json={"planId": plan_id("basic", "1_month")}, headers=auth_headers)
    assert r.status_code == 400

    r = client.post("/subscriptions/upgrade", json={"planId": plan_id("standard", "1_month")}, headers=auth_headers)
    assert r.status_code == 200, r.text
    up = r.json()
    assert up["subscription"]["upgradedFrom"] == basic["subscriptionId"]
    assert up["subscription"]["status"] == "pending"

    client.get("/vnpay/ipn", params=gateway_fields(up["correlationKey"], 199000))
    mine = {s["id"]: s["status"] for s in client.get("/subscriptions/my-subscriptions", headers=auth_headers).json()}
    assert mine == {basic["subscriptionId"]: "active", up["subscriptionId"]: "current_active"}


def test_get_and_cancel(client: TestClient, auth_headers, make_user, headers_for, plan_id, gateway_fields):
    created = client.post("/subscriptions/payment", json={"planId": plan_id()}, headers=auth_headers).json()
    sub_id = created["subscriptionId"]

    r = client.post(f"/subscriptions/{sub_id}/cancel", headers=auth_headers)
    assert r.status_code == 409
    assert r.json()["error"] == "Conflict"

    client.get("/vnpay/ipn", params=gateway_fields(created["correlationKey"], 99000))
    stranger = headers_for(make_user())
    assert client.get(f"/subscriptions/{sub_id}", headers=stranger).status_code == 404
    assert client.post(f"/subscriptions/{sub_id}/cancel", headers=stranger).status_code == 404

    r = client.post(f"/subscriptions/{sub_id}/cancel", json={"reason": "Sold the car"}, headers=auth_headers)
    assert r.status_code == 200, r.text
    sub = r.json()["subscription"]
    assert sub["status"] == "current_active"
    assert sub["autoRenew"] is False
    assert sub["cancelledAt"] is not None
    assert sub["metadata"]["cancelledReason"] == "Sold the car"

    r = client.get(f"/subscriptions/{sub_id}", headers=auth_headers)
    assert r.json()["id"] == sub_id


def test_my_subscriptions_filter(client: TestClient, auth_headers, plan_id):
    client.post("/subscriptions/payment", json={"planId": plan_id()}, headers=auth_headers)
    assert len(client.get("/subscriptions/my-subscriptions", headers=auth_headers).json()) == 1
    r = client.get("/subscriptions/my-subscriptions", params={"status": "current_active"}, headers=auth_headers)
    assert r.json() == []


def test_admin_requires_secret(client: TestClient):
    assert client.post("/admin/subscriptions/sweep").status_code == 403
    assert client.post("/admin/subscriptions/sweep", headers={"X-Admin-Secret": "wrong"}).status_code == 403


def test_admin_create_activate_and_sweep(client: TestClient, db, user, plan_id):
    r = client.post(
        "/admin/subscriptions",
        json={"userId": user.id, "planId": plan_id("premium", "1_month"), "customPrice": 150000},
        headers=ADMIN,
    )
    assert r.status_code == 200, r.text
    created = r.json()
    assert created["price"] == 150000
    assert created["status"] == "pending"

    r = client.post(f"/admin/subscriptions/{created['id']}/activate", headers=ADMIN)
    assert r.json()["status"] == "current_active"

    sub = db.get(Subscription, created["id"], populate_existing=True)
    sub.end_date = sub.start_date - timedelta(days=1)
    db.add(sub)
    db.commit()

    r = client.post("/admin/subscriptions/sweep", headers=ADMIN)
    assert r.json() == {"expired": 1, "cancelled": 0}
