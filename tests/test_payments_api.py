"""/vnpay uçları: ödeme linki, dönüş, IPN, manuel kontrol."""
from urllib.parse import parse_qsl, urlsplit

from fastapi.testclient import TestClient


def _subscribe(client, headers, plan_id):
    r = client.post("/subscriptions/payment", json={"planId": plan_id}, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()


def test_checkout_url_requires_auth(client: TestClient):
    r = client.post("/vnpay/checkout-url", json={"amount": 10000, "orderInfo": "Top up"})
    assert r.status_code == 401
    assert r.json()["error"] == "Unauthorized"


def test_checkout_url(client: TestClient, auth_headers, codec):
    r = client.post(
        "/vnpay/checkout-url",
        json={"amount": 150000, "orderInfo": "Top up wallet", "bankCode": "NCB", "locale": "en"},
        headers=auth_headers,
    )
    assert r.status_code == 200, r.text
    j = r.json()
    assert j["paymentUrl"].startswith(codec.config.pay_url + "?")
    assert j["signedFields"]["vnp_Amount"] == "15000000"
    assert j["signedFields"]["vnp_TxnRef"] == j["correlationKey"]
    assert j["transactionId"] is not None
    query = dict(parse_qsl(urlsplit(j["paymentUrl"]).query))
    assert codec.verify(query).is_valid


def test_checkout_url_validation(client: TestClient, auth_headers):
    r = client.post("/vnpay/checkout-url", json={"amount": -1, "orderInfo": "x"}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "InvalidInput"
    r = client.post("/vnpay/checkout-url", json={"amount": 1000}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "InvalidInput"


def test_checkout_url_order_id_rules(client: TestClient, auth_headers):
    r = client.post("/vnpay/checkout-url", json={"amount": 1000, "orderInfo": "x", "orderId": "12"}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "InvalidInput"

    body = {"amount": 1000, "orderInfo": "x", "orderId": "ORDER-12"}
    assert client.post("/vnpay/checkout-url", json=body, headers=auth_headers).status_code == 200
    r = client.post("/vnpay/checkout-url", json=body, headers=auth_headers)
    assert r.status_code == 409
    assert r.json()["error"] == "Conflict"


def test_return_endpoint(client: TestClient, auth_headers, plan_id, gateway_fields):
    created = _subscribe(client, auth_headers, plan_id())
    r = client.get("/vnpay/return", params=gateway_fields(created["correlationKey"], 99000))
    assert r.status_code == 200, r.text
    j = r.json()
    assert j["success"] is True
    assert j["outcome"] == "success"
    assert j["responseCode"] == "00"
    assert j["transaction"]["status"] == "success"
    assert j["transaction"]["metadata"]["updated_from"] == "return_url"
    assert j["subscription"]["status"] == "current_active"


def test_return_endpoint_rejects_bad_signature(client: TestClient, gateway_fields):
    fields = gateway_fields("1", 99000)
    fields["vnp_SecureHash"] = "0" * 128
    r = client.get("/vnpay/return", params=fields)
    assert r.status_code == 400
    j = r.json()
    assert j["error"] == "InvalidSignature"
    assert j["request_id"]


def test_ipn_endpoint_always_200(client: TestClient, auth_headers, plan_id, gateway_fields):
    created = _subscribe(client, auth_headers, plan_id("premium", "6_months"))
    key = created["correlationKey"]

    r = client.get("/vnpay/ipn", params={"vnp_TxnRef": key, "vnp_SecureHash": "bad"})
    assert r.status_code == 200
    assert r.json() == {"RspCode": "97", "Message": "Invalid signature"}

    r = client.get("/vnpay/ipn", params=gateway_fields("missing", 1000))
    assert r.json() == {"RspCode": "01", "Message": "Order not found"}

    r = client.get("/vnpay/ipn", params=gateway_fields(key, 1649000, vnp_Amount="1"))
    assert r.json() == {"RspCode": "04", "Message": "Amount invalid"}

    r = client.get("/vnpay/ipn", params=gateway_fields(key, 1649000))
    assert r.json() == {"RspCode": "00", "Message": "Confirm Success"}
    r = client.get("/vnpay/ipn", params=gateway_fields(key, 1649000))
    assert r.json() == {"RspCode": "00", "Message": "Already confirmed"}


def test_generic_check_payment_status(client: TestClient, auth_headers, plan_id, gateway_fields):
    created = _subscribe(client, auth_headers, plan_id())
    r = client.post("/vnpay/check-payment-status", json=gateway_fields(created["correlationKey"], 99000, response_code="11"))
    assert r.status_code == 200
    j = r.json()
    assert j["outcome"] == "failed"
    assert j["reason"] == "Payment timeout expired"
    assert j["transaction"]["metadata"]["updated_from"] == "check_payment_status"

    r = client.post("/vnpay/check-payment-status", json={})
    assert r.status_code == 400
