import asyncio
import hashlib
import hmac
import json

import httpx
import pytest

from mannequin import crud, models
from mannequin.exceptions import PaymentGatewayError
from mannequin.main import app, get_payment_gateway
from mannequin.payments import (
    RazorpayGateway,
    payment_signature,
    verify_payment_signature,
    verify_webhook_signature,
)

from conftest import TEST_KEY_SECRET


def test_payment_signature_round_trip():
    sig = payment_signature("order_1", "pay_1", "s3cret")
    assert verify_payment_signature("order_1", "pay_1", sig, "s3cret")


def test_payment_signature_mismatch():
    good = payment_signature("order_1", "pay_1", "s3cret")
    assert not verify_payment_signature("order_1", "pay_2", good, "s3cret")
    assert not verify_payment_signature("order_1", "pay_1", good, "other")
    assert not verify_payment_signature("order_1", "pay_1", good.upper(), "s3cret")
    assert not verify_payment_signature("order_1", "pay_1", "", "s3cret")
    assert not verify_payment_signature("order_1", "pay_1", None, "s3cret")


def test_webhook_signature_is_over_raw_body():
    body = b'{"event":"payment.captured"}'
    sig = hmac.new(b"whsec", body, hashlib.sha256).hexdigest()
    assert verify_webhook_signature(body, sig, "whsec")
    assert not verify_webhook_signature(body + b" ", sig, "whsec")
    assert not verify_webhook_signature(body, sig, "")


def test_gateway_create_order_posts_to_orders():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "order_abc", "amount": 2000, "currency": "INR"})

    gateway = RazorpayGateway("rzp_key", "rzp_secret", "https://api.example.test/v1",
                              transport=httpx.MockTransport(handler))
    order = asyncio.run(gateway.create_order(2000, "INR", "order_1_1", {"plan": "pro"}))
    assert order["id"] == "order_abc"
    assert seen["url"] == "https://api.example.test/v1/orders"
    assert seen["auth"].startswith("Basic ")
    assert seen["body"] == {"amount": 2000, "currency": "INR", "receipt": "order_1_1", "notes": {"plan": "pro"}}


def test_gateway_error_surfaces_description():
    def handler(request):
        return httpx.Response(400, json={"error": {"description": "amount too small"}})

    gateway = RazorpayGateway("k", "s", transport=httpx.MockTransport(handler))
    with pytest.raises(PaymentGatewayError, match="amount too small"):
        asyncio.run(gateway.create_order(1, "INR", "r"))


def test_gateway_requires_credentials():
    with pytest.raises(PaymentGatewayError):
        asyncio.run(RazorpayGateway("", "").create_order(100, "INR", "r"))


def test_gateway_non_json_body_is_a_gateway_error():
    def handler(request):
        return httpx.Response(200, text="<html>oops")

    gateway = RazorpayGateway("k", "s", transport=httpx.MockTransport(handler))
    with pytest.raises(PaymentGatewayError, match="Failed to create order"):
        asyncio.run(gateway.create_order(2000, "INR", "r"))


def test_gateway_response_without_order_id_is_a_gateway_error():
    def handler(request):
        return httpx.Response(200, json={"amount": 2000, "currency": "INR"})

    gateway = RazorpayGateway("k", "s", transport=httpx.MockTransport(handler))
    with pytest.raises(PaymentGatewayError, match="Failed to create order"):
        asyncio.run(gateway.create_order(2000, "INR", "r"))


# -------------------- create-order / verify-payment endpoints --------------------

def create_order(client, user_id, plan="pro"):
    return client.post("/api/create-order", json={"plan": plan, "userId": user_id})


def test_create_order_records_local_order(client, signup, gateway, db_session):
    user, _ = signup()
    r = create_order(client, user["id"])
    assert r.status_code == 200, r.text
    body = r.json()
    assert body == {"orderId": "order_test_1", "amount": 2000, "currency": "INR", "keyId": "rzp_test_key"}

    sent = gateway.orders[0]
    assert sent["receipt"].startswith(f"order_{user['id']}_")
    assert sent["notes"]["credits"] == 200 and sent["notes"]["email"] == user["email"]

    order = crud.get_payment_order(db_session, "order_test_1")
    assert order.status == models.ORDER_CREATED
    assert order.credits == 200 and order.user_id == user["id"]


def test_create_order_invalid_plan(client, signup, gateway):
    user, _ = signup()
    r = create_order(client, user["id"], plan="enterprise")
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid plan selected"
    assert gateway.orders == []


def test_create_order_unknown_user(client, gateway):
    r = create_order(client, 9999)
    assert r.status_code == 404
    assert gateway.orders == []


def verify(client, order_id, payment_id, user_id=None, signature=None):
    body = {
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature or payment_signature(order_id, payment_id, TEST_KEY_SECRET),
    }
    if user_id is not None:
        body["userId"] = user_id
    return client.post("/api/verify-payment", json=body)


def test_verify_payment_credits_account_once(client, signup, db_session):
    user, headers = signup()
    create_order(client, user["id"], plan="startup")

    r = verify(client, "order_test_1", "pay_1", user["id"])
    assert r.status_code == 200, r.text
    assert r.json()["credits"] == 503
    assert r.json()["message"] == "Successfully added 500 credits to your account"

    # replaying the same checkout response does not credit twice
    r = verify(client, "order_test_1", "pay_1", user["id"])
    assert r.status_code == 200
    assert r.json()["credits"] == 503

    order = crud.get_payment_order(db_session, "order_test_1")
    assert order.status == models.ORDER_COMPLETED and order.payment_id == "pay_1"
    purchases = [t for t in crud.list_transactions(db_session, user["id"]) if t.type == models.TX_PURCHASE]
    assert len(purchases) == 1 and purchases[0].amount == 500


def test_verify_payment_bad_signature(client, signup):
    user, headers = signup()
    create_order(client, user["id"])
    forged = payment_signature("order_test_1", "pay_1", "not-the-secret")
    r = verify(client, "order_test_1", "pay_1", user["id"], signature=forged)
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid payment signature"
    assert client.get("/api/profile", headers=headers).json()["user"]["credits"] == 3


def test_verify_payment_unknown_order(client):
    r = verify(client, "order_missing", "pay_1")
    assert r.status_code == 404


def test_verify_payment_for_someone_elses_order(client, signup):
    owner, _ = signup("owner@example.com")
    other, _ = signup("other@example.com")
    create_order(client, owner["id"])
    r = verify(client, "order_test_1", "pay_1", other["id"])
    assert r.status_code == 403


def test_create_order_with_garbled_gateway_response(client, signup, db_session):
    user, _ = signup()
    broken = RazorpayGateway(
        "rzp_key", "rzp_secret", "https://api.example.test/v1",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>oops")),
    )
    app.dependency_overrides[get_payment_gateway] = lambda: broken

    r = create_order(client, user["id"])
    assert r.status_code == 500
    assert r.json() == {"success": False, "error": "Failed to create order"}
    assert db_session.query(models.PaymentOrder).count() == 0
