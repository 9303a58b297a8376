import hashlib
import hmac

import pytest

from errors import NotFound, SignatureInvalid
from payments import create_gateway_order, sign, to_minor_units, verify_signature
from conftest import GATEWAY_SECRET, make_address


def _expected(order_id, payment_id, secret):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def test_valid_signature_is_accepted():
    signature = _expected("O1", "P1", "S")
    assert sign("O1", "P1", "S") == signature
    assert verify_signature("O1", "P1", signature, "S") is True


def test_any_single_character_change_is_rejected():
    signature = _expected("O1", "P1", "S")
    for i, c in enumerate(signature):
        tampered = signature[:i] + ("0" if c != "0" else "1") + signature[i + 1:]
        with pytest.raises(SignatureInvalid):
            verify_signature("O1", "P1", tampered, "S")


@pytest.mark.parametrize("order_id,payment_id,secret", [
    ("O2", "P1", "S"),
    ("O1", "P2", "S"),
    ("O1", "P1", "T"),
])
def test_signature_is_bound_to_order_payment_and_secret(order_id, payment_id, secret):
    signature = _expected("O1", "P1", "S")
    with pytest.raises(SignatureInvalid):
        verify_signature(order_id, payment_id, signature, secret)


@pytest.mark.parametrize("signature", ["", None, "not-hex"])
def test_missing_or_garbage_signature(signature):
    with pytest.raises(SignatureInvalid):
        verify_signature("O1", "P1", signature, "S")


@pytest.mark.parametrize("amount,paise", [(1, 100), (499.99, 49999), (0.1 + 0.2, 30), (1299.5, 129950)])
def test_amount_in_minor_units(amount, paise):
    assert to_minor_units(amount) == paise


def test_gateway_order_uses_paise(db, client, user, address, gateway):
    data = create_gateway_order(db, gateway, user["id"], 499.99, address["id"])

    assert data == {"orderId": "order_1", "amount": 49999, "currency": "INR", "key": "rzp_test_key"}
    assert gateway.orders[0]["receipt"].startswith("order_")


def test_gateway_order_needs_own_address(db, client, user, other_user, gateway):
    foreign = make_address(client, other_user)
    with pytest.raises(NotFound):
        create_gateway_order(db, gateway, user["id"], 100, foreign["id"])
    assert gateway.orders == []


# ----------------------- HTTP -----------------------
def test_public_key_endpoint(client):
    res = client.get("/api/payment/key")
    assert res.json() == {"success": True, "key": "rzp_test_key"}


def test_create_order_endpoint(client, user, address):
    res = client.post("/api/payment/create-order", json={"amount": 150, "address_id": address["id"]},
                      headers=user["headers"])
    assert res.status_code == 200
    assert res.json()["data"]["amount"] == 15000


def test_create_order_rejects_non_positive_amount(client, user, address):
    res = client.post("/api/payment/create-order", json={"amount": 0, "address_id": address["id"]},
                      headers=user["headers"])
    assert res.status_code == 400


def test_verify_endpoint(client, user):
    good = {
        "razorpay_order_id": "O1",
        "razorpay_payment_id": "P1",
        "razorpay_signature": _expected("O1", "P1", GATEWAY_SECRET),
    }
    res = client.post("/api/payment/verify", json=good, headers=user["headers"])
    assert res.status_code == 200
    assert res.json()["data"]["razorpay_payment_id"] == "P1"

    bad = {**good, "razorpay_signature": "0" * 64}
    res = client.post("/api/payment/verify", json=bad, headers=user["headers"])
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid payment signature"


def test_payment_routes_need_configured_gateway(client, user, address):
    client.app.state.payment_gateway = None

    assert client.get("/api/payment/key").json() == {"success": True, "key": None}
    res = client.post("/api/payment/create-order", json={"amount": 10, "address_id": address["id"]},
                      headers=user["headers"])
    assert res.status_code == 503
