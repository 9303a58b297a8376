import hashlib
import hmac
import logging
import time
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Request

import config
from database import get_db, oid
from errors import NotFound, ServiceUnavailable, SignatureInvalid
from schemas import PaymentOrderBody, PaymentVerifyBody
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["payment"])


class PaymentGateway:
    key_id: Optional[str] = None
    key_secret: Optional[str] = None

    def create_order(self, amount: int, currency: str, receipt: str) -> dict:
        raise NotImplementedError


class RazorpayGateway(PaymentGateway):
    """Razorpay Orders API over HTTP basic auth."""

    base_url = "https://api.razorpay.com/v1"

    def __init__(self, key_id: str, key_secret: str, timeout: float = 10.0, transport=None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.client = httpx.Client(
            base_url=self.base_url, auth=(key_id, key_secret), timeout=timeout, transport=transport
        )

    def create_order(self, amount, currency, receipt):
        try:
            response = self.client.post("/orders", json={
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "payment_capture": 1,
            })
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Razorpay order creation failed: %s", e)
            raise ServiceUnavailable("Payment gateway error, please try again")
        return response.json()


def build_payment_gateway() -> Optional[PaymentGateway]:
    if not config.RAZORPAY_KEY_ID or not config.RAZORPAY_KEY_SECRET:
        logger.warning("Razorpay credentials not configured. Payment features will not work.")
        return None
    logger.info("Razorpay configured successfully")
    return RazorpayGateway(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET)


def get_payment_gateway(request: Request) -> PaymentGateway:
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        raise ServiceUnavailable("Payment gateway not configured")
    return gateway


def to_minor_units(amount: float) -> int:
    # paise
    return int(round(amount * 100))


def create_gateway_order(database, gateway: PaymentGateway, user_id: str, amount: float, address_id: str) -> dict:
    address = database["address"].find_one({"_id": oid(address_id), "user_id": user_id})
    if not address:
        raise NotFound("Address not found")
    gateway_order = gateway.create_order(
        amount=to_minor_units(amount),
        currency=config.CURRENCY,
        receipt=f"order_{int(time.time() * 1000)}",
    )
    logger.info("Created gateway order %s for user %s", gateway_order.get("id"), user_id)
    return {
        "orderId": gateway_order["id"],
        "amount": gateway_order["amount"],
        "currency": gateway_order["currency"],
        "key": gateway.key_id,
    }


def sign(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """Check a checkout signature; raises SignatureInvalid on mismatch.

    Only proves the payment came from the gateway. Placing the order is left
    to the caller (POST /api/orders with the same razorpay_* fields).
    """
    expected = sign(order_id, payment_id, secret)
    if not hmac.compare_digest(expected, signature or ""):
        raise SignatureInvalid()
    return True


# ----------------------- Routes -----------------------
@router.get("/key")
def get_key(request: Request):
    gateway = getattr(request.app.state, "payment_gateway", None)
    return {"success": True, "key": gateway.key_id if gateway else None}


@router.post("/create-order")
def create_order_route(
    body: PaymentOrderBody,
    user=Depends(get_current_user),
    database=Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    data = create_gateway_order(database, gateway, user["id"], body.amount, body.address_id)
    return {"success": True, "message": "Razorpay order created successfully", "data": data}


@router.post("/verify")
def verify_payment_route(
    body: PaymentVerifyBody,
    user=Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    verify_signature(body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature, gateway.key_secret)
    logger.info("Payment %s verified for user %s", body.razorpay_payment_id, user["id"])
    return {
        "success": True,
        "message": "Payment verified successfully",
        "data": {
            "razorpay_order_id": body.razorpay_order_id,
            "razorpay_payment_id": body.razorpay_payment_id,
            "razorpay_signature": body.razorpay_signature,
        },
    }
