"""
Order placement and cancellation

Both flows run inside one database transaction. Stock is taken with a
conditional update (only when enough is left) so two orders racing for the
last unit cannot both succeed; the loser of a write conflict is re-run by
run_in_transaction and then sees the stock already gone. When transactions
are turned off the writes already made are reverted before the error is
raised.
"""
import logging
from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pymongo import DESCENDING

from cart import cart_lines, clear_cart, compute_totals
from database import create_document, get_db, now, oid, run_in_transaction, serialize_doc, session_kwargs
from errors import InsufficientStock, InvalidState, NotFound, ValidationError
from notifications import NotificationSender, get_notifier, notify_quietly
from payments import verify_signature
from schemas import FINAL_ORDER_STATUSES, PAYMENT_METHODS, Order, OrderCreateBody, OrderItem
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

ADDRESS_FIELDS = ("full_name", "street", "city", "state", "pincode", "phone")


def payment_status_for(payment_method: str, razorpay_payment_id: Optional[str]) -> str:
    if payment_method == "Razorpay" and razorpay_payment_id:
        return "Completed"
    return "Pending"


def take_stock(database, product_id: str, quantity: int, name: str = "", session=None):
    """Decrement stock only if enough is left; raises InsufficientStock otherwise."""
    kw = session_kwargs(session)
    result = database["product"].update_one(
        {"_id": oid(product_id), "stock_quantity": {"$gte": quantity}},
        {"$inc": {"stock_quantity": -quantity}, "$set": {"updated_at": now()}},
        **kw,
    )
    if result.matched_count == 0:
        current = database["product"].find_one({"_id": oid(product_id)}, **kw) or {}
        raise InsufficientStock(product_id, current.get("name", name), quantity, int(current.get("stock_quantity", 0)))


def restore_stock(database, product_id: str, quantity: int, session=None):
    database["product"].update_one(
        {"_id": oid(product_id)},
        {"$inc": {"stock_quantity": quantity}, "$set": {"updated_at": now()}},
        **session_kwargs(session),
    )


def create_order(
    database,
    user_id: str,
    address_id: Optional[str],
    payment_method: Optional[str],
    razorpay_order_id: Optional[str] = None,
    razorpay_payment_id: Optional[str] = None,
    razorpay_signature: Optional[str] = None,
    notifier: Optional[NotificationSender] = None,
    signature_secret: Optional[str] = None,
    schedule: Optional[Callable] = None,
) -> dict:
    """Place an order from the user's cart.

    The confirmation email goes through ``schedule(func, *args)`` when given
    (``BackgroundTasks.add_task`` from the route), otherwise it is sent inline.
    """
    if not address_id or not payment_method:
        raise ValidationError("Address and payment method are required")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError("Invalid payment method")
    if payment_method == "Razorpay" and razorpay_payment_id and signature_secret:
        verify_signature(razorpay_order_id or "", razorpay_payment_id, razorpay_signature or "", signature_secret)
    address_oid = oid(address_id)

    def place(session):
        kw = session_kwargs(session)
        taken = []
        order_id = None
        try:
            user = database["user"].find_one({"_id": oid(user_id)}, {"name": 1, "email": 1}, **kw) or {}

            address = database["address"].find_one({"_id": address_oid, "user_id": user_id}, **kw)
            if not address:
                raise NotFound("Address not found")

            lines = cart_lines(database, user_id, session)
            if not lines:
                raise InvalidState("Cart is empty")

            for line in lines:
                if line["stock_quantity"] < line["quantity"]:
                    raise InsufficientStock(line["product_id"], line["name"], line["quantity"], line["stock_quantity"])

            totals = compute_totals(lines)

            for line in lines:
                take_stock(database, line["product_id"], line["quantity"], line["name"], session)
                taken.append(line)

            order = Order(
                user_id=user_id,
                address_id=address_id,
                items=[
                    OrderItem(
                        product_id=line["product_id"],
                        product_name=line["name"],
                        product_price=line["price"],
                        quantity=line["quantity"],
                        subtotal=line["subtotal"],
                    )
                    for line in lines
                ],
                subtotal=totals["subtotal"],
                delivery_charge=totals["delivery_charge"],
                total_amount=totals["total"],
                payment_method=payment_method,
                payment_status=payment_status_for(payment_method, razorpay_payment_id),
                razorpay_order_id=razorpay_order_id,
                razorpay_payment_id=razorpay_payment_id,
                razorpay_signature=razorpay_signature,
            )
            order_id = create_document("order", order, database, session)
            clear_cart(database, user_id, session)
        except Exception:
            if session is None:
                _undo_create(database, taken, order_id)
            raise
        return user, order, order_id

    user, order, order_id = run_in_transaction(database, place)

    logger.info("Order %s placed by user %s (%s, total %.2f)", order_id, user_id, payment_method, order.total_amount)

    summary = {
        "id": order_id,
        "total_amount": order.total_amount,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
    }
    if notifier is not None and user.get("email"):
        args = (notifier.send_order_confirmation, user["email"], user.get("name", ""), summary)
        if schedule is not None:
            schedule(notify_quietly, *args)
        else:
            notify_quietly(*args)

    return {
        "orderId": order_id,
        "totalAmount": order.total_amount,
        "paymentMethod": order.payment_method,
        "paymentStatus": order.payment_status,
        "orderStatus": order.order_status,
    }


def _undo_create(database, taken, order_id):
    for line in taken:
        restore_stock(database, line["product_id"], line["quantity"])
    if order_id:
        database["order"].delete_one({"_id": oid(order_id)})
    if taken or order_id:
        logger.warning("Reverted partial order (stock lines: %d, order: %s)", len(taken), order_id)


def cancel_order(database, user_id: str, order_id: str):
    order_oid = oid(order_id)

    def cancel(session):
        kw = session_kwargs(session)
        restored = []
        cancelled = False
        try:
            order = database["order"].find_one({"_id": order_oid, "user_id": user_id}, **kw)
            if not order:
                raise NotFound("Order not found")

            status = order.get("order_status")
            if status in FINAL_ORDER_STATUSES:
                raise InvalidState(f"Order cannot be cancelled as it is already {status}")

            # guarded on the status we read so a concurrent cancel cannot restore stock twice
            result = database["order"].update_one(
                {"_id": order_oid, "order_status": status},
                {"$set": {"order_status": "Cancelled", "updated_at": now()}},
                **kw,
            )
            if result.matched_count == 0:
                raise InvalidState("Order status changed, please try again")
            cancelled = True

            for item in order.get("items", []):
                restore_stock(database, item["product_id"], int(item["quantity"]), session)
                restored.append(item)
        except Exception:
            if session is None and cancelled:
                _undo_cancel(database, order_oid, status, restored)
            raise

    run_in_transaction(database, cancel)
    logger.info("Order %s cancelled by user %s", order_id, user_id)


def _undo_cancel(database, order_oid, status, restored):
    for item in restored:
        database["product"].update_one(
            {"_id": oid(item["product_id"])},
            {"$inc": {"stock_quantity": -int(item["quantity"])}},
        )
    database["order"].update_one({"_id": order_oid}, {"$set": {"order_status": status}})
    logger.warning("Reverted partial cancellation of order %s", order_oid)


def _addresses_by_id(database, orders) -> dict:
    ids = []
    for o in orders:
        try:
            ids.append(oid(o.get("address_id")))
        except ValidationError:
            continue
    return {str(a["_id"]): a for a in database["address"].find({"_id": {"$in": ids}})}


def _with_address(order: dict, address: Optional[dict]) -> dict:
    doc = serialize_doc(order)
    for field in ADDRESS_FIELDS:
        doc[field] = address.get(field) if address else None
    return doc


def list_orders(database, user_id: str) -> list:
    orders = list(database["order"].find({"user_id": user_id}).sort("created_at", DESCENDING))
    addresses = _addresses_by_id(database, orders)
    out = []
    for o in orders:
        doc = _with_address(o, addresses.get(o.get("address_id")))
        doc["item_count"] = len(o.get("items", []))
        out.append(doc)
    return out


def get_order(database, user_id: str, order_id: str) -> dict:
    order = database["order"].find_one({"_id": oid(order_id), "user_id": user_id})
    if not order:
        raise NotFound("Order not found")
    doc = _with_address(order, _addresses_by_id(database, [order]).get(order.get("address_id")))

    product_ids = []
    for item in order.get("items", []):
        try:
            product_ids.append(oid(item["product_id"]))
        except ValidationError:
            continue
    images = {
        str(p["_id"]): p.get("image_url")
        for p in database["product"].find({"_id": {"$in": product_ids}}, {"image_url": 1})
    }
    doc["items"] = [{**item, "image_url": images.get(item["product_id"])} for item in doc.get("items", [])]
    return doc


# ----------------------- Routes -----------------------
@router.post("", status_code=201)
def create_order_route(
    body: OrderCreateBody,
    request: Request,
    background_tasks: BackgroundTasks,
    user=Depends(get_current_user),
    database=Depends(get_db),
    notifier: NotificationSender = Depends(get_notifier),
):
    gateway = getattr(request.app.state, "payment_gateway", None)
    data = create_order(
        database,
        user["id"],
        body.address_id,
        body.payment_method,
        body.razorpay_order_id,
        body.razorpay_payment_id,
        body.razorpay_signature,
        notifier=notifier,
        signature_secret=gateway.key_secret if gateway else None,
        schedule=background_tasks.add_task,
    )
    return {"success": True, "message": "Order placed successfully", "data": data}


@router.get("")
def list_orders_route(user=Depends(get_current_user), database=Depends(get_db)):
    orders = list_orders(database, user["id"])
    return {"success": True, "count": len(orders), "data": orders}


@router.get("/{order_id}")
def get_order_route(order_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    return {"success": True, "data": get_order(database, user["id"], order_id)}


@router.put("/{order_id}/cancel")
def cancel_order_route(order_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    cancel_order(database, user["id"], order_id)
    return {"success": True, "message": "Order cancelled successfully"}
