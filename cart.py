import logging

from fastapi import APIRouter, Depends
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

import config
from database import create_document, get_db, now, oid, serialize_doc, session_kwargs
from errors import InsufficientStock, NotFound
from schemas import CartAddBody, CartItem, CartUpdateBody
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])


def compute_totals(lines) -> dict:
    """Cart and order totals. Empty carts carry no delivery charge."""
    subtotal = round(sum(float(l["price"]) * int(l["quantity"]) for l in lines), 2)
    delivery_charge = round(float(config.DELIVERY_CHARGE), 2) if lines else 0.0
    return {
        "subtotal": subtotal,
        "delivery_charge": delivery_charge,
        "total": round(subtotal + delivery_charge, 2),
    }


def cart_lines(database, user_id: str, session=None) -> list:
    """Cart rows of a user joined with live product data, newest first.

    Rows whose product no longer exists are left out.
    """
    kw = session_kwargs(session)
    rows = list(database["cart"].find({"user_id": user_id}, **kw).sort("created_at", DESCENDING))
    if not rows:
        return []
    product_ids = [oid(r["product_id"]) for r in rows]
    products = {str(p["_id"]): p for p in database["product"].find({"_id": {"$in": product_ids}}, **kw)}
    lines = []
    for r in rows:
        p = products.get(r["product_id"])
        if not p:
            continue
        lines.append({
            "id": str(r["_id"]),
            "product_id": r["product_id"],
            "quantity": int(r["quantity"]),
            "created_at": r.get("created_at"),
            "name": p.get("name"),
            "price": float(p.get("price", 0)),
            "image_url": p.get("image_url"),
            "availability": p.get("availability", "In Stock"),
            "stock_quantity": int(p.get("stock_quantity", 0)),
            "subtotal": round(float(p.get("price", 0)) * int(r["quantity"]), 2),
        })
    return lines


def _check_stock(product: dict, quantity: int):
    available = int(product.get("stock_quantity", 0))
    if product.get("availability") == "Out of Stock" or available < quantity:
        raise InsufficientStock(str(product["_id"]), product.get("name", ""), quantity, available)


def get_cart(database, user_id: str) -> dict:
    lines = cart_lines(database, user_id)
    totals = compute_totals(lines)
    return {"items": [serialize_doc(l) for l in lines], **totals}


def add_to_cart(database, user_id: str, product_id: str, quantity: int) -> dict:
    product = database["product"].find_one({"_id": oid(product_id)})
    if not product:
        raise NotFound("Product not found")
    _check_stock(product, quantity)

    existing = database["cart"].find_one({"user_id": user_id, "product_id": product_id})
    if existing:
        new_quantity = int(existing["quantity"]) + quantity
        _check_stock(product, new_quantity)
        database["cart"].update_one(
            {"_id": existing["_id"]},
            {"$set": {"quantity": new_quantity, "updated_at": now()}},
        )
        return serialize_doc(database["cart"].find_one({"_id": existing["_id"]}))

    try:
        item_id = create_document("cart", CartItem(user_id=user_id, product_id=product_id, quantity=quantity), database)
    except DuplicateKeyError:
        # another request inserted the same product first
        return add_to_cart(database, user_id, product_id, quantity)
    return serialize_doc(database["cart"].find_one({"_id": oid(item_id)}))


def update_cart_item(database, user_id: str, item_id: str, quantity: int) -> dict:
    item = database["cart"].find_one({"_id": oid(item_id), "user_id": user_id})
    if not item:
        raise NotFound("Cart item not found")
    product = database["product"].find_one({"_id": oid(item["product_id"])})
    if not product:
        raise NotFound("Product not found")
    _check_stock(product, quantity)
    database["cart"].update_one(
        {"_id": item["_id"], "user_id": user_id},
        {"$set": {"quantity": quantity, "updated_at": now()}},
    )
    return serialize_doc(database["cart"].find_one({"_id": item["_id"]}))


def remove_from_cart(database, user_id: str, item_id: str):
    result = database["cart"].delete_one({"_id": oid(item_id), "user_id": user_id})
    if result.deleted_count == 0:
        raise NotFound("Cart item not found")


def clear_cart(database, user_id: str, session=None) -> int:
    return database["cart"].delete_many({"user_id": user_id}, **session_kwargs(session)).deleted_count


# ----------------------- Routes -----------------------
@router.get("")
def get_cart_route(user=Depends(get_current_user), database=Depends(get_db)):
    cart = get_cart(database, user["id"])
    return {"success": True, "count": len(cart["items"]), "data": cart}


@router.post("")
def add_to_cart_route(body: CartAddBody, user=Depends(get_current_user), database=Depends(get_db)):
    item = add_to_cart(database, user["id"], body.product_id, body.quantity)
    return {"success": True, "message": "Item added to cart successfully", "data": item}


@router.put("/{item_id}")
def update_cart_route(item_id: str, body: CartUpdateBody, user=Depends(get_current_user), database=Depends(get_db)):
    item = update_cart_item(database, user["id"], item_id, body.quantity)
    return {"success": True, "message": "Cart updated successfully", "data": item}


@router.delete("/{item_id}")
def remove_from_cart_route(item_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    remove_from_cart(database, user["id"], item_id)
    return {"success": True, "message": "Item removed from cart successfully"}


@router.delete("")
def clear_cart_route(user=Depends(get_current_user), database=Depends(get_db)):
    clear_cart(database, user["id"])
    return {"success": True, "message": "Cart cleared successfully"}
