import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pymongo import ASCENDING, DESCENDING

from database import create_document, get_db, oid, serialize_doc
from errors import NotFound, ValidationError
from schemas import Category, Product, SearchHistory
from security import get_current_user, get_optional_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])


def _category_names(database) -> dict:
    return {c["key"]: c.get("name") for c in database["category"].find({}, {"key": 1, "name": 1})}


def _with_category(products, database) -> list:
    names = _category_names(database)
    out = []
    for p in products:
        doc = serialize_doc(p)
        doc["category_name"] = names.get(doc.get("category_key"))
        out.append(doc)
    return out


def list_products(database) -> list:
    return _with_category(database["product"].find().sort("created_at", DESCENDING), database)


def get_product(database, product_id: str) -> dict:
    product = database["product"].find_one({"_id": oid(product_id)})
    if not product:
        raise NotFound("Product not found")
    return _with_category([product], database)[0]


def products_by_category(database, category_key: str) -> list:
    products = database["product"].find({"category_key": category_key}).sort("name", ASCENDING)
    return _with_category(products, database)


def search_products(database, q: str, user_id: Optional[str] = None) -> list:
    term = (q or "").strip()
    if not term:
        raise ValidationError("Search query is required")
    pattern = {"$regex": re.escape(term), "$options": "i"}
    products = database["product"].find(
        {"$or": [{"name": pattern}, {"type": pattern}, {"description": pattern}]}
    ).sort("name", ASCENDING)
    results = _with_category(products, database)

    if user_id:
        try:
            create_document("search_history", SearchHistory(user_id=user_id, search_term=term), database)
        except Exception as e:
            logger.warning("Error saving search history for user %s: %s", user_id, e)
    return results


def list_categories(database) -> list:
    return [serialize_doc(c) for c in database["category"].find().sort("name", ASCENDING)]


def search_history(database, user_id: str, limit: int = 20) -> list:
    """Distinct search terms of a user, most recent first."""
    terms = []
    seen = set()
    for entry in database["search_history"].find({"user_id": user_id}).sort("created_at", DESCENDING):
        term = entry["search_term"]
        if term in seen:
            continue
        seen.add(term)
        terms.append(term)
        if len(terms) >= limit:
            break
    return terms


# ----------------------- Routes -----------------------
@router.get("")
def list_products_route(database=Depends(get_db)):
    products = list_products(database)
    return {"success": True, "count": len(products), "data": products}


@router.get("/categories/all")
def list_categories_route(database=Depends(get_db)):
    categories = list_categories(database)
    return {"success": True, "count": len(categories), "data": categories}


@router.get("/search")
def search_route(q: str = "", user=Depends(get_optional_user), database=Depends(get_db)):
    results = search_products(database, q, user["id"] if user else None)
    return {"success": True, "query": q, "count": len(results), "data": results}


@router.get("/search/history")
def search_history_route(
    limit: int = Query(20, ge=1, le=100),
    user=Depends(get_current_user),
    database=Depends(get_db),
):
    terms = search_history(database, user["id"], limit)
    return {"success": True, "count": len(terms), "data": terms}


@router.get("/category/{category_key}")
def category_route(category_key: str, database=Depends(get_db)):
    products = products_by_category(database, category_key)
    return {"success": True, "category": category_key, "count": len(products), "data": products}


@router.get("/{product_id}")
def get_product_route(product_id: str, database=Depends(get_db)):
    return {"success": True, "data": get_product(database, product_id)}


# ----------------------- Seed Demo Data -----------------------
DEMO_CATEGORIES = [
    {"key": "mobiles", "name": "Mobiles", "description": "Smartphones and feature phones"},
    {"key": "laptops", "name": "Laptops", "description": "Notebooks and ultrabooks"},
    {"key": "audio", "name": "Audio", "description": "Headphones, earbuds and speakers"},
    {"key": "accessories", "name": "Accessories", "description": "Chargers, cables and keyboards"},
]

DEMO_PRODUCTS = [
    {
        "name": "Pixel 7A",
        "type": "Smartphone",
        "description": "Powerful camera and smooth Android experience.",
        "price": 34999,
        "category_key": "mobiles",
        "stock_quantity": 25,
        "image_url": "https://images.unsplash.com/photo-1511707171634-5f897ff02aa9",
    },
    {
        "name": "iPhone 14",
        "type": "Smartphone",
        "description": "A15 Bionic with stunning display.",
        "price": 69999,
        "category_key": "mobiles",
        "stock_quantity": 15,
        "image_url": "https://images.unsplash.com/photo-1603899123335-4a9d94dfbd89",
    },
    {
        "name": "ThinkPad X1",
        "type": "Laptop",
        "description": "Business-class laptop with legendary keyboard.",
        "price": 119999,
        "category_key": "laptops",
        "stock_quantity": 10,
        "image_url": "https://images.unsplash.com/photo-1517336714731-489689fd1ca8",
    },
    {
        "name": "MacBook Air M2",
        "type": "Laptop",
        "description": "Ultra portable with M2 performance.",
        "price": 124999,
        "category_key": "laptops",
        "stock_quantity": 12,
        "image_url": "https://images.unsplash.com/photo-1517336714731-489689fd1ca8",
    },
    {
        "name": "Noise Cancelling Headphones",
        "type": "Headphones",
        "description": "Immerse in music with ANC.",
        "price": 19999,
        "category_key": "audio",
        "stock_quantity": 40,
        "image_url": "https://images.unsplash.com/photo-1518443248587-30bdc8f94f04",
    },
    {
        "name": "Mechanical Keyboard",
        "type": "Keyboard",
        "description": "Hot-swappable RGB keyboard.",
        "price": 7999,
        "category_key": "accessories",
        "stock_quantity": 30,
        "image_url": "https://images.unsplash.com/photo-1516382799247-87df95d790b5",
    },
    {
        "name": "65W USB-C Charger",
        "type": "Charger",
        "description": "GaN fast charger for phones and laptops.",
        "price": 2499,
        "category_key": "accessories",
        "stock_quantity": 0,
        "availability": "Out of Stock",
    },
]


def seed_catalog(database) -> bool:
    if database["product"].count_documents({}) > 0:
        return False
    for c in DEMO_CATEGORIES:
        if not database["category"].find_one({"key": c["key"]}):
            create_document("category", Category(**c), database)
    for p in DEMO_PRODUCTS:
        create_document("product", Product(**p), database)
    logger.info("Seeded %d categories and %d products", len(DEMO_CATEGORIES), len(DEMO_PRODUCTS))
    return True
