import logging

from fastapi import APIRouter, Depends
from pymongo import DESCENDING

from database import create_document, get_db, now, oid, run_in_transaction, serialize_doc, session_kwargs
from errors import NotFound, ValidationError
from schemas import Address, AddressCreateBody, AddressUpdateBody, ProfileUpdateBody
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["user"])


def public_user(user: dict) -> dict:
    return {
        "id": user["id"],
        "name": user["name"],
        "email": user["email"],
        "isEmailVerified": bool(user.get("is_email_verified", False)),
        "createdAt": user.get("created_at"),
    }


def update_profile(database, user_id: str, name: str) -> dict:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required")
    result = database["user"].update_one({"_id": oid(user_id)}, {"$set": {"name": name, "updated_at": now()}})
    if result.matched_count == 0:
        raise NotFound("User not found")
    return public_user(serialize_doc(database["user"].find_one({"_id": oid(user_id)})))


def list_addresses(database, user_id: str) -> list:
    cursor = database["address"].find({"user_id": user_id}).sort([("is_default", DESCENDING), ("created_at", DESCENDING)])
    return [serialize_doc(a) for a in cursor]


def get_address(database, user_id: str, address_id: str) -> dict:
    address = database["address"].find_one({"_id": oid(address_id), "user_id": user_id})
    if not address:
        raise NotFound("Address not found")
    return serialize_doc(address)


def _clear_defaults(database, user_id: str, keep=None, session=None):
    filt = {"user_id": user_id, "is_default": True}
    if keep is not None:
        filt["_id"] = {"$ne": keep}
    database["address"].update_many(filt, {"$set": {"is_default": False}}, **session_kwargs(session))


def add_address(database, user_id: str, body: AddressCreateBody) -> dict:
    address = Address(user_id=user_id, **body.model_dump())

    def insert(session):
        if address.is_default:
            _clear_defaults(database, user_id, session=session)
        return create_document("address", address, database, session)

    address_id = run_in_transaction(database, insert)
    return get_address(database, user_id, address_id)


def update_address(database, user_id: str, address_id: str, body: AddressUpdateBody) -> dict:
    address_oid = oid(address_id)
    update = body.model_dump(exclude_none=True)

    def apply(session):
        kw = session_kwargs(session)
        if not database["address"].find_one({"_id": address_oid, "user_id": user_id}, **kw):
            raise NotFound("Address not found")
        if update.get("is_default"):
            _clear_defaults(database, user_id, keep=address_oid, session=session)
        database["address"].update_one(
            {"_id": address_oid, "user_id": user_id},
            {"$set": {**update, "updated_at": now()}},
            **kw,
        )

    run_in_transaction(database, apply)
    return get_address(database, user_id, address_id)


def delete_address(database, user_id: str, address_id: str):
    result = database["address"].delete_one({"_id": oid(address_id), "user_id": user_id})
    if result.deleted_count == 0:
        raise NotFound("Address not found")


# ----------------------- Routes -----------------------
@router.get("/profile")
def get_profile_route(user=Depends(get_current_user)):
    return {"success": True, "data": public_user(user)}


@router.put("/profile")
def update_profile_route(body: ProfileUpdateBody, user=Depends(get_current_user), database=Depends(get_db)):
    data = update_profile(database, user["id"], body.name)
    return {"success": True, "message": "Profile updated successfully", "data": data}


@router.get("/addresses")
def list_addresses_route(user=Depends(get_current_user), database=Depends(get_db)):
    return {"success": True, "data": list_addresses(database, user["id"])}


@router.get("/addresses/{address_id}")
def get_address_route(address_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    return {"success": True, "data": get_address(database, user["id"], address_id)}


@router.post("/addresses", status_code=201)
def add_address_route(body: AddressCreateBody, user=Depends(get_current_user), database=Depends(get_db)):
    data = add_address(database, user["id"], body)
    return {"success": True, "message": "Address added successfully", "data": data}


@router.put("/addresses/{address_id}")
def update_address_route(
    address_id: str, body: AddressUpdateBody, user=Depends(get_current_user), database=Depends(get_db)
):
    data = update_address(database, user["id"], address_id, body)
    return {"success": True, "message": "Address updated successfully", "data": data}


@router.delete("/addresses/{address_id}")
def delete_address_route(address_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    delete_address(database, user["id"], address_id)
    return {"success": True, "message": "Address deleted successfully"}
