import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import ValidationError as PydanticValidationError
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import doc_to_public, to_object_id, utcnow
from errors import (
    AddressNotFoundError,
    AuthenticationError,
    CustomerNotFoundError,
    DuplicateEntryError,
    ForbiddenError,
    ProductNotFoundError,
    ValidationError,
)
from schemas import Address, Customer as CustomerSchema

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("id", "name", "email", "phone_number", "avatar_url", "external_id", "roles")


def is_admin(customer: Dict[str, Any], admin_role: str) -> bool:
    return admin_role in (customer.get("roles") or [])


# ----------------------------------------------------------------------------
# Identity binding
# ----------------------------------------------------------------------------

def get_or_create_customer(db: Database, claims: Dict[str, Any], roles: List[str]) -> Dict[str, Any]:
    """Return the customer bound to the token subject, creating it on first access."""
    external_id = claims["sub"]
    customer = db["customer"].find_one({"external_id": external_id})
    if customer:
        if sorted(customer.get("roles") or []) != sorted(roles):
            db["customer"].update_one({"_id": customer["_id"]}, {"$set": {"roles": roles, "updated_at": utcnow()}})
            customer["roles"] = roles
        return customer

    email = claims.get("email")
    if not email:
        raise AuthenticationError("Token has no email claim")

    try:
        record = CustomerSchema(
            email=email,
            name=claims.get("name") or str(email).split("@")[0],
            avatar_url=claims.get("picture") or "",
            phone_number=claims.get("phone_number") or "",
            external_id=external_id,
            roles=roles,
        )
    except PydanticValidationError:
        raise AuthenticationError("Token email claim is invalid")
    now = utcnow()
    try:
        db["customer"].insert_one({**record.model_dump(), "created_at": now, "updated_at": now})
        logger.info("Created customer for identity %s", external_id)
    except DuplicateKeyError:
        # concurrent first access, or the email belongs to another identity
        pass

    customer = db["customer"].find_one({"external_id": external_id})
    if not customer:
        raise AuthenticationError("Email already bound to another account")
    return customer


# ----------------------------------------------------------------------------
# Profile
# ----------------------------------------------------------------------------

def public_profile(customer: Dict[str, Any]) -> Dict[str, Any]:
    public = doc_to_public(customer)
    return {k: public.get(k) for k in PROFILE_FIELDS}


def update_profile(db: Database, customer: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    update = {k: v for k, v in changes.items() if v is not None}
    if "name" in update and not update["name"]:
        del update["name"]
    update["updated_at"] = utcnow()
    db["customer"].update_one({"_id": customer["_id"]}, {"$set": update})
    return public_profile(db["customer"].find_one({"_id": customer["_id"]}))


# ----------------------------------------------------------------------------
# Addresses
# ----------------------------------------------------------------------------

def _reload_addresses(db: Database, customer: Dict[str, Any]) -> List[Dict[str, Any]]:
    fresh = db["customer"].find_one({"_id": customer["_id"]}, {"addresses": 1}) or {}
    customer["addresses"] = fresh.get("addresses", [])
    return customer["addresses"]


def _clear_default_address(db: Database, customer_id) -> None:
    # the positional operator touches one element per round
    while db["customer"].update_one(
        {"_id": customer_id, "addresses.is_default": True},
        {"$set": {"addresses.$.is_default": False}},
    ).modified_count:
        pass


def list_addresses(customer: Dict[str, Any]) -> List[Dict[str, Any]]:
    return customer.get("addresses", [])


def add_address(db: Database, customer: Dict[str, Any], data: Dict[str, Any]) -> List[Dict[str, Any]]:
    is_default = bool(data.get("is_default"))
    address = Address(**{**data, "id": str(ObjectId()), "is_default": is_default})
    if is_default:
        _clear_default_address(db, customer["_id"])

    db["customer"].update_one(
        {"_id": customer["_id"]},
        {"$push": {"addresses": address.model_dump()}, "$set": {"updated_at": utcnow()}},
    )
    return _reload_addresses(db, customer)


def update_address(db: Database, customer: Dict[str, Any], address_id: str, changes: Dict[str, Any]) -> List[Dict[str, Any]]:
    selector = {"_id": customer["_id"], "addresses.id": address_id}
    if not db["customer"].find_one(selector, {"_id": 1}):
        raise AddressNotFoundError(address_id)

    update: Dict[str, Any] = {}
    for key, value in changes.items():
        # empty strings keep the stored value
        if key == "is_default":
            if value is not None:
                update["addresses.$.is_default"] = bool(value)
        elif value:
            update[f"addresses.$.{key}"] = value

    if update.get("addresses.$.is_default"):
        _clear_default_address(db, customer["_id"])
    if update:
        result = db["customer"].update_one(selector, {"$set": update})
        if not result.matched_count:
            raise AddressNotFoundError(address_id)
    db["customer"].update_one({"_id": customer["_id"]}, {"$set": {"updated_at": utcnow()}})
    return _reload_addresses(db, customer)


def delete_address(db: Database, customer: Dict[str, Any], address_id: str) -> List[Dict[str, Any]]:
    result = db["customer"].update_one(
        {"_id": customer["_id"]},
        {"$pull": {"addresses": {"id": address_id}}},
    )
    if not result.modified_count:
        raise AddressNotFoundError(address_id)
    db["customer"].update_one({"_id": customer["_id"]}, {"$set": {"updated_at": utcnow()}})
    return _reload_addresses(db, customer)


# ----------------------------------------------------------------------------
# Wishlist
# ----------------------------------------------------------------------------

def _resolve_products(db: Database, product_ids: List[str], projection: Optional[dict] = None) -> List[Dict[str, Any]]:
    oids = [oid for oid in (to_object_id(pid) for pid in product_ids) if oid is not None]
    if not oids:
        return []
    found = {str(p["_id"]): doc_to_public(p) for p in db["product"].find({"_id": {"$in": oids}}, projection)}
    return [found[pid] for pid in product_ids if pid in found]


def get_wishlist(db: Database, customer: Dict[str, Any]) -> List[Dict[str, Any]]:
    return _resolve_products(db, customer.get("wishlist", []))


def add_to_wishlist(db: Database, customer: Dict[str, Any], product_id: str) -> List[str]:
    wishlist: List[str] = list(customer.get("wishlist", []))
    if product_id in wishlist:
        raise DuplicateEntryError("Product already in wishlist")
    oid = to_object_id(product_id)
    if oid is None or not db["product"].find_one({"_id": oid}):
        raise ProductNotFoundError(product_id)

    wishlist.append(product_id)
    db["customer"].update_one({"_id": customer["_id"]}, {"$set": {"wishlist": wishlist, "updated_at": utcnow()}})
    return wishlist


def remove_from_wishlist(db: Database, customer: Dict[str, Any], product_id: str) -> List[str]:
    wishlist = [pid for pid in customer.get("wishlist", []) if pid != product_id]
    db["customer"].update_one({"_id": customer["_id"]}, {"$set": {"wishlist": wishlist, "updated_at": utcnow()}})
    return wishlist


# ----------------------------------------------------------------------------
# Admin
# ----------------------------------------------------------------------------

def list_customers(db: Database, admin_role: str) -> List[Dict[str, Any]]:
    cursor = db["customer"].find({"roles": {"$ne": admin_role}}, sort=[("created_at", DESCENDING)])
    result = []
    for c in cursor:
        public = doc_to_public(c)
        public["wishlist"] = _resolve_products(db, c.get("wishlist", []), {"name": 1, "price": 1, "images": 1})
        result.append(public)
    return result


def delete_customer(db: Database, customer_id: str, admin_role: str) -> None:
    oid = to_object_id(customer_id)
    customer = db["customer"].find_one({"_id": oid}) if oid is not None else None
    if not customer:
        raise CustomerNotFoundError(customer_id)
    if is_admin(customer, admin_role):
        raise ForbiddenError("Cannot delete admin user")
    db["customer"].delete_one({"_id": oid})
    logger.info("Customer %s deleted", customer_id)


def bulk_delete_customers(db: Database, customer_ids: List[Any], admin_role: str) -> int:
    """Delete many customers, silently skipping admins."""
    if not customer_ids:
        raise ValidationError("Customer IDs are required")
    oids = []
    for customer_id in customer_ids:
        oid = to_object_id(customer_id)
        if oid is None:
            raise ValidationError(f"Invalid customer id: {customer_id}")
        oids.append(oid)

    res = db["customer"].delete_many({"_id": {"$in": oids}, "roles": {"$ne": admin_role}})
    logger.info("Bulk deleted %d of %d customers", res.deleted_count, len(oids))
    return res.deleted_count
