from typing import Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel
from pymongo.database import Database

from auth import get_current_user
from database import create_document, get_db, serialize_doc, to_object_id, utcnow

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])


class CartItemIn(BaseModel):
    product_id: Optional[str] = None
    quantity: Optional[int] = None


class CartRemoveIn(BaseModel):
    product_id: Optional[str] = None


class QuantityIn(BaseModel):
    quantity: int


def find_product(db: Database, product_id: str) -> Optional[dict]:
    oid = to_object_id(product_id)
    return db["product"].find_one({"_id": oid}) if oid else None


def cart_key(product_id: str) -> str:
    """Canonical product id for cart lines: ObjectId hex, lower case."""
    oid = to_object_id(product_id)
    return str(oid) if oid else product_id


def cart_lines(db: Database, user_id: str):
    return [serialize_doc(it) for it in db["cartitem"].find({"user_id": user_id})]


def clear_cart(db: Database, user_id: str) -> int:
    return db["cartitem"].delete_many({"user_id": user_id}).deleted_count


@router.get("")
def get_cart(user=Depends(get_current_user), db: Database = Depends(get_db)):
    items = list(db["cartitem"].find({"user_id": str(user["_id"])}))
    quantities = {it["product_id"]: it["quantity"] for it in items}
    ids = [oid for oid in (to_object_id(pid) for pid in quantities) if oid]
    products = db["product"].find({"_id": {"$in": ids}})
    result = []
    for product in products:
        doc = serialize_doc(product)
        doc["quantity"] = quantities[doc["id"]]
        result.append(doc)
    return result


@router.post("")
def add_to_cart(payload: CartItemIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(user["_id"])
    if not payload.product_id:
        raise HTTPException(status_code=400, detail="Product ID is required")

    product = find_product(db, payload.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    product_id = str(product["_id"])
    existing = db["cartitem"].find_one({"user_id": user_id, "product_id": product_id})
    if existing:
        # Re-adding a line always bumps it by one; the requested quantity is ignored.
        db["cartitem"].update_one(
            {"_id": existing["_id"]},
            {"$inc": {"quantity": 1}, "$set": {"updated_at": utcnow()}},
        )
    else:
        qty = payload.quantity or 1
        if qty > product.get("quantity", 0):
            raise HTTPException(status_code=400, detail=f"Only {product.get('quantity', 0)} in stock.")
        create_document(db, "cartitem", {"user_id": user_id, "product_id": product_id, "quantity": qty})

    return cart_lines(db, user_id)


@router.delete("")
def remove_all_from_cart(payload: Optional[CartRemoveIn] = Body(None), user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(user["_id"])
    if payload is None or not payload.product_id:
        clear_cart(db, user_id)
    else:
        db["cartitem"].delete_many({"user_id": user_id, "product_id": cart_key(payload.product_id)})
    return cart_lines(db, user_id)


@router.put("/{product_id}")
def update_quantity(product_id: str, payload: QuantityIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(user["_id"])
    product_id = cart_key(product_id)
    if payload.quantity == 0:
        db["cartitem"].delete_many({"user_id": user_id, "product_id": product_id})
        return cart_lines(db, user_id)

    product = find_product(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    if payload.quantity > product.get("quantity", 0):
        raise HTTPException(status_code=400, detail=f"Only {product.get('quantity', 0)} in stock.")

    res = db["cartitem"].update_one(
        {"user_id": user_id, "product_id": product_id},
        {"$set": {"quantity": payload.quantity, "updated_at": utcnow()}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Item not found in cart")
    return cart_lines(db, user_id)


@router.post("/billing-address")
def add_billing_address(address: dict = Body(...), user=Depends(get_current_user), db: Database = Depends(get_db)):
    if not address:
        raise HTTPException(status_code=400, detail="Invalid form. Please enter all the necessary form fields.")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"address": address, "updated_at": utcnow()}})
    logger.info("billing_address_updated", user_id=str(user["_id"]))
    return {"success": True, "message": "Billing address updated successfully"}
