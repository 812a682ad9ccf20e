import math
from typing import Dict, Iterable, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from pymongo.database import Database

from auth import get_current_user, require_admin
from database import get_db, serialize_doc, to_object_id, utcnow
from schemas import ORDER_STATUSES, RETURN_STATUSES

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


class ReturnRequestIn(BaseModel):
    order_id: str
    reason: str
    description: Optional[str] = None


class StatusIn(BaseModel):
    status: Optional[str] = None


def _products_by_id(db: Database, orders: Iterable[dict]) -> Dict[str, dict]:
    ids = {to_object_id(it["product_id"]) for o in orders for it in o.get("items", [])}
    found = db["product"].find({"_id": {"$in": [oid for oid in ids if oid]}})
    return {str(p["_id"]): serialize_doc(p) for p in found}


def _users_by_id(db: Database, orders: Iterable[dict]) -> Dict[str, dict]:
    ids = {to_object_id(o["user_id"]) for o in orders}
    found = db["user"].find({"_id": {"$in": [oid for oid in ids if oid]}})
    return {str(u["_id"]): {"name": u.get("name"), "email": u.get("email")} for u in found}


def format_orders(db: Database, orders: List[dict], with_user: bool = False) -> List[dict]:
    """Serialize orders with a ``products`` array holding the populated product per line."""
    products = _products_by_id(db, orders)
    users = _users_by_id(db, orders) if with_user else {}
    result = []
    for order in orders:
        doc = serialize_doc(order)
        doc["products"] = [
            {"product": products.get(it["product_id"]), "quantity": it["quantity"], "price": it["price"]}
            for it in order.get("items", [])
        ]
        if with_user:
            doc["user"] = users.get(order["user_id"])
        result.append(doc)
    return result


def find_order_or_404(db: Database, order_id: str) -> dict:
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("/history")
def get_order_history(user=Depends(get_current_user), db: Database = Depends(get_db)):
    orders = list(db["order"].find({"user_id": str(user["_id"])}).sort("created_at", -1))
    if not orders:
        raise HTTPException(status_code=404, detail="No orders found for this user")
    return {"success": True, "orders": format_orders(db, orders)}


@router.post("/return")
def request_order_return(payload: ReturnRequestIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order = find_order_or_404(db, payload.order_id)
    if order["user_id"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="You are not authorized to return this order")

    db["order"].update_one({"_id": order["_id"]}, {"$set": {
        "return_reason": payload.reason,
        "return_description": payload.description or "",
        "return_requested_at": utcnow(),
        "return_status": "Requested",
        "is_return_requested": True,
        "updated_at": utcnow(),
    }})
    logger.info("return_requested", order_id=payload.order_id)
    return {"success": True, "message": "Return request submitted successfully"}


@router.get("/returns", dependencies=[Depends(require_admin)])
def get_order_return_history(db: Database = Depends(get_db)):
    orders = list(db["order"].find({"is_return_requested": True}).sort("return_requested_at", -1))
    formatted = format_orders(db, orders, with_user=True)
    for doc in formatted:
        doc["return_request"] = {
            "status": doc.get("return_status"),
            "reason": doc.get("return_reason"),
            "description": doc.get("return_description"),
            "return": doc.get("is_return_requested"),
        }
    return {"success": True, "orders": formatted}


@router.get("", dependencies=[Depends(require_admin)])
def show_all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    total = db["order"].count_documents({})
    orders = list(db["order"].find().sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return {
        "orders": format_orders(db, orders, with_user=True),
        "total_pages": math.ceil(total / limit),
    }


@router.put("/{order_id}/return-status", dependencies=[Depends(require_admin)])
def change_return_status(order_id: str, payload: StatusIn, db: Database = Depends(get_db)):
    if payload.status not in RETURN_STATUSES:
        raise HTTPException(status_code=400, detail="Please provide a valid order ID and status")
    order = find_order_or_404(db, order_id)
    db["order"].update_one({"_id": order["_id"]}, {"$set": {"return_status": payload.status, "updated_at": utcnow()}})
    return {"success": True, "message": "Return request status updated successfully"}


@router.put("/{order_id}/status", dependencies=[Depends(require_admin)])
def change_order_status(order_id: str, payload: StatusIn, db: Database = Depends(get_db)):
    if payload.status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail="Please provide a valid order ID and status")
    order = find_order_or_404(db, order_id)
    db["order"].update_one({"_id": order["_id"]}, {"$set": {"status": payload.status, "updated_at": utcnow()}})
    logger.info("order_status_changed", order_id=order_id, status=payload.status)
    return {"success": True, "message": "Order status updated successfully"}
