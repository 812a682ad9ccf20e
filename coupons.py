import random
import string
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from pymongo.database import Database

from auth import get_current_user
from database import create_document, get_db, serialize_doc, utcnow
from schemas import Coupon

logger = structlog.get_logger(__name__)

GIFT_COUPON_PERCENTAGE = 10
GIFT_COUPON_LIFETIME = timedelta(days=30)

router = APIRouter(prefix="/api/coupons", tags=["coupons"])


class ValidateCouponIn(BaseModel):
    code: str


def find_active_coupon(db: Database, user_id: str, code: Optional[str] = None) -> Optional[dict]:
    """Active coupon of the user, optionally matching a code. Read only."""
    query = {"user_id": user_id, "is_active": True}
    if code is not None:
        query["code"] = code
    return db["coupon"].find_one(query)


def is_expired(coupon: dict, now: Optional[datetime] = None) -> bool:
    expiration = coupon["expiration_date"]
    if expiration.tzinfo is None:
        expiration = expiration.replace(tzinfo=timezone.utc)
    return expiration < (now or utcnow())


def expire_coupon(db: Database, coupon: dict) -> None:
    db["coupon"].update_one({"_id": coupon["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}})
    logger.info("coupon_expired", coupon_id=str(coupon["_id"]))


def deactivate_coupon(db: Database, user_id: str, code: str) -> int:
    res = db["coupon"].update_many(
        {"code": code, "user_id": user_id},
        {"$set": {"is_active": False, "updated_at": utcnow()}},
    )
    return res.modified_count


def generate_gift_code() -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "GIFT" + "".join(random.choices(alphabet, k=6))


def award_gift_coupon(db: Database, user_id: str) -> dict:
    """Replace every coupon the user holds with a fresh 10% gift coupon."""
    db["coupon"].delete_many({"user_id": user_id})
    coupon = Coupon(
        code=generate_gift_code(),
        discount_percentage=GIFT_COUPON_PERCENTAGE,
        expiration_date=utcnow() + GIFT_COUPON_LIFETIME,
        user_id=user_id,
    )
    coupon_id = create_document(db, "coupon", coupon)
    logger.info("gift_coupon_awarded", user_id=user_id, coupon_id=coupon_id)
    return {"id": coupon_id, **coupon.model_dump()}


@router.get("")
def get_coupon(user=Depends(get_current_user), db: Database = Depends(get_db)):
    coupon = find_active_coupon(db, str(user["_id"]))
    return serialize_doc(coupon) if coupon else None


@router.post("/validate")
def validate_coupon(payload: ValidateCouponIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    coupon = find_active_coupon(db, str(user["_id"]), payload.code)
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")

    if is_expired(coupon):
        expire_coupon(db, coupon)
        raise HTTPException(status_code=404, detail="Coupon expired")

    return {
        "message": "Coupon is valid",
        "code": coupon["code"],
        "discount_percentage": coupon["discount_percentage"],
    }
