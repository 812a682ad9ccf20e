"""
Checkout and order placement.

Three ways to pay: a Stripe Checkout Session confirmed by ``/checkout-success``,
a Razorpay order confirmed by a signed callback, and cash on delivery which
places the order straight away. Every path ends in ``place_order``, which
reserves stock with guarded decrements before the order document is written.
A confirmed payment is always recorded; stock it could not get is listed on
the order as a shortfall.

Amounts are computed in integer minor units (cents/paise): each unit price is
rounded half-up to cents, multiplied by its quantity and summed; a coupon
percentage is then taken off the aggregate.
"""
import json
import math
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Tuple

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import get_current_user
from cart import clear_cart
from config import Settings, get_settings
from coupons import award_gift_coupon, deactivate_coupon, find_active_coupon
from database import create_document, get_db, to_object_id
from notifications import OrderNotifier, get_notifier
from payments import RazorpayGateway, StripeGateway, get_razorpay, get_stripe
from schemas import Order, OrderItem

logger = structlog.get_logger(__name__)

GIFT_COUPON_THRESHOLD = 20000  # minor units

router = APIRouter(prefix="/api/payments", tags=["payments"])


class CheckoutProduct(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    price: Optional[float] = None
    sale_price: Optional[float] = None
    quantity: Optional[int] = None
    image: Optional[str] = None


class CheckoutIn(BaseModel):
    products: List[CheckoutProduct] = []
    coupon_code: Optional[str] = None


class CheckoutSuccessIn(BaseModel):
    session_id: str


class RazorpaySuccessIn(BaseModel):
    order_id: str
    payment_id: str
    signature: str


class InsufficientStock(Exception):
    def __init__(self, product_name: str):
        super().__init__(f"Insufficient stock for {product_name}")
        self.product_name = product_name


# Money

def to_cents(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_discount(total_cents: int, percentage) -> int:
    discount = (Decimal(total_cents) * Decimal(str(percentage)) / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return total_cents - int(discount)


def qualifies_for_gift(total_cents: int) -> bool:
    return total_cents >= GIFT_COUPON_THRESHOLD


def line_quantity(product: CheckoutProduct) -> int:
    return product.quantity if product.quantity is not None else 1


def resolve_unit_price(product: CheckoutProduct) -> Optional[float]:
    price = product.sale_price if product.sale_price is not None else product.price
    if price is None or not math.isfinite(price):
        return None
    return price


def find_invalid_line(products: Iterable[CheckoutProduct]) -> Optional[CheckoutProduct]:
    for product in products:
        unit_price = resolve_unit_price(product)
        if not unit_price or unit_price <= 0 or line_quantity(product) < 1:
            return product
    return None


def find_line_without_product(products: Iterable[CheckoutProduct]) -> Optional[CheckoutProduct]:
    for product in products:
        if to_object_id(product.id) is None:
            return product
    return None


def require_product_ids(products: Iterable[CheckoutProduct]) -> None:
    missing = find_line_without_product(products)
    if missing:
        raise HTTPException(status_code=400, detail=f"Invalid product id for {missing.name or 'item'}")


def ensure_https_url(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    if value.lower().startswith("http://"):
        return "https://" + value[len("http://"):]
    return value


def snapshot_products(products: Iterable[CheckoutProduct], repriced: bool) -> str:
    return json.dumps([
        {
            "id": p.id,
            "quantity": line_quantity(p),
            "price": resolve_unit_price(p) if repriced else (p.price or 0),
        }
        for p in products
    ])


def items_from_snapshot(raw: str) -> List[OrderItem]:
    return [
        OrderItem(product_id=p["id"], quantity=p["quantity"], price=p["price"])
        for p in json.loads(raw)
    ]


# Stock and order placement

def release_stock(db: Database, items: Iterable[OrderItem]) -> None:
    for item in items:
        oid = to_object_id(item.product_id)
        if oid:
            db["product"].update_one({"_id": oid}, {"$inc": {"quantity": item.quantity}})


def take_stock(db: Database, item: OrderItem) -> bool:
    """Decrement one line's stock, only where enough is left."""
    oid = to_object_id(item.product_id)
    if oid is None:
        return False
    res = db["product"].update_one(
        {"_id": oid, "quantity": {"$gte": item.quantity}},
        {"$inc": {"quantity": -item.quantity}},
    )
    return res.modified_count == 1


def reserve_stock(db: Database, items: List[OrderItem]) -> List[OrderItem]:
    """All or nothing: on the first short line every earlier decrement is
    put back and InsufficientStock is raised.
    """
    reserved = []
    for item in items:
        if not take_stock(db, item):
            release_stock(db, reserved)
            oid = to_object_id(item.product_id)
            product = db["product"].find_one({"_id": oid}) if oid else None
            raise InsufficientStock(product["name"] if product else item.product_id)
        reserved.append(item)
    return reserved


def reserve_available_stock(db: Database, items: List[OrderItem]) -> Tuple[List[OrderItem], List[str]]:
    reserved, short = [], []
    for item in items:
        if take_stock(db, item):
            reserved.append(item)
        else:
            short.append(item.product_id)
    return reserved, short


PROVIDER_REFERENCES = ("stripe_session_id", "razorpay_order_id")


def order_document(order: Order) -> dict:
    # unset references stay out of the sparse unique indexes
    doc = order.model_dump()
    for key in PROVIDER_REFERENCES:
        if doc.get(key) is None:
            doc.pop(key, None)
    return doc


def find_order_by_reference(db: Database, order: Order) -> Optional[dict]:
    for key in PROVIDER_REFERENCES:
        value = getattr(order, key)
        if value:
            return db["order"].find_one({key: value})
    return None


def place_order(db: Database, order: Order, paid: bool = False) -> str:
    """Reserve stock and write the order, returning its id.

    Unpaid orders need every line in stock. Paid orders are always written,
    with the product ids that could not be reserved in ``stock_shortfall``.
    A second order for the same provider reference returns the first one.
    """
    if paid:
        reserved, order.stock_shortfall = reserve_available_stock(db, order.items)
        if order.stock_shortfall:
            logger.warning("paid_order_stock_shortfall", user_id=order.user_id, products=order.stock_shortfall)
    else:
        reserved = reserve_stock(db, order.items)

    try:
        order_id = create_document(db, "order", order_document(order))
    except DuplicateKeyError:
        release_stock(db, reserved)
        existing = find_order_by_reference(db, order)
        if existing is None:
            raise
        logger.info("order_already_recorded", order_id=str(existing["_id"]))
        return str(existing["_id"])
    except Exception:
        release_stock(db, reserved)
        raise
    logger.info("order_created", order_id=order_id, user_id=order.user_id, mode=order.mode, total=order.total_amount)
    return order_id


def require_address(user: dict) -> dict:
    address = user.get("address") or {}
    if not address.get("name"):
        raise HTTPException(status_code=400, detail="User address is required for checkout")
    return address


def load_user(db: Database, user_id: str) -> Optional[dict]:
    oid = to_object_id(user_id)
    return db["user"].find_one({"_id": oid}) if oid else None


def server_error(message: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"message": message, "error": str(exc)})


def stock_conflict(exc: InsufficientStock) -> HTTPException:
    return HTTPException(status_code=409, detail=str(exc))


# Stripe

@router.post("/create-checkout-session")
def create_checkout_session(
    payload: CheckoutIn,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
    stripe_gateway: StripeGateway = Depends(get_stripe),
    settings: Settings = Depends(get_settings),
):
    if not payload.products:
        raise HTTPException(status_code=400, detail="Invalid or empty products array")
    require_product_ids(payload.products)

    user_id = str(user["_id"])
    try:
        total_amount = 0
        line_items = []
        for product in payload.products:
            amount = to_cents(product.price or 0)
            quantity = line_quantity(product)
            total_amount += amount * quantity
            image_url = ensure_https_url(product.image)
            line_items.append({
                "price_data": {
                    "currency": "usd",
                    "product_data": {"name": product.name or "Item", "images": [image_url] if image_url else []},
                    "unit_amount": amount,
                },
                "quantity": quantity,
            })

        discounts = []
        coupon = find_active_coupon(db, user_id, payload.coupon_code) if payload.coupon_code else None
        if coupon:
            total_amount = apply_discount(total_amount, coupon["discount_percentage"])
            discounts.append({"coupon": stripe_gateway.create_coupon(coupon["discount_percentage"])})

        session = stripe_gateway.create_checkout_session(
            line_items=line_items,
            success_url=f"{settings.client_url}/purchase-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.client_url}/purchase-cancel",
            discounts=discounts,
            metadata={
                "user_id": user_id,
                "coupon_code": payload.coupon_code or "",
                "products": snapshot_products(payload.products, repriced=False),
            },
        )

        if qualifies_for_gift(total_amount):
            award_gift_coupon(db, user_id)

        logger.info("stripe_session_created", session_id=session["id"], user_id=user_id, total=total_amount)
        return {"id": session["id"], "total_amount": total_amount / 100}
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("stripe_checkout_failed", user_id=user_id)
        return server_error("Error processing checkout", exc)


@router.post("/checkout-success")
def checkout_success(
    payload: CheckoutSuccessIn,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
    stripe_gateway: StripeGateway = Depends(get_stripe),
):
    try:
        existing = db["order"].find_one({"stripe_session_id": payload.session_id})
        if existing:
            return {"success": True, "message": "Order already recorded.", "order_id": str(existing["_id"])}

        session = stripe_gateway.retrieve_checkout_session(payload.session_id)
        if session["payment_status"] != "paid":
            raise HTTPException(status_code=400, detail="Payment not completed")

        metadata = session["metadata"]
        user_id = metadata["user_id"]
        owner = load_user(db, user_id) or user
        order = Order(
            user_id=user_id,
            items=items_from_snapshot(metadata["products"]),
            total_amount=session["amount_total"] / 100,
            status="pending",
            mode="online",
            address=owner.get("address"),
            stripe_session_id=payload.session_id,
        )
        order_id = place_order(db, order, paid=True)

        if metadata["coupon_code"]:
            deactivate_coupon(db, user_id, metadata["coupon_code"])

        return {
            "success": True,
            "message": "Payment successful, order created, and coupon deactivated if used.",
            "order_id": order_id,
            "stock_shortfall": order.stock_shortfall,
        }
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("stripe_confirmation_failed", session_id=payload.session_id)
        return server_error("Error processing successful checkout", exc)


# Razorpay

@router.post("/create-checkout-session-razorpay")
def create_razorpay_order(
    payload: CheckoutIn,
    background_tasks: BackgroundTasks,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
    razorpay_gateway: RazorpayGateway = Depends(get_razorpay),
    notifier: OrderNotifier = Depends(get_notifier),
):
    if not payload.products:
        raise HTTPException(status_code=400, detail="Invalid or empty products array")
    require_product_ids(payload.products)
    require_address(user)
    invalid = find_invalid_line(payload.products)
    if invalid:
        raise HTTPException(status_code=400, detail=f"Invalid product price or quantity for {invalid.name or 'item'}")

    user_id = str(user["_id"])
    try:
        total_amount = sum(to_cents(resolve_unit_price(p)) * line_quantity(p) for p in payload.products)
        coupon = find_active_coupon(db, user_id, payload.coupon_code) if payload.coupon_code else None
        if coupon:
            total_amount = apply_discount(total_amount, coupon["discount_percentage"])

        provider_order = razorpay_gateway.create_order(
            amount=total_amount,
            currency="INR",
            receipt=f"receipt_{int(time.time() * 1000)}",
            notes={
                "user_id": user_id,
                "coupon_code": payload.coupon_code if coupon else "",
                "products": snapshot_products(payload.products, repriced=True),
            },
        )

        clear_cart(db, user_id)
        notifier.queue(
            background_tasks,
            user,
            order_id=provider_order["id"],
            item_names=", ".join(p.name or "item" for p in payload.products),
            total_amount=total_amount / 100,
            payment_mode="Online Payment",
        )
        logger.info("razorpay_order_created", provider_order_id=provider_order["id"], user_id=user_id, total=total_amount)
        return {"id": provider_order["id"], "total_amount": total_amount / 100, "key_id": razorpay_gateway.key_id}
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("razorpay_checkout_failed", user_id=user_id)
        return server_error("Error processing checkout", exc)


@router.post("/razorpay-success")
def razorpay_success(
    payload: RazorpaySuccessIn,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
    razorpay_gateway: RazorpayGateway = Depends(get_razorpay),
):
    try:
        if not razorpay_gateway.verify_payment_signature(payload.order_id, payload.payment_id, payload.signature):
            raise HTTPException(status_code=400, detail="Invalid signature")

        existing = db["order"].find_one({"razorpay_order_id": payload.order_id})
        if existing:
            return {"success": True, "message": "Order already recorded.", "order_id": str(existing["_id"])}

        provider_order = razorpay_gateway.fetch_order(payload.order_id)
        notes = provider_order["notes"]
        user_id = notes["user_id"]
        owner = load_user(db, user_id) or user
        order = Order(
            user_id=user_id,
            items=items_from_snapshot(notes["products"]),
            total_amount=provider_order["amount"] / 100,
            status="processing",
            mode="online",
            address=owner.get("address"),
            razorpay_order_id=payload.order_id,
            razorpay_payment_id=payload.payment_id,
        )
        order_id = place_order(db, order, paid=True)

        if notes.get("coupon_code"):
            deactivate_coupon(db, user_id, notes["coupon_code"])

        return {
            "success": True,
            "message": "Payment successful, order created, and coupon deactivated if used.",
            "order_id": order_id,
            "stock_shortfall": order.stock_shortfall,
        }
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("razorpay_confirmation_failed", provider_order_id=payload.order_id)
        return server_error("Error processing Razorpay success", exc)


# Cash on delivery

@router.post("/cash-on-delivery")
def cash_on_delivery(
    payload: CheckoutIn,
    background_tasks: BackgroundTasks,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: OrderNotifier = Depends(get_notifier),
):
    if not payload.products:
        raise HTTPException(status_code=400, detail="Invalid or empty products array")
    require_product_ids(payload.products)
    address = require_address(user)
    invalid = find_invalid_line(payload.products)
    if invalid:
        raise HTTPException(status_code=400, detail=f"Invalid product price or quantity for {invalid.name or 'item'}")

    user_id = str(user["_id"])
    try:
        total_cents = sum(to_cents(resolve_unit_price(p)) * line_quantity(p) for p in payload.products)
        order = Order(
            user_id=user_id,
            items=[
                OrderItem(product_id=p.id, quantity=line_quantity(p), price=resolve_unit_price(p))
                for p in payload.products
            ],
            total_amount=total_cents / 100,
            status="pending",
            mode="cod",
            address=address,
        )
        order_id = place_order(db, order)

        clear_cart(db, user_id)
        notifier.queue(
            background_tasks,
            user,
            order_id=order_id,
            item_names=", ".join(p.name or "item" for p in payload.products),
            total_amount=order.total_amount,
            payment_mode="Cash on Delivery",
        )
        return {"success": True, "message": "Order placed successfully with Cash on Delivery", "order_id": order_id}
    except InsufficientStock as exc:
        raise stock_conflict(exc)
    except Exception as exc:
        logger.exception("cod_checkout_failed", user_id=user_id)
        return server_error("Error processing checkout", exc)
