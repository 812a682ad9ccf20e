import argparse
import getpass
import os
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import analytics
import auth
import cart
import catalog
import checkout
import coupons
import orders
from auth import get_password_hash, require_admin
from cache import FeaturedProductsCache, build_store
from config import Settings, configure_logging, get_settings
from database import connect, create_document, ensure_indexes, get_db, utcnow
from notifications import EmailSender, OrderNotifier
from payments import build_gateways
from schemas import Product, User

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)

    client, db = connect(settings)
    ensure_indexes(db)
    store = build_store(settings)
    app.state.db = db
    app.state.featured_cache = FeaturedProductsCache(store)
    app.state.stripe, app.state.razorpay = build_gateways(settings)
    app.state.notifier = OrderNotifier(
        EmailSender(settings),
        settings.order_notification_email,
        max_attempts=settings.email_max_attempts,
    )
    logger.info("app_started")
    try:
        yield
    finally:
        store.close()
        client.close()
        logger.info("app_stopped")


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().client_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(catalog.router)
app.include_router(cart.router)
app.include_router(coupons.router)
app.include_router(checkout.router)
app.include_router(orders.router)
app.include_router(analytics.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(status_code=500, content={"message": "Server error", "error": str(exc)})


# Routes
@app.get("/")
def root():
    return {"message": "API server is running"}


@app.get("/api/health")
def health():
    return {"status": "ok", "message": "Server is running"}


@app.get("/api/env-check")
def env_check(db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    def flag(value):
        return "✅ Set" if value else "❌ Not Set"

    response = {
        "database": "❌ Not Available",
        "database_url": flag(settings.database_url),
        "database_name": flag(settings.database_name),
        "redis_url": flag(settings.use_redis and settings.redis_url),
        "stripe": flag(settings.stripe_secret_key),
        "razorpay": flag(settings.razorpay_key_id and settings.razorpay_key_secret),
        "email": flag(not EmailSender(settings).disabled),
        "collections": [],
    }
    try:
        db.command("ping")
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        logger.warning("database_ping_failed", error=str(e))
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


# Simple seed endpoint to create a demo catalog (admin only)
DEMO_PRODUCTS = [
    {"name": "Ceiling Fan", "description": "Energy-efficient ceiling fan with silent operation.", "price": 199.99, "sale_price": 149.99, "category": "fans", "quantity": 50, "is_featured": True},
    {"name": "Modular Switch Set", "description": "Premium switches and sockets with a clean matte finish.", "price": 59.99, "sale_price": 49.99, "category": "switches-and-sockets", "quantity": 80, "is_featured": True},
    {"name": "LED Bulb Pack", "description": "Bright, long-lasting LED bulbs for every room.", "price": 29.99, "sale_price": 19.99, "category": "lights", "quantity": 120},
    {"name": "Extension Board", "description": "Four-socket surge protected extension board.", "price": 24.99, "category": "switches-and-sockets", "quantity": 40},
    {"name": "Exhaust Fan", "description": "Compact exhaust fan for kitchens and bathrooms.", "price": 79.99, "sale_price": 39.99, "category": "fans", "quantity": 6, "close_out": True},
]


@app.post("/seed", dependencies=[Depends(require_admin)])
def seed(db: Database = Depends(get_db)):
    inserted = 0
    for p in DEMO_PRODUCTS:
        if not db["product"].find_one({"name": p["name"]}):
            create_document(db, "product", Product(**p))
            inserted += 1
    return {"status": "ok", "inserted": inserted}


def create_admin(db: Database, email: str, password: str, name: str = "Admin") -> str:
    """Create an admin account, or promote the existing user with that email."""
    existing = db["user"].find_one({"email": email})
    if existing:
        db["user"].update_one({"_id": existing["_id"]}, {"$set": {"role": "admin", "updated_at": utcnow()}})
        logger.info("user_promoted_to_admin", user_id=str(existing["_id"]))
        return str(existing["_id"])
    user_id = create_document(db, "user", User(
        name=name,
        email=email,
        password_hash=get_password_hash(password),
        role="admin",
    ))
    logger.info("admin_created", user_id=user_id)
    return user_id


def create_admin_cli(argv: Optional[List[str]] = None, db: Optional[Database] = None) -> int:
    """Entry point of ``storefront-create-admin``."""
    parser = argparse.ArgumentParser(description="Create or promote a storefront admin account.")
    parser.add_argument("email")
    parser.add_argument("--name", default="Admin")
    parser.add_argument("--password", help="prompted for when omitted")
    args = parser.parse_args(argv)

    password = args.password or getpass.getpass("Password: ")
    client = None
    if db is None:
        settings = get_settings()
        configure_logging(settings.log_level)
        client, db = connect(settings)
    try:
        user_id = create_admin(db, args.email, password, args.name)
    finally:
        if client is not None:
            client.close()
    print(f"admin {args.email} ({user_id})")
    return 0


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
