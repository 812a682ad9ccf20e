import hashlib
import hmac
from typing import Optional

import mongomock
import pytest
import razorpay
from fastapi.testclient import TestClient

import main
from auth import create_access_token
from cache import FeaturedProductsCache, InMemoryStore, get_featured_cache
from config import Settings, get_settings
from database import create_document, ensure_indexes, get_db
from notifications import OrderNotifier, get_notifier
from payments import RazorpayGateway, get_razorpay, get_stripe

RAZORPAY_KEY_ID = "rzp_test_key"
RAZORPAY_KEY_SECRET = "rzp_test_secret"

TEST_SETTINGS = Settings(
    secret_key="test-secret",
    client_url="http://shop.test",
    razorpay_key_id=RAZORPAY_KEY_ID,
    razorpay_key_secret=RAZORPAY_KEY_SECRET,
    order_notification_email="orders@example.com",
)


class FakeStripeGateway:
    def __init__(self):
        self.sessions = {}
        self.coupons = []

    def create_coupon(self, percent_off):
        self.coupons.append(percent_off)
        return f"coupon_{len(self.coupons)}"

    def create_checkout_session(self, line_items, success_url, cancel_url, metadata, discounts=None):
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions[session_id] = {
            "id": session_id,
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "discounts": discounts or [],
            "payment_status": "unpaid",
            "amount_total": None,
        }
        return self.sessions[session_id]

    def retrieve_checkout_session(self, session_id):
        return self.sessions[session_id]

    def mark_paid(self, session_id, amount_total):
        self.sessions[session_id]["payment_status"] = "paid"
        self.sessions[session_id]["amount_total"] = amount_total


class FakeRazorpayOrders:
    def __init__(self):
        self.orders = {}

    def create(self, data):
        order_id = f"order_test_{len(self.orders) + 1}"
        self.orders[order_id] = {"id": order_id, "status": "created", **data}
        return self.orders[order_id]

    def fetch(self, order_id):
        return self.orders[order_id]


class RecordingSender:
    def __init__(self, failures=0):
        self.failures = failures
        self.calls = 0
        self.sent = []

    def send(self, to, subject, text, html=None):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("smtp down")
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})
        return True


def sign_razorpay(order_id: str, payment_id: str, secret: str = RAZORPAY_KEY_SECRET) -> str:
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


@pytest.fixture
def db():
    database = mongomock.MongoClient(tz_aware=True)["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def stripe_gateway():
    return FakeStripeGateway()


@pytest.fixture
def razorpay_gateway():
    client = razorpay.Client(auth=(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET))
    client.order = FakeRazorpayOrders()
    return RazorpayGateway(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET, client=client)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def notifier(sender):
    return OrderNotifier(sender, "orders@example.com", max_attempts=1, backoff_seconds=0)


@pytest.fixture
def featured_cache():
    return FeaturedProductsCache(InMemoryStore())


@pytest.fixture
def client(db, stripe_gateway, razorpay_gateway, notifier, featured_cache):
    app = main.app
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: TEST_SETTINGS
    app.dependency_overrides[get_stripe] = lambda: stripe_gateway
    app.dependency_overrides[get_razorpay] = lambda: razorpay_gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_featured_cache] = lambda: featured_cache
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, email="user@example.com", role="customer", address: Optional[dict] = None, name="Test User") -> str:
    return create_document(db, "user", {
        "name": name,
        "email": email,
        "password_hash": "not-a-real-hash",
        "role": role,
        "address": address,
    })


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, TEST_SETTINGS)}"}


def make_product(db, **overrides) -> str:
    product = {
        "name": "Ceiling Fan",
        "description": "Silent ceiling fan",
        "price": 199.99,
        "sale_price": None,
        "image": None,
        "category": "fans",
        "quantity": 10,
        "is_featured": False,
        "close_out": False,
    }
    product.update(overrides)
    return create_document(db, "product", product)


SHIPPING_ADDRESS = {"name": "Test User", "street": "1 Main Rd", "city": "Pune", "pincode": "411001", "phone": "9999999999"}


@pytest.fixture
def customer(db):
    user_id = make_user(db, address=SHIPPING_ADDRESS)
    return {"id": user_id, "headers": auth_headers(user_id)}


@pytest.fixture
def admin(db):
    user_id = main.create_admin(db, "admin@example.com", "password123")
    return {"id": user_id, "headers": auth_headers(user_id)}
