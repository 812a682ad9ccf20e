from datetime import datetime, timedelta, timezone

from analytics import dates_in_range
from conftest import make_product
from database import create_document


def test_dates_in_range_is_inclusive():
    start = datetime(2024, 2, 27).date()
    assert dates_in_range(start, start + timedelta(days=2)) == ["2024-02-27", "2024-02-28", "2024-02-29"]


def test_analytics_requires_admin(client, customer):
    assert client.get("/api/analytics").status_code == 401
    assert client.get("/api/analytics", headers=customer["headers"]).status_code == 403


def test_analytics_summary_and_last_seven_days(client, db, customer, admin):
    make_product(db)
    create_document(db, "order", {"user_id": customer["id"], "items": [], "total_amount": 120, "status": "pending"})
    db["order"].insert_one({
        "user_id": customer["id"],
        "items": [],
        "total_amount": 30,
        "status": "delivered",
        "created_at": datetime.now(timezone.utc) - timedelta(days=10),
    })

    res = client.get("/api/analytics", headers=admin["headers"])

    assert res.status_code == 200
    body = res.json()
    assert body["analytics_data"] == {"users": 2, "products": 1, "total_sales": 2, "total_revenue": 150}

    daily = body["daily_sales_data"]
    assert len(daily) == 7
    today = datetime.now(timezone.utc).date().isoformat()
    assert daily[-1] == {"date": today, "sales": 1, "revenue": 120}
    assert sum(day["sales"] for day in daily) == 1
