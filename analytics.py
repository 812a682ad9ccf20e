from datetime import date, datetime, time, timedelta, timezone
from typing import List

from fastapi import APIRouter, Depends
from pymongo.database import Database

from auth import require_admin
from database import get_db, utcnow

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


def get_analytics_data(db: Database) -> dict:
    totals = list(db["order"].aggregate([
        {"$group": {"_id": None, "total_sales": {"$sum": 1}, "total_revenue": {"$sum": "$total_amount"}}},
    ]))
    sales = totals[0] if totals else {"total_sales": 0, "total_revenue": 0}
    return {
        "users": db["user"].count_documents({}),
        "products": db["product"].count_documents({}),
        "total_sales": sales["total_sales"],
        "total_revenue": sales["total_revenue"],
    }


def dates_in_range(start: date, end: date) -> List[str]:
    days = []
    current = start
    while current <= end:
        days.append(current.isoformat())
        current += timedelta(days=1)
    return days


def get_daily_sales_data(db: Database, start: date, end: date) -> List[dict]:
    # naive bounds are read as UTC by the driver
    lower = datetime.combine(start, time.min)
    upper = datetime.combine(end + timedelta(days=1), time.min)
    per_day = {}
    for order in db["order"].find({"created_at": {"$gte": lower, "$lt": upper}}, {"created_at": 1, "total_amount": 1}):
        created = order["created_at"]
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        key = created.date().isoformat()
        bucket = per_day.setdefault(key, {"sales": 0, "revenue": 0.0})
        bucket["sales"] += 1
        bucket["revenue"] += order.get("total_amount", 0)

    return [
        {"date": day, "sales": per_day.get(day, {}).get("sales", 0), "revenue": per_day.get(day, {}).get("revenue", 0)}
        for day in dates_in_range(start, end)
    ]


@router.get("", dependencies=[Depends(require_admin)])
def analytics(db: Database = Depends(get_db)):
    end = utcnow().date()
    start = end - timedelta(days=6)
    return {
        "analytics_data": get_analytics_data(db),
        "daily_sales_data": get_daily_sales_data(db, start, end),
    }
