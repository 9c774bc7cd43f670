from typing import List, Optional

from pymongo import DESCENDING

from catalog import money, serialize_product
from database import Store
from errors import ValidationError
from identity import public_user
from orders import serialize_order

MAX_PAGE_SIZE = 100


def page_window(page: int, limit: int):
    if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError("Invalid pagination")
    return (page - 1) * limit, limit


class ReportingService:
    """Dashboard figures and listings for admins. Callers check the role."""

    def __init__(self, store: Store):
        self.store = store

    def stats(self) -> dict:
        revenue = list(self.store["orders"].aggregate([
            {"$match": {"status": "completed"}},
            {"$group": {"_id": None, "revenue": {"$sum": "$total_cents"}}},
        ]))
        return {
            "totalUsers": self.store["users"].count_documents({}),
            "totalProducts": self.store["products"].count_documents({}),
            "totalOrders": self.store["orders"].count_documents({}),
            "totalRevenue": money(revenue[0]["revenue"] if revenue else 0),
        }

    def list_products(self, page: int = 1, limit: int = 50) -> List[dict]:
        skip, limit = page_window(page, limit)
        cursor = self.store["products"].find().sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [serialize_product(p) for p in cursor.skip(skip).limit(limit)]

    def list_users(self, page: int = 1, limit: int = 50) -> List[dict]:
        skip, limit = page_window(page, limit)
        cursor = self.store["users"].find().sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [public_user(u) for u in cursor.skip(skip).limit(limit)]

    def list_orders(self, status: Optional[str] = None, page: int = 1, limit: int = 50) -> List[dict]:
        skip, limit = page_window(page, limit)
        filt = {"status": status} if status else {}
        cursor = self.store["orders"].find(filt).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        orders = list(cursor.skip(skip).limit(limit))

        buyer_ids = list({o["user_id"] for o in orders})
        buyers = {
            u["_id"]: u
            for u in self.store["users"].find({"_id": {"$in": buyer_ids}}, {"phone": 1, "first_name": 1, "last_name": 1})
        }
        result = []
        for o in orders:
            buyer = buyers.get(o["user_id"], {})
            d = serialize_order(o)
            d["phone"] = buyer.get("phone")
            d["first_name"] = buyer.get("first_name")
            d["last_name"] = buyer.get("last_name")
            result.append(d)
        return result
