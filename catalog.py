import logging
import math
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from pymongo import DESCENDING

from database import Store, oid, to_str_id, utcnow
from errors import NotFoundError, ValidationError
from schemas import Product, ProductIn

log = logging.getLogger(__name__)

CENT = Decimal("0.01")
MAX_PAGE_SIZE = 100

SORTS = {
    "newest": [("created_at", DESCENDING)],
    "price_asc": [("price_cents", 1)],
    "price_desc": [("price_cents", DESCENDING)],
    "popular": [("rating", DESCENDING)],
}
SEARCH_FIELDS = ("name", "description", "category")


def to_cents(amount) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def money(cents: int) -> str:
    return str((Decimal(cents or 0) / 100).quantize(CENT))


def serialize_product(doc: dict) -> dict:
    d = to_str_id(doc)
    d["price"] = money(d.pop("price_cents", 0))
    d.setdefault("images", [])
    d.setdefault("specs", {})
    return d


class CatalogService:
    def __init__(self, store: Store):
        self.store = store

    @property
    def products(self):
        return self.store["products"]

    def list_products(self, category: Optional[str] = None, gender: Optional[str] = None,
                      min_price: Optional[Decimal] = None, max_price: Optional[Decimal] = None,
                      sort: str = "newest", page: int = 1, limit: int = 20) -> dict:
        if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError("Invalid pagination")

        filt = {}
        if category:
            filt["category"] = category
        if gender:
            filt["gender"] = gender
        price = {}
        if min_price is not None:
            price["$gte"] = to_cents(min_price)
        if max_price is not None:
            price["$lte"] = to_cents(max_price)
        if price:
            filt["price_cents"] = price

        order = SORTS.get(sort, SORTS["newest"]) + [("_id", DESCENDING)]
        cursor = self.products.find(filt).sort(order).skip((page - 1) * limit).limit(limit)
        items = [serialize_product(p) for p in cursor]
        # count the filtered set so totalPages matches what the filters can return
        total = self.products.count_documents(filt)
        return {
            "products": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit),
            },
        }

    def get_product(self, product_id: str) -> dict:
        doc = self.products.find_one({"_id": oid(product_id)})
        if not doc:
            raise NotFoundError("Product not found")
        return serialize_product(doc)

    def latest_product(self) -> dict:
        docs = list(self.products.find().sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(1))
        if not docs:
            raise NotFoundError("No products available")
        return serialize_product(docs[0])

    def search(self, query: str) -> List[dict]:
        query = (query or "").strip()
        if not query:
            return []
        pattern = re.escape(query)
        filt = {"$or": [{f: {"$regex": pattern, "$options": "i"}} for f in SEARCH_FIELDS]}
        cursor = self.products.find(filt).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [serialize_product(p) for p in cursor]

    def categories(self) -> List[dict]:
        pipeline = [
            {"$match": {"category": {"$ne": None}}},
            {"$group": {"_id": "$category", "count": {"$sum": 1}}},
            {"$sort": {"_id": 1}},
        ]
        return [{"name": c["_id"], "count": c["count"]} for c in self.products.aggregate(pipeline)]

    # ---------- Admin ----------

    def create_product(self, data: ProductIn) -> dict:
        fields = data.model_dump(exclude={"price"})
        product = Product(price_cents=to_cents(data.price), **fields)
        product_id = self.store.create_document("products", product)
        log.info("Product created: %s (%s)", product.name, product_id)
        return self.get_product(product_id)

    def attach_model(self, product_id: str, model_ref: str) -> dict:
        self._set(product_id, {"model_3d": model_ref})
        return self.get_product(product_id)

    def update_stock(self, product_id: str, stock: int) -> dict:
        if stock < 0:
            raise ValidationError("Stock cannot be negative")
        self._set(product_id, {"stock": stock})
        log.info("Stock for product %s set to %d", product_id, stock)
        return self.get_product(product_id)

    def _set(self, product_id: str, fields: dict) -> None:
        result = self.products.update_one(
            {"_id": oid(product_id)}, {"$set": {**fields, "updated_at": utcnow()}}
        )
        if result.matched_count == 0:
            raise NotFoundError("Product not found")
