import logging

from pymongo import ReturnDocument

from catalog import money
from database import Store, oid, utcnow
from errors import NotFoundError, ValidationError

log = logging.getLogger(__name__)


class CartService:
    """Per-user cart lines. Stock is not checked here; checkout does that."""

    def __init__(self, store: Store):
        self.store = store

    @property
    def cart(self):
        return self.store["cart"]

    def get_cart(self, user_id: str) -> dict:
        lines = list(self.cart.find({"user_id": oid(user_id)}).sort([("added_at", 1), ("_id", 1)]))
        product_ids = [line["product_id"] for line in lines]
        products = {p["_id"]: p for p in self.store["products"].find({"_id": {"$in": product_ids}})}

        items = []
        total_cents = 0
        for line in lines:
            product = products.get(line["product_id"])
            if product is None:
                continue
            price_cents = product.get("price_cents", 0)
            item_total = price_cents * line["quantity"]
            total_cents += item_total
            items.append({
                "id": str(line["_id"]),
                "product_id": str(line["product_id"]),
                "name": product.get("name"),
                "price": money(price_cents),
                "images": product.get("images") or [],
                "stock": product.get("stock", 0),
                "quantity": line["quantity"],
                "item_total": money(item_total),
            })
        return {"items": items, "total": money(total_cents), "count": len(items)}

    def add_item(self, user_id: str, product_id: str, quantity: int = 1) -> dict:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        product_oid = oid(product_id)
        if not self.store["products"].find_one({"_id": product_oid}, {"_id": 1}):
            raise NotFoundError("Product not found")

        now = utcnow()
        # one line per (user, product); adding again increments the quantity
        line = self.cart.find_one_and_update(
            {"user_id": oid(user_id), "product_id": product_oid},
            {"$inc": {"quantity": quantity}, "$set": {"updated_at": now}, "$setOnInsert": {"added_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return {"cartItemId": str(line["_id"]), "quantity": line["quantity"]}

    def update_quantity(self, user_id: str, line_id: str, quantity: int) -> dict:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        result = self.cart.update_one(
            {"_id": oid(line_id), "user_id": oid(user_id)},
            {"$set": {"quantity": quantity, "updated_at": utcnow()}},
        )
        if result.matched_count == 0:
            raise NotFoundError("Cart item not found")
        return {"cartItemId": line_id, "quantity": quantity}

    def remove_item(self, user_id: str, line_id: str) -> None:
        result = self.cart.delete_one({"_id": oid(line_id), "user_id": oid(user_id)})
        if result.deleted_count == 0:
            raise NotFoundError("Cart item not found")

    def clear_cart(self, user_id: str) -> int:
        return self.cart.delete_many({"user_id": oid(user_id)}).deleted_count
