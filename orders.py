"""
Checkout and order history.

``place_order`` turns a user's cart into an order in one unit of work: stock
check, order insert, conditional stock decrements and cart clear either all
happen or none do.
"""
import logging
import uuid
from typing import List, Optional

from pymongo import DESCENDING
from pymongo.errors import OperationFailure

from catalog import money
from database import Store, Transaction, oid, to_str_id, utcnow
from errors import (
    ConflictError,
    EmptyCartError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from schemas import Order, OrderItem

log = logging.getLogger(__name__)

ORDER_PREFIX = "RUSSO"
NOT_CANCELLABLE = ("shipped", "delivered", "completed", "cancelled")
WRITE_CONFLICT = 112


def generate_order_number() -> str:
    stamp = utcnow().strftime("%Y%m%d%H%M%S")
    return f"{ORDER_PREFIX}-{stamp}-{uuid.uuid4().hex[:10].upper()}"


def serialize_order(doc: dict) -> dict:
    d = to_str_id(doc)
    d["total"] = money(d.pop("total_cents", 0))
    d["items"] = [
        {
            "product_id": str(item["product_id"]),
            "name": item.get("name"),
            "quantity": item["quantity"],
            "unit_price": money(item["unit_price_cents"]),
        }
        for item in doc.get("items", [])
    ]
    return d


class OrderService:
    def __init__(self, store: Store):
        self.store = store

    @property
    def orders(self):
        return self.store["orders"]

    def place_order(self, user_id: str, shipping_address: Optional[str], payment_method: Optional[str]) -> dict:
        if not (shipping_address or "").strip() or not (payment_method or "").strip():
            raise ValidationError("Shipping address and payment method are required")
        user_oid = oid(user_id)

        with self.store.transaction() as txn:
            lines = self._load_cart(user_oid, txn)
            if not lines:
                log.warning("Checkout rejected for user %s: cart is empty", user_id)
                raise EmptyCartError()

            # all lines are checked before the first write
            for line in lines:
                if line["quantity"] > line["stock"]:
                    log.warning("Checkout rejected for user %s: insufficient stock for %s",
                                user_id, line["product_id"])
                    raise InsufficientStockError(str(line["product_id"]), line["name"])

            total_cents = sum(line["price_cents"] * line["quantity"] for line in lines)
            order = Order(
                user_id=user_oid,
                order_number=generate_order_number(),
                items=[
                    OrderItem(
                        product_id=line["product_id"],
                        name=line["name"],
                        unit_price_cents=line["price_cents"],
                        quantity=line["quantity"],
                    )
                    for line in lines
                ],
                total_cents=total_cents,
                shipping_address=shipping_address.strip(),
                payment_method=payment_method.strip(),
            )
            order_id = self.store.create_document("orders", order, txn)

            for line in lines:
                self._take_stock(line, txn)
            self._clear_cart(user_oid, [line["line_id"] for line in lines], txn)

        log.info("Order %s placed by user %s, total %s", order.order_number, user_id, money(total_cents))
        return {"orderId": order_id, "orderNumber": order.order_number, "total": money(total_cents)}

    def list_orders(self, user_id: str) -> List[dict]:
        cursor = self.orders.find({"user_id": oid(user_id)}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [serialize_order(o) for o in cursor]

    def get_order(self, user_id: str, order_id: str) -> dict:
        doc = self.orders.find_one({"_id": oid(order_id), "user_id": oid(user_id)})
        if not doc:
            raise NotFoundError("Order not found")
        return serialize_order(doc)

    def update_status(self, order_id: str, status: str, tracking_number: Optional[str] = None) -> dict:
        # any status string is accepted; there is no transition graph
        if not (status or "").strip():
            raise ValidationError("Status is required")
        fields = {"status": status.strip(), "updated_at": utcnow()}
        if tracking_number is not None:
            fields["tracking_number"] = tracking_number
        result = self.orders.update_one({"_id": oid(order_id)}, {"$set": fields})
        if result.matched_count == 0:
            raise NotFoundError("Order not found")
        log.info("Order %s status set to %s", order_id, fields["status"])
        return serialize_order(self.orders.find_one({"_id": oid(order_id)}))

    def cancel_order(self, user_id: str, order_id: str) -> dict:
        order_oid = oid(order_id)
        with self.store.transaction() as txn:
            doc = self.orders.find_one({"_id": order_oid, "user_id": oid(user_id)}, session=txn.session)
            if not doc:
                raise NotFoundError("Order not found")
            status = doc.get("status")
            if status in NOT_CANCELLABLE:
                raise ConflictError(f"Order cannot be cancelled while {status}")

            result = self.orders.update_one(
                {"_id": order_oid, "status": status},
                {"$set": {"status": "cancelled", "updated_at": utcnow()}},
                session=txn.session,
            )
            if result.modified_count == 0:
                raise ConflictError("Order changed while cancelling")
            txn.on_rollback(lambda: self.orders.update_one({"_id": order_oid}, {"$set": {"status": status}}))

            for item in doc.get("items", []):
                self._restock(item["product_id"], item["quantity"], txn)

        log.info("Order %s cancelled by user %s", doc["order_number"], user_id)
        return serialize_order(self.orders.find_one({"_id": order_oid}))

    # ---------- Steps ----------

    def _load_cart(self, user_oid, txn: Transaction) -> List[dict]:
        """Cart lines joined with the product's current name, price and stock."""
        cursor = self.store["cart"].find({"user_id": user_oid}, session=txn.session)
        lines = list(cursor.sort([("added_at", 1), ("_id", 1)]))
        if not lines:
            return []
        ids = [line["product_id"] for line in lines]
        products = {
            p["_id"]: p
            for p in self.store["products"].find({"_id": {"$in": ids}}, session=txn.session)
        }
        joined = []
        for line in lines:
            product = products.get(line["product_id"])
            if product is None:
                raise NotFoundError(f"Product {line['product_id']} no longer exists")
            joined.append({
                "line_id": line["_id"],
                "product_id": line["product_id"],
                "name": product.get("name"),
                "price_cents": product.get("price_cents", 0),
                "stock": product.get("stock", 0),
                "quantity": line["quantity"],
            })
        return joined

    def _take_stock(self, line: dict, txn: Transaction) -> None:
        products = self.store["products"]
        pid, qty = line["product_id"], line["quantity"]
        try:
            result = products.update_one(
                {"_id": pid, "stock": {"$gte": qty}},
                {"$inc": {"stock": -qty}},
                session=txn.session,
            )
        except OperationFailure as e:
            # another checkout committed a write to this product first
            if e.code == WRITE_CONFLICT or e.has_error_label("TransientTransactionError"):
                raise InsufficientStockError(str(pid), line["name"]) from e
            raise
        if result.modified_count == 0:
            log.warning("Lost stock race for product %s", pid)
            raise InsufficientStockError(str(pid), line["name"])
        txn.on_rollback(lambda: products.update_one({"_id": pid}, {"$inc": {"stock": qty}}))

    def _restock(self, product_id, quantity: int, txn: Transaction) -> None:
        products = self.store["products"]
        products.update_one({"_id": product_id}, {"$inc": {"stock": quantity}}, session=txn.session)
        txn.on_rollback(lambda: products.update_one({"_id": product_id}, {"$inc": {"stock": -quantity}}))

    def _clear_cart(self, user_oid, line_ids: List, txn: Transaction) -> None:
        """Removes the ordered lines only; lines added after the cart was read stay."""
        cart = self.store["cart"]
        query = {"_id": {"$in": line_ids}, "user_id": user_oid}
        removed = list(cart.find(query, session=txn.session))
        cart.delete_many(query, session=txn.session)
        if removed:
            txn.on_rollback(lambda: cart.insert_many(removed))
