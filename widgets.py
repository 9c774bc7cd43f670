import logging
from typing import List

from database import Store, oid, to_str_id
from errors import ValidationError
from schemas import Widget, WidgetIn

log = logging.getLogger(__name__)

MAX_WIDGETS = 15


class WidgetService:
    """Home-screen widget layout, one set per user."""

    def __init__(self, store: Store):
        self.store = store

    def list_widgets(self, user_id: str) -> List[dict]:
        cursor = self.store["widgets"].find({"user_id": oid(user_id), "is_active": True}).sort("position", 1)
        return [to_str_id(w) for w in cursor]

    def save_widgets(self, user_id: str, widgets: List[WidgetIn]) -> List[dict]:
        if len(widgets) > MAX_WIDGETS:
            raise ValidationError(f"At most {MAX_WIDGETS} widgets allowed")
        user_oid = oid(user_id)
        collection = self.store["widgets"]

        with self.store.transaction() as txn:
            previous = list(collection.find({"user_id": user_oid}, session=txn.session))
            collection.delete_many({"user_id": user_oid}, session=txn.session)
            if previous:
                txn.on_rollback(lambda: collection.insert_many(previous))
            for w in widgets:
                self.store.create_document("widgets", Widget(user_id=user_oid, **w.model_dump()), txn)

        log.info("Saved %d widgets for user %s", len(widgets), user_id)
        return self.list_widgets(user_id)
