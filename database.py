"""
MongoDB access for the Russo API.

A single ``Store`` wraps the pymongo database and is handed to every service.
Multi-step writes go through ``Store.transaction()``: a real MongoDB
transaction when the deployment supports one, otherwise a unit of work that
undoes its completed steps when the block fails.
"""
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReadPreference
from pymongo.errors import PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from errors import StorageError, ValidationError

log = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "russo")
MONGO_TRANSACTIONS = os.getenv("MONGO_TRANSACTIONS", "auto").lower()

COLLECTIONS = ("users", "products", "cart", "orders", "widgets")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes unless tz_aware is set
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def oid(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except Exception:
        raise ValidationError("Invalid id")


def to_str_id(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
    return d


class Transaction:
    """Handle for one unit of work.

    ``session`` is passed to every pymongo call made inside the unit. When the
    store runs without server transactions it is ``None`` and each completed
    write registers its inverse with ``on_rollback``.
    """

    def __init__(self, session=None):
        self.session = session
        self._undo: List[Callable[[], Any]] = []

    @property
    def transactional(self) -> bool:
        return self.session is not None

    def on_rollback(self, fn: Callable[[], Any]) -> None:
        if not self.transactional:
            self._undo.append(fn)

    def rollback(self) -> None:
        while self._undo:
            fn = self._undo.pop()
            try:
                fn()
            except PyMongoError:
                log.exception("Undo step failed during rollback")


class Store:
    def __init__(self, db, client: Optional[MongoClient] = None, use_transactions: bool = False):
        if use_transactions and client is None:
            raise ValueError("Transactions need the MongoClient")
        self.db = db
        self.client = client
        self.use_transactions = use_transactions

    def __getitem__(self, name: str):
        return self.db[name]

    @property
    def name(self) -> str:
        return self.db.name

    # ---------- Documents ----------

    def create_document(self, collection_name: str, data: Union[BaseModel, Dict[str, Any]],
                        txn: Optional[Transaction] = None) -> str:
        if isinstance(data, BaseModel):
            data_dict = data.model_dump()
        else:
            data_dict = dict(data)
        now = utcnow()
        data_dict.setdefault("created_at", now)
        data_dict["updated_at"] = now

        session = txn.session if txn else None
        result = self.db[collection_name].insert_one(data_dict, session=session)
        if txn is not None:
            inserted_id = result.inserted_id
            txn.on_rollback(lambda: self.db[collection_name].delete_one({"_id": inserted_id}))
        return str(result.inserted_id)

    def get_documents(self, collection_name: str, filter_dict: Optional[dict] = None,
                      limit: Optional[int] = None) -> List[dict]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    # ---------- Transactions ----------

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        try:
            if self.use_transactions:
                with self._server_transaction() as txn:
                    yield txn
            else:
                txn = Transaction()
                try:
                    yield txn
                except BaseException:
                    txn.rollback()
                    raise
        except PyMongoError as e:
            raise StorageError(e) from e

    @contextmanager
    def _server_transaction(self) -> Iterator[Transaction]:
        with self.client.start_session() as session:
            session.start_transaction(
                read_concern=ReadConcern("snapshot"),
                write_concern=WriteConcern("majority"),
                read_preference=ReadPreference.PRIMARY,
            )
            try:
                yield Transaction(session)
            except BaseException:
                if session.in_transaction:
                    session.abort_transaction()
                raise
            session.commit_transaction()

    # ---------- Maintenance ----------

    def ensure_indexes(self) -> None:
        self.db["users"].create_index("phone", unique=True)
        self.db["cart"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
        self.db["orders"].create_index("order_number", unique=True)
        self.db["orders"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        self.db["products"].create_index([("created_at", DESCENDING)])
        self.db["widgets"].create_index([("user_id", ASCENDING), ("position", ASCENDING)])

    def ping(self) -> List[str]:
        return self.db.list_collection_names()


def supports_transactions(client: MongoClient) -> bool:
    hello = client.admin.command("hello")
    return bool(hello.get("setName")) or hello.get("msg") == "isdbgrid"


def connect(url: Optional[str] = None, name: Optional[str] = None) -> Store:
    client = MongoClient(url or DATABASE_URL)
    if MONGO_TRANSACTIONS == "on":
        use_transactions = True
    elif MONGO_TRANSACTIONS == "off":
        use_transactions = False
    else:
        use_transactions = supports_transactions(client)
    if not use_transactions:
        log.warning("MongoDB transactions unavailable, falling back to compensating writes")
    store = Store(client[name or DATABASE_NAME], client=client, use_transactions=use_transactions)
    log.info("Connected to MongoDB database %s (transactions=%s)", store.name, use_transactions)
    return store
