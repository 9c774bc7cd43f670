import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import Store
from main import Services
from schemas import Product

PASSWORD = "Secret123"


class Outbox:
    """SMS sender that keeps messages instead of delivering them."""

    def __init__(self):
        self.messages = []

    def __call__(self, phone, message):
        self.messages.append((phone, message))


@pytest.fixture
def store():
    db = mongomock.MongoClient()["russo_test"]
    s = Store(db)
    s.ensure_indexes()
    return s


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def services(store, outbox):
    return Services(store, sms_sender=outbox, bcrypt_rounds=4)


@pytest.fixture
def client(services):
    main.app.state.services = services
    with TestClient(main.app) as c:
        yield c
    main.app.state.services = None


def make_product(store, name="Silk Shirt", price_cents=1000, stock=5, **fields):
    product = Product(name=name, price_cents=price_cents, stock=stock, **fields)
    return store.create_document("products", product)


def pending_code(store, phone):
    return store["users"].find_one({"phone": phone})["verification_code"]


def verified_user(services, phone="+58-4121234567", password=PASSWORD):
    """Register and verify ``phone``; returns (user_id, token)."""
    services.identity.register(phone, "+58", password, "Ana", "Perez")
    session = services.identity.verify(phone, pending_code(services.store, phone))
    return session["user"]["id"], session["token"]


def admin_token(services, phone="+58-4140000000"):
    services.identity.seed_admin(phone, PASSWORD)
    return services.identity.login(phone, PASSWORD)["token"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
