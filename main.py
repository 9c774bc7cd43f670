import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from carts import CartService
from catalog import CatalogService
from database import Store, connect
from errors import RussoError, StorageError
from identity import IdentityService, SmsSender, require_admin
from orders import OrderService
from reporting import ReportingService
from schemas import (
    CartAddRequest,
    CartUpdateRequest,
    LoginRequest,
    ModelAttachRequest,
    OrderCreate,
    OrderStatusUpdate,
    ProductIn,
    ProfileUpdate,
    RegisterRequest,
    ResendCodeRequest,
    StockUpdate,
    VerifyRequest,
    WidgetLayout,
)
from security import BCRYPT_ROUNDS
from widgets import WidgetService

log = logging.getLogger(__name__)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]
ADMIN_PHONE = os.getenv("ADMIN_PHONE")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
ADMIN_COUNTRY_CODE = os.getenv("ADMIN_COUNTRY_CODE", "+58")
VERSION = "1.0.0"


def setup_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s",
    )


class Services:
    """Everything the routes need, built around one injected store."""

    def __init__(self, store: Store, sms_sender: Optional[SmsSender] = None, bcrypt_rounds: int = BCRYPT_ROUNDS):
        self.store = store
        self.catalog = CatalogService(store)
        self.identity = IdentityService(store, sms_sender=sms_sender, rounds=bcrypt_rounds)
        self.carts = CartService(store)
        self.orders = OrderService(store)
        self.reporting = ReportingService(store)
        self.widgets = WidgetService(store)


app = FastAPI(title="Russo Store API", version=VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup():
    setup_logging()
    if getattr(app.state, "services", None) is None:
        app.state.services = Services(connect())
    services = app.state.services
    services.store.ensure_indexes()
    if ADMIN_PHONE and ADMIN_PASSWORD:
        services.identity.seed_admin(ADMIN_PHONE, ADMIN_PASSWORD, ADMIN_COUNTRY_CODE)


# ---------- Errors ----------

@app.exception_handler(StorageError)
def storage_error_handler(request: Request, exc: StorageError):
    log.error("Storage failure on %s %s", request.method, request.url.path, exc_info=exc.cause or exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RussoError)
def russo_error_handler(request: Request, exc: RussoError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(PyMongoError)
def pymongo_error_handler(request: Request, exc: PyMongoError):
    log.exception("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=StorageError(exc).to_dict())


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": errors})


# ---------- Dependencies ----------

def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user(authorization: Optional[str] = Header(None),
                 services: Services = Depends(get_services)) -> dict:
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
    return services.identity.authenticate(token)


def admin_user(user: dict = Depends(current_user)) -> dict:
    return require_admin(user)


# ---------- Health ----------

@app.get("/")
def read_root():
    return {"message": "Russo API Running"}


@app.get("/api/health")
def health():
    return {
        "status": "online",
        "service": "Russo Backend",
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/test")
def test_database(services: Services = Depends(get_services)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "transactions": services.store.use_transactions,
        "collections": [],
    }
    try:
        response["database_name"] = services.store.name
        response["collections"] = services.store.ping()[:10]
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    return response


# ---------- Auth ----------

@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, services: Services = Depends(get_services)):
    return services.identity.register(
        payload.phone, payload.country_code, payload.password, payload.first_name, payload.last_name
    )


@app.post("/api/auth/verify")
def verify(payload: VerifyRequest, services: Services = Depends(get_services)):
    return services.identity.verify(payload.phone, payload.code)


@app.post("/api/auth/resend-code")
def resend_code(payload: ResendCodeRequest, services: Services = Depends(get_services)):
    return services.identity.resend_code(payload.phone)


@app.post("/api/auth/login")
def login(payload: LoginRequest, services: Services = Depends(get_services)):
    return services.identity.login(payload.phone, payload.password)


@app.get("/api/auth/profile")
def get_profile(user: dict = Depends(current_user), services: Services = Depends(get_services)):
    return {"user": services.identity.profile(user["_id"])}


@app.put("/api/auth/profile")
def update_profile(payload: ProfileUpdate, user: dict = Depends(current_user),
                   services: Services = Depends(get_services)):
    return {"user": services.identity.update_profile(user["_id"], **payload.model_dump())}


@app.get("/api/auth/verify-token")
def verify_token(user: dict = Depends(current_user)):
    return {"valid": True, "userId": str(user["_id"])}


# ---------- Products ----------

@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    gender: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice", ge=0),
    sort: str = "newest",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
):
    return services.catalog.list_products(category, gender, min_price, max_price, sort, page, limit)


@app.get("/api/products/latest")
def latest_product(services: Services = Depends(get_services)):
    return {"product": services.catalog.latest_product()}


@app.get("/api/products/categories")
def categories(services: Services = Depends(get_services)):
    return {"categories": services.catalog.categories()}


@app.get("/api/products/search/{query}")
def search_products(query: str, services: Services = Depends(get_services)):
    return {"products": services.catalog.search(query)}


@app.get("/api/products/{product_id}")
def get_product(product_id: str, services: Services = Depends(get_services)):
    return {"product": services.catalog.get_product(product_id)}


@app.post("/api/products", status_code=201)
def create_product(payload: ProductIn, admin: dict = Depends(admin_user),
                   services: Services = Depends(get_services)):
    return {"product": services.catalog.create_product(payload)}


@app.post("/api/products/{product_id}/3d-model")
def attach_model(product_id: str, payload: ModelAttachRequest, admin: dict = Depends(admin_user),
                 services: Services = Depends(get_services)):
    return {"product": services.catalog.attach_model(product_id, payload.model_3d)}


@app.put("/api/products/{product_id}/stock")
def update_stock(product_id: str, payload: StockUpdate, admin: dict = Depends(admin_user),
                 services: Services = Depends(get_services)):
    return {"product": services.catalog.update_stock(product_id, payload.stock)}


# ---------- Cart ----------

@app.get("/api/cart")
def get_cart(user: dict = Depends(current_user), services: Services = Depends(get_services)):
    return services.carts.get_cart(user["_id"])


@app.post("/api/cart/add")
def cart_add(payload: CartAddRequest, user: dict = Depends(current_user),
             services: Services = Depends(get_services)):
    return services.carts.add_item(user["_id"], payload.product_id, payload.quantity)


@app.put("/api/cart/update/{item_id}")
def cart_update(item_id: str, payload: CartUpdateRequest, user: dict = Depends(current_user),
                services: Services = Depends(get_services)):
    return services.carts.update_quantity(user["_id"], item_id, payload.quantity)


@app.delete("/api/cart/remove/{item_id}")
def cart_remove(item_id: str, user: dict = Depends(current_user), services: Services = Depends(get_services)):
    services.carts.remove_item(user["_id"], item_id)
    return {"message": "Item removed from cart"}


@app.delete("/api/cart/clear")
def cart_clear(user: dict = Depends(current_user), services: Services = Depends(get_services)):
    return {"message": "Cart cleared", "removed": services.carts.clear_cart(user["_id"])}


# ---------- Orders ----------

@app.post("/api/orders/create", status_code=201)
def place_order(payload: OrderCreate, user: dict = Depends(current_user),
                services: Services = Depends(get_services)):
    return services.orders.place_order(user["_id"], payload.shipping_address, payload.payment_method)


@app.get("/api/orders")
def list_orders(user: dict = Depends(current_user), services: Services = Depends(get_services)):
    return {"orders": services.orders.list_orders(user["_id"])}


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(current_user), services: Services = Depends(get_services)):
    return {"order": services.orders.get_order(user["_id"], order_id)}


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, admin: dict = Depends(admin_user),
                        services: Services = Depends(get_services)):
    return {"order": services.orders.update_status(order_id, payload.status, payload.tracking_number)}


@app.post("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, user: dict = Depends(current_user), services: Services = Depends(get_services)):
    return {"order": services.orders.cancel_order(user["_id"], order_id)}


# ---------- Admin ----------

@app.get("/api/admin/stats")
def admin_stats(admin: dict = Depends(admin_user), services: Services = Depends(get_services)):
    return {"stats": services.reporting.stats()}


@app.get("/api/admin/products")
def admin_products(page: int = Query(1, ge=1), limit: int = Query(50, ge=1, le=100),
                   admin: dict = Depends(admin_user), services: Services = Depends(get_services)):
    return {"products": services.reporting.list_products(page, limit)}


@app.get("/api/admin/users")
def admin_users(page: int = Query(1, ge=1), limit: int = Query(50, ge=1, le=100),
                admin: dict = Depends(admin_user), services: Services = Depends(get_services)):
    return {"users": services.reporting.list_users(page, limit)}


@app.get("/api/admin/orders")
def admin_orders(status: Optional[str] = None, page: int = Query(1, ge=1), limit: int = Query(50, ge=1, le=100),
                 admin: dict = Depends(admin_user), services: Services = Depends(get_services)):
    return {"orders": services.reporting.list_orders(status, page, limit)}


# ---------- Widgets ----------

@app.get("/api/widgets")
def list_widgets(user: dict = Depends(current_user), services: Services = Depends(get_services)):
    return {"widgets": services.widgets.list_widgets(user["_id"])}


@app.put("/api/widgets")
def save_widgets(payload: WidgetLayout, user: dict = Depends(current_user),
                 services: Services = Depends(get_services)):
    return {"widgets": services.widgets.save_widgets(user["_id"], payload.widgets)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
