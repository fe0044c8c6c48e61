import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

import accounts
import carts
import catalog
import orders
from database import Database, get_db
from errors import error_response, register_error_handlers
from schemas import (
    CartAddBody,
    CartRemoveBody,
    CartUpdateBody,
    LoginBody,
    OrderCreateBody,
    OrderStatusBody,
    ProductCreateBody,
    ProductUpdateBody,
    RegisterBody,
    UserCreateBody,
    UserUpdateBody,
)
from security import get_current_user, get_settings, require_admin
from settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter()


def ok(message: Optional[str] = None, **payload):
    body = {"success": True}
    if message:
        body["message"] = message
    body.update(payload)
    return body


# ----------------------- Auth -----------------------
@router.post("/auth/register", status_code=201)
def register(body: RegisterBody, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    result = accounts.register(db, body, settings)
    return ok("User registered successfully", **result)


@router.post("/auth/login")
def login(body: LoginBody, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    return ok("Login successful", **accounts.login(db, body, settings))


@router.get("/auth/profile")
def profile(request: Request, user=Depends(get_current_user)):
    return ok("Profile retrieved successfully", user=accounts.current_profile(getattr(request.state, "user", None)))


# ----------------------- Products -----------------------
@router.get("/products")
def list_products(category: Optional[str] = None, q: Optional[str] = None, db: Database = Depends(get_db)):
    return ok(data=catalog.list_products(db, category=category, q=q))


@router.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return ok(data=catalog.get_product(db, product_id))


@router.post("/products", status_code=201)
def create_product(body: ProductCreateBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return ok("Product created successfully", data=catalog.create_product(db, body))


@router.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return ok("Product updated successfully", data=catalog.update_product(db, product_id, body))


@router.delete("/products/{product_id}")
def delete_product(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return ok("Product deleted successfully")


# ----------------------- Cart -----------------------
@router.get("/cart")
def get_cart(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(data=carts.get_cart(db, user["_id"]))


@router.post("/cart/add")
def add_to_cart(body: CartAddBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = carts.add_item(db, user["_id"], body.product_id, body.quantity)
    return ok("Item added to cart successfully", data=cart)


@router.put("/cart/update")
def update_cart_item(body: CartUpdateBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = carts.update_item(db, user["_id"], body.product_id, body.quantity)
    return ok("Cart updated successfully", data=cart)


@router.delete("/cart/remove")
def remove_from_cart(body: CartRemoveBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = carts.remove_item(db, user["_id"], body.product_id)
    return ok("Item removed from cart successfully", data=cart)


@router.delete("/cart/clear")
def clear_cart(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return ok("Cart cleared successfully", data=carts.clear_cart(db, user["_id"]))


# ----------------------- Orders -----------------------
# admin routes are declared first so /orders/admin/all is not read as an order id
@router.get("/orders/admin/all")
def list_all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    return ok(**orders.list_all_orders(db, page, limit, status))


@router.put("/orders/admin/{order_id}/status")
def update_order_status(
    order_id: str,
    body: OrderStatusBody,
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    order = orders.update_order_status(db, order_id, body.status, strict=settings.strict_order_transitions)
    return ok("Order status updated successfully", data=order)


@router.post("/orders", status_code=201)
def create_order(body: OrderCreateBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order = orders.create_order(db, user["_id"], body.shipping_address)
    return ok("Order created successfully", data=order)


@router.get("/orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return ok(**orders.list_user_orders(db, user["_id"], page, limit))


@router.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(data=orders.get_user_order(db, user["_id"], order_id))


@router.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return ok("Order cancelled successfully", data=orders.cancel_order(db, user["_id"], order_id))


# ----------------------- Users (admin) -----------------------
@router.get("/users")
def list_users(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return ok(users=accounts.list_users(db))


@router.get("/users/{user_id}")
def get_user(user_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    return ok(user=accounts.get_user(db, user_id))


@router.post("/users", status_code=201)
def create_user(
    body: UserCreateBody,
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return ok("User created successfully", user=accounts.create_user(db, body, settings))


@router.put("/users/{user_id}")
def update_user(
    user_id: str,
    body: UserUpdateBody,
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return ok("User updated successfully", user=accounts.update_user(db, user_id, body, settings))


@router.delete("/users/{user_id}")
def delete_user(user_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    accounts.delete_user(db, user_id)
    return ok("User deleted successfully")


# ----------------------- App -----------------------
def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """Build the API. A ``database`` may be injected; otherwise one is opened on startup."""
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.db is None:
            app.state.db = Database.connect(settings)
        app.state.db.ensure_indexes()
        try:
            yield
        finally:
            app.state.db.close()

    app = FastAPI(title="E-commerce Backend", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = (time.perf_counter() - started) * 1000
        logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, elapsed)
        return response

    register_error_handlers(app)

    @app.get("/")
    def root():
        return {"message": "E-commerce API running"}

    @app.get("/health")
    def health(db: Database = Depends(get_db)):
        try:
            database = db.status()
        except PyMongoError as exc:
            logger.error("Health check failed: %s", exc)
            return error_response(503, "Database unavailable", "database_unavailable")
        return ok("Service is healthy", database=database)

    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
