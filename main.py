import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthService, get_current_user, get_optional_user, require_admin
from catalog import CatalogService
from config import Settings
from database import Database
from errors import ForbiddenError, InternalError, ShopError
from models import User
from orders import OrderService
from payments import build_payment_policy
from schemas import (
    CheckoutIn,
    CreateOrderRequest,
    ImageUpload,
    LoginRequest,
    ProductIn,
    StatusUpdate,
    UserCreate,
)
from uploads import UploadService

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    db = Database(settings.database_url)
    db.create_all()
    uploads = UploadService(db, settings)
    catalog = CatalogService(db, settings, uploads)
    auth = AuthService(db, settings)
    orders = OrderService(db, build_payment_policy(settings))

    if settings.seed_sample_data:
        catalog.seed_sample_data()
    if settings.admin_username and settings.admin_email and settings.admin_password:
        auth.ensure_admin(settings.admin_username, settings.admin_email, settings.admin_password)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        db.dispose()

    app = FastAPI(title="Storefront API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    app.state.uploads = uploads
    app.state.catalog = catalog
    app.state.auth = auth
    app.state.orders = orders

    @app.middleware("http")
    async def log_and_add_headers(request: Request, call_next):
        logger.info("%s %s", request.method, request.url.path)
        try:
            response = await call_next(request)
        except Exception as exc:
            # unhandled errors; the 500 still passes through the header and CORS layers
            response = _internal_error(request, exc)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response

    # outermost layer
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handlers
    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        if exc.status_code >= 500:
            return _internal_error(request, exc)
        body = {"error": exc.message}
        if exc.code:
            body["code"] = exc.code
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(status_code=exc.status_code, content=body, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "Invalid request"
        if errors:
            first = errors[0]
            field = ".".join(
                str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")
            )
            message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={
                "error": "Not found",
                "message": f"Route {request.method} {request.url.path} not found",
            })
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    # Routes
    @app.get("/")
    def root():
        return {
            "message": "Storefront API",
            "version": "1.0.0",
            "endpoints": {
                "products": "/api/products",
                "upload": "/api/upload-image",
                "checkout": "/api/checkout",
                "orders": "/api/orders",
                "auth": "/api/auth",
                "health": "/healthz",
                "images": "/images",
            },
        }

    @app.get("/healthz")
    def healthz():
        if db.health_check():
            return {"status": "healthy", "timestamp": _now(), "database": "connected"}
        return JSONResponse(status_code=503, content={
            "status": "unhealthy", "timestamp": _now(), "database": "disconnected",
        })

    # Auth endpoints
    @app.post("/api/auth/register", status_code=201)
    def register(payload: UserCreate):
        return auth.register(payload.username, payload.email, payload.password)

    @app.post("/api/auth/login")
    def login(payload: LoginRequest):
        return auth.login(payload.username, payload.password)

    @app.get("/api/auth/verify")
    def verify(user: User = Depends(get_current_user)):
        return {"id": user.id, "username": user.username, "email": user.email, "isAdmin": user.is_admin}

    @app.get("/api/auth/profile")
    def profile(user: User = Depends(get_current_user)):
        return auth.get_profile(user.id)

    # Product endpoints
    @app.get("/api/products")
    def list_products(page: Optional[str] = None, limit: Optional[str] = None, search: Optional[str] = None):
        return catalog.list_products(page, limit, search)

    @app.get("/api/products/{product_id}")
    def get_product(product_id: int):
        return catalog.get_product(product_id)

    @app.post("/api/products", status_code=201, dependencies=[Depends(require_admin)])
    def create_product(payload: ProductIn):
        product = catalog.create_product(
            payload.name, payload.price, payload.description, payload.image_base64
        )
        return {"message": "Product created successfully", "product": product}

    @app.post("/api/upload-image", dependencies=[Depends(require_admin)])
    def upload_image(payload: ImageUpload):
        return uploads.store_image(payload.data_base64, payload.filename)

    # Checkout / Orders
    @app.post("/api/checkout", status_code=201)
    def checkout(payload: CheckoutIn, user: Optional[User] = Depends(get_optional_user)):
        return orders.checkout(payload.cart, payload.billing, user_id=user.id if user else None)

    @app.post("/api/orders", status_code=201)
    def create_order(payload: CreateOrderRequest, user: Optional[User] = Depends(get_optional_user)):
        return orders.create_order(
            payload.items, payload.shipping_info, payload.payment_info, user_id=user.id if user else None
        )

    @app.get("/api/orders", dependencies=[Depends(require_admin)])
    def list_orders():
        return orders.list_orders()

    @app.get("/api/orders/search", dependencies=[Depends(require_admin)])
    def search_orders(status: Optional[str] = None):
        return orders.search_orders(status)

    @app.get("/api/orders/{order_id}")
    def get_order(order_id: int, user: User = Depends(get_current_user)):
        order = orders.get_order(order_id)
        if not user.is_admin and order["user_id"] != user.id:
            raise ForbiddenError("You do not have access to this order")
        return order

    @app.patch("/api/orders/{order_id}/status", dependencies=[Depends(require_admin)])
    def update_order_status(order_id: int, payload: StatusUpdate):
        return orders.update_status(order_id, payload.status)

    @app.delete("/api/orders/{order_id}", dependencies=[Depends(require_admin)])
    def delete_order(order_id: int):
        return orders.delete_order(order_id)

    app.mount("/images", StaticFiles(directory=str(uploads.image_dir)), name="images")

    return app


def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    """Log ``exc`` and answer with a generic InternalError body."""
    correlation_id = uuid.uuid4().hex
    logger.error(
        "Unhandled error on %s %s [%s]", request.method, request.url.path, correlation_id,
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    error = InternalError()
    return JSONResponse(status_code=error.status_code, content={
        "error": "Internal server error",
        "message": error.message,
        "correlationId": correlation_id,
    })


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run("main:create_app", factory=True, host=settings.host, port=settings.port)
