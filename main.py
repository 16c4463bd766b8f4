import logging
import os
from contextlib import asynccontextmanager
from typing import Optional, Tuple, get_args

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pymongo.errors import PyMongoError
from sqlalchemy.exc import SQLAlchemyError

from auth import create_access_token, get_current_user, get_password_hash, require_roles, verify_password
from cart import CartService
from catalog import ProductCatalog, split_product_write, to_minor_units
from config import DEFAULT_PAGE_SIZE, LOG_LEVEL, PORT
from database import DocumentStore
from errors import AccessDenied, MarketplaceError, NotFound, ValidationFailure
from filters import ProductFilter
from identity import IdentityStore
from images import ImageStore
from orders import OrderService
from reporting import ReportingService
from schemas import (
    CartAdd,
    CartUpdate,
    CategoryWrite,
    LoginRequest,
    OrderCreate,
    Product,
    ProductUpdate,
    ProductWrite,
    RegisterRequest,
    ReviewWrite,
    SellerProfile,
    SellerProfileWrite,
    SortKey,
    User,
)
from seed import seed_demo_data
from sellers import SellerService

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("auramarket")

SORT_KEYS = set(get_args(SortKey))


# Helpers
def parse_price_range(value: Optional[str]) -> Tuple[Optional[float], Optional[float]]:
    """``"100-500"`` or ``"500+"`` in major units; ``"all"`` means no bounds."""
    if not value or value == "all":
        return None, None
    try:
        if value.endswith("+"):
            return float(value[:-1]), None
        low, high = value.split("-", 1)
        return float(low), float(high)
    except ValueError:
        raise ValidationFailure(f"Invalid priceRange '{value}'")


def ensure_can_manage(user: User, product: Product, sellers: SellerService) -> None:
    if user.role == "admin":
        return
    if user.role == "seller":
        profile = sellers.get_profile(user.id)
        if profile is not None and product.seller_id == profile.id:
            return
    raise AccessDenied("Access denied")


def require_seller_profile(user: User, sellers: SellerService) -> SellerProfile:
    profile = sellers.get_profile(user.id)
    if profile is None:
        raise NotFound("Seller profile not found")
    return profile


def create_app(documents: Optional[DocumentStore] = None, identity: Optional[IdentityStore] = None) -> FastAPI:
    documents = documents or DocumentStore()
    identity = identity or IdentityStore()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        documents.init()
        identity.init()
        yield
        documents.close()
        identity.close()

    app = FastAPI(title="AuraMarket API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    images = ImageStore(documents)
    catalog = ProductCatalog(documents, identity, images)
    cart = CartService(documents, catalog)
    app.state.documents = documents
    app.state.identity = identity
    app.state.images = images
    app.state.catalog = catalog
    app.state.cart = cart
    app.state.sellers = SellerService(documents, identity)
    app.state.orders = OrderService(documents, cart)
    app.state.reporting = ReportingService(documents, identity)

    register_error_handlers(app)
    register_routes(app)
    return app


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MarketplaceError)
    async def marketplace_error(request: Request, exc: MarketplaceError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    @app.exception_handler(PyMongoError)
    @app.exception_handler(SQLAlchemyError)
    async def store_error(request: Request, exc: Exception):
        logger.exception("Store failure on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Upstream store failure"})


# Dependencies
def get_catalog(request: Request) -> ProductCatalog:
    return request.app.state.catalog


def get_cart(request: Request) -> CartService:
    return request.app.state.cart


def get_sellers(request: Request) -> SellerService:
    return request.app.state.sellers


def get_orders(request: Request) -> OrderService:
    return request.app.state.orders


def get_reporting(request: Request) -> ReportingService:
    return request.app.state.reporting


def get_images(request: Request) -> ImageStore:
    return request.app.state.images


def get_identity(request: Request) -> IdentityStore:
    return request.app.state.identity


require_admin = require_roles("admin")
require_seller = require_roles("seller")
require_seller_or_admin = require_roles("seller", "admin")


def register_routes(app: FastAPI) -> None:
    @app.get("/")
    def read_root():
        return {"message": "AuraMarket backend is running"}

    @app.get("/test")
    def test_database(request: Request):
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "identity": "❌ Not Available",
            "collections": [],
            "users": None,
        }
        try:
            response["collections"] = request.app.state.documents.collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except (PyMongoError, RuntimeError) as e:
            logger.warning("Document store health check failed: %s", e)
            response["database"] = f"⚠️ Error: {str(e)[:50]}"
        try:
            response["users"] = request.app.state.identity.count_users()
            response["identity"] = "✅ Connected & Working"
        except (SQLAlchemyError, RuntimeError) as e:
            logger.warning("Identity store health check failed: %s", e)
            response["identity"] = f"⚠️ Error: {str(e)[:50]}"
        return response

    # Auth
    @app.post("/api/auth/register")
    def register(payload: RegisterRequest, identity: IdentityStore = Depends(get_identity)):
        if identity.get_user_by_email(payload.email):
            raise HTTPException(400, "User already exists")
        user = identity.create_user(payload.email, get_password_hash(payload.password), payload.name, payload.role)
        return {"user": user.public(), "token": create_access_token(user.id)}

    @app.post("/api/auth/login")
    def login(payload: LoginRequest, identity: IdentityStore = Depends(get_identity)):
        user = identity.get_user_by_email(payload.email)
        if not user or not user.password_hash or not verify_password(payload.password, user.password_hash):
            raise HTTPException(401, "Invalid credentials")
        return {"user": user.public(), "token": create_access_token(user.id)}

    @app.get("/api/auth/me")
    def me(current: User = Depends(get_current_user)):
        return {"user": current.public()}

    # Catalog
    @app.get("/api/categories")
    def list_categories(catalog: ProductCatalog = Depends(get_catalog)):
        return [c.to_json() for c in catalog.get_categories()]

    @app.get("/api/products")
    def list_products(
        search: Optional[str] = None,
        category_id: Optional[str] = Query(None, alias="categoryId"),
        seller_id: Optional[str] = Query(None, alias="sellerId"),
        brand: Optional[str] = None,
        status: Optional[str] = None,
        min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
        max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
        price_range: Optional[str] = Query(None, alias="priceRange"),
        has_discount: bool = Query(False, alias="hasDiscount"),
        free_shipping: bool = Query(False, alias="freeShipping"),
        sort: Optional[str] = None,
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=0),
        offset: int = Query(0, ge=0),
        catalog: ProductCatalog = Depends(get_catalog),
    ):
        if price_range:
            min_price, max_price = parse_price_range(price_range)
        filters = ProductFilter(
            search=search,
            category_id=category_id,
            seller_id=seller_id,
            brand=brand,
            status=status,
            min_price=None if min_price is None else to_minor_units(min_price),
            max_price=None if max_price is None else to_minor_units(max_price),
            has_discount=has_discount,
            free_shipping=free_shipping,
            sort=sort if sort in SORT_KEYS else None,
            limit=limit,
            offset=offset,
        )
        return [p.to_json() for p in catalog.get_products(filters)]

    @app.get("/api/products/{product_id}")
    def get_product(product_id: str, catalog: ProductCatalog = Depends(get_catalog)):
        product = catalog.get_product_by_id(product_id) or catalog.get_product_by_slug(product_id)
        if not product:
            raise HTTPException(404, "Product not found")
        return product.to_json()

    @app.get("/api/products/{product_id}/variants")
    def get_variants(product_id: str, catalog: ProductCatalog = Depends(get_catalog)):
        return [v.to_json() for v in catalog.get_variants_by_product_id(product_id)]

    @app.get("/api/products/{product_id}/reviews")
    def get_reviews(product_id: str, catalog: ProductCatalog = Depends(get_catalog)):
        return [r.to_json() for r in catalog.get_reviews_by_product_id(product_id)]

    @app.post("/api/products/{product_id}/reviews")
    def add_review(
        product_id: str,
        review: ReviewWrite,
        current: User = Depends(get_current_user),
        catalog: ProductCatalog = Depends(get_catalog),
    ):
        product = catalog.find_product(product_id)
        if not product:
            raise HTTPException(404, "Product not found")
        return catalog.create_review(current, product.id, review).to_json()

    @app.post("/api/products")
    def create_product(
        payload: ProductWrite,
        current: User = Depends(require_seller_or_admin),
        catalog: ProductCatalog = Depends(get_catalog),
        sellers: SellerService = Depends(get_sellers),
    ):
        if current.role == "seller":
            profile = sellers.get_profile(current.id)
            if profile is None:
                raise HTTPException(400, "Seller profile not found")
            seller_id = profile.id
        else:
            if not payload.seller_id:
                raise HTTPException(400, "Admin must provide a sellerId")
            seller_id = payload.seller_id
        fields, variant = split_product_write(payload)
        fields["seller_id"] = seller_id
        return catalog.create_product(fields, variant).to_json()

    @app.put("/api/products/{product_id}")
    def update_product(
        product_id: str,
        payload: ProductUpdate,
        current: User = Depends(get_current_user),
        catalog: ProductCatalog = Depends(get_catalog),
        sellers: SellerService = Depends(get_sellers),
    ):
        product = catalog.find_product(product_id)
        if not product:
            raise HTTPException(404, "Product not found")
        ensure_can_manage(current, product, sellers)
        fields, variant = split_product_write(payload, partial=True)
        return catalog.update_product(product.id, fields, variant).to_json()

    def delete_owned_product(product_id: str, current: User, catalog: ProductCatalog, sellers: SellerService):
        product = catalog.find_product(product_id)
        if not product:
            raise HTTPException(404, "Product not found")
        ensure_can_manage(current, product, sellers)
        catalog.delete_product(product.id)
        return {"message": "Product deleted"}

    @app.delete("/api/products/{product_id}")
    def delete_product(
        product_id: str,
        current: User = Depends(get_current_user),
        catalog: ProductCatalog = Depends(get_catalog),
        sellers: SellerService = Depends(get_sellers),
    ):
        return delete_owned_product(product_id, current, catalog, sellers)

    # Seller
    @app.get("/api/seller/profile")
    def get_seller_profile(current: User = Depends(get_current_user), sellers: SellerService = Depends(get_sellers)):
        return require_seller_profile(current, sellers).to_json()

    @app.post("/api/seller/profile")
    def create_seller_profile(
        payload: SellerProfileWrite,
        current: User = Depends(get_current_user),
        sellers: SellerService = Depends(get_sellers),
    ):
        return sellers.create_profile(current, payload).to_json()

    @app.put("/api/seller/profile")
    def update_seller_profile(
        payload: SellerProfileWrite,
        current: User = Depends(require_seller),
        sellers: SellerService = Depends(get_sellers),
    ):
        require_seller_profile(current, sellers)
        return sellers.update_profile(current.id, payload).to_json()

    @app.get("/api/seller/stats")
    def seller_stats(
        current: User = Depends(require_seller),
        sellers: SellerService = Depends(get_sellers),
        reporting: ReportingService = Depends(get_reporting),
    ):
        return reporting.seller_stats(require_seller_profile(current, sellers).id)

    @app.get("/api/seller/products")
    def seller_products(
        current: User = Depends(require_seller_or_admin),
        sellers: SellerService = Depends(get_sellers),
        catalog: ProductCatalog = Depends(get_catalog),
    ):
        if current.role == "admin":
            return [p.to_json() for p in catalog.get_products()]
        profile = require_seller_profile(current, sellers)
        return [p.to_json() for p in catalog.get_products(ProductFilter(seller_id=profile.id))]

    @app.get("/api/seller/orders")
    def seller_orders(
        current: User = Depends(require_seller),
        sellers: SellerService = Depends(get_sellers),
        orders: OrderService = Depends(get_orders),
    ):
        profile = require_seller_profile(current, sellers)
        return [o.to_json() for o in orders.get_orders_by_seller_id(profile.id)]

    @app.delete("/api/seller/products/{product_id}")
    def seller_delete_product(
        product_id: str,
        current: User = Depends(require_seller),
        catalog: ProductCatalog = Depends(get_catalog),
        sellers: SellerService = Depends(get_sellers),
    ):
        return delete_owned_product(product_id, current, catalog, sellers)

    # Cart
    @app.get("/api/cart")
    def view_cart(current: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
        return [line.to_json() for line in cart.get_cart(str(current.id))]

    @app.post("/api/cart/add")
    def add_to_cart(payload: CartAdd, current: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
        cart.add_to_cart(str(current.id), payload.variant_id, payload.quantity)
        return {"message": "Item added to cart"}

    @app.put("/api/cart/update")
    def update_cart(payload: CartUpdate, current: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
        if payload.quantity == 0:
            cart.remove_from_cart(str(current.id), payload.variant_id)
            return {"message": "Item removed from cart"}
        cart.update_cart_item(str(current.id), payload.variant_id, payload.quantity)
        return {"message": "Cart updated"}

    @app.delete("/api/cart/remove/{variant_id}")
    def remove_from_cart(variant_id: str, current: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
        cart.remove_from_cart(str(current.id), variant_id)
        return {"message": "Item removed from cart"}

    @app.delete("/api/cart/clear")
    def clear_cart(current: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
        cart.clear_cart(str(current.id))
        return {"message": "Cart cleared"}

    # Orders
    @app.get("/api/orders")
    def list_orders(current: User = Depends(get_current_user), orders: OrderService = Depends(get_orders)):
        return [o.to_json() for o in orders.get_orders_by_user_id(str(current.id))]

    @app.post("/api/orders")
    def create_order(payload: OrderCreate, current: User = Depends(get_current_user), orders: OrderService = Depends(get_orders)):
        return orders.create_order(str(current.id), payload).to_json()

    # Uploads
    @app.post("/api/upload")
    async def upload(
        file: UploadFile = File(...),
        current: User = Depends(get_current_user),
        images: ImageStore = Depends(get_images),
    ):
        if not (file.content_type or "").startswith("image/"):
            raise HTTPException(400, "Only images are allowed")
        data = await file.read()
        if not data:
            raise HTTPException(400, "No file uploaded")
        image_id = images.upload_image(data, file.content_type)
        return {"url": images.url_for(image_id)}

    @app.get("/api/images/{image_id}")
    def get_image(image_id: str, images: ImageStore = Depends(get_images)):
        image = images.get_image(image_id)
        if image is None:
            raise HTTPException(404, "Image not found")
        data, mime_type = image
        return Response(content=data, media_type=mime_type)

    # Admin
    @app.get("/api/admin/stats")
    def admin_stats(current: User = Depends(require_admin), reporting: ReportingService = Depends(get_reporting)):
        return reporting.admin_stats()

    @app.get("/api/admin/analytics/revenue")
    def admin_revenue(current: User = Depends(require_admin), reporting: ReportingService = Depends(get_reporting)):
        return reporting.revenue_chart()

    @app.get("/api/admin/analytics/categories")
    def admin_categories(current: User = Depends(require_admin), reporting: ReportingService = Depends(get_reporting)):
        return reporting.category_chart()

    @app.get("/api/admin/sellers/pending")
    def pending_sellers(current: User = Depends(require_admin), sellers: SellerService = Depends(get_sellers)):
        return [s.to_json() for s in sellers.get_pending_sellers()]

    def set_seller_status(profile_id: str, status: str, sellers: SellerService):
        profile = sellers.update_seller_status(profile_id, status)
        if profile is None:
            raise HTTPException(404, "Seller profile not found")
        return profile.to_json()

    @app.post("/api/admin/sellers/{profile_id}/approve")
    def approve_seller(profile_id: str, current: User = Depends(require_admin), sellers: SellerService = Depends(get_sellers)):
        return set_seller_status(profile_id, "verified", sellers)

    @app.post("/api/admin/sellers/{profile_id}/reject")
    def reject_seller(profile_id: str, current: User = Depends(require_admin), sellers: SellerService = Depends(get_sellers)):
        return set_seller_status(profile_id, "rejected", sellers)

    @app.get("/api/admin/orders")
    def admin_orders(current: User = Depends(require_admin), orders: OrderService = Depends(get_orders)):
        return [o.to_json() for o in orders.get_all_orders()]

    @app.get("/api/admin/users")
    def admin_users(current: User = Depends(require_admin), identity: IdentityStore = Depends(get_identity)):
        return [u.public() for u in identity.list_users()]

    @app.get("/api/admin/products")
    def admin_products(current: User = Depends(require_admin), catalog: ProductCatalog = Depends(get_catalog)):
        return [p.to_json() for p in catalog.get_products()]

    @app.post("/api/admin/categories")
    def admin_create_category(
        payload: CategoryWrite,
        current: User = Depends(require_admin),
        catalog: ProductCatalog = Depends(get_catalog),
    ):
        return catalog.create_category(payload.model_dump()).to_json()

    # Seed sample data if empty
    @app.post("/api/seed")
    def seed(request: Request):
        state = request.app.state
        return seed_demo_data(state.catalog, state.sellers, state.identity)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", PORT)))
