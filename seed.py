"""Idempotent demo data: categories, one user per role, a verified seller and a few products."""
import logging

from auth import get_password_hash
from catalog import ProductCatalog
from database import PRODUCTS, SELLER_PROFILES
from filters import ProductFilter
from identity import IdentityStore
from schemas import SellerProfileWrite
from sellers import SellerService

logger = logging.getLogger(__name__)

CATEGORIES = [
    {"name": "Smartphones", "description": "Teléfonos inteligentes de última generación", "icon": "📱"},
    {"name": "Laptops", "description": "Computadoras portátiles", "icon": "💻"},
    {"name": "Tablets", "description": "Tabletas y iPads", "icon": "📱"},
    {"name": "Audio", "description": "Audífonos y accesorios de audio", "icon": "🎧"},
    {"name": "Smartwatch", "description": "Relojes inteligentes", "icon": "⌚"},
]

USERS = [
    {"email": "comprador@appleaura.com", "password": "Buyer2024!", "name": "María González", "role": "buyer"},
    {"email": "vendedor@appleaura.com", "password": "Seller2024!", "name": "Carlos Mendoza", "role": "buyer"},
    {"email": "admin@appleaura.com", "password": "Admin2024!", "name": "Ana Rodríguez", "role": "admin"},
]

PRODUCTS_BY_CATEGORY = [
    ("Laptops", {"title": "MacBook Pro 14", "brand": "Apple", "images": ["/images/products/macbook-pro-14.svg"]},
     {"price_cents": 199999000, "sku": "MBP14-M3", "stock": 12, "discount_percentage": 10}),
    ("Smartphones", {"title": "iPhone 15 Pro Max", "brand": "Apple", "images": ["/images/products/iphone-15-pro-max.svg"]},
     {"price_cents": 129990000, "sku": "IP15PM-256", "stock": 30, "is_free_shipping": True}),
    ("Audio", {"title": "AirPods Pro", "brand": "Apple", "images": ["/images/products/airpods-pro.svg"]},
     {"price_cents": 24999000, "sku": "APP-2", "stock": 50, "discount_percentage": 15, "shipping_cost_cents": 399000}),
]


def seed_demo_data(catalog: ProductCatalog, sellers: SellerService, identity: IdentityStore) -> dict:
    store = catalog.store
    categories = {c.name: c for c in catalog.get_categories()}
    for item in CATEGORIES:
        if item["name"] not in categories:
            categories[item["name"]] = catalog.create_category(item)

    users = {}
    for item in USERS:
        user = identity.get_user_by_email(item["email"])
        if user is None:
            user = identity.create_user(item["email"], get_password_hash(item["password"]), item["name"], item["role"])
        users[item["email"]] = user

    owner = users["vendedor@appleaura.com"]
    profile = sellers.get_profile(owner.id)
    if profile is None:
        profile = sellers.create_profile(owner, SellerProfileWrite(
            display_name="AppleAura Store", description="Distribuidor autorizado", location="Santiago"))
        profile = sellers.update_seller_status(profile.id, "verified")
    elif owner.role == "buyer":
        sellers.create_profile(owner, SellerProfileWrite())

    created = 0
    for category_name, fields, variant in PRODUCTS_BY_CATEGORY:
        if catalog.get_products(ProductFilter(search=fields["title"], limit=1)):
            continue
        catalog.create_product(
            {**fields, "seller_id": profile.id, "category_id": categories[category_name].id, "status": "active"},
            variant,
        )
        created += 1

    # a catalog entry from before variants existed: flat price, no variant rows
    if not store[PRODUCTS].find_one({"slug": "ipad-pro-129"}):
        store.create_document(PRODUCTS, {
            "title": "iPad Pro 12.9", "slug": "ipad-pro-129", "brand": "Apple", "status": "active",
            "sellerId": profile.id, "categoryId": categories["Tablets"].id,
            "images": ["/images/products/ipad-pro-129.svg"], "price": 109990000, "stock": 8,
        })
        created += 1

    logger.info("Seed complete: %s new products", created)
    return {
        "ok": True,
        "categories": len(categories),
        "users": len(users),
        "sellers": store[SELLER_PROFILES].count_documents({}),
        "productsCreated": created,
    }
