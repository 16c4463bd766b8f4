"""
Product aggregation engine and catalog writes.

``ProductCatalog.get_products`` turns a ``ProductFilter`` into a page of
fully hydrated ``ProductView`` objects:

1. first-stage match on the product documents;
2. variant resolution, synthesizing a legacy virtual variant for products
   that have no variant rows;
3. second-stage match on the representative variant (price, discount);
4. seller resolution (profile display name, then owning user name, then a
   fixed label);
5. review count and mean rating;
6. stable sort;
7. offset and limit.

Variants, seller profiles, owning users and reviews are fetched once per
call for the whole working set, never once per product.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel
from pymongo import ASCENDING, DESCENDING

from config import DEFAULT_CURRENCY, SELLER_FALLBACK_NAME, USER_FALLBACK_NAME
from database import CATEGORIES, PRODUCTS, REVIEWS, SELLER_PROFILES, VARIANTS, DocumentStore, id_filter, ids_filter
from errors import ValidationFailure
from filters import ProductFilter, build_product_match, build_variant_match
from identity import IdentityStore
from schemas import (
    Category,
    Product,
    ProductVariant,
    ProductView,
    Review,
    ReviewWrite,
    SellerProfile,
    SellerSummary,
    User,
)

logger = logging.getLogger(__name__)

EPOCH = datetime.min.replace(tzinfo=timezone.utc)

# keys the view computes; stale copies on the product document are dropped
COMPUTED_KEYS = {
    "variants", "variantId", "price", "priceCents", "stock", "sku", "discountPercentage",
    "isFreeShipping", "freeShipping", "shippingCost", "shippingCostCents",
    "seller", "sellerName", "reviewCount", "rating", "reviews", "sellerProfile",
}

SORTS = {
    "newest": (lambda view: view.created_at or EPOCH, True),
    "price_asc": (lambda view: view.price_cents, False),
    "price_desc": (lambda view: view.price_cents, True),
    "rating": (lambda view: view.rating, True),
    "popular": (lambda view: view.review_count, True),
}
# sorts that need sellers/reviews resolved before the page can be cut
ENRICHED_SORTS = {"rating", "popular"}

VARIANT_WRITE_FIELDS = ("sku", "stock", "discount_percentage", "is_free_shipping")


def camelize(data: Dict[str, Any]) -> Dict[str, Any]:
    return {to_camel(key): value for key, value in data.items()}


def slugify(title: str) -> str:
    slug = title.strip().lower().replace(" ", "-")
    return re.sub(r"[^\w-]+", "", slug, flags=re.ASCII)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def split_product_write(payload: BaseModel, partial: bool = False) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Split a flat product payload into product fields and representative-variant fields.

    Money arrives in major units and is stored in minor units. ``id`` and
    ``sellerId`` are never taken from the payload.
    """
    data = payload.model_dump(exclude_unset=partial, exclude={"id", "seller_id"})
    if partial:
        data = {k: v for k, v in data.items() if v is not None}
    variant = {}
    if "price" in data:
        variant["price_cents"] = to_minor_units(data.pop("price"))
    if "shipping_cost" in data:
        variant["shipping_cost_cents"] = to_minor_units(data.pop("shipping_cost"))
    for key in VARIANT_WRITE_FIELDS:
        if key in data:
            variant[key] = data.pop(key)
    return data, variant


def clamp(value: Optional[int], high: Optional[int] = None) -> int:
    value = max(0, value or 0)
    return value if high is None else min(high, value)


def legacy_variant(product: Product) -> ProductVariant:
    """Read-only stand-in for products created before variant rows existed.

    Flat fields are clamped into the variant's ranges; oversold stock reads as 0.
    """
    price = product.price_cents if product.price_cents is not None else product.price
    return ProductVariant(
        id=product.id,
        product_id=product.id,
        sku=product.sku or "DEFAULT-SKU",
        price_cents=clamp(price),
        currency=product.currency or DEFAULT_CURRENCY,
        stock=clamp(product.stock),
        discount_percentage=clamp(product.discount_percentage, 100),
        shipping_cost_cents=clamp(product.shipping_cost_cents),
        is_free_shipping=bool(product.is_free_shipping),
    )


def resolve_variants(product: Product, persisted: List[ProductVariant]) -> List[ProductVariant]:
    return persisted if persisted else [legacy_variant(product)]


def average_rating(reviews: List[Review]) -> float:
    if not reviews:
        return 0.0
    return sum(float(r.rating) for r in reviews) / len(reviews)


def seller_summary(profile: Optional[SellerProfile], owner: Optional[User]) -> SellerSummary:
    if profile is None:
        return SellerSummary(display_name=SELLER_FALLBACK_NAME, name=SELLER_FALLBACK_NAME)
    name = profile.display_name or (owner.name if owner else None) or SELLER_FALLBACK_NAME
    data = profile.model_dump(by_alias=True, exclude={"display_name"})
    return SellerSummary.model_validate({**data, "displayName": name, "name": name})


class ProductCatalog:
    def __init__(self, store: DocumentStore, identity: IdentityStore, images=None):
        self.store = store
        self.identity = identity
        self.images = images

    # ---------- Product pipeline ----------

    def get_products(self, filters: Optional[ProductFilter] = None) -> List[ProductView]:
        filters = filters or ProductFilter()
        if filters.is_lookup:
            filters = filters.model_copy(update={"limit": 1, "offset": 0})

        match = build_product_match(filters)
        docs = self.store[PRODUCTS].find(match.to_mongo()).sort("_id", ASCENDING)
        products = [p for p in (self._parse(Product, doc) for doc in docs) if p is not None]

        variants = self._variants_by_product(p.id for p in products)
        variant_match = build_variant_match(filters)
        rows = []
        for product in products:
            resolved = resolve_variants(product, variants.get(product.id, []))
            if variant_match.matches(resolved[0].model_dump(by_alias=True)):
                rows.append((product, resolved))

        if filters.sort in ENRICHED_SORTS:
            views = self._sort(self._hydrate(rows), filters.sort)
            return self._page(views, filters)

        # price and date sorts only need the rows, so enrich just the page
        views = self._sort([self._assemble(product, resolved) for product, resolved in rows], filters.sort)
        page = self._page(views, filters)
        keep = {view.id for view in page}
        return self._hydrate([(p, v) for p, v in rows if p.id in keep], order=[view.id for view in page])

    def get_product_by_id(self, product_id: str) -> Optional[ProductView]:
        products = self.get_products(ProductFilter(id=product_id, limit=1))
        return products[0] if products else None

    def get_product_by_slug(self, slug: str) -> Optional[ProductView]:
        products = self.get_products(ProductFilter(slug=slug, limit=1))
        return products[0] if products else None

    def find_product(self, product_id: str) -> Optional[Product]:
        """Raw product document, without joins."""
        return self._parse(Product, self.store.find_by_id(PRODUCTS, product_id))

    def _hydrate(self, rows, order: Optional[List[str]] = None) -> List[ProductView]:
        product_ids = [product.id for product, _ in rows]
        reviews = self._reviews_by_product(product_ids)
        profiles, owners = self._sellers([product.seller_id for product, _ in rows])
        views = {}
        for product, resolved in rows:
            profile = profiles.get(product.seller_id)
            seller = seller_summary(profile, owners.get(profile.user_id) if profile else None)
            views[product.id] = self._assemble(product, resolved, seller, reviews.get(product.id, []))
        return [views[i] for i in (order or product_ids)]

    def _assemble(self, product: Product, variants: List[ProductVariant],
                  seller: Optional[SellerSummary] = None, reviews: Optional[List[Review]] = None) -> ProductView:
        rep = variants[0]
        seller = seller or seller_summary(None, None)
        reviews = reviews or []
        base = {k: v for k, v in product.model_dump(by_alias=True).items() if k not in COMPUTED_KEYS}
        return ProductView.model_validate({
            **base,
            "variants": variants,
            "variantId": rep.id,
            "price": rep.price_cents,
            "priceCents": rep.price_cents,
            "stock": rep.stock,
            "sku": rep.sku,
            "discountPercentage": rep.discount_percentage,
            "isFreeShipping": rep.is_free_shipping,
            "freeShipping": rep.is_free_shipping,
            "shippingCost": rep.shipping_cost_cents / 100,
            "shippingCostCents": rep.shipping_cost_cents,
            "seller": seller,
            "sellerName": seller.display_name,
            "reviewCount": len(reviews),
            "rating": average_rating(reviews),
        })

    @staticmethod
    def _sort(views: List[ProductView], sort: Optional[str]) -> List[ProductView]:
        if sort not in SORTS:
            return views
        key, reverse = SORTS[sort]
        return sorted(views, key=key, reverse=reverse)

    @staticmethod
    def _page(views: List[ProductView], filters: ProductFilter) -> List[ProductView]:
        end = None if filters.limit is None else filters.offset + filters.limit
        return views[filters.offset:end]

    def _variants_by_product(self, product_ids: Iterable[str]) -> Dict[str, List[ProductVariant]]:
        ids = list(dict.fromkeys(product_ids))
        grouped: Dict[str, List[ProductVariant]] = {}
        if not ids:
            return grouped
        docs = self.store[VARIANTS].find({"productId": {"$in": ids}}).sort("_id", ASCENDING)
        for doc in docs:
            variant = self._parse(ProductVariant, doc)
            if variant is not None:
                grouped.setdefault(variant.product_id, []).append(variant)
        return grouped

    def _reviews_by_product(self, product_ids: Iterable[str]) -> Dict[str, List[Review]]:
        ids = list(dict.fromkeys(product_ids))
        grouped: Dict[str, List[Review]] = {}
        if not ids:
            return grouped
        for doc in self.store[REVIEWS].find({"productId": {"$in": ids}}):
            review = self._parse(Review, doc)
            if review is not None:
                grouped.setdefault(review.product_id, []).append(review)
        return grouped

    def _sellers(self, seller_ids: Iterable[Optional[str]]) -> Tuple[Dict[str, SellerProfile], Dict[str, User]]:
        ids = [s for s in seller_ids if s]
        profiles: Dict[str, SellerProfile] = {}
        if not ids:
            return profiles, {}
        for doc in self.store[SELLER_PROFILES].find(ids_filter(ids)):
            profile = self._parse(SellerProfile, doc)
            if profile is None:
                continue
            profiles[profile.id] = profile
            profiles[str(doc["_id"])] = profile
        # the identity store is only consulted for profiles without a display name
        owners = self.identity.get_users(p.user_id for p in profiles.values() if not p.display_name)
        return profiles, owners

    @staticmethod
    def _parse(model, doc):
        if not doc:
            return None
        try:
            return model.from_document(doc)
        except ValidationError as exc:
            logger.warning("Skipping malformed %s document %s: %s", model.__name__, doc.get("_id"), exc.errors()[0]["msg"])
            return None

    # ---------- Variants ----------

    def get_variants_by_product_id(self, product_id: str) -> List[ProductVariant]:
        product = self.find_product(product_id)
        ids = [product_id] + ([product.id] if product else [])
        persisted = self._variants_by_product(ids)
        variants = [v for pid in dict.fromkeys(ids) for v in persisted.get(pid, [])]
        if variants or product is None:
            return variants
        return [legacy_variant(product)]

    def get_variant_by_id(self, variant_id: str) -> Optional[ProductVariant]:
        return self._parse(ProductVariant, self.store.find_by_id(VARIANTS, variant_id))

    def create_variant(self, variant: ProductVariant) -> ProductVariant:
        variant_id = self.store.create_document(VARIANTS, variant)
        return variant.model_copy(update={"id": variant_id})

    # ---------- Writes ----------

    def create_product(self, fields: Dict[str, Any], variant_fields: Dict[str, Any]) -> ProductView:
        fields = dict(fields)
        if not fields.get("title"):
            raise ValidationFailure("Product title is required")
        fields["slug"] = fields.get("slug") or slugify(fields["title"])
        if self.store[PRODUCTS].find_one({"slug": fields["slug"]}):
            raise ValidationFailure(f"Slug '{fields['slug']}' is already in use")
        fields.setdefault("status", "draft")
        fields.setdefault("images", [])

        product_id = self.store.create_document(PRODUCTS, camelize(fields))
        self.create_variant(ProductVariant(product_id=product_id, currency=DEFAULT_CURRENCY, **variant_fields))
        logger.info("Product %s created for seller %s", product_id, fields.get("seller_id"))
        return self.get_product_by_id(product_id)

    def update_product(self, product_id: str, fields: Dict[str, Any],
                       variant_fields: Optional[Dict[str, Any]] = None) -> Optional[ProductView]:
        product = self.find_product(product_id)
        if product is None:
            return None
        fields = {k: v for k, v in fields.items() if k not in ("id", "seller_id")}
        if fields.get("slug") and fields["slug"] != product.slug:
            if self.store[PRODUCTS].find_one({"slug": fields["slug"]}):
                raise ValidationFailure(f"Slug '{fields['slug']}' is already in use")
        if fields:
            self.store[PRODUCTS].update_one(id_filter(product.id), {"$set": camelize(fields)})

        if variant_fields:
            persisted = self._variants_by_product([product.id]).get(product.id)
            if persisted:
                self.store[VARIANTS].update_one(id_filter(persisted[0].id), {"$set": camelize(variant_fields)})
            else:
                # first write to a legacy product turns its virtual variant into a real row
                seed = legacy_variant(product).model_dump(exclude={"id"})
                self.create_variant(ProductVariant(**{**seed, **variant_fields}))
        logger.info("Product %s updated", product.id)
        return self.get_product_by_id(product.id)

    def delete_product(self, product_id: str) -> bool:
        product = self.find_product(product_id)
        if product is None:
            return False
        if self.images is not None:
            for url in product.images:
                self.images.delete_image(url)
        self.store[PRODUCTS].delete_one(id_filter(product.id))
        self.store[VARIANTS].delete_many({"productId": {"$in": list({product.id, product_id})}})
        self.store[REVIEWS].delete_many({"productId": {"$in": list({product.id, product_id})}})
        logger.info("Product %s deleted with its variants and reviews", product.id)
        return True

    # ---------- Categories ----------

    def get_categories(self) -> List[Category]:
        return [c for c in (self._parse(Category, d) for d in self.store.get_documents(CATEGORIES)) if c]

    def get_category_by_id(self, category_id: str) -> Optional[Category]:
        return self._parse(Category, self.store.find_by_id(CATEGORIES, category_id))

    def create_category(self, category: Union[Category, Dict[str, Any]]) -> Category:
        if isinstance(category, dict):
            category = Category.model_validate(category)
        category_id = self.store.create_document(CATEGORIES, category)
        return category.model_copy(update={"id": category_id})

    # ---------- Reviews ----------

    def get_reviews_by_product_id(self, product_id: str) -> List[Review]:
        docs = self.store[REVIEWS].find({"productId": product_id}).sort("createdAt", DESCENDING)
        reviews = [r for r in (self._parse(Review, d) for d in docs) if r]
        users = self.identity.get_users(r.user_id for r in reviews)
        return [
            r.model_copy(update={"user_name": users[r.user_id].name if r.user_id in users else USER_FALLBACK_NAME})
            for r in reviews
        ]

    def create_review(self, user: User, product_id: str, review: ReviewWrite) -> Review:
        record = Review(
            user_id=str(user.id),
            product_id=product_id,
            rating=review.rating,
            comment=review.comment,
            user_name=user.name,
            created_at=datetime.now(timezone.utc),
        )
        review_id = self.store.create_document(REVIEWS, record)
        return record.model_copy(update={"id": review_id})
