import logging
from typing import List, Optional, Tuple

from pymongo import ASCENDING

from catalog import ProductCatalog
from database import CART_ITEMS, DocumentStore
from errors import ValidationFailure
from schemas import CartItem, CartLine, Product, ProductVariant

logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE = "placeholder.jpg"


class CartService:
    def __init__(self, store: DocumentStore, catalog: ProductCatalog):
        self.store = store
        self.catalog = catalog

    def get_cart(self, user_id: str) -> List[CartLine]:
        docs = self.store[CART_ITEMS].find({"userId": str(user_id)}).sort("_id", ASCENDING)
        return [self._hydrate(CartItem.from_document(doc)) for doc in docs]

    def resolve_line(self, variant_id: str) -> Tuple[Optional[ProductVariant], Optional[Product]]:
        """Walk variant -> product, falling back to reading ``variant_id`` as a product id."""
        variant = self.catalog.get_variant_by_id(variant_id)
        if variant is not None:
            return variant, self.catalog.find_product(variant.product_id)

        product = self.catalog.find_product(variant_id)
        if product is None:
            return None, None
        # TODO: carts written before variants existed store the product id here;
        # remove once those rows are migrated to real variant ids
        # (DESIGN.md, "Virtual variant id")
        logger.warning("Cart variant %s resolved as a product id", variant_id)
        return self.catalog.get_variants_by_product_id(product.id)[0], product

    def _hydrate(self, item: CartItem) -> CartLine:
        variant, product = self.resolve_line(item.variant_id)
        if variant is None:
            logger.warning("Cart item %s points at unknown variant %s", item.id, item.variant_id)
            return CartLine(
                **item.model_dump(),
                product_name=f"Producto {item.variant_id[:8]}",
                sku=item.variant_id,
                product_price=0,
                available=False,
            )
        return CartLine(
            **item.model_dump(),
            product_id=variant.product_id,
            product_name=product.title if product else f"Producto {item.variant_id[:8]}",
            sku=variant.sku or item.variant_id,
            product_price=variant.price_cents,
            product_currency=variant.currency,
            product_image=product.images[0] if product and product.images else PLACEHOLDER_IMAGE,
            available=product is not None,
        )

    def add_to_cart(self, user_id: str, variant_id: str, quantity: int = 1) -> None:
        if quantity < 1:
            raise ValidationFailure("Quantity must be at least 1")
        self.store[CART_ITEMS].update_one(
            {"userId": str(user_id), "variantId": variant_id},
            {"$inc": {"quantity": quantity}},
            upsert=True,
        )

    def update_cart_item(self, user_id: str, variant_id: str, quantity: int) -> bool:
        """Set an absolute quantity. Zero is stored as-is; callers remove the line instead."""
        if quantity < 0:
            raise ValidationFailure("Quantity cannot be negative")
        result = self.store[CART_ITEMS].update_one(
            {"userId": str(user_id), "variantId": variant_id},
            {"$set": {"quantity": quantity}},
        )
        return result.matched_count > 0

    def remove_from_cart(self, user_id: str, variant_id: str) -> bool:
        result = self.store[CART_ITEMS].delete_one({"userId": str(user_id), "variantId": variant_id})
        return result.deleted_count > 0

    def clear_cart(self, user_id: str) -> int:
        return self.store[CART_ITEMS].delete_many({"userId": str(user_id)}).deleted_count
