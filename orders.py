import logging
from datetime import datetime, timezone
from typing import List

from bson import ObjectId
from pymongo import DESCENDING

from cart import CartService
from config import DEFAULT_CURRENCY
from database import ORDERS, DocumentStore
from errors import ValidationFailure
from schemas import Order, OrderCreate, OrderItem

logger = logging.getLogger(__name__)


def seller_filter(seller_id: str) -> dict:
    return {"$or": [{"items.sellerId": seller_id}, {"sellerId": seller_id}]}


class OrderService:
    def __init__(self, store: DocumentStore, cart: CartService):
        self.store = store
        self.cart = cart

    def create_order(self, user_id: str, payload: OrderCreate) -> Order:
        items = []
        currency = payload.currency
        for item in payload.items:
            variant, product = self.cart.resolve_line(item.variant_id)
            if variant is None or product is None:
                raise ValidationFailure(f"Unknown variant {item.variant_id}")
            # seller and price always come from the catalog, never from the buyer
            items.append(OrderItem(
                id=str(ObjectId()),
                variant_id=item.variant_id,
                product_id=product.id,
                seller_id=product.seller_id,
                unit_price_cents=variant.price_cents,
                quantity=item.quantity,
            ))
            currency = currency or variant.currency

        total = sum(i.unit_price_cents * i.quantity for i in items)

        order = Order(
            user_id=str(user_id),
            status="pending",
            total_cents=total,
            currency=currency or DEFAULT_CURRENCY,
            shipping_address_id=payload.shipping_address_id,
            items=items,
            created_at=datetime.now(timezone.utc),
        )
        order_id = self.store.create_document(ORDERS, order)
        logger.info("Order %s placed by user %s for %s", order_id, user_id, total)
        if payload.clear_cart:
            self.cart.clear_cart(user_id)
        return order.model_copy(update={"id": order_id})

    def _orders(self, filter_dict: dict) -> List[Order]:
        docs = self.store.get_documents(ORDERS, filter_dict, sort=[("createdAt", DESCENDING)])
        return [Order.from_document(doc) for doc in docs]

    def get_orders_by_user_id(self, user_id: str) -> List[Order]:
        return self._orders({"userId": str(user_id)})

    def get_orders_by_seller_id(self, seller_id: str) -> List[Order]:
        return self._orders(seller_filter(seller_id))

    def get_all_orders(self) -> List[Order]:
        return self._orders({})
