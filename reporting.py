from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from database import CATEGORIES, ORDERS, PRODUCTS, DocumentStore
from identity import IdentityStore
from orders import seller_filter
from schemas import COMPLETED_ORDER_STATUSES, Category, Order

MONTH_NAMES = ["Ene", "Feb", "Mar", "Abr", "May", "Jun", "Jul", "Ago", "Sep", "Oct", "Nov", "Dic"]
REVENUE_WINDOW_MONTHS = 6


def trailing_months(now: datetime, count: int = REVENUE_WINDOW_MONTHS) -> List[Tuple[int, int]]:
    """(year, month) pairs ending with ``now``'s month, oldest first."""
    year, month = now.year, now.month
    months = []
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(months))


class ReportingService:
    def __init__(self, store: DocumentStore, identity: IdentityStore):
        self.store = store
        self.identity = identity

    def _completed_orders(self, filter_dict: Optional[dict] = None) -> List[Order]:
        query = {"status": {"$in": list(COMPLETED_ORDER_STATUSES)}}
        if filter_dict:
            query = {"$and": [query, filter_dict]}
        return [Order.from_document(doc) for doc in self.store[ORDERS].find(query)]

    def seller_stats(self, seller_id: str) -> Dict[str, Any]:
        product_count = self.store[PRODUCTS].count_documents({"sellerId": seller_id})
        orders = [Order.from_document(doc) for doc in self.store[ORDERS].find(seller_filter(seller_id))]
        revenue = sum(
            (item.unit_price_cents or 0) * item.quantity
            for order in orders if order.status in COMPLETED_ORDER_STATUSES
            for item in order.items if item.seller_id == seller_id
        )
        return {
            "productCount": product_count,
            "orderCount": len(orders),
            "totalProducts": product_count,
            "totalOrders": len(orders),
            "totalRevenue": revenue,
            "pendingOrders": sum(1 for order in orders if order.status == "pending"),
        }

    def admin_stats(self) -> Dict[str, Any]:
        return {
            "totalUsers": self.identity.count_users(),
            "totalOrders": self.store[ORDERS].count_documents({}),
            "totalRevenue": sum(order.total_cents for order in self._completed_orders()),
            "totalProducts": self.store[PRODUCTS].count_documents({}),
        }

    def revenue_chart(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or datetime.now(timezone.utc)
        months = trailing_months(now)
        totals = dict.fromkeys(months, 0)
        for order in self._completed_orders():
            if order.created_at is None:
                continue
            key = (order.created_at.year, order.created_at.month)
            if key in totals:
                totals[key] += order.total_cents
        return [
            {"name": MONTH_NAMES[month - 1], "year": year, "month": month, "total": totals[(year, month)]}
            for year, month in months
        ]

    def category_chart(self) -> List[Dict[str, Any]]:
        counts = Counter(doc.get("categoryId") for doc in self.store[PRODUCTS].find({}, {"categoryId": 1}))
        names = {}
        for doc in self.store.get_documents(CATEGORIES):
            category = Category.from_document(doc)
            names[category.id] = category.name
            names[str(doc["_id"])] = category.name
        return [
            {"categoryId": category_id, "name": names.get(category_id, "Otros"), "value": count}
            for category_id, count in counts.most_common()
        ]
