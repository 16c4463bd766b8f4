from datetime import datetime, timezone

import pytest

from database import ORDERS
from errors import ValidationFailure
from reporting import trailing_months
from schemas import OrderCreate, OrderItem

NOW = datetime(2024, 3, 15, tzinfo=timezone.utc)


@pytest.fixture
def product(catalog):
    return catalog.create_product({"title": "Mouse", "seller_id": "seller-1"}, {"price_cents": 1500})


def order_doc(status, total, created_at, seller_id="seller-1", user_id="1"):
    return {
        "userId": user_id,
        "status": status,
        "totalCents": total,
        "items": [{"variantId": "v", "sellerId": seller_id, "unitPriceCents": total, "quantity": 1}],
        "createdAt": created_at,
    }


def test_order_lines_are_pinned_from_catalog(orders, cart, product):
    cart.add_to_cart("1", product.variant_id, 2)
    order = orders.create_order("1", OrderCreate(
        items=[OrderItem(variant_id=product.variant_id, quantity=2)], clear_cart=True))

    [item] = order.items
    assert item.seller_id == "seller-1"
    assert item.product_id == product.id
    assert item.unit_price_cents == 1500
    assert order.total_cents == 3000
    assert order.status == "pending"
    assert order.currency == "CLP"
    assert cart.get_cart("1") == []


def test_buyer_cannot_set_status_price_or_total(orders, store, product):
    payload = OrderCreate.model_validate({
        "items": [{"variantId": product.variant_id, "sellerId": "seller-x", "unitPriceCents": 1, "quantity": 2}],
        "totalCents": 1,
        "status": "paid",
    })
    order = orders.create_order("1", payload)

    assert order.status == "pending"
    assert order.items[0].seller_id == "seller-1"
    assert order.items[0].unit_price_cents == 1500
    assert order.total_cents == 3000
    stored = store[ORDERS].find_one({"id": order.id})
    assert stored["status"] == "pending"
    assert stored["totalCents"] == 3000


def test_placed_orders_do_not_count_as_revenue(orders, reporting, product):
    orders.create_order("1", OrderCreate.model_validate({
        "items": [{"variantId": product.variant_id}], "status": "delivered",
    }))
    assert reporting.admin_stats()["totalRevenue"] == 0


def test_unknown_variant_is_rejected(orders):
    with pytest.raises(ValidationFailure):
        orders.create_order("1", OrderCreate(items=[OrderItem(variant_id="ghost")]))


def test_order_listings(orders, store):
    store.create_document(ORDERS, order_doc("paid", 100, datetime(2024, 1, 1, tzinfo=timezone.utc)))
    store.create_document(ORDERS, order_doc("pending", 200, datetime(2024, 2, 1, tzinfo=timezone.utc),
                                            seller_id="seller-2", user_id="2"))

    assert [o.total_cents for o in orders.get_orders_by_user_id("1")] == [100]
    assert [o.total_cents for o in orders.get_orders_by_seller_id("seller-2")] == [200]
    assert [o.total_cents for o in orders.get_all_orders()] == [200, 100]


def test_trailing_months_cross_year_boundary():
    assert trailing_months(NOW) == [(2023, 10), (2023, 11), (2023, 12), (2024, 1), (2024, 2), (2024, 3)]


def test_revenue_chart_counts_completed_orders_only(reporting, store):
    store.create_document(ORDERS, order_doc("paid", 1000, datetime(2024, 3, 2, tzinfo=timezone.utc)))
    store.create_document(ORDERS, order_doc("delivered", 500, datetime(2024, 1, 20, tzinfo=timezone.utc)))
    store.create_document(ORDERS, order_doc("pending", 9999, datetime(2024, 3, 3, tzinfo=timezone.utc)))
    store.create_document(ORDERS, order_doc("paid", 7777, datetime(2023, 6, 1, tzinfo=timezone.utc)))

    chart = reporting.revenue_chart(NOW)
    assert [point["name"] for point in chart] == ["Oct", "Nov", "Dic", "Ene", "Feb", "Mar"]
    assert [point["total"] for point in chart] == [0, 0, 0, 500, 0, 1000]


def test_seller_stats(reporting, store, product):
    store.create_document(ORDERS, order_doc("paid", 1000, NOW))
    store.create_document(ORDERS, order_doc("pending", 300, NOW))
    store.create_document(ORDERS, order_doc("paid", 5000, NOW, seller_id="seller-2"))

    stats = reporting.seller_stats("seller-1")
    assert stats["productCount"] == stats["totalProducts"] == 1
    assert stats["orderCount"] == stats["totalOrders"] == 2
    assert stats["totalRevenue"] == 1000
    assert stats["pendingOrders"] == 1


def test_admin_stats(reporting, store, make_user, product):
    make_user("a@mercado.cl")
    store.create_document(ORDERS, order_doc("shipped", 400, NOW))
    store.create_document(ORDERS, order_doc("cancelled", 900, NOW))

    assert reporting.admin_stats() == {
        "totalUsers": 1,
        "totalOrders": 2,
        "totalRevenue": 400,
        "totalProducts": 1,
    }


def test_category_chart(reporting, catalog):
    audio = catalog.create_category({"name": "Audio"})
    for title in ("Buds", "Speaker"):
        catalog.create_product({"title": title, "category_id": audio.id}, {"price_cents": 1})
    catalog.create_product({"title": "Mystery", "category_id": "gone"}, {"price_cents": 1})

    assert reporting.category_chart() == [
        {"categoryId": audio.id, "name": "Audio", "value": 2},
        {"categoryId": "gone", "name": "Otros", "value": 1},
    ]
