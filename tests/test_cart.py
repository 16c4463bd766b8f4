import pytest

from catalog import slugify
from database import CART_ITEMS, PRODUCTS
from errors import ValidationFailure


@pytest.fixture
def product(catalog):
    return catalog.create_product(
        {"title": "AirPods Pro", "seller_id": "seller-1", "images": ["/img/airpods.png"]},
        {"price_cents": 24999000, "sku": "APP-2"},
    )


def test_adding_twice_increments_one_row(cart, store, product):
    cart.add_to_cart("7", product.variant_id, 2)
    cart.add_to_cart("7", product.variant_id, 3)

    assert store[CART_ITEMS].count_documents({"userId": "7"}) == 1
    [line] = cart.get_cart("7")
    assert line.quantity == 5


def test_lines_are_hydrated_from_variant_and_product(cart, product):
    cart.add_to_cart("7", product.variant_id)
    [line] = cart.get_cart("7")
    assert line.product_id == product.id
    assert line.product_name == "AirPods Pro"
    assert line.sku == "APP-2"
    assert line.product_price == 24999000
    assert line.product_currency == "CLP"
    assert line.product_image == "/img/airpods.png"
    assert line.available is True


def test_unknown_variant_is_unavailable(cart):
    cart.add_to_cart("7", "0123456789abcdef")
    [line] = cart.get_cart("7")
    assert line.available is False
    assert line.product_price == 0
    assert line.product_name == "Producto 01234567"
    assert line.product_image == "placeholder.jpg"


def test_product_id_in_variant_slot_resolves_through_product(cart, catalog, product):
    cart.add_to_cart("7", product.id)
    [line] = cart.get_cart("7")
    assert line.available is True
    assert line.product_id == product.id
    assert line.product_price == 24999000


def test_legacy_product_in_cart(cart, store):
    legacy_id = store.create_document(PRODUCTS, {
        "title": "iPad Pro 12.9", "slug": slugify("iPad Pro 12.9"), "price": 109990000,
    })
    cart.add_to_cart("7", legacy_id)
    [line] = cart.get_cart("7")
    assert line.product_price == 109990000
    assert line.sku == "DEFAULT-SKU"
    assert line.product_image == "placeholder.jpg"


def test_update_and_remove(cart, product):
    cart.add_to_cart("7", product.variant_id, 1)
    assert cart.update_cart_item("7", product.variant_id, 4) is True
    assert cart.get_cart("7")[0].quantity == 4
    assert cart.update_cart_item("7", "missing", 4) is False

    assert cart.remove_from_cart("7", product.variant_id) is True
    assert cart.get_cart("7") == []


def test_invalid_quantities(cart, product):
    with pytest.raises(ValidationFailure):
        cart.add_to_cart("7", product.variant_id, 0)
    with pytest.raises(ValidationFailure):
        cart.update_cart_item("7", product.variant_id, -1)


def test_clear_only_touches_one_user(cart, product):
    cart.add_to_cart("7", product.variant_id)
    cart.add_to_cart("8", product.variant_id)
    assert cart.clear_cart("7") == 1
    assert cart.get_cart("7") == []
    assert len(cart.get_cart("8")) == 1
