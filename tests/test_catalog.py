from datetime import datetime, timedelta, timezone

import pytest

from catalog import legacy_variant, slugify, split_product_write, to_minor_units
from database import PRODUCTS, REVIEWS, SELLER_PROFILES, VARIANTS
from errors import ValidationFailure
from filters import ProductFilter
from schemas import Product, ProductUpdate, ProductWrite, ReviewWrite, SellerProfileWrite


def add_product(catalog, title, price_cents=10000, **variant):
    return catalog.create_product(
        {"title": title, "seller_id": "seller-1", "status": "active"},
        {"price_cents": price_cents, **variant},
    )


def add_legacy_product(store, title, **fields):
    doc = {"title": title, "slug": slugify(title), "sellerId": "seller-1", "status": "active", **fields}
    return store.create_document(PRODUCTS, doc)


@pytest.fixture
def abc(catalog, store):
    a = add_product(catalog, "Product A", 10000, discount_percentage=20)
    b = add_product(catalog, "Product B", 10000, discount_percentage=0)
    c = add_legacy_product(store, "Product C", price=5000, stock=4)
    return a.id, b.id, c


def test_has_discount_returns_only_discounted(catalog, abc):
    a, _, _ = abc
    assert [p.id for p in catalog.get_products(ProductFilter(has_discount=True))] == [a]


def test_every_product_has_exactly_one_variant(catalog, abc):
    products = catalog.get_products()
    assert {p.id for p in products} == set(abc)
    assert all(len(p.variants) == 1 for p in products)


def test_price_asc_puts_cheapest_legacy_product_first(catalog, abc):
    products = catalog.get_products(ProductFilter(sort="price_asc"))
    assert products[0].id == abc[2]
    assert {p.id for p in products[1:]} == set(abc[:2])


def test_price_desc_keeps_ties_in_insertion_order(catalog, abc):
    products = catalog.get_products(ProductFilter(sort="price_desc"))
    assert [p.id for p in products] == [abc[0], abc[1], abc[2]]


def test_legacy_variant_is_synthesized_and_never_persisted(catalog, store, abc):
    legacy_id = abc[2]
    view = catalog.get_product_by_id(legacy_id)
    assert view.variant_id == legacy_id
    assert view.price_cents == 5000
    assert view.stock == 4
    assert view.sku == "DEFAULT-SKU"

    variants = catalog.get_variants_by_product_id(legacy_id)
    assert len(variants) == 1
    assert variants[0].model_dump() == view.variants[0].model_dump()
    assert store[VARIANTS].count_documents({"productId": legacy_id}) == 0


def test_legacy_price_accepts_price_cents_and_numeric_strings(catalog, store):
    product_id = add_legacy_product(store, "Old Phone", priceCents="129990", stock="3")
    view = catalog.get_product_by_id(product_id)
    assert view.price_cents == 129990
    assert view.stock == 3


def test_representative_is_first_inserted_variant(catalog):
    product = add_product(catalog, "Multi", 20000)
    catalog.create_variant(legacy_variant(Product(id=product.id, price_cents=1000)).model_copy(
        update={"id": None, "sku": "SECOND"}))
    view = catalog.get_product_by_id(product.id)
    assert len(view.variants) == 2
    assert view.variant_id == view.variants[0].id
    assert view.price_cents == 20000


def test_price_bounds_use_representative_variant_only(catalog):
    product = add_product(catalog, "Bounded", 20000)
    catalog.create_variant(legacy_variant(Product(id=product.id, price_cents=500)).model_copy(
        update={"id": None, "sku": "CHEAP"}))
    assert catalog.get_products(ProductFilter(max_price=1000)) == []
    assert [p.id for p in catalog.get_products(ProductFilter(min_price=20000, max_price=20000))] == [product.id]


def test_round_trip_price(catalog):
    product = add_product(catalog, "iPhone", 129990)
    assert catalog.get_product_by_id(product.id).variants[0].price_cents == 129990


def test_major_unit_payload_is_converted_to_minor_units():
    fields, variant = split_product_write(ProductWrite(title="Mac", price=1299.9, shipping_cost=3.5, stock=2))
    assert variant["price_cents"] == 129990
    assert variant["shipping_cost_cents"] == 350
    assert variant["stock"] == 2
    assert "price" not in fields
    assert to_minor_units(0.29) == 29


def test_rating_is_zero_without_reviews_and_mean_otherwise(catalog, make_user):
    product = add_product(catalog, "Rated")
    assert catalog.get_product_by_id(product.id).rating == 0.0

    user = make_user("reviewer@mercado.cl")
    catalog.create_review(user, product.id, ReviewWrite(rating=5))
    catalog.create_review(user, product.id, ReviewWrite(rating=2))
    view = catalog.get_product_by_id(product.id)
    assert view.rating == pytest.approx(3.5)
    assert view.review_count == 2


def test_rating_and_popular_sorts(catalog, make_user):
    quiet = add_product(catalog, "Quiet")
    loved = add_product(catalog, "Loved")
    user = make_user("fan@mercado.cl")
    catalog.create_review(user, loved.id, ReviewWrite(rating=5))
    catalog.create_review(user, quiet.id, ReviewWrite(rating=1))
    catalog.create_review(user, loved.id, ReviewWrite(rating=4))

    assert [p.id for p in catalog.get_products(ProductFilter(sort="rating"))] == [loved.id, quiet.id]
    assert [p.id for p in catalog.get_products(ProductFilter(sort="popular", limit=1))] == [loved.id]


def test_newest_sort_treats_missing_dates_as_oldest(catalog, store):
    old = add_legacy_product(store, "Undated", price=100)
    store[PRODUCTS].update_one({"id": old}, {"$unset": {"createdAt": ""}})
    recent = add_product(catalog, "Recent")
    store[PRODUCTS].update_one({"id": recent.id}, {"$set": {"createdAt": datetime.now(timezone.utc) + timedelta(days=1)}})
    middle = add_product(catalog, "Middle")

    assert [p.id for p in catalog.get_products(ProductFilter(sort="newest"))] == [recent.id, middle.id, old]


def test_offset_and_limit(catalog):
    ids = [add_product(catalog, f"Item {i}").id for i in range(5)]
    page = catalog.get_products(ProductFilter(limit=2, offset=2))
    assert [p.id for p in page] == ids[2:4]
    assert catalog.get_products(ProductFilter(offset=10)) == []


def test_search_matches_title_and_description(catalog):
    add_product(catalog, "MacBook Air")
    catalog.create_product({"title": "Laptop stand", "description": "Fits any macbook"}, {"price_cents": 100})
    add_product(catalog, "AirPods")
    titles = {p.title for p in catalog.get_products(ProductFilter(search="MACBOOK"))}
    assert titles == {"MacBook Air", "Laptop stand"}


def test_seller_name_falls_back_to_owner_then_label(catalog, sellers, store, make_user):
    jane = make_user("jane@mercado.cl", name="Jane")
    profile = sellers.create_profile(jane, SellerProfileWrite())
    product = catalog.create_product({"title": "Jane's lamp", "seller_id": profile.id}, {"price_cents": 100})
    assert catalog.get_product_by_id(product.id).seller_name == "Jane"

    orphan_id = store.create_document(SELLER_PROFILES, {"userId": "999", "status": "verified"})
    orphaned = catalog.create_product({"title": "Orphan", "seller_id": orphan_id}, {"price_cents": 100})
    assert catalog.get_product_by_id(orphaned.id).seller_name == "Vendedor"


def test_display_name_wins_over_owner_name(catalog, sellers, make_user):
    owner = make_user("owner@mercado.cl", name="Owner")
    profile = sellers.create_profile(owner, SellerProfileWrite(display_name="Tienda Sur"))
    product = catalog.create_product({"title": "Poncho", "seller_id": profile.id}, {"price_cents": 100})
    view = catalog.get_product_by_id(product.id)
    assert view.seller_name == "Tienda Sur"
    assert view.seller.display_name == "Tienda Sur"
    assert view.seller.id == profile.id


def test_lookup_by_slug(catalog):
    product = add_product(catalog, "Apple Watch Ultra 2")
    assert product.slug == "apple-watch-ultra-2"
    assert catalog.get_product_by_slug("apple-watch-ultra-2").id == product.id
    assert catalog.get_product_by_slug("missing") is None
    assert catalog.get_product_by_id("missing") is None


def test_duplicate_slug_is_rejected(catalog):
    add_product(catalog, "Same Title")
    with pytest.raises(ValidationFailure):
        add_product(catalog, "Same Title")


def test_malformed_documents_are_skipped(catalog, store):
    add_product(catalog, "Good")
    store[PRODUCTS].insert_one({"id": "bad", "title": "Bad", "status": "unknown-status"})
    assert [p.title for p in catalog.get_products()] == ["Good"]


def test_out_of_range_legacy_fields_are_clamped(catalog, store):
    fine = add_legacy_product(store, "Fine", price=100)
    oversold = add_legacy_product(store, "Oversold", price=100, stock=-1)
    generous = add_legacy_product(store, "Generous", price=-5, discountPercentage="150")

    views = {p.id: p for p in catalog.get_products()}
    assert set(views) == {fine, oversold, generous}
    assert views[oversold].stock == 0
    assert views[generous].discount_percentage == 100
    assert views[generous].price_cents == 0
    assert catalog.get_variants_by_product_id(oversold)[0].stock == 0


def test_delete_cascades_to_variants_and_reviews(catalog, store, make_user):
    product = add_product(catalog, "Doomed")
    catalog.create_review(make_user("critic@mercado.cl"), product.id, ReviewWrite(rating=3))

    assert catalog.delete_product(product.id) is True
    assert store[PRODUCTS].count_documents({}) == 0
    assert store[VARIANTS].count_documents({"productId": product.id}) == 0
    assert store[REVIEWS].count_documents({"productId": product.id}) == 0
    assert catalog.delete_product(product.id) is False


def test_delete_removes_local_images_only(catalog, images, store):
    image_id = images.upload_image(b"\x89PNG", "image/png")
    product = catalog.create_product(
        {"title": "Pictured", "images": [images.url_for(image_id), "https://cdn.example.com/a.png"]},
        {"price_cents": 100},
    )
    catalog.delete_product(product.id)
    assert images.get_image(image_id) is None


def test_update_sets_representative_variant(catalog):
    product = add_product(catalog, "Editable", 1000)
    fields, variant = split_product_write(ProductUpdate(title="Edited", price=25.0), partial=True)
    view = catalog.update_product(product.id, fields, variant)
    assert view.title == "Edited"
    assert view.price_cents == 2500
    assert len(view.variants) == 1


def test_update_materializes_legacy_variant(catalog, store):
    product_id = add_legacy_product(store, "Legacy Tab", price=7000, stock=2)
    view = catalog.update_product(product_id, {}, {"stock": 9})
    assert store[VARIANTS].count_documents({"productId": product_id}) == 1
    assert view.stock == 9
    assert view.price_cents == 7000
    assert view.variant_id != product_id


def test_update_missing_product_returns_none(catalog):
    assert catalog.update_product("nope", {"title": "x"}) is None


def test_variants_of_missing_product_is_empty(catalog):
    assert catalog.get_variants_by_product_id("nope") == []


def test_reviews_are_newest_first_with_user_names(catalog, store, make_user):
    product = add_product(catalog, "Reviewed")
    maria = make_user("maria@mercado.cl", name="María")
    first = catalog.create_review(maria, product.id, ReviewWrite(rating=4, comment="bien"))
    store[REVIEWS].update_one({"id": first.id}, {"$set": {"createdAt": datetime(2020, 1, 1, tzinfo=timezone.utc)}})
    catalog.create_review(maria, product.id, ReviewWrite(rating=5))
    store.create_document(REVIEWS, {"userId": "404", "productId": product.id, "rating": "3",
                                    "createdAt": datetime(2019, 1, 1, tzinfo=timezone.utc)})

    reviews = catalog.get_reviews_by_product_id(product.id)
    assert [r.rating for r in reviews] == [5, 4, 3]
    assert [r.user_name for r in reviews] == ["María", "María", "Usuario"]


def test_categories(catalog):
    category = catalog.create_category({"name": "Audio"})
    assert catalog.get_category_by_id(category.id).name == "Audio"
    assert [c.name for c in catalog.get_categories()] == ["Audio"]
