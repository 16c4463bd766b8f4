import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, get_password_hash
from cart import CartService
from catalog import ProductCatalog
from database import DocumentStore
from identity import IdentityStore
from images import ImageStore
from main import create_app
from orders import OrderService
from reporting import ReportingService
from sellers import SellerService


@pytest.fixture
def store():
    documents = DocumentStore(name="auramarket_test", client=mongomock.MongoClient()).init()
    yield documents
    documents.close()


@pytest.fixture
def identity(tmp_path):
    users = IdentityStore(f"sqlite:///{tmp_path}/identity.db").init()
    yield users
    users.close()


@pytest.fixture
def images(store):
    return ImageStore(store)


@pytest.fixture
def catalog(store, identity, images):
    return ProductCatalog(store, identity, images)


@pytest.fixture
def cart(store, catalog):
    return CartService(store, catalog)


@pytest.fixture
def sellers(store, identity):
    return SellerService(store, identity)


@pytest.fixture
def orders(store, cart):
    return OrderService(store, cart)


@pytest.fixture
def reporting(store, identity):
    return ReportingService(store, identity)


@pytest.fixture
def make_user(identity):
    def _make(email, role="buyer", name=None, password="secret123"):
        return identity.create_user(email, get_password_hash(password), name, role)

    return _make


@pytest.fixture
def client(store, identity):
    app = create_app(store, identity)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers
