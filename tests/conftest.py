import os
import tempfile
from pathlib import Path

# storefront.main は import 時に環境変数を読むので先に設定する
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(tempfile.mkdtemp()) / 'storefront.db'}"
os.environ.pop("REDIS_URL", None)
os.environ.pop("AUTH_SERVICE_URL", None)

import pytest

from fakes import InMemoryBackend, RecordingPublisher
from storefront.auth import StaticAuthProvider
from storefront.cart_store import CartStore, MemoryStorage
from storefront.checkout import CheckoutPipeline
from storefront.inventory import InventoryGateway
from storefront.models import Identity
from storefront.notifications import SellerNotifier
from storefront.orders import OrderRepository


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def cart(storage):
    return CartStore(storage)


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def inventory(backend):
    return InventoryGateway(backend)


@pytest.fixture
def orders(backend):
    return OrderRepository(backend)


@pytest.fixture
def notifier(backend, publisher):
    return SellerNotifier(backend, publisher)


@pytest.fixture
def identity():
    return Identity(id="user-1", email="buyer@example.com")


@pytest.fixture
def pipeline(cart, inventory, orders, notifier, identity, publisher):
    return CheckoutPipeline(
        cart,
        inventory,
        orders,
        notifier,
        StaticAuthProvider(identity),
        publisher=publisher,
    )
