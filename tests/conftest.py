"""Pytest configuration and fixtures"""
import asyncio
import os
from typing import Optional

import pytest

# Keep test runs away from a developer's real cart settings
os.environ.setdefault("CART_API_URL", "https://shop.test/api")
os.environ.setdefault("CART_STORAGE_BACKEND", "memory")

from cartsync.cart.models import (  # noqa: E402
    CartLine,
    Product,
    merge_lines,
    remove_line,
    set_quantity,
    validate_quantity,
)
from cartsync.cart.service import CartController  # noqa: E402
from cartsync.cart.storage import LocalCartStore, MemoryBackend  # noqa: E402
from cartsync.errors import (  # noqa: E402
    CartValidationError,
    NotAuthenticated,
    StorageFailure,
    TerminalGatewayError,
)
from cartsync.identity import AuthSignal  # noqa: E402


class RecordingNotifier:
    """Collects toasts as (level, message) tuples."""

    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def levels(self) -> list[str]:
        return [level for level, _ in self.messages]


class BrokenBackend(MemoryBackend):
    """Backend whose writes fail, like a full or disabled browser storage."""

    async def set(self, key: str, value: str) -> None:
        raise StorageFailure("quota exceeded")


class FakeCartServer:
    """
    In-process stand-in for RemoteCartGateway.

    Keeps one server cart, applies the server merge policy (quantities add),
    and can be told to fail or to delay individual calls.
    """

    def __init__(self, auth: AuthSignal, catalog: dict):
        self.auth = auth
        self.catalog = catalog
        self.lines: tuple[CartLine, ...] = ()
        self.calls: list[tuple] = []
        self.error: Optional[Exception] = None
        self.delays: list[float] = []

    def seed(self, **quantities: int) -> None:
        self.lines = tuple(self.catalog[pid].to_line(qty) for pid, qty in quantities.items())

    async def _call(self, name: str, *args) -> list[CartLine]:
        self.calls.append((name, *args))
        if not self.auth.current.is_identified:
            raise NotAuthenticated()
        if self.delays:
            await asyncio.sleep(self.delays.pop(0))
        if self.error is not None:
            raise self.error
        return list(self.lines)

    async def fetch(self):
        return await self._call("fetch")

    async def fetch_or_merge(self, local_lines):
        await self._call("fetch_or_merge", tuple(local_lines))
        self.lines = merge_lines(self.lines, local_lines)
        return list(self.lines)

    async def add_line(self, product_id, quantity):
        await self._call("add_line", product_id, quantity)
        try:
            validate_quantity(quantity)
        except CartValidationError as e:
            raise TerminalGatewayError(str(e)) from e
        if product_id not in self.catalog:
            raise TerminalGatewayError("Product not found", status_code=404)
        self.lines = merge_lines(self.lines, [self.catalog[product_id].to_line(quantity)])
        return list(self.lines)

    async def update_line(self, product_id, quantity):
        await self._call("update_line", product_id, quantity)
        self.lines = set_quantity(self.lines, product_id, quantity)
        return list(self.lines)

    async def remove_line(self, product_id):
        await self._call("remove_line", product_id)
        self.lines = remove_line(self.lines, product_id)
        return list(self.lines)

    async def clear(self):
        await self._call("clear")
        self.lines = ()
        return []

    async def aclose(self):
        return None

    def quantities(self) -> dict:
        return {line.product_id: line.quantity for line in self.lines}


@pytest.fixture
def catalog():
    """Catalog products keyed by id"""
    return {
        "prod-a": Product(id="prod-a", name="Wireless Mouse", price="25.00", brand="Logi", category="mouse"),
        "prod-b": Product(id="prod-b", name="USB-C Hub", price="40.50", brand="Anker", category="accessories"),
        "prod-p": Product(id="prod-p", name="Phone Case", price="9.99", category="mobiles"),
    }


@pytest.fixture
def sample_product():
    """Product as returned by the catalog API"""
    return {
        "_id": "prod-a",
        "productName": "Wireless Mouse",
        "brandName": "Logi",
        "category": "mouse",
        "productImage": ["https://cdn.test/mouse.png"],
        "price": 30,
        "sellingPrice": 25,
    }


@pytest.fixture
def auth():
    return AuthSignal()


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend):
    return LocalCartStore(backend, key="test_cart")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def server(auth, catalog):
    return FakeCartServer(auth, catalog)


@pytest.fixture
def controller(store, server, auth, notifier):
    return CartController(store, server, auth, notifier=notifier, refresh_attempts=2, refresh_backoff=0)


@pytest.fixture
def broken_backend():
    return BrokenBackend()
