"""Cart package: models, local store, remote gateway and controller."""
from .models import CartLine, CartOrigin, CartState, CartStatus, Product, ProductSnapshot
from .storage import FileBackend, LocalCartStore, MemoryBackend, RedisBackend
from .gateway import RemoteCartGateway
from .service import CartController, build_cart_controller, get_cart_controller

__all__ = [
    "CartLine",
    "CartOrigin",
    "CartState",
    "CartStatus",
    "Product",
    "ProductSnapshot",
    "FileBackend",
    "LocalCartStore",
    "MemoryBackend",
    "RedisBackend",
    "RemoteCartGateway",
    "CartController",
    "build_cart_controller",
    "get_cart_controller",
]
