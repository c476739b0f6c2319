"""Cart engine configuration read from the environment."""
import os
from pathlib import Path


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


# Remote cart service
CART_API_URL = os.environ.get("CART_API_URL", "http://localhost:8080/api").rstrip("/")
CART_REQUEST_TIMEOUT = _float_env("CART_REQUEST_TIMEOUT", 10.0)

# Retry policy for the idempotent refresh (GET /cart). Mutations are never retried.
CART_REFRESH_ATTEMPTS = max(1, _int_env("CART_REFRESH_ATTEMPTS", 3))
CART_REFRESH_BACKOFF = _float_env("CART_REFRESH_BACKOFF", 0.5)

# Local persistence
CART_STORAGE_KEY = os.environ.get("CART_STORAGE_KEY", "cartsync_cart")
CART_STORAGE_BACKEND = os.environ.get("CART_STORAGE_BACKEND", "file").lower()  # memory | file | redis
CART_STORAGE_PATH = Path(os.environ.get("CART_STORAGE_PATH", "~/.cartsync")).expanduser()

STORAGE_BACKENDS = ("memory", "file", "redis")
