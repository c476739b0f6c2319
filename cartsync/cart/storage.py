"""
Local cart persistence.

``LocalCartStore`` keeps the anonymous cart under one namespaced key of a
``KeyValueBackend``. Backends raise ``StorageFailure``; the store absorbs
those so callers keep working in memory.
"""
import json
from pathlib import Path
from typing import Optional, Protocol, Sequence

from cartsync import config
from cartsync.db import RedisKeys, TTL, get_redis
from cartsync.errors import CartError, StorageFailure
from cartsync.logging import get_logger
from .models import CartLine

logger = get_logger(__name__)


class KeyValueBackend(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryBackend:
    """Process-local backend, used in tests and short-lived sessions."""

    def __init__(self, initial: Optional[dict] = None):
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


class FileBackend:
    """One UTF-8 file per key inside ``directory``."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe_key = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return self.directory / f"{safe_key}.json"

    async def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageFailure(f"Cannot read {path}: {e}") from e

    async def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(value, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise StorageFailure(f"Cannot write {path}: {e}") from e

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageFailure(f"Cannot delete {path}: {e}") from e


class RedisBackend:
    """Upstash Redis backend; persisted carts expire after ``TTL.CART``."""

    def __init__(self, redis=None, ttl: int = TTL.CART):
        self._redis = redis  # Lazy initialization
        self.ttl = ttl

    @property
    def redis(self):
        if self._redis is None:
            try:
                self._redis = get_redis()
            except ValueError as e:
                raise StorageFailure(f"Redis not available: {e}") from e
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.redis.get(RedisKeys.cart_key(key))
        except StorageFailure:
            raise
        except Exception as e:
            raise StorageFailure(f"Redis read failed: {e}") from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self.redis.set(RedisKeys.cart_key(key), value, ex=self.ttl)
        except StorageFailure:
            raise
        except Exception as e:
            raise StorageFailure(f"Redis write failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(RedisKeys.cart_key(key))
        except StorageFailure:
            raise
        except Exception as e:
            raise StorageFailure(f"Redis delete failed: {e}") from e


def serialize_lines(lines: Sequence[CartLine]) -> str:
    """Canonical JSON for a line sequence. Equal lines always give equal bytes."""
    return json.dumps([line.to_dict() for line in lines], ensure_ascii=False, separators=(",", ":"))


def deserialize_lines(blob: str) -> list[CartLine]:
    """Parse a persisted blob. Raises if the blob or any line in it is invalid."""
    records = json.loads(blob)
    if not isinstance(records, list):
        raise CartError(f"Expected a list of cart lines, got {type(records).__name__}")

    lines = [CartLine.from_dict(record) for record in records]
    if len({line.product_id for line in lines}) != len(lines):
        raise CartError("Duplicate product ids in persisted cart")
    return lines


class LocalCartStore:
    """Durable local copy of the cart. Never raises to its callers."""

    def __init__(self, backend: KeyValueBackend, key: str = "cartsync_cart"):
        self.backend = backend
        self.key = key

    async def load(self) -> list[CartLine]:
        """
        Read the persisted cart.

        Returns an empty list when nothing is stored, the blob is corrupt, or
        any line fails validation. Corrupt blobs are wiped so they are not
        parsed again on the next load.
        """
        try:
            blob = await self.backend.get(self.key)
        except StorageFailure as e:
            logger.warning(f"Local cart unreadable, starting empty: {e}")
            await self._wipe()
            return []

        if not blob or blob in ("undefined", "null"):
            return []

        try:
            lines = deserialize_lines(blob)
        except (ValueError, KeyError, TypeError, CartError) as e:
            # json.JSONDecodeError and CartValidationError are ValueErrors
            logger.warning(f"Corrupted local cart discarded: {e}")
            await self._wipe()
            return []

        logger.debug(f"Local cart loaded: {len(lines)} lines")
        return lines

    async def save(self, lines: Sequence[CartLine]) -> bool:
        """Persist ``lines``. Returns False if the backend refused the write."""
        try:
            await self.backend.set(self.key, serialize_lines(lines))
        except StorageFailure as e:
            logger.warning(f"Failed to save local cart, keeping it in memory only: {e}")
            return False
        logger.debug(f"Local cart saved: {len(lines)} lines")
        return True

    async def clear(self) -> bool:
        try:
            await self.backend.delete(self.key)
        except StorageFailure as e:
            logger.warning(f"Failed to clear local cart: {e}")
            return False
        return True

    async def read_raw(self) -> Optional[str]:
        """Raw persisted blob, for diagnostics."""
        try:
            return await self.backend.get(self.key)
        except StorageFailure as e:
            logger.warning(f"Local cart unreadable: {e}")
            return None

    async def _wipe(self) -> None:
        if not await self.clear():
            logger.error("Corrupted local cart could not be wiped")


def create_backend(kind: str, path: Optional[Path] = None) -> KeyValueBackend:
    """Build a backend by name, one of ``config.STORAGE_BACKENDS``."""
    kind = (kind or "").strip().lower()
    if kind not in config.STORAGE_BACKENDS:
        raise ValueError(f"Unknown storage backend {kind!r}, expected one of {', '.join(config.STORAGE_BACKENDS)}")

    if kind == "memory":
        return MemoryBackend()
    if kind == "redis":
        return RedisBackend()
    if path is None:
        raise ValueError("file backend requires a directory path")
    return FileBackend(path)
