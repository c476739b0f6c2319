"""Cart models with Decimal-based pricing."""
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from cartsync.errors import CartValidationError, ERROR_INVALID_PRODUCT, ERROR_INVALID_QUANTITY
from cartsync.money import is_positive_amount, multiply, round_money, to_decimal


class CartOrigin(str, Enum):
    """Which store last produced the cart contents."""
    LOCAL = "local"
    REMOTE = "remote"


class CartStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    SYNCING = "syncing"


_SNAPSHOT_FIELDS = ("name", "brand", "image", "category")


@dataclass(frozen=True)
class ProductSnapshot:
    """Display fields copied from the catalog when the line was added. Cosmetic only."""
    name: str
    brand: Optional[str] = None
    image: Optional[str] = None
    category: Optional[str] = None
    extra: dict = field(default_factory=dict, compare=False)
    # Optional fields stored as an explicit null, written back as null
    explicit_nulls: frozenset = field(default=frozenset(), compare=False, repr=False)

    def to_dict(self) -> dict:
        data = {"name": self.name}
        for key in _SNAPSHOT_FIELDS[1:]:
            value = getattr(self, key)
            if value is not None or key in self.explicit_nulls:
                data[key] = value
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> "ProductSnapshot":
        """Unknown keys are kept in ``extra``, missing optional keys default to None."""
        extra = {k: v for k, v in data.items() if k not in _SNAPSHOT_FIELDS}
        return cls(
            name=data.get("name") or "",
            brand=data.get("brand"),
            image=data.get("image"),
            category=data.get("category"),
            extra=extra,
            explicit_nulls=frozenset(k for k in _SNAPSHOT_FIELDS[1:] if k in data and data[k] is None),
        )


@dataclass(frozen=True)
class CartLine:
    """One product's presence in a cart."""
    product_id: str
    quantity: int
    unit_price: Decimal
    product: ProductSnapshot

    def __post_init__(self):
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price))

    @property
    def name(self) -> str:
        return self.product.name

    @property
    def total_price(self) -> Decimal:
        return multiply(self.unit_price, self.quantity)

    def with_quantity(self, quantity: int) -> "CartLine":
        return replace(self, quantity=quantity)

    def to_dict(self) -> dict:
        """Convert to the persisted record shape."""
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "product": self.product.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "CartLine":
        """Create from a persisted record. Raises on a missing or invalid field."""
        if not isinstance(data, Mapping):
            raise CartValidationError(f"Cart line must be an object, got {type(data).__name__}")

        product_id = data["product_id"]
        snapshot = data.get("product") or {}
        if not isinstance(snapshot, Mapping):
            raise CartValidationError("Cart line product snapshot must be an object")

        line = cls(
            product_id=product_id,
            quantity=data["quantity"],
            unit_price=to_decimal(data["unit_price"]),
            product=ProductSnapshot.from_dict(snapshot),
        )
        validate_line(line)
        return line


@dataclass(frozen=True)
class Product:
    """
    Catalog product handed to ``add_to_cart``.

    ``from_dict`` accepts both the snake_case shape and the catalog API
    shape (``_id``, ``productName``, ``sellingPrice``, ``brandName``,
    ``productImage``).
    """
    id: str
    name: str
    price: Decimal
    brand: Optional[str] = None
    image: Optional[str] = None
    category: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "price", to_decimal(self.price))

    @classmethod
    def from_dict(cls, data: Mapping) -> "Product":
        selling_price = data.get("sellingPrice")
        price = selling_price if is_positive_amount(selling_price) else data.get("price")

        image = data.get("image", data.get("productImage"))
        if isinstance(image, (list, tuple)):
            image = image[0] if image else None

        return cls(
            id=str(data.get("id") or data.get("_id") or data.get("product_id") or ""),
            name=data.get("name") or data.get("productName") or "",
            price=to_decimal(price),
            brand=data.get("brand", data.get("brandName")),
            image=image,
            category=data.get("category"),
        )

    def to_line(self, quantity: int) -> CartLine:
        """Build a validated cart line for this product."""
        line = CartLine(
            product_id=self.id,
            quantity=quantity,
            unit_price=self.price,
            product=ProductSnapshot(
                name=self.name,
                brand=self.brand,
                image=self.image,
                category=self.category,
            ),
        )
        validate_line(line)
        return line


def validate_quantity(quantity: Any) -> int:
    """Return ``quantity`` as an int if it is a whole number >= 1."""
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
        raise CartValidationError(ERROR_INVALID_QUANTITY)
    if quantity < 1 or int(quantity) != quantity:
        raise CartValidationError(ERROR_INVALID_QUANTITY)
    return int(quantity)


def validate_line(line: CartLine) -> None:
    """A line is valid with an id, a name, a quantity >= 1 and a positive price."""
    if not line.product_id or not isinstance(line.product_id, str):
        raise CartValidationError(ERROR_INVALID_PRODUCT)
    if not line.product.name or not isinstance(line.product.name, str):
        raise CartValidationError(ERROR_INVALID_PRODUCT)
    if not is_positive_amount(line.unit_price):
        raise CartValidationError(ERROR_INVALID_PRODUCT)
    if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity < 1:
        raise CartValidationError(ERROR_INVALID_QUANTITY)


# =============================================================================
# Line operations
#
# Pure functions over line tuples. Insertion order is display order and a
# product id appears at most once.
# =============================================================================


def merge_lines(base: Sequence[CartLine], incoming: Iterable[CartLine]) -> tuple[CartLine, ...]:
    """Add ``incoming`` into ``base``: quantities of known products sum, new products append."""
    merged = {line.product_id: line for line in base}
    for line in incoming:
        existing = merged.get(line.product_id)
        if existing is not None:
            merged[line.product_id] = existing.with_quantity(existing.quantity + line.quantity)
        else:
            merged[line.product_id] = line
    return tuple(merged.values())


def add_line(lines: Sequence[CartLine], line: CartLine) -> tuple[CartLine, ...]:
    return merge_lines(lines, [line])


def set_quantity(lines: Sequence[CartLine], product_id: str, quantity: int) -> tuple[CartLine, ...]:
    """Set an absolute quantity; zero or less removes the line. Unknown ids are ignored."""
    if quantity <= 0:
        return remove_line(lines, product_id)
    return tuple(
        line.with_quantity(quantity) if line.product_id == product_id else line
        for line in lines
    )


def remove_line(lines: Sequence[CartLine], product_id: str) -> tuple[CartLine, ...]:
    return tuple(line for line in lines if line.product_id != product_id)


@dataclass(frozen=True)
class CartState:
    """Immutable snapshot of the cart owned by the controller."""
    lines: tuple[CartLine, ...] = ()
    origin: CartOrigin = CartOrigin.LOCAL
    status: CartStatus = CartStatus.UNINITIALIZED

    @property
    def item_count(self) -> int:
        """Total number of units in the cart."""
        return sum(line.quantity for line in self.lines)

    @property
    def total(self) -> Decimal:
        """Sum of unit price times quantity, rounded to cents."""
        return round_money(sum((line.total_price for line in self.lines), Decimal("0")))

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def get_line(self, product_id: str) -> Optional[CartLine]:
        return next((line for line in self.lines if line.product_id == product_id), None)

    def contains(self, product_id: str) -> bool:
        return self.get_line(product_id) is not None

    def evolve(self, **changes) -> "CartState":
        if "lines" in changes:
            changes["lines"] = tuple(changes["lines"])
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "lines": [line.to_dict() for line in self.lines],
            "origin": self.origin.value,
            "status": self.status.value,
            "item_count": self.item_count,
            "total": str(self.total),
        }
