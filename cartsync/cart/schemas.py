"""Pydantic models for the remote cart service payloads."""
from decimal import Decimal
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from cartsync.errors import CartValidationError
from cartsync.logging import get_logger, sanitize_id_for_logging
from cartsync.money import is_positive_amount, to_decimal, to_float
from .models import CartLine, ProductSnapshot, validate_line

logger = get_logger(__name__)


def _first_image(value) -> Optional[str]:
    if isinstance(value, list):
        return next((img for img in value if isinstance(img, str) and img), None)
    return value or None


class ServerProduct(BaseModel):
    """Catalog product as populated into a server cart item."""
    id: str = Field(alias="_id")
    productName: Optional[str] = None
    brandName: Optional[str] = None
    price: Optional[Decimal] = None
    sellingPrice: Optional[Decimal] = None
    productImage: Union[List[str], str, None] = None
    category: Optional[str] = None

    class Config:
        extra = "ignore"
        populate_by_name = True

    @field_validator("price", "sellingPrice", mode="before")
    @classmethod
    def convert_to_decimal(cls, v):
        return None if v is None else to_decimal(v)


class ServerCartItem(BaseModel):
    """
    One server cart item.

    ``productId`` is either a bare id or the populated product; flat fields on
    the item are denormalized copies used when the product is not populated.
    """
    productId: Union[ServerProduct, str, None] = None
    id: Optional[str] = Field(default=None, alias="_id")
    productName: Optional[str] = None
    brandName: Optional[str] = None
    price: Optional[Decimal] = None
    sellingPrice: Optional[Decimal] = None
    productImage: Union[List[str], str, None] = None
    category: Optional[str] = None
    quantity: int = 1

    class Config:
        extra = "ignore"
        populate_by_name = True

    @field_validator("price", "sellingPrice", mode="before")
    @classmethod
    def convert_to_decimal(cls, v):
        return None if v is None else to_decimal(v)

    def to_line(self) -> CartLine:
        """Normalize into a canonical line. Raises ``CartValidationError`` if incomplete."""
        populated = self.productId if isinstance(self.productId, ServerProduct) else None

        if populated is not None:
            product_id = populated.id
        else:
            product_id = self.productId or self.id

        def pick(attr: str):
            value = getattr(populated, attr, None) if populated is not None else None
            return value if value else getattr(self, attr)

        selling_price = pick("sellingPrice")
        unit_price = selling_price if is_positive_amount(selling_price) else pick("price")

        line = CartLine(
            product_id=product_id or "",
            quantity=self.quantity,
            unit_price=to_decimal(unit_price),
            product=ProductSnapshot(
                name=pick("productName") or "",
                brand=pick("brandName"),
                image=_first_image(pick("productImage")),
                category=pick("category"),
            ),
        )
        validate_line(line)
        return line


class ServerCartData(BaseModel):
    # Items are validated one by one in to_lines so one bad item cannot void the cart
    items: List[Any] = []

    class Config:
        extra = "ignore"

    def to_lines(self) -> list[CartLine]:
        """Canonical lines; items that cannot be represented are dropped with a warning."""
        lines: dict[str, CartLine] = {}
        for index, raw in enumerate(self.items):
            try:
                line = ServerCartItem.model_validate(raw).to_line()
            except ValidationError as e:
                logger.warning(f"Dropping malformed server cart item #{index}: {e.error_count()} field errors")
                continue
            except CartValidationError as e:
                logger.warning(f"Dropping unusable server cart item #{index}: {e}")
                continue
            if line.product_id in lines:
                # Server sent the product twice; keep one line
                logger.warning(f"Duplicate server cart item {sanitize_id_for_logging(line.product_id)}")
                existing = lines[line.product_id]
                line = existing.with_quantity(existing.quantity + line.quantity)
            lines[line.product_id] = line
        return list(lines.values())


class ServerCartResponse(BaseModel):
    """Envelope returned by every cart endpoint."""
    success: bool = False
    error: bool = False
    message: Optional[str] = ""
    data: Optional[ServerCartData] = None

    class Config:
        extra = "ignore"


def line_to_wire(line: CartLine) -> dict:
    """Local line in the shape the sync endpoint expects."""
    return {
        "productId": line.product_id,
        "quantity": line.quantity,
        "productName": line.product.name,
        "brandName": line.product.brand,
        "price": to_float(line.unit_price),
        "productImage": [line.product.image] if line.product.image else [],
        "category": line.product.category,
    }
