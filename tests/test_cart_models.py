"""
Tests for cart models and line operations
"""

from decimal import Decimal

import pytest

from cartsync.cart.models import (
    CartLine,
    CartOrigin,
    CartState,
    CartStatus,
    Product,
    ProductSnapshot,
    add_line,
    merge_lines,
    remove_line,
    set_quantity,
    validate_quantity,
)
from cartsync.errors import CartValidationError


def _line(product_id: str, quantity: int, price: str = "10.00", name: str = "Item") -> CartLine:
    return CartLine(product_id=product_id, quantity=quantity, unit_price=price, product=ProductSnapshot(name=name))


class TestProduct:
    """Tests for Product input normalization."""

    def test_from_catalog_shape(self, sample_product):
        """Test reading the catalog API shape."""
        product = Product.from_dict(sample_product)

        assert product.id == "prod-a"
        assert product.name == "Wireless Mouse"
        assert product.brand == "Logi"
        assert product.image == "https://cdn.test/mouse.png"
        assert product.price == Decimal("25")

    def test_selling_price_falls_back_to_price(self):
        """Test that a zero selling price uses the list price."""
        product = Product.from_dict({"_id": "p1", "productName": "Cable", "price": 12.5, "sellingPrice": 0})

        assert product.price == Decimal("12.5")

    def test_from_snake_case(self):
        """Test reading the snake_case shape."""
        product = Product.from_dict({"id": "p1", "name": "Cable", "price": "3.10", "image": None})

        assert product.id == "p1"
        assert product.price == Decimal("3.10")
        assert product.image is None

    def test_to_line_validates(self):
        """Test that a product without a price cannot become a line."""
        product = Product(id="p1", name="Cable", price=0)

        with pytest.raises(CartValidationError):
            product.to_line(1)


class TestCartLine:
    """Tests for CartLine serialization."""

    def test_to_dict(self):
        """Test the persisted record shape."""
        line = CartLine(
            product_id="p1",
            quantity=2,
            unit_price=Decimal("19.90"),
            product=ProductSnapshot(name="Cable", brand="Anker"),
        )

        assert line.to_dict() == {
            "product_id": "p1",
            "quantity": 2,
            "unit_price": "19.90",
            "product": {"name": "Cable", "brand": "Anker"},
        }

    def test_from_dict_keeps_unknown_snapshot_fields(self):
        """Test that unknown snapshot fields survive a round trip."""
        record = {
            "product_id": "p1",
            "quantity": 1,
            "unit_price": "5.00",
            "product": {"name": "Cable", "color": "red"},
        }

        line = CartLine.from_dict(record)

        assert line.product.brand is None
        assert line.product.extra == {"color": "red"}
        assert line.to_dict() == record

    @pytest.mark.parametrize("record", [
        {"product_id": "", "quantity": 1, "unit_price": "5.00", "product": {"name": "Cable"}},
        {"product_id": "p1", "quantity": 0, "unit_price": "5.00", "product": {"name": "Cable"}},
        {"product_id": "p1", "quantity": "2", "unit_price": "5.00", "product": {"name": "Cable"}},
        {"product_id": "p1", "quantity": 1, "unit_price": "0", "product": {"name": "Cable"}},
        {"product_id": "p1", "quantity": 1, "unit_price": "5.00", "product": {}},
    ])
    def test_from_dict_rejects_invalid_lines(self, record):
        """Test line validation rules."""
        with pytest.raises(CartValidationError):
            CartLine.from_dict(record)

    def test_total_price(self):
        """Test unit price times quantity."""
        assert _line("p1", 3, "2.50").total_price == Decimal("7.50")


class TestLineOperations:
    """Tests for the pure line operations."""

    def test_add_same_product_accumulates(self):
        """Test that repeated adds keep one line per product."""
        lines = ()
        for _ in range(3):
            lines = add_line(lines, _line("p1", 2))

        assert len(lines) == 1
        assert lines[0].quantity == 6

    def test_add_keeps_insertion_order(self):
        """Test that new products are appended."""
        lines = add_line(add_line((), _line("b", 1)), _line("a", 1))
        lines = add_line(lines, _line("b", 1))

        assert [line.product_id for line in lines] == ["b", "a"]

    def test_set_quantity(self):
        """Test absolute quantity updates."""
        lines = set_quantity((_line("p1", 1), _line("p2", 1)), "p1", 5)

        assert [line.quantity for line in lines] == [5, 1]

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_set_quantity_floor_removes(self, quantity):
        """Test that a quantity of zero or less removes the line."""
        lines = set_quantity((_line("p1", 4), _line("p2", 1)), "p1", quantity)

        assert [line.product_id for line in lines] == ["p2"]
        assert all(line.quantity >= 1 for line in lines)

    def test_remove_unknown_is_noop(self):
        """Test removing a product that is not in the cart."""
        lines = (_line("p1", 1),)

        assert remove_line(lines, "missing") == lines

    def test_merge_additivity(self):
        """Test local {A:2} merged into remote {A:3, B:1}."""
        merged = merge_lines((_line("A", 3), _line("B", 1)), [_line("A", 2)])

        assert {line.product_id: line.quantity for line in merged} == {"A": 5, "B": 1}

    def test_merge_with_empty_sides(self):
        """Test that merging with an empty side is the identity."""
        remote = (_line("A", 3), _line("B", 1))

        assert merge_lines(remote, []) == remote
        assert merge_lines((), remote) == remote

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "1", None])
    def test_validate_quantity_rejects(self, quantity):
        """Test quantity validation."""
        with pytest.raises(CartValidationError):
            validate_quantity(quantity)

    def test_validate_quantity_accepts_whole_float(self):
        """Test that 2.0 is accepted as 2."""
        assert validate_quantity(2.0) == 2


class TestCartState:
    """Tests for CartState derived reads."""

    def test_empty_state(self):
        """Test a fresh state."""
        state = CartState()

        assert state.status == CartStatus.UNINITIALIZED
        assert state.origin == CartOrigin.LOCAL
        assert state.item_count == 0
        assert state.total == Decimal("0.00")
        assert state.is_empty

    def test_derived_reads(self):
        """Test counts, totals and lookups."""
        state = CartState(lines=(_line("p1", 2, "10.00"), _line("p2", 1, "5.55")))

        assert state.item_count == 3
        assert state.total == Decimal("25.55")
        assert state.contains("p1")
        assert not state.contains("p3")
        assert state.get_line("p2").quantity == 1
        assert state.get_line("p3") is None

    def test_evolve_returns_new_state(self):
        """Test that evolve leaves the previous snapshot unchanged."""
        state = CartState()
        ready = state.evolve(status=CartStatus.READY, lines=[_line("p1", 1)])

        assert state.status == CartStatus.UNINITIALIZED
        assert ready.status == CartStatus.READY
        assert isinstance(ready.lines, tuple)

    def test_to_dict(self):
        """Test the state summary."""
        state = CartState(lines=(_line("p1", 2, "1.25"),), origin=CartOrigin.REMOTE, status=CartStatus.READY)

        data = state.to_dict()
        assert data["origin"] == "remote"
        assert data["status"] == "ready"
        assert data["item_count"] == 2
        assert data["total"] == "2.50"
