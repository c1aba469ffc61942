"""Tests for OrderFactory: cart checkout and POS orders."""

import threading
from decimal import Decimal

import pytest

from cartflow.errors import InsufficientStockError, ProductUnavailableError, ValidationError
from cartflow.order_factory import CustomerIdentity, PosItem

from .conftest import make_address


def stock_of(catalog, product_id):
    return catalog.get_product(product_id).stock


class TestCreateFromCart:
    """Tests for checking out a cart."""

    def test_totals_and_pending_state(self, storefront, catalog):
        storefront.carts.add_item("user:u1", "A", 2)
        storefront.carts.add_item("user:u1", "B", 1)

        order = storefront.factory.create_from_cart(
            "user:u1", make_address(), tax="3.10", payment_method_label="card on delivery"
        )

        assert order.subtotal == Decimal("24.50")
        assert order.tax == Decimal("3.10")
        assert order.shipping == Decimal("50.00")
        assert order.total == Decimal("77.60")
        assert order.total == order.subtotal + order.tax + order.shipping
        assert sum(line.line_total for line in order.items) == order.subtotal
        assert order.status == "pending"
        assert order.customer_ref == "u1"
        assert order.source == "cart"
        assert order.payment_method_label == "card on delivery"
        assert [s.status for s in order.status_history] == ["pending"]

    def test_persists_decrements_logs_and_clears(self, storefront, catalog):
        storefront.carts.add_item("user:u1", "A", 2)

        order = storefront.factory.create_from_cart("user:u1", make_address())

        assert storefront.orders.get(order.id).order_number == order.order_number
        assert stock_of(catalog, "A") == 18
        assert storefront.carts.get("user:u1").is_empty()
        entries = storefront.activity.entries(order.id)
        assert len(entries) == 1
        assert entries[0].action == "created"
        assert entries[0].to_status == "pending"

    def test_reprices_from_catalog(self, storefront, catalog):
        storefront.carts.add_item("user:u1", "A", 1)
        catalog.upsert_product("A", "Apple Crate", "12.00", 20)

        order = storefront.factory.create_from_cart("user:u1", make_address())

        assert order.items[0].unit_price == Decimal("12.00")
        assert order.subtotal == Decimal("12.00")

    def test_unknown_postal_code_ships_free(self, storefront):
        storefront.carts.add_item("user:u1", "A", 1)

        order = storefront.factory.create_from_cart("user:u1", make_address("999999"))

        assert order.shipping == Decimal("0")

    def test_billing_defaults_to_shipping(self, storefront):
        storefront.carts.add_item("user:u1", "A", 1)

        order = storefront.factory.create_from_cart("user:u1", make_address())

        assert order.billing_address == order.shipping_address
        assert order.billing_address is not order.shipping_address

    def test_guest_order_uses_owner_key(self, storefront):
        storefront.carts.add_item("guest:g1", "A", 1)

        order = storefront.factory.create_from_cart("guest:g1", make_address())

        assert order.customer_ref == "guest:g1"

    def test_empty_cart_raises(self, storefront):
        with pytest.raises(ValidationError):
            storefront.factory.create_from_cart("user:u1", make_address())

    def test_missing_address_field_raises(self, storefront):
        storefront.carts.add_item("user:u1", "A", 1)

        with pytest.raises(ValidationError) as exc_info:
            storefront.factory.create_from_cart("user:u1", make_address(city=" "))

        assert exc_info.value.field == "shipping_address.city"
        assert storefront.carts.get("user:u1").quantities() == {"A": 1}

    def test_negative_tax_raises(self, storefront):
        storefront.carts.add_item("user:u1", "A", 1)

        with pytest.raises(ValidationError):
            storefront.factory.create_from_cart("user:u1", make_address(), tax="-1")

    def test_insufficient_stock_changes_nothing(self, storefront, catalog):
        storefront.carts.add_item("user:u1", "A", 3)
        storefront.carts.add_item("user:u1", "B", 6)

        with pytest.raises(InsufficientStockError) as exc_info:
            storefront.factory.create_from_cart("user:u1", make_address())

        assert exc_info.value.product_id == "B"
        assert exc_info.value.available == 5
        assert stock_of(catalog, "A") == 20
        assert stock_of(catalog, "B") == 5
        assert storefront.orders.list_orders() == []
        assert storefront.carts.get("user:u1").quantities() == {"A": 3, "B": 6}

    def test_stock_lost_mid_decrement_restores_earlier_lines(
        self, storefront, catalog, temp_dir, monkeypatch
    ):
        storefront.carts.add_item("user:u1", "A", 3)
        storefront.carts.add_item("user:u1", "B", 2)
        decrement_stock = catalog.decrement_stock

        def competing_decrement(product_id, quantity):
            if product_id == "B":
                # Another order takes most of B after pricing saw 5 in stock
                decrement_stock("B", 4)
            return decrement_stock(product_id, quantity)

        monkeypatch.setattr(catalog, "decrement_stock", competing_decrement)

        with pytest.raises(InsufficientStockError) as exc_info:
            storefront.factory.create_from_cart("user:u1", make_address())

        assert exc_info.value.product_id == "B"
        assert exc_info.value.available == 1
        assert stock_of(catalog, "A") == 20
        assert stock_of(catalog, "B") == 1
        assert storefront.orders.list_orders() == []
        assert list(temp_dir.glob("orders/*.json")) == []
        assert list(temp_dir.glob("activity/*.json")) == []
        assert storefront.carts.get("user:u1").quantities() == {"A": 3, "B": 2}

    @pytest.mark.parametrize("tax", ["NaN", "Infinity", "-Infinity", "sNaN"])
    def test_non_finite_tax_raises(self, storefront, catalog, tax):
        storefront.carts.add_item("user:u1", "A", 1)

        with pytest.raises(ValidationError) as exc_info:
            storefront.factory.create_from_cart("user:u1", make_address(), tax=tax)

        assert exc_info.value.field == "tax"
        assert stock_of(catalog, "A") == 20
        assert storefront.orders.list_orders() == []

    def test_deactivated_product_raises_unavailable(self, storefront, catalog):
        storefront.carts.add_item("user:u1", "C", 1)
        catalog.set_active("C", False)

        with pytest.raises(ProductUnavailableError) as exc_info:
            storefront.factory.create_from_cart("user:u1", make_address())

        assert exc_info.value.reason == "inactive"

    def test_deleted_product_raises_unavailable(self, storefront, catalog):
        storefront.carts.add_item("user:u1", "C", 1)
        catalog.delete_product("C")

        with pytest.raises(ProductUnavailableError) as exc_info:
            storefront.factory.create_from_cart("user:u1", make_address())

        assert exc_info.value.reason == "not_found"

    def test_failure_after_decrement_rolls_back(self, storefront, catalog, monkeypatch):
        storefront.carts.add_item("user:u1", "A", 2)

        def broken_record(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(storefront.activity, "record", broken_record)

        with pytest.raises(OSError):
            storefront.factory.create_from_cart("user:u1", make_address())

        assert stock_of(catalog, "A") == 20
        assert storefront.orders.list_orders() == []
        assert storefront.carts.get("user:u1").quantities() == {"A": 2}

    def test_order_numbers_unique(self, storefront):
        numbers = set()
        for _ in range(5):
            storefront.carts.add_item("user:u1", "C", 1)
            numbers.add(storefront.factory.create_from_cart("user:u1", make_address()).order_number)

        assert len(numbers) == 5
        assert all(n.startswith("ORD-") for n in numbers)

    def test_last_unit_sold_once(self, storefront, catalog):
        catalog.upsert_product("L", "Last One", "5.00", 1)
        owners = [f"user:racer{i}" for i in range(4)]
        for owner in owners:
            storefront.carts.add_item(owner, "L", 1)

        placed, failed = [], []

        def checkout(owner):
            try:
                placed.append(storefront.factory.create_from_cart(owner, make_address()))
            except InsufficientStockError as e:
                failed.append(e)

        threads = [threading.Thread(target=checkout, args=(o,)) for o in owners]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(placed) == 1
        assert len(failed) == 3
        assert stock_of(catalog, "L") == 0


class TestCreateFromAdHocItems:
    """Tests for POS orders."""

    def test_creates_customer_and_order(self, storefront, catalog):
        order = storefront.factory.create_from_ad_hoc_items(
            CustomerIdentity(email="Walkin@Example.com", name="Walk In"),
            [PosItem("A", 1), PosItem("C", 2)],
            make_address(),
            placed_by="admin1",
        )

        customer = storefront.customers.resolve(email="walkin@example.com")
        assert customer is not None
        assert order.customer_ref == customer.id
        assert order.source == "pos"
        assert order.placed_by == "admin1"
        assert order.subtotal == Decimal("24.50")
        assert order.total == order.subtotal + order.tax + order.shipping
        assert stock_of(catalog, "C") == 8
        assert storefront.activity.entries(order.id)[0].action == "created"

    def test_reuses_existing_customer_by_phone(self, storefront):
        first = storefront.factory.create_from_ad_hoc_items(
            CustomerIdentity(phone="+91 98450 12345"), [PosItem("A", 1)], make_address()
        )
        second = storefront.factory.create_from_ad_hoc_items(
            CustomerIdentity(phone="919845012345"), [PosItem("A", 1)], make_address()
        )

        assert first.customer_ref == second.customer_ref
        assert len(storefront.customers.list_customers()) == 1

    def test_duplicate_lines_are_summed(self, storefront):
        order = storefront.factory.create_from_ad_hoc_items(
            CustomerIdentity(email="a@example.com"),
            [PosItem("A", 1), PosItem("A", 2)],
            make_address(),
        )

        assert [(line.product_id, line.quantity) for line in order.items] == [("A", 3)]

    def test_shipping_override(self, storefront):
        order = storefront.factory.create_from_ad_hoc_items(
            CustomerIdentity(email="a@example.com"),
            [PosItem("A", 1)],
            make_address(),
            shipping="0",
        )

        assert order.shipping == Decimal("0")
        assert order.total == Decimal("10.00")

    def test_requires_email_or_phone(self, storefront):
        with pytest.raises(ValidationError):
            storefront.factory.create_from_ad_hoc_items(
                CustomerIdentity(name="Nobody"), [PosItem("A", 1)], make_address()
            )

    def test_requires_items(self, storefront):
        with pytest.raises(ValidationError):
            storefront.factory.create_from_ad_hoc_items(
                CustomerIdentity(email="a@example.com"), [], make_address()
            )

    @pytest.mark.parametrize("quantity", [0, -2])
    def test_rejects_bad_quantity(self, storefront, quantity):
        with pytest.raises(ValidationError):
            storefront.factory.create_from_ad_hoc_items(
                CustomerIdentity(email="a@example.com"), [PosItem("A", quantity)], make_address()
            )

    def test_failed_order_creates_no_customer(self, storefront):
        with pytest.raises(InsufficientStockError):
            storefront.factory.create_from_ad_hoc_items(
                CustomerIdentity(email="new@example.com"), [PosItem("B", 99)], make_address()
            )

        assert storefront.customers.list_customers() == []

    def test_inactive_product_raises(self, storefront):
        with pytest.raises(ProductUnavailableError):
            storefront.factory.create_from_ad_hoc_items(
                CustomerIdentity(email="a@example.com"), [PosItem("X", 1)], make_address()
            )
