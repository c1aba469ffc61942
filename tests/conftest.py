"""Pytest fixtures for cartflow tests."""

import tempfile
from pathlib import Path

import pytest

from cartflow.catalog import ProductCatalog
from cartflow.models import Address, Order
from cartflow.roles import Actor, Role
from cartflow.service import Storefront


class RecordingInvoiceNotifier:
    """Invoice collaborator that remembers which orders it was told about."""

    def __init__(self):
        self.orders: list[Order] = []

    def order_left_pending(self, order: Order) -> None:
        self.orders.append(order)


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def catalog(temp_dir):
    """Catalog seeded with a few products."""
    catalog = ProductCatalog(temp_dir)
    catalog.upsert_product("A", "Apple Crate", "10.00", 20)
    catalog.upsert_product("B", "Banana Box", "4.50", 5)
    catalog.upsert_product("C", "Cherry Jar", "7.25", 10)
    catalog.upsert_product("X", "Discontinued Gadget", "99.00", 3, active=False)
    return catalog


@pytest.fixture
def invoices():
    return RecordingInvoiceNotifier()


@pytest.fixture
def storefront(temp_dir, catalog, invoices):
    """Storefront over the temp data dir with a seeded catalog."""
    storefront = Storefront(config_dir=temp_dir, catalog=catalog, invoice=invoices)
    storefront.shipping.set_rate("560001", "50.00", description="Bengaluru central")
    return storefront


@pytest.fixture
def customer():
    return Actor.user("u1")


@pytest.fixture
def admin():
    return Actor.user("admin1", Role.ADMIN)


def make_address(postal_code: str = "560001", **overrides) -> Address:
    """Build a complete address, overriding any field."""
    fields = {
        "line1": "12 MG Road",
        "city": "Bengaluru",
        "state": "KA",
        "postal_code": postal_code,
        "country": "IN",
    }
    fields.update(overrides)
    return Address(**fields)
