"""Product catalog interface and the stock ledger built on top of it."""

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Protocol

from . import config
from .errors import InsufficientStockError, ProductNotFoundError, ValidationError
from .logs import get_logger
from .models import to_money
from .storage import KeyedLocks, read_json, write_json_atomic

PRODUCTS_FILE = "products.json"
_CATALOG_KEY = "catalog"

log = get_logger("catalog")


@dataclass
class Product:
    """Catalog view of a product: only what the order lifecycle needs."""

    id: str
    name: str
    price: Decimal
    stock: int
    active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "stock": self.stock,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Product":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            price=Decimal(data["price"]),
            stock=data.get("stock", 0),
            active=data.get("active", True),
        )


class Catalog(Protocol):
    """External product catalog."""

    def get_product(self, product_id: str) -> Product | None: ...

    def decrement_stock(self, product_id: str, quantity: int) -> bool:
        """Conditionally decrement; False if stock would go negative."""
        ...

    def increment_stock(self, product_id: str, quantity: int) -> None: ...


class ProductCatalog:
    """JSON-file catalog used for local runs and tests."""

    def __init__(self, config_dir: Path | None = None):
        """
        Initialize ProductCatalog.

        Args:
            config_dir: Override data directory (for testing).
        """
        self.config_dir = config_dir or config.data_dir()
        self.path = self.config_dir / PRODUCTS_FILE
        self._locks = KeyedLocks(self.config_dir, "catalog")

    def _load(self) -> dict[str, dict[str, Any]]:
        data = read_json(self.path, default={"products": {}})
        return data.get("products", {})

    def _save(self, products: dict[str, dict[str, Any]]) -> None:
        write_json_atomic(self.path, {"products": products})

    def get_product(self, product_id: str) -> Product | None:
        raw = self._load().get(product_id)
        return Product.from_dict(raw) if raw else None

    def list_products(self) -> list[Product]:
        return [Product.from_dict(p) for p in self._load().values()]

    def upsert_product(
        self,
        product_id: str,
        name: str,
        price: Any,
        stock: int,
        active: bool = True,
    ) -> Product:
        """Create or replace a product (seed data / admin tooling)."""
        price = to_money(price, "price")
        if price < 0:
            raise ValidationError("Price cannot be negative", field="price")
        if stock < 0:
            raise ValidationError("Stock cannot be negative", field="stock")

        product = Product(id=product_id, name=name, price=price, stock=stock, active=active)
        with self._locks.hold(_CATALOG_KEY):
            products = self._load()
            products[product_id] = product.to_dict()
            self._save(products)
        return product

    def set_active(self, product_id: str, active: bool) -> Product:
        with self._locks.hold(_CATALOG_KEY):
            products = self._load()
            if product_id not in products:
                raise ProductNotFoundError(product_id)
            products[product_id]["active"] = active
            self._save(products)
            return Product.from_dict(products[product_id])

    def delete_product(self, product_id: str) -> None:
        with self._locks.hold(_CATALOG_KEY):
            products = self._load()
            if products.pop(product_id, None) is None:
                raise ProductNotFoundError(product_id)
            self._save(products)

    def decrement_stock(self, product_id: str, quantity: int) -> bool:
        with self._locks.hold(_CATALOG_KEY):
            products = self._load()
            raw = products.get(product_id)
            if raw is None or raw.get("stock", 0) < quantity:
                return False
            raw["stock"] = raw.get("stock", 0) - quantity
            self._save(products)
            return True

    def increment_stock(self, product_id: str, quantity: int) -> None:
        with self._locks.hold(_CATALOG_KEY):
            products = self._load()
            raw = products.get(product_id)
            if raw is None:
                raise ProductNotFoundError(product_id)
            raw["stock"] = raw.get("stock", 0) + quantity
            self._save(products)


class StockLedger:
    """Read/decrement gateway over catalog stock."""

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def available(self, product_id: str) -> int:
        """Current stock, 0 for unknown products."""
        product = self.catalog.get_product(product_id)
        return product.stock if product else 0

    def decrement_all(self, quantities: dict[str, int]) -> None:
        """
        Decrement stock for every product, all or nothing.

        Each decrement is conditional on the stock actually present at that
        moment, so a stale earlier read can never oversell. If any product
        falls short, the decrements already applied are reverted.

        Raises:
            InsufficientStockError: Naming the first product that fell short.
        """
        applied: list[tuple[str, int]] = []
        for product_id, quantity in quantities.items():
            if self.catalog.decrement_stock(product_id, quantity):
                applied.append((product_id, quantity))
                continue

            available = self.available(product_id)
            self.restore(applied)
            raise InsufficientStockError(product_id, quantity, available)

    def restore(self, quantities: list[tuple[str, int]] | dict[str, int]) -> None:
        """Give back previously decremented stock."""
        items = quantities.items() if isinstance(quantities, dict) else quantities
        for product_id, quantity in items:
            self.catalog.increment_stock(product_id, quantity)
            log.info("stock_rollback", product_id=product_id, quantity=quantity)
