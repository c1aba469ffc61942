"""Cart storage: one cart per owner key, serialized per owner."""

from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Iterator

from . import config
from .catalog import Catalog, StockLedger
from .errors import (
    CartItemNotFoundError,
    ProductNotFoundError,
    ProductUnavailableError,
    ValidationError,
)
from .logs import get_logger
from .models import Cart, CartItem, _utc_now
from .storage import KeyedLocks, read_json, remove_file, safe_filename, write_json_atomic
from .utils import validate_owner_key

CARTS_DIR = "carts"

log = get_logger("cart_store")


def _check_quantity(quantity: int, allow_zero: bool = False) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("Quantity must be an integer", field="quantity")
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise ValidationError("Quantity must be positive", field="quantity")


def add_line(cart: Cart, product_id: str, quantity: int, unit_price: Decimal) -> CartItem:
    """Add units to a cart line, summing with an existing line for the product."""
    item = cart.find(product_id)
    if item is None:
        item = CartItem(product_id=product_id, quantity=quantity, unit_price_snapshot=unit_price)
        cart.items.append(item)
    else:
        item.quantity += quantity
    return item


class CartStore:
    """Manages carts as one JSON file per owner."""

    def __init__(self, catalog: Catalog, config_dir: Path | None = None):
        """
        Initialize CartStore.

        Args:
            catalog: Product catalog for price snapshots and availability.
            config_dir: Override data directory (for testing).
        """
        self.catalog = catalog
        self.stock = StockLedger(catalog)
        self.config_dir = config_dir or config.data_dir()
        self.carts_dir = self.config_dir / CARTS_DIR
        self._locks = KeyedLocks(self.config_dir, CARTS_DIR)

    def _path(self, owner_key: str) -> Path:
        return self.carts_dir / f"{safe_filename(owner_key)}.json"

    def _load(self, owner_key: str) -> Cart:
        data = read_json(self._path(owner_key))
        if data is None:
            return Cart(owner_key=owner_key)
        return Cart.from_dict(data)

    def _save(self, cart: Cart) -> None:
        cart.updated_at = _utc_now()
        write_json_atomic(self._path(cart.owner_key), cart.to_dict())

    @contextmanager
    def editing(self, owner_key: str) -> Iterator[Cart]:
        """
        Hold the owner's lock and yield the current cart.

        The cart is saved only if the block completes; an exception leaves
        the stored cart exactly as it was.
        """
        validate_owner_key(owner_key)
        with self._locks.hold(owner_key):
            cart = self._load(owner_key)
            yield cart
            self._save(cart)

    # --- Reads ---

    def get(self, owner_key: str) -> Cart:
        """Current cart for an owner (empty if none was created yet)."""
        validate_owner_key(owner_key)
        return self._load(owner_key)

    def availability(self, cart: Cart) -> dict[str, int]:
        """Current stock for each cart line. Advisory only."""
        return {item.product_id: self.stock.available(item.product_id) for item in cart.items}

    # --- Mutations ---

    def add_item(self, owner_key: str, product_id: str, quantity: int = 1) -> Cart:
        """
        Add a product to the cart, summing with an existing line.

        Stock is not enforced here; it is checked when the order is created.

        Raises:
            ValidationError: If quantity is not a positive integer.
            ProductNotFoundError: If the product doesn't exist.
            ProductUnavailableError: If the product is inactive.
        """
        _check_quantity(quantity)
        product = self.catalog.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if not product.active:
            raise ProductUnavailableError(product_id)

        with self.editing(owner_key) as cart:
            item = add_line(cart, product_id, quantity, product.price)

        log.info("cart_item_added", owner_key=owner_key, product_id=product_id, quantity=item.quantity)
        return cart

    def set_quantity(self, owner_key: str, product_id: str, quantity: int) -> Cart:
        """
        Replace a line's quantity; 0 removes the line.

        Raises:
            ValidationError: If quantity is negative or not an integer.
            CartItemNotFoundError: If the product is not in the cart.
        """
        _check_quantity(quantity, allow_zero=True)
        with self.editing(owner_key) as cart:
            item = cart.find(product_id)
            if item is None:
                raise CartItemNotFoundError(owner_key, product_id)
            if quantity == 0:
                cart.items.remove(item)
            else:
                item.quantity = quantity

        log.info("cart_quantity_set", owner_key=owner_key, product_id=product_id, quantity=quantity)
        return cart

    def remove_item(self, owner_key: str, product_id: str) -> Cart:
        """
        Raises:
            CartItemNotFoundError: If the product is not in the cart.
        """
        with self.editing(owner_key) as cart:
            item = cart.find(product_id)
            if item is None:
                raise CartItemNotFoundError(owner_key, product_id)
            cart.items.remove(item)

        log.info("cart_item_removed", owner_key=owner_key, product_id=product_id)
        return cart

    def clear(self, owner_key: str) -> Cart:
        with self.editing(owner_key) as cart:
            cart.items.clear()

        log.info("cart_cleared", owner_key=owner_key)
        return cart

    def merge_into(self, target_owner_key: str, source_owner_key: str) -> Cart:
        """
        Merge a (guest) cart into a target cart and discard the source.

        Quantities of products present in both carts are summed. Both owners
        are locked for the whole merge, so concurrent edits to either cart
        are applied entirely before or entirely after it. Merging an empty
        or already-merged source leaves the target unchanged.

        Raises:
            ValidationError: If a key is malformed or both keys are the same.
        """
        validate_owner_key(target_owner_key)
        validate_owner_key(source_owner_key)
        if target_owner_key == source_owner_key:
            raise ValidationError("Cannot merge a cart into itself", field="source_owner_key")

        with self._locks.hold_many([target_owner_key, source_owner_key]):
            target = self._load(target_owner_key)
            source = self._load(source_owner_key)
            if source.is_empty():
                remove_file(self._path(source_owner_key))
                return target

            for item in source.items:
                add_line(target, item.product_id, item.quantity, item.unit_price_snapshot)

            self._save(target)
            remove_file(self._path(source_owner_key))

        log.info(
            "cart_merged",
            target=target_owner_key,
            source=source_owner_key,
            merged_lines=len(source.items),
        )
        return target
