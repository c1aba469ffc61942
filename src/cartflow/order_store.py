"""Order storage for cartflow."""

import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from . import config
from .errors import ConflictError, OrderNotFoundError
from .models import Order, _utc_now
from .storage import KeyedLocks, read_json, remove_file, safe_filename, write_json_atomic

ORDERS_DIR = "orders"
INDEX_FILE = "order_index.json"
_INDEX_KEY = "index"


class OrderStore:
    """Persists orders as one JSON file each, plus an order-number index."""

    def __init__(self, config_dir: Path | None = None, order_prefix: str | None = None):
        """
        Initialize OrderStore.

        Args:
            config_dir: Override data directory (for testing).
            order_prefix: Prefix for human-readable order numbers.
        """
        self.config_dir = config_dir or config.data_dir()
        self.orders_dir = self.config_dir / ORDERS_DIR
        self.index_path = self.config_dir / INDEX_FILE
        self.order_prefix = order_prefix or config.order_prefix()
        self._locks = KeyedLocks(self.config_dir, ORDERS_DIR)

    def _path(self, order_id: str) -> Path:
        return self.orders_dir / f"{safe_filename(order_id)}.json"

    def _load_index(self) -> dict[str, Any]:
        return read_json(self.index_path, default={"sequence": 0, "numbers": {}})

    # --- Numbering ---

    def next_order_number(self) -> str:
        """
        Allocate a unique order number: PREFIX-<epoch ms>-<6-digit sequence>.

        The sequence comes from a locked counter, so numbers never collide
        and are never handed out twice, even if the order is later rolled back.
        """
        with self._locks.hold(_INDEX_KEY):
            index = self._load_index()
            index["sequence"] = index.get("sequence", 0) + 1
            write_json_atomic(self.index_path, index)
            sequence = index["sequence"]

        return f"{self.order_prefix}-{int(time.time() * 1000)}-{sequence:06d}"

    # --- Reads ---

    def get(self, order_id: str) -> Order:
        """
        Raises:
            OrderNotFoundError: If order doesn't exist.
        """
        data = read_json(self._path(order_id))
        if data is None:
            raise OrderNotFoundError(order_id)
        return Order.from_dict(data)

    def get_by_number(self, order_number: str) -> Order:
        """
        Raises:
            OrderNotFoundError: If no order has this number.
        """
        order_id = self._load_index().get("numbers", {}).get(order_number)
        if order_id is None:
            raise OrderNotFoundError(order_number)
        return self.get(order_id)

    def list_orders(
        self,
        status: str | None = None,
        customer_ref: str | None = None,
        limit: int | None = None,
    ) -> list[Order]:
        """
        List orders, newest first.

        Args:
            status: Only orders currently in this status.
            customer_ref: Only orders placed for this customer.
            limit: Maximum number of orders to return.
        """
        if not self.orders_dir.exists():
            return []

        orders: list[Order] = []
        for file_path in self.orders_dir.glob("*.json"):
            order = Order.from_dict(read_json(file_path))
            if status and order.status != status:
                continue
            if customer_ref and order.customer_ref != customer_ref:
                continue
            orders.append(order)

        orders.sort(key=lambda o: (o.created_at, o.order_number), reverse=True)
        if limit:
            orders = orders[:limit]
        return orders

    # --- Writes ---

    def create(self, order: Order) -> None:
        """
        Persist a new order and index its number.

        Raises:
            ConflictError: If the id or order number is already taken.
        """
        with self._locks.hold(_INDEX_KEY):
            index = self._load_index()
            numbers = index.setdefault("numbers", {})
            if order.order_number in numbers or self._path(order.id).exists():
                raise ConflictError(f"order {order.order_number}", "already exists")

            write_json_atomic(self._path(order.id), order.to_dict())
            numbers[order.order_number] = order.id
            write_json_atomic(self.index_path, index)

    def delete(self, order_id: str) -> None:
        """Remove an order whose creation was rolled back."""
        with self._locks.hold(_INDEX_KEY):
            index = self._load_index()
            numbers = index.get("numbers", {})
            for number, indexed_id in list(numbers.items()):
                if indexed_id == order_id:
                    del numbers[number]
            write_json_atomic(self.index_path, index)
            remove_file(self._path(order_id))

    @contextmanager
    def locked(self, order_id: str) -> Iterator[Order]:
        """
        Hold the order's lock and yield its current stored state.

        Nothing is written; call save() inside the block to commit.

        Raises:
            OrderNotFoundError: If order doesn't exist.
        """
        with self._locks.hold(order_id):
            yield self.get(order_id)

    def save(self, order: Order) -> None:
        """Write an existing order back. Callers hold its lock via locked()."""
        order.updated_at = _utc_now()
        write_json_atomic(self._path(order.id), order.to_dict())
