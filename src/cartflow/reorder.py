"""Rebuild a cart from a previously placed order."""

from .activity_log import ActivityLogRecorder
from .cart_store import CartStore, add_line
from .catalog import Catalog
from .logs import get_logger
from .models import Order, ReorderLine, ReorderResult

log = get_logger("reorder")


class ReorderAssembler:
    """Best-effort copy of an order's lines into a cart.

    Lines whose product is gone, inactive or out of stock are skipped, and
    lines asking for more than current stock are clamped. Neither case is an
    error: the result lists them so the caller can show a partial-success
    message.
    """

    def __init__(
        self,
        catalog: Catalog,
        carts: CartStore,
        activity: ActivityLogRecorder | None = None,
    ):
        self.catalog = catalog
        self.carts = carts
        self.activity = activity

    def reorder(self, source_order: Order, target_owner_key: str) -> ReorderResult:
        restored: list[str] = []
        skipped: list[ReorderLine] = []
        clamped: list[ReorderLine] = []

        with self.carts.editing(target_owner_key) as cart:
            for line in source_order.items:
                product = self.catalog.get_product(line.product_id)
                if product is None or not product.active:
                    skipped.append(
                        ReorderLine(line.product_id, line.name, line.quantity, 0, "product_unavailable")
                    )
                    continue
                if product.stock <= 0:
                    skipped.append(
                        ReorderLine(line.product_id, line.name, line.quantity, 0, "out_of_stock")
                    )
                    continue

                quantity = min(line.quantity, product.stock)
                add_line(cart, product.id, quantity, product.price)
                if quantity < line.quantity:
                    clamped.append(
                        ReorderLine(line.product_id, line.name, line.quantity, quantity, "clamped_to_stock")
                    )
                else:
                    restored.append(line.product_id)

        if self.activity is not None:
            self.activity.record(
                source_order.id,
                action="reordered",
                performed_by=target_owner_key,
                notes=f"Order {source_order.order_number} added to cart",
                metadata={
                    "restored": restored,
                    "skipped": [s.product_id for s in skipped],
                    "clamped": [c.product_id for c in clamped],
                },
            )

        log.info(
            "reorder_assembled",
            order_id=source_order.id,
            order_number=source_order.order_number,
            owner_key=target_owner_key,
            restored=len(restored),
            skipped=len(skipped),
            clamped=len(clamped),
        )
        return ReorderResult(
            cart=cart,
            source_order_id=source_order.id,
            restored=restored,
            skipped=skipped,
            clamped=clamped,
        )
