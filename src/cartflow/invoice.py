"""Invoice collaborator interface."""

from typing import Protocol

from .logs import get_logger
from .models import Order, OrderStatus

log = get_logger("invoice")


class InvoiceNotifier(Protocol):
    """Told when an order first leaves pending; generating the document is its job."""

    def order_left_pending(self, order: Order) -> None: ...


class LoggingInvoiceNotifier:
    """Default notifier: records the invoice request in the log stream."""

    def order_left_pending(self, order: Order) -> None:
        if order.status == OrderStatus.CANCELLED.value:
            log.info("invoice_skipped", order_id=order.id, order_number=order.order_number)
            return
        log.info(
            "invoice_requested",
            order_id=order.id,
            order_number=order.order_number,
            total=str(order.total),
        )
