"""Order status workflow."""

from typing import Callable

from .activity_log import ActivityLogRecorder
from .errors import ConflictError, InvalidTransitionError, ValidationError
from .invoice import InvoiceNotifier
from .logs import get_logger
from .models import Order, OrderStatus, StatusChange, _utc_now
from .order_store import OrderStore

log = get_logger("status_machine")

# Allowed next statuses for each status
TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.APPROVED, OrderStatus.CANCELLED}),
    OrderStatus.APPROVED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

LeftPendingListener = Callable[[Order], None]


def parse_status(value: str | OrderStatus) -> OrderStatus:
    """
    Raises:
        ValidationError: If value is not a known status.
    """
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus((value or "").strip().lower())
    except ValueError:
        valid = ", ".join(s.value for s in OrderStatus)
        raise ValidationError(f"Status must be one of: {valid}", field="status")


def allowed_transitions(status: str | OrderStatus) -> list[str]:
    return sorted(s.value for s in TRANSITIONS[parse_status(status)])


def is_terminal(status: str | OrderStatus) -> bool:
    return not TRANSITIONS[parse_status(status)]


class OrderStatusMachine:
    """Validates and applies status changes, logging each one."""

    def __init__(
        self,
        orders: OrderStore,
        activity: ActivityLogRecorder,
        invoice: InvoiceNotifier | None = None,
    ):
        self.orders = orders
        self.activity = activity
        self._left_pending: list[LeftPendingListener] = []
        if invoice is not None:
            self.on_left_pending(invoice.order_left_pending)

    def on_left_pending(self, listener: LeftPendingListener) -> None:
        """Register a callback for an order's first exit from pending."""
        self._left_pending.append(listener)

    def transition(
        self,
        order: Order | str,
        to_status: str | OrderStatus,
        performed_by: str,
        notes: str | None = None,
        expected_status: str | None = None,
    ) -> Order:
        """
        Move an order to a new status.

        The stored status is compared and set under the order's lock. The
        expected current status is expected_status if given, else the status
        of the Order object passed in, so a caller acting on a stale copy gets
        a ConflictError instead of silently overriding another admin's change.

        Raises:
            ValidationError: If to_status is not a known status.
            OrderNotFoundError: If the order doesn't exist.
            ConflictError: If the stored status differs from the caller's copy.
            InvalidTransitionError: If the change is not an allowed edge.
        """
        target = parse_status(to_status)
        order_id = order.id if isinstance(order, Order) else order
        expected = expected_status or (order.status if isinstance(order, Order) else None)

        with self.orders.locked(order_id) as current:
            if expected is not None and current.status != expected:
                raise ConflictError(
                    f"order {current.order_number}",
                    f"status is {current.status}, expected {expected}",
                )

            source = parse_status(current.status)
            if target not in TRANSITIONS[source]:
                raise InvalidTransitionError(source.value, target.value)

            now = _utc_now()
            current.status = target.value
            current.status_history.append(
                StatusChange(status=target.value, changed_at=now, changed_by=performed_by)
            )
            if target is OrderStatus.APPROVED:
                current.approved_by = performed_by
                current.approved_at = now

            # Log only what was actually written
            self.orders.save(current)
            self.activity.record(
                current.id,
                action=target.value,
                performed_by=performed_by,
                from_status=source.value,
                to_status=target.value,
                notes=notes or f"Order status changed from {source.value} to {target.value}",
            )

        log.info(
            "order_transitioned",
            order_id=current.id,
            order_number=current.order_number,
            from_status=source.value,
            to_status=target.value,
            performed_by=performed_by,
        )

        if source is OrderStatus.PENDING:
            self._emit_left_pending(current)
        return current

    def _emit_left_pending(self, order: Order) -> None:
        # The transition is already committed; a failing collaborator must not undo it
        for listener in self._left_pending:
            try:
                listener(order)
            except Exception as e:
                log.error(
                    "left_pending_listener_failed",
                    order_id=order.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def add_note(self, order_id: str, note: str, performed_by: str) -> Order:
        """
        Set the administrative notes on an order and log a note_added entry.

        Raises:
            ValidationError: If the note is blank.
            OrderNotFoundError: If the order doesn't exist.
        """
        if not note or not note.strip():
            raise ValidationError("Note cannot be empty", field="notes")

        with self.orders.locked(order_id) as current:
            current.notes = note.strip()
            self.orders.save(current)
            self.activity.record(
                current.id,
                action="note_added",
                performed_by=performed_by,
                notes=current.notes,
            )

        log.info("order_note_added", order_id=order_id, performed_by=performed_by)
        return current
