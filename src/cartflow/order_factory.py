"""Order creation from carts and from POS item lists."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .activity_log import ActivityLogRecorder
from .cart_store import CartStore
from .catalog import Catalog, StockLedger
from .customers import CustomerResolver
from .errors import InsufficientStockError, ProductUnavailableError, ValidationError
from .logs import get_logger
from .models import (
    Address,
    Order,
    OrderLine,
    OrderStatus,
    StatusChange,
    _generate_id,
    to_money,
)
from .order_store import OrderStore
from .shipping import ShippingRateResolver
from .utils import normalize_email, normalize_phone, owner_user_id, validate_owner_key

DEFAULT_PAYMENT_METHOD = "cash"

log = get_logger("order_factory")


@dataclass
class CustomerIdentity:
    """Partial identity typed in by staff at the point of sale."""

    email: str | None = None
    phone: str | None = None
    name: str | None = None


@dataclass
class PosItem:
    """A product and quantity entered directly on a POS order."""

    product_id: str
    quantity: int


class OrderFactory:
    """Turns a cart or a POS item list into a persisted, priced Order."""

    def __init__(
        self,
        catalog: Catalog,
        carts: CartStore,
        orders: OrderStore,
        activity: ActivityLogRecorder,
        shipping: ShippingRateResolver,
        customers: CustomerResolver,
    ):
        self.catalog = catalog
        self.stock = StockLedger(catalog)
        self.carts = carts
        self.orders = orders
        self.activity = activity
        self.shipping = shipping
        self.customers = customers

    # --- Input checks ---

    @staticmethod
    def _non_negative(value: Any, field_name: str) -> Decimal:
        amount = to_money(value if value is not None else 0, field_name)
        if amount < 0:
            raise ValidationError(f"{field_name} cannot be negative", field=field_name)
        return amount

    @staticmethod
    def _addresses(shipping_address: Address, billing_address: Address | None) -> tuple[Address, Address]:
        """Validate and take frozen copies; billing defaults to shipping."""
        shipping_address.validate("shipping_address")
        if billing_address is None:
            return shipping_address.copy(), shipping_address.copy()
        billing_address.validate("billing_address")
        return shipping_address.copy(), billing_address.copy()

    @staticmethod
    def _payment_label(label: str | None) -> str:
        label = (label or DEFAULT_PAYMENT_METHOD).strip()
        if not label:
            raise ValidationError("Payment method is required", field="payment_method_label")
        return label

    # --- Pricing ---

    def _price_lines(self, quantities: dict[str, int]) -> list[OrderLine]:
        """
        Price each line from the live catalog.

        Raises:
            ProductUnavailableError: If a product is gone or inactive.
            InsufficientStockError: If a line asks for more than is in stock.
        """
        lines: list[OrderLine] = []
        for product_id, quantity in quantities.items():
            product = self.catalog.get_product(product_id)
            if product is None:
                raise ProductUnavailableError(product_id, "not_found")
            if not product.active:
                raise ProductUnavailableError(product_id, "inactive")
            if product.stock < quantity:
                raise InsufficientStockError(product_id, quantity, product.stock)
            lines.append(OrderLine.priced(product.id, product.name, product.price, quantity))
        return lines

    def _place(
        self,
        lines: list[OrderLine],
        customer_ref: str,
        shipping_address: Address,
        billing_address: Address,
        payment_method_label: str,
        tax: Decimal,
        shipping: Decimal,
        notes: str | None,
        placed_by: str,
        source: str,
    ) -> Order:
        """
        Decrement stock, persist the order and log its creation as one unit.

        Stock decrements are conditional, so a competing order that took the
        last units between pricing and here makes this one fail cleanly. Any
        failure after the decrement removes what was written and gives the
        stock back.
        """
        subtotal = sum((line.line_total for line in lines), Decimal("0"))
        order = Order(
            id=_generate_id(),
            order_number=self.orders.next_order_number(),
            customer_ref=customer_ref,
            items=lines,
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            total=subtotal + tax + shipping,
            status=OrderStatus.PENDING.value,
            shipping_address=shipping_address,
            billing_address=billing_address,
            payment_method_label=payment_method_label,
            placed_by=placed_by,
            source=source,
            notes=notes,
        )
        order.status_history.append(
            StatusChange(status=order.status, changed_at=order.created_at, changed_by=placed_by)
        )

        quantities = {line.product_id: line.quantity for line in lines}
        self.stock.decrement_all(quantities)
        try:
            self.orders.create(order)
            self.activity.record(
                order.id,
                action="created",
                performed_by=placed_by,
                to_status=OrderStatus.PENDING.value,
                notes="Order created by staff (POS)" if source == "pos" else "Order created by customer",
                metadata={"order_number": order.order_number, "source": source},
            )
        except Exception:
            self.activity.discard(order.id)
            self.orders.delete(order.id)
            self.stock.restore(quantities)
            raise

        log.info(
            "order_created",
            order_id=order.id,
            order_number=order.order_number,
            customer_ref=customer_ref,
            source=source,
            total=str(order.total),
        )
        return order

    # --- Entry points ---

    def create_from_cart(
        self,
        owner_key: str,
        shipping_address: Address,
        billing_address: Address | None = None,
        payment_method_label: str | None = None,
        tax: Any = 0,
        notes: str | None = None,
        placed_by: str | None = None,
    ) -> Order:
        """
        Check out a cart.

        The cart stays locked until the order is stored, then it is cleared.
        Snapshot prices in the cart are ignored; every line is re-priced.

        Raises:
            ValidationError: Empty cart, bad address, negative tax.
            ProductUnavailableError: A product is gone or inactive.
            InsufficientStockError: A line exceeds current stock.
        """
        validate_owner_key(owner_key)
        shipping_address, billing_address = self._addresses(shipping_address, billing_address)
        tax = self._non_negative(tax, "tax")
        label = self._payment_label(payment_method_label)
        customer_ref = owner_user_id(owner_key) or owner_key

        with self.carts.editing(owner_key) as cart:
            if cart.is_empty():
                raise ValidationError("Cart is empty", field="cart")

            lines = self._price_lines(cart.quantities())
            order = self._place(
                lines,
                customer_ref=customer_ref,
                shipping_address=shipping_address,
                billing_address=billing_address,
                payment_method_label=label,
                tax=tax,
                shipping=self.shipping.resolve(shipping_address.postal_code),
                notes=notes.strip() if notes else None,
                placed_by=placed_by or customer_ref,
                source="cart",
            )
            cart.items.clear()

        return order

    def create_from_ad_hoc_items(
        self,
        customer_identity: CustomerIdentity,
        items: list[PosItem],
        shipping_address: Address,
        billing_address: Address | None = None,
        payment_method_label: str | None = None,
        tax: Any = 0,
        shipping: Any = None,
        notes: str | None = None,
        placed_by: str = "system",
    ) -> Order:
        """
        Place a staff-entered (POS) order.

        The customer is matched by email or phone and created if unknown.
        An explicit shipping value overrides the postal-code rate.

        Raises:
            ValidationError: No items, bad quantity, bad address, no email/phone.
            ProductUnavailableError: A product is gone or inactive.
            InsufficientStockError: A line exceeds current stock.
        """
        if normalize_email(customer_identity.email) is None and normalize_phone(customer_identity.phone) is None:
            raise ValidationError("Customer email or phone number is required", field="email")
        if not items:
            raise ValidationError("Please add at least one product to the order", field="items")

        quantities: dict[str, int] = {}
        for item in items:
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
                raise ValidationError(
                    f"Quantity for {item.product_id} must be a positive integer", field="quantity"
                )
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        shipping_address, billing_address = self._addresses(shipping_address, billing_address)
        tax = self._non_negative(tax, "tax")
        label = self._payment_label(payment_method_label)
        if shipping is None:
            shipping_charge = self.shipping.resolve(shipping_address.postal_code)
        else:
            shipping_charge = self._non_negative(shipping, "shipping")

        # Price before touching customers so a doomed order creates nothing
        lines = self._price_lines(quantities)
        customer = self.customers.resolve_or_create(
            email=customer_identity.email,
            phone=customer_identity.phone,
            name=customer_identity.name,
            default_address=shipping_address,
        )

        return self._place(
            lines,
            customer_ref=customer.id,
            shipping_address=shipping_address,
            billing_address=billing_address,
            payment_method_label=label,
            tax=tax,
            shipping=shipping_charge,
            notes=notes.strip() if notes else None,
            placed_by=placed_by,
            source="pos",
        )
