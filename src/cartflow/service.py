"""Storefront facade: wires the lifecycle components and checks permissions."""

from decimal import Decimal
from pathlib import Path
from typing import Any

from . import config
from .activity_log import ActivityLogRecorder
from .cart_store import CartStore
from .catalog import Catalog, ProductCatalog
from .customers import CustomerResolver
from .errors import PermissionDeniedError, ValidationError
from .invoice import InvoiceNotifier, LoggingInvoiceNotifier
from .models import (
    ActivityLogEntry,
    Address,
    Cart,
    Customer,
    Order,
    ReorderResult,
    ShippingCheck,
    ShippingRate,
    UnserviceableRequest,
)
from .order_factory import CustomerIdentity, OrderFactory, PosItem
from .order_store import OrderStore
from .reorder import ReorderAssembler
from .roles import Actor, Capability
from .shipping import ShippingRateResolver
from .status_machine import OrderStatusMachine, parse_status
from .utils import guest_owner_key


class Storefront:
    """All exposed cart/order operations over one data directory."""

    def __init__(
        self,
        config_dir: Path | None = None,
        catalog: Catalog | None = None,
        invoice: InvoiceNotifier | None = None,
        postal_code_pattern: str | None = None,
        order_prefix: str | None = None,
    ):
        """
        Initialize Storefront.

        Args:
            config_dir: Override data directory (for testing).
            catalog: Product catalog (defaults to the JSON-file catalog).
            invoice: Invoice collaborator notified when orders leave pending.
            postal_code_pattern: Regex for configurable postal codes.
            order_prefix: Prefix for order numbers.
        """
        self.config_dir = config_dir or config.data_dir()
        self.catalog = catalog or ProductCatalog(self.config_dir)
        self.shipping = ShippingRateResolver(self.config_dir, postal_code_pattern)
        self.carts = CartStore(self.catalog, self.config_dir)
        self.customers = CustomerResolver(self.config_dir)
        self.orders = OrderStore(self.config_dir, order_prefix)
        self.activity = ActivityLogRecorder(self.config_dir)
        self.factory = OrderFactory(
            self.catalog, self.carts, self.orders, self.activity, self.shipping, self.customers
        )
        self.status = OrderStatusMachine(
            self.orders, self.activity, invoice or LoggingInvoiceNotifier()
        )
        self.reorders = ReorderAssembler(self.catalog, self.carts, self.activity)

    # --- Access helpers ---

    @staticmethod
    def _customer_refs(actor: Actor) -> set[str]:
        refs = {actor.owner_key}
        if actor.user_id is not None:
            refs.add(actor.user_id)
        return refs

    def _check_order_access(self, actor: Actor, order: Order) -> None:
        """
        Raises:
            PermissionDeniedError: If actor is neither staff nor the order's customer.
        """
        if actor.can(Capability.VIEW_ALL_ORDERS):
            return
        if order.customer_ref not in self._customer_refs(actor):
            raise PermissionDeniedError(actor.role.value, "access this order")

    # --- Cart ---

    def get_cart(self, actor: Actor) -> Cart:
        return self.carts.get(actor.owner_key)

    def cart_availability(self, actor: Actor) -> tuple[Cart, dict[str, int]]:
        cart = self.carts.get(actor.owner_key)
        return cart, self.carts.availability(cart)

    def add_to_cart(self, actor: Actor, product_id: str, quantity: int = 1) -> Cart:
        return self.carts.add_item(actor.owner_key, product_id, quantity)

    def set_cart_quantity(self, actor: Actor, product_id: str, quantity: int) -> Cart:
        return self.carts.set_quantity(actor.owner_key, product_id, quantity)

    def remove_from_cart(self, actor: Actor, product_id: str) -> Cart:
        return self.carts.remove_item(actor.owner_key, product_id)

    def clear_cart(self, actor: Actor) -> Cart:
        return self.carts.clear(actor.owner_key)

    def merge_guest_cart(self, actor: Actor, guest_token: str) -> Cart:
        """
        Fold a guest cart into the signed-in user's cart (called at login).

        Raises:
            ValidationError: If the actor is not signed in.
        """
        if actor.is_guest:
            raise ValidationError("Sign in before merging a guest cart", field="actor")
        return self.carts.merge_into(actor.owner_key, guest_owner_key(guest_token))

    # --- Orders ---

    def create_order(
        self,
        actor: Actor,
        shipping_address: Address,
        billing_address: Address | None = None,
        payment_method_label: str | None = None,
        tax: Any = 0,
        notes: str | None = None,
    ) -> Order:
        actor.require(Capability.PLACE_ORDER)
        return self.factory.create_from_cart(
            actor.owner_key,
            shipping_address=shipping_address,
            billing_address=billing_address,
            payment_method_label=payment_method_label,
            tax=tax,
            notes=notes,
            placed_by=actor.name,
        )

    def create_pos_order(
        self,
        actor: Actor,
        customer: CustomerIdentity,
        items: list[PosItem],
        shipping_address: Address,
        billing_address: Address | None = None,
        payment_method_label: str | None = None,
        tax: Any = 0,
        shipping: Any = None,
        notes: str | None = None,
    ) -> Order:
        actor.require(Capability.CREATE_POS_ORDER)
        return self.factory.create_from_ad_hoc_items(
            customer,
            items,
            shipping_address=shipping_address,
            billing_address=billing_address,
            payment_method_label=payment_method_label,
            tax=tax,
            shipping=shipping,
            notes=notes,
            placed_by=actor.name,
        )

    def transition_order(
        self,
        actor: Actor,
        order_id: str,
        to_status: str,
        notes: str | None = None,
        expected_status: str | None = None,
    ) -> Order:
        actor.require(Capability.TRANSITION_ORDER)
        if expected_status is not None:
            expected_status = parse_status(expected_status).value
        return self.status.transition(
            order_id, to_status, actor.name, notes=notes, expected_status=expected_status
        )

    def add_order_note(self, actor: Actor, order_id: str, note: str) -> Order:
        actor.require(Capability.ANNOTATE_ORDER)
        return self.status.add_note(order_id, note, actor.name)

    def get_order(self, actor: Actor, order_id: str) -> Order:
        order = self.orders.get(order_id)
        self._check_order_access(actor, order)
        return order

    def get_order_by_number(self, actor: Actor, order_number: str) -> Order:
        order = self.orders.get_by_number(order_number)
        self._check_order_access(actor, order)
        return order

    def list_orders(
        self,
        actor: Actor,
        status: str | None = None,
        customer_ref: str | None = None,
        limit: int | None = None,
    ) -> list[Order]:
        """Staff see every order; everyone else only their own."""
        if status is not None:
            status = parse_status(status).value
        if actor.can(Capability.VIEW_ALL_ORDERS):
            return self.orders.list_orders(status=status, customer_ref=customer_ref, limit=limit)

        refs = self._customer_refs(actor)
        if customer_ref is not None and customer_ref not in refs:
            raise PermissionDeniedError(actor.role.value, "list other customers' orders")
        orders = [
            o for o in self.orders.list_orders(status=status) if o.customer_ref in refs
        ]
        return orders[:limit] if limit else orders

    def order_activity(self, actor: Actor, order_id: str) -> list[ActivityLogEntry]:
        """Activity entries for an order, oldest first."""
        self.get_order(actor, order_id)
        return self.activity.entries(order_id)

    def reorder(self, actor: Actor, order_id: str) -> ReorderResult:
        actor.require(Capability.PLACE_ORDER)
        order = self.get_order(actor, order_id)
        return self.reorders.reorder(order, actor.owner_key)

    # --- Customers (POS) ---

    def resolve_customer(
        self, actor: Actor, email: str | None = None, phone: str | None = None
    ) -> Customer | None:
        actor.require(Capability.RESOLVE_CUSTOMERS)
        return self.customers.resolve(email=email, phone=phone)

    def resolve_or_create_customer(
        self,
        actor: Actor,
        email: str | None = None,
        phone: str | None = None,
        name: str | None = None,
    ) -> Customer:
        actor.require(Capability.CREATE_POS_ORDER)
        return self.customers.resolve_or_create(email=email, phone=phone, name=name)

    def search_customers(self, actor: Actor, query: str, limit: int = 10) -> list[Customer]:
        actor.require(Capability.RESOLVE_CUSTOMERS)
        return self.customers.search(query, limit=limit)

    # --- Shipping ---

    def quote_shipping(self, postal_code: str) -> Decimal:
        return self.shipping.resolve(postal_code)

    def check_postal_code(
        self, actor: Actor, postal_code: str, email: str | None = None
    ) -> ShippingCheck:
        return self.shipping.check(postal_code, requested_by=actor.user_id, email=email)

    def list_shipping_rates(self, actor: Actor) -> list[ShippingRate]:
        actor.require(Capability.MANAGE_SHIPPING_RATES)
        return self.shipping.list_rates()

    def set_shipping_rate(
        self,
        actor: Actor,
        postal_code: str,
        charge: Any,
        active: bool = True,
        description: str | None = None,
    ) -> ShippingRate:
        actor.require(Capability.MANAGE_SHIPPING_RATES)
        return self.shipping.set_rate(postal_code, charge, active=active, description=description)

    def remove_shipping_rate(self, actor: Actor, postal_code: str) -> ShippingRate:
        actor.require(Capability.MANAGE_SHIPPING_RATES)
        return self.shipping.remove_rate(postal_code)

    def unserviceable_requests(self, actor: Actor) -> list[UnserviceableRequest]:
        actor.require(Capability.MANAGE_SHIPPING_RATES)
        return self.shipping.pending_requests()
