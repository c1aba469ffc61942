"""Data models for cartflow."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
import uuid

from .errors import ValidationError


def _utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _generate_id() -> str:
    """Generate a new entity ID."""
    return str(uuid.uuid4())


def to_money(value: Any, field_name: str = "amount") -> Decimal:
    """
    Coerce a price/charge/tax value to Decimal (floats go through str).

    Raises:
        ValidationError: If the value is not a number, or is NaN or infinite.
    """
    if isinstance(value, float):
        value = str(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid amount for {field_name}: {value!r}", field=field_name)
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount for {field_name}: {value!r}", field=field_name)
    return amount


class OrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


@dataclass
class Address:
    """Postal address, always embedded by value."""

    line1: str
    city: str
    state: str
    postal_code: str
    country: str
    line2: str | None = None

    REQUIRED_FIELDS = ("line1", "city", "state", "postal_code", "country")

    def validate(self, label: str = "address") -> None:
        """
        Raises:
            ValidationError: If a required field is missing or blank.
        """
        for name in self.REQUIRED_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{label}.{name} is required", field=f"{label}.{name}")

    def copy(self) -> "Address":
        return Address.from_dict(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "line1": self.line1,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
        }
        if self.line2 is not None:
            result["line2"] = self.line2
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Address":
        return cls(
            line1=data.get("line1", ""),
            line2=data.get("line2"),
            city=data.get("city", ""),
            state=data.get("state", ""),
            postal_code=data.get("postal_code", ""),
            country=data.get("country", ""),
        )


@dataclass
class CartItem:
    """One product line in a cart."""

    product_id: str
    quantity: int
    unit_price_snapshot: Decimal  # display only, re-priced at order time

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_snapshot": str(self.unit_price_snapshot),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CartItem":
        return cls(
            product_id=data["product_id"],
            quantity=data["quantity"],
            unit_price_snapshot=Decimal(data["unit_price_snapshot"]),
        )


@dataclass
class Cart:
    """A shopping cart owned by a user id or a guest token."""

    owner_key: str
    items: list[CartItem] = field(default_factory=list)
    updated_at: str = field(default_factory=_utc_now)

    def find(self, product_id: str) -> CartItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def quantities(self) -> dict[str, int]:
        return {item.product_id: item.quantity for item in self.items}

    def is_empty(self) -> bool:
        return not self.items

    def snapshot_subtotal(self) -> Decimal:
        return sum((i.unit_price_snapshot * i.quantity for i in self.items), Decimal("0"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_key": self.owner_key,
            "items": [i.to_dict() for i in self.items],
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cart":
        return cls(
            owner_key=data["owner_key"],
            items=[CartItem.from_dict(i) for i in data.get("items", [])],
            updated_at=data.get("updated_at", ""),
        )


@dataclass
class Customer:
    """A customer record, found or created by the POS path."""

    id: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    default_address: Address | None = None
    created_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "created_at": self.created_at,
        }
        if self.default_address is not None:
            result["default_address"] = self.default_address.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Customer":
        address = None
        if data.get("default_address"):
            address = Address.from_dict(data["default_address"])
        return cls(
            id=data["id"],
            name=data.get("name"),
            email=data.get("email"),
            phone=data.get("phone"),
            default_address=address,
            created_at=data.get("created_at", ""),
        )

    @classmethod
    def create(
        cls,
        name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        default_address: Address | None = None,
    ) -> "Customer":
        """Create a new customer with generated ID and timestamp."""
        return cls(
            id=_generate_id(),
            name=name,
            email=email,
            phone=phone,
            default_address=default_address,
        )


@dataclass
class OrderLine:
    """A priced order line, frozen at creation."""

    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal

    @classmethod
    def priced(cls, product_id: str, name: str, unit_price: Decimal, quantity: int) -> "OrderLine":
        return cls(
            product_id=product_id,
            name=name,
            unit_price=unit_price,
            quantity=quantity,
            line_total=unit_price * quantity,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
            "line_total": str(self.line_total),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderLine":
        return cls(
            product_id=data["product_id"],
            name=data["name"],
            unit_price=Decimal(data["unit_price"]),
            quantity=data["quantity"],
            line_total=Decimal(data["line_total"]),
        )


@dataclass
class StatusChange:
    """One step in an order's status history."""

    status: str
    changed_at: str
    changed_by: str

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "changed_at": self.changed_at, "changed_by": self.changed_by}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusChange":
        return cls(
            status=data["status"],
            changed_at=data["changed_at"],
            changed_by=data["changed_by"],
        )


@dataclass
class Order:
    """A placed order. Lines and money fields never change after creation."""

    id: str
    order_number: str
    customer_ref: str
    items: list[OrderLine]
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    status: str
    shipping_address: Address
    billing_address: Address
    payment_method_label: str
    placed_by: str
    source: str = "cart"  # "cart" | "pos"
    notes: str | None = None
    approved_by: str | None = None
    approved_at: str | None = None
    status_history: list[StatusChange] = field(default_factory=list)
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_ref": self.customer_ref,
            "items": [i.to_dict() for i in self.items],
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "shipping": str(self.shipping),
            "total": str(self.total),
            "status": self.status,
            "shipping_address": self.shipping_address.to_dict(),
            "billing_address": self.billing_address.to_dict(),
            "payment_method_label": self.payment_method_label,
            "placed_by": self.placed_by,
            "source": self.source,
            "status_history": [s.to_dict() for s in self.status_history],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.notes is not None:
            result["notes"] = self.notes
        if self.approved_by is not None:
            result["approved_by"] = self.approved_by
            result["approved_at"] = self.approved_at
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        return cls(
            id=data["id"],
            order_number=data["order_number"],
            customer_ref=data["customer_ref"],
            items=[OrderLine.from_dict(i) for i in data.get("items", [])],
            subtotal=Decimal(data["subtotal"]),
            tax=Decimal(data["tax"]),
            shipping=Decimal(data["shipping"]),
            total=Decimal(data["total"]),
            status=data["status"],
            shipping_address=Address.from_dict(data["shipping_address"]),
            billing_address=Address.from_dict(data["billing_address"]),
            payment_method_label=data["payment_method_label"],
            placed_by=data.get("placed_by", ""),
            source=data.get("source", "cart"),
            notes=data.get("notes"),
            approved_by=data.get("approved_by"),
            approved_at=data.get("approved_at"),
            status_history=[StatusChange.from_dict(s) for s in data.get("status_history", [])],
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )


@dataclass
class ActivityLogEntry:
    """An append-only record of one order lifecycle event."""

    id: str
    order_id: str
    sequence: int
    action: str
    performed_by: str
    timestamp: str
    from_status: str | None = None
    to_status: str | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "order_id": self.order_id,
            "sequence": self.sequence,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "performed_by": self.performed_by,
            "timestamp": self.timestamp,
        }
        if self.notes is not None:
            result["notes"] = self.notes
        if self.metadata:
            result["metadata"] = self.metadata
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActivityLogEntry":
        return cls(
            id=data["id"],
            order_id=data["order_id"],
            sequence=data["sequence"],
            action=data["action"],
            from_status=data.get("from_status"),
            to_status=data.get("to_status"),
            performed_by=data["performed_by"],
            notes=data.get("notes"),
            metadata=data.get("metadata"),
            timestamp=data["timestamp"],
        )


@dataclass
class ShippingRate:
    """Configured shipping charge for one postal code."""

    postal_code: str
    charge: Decimal
    active: bool = True
    description: str | None = None
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "postal_code": self.postal_code,
            "charge": str(self.charge),
            "active": self.active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.description is not None:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShippingRate":
        return cls(
            postal_code=data["postal_code"],
            charge=Decimal(data["charge"]),
            active=data.get("active", True),
            description=data.get("description"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )


@dataclass
class UnserviceableRequest:
    """A shopper asked for a postal code that has no active shipping rate."""

    postal_code: str
    requested_by: str | None = None
    email: str | None = None
    status: str = "pending"  # "pending" | "resolved"
    created_at: str = field(default_factory=_utc_now)
    resolved_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "postal_code": self.postal_code,
            "requested_by": self.requested_by,
            "email": self.email,
            "status": self.status,
            "created_at": self.created_at,
            "resolved_at": self.resolved_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UnserviceableRequest":
        return cls(
            postal_code=data["postal_code"],
            requested_by=data.get("requested_by"),
            email=data.get("email"),
            status=data.get("status", "pending"),
            created_at=data.get("created_at", ""),
            resolved_at=data.get("resolved_at"),
        )


# Models for operation results


@dataclass
class ShippingCheck:
    """Result of checking whether a postal code is serviceable."""

    postal_code: str
    serviceable: bool
    charge: Decimal


@dataclass
class ReorderLine:
    """A source order line that could not be restored as-is."""

    product_id: str
    name: str
    requested: int
    restored: int
    reason: str  # "product_unavailable" | "out_of_stock" | "clamped_to_stock"


@dataclass
class ReorderResult:
    """Cart rebuilt from an order, with the lines that were skipped or clamped."""

    cart: Cart
    source_order_id: str
    restored: list[str]  # product ids restored at full quantity
    skipped: list[ReorderLine]
    clamped: list[ReorderLine]

    @property
    def partial(self) -> bool:
        return bool(self.skipped or self.clamped)
