"""Roles, capabilities and the acting identity."""

from dataclasses import dataclass
from enum import Enum

from .errors import PermissionDeniedError, ValidationError
from .utils import guest_owner_key, user_owner_key


class Role(str, Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    SUPPORT = "support"
    CUSTOMER = "customer"
    GUEST = "guest"


class Capability(str, Enum):
    PLACE_ORDER = "place orders"
    CREATE_POS_ORDER = "create point-of-sale orders"
    TRANSITION_ORDER = "change order status"
    ANNOTATE_ORDER = "add order notes"
    VIEW_ALL_ORDERS = "view all orders"
    RESOLVE_CUSTOMERS = "look up customers"
    MANAGE_SHIPPING_RATES = "manage shipping rates"


_STAFF = frozenset(Capability)

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.SUPERADMIN: _STAFF,
    Role.ADMIN: _STAFF,
    Role.SUPPORT: frozenset(
        {Capability.PLACE_ORDER, Capability.RESOLVE_CUSTOMERS, Capability.VIEW_ALL_ORDERS}
    ),
    Role.CUSTOMER: frozenset({Capability.PLACE_ORDER}),
    Role.GUEST: frozenset({Capability.PLACE_ORDER}),
}


def parse_role(value: str | Role) -> Role:
    """
    Raises:
        ValidationError: If value is not a known role name.
    """
    if isinstance(value, Role):
        return value
    try:
        return Role((value or "").strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown role: {value!r}", field="role")


def has_capability(role: Role, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES[role]


def require_capability(role: Role, capability: Capability) -> None:
    """
    Raises:
        PermissionDeniedError: If the role lacks the capability.
    """
    if not has_capability(role, capability):
        raise PermissionDeniedError(role.value, capability.value)


@dataclass(frozen=True)
class Actor:
    """Who is calling, as established by the identity provider."""

    role: Role
    user_id: str | None = None
    guest_token: str | None = None

    @classmethod
    def guest(cls, token: str) -> "Actor":
        return cls(role=Role.GUEST, guest_token=token)

    @classmethod
    def user(cls, user_id: str, role: str | Role = Role.CUSTOMER) -> "Actor":
        return cls(role=parse_role(role), user_id=user_id)

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def owner_key(self) -> str:
        """Key of the cart this actor shops with."""
        if self.user_id is not None:
            return user_owner_key(self.user_id)
        if self.guest_token is not None:
            return guest_owner_key(self.guest_token)
        raise ValidationError("Actor has neither a user id nor a guest token", field="actor")

    @property
    def name(self) -> str:
        """Identifier recorded as performed_by."""
        return self.user_id or f"guest:{self.guest_token}"

    def can(self, capability: Capability) -> bool:
        return has_capability(self.role, capability)

    def require(self, capability: Capability) -> None:
        require_capability(self.role, capability)
