"""Utility functions for cartflow."""

import re
from decimal import Decimal

from .errors import ValidationError
from .models import ActivityLogEntry, Cart, Order

USER_PREFIX = "user"
GUEST_PREFIX = "guest"

_OWNER_KEY = re.compile(r"^(user|guest):([A-Za-z0-9_.-]{1,128})$")
_NON_DIGITS = re.compile(r"\D")


def user_owner_key(user_id: str) -> str:
    return validate_owner_key(f"{USER_PREFIX}:{user_id}")


def guest_owner_key(token: str) -> str:
    return validate_owner_key(f"{GUEST_PREFIX}:{token}")


def validate_owner_key(owner_key: str) -> str:
    """
    Check a cart owner key has the form 'user:<id>' or 'guest:<token>'.

    Raises:
        ValidationError: If the key is malformed.
    """
    if not isinstance(owner_key, str) or not _OWNER_KEY.match(owner_key):
        raise ValidationError(f"Invalid cart owner key: {owner_key!r}", field="owner_key")
    return owner_key


def owner_user_id(owner_key: str) -> str | None:
    """User id for 'user:<id>' keys, None for guest keys."""
    match = _OWNER_KEY.match(owner_key)
    if match and match.group(1) == USER_PREFIX:
        return match.group(2)
    return None


def normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


def normalize_phone(phone: str | None) -> str | None:
    """Digits only; None if nothing remains."""
    if phone is None:
        return None
    digits = _NON_DIGITS.sub("", phone)
    return digits or None


def format_money(amount: Decimal) -> str:
    return f"{amount:.2f}"


def format_cart(cart: Cart) -> str:
    """Format a cart for CLI display."""
    if cart.is_empty():
        return f"Cart {cart.owner_key} is empty"
    lines = [f"Cart {cart.owner_key} ({len(cart.items)} line(s)):"]
    for item in cart.items:
        lines.append(
            f"  {item.product_id}  x{item.quantity}  @ {format_money(item.unit_price_snapshot)}"
        )
    lines.append(f"  Estimated subtotal: {format_money(cart.snapshot_subtotal())}")
    return "\n".join(lines)


def format_order(order: Order, verbose: bool = False) -> str:
    """Format an order for CLI display."""
    header = (
        f"{order.order_number}  [{order.status}]  total {format_money(order.total)}"
        f"  customer {order.customer_ref}"
    )
    if not verbose:
        return header

    lines = [header, f"  ID: {order.id}", f"  Created: {order.created_at}"]
    for item in order.items:
        lines.append(
            f"  - {item.name} ({item.product_id}) x{item.quantity} @ "
            f"{format_money(item.unit_price)} = {format_money(item.line_total)}"
        )
    lines.append(f"  Subtotal: {format_money(order.subtotal)}")
    lines.append(f"  Tax: {format_money(order.tax)}")
    lines.append(f"  Shipping: {format_money(order.shipping)}")
    lines.append(f"  Payment: {order.payment_method_label}")
    if order.notes:
        lines.append(f"  Notes: {order.notes}")
    return "\n".join(lines)


def format_activity(entry: ActivityLogEntry) -> str:
    change = ""
    if entry.to_status:
        change = f" {entry.from_status or '-'} -> {entry.to_status}"
    line = f"{entry.timestamp}  #{entry.sequence} {entry.action}{change}  by {entry.performed_by}"
    if entry.notes:
        line += f"  ({entry.notes})"
    return line
