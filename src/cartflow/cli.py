"""Command-line interface for cartflow."""

import argparse
import json
import sys

from . import __version__
from .catalog import ProductCatalog
from .errors import CartflowError
from .logs import configure_logging
from .roles import Actor, Role
from .service import Storefront
from .status_machine import allowed_transitions
from .utils import format_activity, format_cart, format_money, format_order, validate_owner_key


def get_storefront() -> Storefront:
    """Get a Storefront over the configured data directory."""
    return Storefront()


def operator(args: argparse.Namespace) -> Actor:
    """CLI commands act as an admin named by --as (default: cli)."""
    return Actor.user(args.actor, Role.ADMIN)


# --- Products ---


def cmd_products_list(args: argparse.Namespace) -> int:
    """List catalog products."""
    try:
        products = ProductCatalog().list_products()

        if not products:
            print("No products in catalog.")
            print("Add a product with: cartflow products add <id> <name> <price> <stock>")
            return 0

        if args.json:
            print(json.dumps([p.to_dict() for p in products], indent=2))
        else:
            print(f"Products ({len(products)}):")
            for p in sorted(products, key=lambda p: p.id):
                state = "" if p.active else "  [inactive]"
                print(f"  {p.id}  {p.name}  {format_money(p.price)}  stock {p.stock}{state}")

        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_products_add(args: argparse.Namespace) -> int:
    """Create or replace a product."""
    try:
        product = ProductCatalog().upsert_product(
            args.product_id, args.name, args.price, args.stock, active=not args.inactive
        )
        print(f"Saved product: {product.id}")
        print(f"  Name: {product.name}")
        print(f"  Price: {format_money(product.price)}")
        print(f"  Stock: {product.stock}")
        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_products_deactivate(args: argparse.Namespace) -> int:
    """Hide a product from new carts and orders."""
    try:
        product = ProductCatalog().set_active(args.product_id, False)
        print(f"Deactivated product: {product.id}")
        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


# --- Shipping rates ---


def cmd_rates_list(args: argparse.Namespace) -> int:
    """List shipping rates."""
    try:
        storefront = get_storefront()
        rates = storefront.list_shipping_rates(operator(args))

        if args.json:
            print(json.dumps([r.to_dict() for r in rates], indent=2))
            return 0

        if not rates:
            print("No shipping rates configured (all postal codes ship free).")
            return 0

        print(f"Shipping rates ({len(rates)}):")
        for r in rates:
            state = "" if r.active else "  [inactive]"
            desc = f"  {r.description}" if r.description else ""
            print(f"  {r.postal_code}  {format_money(r.charge)}{desc}{state}")
        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_rates_set(args: argparse.Namespace) -> int:
    """Create or update a shipping rate."""
    try:
        storefront = get_storefront()
        rate = storefront.set_shipping_rate(
            operator(args),
            args.postal_code,
            args.charge,
            active=not args.inactive,
            description=args.desc,
        )
        print(f"Rate for {rate.postal_code}: {format_money(rate.charge)}")
        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_rates_remove(args: argparse.Namespace) -> int:
    """Remove a shipping rate."""
    try:
        storefront = get_storefront()
        rate = storefront.remove_shipping_rate(operator(args), args.postal_code)
        print(f"Removed rate for {rate.postal_code}")
        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_rates_pending(args: argparse.Namespace) -> int:
    """List postal codes customers asked about that have no rate."""
    try:
        storefront = get_storefront()
        requests = storefront.unserviceable_requests(operator(args))

        if not requests:
            print("No pending serviceability requests.")
            return 0

        print(f"Pending requests ({len(requests)}):")
        for r in requests:
            contact = r.email or r.requested_by or "-"
            print(f"  {r.postal_code}  {contact}  {r.created_at}")
        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


# --- Orders ---


def cmd_orders_list(args: argparse.Namespace) -> int:
    """List orders."""
    try:
        storefront = get_storefront()
        orders = storefront.list_orders(
            operator(args), status=args.status, customer_ref=args.customer, limit=args.limit
        )

        if args.json:
            print(json.dumps([o.to_dict() for o in orders], indent=2))
            return 0

        if not orders:
            print("No orders found.")
            return 0

        print(f"Orders ({len(orders)}):")
        for order in orders:
            print(f"  {format_order(order)}")
        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_show(args: argparse.Namespace) -> int:
    """Show one order by id or order number."""
    try:
        storefront = get_storefront()
        actor = operator(args)
        if args.number:
            order = storefront.get_order_by_number(actor, args.order)
        else:
            order = storefront.get_order(actor, args.order)

        if args.json:
            print(json.dumps(order.to_dict(), indent=2))
            return 0

        print(format_order(order, verbose=True))
        next_statuses = allowed_transitions(order.status)
        print(f"  Next: {', '.join(next_statuses) if next_statuses else '(terminal)'}")
        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_transition(args: argparse.Namespace) -> int:
    """Move an order to a new status."""
    try:
        storefront = get_storefront()
        order = storefront.transition_order(
            operator(args),
            args.order_id,
            args.status,
            notes=args.notes,
            expected_status=args.expect,
        )
        print(f"{order.order_number} is now {order.status}")
        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_note(args: argparse.Namespace) -> int:
    """Attach an administrative note to an order."""
    try:
        storefront = get_storefront()
        order = storefront.add_order_note(operator(args), args.order_id, args.note)
        print(f"Noted on {order.order_number}")
        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_log(args: argparse.Namespace) -> int:
    """Print an order's activity log, oldest first."""
    try:
        storefront = get_storefront()
        entries = storefront.order_activity(operator(args), args.order_id)

        if args.json:
            print(json.dumps([e.to_dict() for e in entries], indent=2))
            return 0

        for entry in entries:
            print(format_activity(entry))
        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


# --- Carts ---


def cmd_cart_show(args: argparse.Namespace) -> int:
    """Show a cart by owner key (user:<id> or guest:<token>)."""
    try:
        storefront = get_storefront()
        cart = storefront.carts.get(validate_owner_key(args.owner_key))

        if args.json:
            print(json.dumps(cart.to_dict(), indent=2))
        else:
            print(format_cart(cart))
        return 0

    except CartflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn

        storefront = get_storefront()

        print("Starting cartflow API server...")
        print(f"Data directory: {storefront.config_dir}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app as an import string
        app_target = "cartflow.api:app" if args.reload else None
        if app_target is None:
            from .api import app
            app_target = app

        uvicorn.run(
            app_target,
            host=args.host,
            port=args.port,
            reload=args.reload,
            workers=1,
        )
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="cartflow",
        description="Carts, orders and order workflow for a storefront backend.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--as", dest="actor", default="cli",
        help="Admin user id recorded in activity logs (default: cli)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", "-p", type=int, default=8000, help="Port to bind to (default: 8000)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    # products (subcommand group)
    products_parser = subparsers.add_parser("products", help="Manage catalog products")
    products_subparsers = products_parser.add_subparsers(dest="products_command")

    products_list_parser = products_subparsers.add_parser("list", help="List products")
    products_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    products_add_parser = products_subparsers.add_parser("add", help="Create or replace a product")
    products_add_parser.add_argument("product_id", help="Product ID")
    products_add_parser.add_argument("name", help="Display name")
    products_add_parser.add_argument("price", help="Unit price, e.g. 19.99")
    products_add_parser.add_argument("stock", type=int, help="Units in stock")
    products_add_parser.add_argument(
        "--inactive", action="store_true", help="Create the product deactivated"
    )

    products_deactivate_parser = products_subparsers.add_parser(
        "deactivate", help="Deactivate a product"
    )
    products_deactivate_parser.add_argument("product_id", help="Product ID")

    # rates (subcommand group)
    rates_parser = subparsers.add_parser("rates", help="Manage postal-code shipping rates")
    rates_subparsers = rates_parser.add_subparsers(dest="rates_command")

    rates_list_parser = rates_subparsers.add_parser("list", help="List shipping rates")
    rates_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    rates_set_parser = rates_subparsers.add_parser("set", help="Create or update a rate")
    rates_set_parser.add_argument("postal_code", help="Postal code")
    rates_set_parser.add_argument("charge", help="Shipping charge, e.g. 50.00")
    rates_set_parser.add_argument("--desc", "-d", help="Description")
    rates_set_parser.add_argument(
        "--inactive", action="store_true", help="Store the rate without applying it"
    )

    rates_remove_parser = rates_subparsers.add_parser("remove", help="Remove a rate")
    rates_remove_parser.add_argument("postal_code", help="Postal code")

    rates_subparsers.add_parser("pending", help="List unserviceable postal-code requests")

    # orders (subcommand group)
    orders_parser = subparsers.add_parser("orders", help="Inspect and manage orders")
    orders_subparsers = orders_parser.add_subparsers(dest="orders_command")

    orders_list_parser = orders_subparsers.add_parser("list", help="List orders")
    orders_list_parser.add_argument("--status", "-s", help="Only orders in this status")
    orders_list_parser.add_argument("--customer", "-c", help="Only orders for this customer ref")
    orders_list_parser.add_argument("--limit", "-n", type=int, help="Maximum orders to show")
    orders_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    orders_show_parser = orders_subparsers.add_parser("show", help="Show an order")
    orders_show_parser.add_argument("order", help="Order ID (or order number with --number)")
    orders_show_parser.add_argument(
        "--number", action="store_true", help="Look up by order number"
    )
    orders_show_parser.add_argument("--json", action="store_true", help="Output as JSON")

    orders_transition_parser = orders_subparsers.add_parser(
        "transition", help="Change an order's status"
    )
    orders_transition_parser.add_argument("order_id", help="Order ID")
    orders_transition_parser.add_argument("status", help="Target status")
    orders_transition_parser.add_argument("--notes", help="Note for the activity log")
    orders_transition_parser.add_argument(
        "--expect", help="Fail unless the order is currently in this status"
    )

    orders_note_parser = orders_subparsers.add_parser("note", help="Add an administrative note")
    orders_note_parser.add_argument("order_id", help="Order ID")
    orders_note_parser.add_argument("note", help="Note text")

    orders_log_parser = orders_subparsers.add_parser("log", help="Show an order's activity log")
    orders_log_parser.add_argument("order_id", help="Order ID")
    orders_log_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # cart
    cart_parser = subparsers.add_parser("cart", help="Show a cart")
    cart_parser.add_argument("owner_key", help="Owner key: user:<id> or guest:<token>")
    cart_parser.add_argument("--json", action="store_true", help="Output as JSON")

    return parser


GROUP_COMMANDS = {
    "products": ("products_command", {
        "list": cmd_products_list,
        "add": cmd_products_add,
        "deactivate": cmd_products_deactivate,
    }),
    "rates": ("rates_command", {
        "list": cmd_rates_list,
        "set": cmd_rates_set,
        "remove": cmd_rates_remove,
        "pending": cmd_rates_pending,
    }),
    "orders": ("orders_command", {
        "list": cmd_orders_list,
        "show": cmd_orders_show,
        "transition": cmd_orders_transition,
        "note": cmd_orders_note,
        "log": cmd_orders_log,
    }),
}


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    configure_logging()

    if not args.command:
        parser.print_help()
        return 0

    # Handle subcommand groups
    if args.command in GROUP_COMMANDS:
        dest, handlers = GROUP_COMMANDS[args.command]
        subcommand = getattr(args, dest, None)
        if not subcommand:
            parser.parse_args([args.command, "--help"])
            return 0
        return handlers[subcommand](args)

    commands = {
        "serve": cmd_serve,
        "cart": cmd_cart_show,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
