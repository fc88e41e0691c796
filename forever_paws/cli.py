"""Forever Paws command line: session, sync, cart and checkout"""

import argparse
import sys
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from .app import ForeverPawsApp
from .models.commerce import CustomerInfo, Product, ShippingAddress
from .utils.exceptions import ForeverPawsError, user_message

console = Console()


def _cmd_login(app: ForeverPawsApp, args) -> int:
    password = args.password or Prompt.ask("Password", password=True)
    session = app.sessions.sign_in(args.email, password, remember=args.remember)
    console.print(f"[bold green]✓ Signed in as {session.display_name or session.email}[/bold green]")
    return 0


def _cmd_signup(app: ForeverPawsApp, args) -> int:
    password = args.password or Prompt.ask("Password", password=True)
    result = app.sessions.sign_up(args.email, password, args.name)
    style = "yellow" if result.confirmation_required else "green"
    console.print(f"[bold {style}]{result.message}[/bold {style}]")
    return 0


def _cmd_reset_password(app: ForeverPawsApp, args) -> int:
    app.sessions.reset_password(args.email)
    console.print("If an account exists for that email, a reset link is on its way.")
    return 0


def _cmd_logout(app: ForeverPawsApp, args) -> int:
    app.launch()
    app.sessions.sign_out()
    console.print("[bold]Signed out. Local data cleared.[/bold]")
    return 0


def _cmd_status(app: ForeverPawsApp, args) -> int:
    session = app.launch()
    table = Table(title="Forever Paws", box=box.ROUNDED, show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("State", app.sessions.state.value)
    if session is not None:
        table.add_row("User", session.display_name or session.email)
        table.add_row("Email", session.email)
        table.add_row("Signed in via", session.source.value)
        table.add_row("Cart items", str(len(app.cart.cart_items())))
        table.add_row("Orders", str(len(app.cart.orders())))
    console.print(table)
    return 0


def _require_session(app: ForeverPawsApp) -> bool:
    if app.launch() is None:
        console.print("[bold red]Not signed in. Run `forever-paws login` first.[/bold red]")
        return False
    return True


def _cmd_sync(app: ForeverPawsApp, args) -> int:
    if not _require_session(app):
        return 1
    session = app.sessions.require_session()
    report = app.sync.sync_all(session.user_id)

    table = Table(title="Sync", box=box.SIMPLE)
    table.add_column("Entity")
    table.add_column("Inserted", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Error", style="red")
    for name, counts in report.counts.items():
        table.add_row(name, str(counts.inserted), str(counts.updated), str(counts.deleted), "")
    for name, error in report.errors.items():
        table.add_row(name, "-", "-", "-", error)
    console.print(table)
    if report.superseded:
        console.print("[yellow]Session changed during sync; results discarded.[/yellow]")
    return 0 if report.ok else 1


def _cmd_cart(app: ForeverPawsApp, args) -> int:
    if not _require_session(app):
        return 1
    items = app.cart.cart_items()
    if not items:
        console.print("Your cart is empty.")
        return 0
    table = Table(title="Cart", box=box.ROUNDED)
    table.add_column("ID", style="dim")
    table.add_column("Product")
    table.add_column("Qty", justify="right")
    table.add_column("Unit", justify="right")
    table.add_column("Total", justify="right")
    for item in items:
        table.add_row(
            item.id[:8],
            item.product_name or item.product_ref,
            str(item.quantity),
            f"{item.unit_price:.2f}",
            f"{item.line_total:.2f}",
        )
    console.print(table)
    console.print(f"[bold]Total: {app.cart.cart_total():.2f} {app.settings.checkout.currency}[/bold]")
    return 0


def _cmd_add_to_cart(app: ForeverPawsApp, args) -> int:
    if not _require_session(app):
        return 1
    product = Product(
        ref=args.ref,
        name=args.name or args.ref,
        price=args.price,
        currency=app.settings.checkout.currency,
    )
    item = app.cart.add_to_cart(product, quantity=args.quantity)
    console.print(f"[green]✓ {item.product_name} x{item.quantity} in cart[/green]")
    return 0


def _cmd_checkout(app: ForeverPawsApp, args) -> int:
    if not _require_session(app):
        return 1
    address = ShippingAddress(
        recipient_name=args.recipient or Prompt.ask("Recipient name"),
        phone=args.phone or Prompt.ask("Phone"),
        address_line1=args.address or Prompt.ask("Address"),
        city=args.city or Prompt.ask("City"),
        state=args.state or "",
        postal_code=args.postal_code or Prompt.ask("Postal code"),
        country=args.country or Prompt.ask("Country"),
    )
    order = app.cart.checkout(CustomerInfo(shipping_address=address, notes=args.notes))
    console.print(
        f"[bold green]✓ Order {order.id[:8]} placed: "
        f"{order.total_amount:.2f} {order.currency}[/bold green]"
    )
    return 0


def _cmd_orders(app: ForeverPawsApp, args) -> int:
    if not _require_session(app):
        return 1
    table = Table(title="Orders", box=box.ROUNDED)
    table.add_column("ID", style="dim")
    table.add_column("Placed")
    table.add_column("Status")
    table.add_column("Payment")
    table.add_column("Tracking")
    table.add_column("Total", justify="right")
    for order in app.cart.orders():
        table.add_row(
            order.id[:8],
            order.created_at.strftime("%Y-%m-%d %H:%M"),
            order.status.value,
            order.payment_status.value,
            order.tracking_number or "-",
            f"{order.total_amount:.2f}",
        )
    console.print(table)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="forever-paws", description="Forever Paws client")
    parser.add_argument("--config-dir", default=None, help="Directory holding settings.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="Sign in")
    p.add_argument("email")
    p.add_argument("--password")
    p.add_argument("--remember", action="store_true", help="Remember credentials for auto-login")
    p.set_defaults(func=_cmd_login)

    p = sub.add_parser("signup", help="Create an account")
    p.add_argument("email")
    p.add_argument("--password")
    p.add_argument("--name", help="Display name")
    p.set_defaults(func=_cmd_signup)

    p = sub.add_parser("reset-password", help="Send a password reset email")
    p.add_argument("email")
    p.set_defaults(func=_cmd_reset_password)

    sub.add_parser("logout", help="Sign out and clear local data").set_defaults(func=_cmd_logout)
    sub.add_parser("status", help="Show session state").set_defaults(func=_cmd_status)
    sub.add_parser("sync", help="Pull pets, videos and letters").set_defaults(func=_cmd_sync)
    sub.add_parser("cart", help="Show the cart").set_defaults(func=_cmd_cart)
    sub.add_parser("orders", help="List orders").set_defaults(func=_cmd_orders)

    p = sub.add_parser("add-to-cart", help="Add a product to the cart")
    p.add_argument("ref", help="Product reference")
    p.add_argument("price", type=float)
    p.add_argument("--name")
    p.add_argument("--quantity", type=int, default=1)
    p.set_defaults(func=_cmd_add_to_cart)

    p = sub.add_parser("checkout", help="Place an order for the cart")
    p.add_argument("--recipient")
    p.add_argument("--phone")
    p.add_argument("--address")
    p.add_argument("--city")
    p.add_argument("--state")
    p.add_argument("--postal-code")
    p.add_argument("--country")
    p.add_argument("--notes")
    p.set_defaults(func=_cmd_checkout)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    app = ForeverPawsApp(config_dir=args.config_dir)
    try:
        app.initialize()
        return args.func(app, args)
    except ForeverPawsError as e:
        console.print(f"[bold red]✗ {user_message(e)}[/bold red]")
        return 1
    except KeyboardInterrupt:
        console.print("\nCancelled.")
        return 130
    finally:
        app.shutdown()


if __name__ == "__main__":
    sys.exit(main())
