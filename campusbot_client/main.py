"""
main.py — Entry Point for the CampusBot Client

This module composes the four state containers (Cart Store, Session Manager,
Order Lifecycle Tracker, Fleet Telemetry Stream Client) around one shared
HTTP client and exposes them as the `campusbot` command line.

Responsibilities:
    • Wire the authorization event bus between the HTTP layer and the session
    • Restore and revalidate the persisted session on startup
    • Provide terminal commands for cart, checkout, tracking and fleet views
    • Gate vendor and operator commands on the session role
"""

import asyncio
from typing import Optional

import click

from .cart import AddResult, CartStore
from .clients import ApiClient, AuthClient, CatalogClient, TelemetryClient
from .config import API_BASE_URL, LOG_FILE, POLL_INTERVAL_SECONDS, RECONNECT_DELAY_SECONDS, STORAGE_PATH
from .errors import CampusBotError
from .events import AuthEventBus
from .logging_config import get_logger, setup_logging
from .models import OrderStatus, Role
from .session import SessionManager
from .storage import FileStorage, KeyValueStorage
from .telemetry import FleetTelemetryStream
from .tracking import OrderTracker, count_by_status
from .workflow import place_order

log = get_logger(__name__)

OPERATOR_ROLES = (Role.ENGINEER, Role.ADMIN)
VENDOR_ROLES = (Role.VENDOR, Role.ADMIN)


class CampusBotApp:
    """
    Composition root of the client layer.

    Args:
        base_url (str): CampusBot API root.
        storage (KeyValueStorage, optional): Durable storage; a FileStorage at
            CAMPUSBOT_STORAGE_PATH when omitted.
        transport (httpx.AsyncBaseTransport, optional): Custom HTTP transport.
        poll_interval (float): Tracking poll interval in seconds.
        reconnect_delay (float): Telemetry reconnect delay in seconds.
    """

    def __init__(self, base_url: str = API_BASE_URL, storage: Optional[KeyValueStorage] = None,
                 transport=None, poll_interval: float = POLL_INTERVAL_SECONDS,
                 reconnect_delay: float = RECONNECT_DELAY_SECONDS):
        self.storage = storage if storage is not None else FileStorage(STORAGE_PATH)
        self.auth_events = AuthEventBus()
        self.api = ApiClient(base_url, auth_events=self.auth_events, transport=transport)

        self.auth = AuthClient(self.api)
        self.catalog = CatalogClient(self.api)
        self.telemetry = TelemetryClient(self.api)

        self.cart = CartStore(self.storage)
        self.session = SessionManager(self.auth, self.storage, self.auth_events)
        self.api.token_provider = lambda: self.session.token
        self.tracker = OrderTracker(self.catalog, poll_interval=poll_interval)
        self.fleet = FleetTelemetryStream(self.telemetry, reconnect_delay=reconnect_delay)

    async def start(self):
        await self.session.init()

    async def aclose(self):
        """Stops background work and releases the HTTP connection pool."""
        await self.tracker.aclose()
        await self.fleet.disconnect()
        self.session.close()
        await self.api.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()


def _run(ctx: click.Context, action, restore_session: bool = True):
    """Runs `action(app)` inside a fresh event loop and maps client errors to CLI errors."""
    options = ctx.obj

    async def runner():
        async with CampusBotApp(base_url=options["base_url"], storage=FileStorage(options["storage"]),
                                transport=options.get("transport")) as app:
            if restore_session:
                await app.start()
            return await action(app)

    try:
        return asyncio.run(runner())
    except (CampusBotError, ValueError) as e:
        log.info(f"{ctx.info_name} failed: {e!r}")
        raise click.ClickException(str(e)) from e
    except KeyboardInterrupt:
        click.echo("Stopped.")


def _require_role(app: CampusBotApp, roles, what: str):
    if not app.session.is_authenticated:
        raise click.ClickException("Please log in first.")
    if not app.session.has_role(*roles):
        names = " or ".join(role.value for role in roles)
        raise click.ClickException(f"{what} requires a {names} account.")


def _format_money(amount: float) -> str:
    return f"${amount:.2f}"


@click.group()
@click.option("--base-url", default=API_BASE_URL, show_default=True, help="CampusBot API root URL.")
@click.option("--storage", default=STORAGE_PATH, show_default=True, help="Durable client storage file.")
@click.option("--log-file", default=LOG_FILE, show_default=True, help="Log file (empty disables file logging).")
@click.option("-v", "--verbose", is_flag=True, help="Log at INFO level.")
@click.pass_context
def cli(ctx, base_url, storage, log_file, verbose):
    """CampusBot robot delivery client."""
    setup_logging(log_file=log_file, level="INFO" if verbose else "WARNING")
    ctx.obj = {**(ctx.obj or {}), "base_url": base_url, "storage": storage}


# --- Session ---

@cli.command()
@click.argument("email")
@click.password_option(confirmation_prompt=False)
@click.pass_context
def login(ctx, email, password):
    """Log in and remember the session."""
    async def action(app):
        user = await app.session.login(email, password)
        click.echo(f"Logged in as {user.name or user.email} ({user.role.value}).")
    _run(ctx, action, restore_session=False)


@cli.command()
@click.argument("email")
@click.argument("name")
@click.password_option()
@click.option("--role", type=click.Choice([role.value for role in Role]), default=Role.STUDENT.value,
              show_default=True)
@click.pass_context
def register(ctx, email, name, password, role):
    """Create an account and log in."""
    async def action(app):
        user = await app.session.register(email, name, password, Role(role))
        click.echo(f"Registered {user.email} as {user.role.value}.")
    _run(ctx, action, restore_session=False)


@cli.command()
@click.pass_context
def logout(ctx):
    """Forget the local session."""
    async def action(app):
        app.session.logout()
        click.echo("Logged out.")
    _run(ctx, action, restore_session=False)


@cli.command()
@click.pass_context
def whoami(ctx):
    """Show the current (revalidated) session."""
    async def action(app):
        user = app.session.user
        if user is None:
            click.echo("Not logged in.")
        else:
            click.echo(f"{user.name or '-'} <{user.email}> {user.role.value}")
    _run(ctx, action)


# --- Catalog ---

@cli.command()
@click.pass_context
def restaurants(ctx):
    """List restaurants."""
    async def action(app):
        for restaurant in await app.catalog.list_restaurants():
            click.echo(f"{restaurant.id}  {restaurant.name}")
    _run(ctx, action)


@cli.command()
@click.argument("restaurant_id")
@click.pass_context
def menu(ctx, restaurant_id):
    """Show a restaurant's menu."""
    async def action(app):
        for item in await app.catalog.get_menu(restaurant_id):
            flag = "" if item.available else "  (unavailable)"
            click.echo(f"{item.id}  {item.name:<30} {_format_money(item.price)}{flag}")
    _run(ctx, action)


# --- Cart ---

@cli.group()
def cart():
    """Inspect and edit the cart."""


def _print_cart(store: CartStore):
    if store.is_empty:
        click.echo("Cart is empty.")
        return
    click.echo(f"Restaurant {store.restaurant_id}")
    for line in store.lines:
        click.echo(f"  {line.item.id}  {line.item.name:<30} x{line.quantity:<3} {_format_money(line.line_total)}")
    click.echo(f"  {store.count()} item(s), total {_format_money(store.total())}")


@cart.command("show")
@click.pass_context
def cart_show(ctx):
    async def action(app):
        _print_cart(app.cart)
    _run(ctx, action, restore_session=False)


@cart.command("add")
@click.argument("restaurant_id")
@click.argument("item_id")
@click.option("--qty", default=1, show_default=True, type=click.IntRange(min=1))
@click.option("--replace/--keep", default=None, help="Answer for a cart bound to another restaurant.")
@click.pass_context
def cart_add(ctx, restaurant_id, item_id, qty, replace):
    """Add a menu item to the cart."""
    async def action(app):
        items = {item.id: item for item in await app.catalog.get_menu(restaurant_id)}
        if item_id not in items:
            raise click.ClickException(f"Menu item {item_id} not found at restaurant {restaurant_id}.")
        if app.cart.add_item(items[item_id], restaurant_id, qty) is AddResult.CONFLICT:
            accept = replace
            if accept is None:
                accept = click.confirm("Your cart contains items from another restaurant. "
                                       "Clear it and start a new order?", default=False)
            app.cart.resolve_conflict(accept)
        _print_cart(app.cart)
    _run(ctx, action, restore_session=False)


@cart.command("remove")
@click.argument("item_id")
@click.pass_context
def cart_remove(ctx, item_id):
    async def action(app):
        app.cart.remove_item(item_id)
        _print_cart(app.cart)
    _run(ctx, action, restore_session=False)


@cart.command("set")
@click.argument("item_id")
@click.argument("quantity", type=int)
@click.pass_context
def cart_set(ctx, item_id, quantity):
    """Set a line's quantity (0 removes it)."""
    async def action(app):
        app.cart.set_quantity(item_id, quantity)
        _print_cart(app.cart)
    _run(ctx, action, restore_session=False)


@cart.command("clear")
@click.pass_context
def cart_clear(ctx):
    async def action(app):
        app.cart.clear()
        click.echo("Cart cleared.")
    _run(ctx, action, restore_session=False)


@cli.command()
@click.argument("delivery_location")
@click.option("--lat", type=float, default=None)
@click.option("--lng", type=float, default=None)
@click.pass_context
def checkout(ctx, delivery_location, lat, lng):
    """Place an order for the cart contents."""
    async def action(app):
        order = await place_order(app.cart, app.session, app.catalog, delivery_location, lat, lng)
        click.echo(f"Order {order.id} placed ({_format_money(order.total)}). Track it with: campusbot track {order.id}")
    _run(ctx, action)


# --- Orders ---

@cli.command()
@click.argument("order_id")
@click.pass_context
def track(ctx, order_id):
    """Follow an order until it is delivered or cancelled."""
    async def action(app):
        finished = asyncio.Event()
        last_status = None

        def render(tracker):
            nonlocal last_status
            info = tracker.snapshot
            if info is None or info.order.status is last_status:
                return
            last_status = info.order.status
            line = f"[{info.progress.progress:>3}%] {info.progress.statusLabel}"
            if info.robot is not None:
                line += f", robot {info.robot.robotId} ({info.robot.batteryPercent:.0f}% battery)"
            if info.estimatedDeliveryTime is not None and not last_status.is_terminal:
                line += f", ~{info.estimatedDeliveryTime:.0f} min"
            click.echo(line)
            if last_status.is_terminal:
                finished.set()

        app.tracker.subscribe(render)
        await app.tracker.start_tracking(order_id)
        await finished.wait()
    _run(ctx, action)


def _print_orders(orders, status: Optional[str] = None):
    counts = count_by_status(orders)
    click.echo("  ".join(f"{s.value}: {n}" for s, n in counts.items() if n) or "No orders.")
    for order in orders:
        if status is not None and order.status.value != status:
            continue
        items = ", ".join(f"{item.quantity}x {item.name}" for item in order.items)
        click.echo(f"{order.id}  {order.status.value:<10} {_format_money(order.total):>8}  "
                   f"{order.deliveryLocation}  ({items})")


@cli.command()
@click.option("--status", type=click.Choice([status.value for status in OrderStatus]), default=None,
              help="Only list orders in this status.")
@click.option("--watch", is_flag=True, help="Refresh every poll interval until interrupted.")
@click.pass_context
def orders(ctx, status, watch):
    """Vendor: list incoming orders with per-status counts."""
    async def action(app):
        _require_role(app, VENDOR_ROLES, "The order queue")
        while True:
            try:
                _print_orders(await app.catalog.list_orders(), status)
            except CampusBotError as e:
                if not watch:
                    raise
                click.echo(f"! {e}", err=True)
            if not watch:
                return
            await asyncio.sleep(app.tracker.poll_interval)
            click.echo("")
    _run(ctx, action)


@cli.command()
@click.argument("order_id")
@click.argument("status", type=click.Choice([OrderStatus.PREPARING.value, OrderStatus.READY.value]))
@click.pass_context
def advance(ctx, order_id, status):
    """Vendor: move an order to PREPARING or READY."""
    async def action(app):
        _require_role(app, VENDOR_ROLES, "Updating orders")
        current = await app.catalog.get_order(order_id)
        updated = await app.tracker.request_transition(order_id, OrderStatus(status), current_status=current.status)
        click.echo(f"Order {updated.id}: {current.status.value} -> {updated.status.value}")
        click.echo("")
        _print_orders(await app.catalog.list_orders())
    _run(ctx, action)


# --- Fleet ---

@cli.command()
@click.pass_context
def fleet(ctx):
    """Operator: watch the live robot fleet."""
    async def action(app):
        _require_role(app, OPERATOR_ROLES, "The fleet dashboard")
        last_notice = None

        def render(stream):
            nonlocal last_notice
            if stream.last_error != last_notice:
                last_notice = stream.last_error
                if last_notice:
                    click.echo(f"! {last_notice}", err=True)
            if stream.last_error is None and stream.connected:
                for robot in stream.robots:
                    click.echo(f"{robot.robotId:<10} {robot.status.value:<12} {robot.batteryPercent:>5.0f}%  "
                               f"({robot.location.lat:.5f}, {robot.location.lng:.5f})")
                click.echo("")

        app.fleet.subscribe(render)
        app.fleet.connect()
        await asyncio.Event().wait()
    _run(ctx, action)


@cli.command("stop-robot")
@click.argument("robot_id")
@click.pass_context
def stop_robot(ctx, robot_id):
    """Operator: send a stop command to a robot."""
    async def action(app):
        _require_role(app, OPERATOR_ROLES, "Stopping robots")
        await app.fleet.stop_robot(robot_id)
        click.echo(f"Stop command accepted for {robot_id}.")
    _run(ctx, action)


if __name__ == "__main__":
    cli()
