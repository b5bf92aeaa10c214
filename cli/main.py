#!/usr/bin/env python3
import click
import logging
import sys
from decimal import Decimal, InvalidOperation
from database import SessionLocal, init_db
from bidding.errors import AuctionError
from bidding.engine import BidEngine
from bidding.events import get_publisher
from bidding.models import CreateAuctionRequest
from bidding.scheduler import StatusScheduler
from bidding.sweeper import run_status_sweep
from bidding import auctions, ledger
from .config import to_local_time, parse_local_time


def _parse_amount(value: str) -> Decimal:
    return Decimal(value.replace("$", "").replace(",", ""))


def build_separator(left, mid, right, col_widths):
    return left + mid.join("─" * (w + 2) for w in col_widths) + right


def print_table(title, headers, rows):
    """Print rows in a box-drawn table."""
    col_widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            col_widths[i] = max(col_widths[i], len(str(cell)))

    click.echo(f"\n{title}")
    click.echo(build_separator("┌", "┬", "┐", col_widths))
    click.echo("│ " + " │ ".join(f"{headers[i]:<{col_widths[i]}}" for i in range(len(headers))) + " │")
    click.echo(build_separator("├", "┼", "┤", col_widths))
    for row in rows:
        click.echo("│ " + " │ ".join(f"{str(row[i]):<{col_widths[i]}}" for i in range(len(row))) + " │")
    click.echo(build_separator("└", "┴", "┘", col_widths))


def _fail(action, error):
    message = error.message if isinstance(error, AuctionError) else str(error)
    click.echo(f"{action} failed: {message}", err=True)
    sys.exit(1)


@click.group()
@click.option("--verbose", is_flag=True, help="Log engine activity to stderr.")
def cli(verbose):
    """Vehicle auction bid engine CLI"""
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )


@cli.command("init-db")
def init_db_command():
    """Create database tables."""
    init_db()
    click.echo("Database initialized")


@cli.command()
@click.argument("vehicle_id")
@click.argument("seller_id")
@click.argument("starting_price")
@click.option("--start", "start_time", required=True, help="Start time, ISO-8601 (local time unless an offset is given).")
@click.option("--end", "end_time", required=True, help="End time, ISO-8601.")
@click.option("--reserve", default=None, help="Reserve price.")
@click.option("--increment", default=None, help="Minimum bid increment.")
@click.option("--extend-minutes", type=int, default=None, help="Anti-sniping window in minutes.")
@click.option("--title", default="", help="Auction title.")
@click.option("--description", default=None)
def create(vehicle_id, seller_id, starting_price, start_time, end_time, reserve, increment, extend_minutes,
           title, description):
    """Create an auction for a vehicle."""
    try:
        request = CreateAuctionRequest(
            vehicle_id=vehicle_id,
            seller_id=seller_id,
            starting_price=_parse_amount(starting_price),
            reserve_price=_parse_amount(reserve) if reserve else None,
            min_bid_increment=_parse_amount(increment) if increment else None,
            start_time=parse_local_time(start_time),
            end_time=parse_local_time(end_time),
            auto_extend_minutes=extend_minutes,
            title=title,
            description=description,
        )
    except (InvalidOperation, ValueError) as e:
        _fail("Create auction", e)

    db = SessionLocal()
    try:
        auction = auctions.create_auction(db, request, publisher=get_publisher())
    except AuctionError as e:
        _fail("Create auction", e)
    finally:
        db.close()

    click.echo(f"Auction {auction.id} created ({auction.status})")
    click.echo(f"Starts at: {to_local_time(auction.start_time)}")
    click.echo(f"Ends at: {to_local_time(auction.end_time)}")


@cli.command()
@click.argument("auction_id")
@click.argument("bidder_id")
@click.argument("amount")
@click.option("--max-amount", default=None, help="Maximum amount for automatic bidding.")
@click.option("--automatic", is_flag=True, help="Mark the bid as automatic.")
def bid(auction_id, bidder_id, amount, max_amount, automatic):
    """Place a bid."""
    try:
        amount_decimal = _parse_amount(amount)
        max_amount_decimal = _parse_amount(max_amount) if max_amount else None
    except InvalidOperation:
        click.echo(f"Invalid amount: {amount}", err=True)
        sys.exit(1)

    db = SessionLocal()
    try:
        engine = BidEngine(publisher=get_publisher())
        placed = engine.place_bid(
            db, auction_id, bidder_id, amount_decimal,
            is_automatic=automatic, max_amount=max_amount_decimal
        )
    except AuctionError as e:
        _fail("Bid", e)
    finally:
        db.close()

    click.echo(f"Bid {placed.id} accepted at ${placed.amount:.2f}")


@cli.command()
@click.argument("auction_id")
def show(auction_id):
    """Show an auction and its top bids."""
    db = SessionLocal()
    try:
        auction = auctions.get_auction_snapshot(db, auction_id)
        top_bids = ledger.list_auction_bids(db, auction_id, limit=10)
    except AuctionError as e:
        _fail("Show auction", e)
    finally:
        db.close()

    rows = [
        ("ID", auction.id),
        ("Vehicle", auction.vehicle_id),
        ("Seller", auction.seller_id),
        ("Status", auction.status),
        ("Current Price", f"${auction.current_price:.2f}"),
        ("Minimum Next Bid", f"${auction.current_price + auction.min_bid_increment:.2f}"),
        ("Reserve", f"${auction.reserve_price:.2f}" if auction.reserve_price is not None else "None"),
        ("Highest Bidder", auction.highest_bidder_id or "-"),
        ("Total Bids", str(auction.total_bids)),
        ("Starts", to_local_time(auction.start_time)),
        ("Ends", to_local_time(auction.effective_end_time)),
        ("Extended", "Yes" if auction.extended_end_time else "No"),
        ("Views", str(auction.view_count)),
        ("Watchers", str(auction.watchlist_count)),
    ]
    print_table(auction.title or "Auction", ["Field", "Value"], rows)

    if top_bids:
        print_table(
            "Bids",
            ["Bidder", "Amount", "Winning", "Placed"],
            [
                (b.bidder_id, f"${b.amount:.2f}", "Yes" if b.is_winning else "", to_local_time(b.created_at))
                for b in top_bids
            ],
        )


@cli.command("list")
@click.option("--status", default=None, help="Filter by status.")
@click.option("--seller", "seller_id", default=None, help="Filter by seller.")
@click.option("--vehicle", "vehicle_id", default=None, help="Filter by vehicle.")
@click.option("--limit", type=int, default=50)
def list_command(status, seller_id, vehicle_id, limit):
    """List auctions, ending soonest first."""
    db = SessionLocal()
    try:
        results = auctions.list_auctions(
            db,
            status=status.upper() if status else None,
            seller_id=seller_id,
            vehicle_id=vehicle_id,
            limit=limit,
        )
    finally:
        db.close()

    if not results:
        click.echo("No auctions found.")
        return

    print_table(
        "Auctions",
        ["ID", "Vehicle", "Status", "Price", "Bids", "Ends"],
        [
            (a.id, a.vehicle_id, a.status, f"${a.current_price:.2f}", a.total_bids, to_local_time(a.effective_end_time))
            for a in results
        ],
    )


@cli.command()
def sweep():
    """Run one status sweep now."""
    db = SessionLocal()
    try:
        result = run_status_sweep(db, publisher=get_publisher())
    except Exception as e:
        _fail("Status sweep", e)
    finally:
        db.close()
    click.echo(f"Started: {result.started}, Ended: {result.ended}")


@cli.command()
@click.option("--interval", type=float, default=None, help="Seconds between sweeps.")
def scheduler(interval):
    """Run the status sweep on a timer until interrupted."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    kwargs = {"publisher": get_publisher()}
    if interval is not None:
        kwargs["interval_seconds"] = interval
    status_scheduler = StatusScheduler(**kwargs)
    try:
        status_scheduler.run_loop()
    except KeyboardInterrupt:
        status_scheduler.stop()


@cli.command()
@click.argument("auction_id")
@click.argument("user_id")
def watch(auction_id, user_id):
    """Add an auction to a user's watchlist."""
    db = SessionLocal()
    try:
        auctions.add_to_watchlist(db, auction_id, user_id)
    except AuctionError as e:
        _fail("Watch", e)
    finally:
        db.close()
    click.echo(f"Auction {auction_id} added to watchlist")


@cli.command()
@click.argument("auction_id")
@click.argument("user_id")
def unwatch(auction_id, user_id):
    """Remove an auction from a user's watchlist."""
    db = SessionLocal()
    try:
        auctions.remove_from_watchlist(db, auction_id, user_id)
    except AuctionError as e:
        _fail("Unwatch", e)
    finally:
        db.close()
    click.echo(f"Auction {auction_id} removed from watchlist")


@cli.command()
@click.argument("auction_id")
@click.argument("seller_id")
def cancel(auction_id, seller_id):
    """Cancel an auction (seller only)."""
    db = SessionLocal()
    try:
        auctions.cancel_auction(db, auction_id, seller_id, publisher=get_publisher())
    except AuctionError as e:
        _fail("Cancel", e)
    finally:
        db.close()
    click.echo(f"Auction {auction_id} cancelled")


@cli.command()
@click.argument("auction_id")
def suspend(auction_id):
    """Suspend an auction."""
    db = SessionLocal()
    try:
        auction = auctions.suspend_auction(db, auction_id)
    except AuctionError as e:
        _fail("Suspend", e)
    finally:
        db.close()
    click.echo(f"Auction {auction.id} is now {auction.status}")


@cli.command()
@click.argument("auction_id")
def resume(auction_id):
    """Resume a suspended auction."""
    db = SessionLocal()
    try:
        auction = auctions.resume_auction(db, auction_id)
    except AuctionError as e:
        _fail("Resume", e)
    finally:
        db.close()
    click.echo(f"Auction {auction.id} is now {auction.status}")


@cli.command()
def stats():
    """Show auction counts by status."""
    db = SessionLocal()
    try:
        counts = auctions.get_auction_stats(db)
        bid_stats = ledger.get_bid_statistics(db)
    finally:
        db.close()

    rows = [(name.capitalize(), value) for name, value in counts.model_dump().items()]
    rows.append(("Bids", bid_stats.total_bids))
    if bid_stats.average_amount is not None:
        rows.append(("Average Bid", f"${bid_stats.average_amount:.2f}"))
    print_table("Auction Statistics", ["Metric", "Count"], rows)


if __name__ == "__main__":
    cli()
