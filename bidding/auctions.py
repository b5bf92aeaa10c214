"""
Auction Store operations: creation, reads, administrative transitions,
watchlist counters and statistics.

Pricing and winner fields are never written here; only the bid engine moves
them. Status changes made here go through the same version compare-and-set the
engine and the sweep use.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from database import Auction, AuctionStatus, Watchlist, OPEN_STATUSES, TERMINAL_STATUSES
from . import settings
from .errors import NotFoundError, InvalidStateError, InvalidArgumentError, ForbiddenError, ConflictError
from .events import AuctionEvent, EventType, emit
from .models import (
    CreateAuctionRequest, UpdateAuctionRequest, AuctionSnapshot, AuctionStats, WatchlistEntry
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def load_auction(db: Session, auction_id: str, for_update: bool = False) -> Auction:
    """Load an auction, fresh from the database. Raises NotFoundError."""
    query = db.query(Auction).populate_existing().filter(Auction.id == auction_id)
    if for_update:
        query = query.with_for_update()
    auction = query.first()
    if not auction:
        raise NotFoundError(f"Auction with ID {auction_id} not found", {"auction_id": auction_id})
    return auction


def compare_and_set(db: Session, auction: Auction, values: Dict, now: Optional[datetime] = None) -> bool:
    """
    Apply values to the auction row only if nobody changed it since it was read.

    Returns False when the stored version moved on; the caller must roll back
    and re-read.
    """
    values = dict(values)
    values["version"] = Auction.version + 1
    values["updated_at"] = now or datetime.utcnow()
    rows_updated = db.query(Auction).filter(
        Auction.id == auction.id,
        Auction.version == auction.version
    ).update(values, synchronize_session=False)
    return rows_updated == 1


def to_money(field: str, value) -> Decimal:
    """
    Money value with at most two decimal places, as stored in Numeric(12, 2).

    Trailing zeros are fine ("76000.000"); anything the column would round
    ("76000.004") is rejected rather than silently changed.
    """
    label = field.replace("_", " ").capitalize()
    try:
        amount = Decimal(str(value))
        quantized = amount.quantize(CENT)
    except InvalidOperation:
        raise InvalidArgumentError(f"{label} is not a valid amount", {field: str(value)})
    if quantized != amount:
        raise InvalidArgumentError(f"{label} cannot have more than two decimal places", {field: str(value)})
    return quantized


def _validate_terms(
    starting_price: Decimal,
    reserve_price: Optional[Decimal],
    min_bid_increment: Decimal,
    auto_extend_minutes: int,
    start_time: datetime,
    end_time: datetime,
    now: datetime,
):
    if starting_price < 0:
        raise InvalidArgumentError("Starting price cannot be negative")
    if min_bid_increment <= 0:
        raise InvalidArgumentError("Minimum bid increment must be greater than zero")
    if reserve_price is not None and reserve_price < starting_price:
        raise InvalidArgumentError(
            "Reserve price cannot be below starting price",
            {"starting_price": str(starting_price), "reserve_price": str(reserve_price)}
        )
    if auto_extend_minutes < 0:
        raise InvalidArgumentError("Auto-extend minutes cannot be negative")
    if end_time <= start_time:
        raise InvalidArgumentError("End time must be after start time")
    if end_time <= now:
        raise InvalidArgumentError("End time must be in the future")


def create_auction(db: Session, request: CreateAuctionRequest, publisher=None) -> AuctionSnapshot:
    """
    Create an auction for a vehicle.

    Starts ACTIVE when start_time is not in the future, SCHEDULED otherwise.
    A vehicle may only have one auction that is not ENDED or CANCELLED.
    """
    now = datetime.utcnow()
    starting_price = to_money("starting_price", request.starting_price)
    reserve_price = to_money("reserve_price", request.reserve_price) if request.reserve_price is not None else None
    min_increment = request.min_bid_increment
    if min_increment is None:
        min_increment = settings.DEFAULT_MIN_BID_INCREMENT
    min_increment = to_money("min_bid_increment", min_increment)
    auto_extend = request.auto_extend_minutes
    if auto_extend is None:
        auto_extend = settings.DEFAULT_AUTO_EXTEND_MINUTES

    _validate_terms(
        starting_price, reserve_price, min_increment, auto_extend,
        request.start_time, request.end_time, now
    )

    existing = db.query(Auction.id).filter(
        Auction.vehicle_id == request.vehicle_id,
        Auction.status.in_(OPEN_STATUSES)
    ).first()
    if existing:
        db.rollback()
        raise ConflictError(
            "Vehicle is already in an active auction",
            {"vehicle_id": request.vehicle_id, "auction_id": existing.id}
        )

    starts_now = request.start_time <= now
    auction = Auction(
        vehicle_id=request.vehicle_id,
        seller_id=request.seller_id,
        title=request.title,
        description=request.description,
        starting_price=starting_price,
        current_price=starting_price,
        reserve_price=reserve_price,
        min_bid_increment=min_increment,
        start_time=request.start_time,
        end_time=request.end_time,
        auto_extend_minutes=auto_extend,
        status=AuctionStatus.ACTIVE.value if starts_now else AuctionStatus.SCHEDULED.value,
        is_active=starts_now,
        is_featured=request.is_featured,
        total_bids=0,
        view_count=0,
        watchlist_count=0,
        version=1,
        created_at=now,
        updated_at=now,
    )
    db.add(auction)
    try:
        db.commit()
    except IntegrityError:
        # Another auction for this vehicle committed first
        db.rollback()
        raise ConflictError("Vehicle is already in an active auction", {"vehicle_id": request.vehicle_id})
    db.refresh(auction)
    snapshot = AuctionSnapshot.model_validate(auction)
    db.commit()
    logger.info(f"Auction {snapshot.id} created for vehicle {snapshot.vehicle_id} ({snapshot.status})")

    if starts_now:
        emit(publisher, AuctionEvent(
            type=EventType.AUCTION_STARTED,
            auction_id=snapshot.id,
            recipient_id=snapshot.seller_id,
            seller_id=snapshot.seller_id,
            amount=snapshot.current_price,
        ))
    return snapshot


def _record_view(db: Session, auction_id: str):
    """Best-effort view counter bump; failures are logged, never raised."""
    try:
        db.query(Auction).filter(Auction.id == auction_id).update(
            {"view_count": Auction.view_count + 1}, synchronize_session=False
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Failed to record view for auction {auction_id}: {e}")


def get_auction_snapshot(db: Session, auction_id: str, record_view: bool = True) -> AuctionSnapshot:
    """Read an auction. The view counter is bumped afterwards, outside the read."""
    auction = load_auction(db, auction_id)
    snapshot = AuctionSnapshot.model_validate(auction)
    db.commit()
    if record_view:
        _record_view(db, auction_id)
    return snapshot


def list_auctions(
    db: Session,
    status: Optional[str] = None,
    seller_id: Optional[str] = None,
    vehicle_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[AuctionSnapshot]:
    """Auctions ordered by end time, soonest first."""
    query = db.query(Auction)
    if status:
        query = query.filter(Auction.status == status)
    if seller_id:
        query = query.filter(Auction.seller_id == seller_id)
    if vehicle_id:
        query = query.filter(Auction.vehicle_id == vehicle_id)
    auctions = query.order_by(Auction.end_time.asc()).offset(offset).limit(limit).all()
    return [AuctionSnapshot.model_validate(a) for a in auctions]


def _apply_transition(db: Session, auction_id: str, check, build_values) -> AuctionSnapshot:
    """
    Read-check-write loop shared by the administrative operations.

    check(auction) raises when the operation is not allowed; build_values(auction)
    returns the column values to write.
    """
    for attempt in range(settings.BID_MAX_ATTEMPTS):
        auction = load_auction(db, auction_id, for_update=True)
        try:
            check(auction)
        except Exception:
            db.rollback()
            raise
        if compare_and_set(db, auction, build_values(auction)):
            db.commit()
            snapshot = AuctionSnapshot.model_validate(load_auction(db, auction_id))
            db.commit()
            return snapshot
        db.rollback()
        logger.warning(f"Auction {auction_id} changed concurrently, retrying ({attempt + 1}/{settings.BID_MAX_ATTEMPTS})")
    raise ConflictError("Auction was modified concurrently, please retry", {"auction_id": auction_id})


def update_auction(db: Session, auction_id: str, actor_id: str, request: UpdateAuctionRequest) -> AuctionSnapshot:
    """
    Seller edits, allowed while SCHEDULED or while ACTIVE without bids.

    Only title, description, reserve price and the anti-sniping window can
    change; UpdateAuctionRequest has no fields for the rest.
    """
    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    if "reserve_price" in changes:
        changes["reserve_price"] = to_money("reserve_price", changes["reserve_price"])

    def check(auction: Auction):
        if auction.seller_id != actor_id:
            raise ForbiddenError("Only the seller can update this auction", {"auction_id": auction_id})
        editable = auction.status == AuctionStatus.SCHEDULED.value or (
            auction.status == AuctionStatus.ACTIVE.value and auction.total_bids == 0
        )
        if not editable:
            raise InvalidStateError(
                "Cannot update auction with existing bids or outside SCHEDULED/ACTIVE",
                {"status": auction.status, "total_bids": auction.total_bids}
            )
        reserve = changes.get("reserve_price", auction.reserve_price)
        _validate_terms(
            auction.starting_price,
            reserve,
            auction.min_bid_increment,
            changes.get("auto_extend_minutes", auction.auto_extend_minutes),
            auction.start_time,
            auction.end_time,
            datetime.utcnow(),
        )

    return _apply_transition(db, auction_id, check, lambda auction: changes)


def cancel_auction(db: Session, auction_id: str, actor_id: str, publisher=None) -> AuctionSnapshot:
    def check(auction: Auction):
        if auction.seller_id != actor_id:
            raise ForbiddenError("Only the seller can cancel this auction", {"auction_id": auction_id})
        if auction.status in TERMINAL_STATUSES:
            raise InvalidStateError(f"Cannot cancel auction with status {auction.status}", {"status": auction.status})

    snapshot = _apply_transition(
        db, auction_id, check,
        lambda auction: {"status": AuctionStatus.CANCELLED.value, "is_active": False}
    )
    logger.info(f"Auction {auction_id} cancelled by seller")
    emit(publisher, AuctionEvent(
        type=EventType.AUCTION_CANCELLED,
        auction_id=auction_id,
        recipient_id=snapshot.seller_id,
        seller_id=snapshot.seller_id,
        amount=snapshot.current_price,
    ))
    return snapshot


def suspend_auction(db: Session, auction_id: str) -> AuctionSnapshot:
    """Administrative hold. Bids and sweep transitions stop until resumed."""
    def check(auction: Auction):
        if auction.status in TERMINAL_STATUSES or auction.status == AuctionStatus.SUSPENDED.value:
            raise InvalidStateError(f"Cannot suspend auction with status {auction.status}", {"status": auction.status})

    snapshot = _apply_transition(
        db, auction_id, check,
        lambda auction: {"status": AuctionStatus.SUSPENDED.value, "is_active": False}
    )
    logger.info(f"Auction {auction_id} suspended")
    return snapshot


def resume_auction(db: Session, auction_id: str) -> AuctionSnapshot:
    def check(auction: Auction):
        if auction.status != AuctionStatus.SUSPENDED.value:
            raise InvalidStateError(f"Cannot resume auction with status {auction.status}", {"status": auction.status})

    def build_values(auction: Auction):
        if auction.start_time > datetime.utcnow():
            return {"status": AuctionStatus.SCHEDULED.value, "is_active": False}
        if auction.extended_end_time is not None:
            return {"status": AuctionStatus.EXTENDED.value, "is_active": True}
        return {"status": AuctionStatus.ACTIVE.value, "is_active": True}

    snapshot = _apply_transition(db, auction_id, check, build_values)
    logger.info(f"Auction {auction_id} resumed as {snapshot.status}")
    return snapshot


def add_to_watchlist(db: Session, auction_id: str, user_id: str) -> WatchlistEntry:
    load_auction(db, auction_id)
    entry = Watchlist(auction_id=auction_id, user_id=user_id, created_at=datetime.utcnow())
    db.add(entry)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Auction is already in watchlist", {"auction_id": auction_id, "user_id": user_id})
    db.query(Auction).filter(Auction.id == auction_id).update(
        {"watchlist_count": Auction.watchlist_count + 1}, synchronize_session=False
    )
    result = WatchlistEntry.model_validate(entry)
    db.commit()
    return result


def remove_from_watchlist(db: Session, auction_id: str, user_id: str):
    entry = db.query(Watchlist).filter(
        Watchlist.auction_id == auction_id,
        Watchlist.user_id == user_id
    ).first()
    if not entry:
        db.rollback()
        raise NotFoundError("Auction not found in watchlist", {"auction_id": auction_id, "user_id": user_id})
    db.delete(entry)
    db.query(Auction).filter(Auction.id == auction_id, Auction.watchlist_count > 0).update(
        {"watchlist_count": Auction.watchlist_count - 1}, synchronize_session=False
    )
    db.commit()


def get_auction_stats(db: Session) -> AuctionStats:
    counts = dict(db.query(Auction.status, func.count(Auction.id)).group_by(Auction.status).all())
    return AuctionStats(
        total=sum(counts.values()),
        scheduled=counts.get(AuctionStatus.SCHEDULED.value, 0),
        active=counts.get(AuctionStatus.ACTIVE.value, 0),
        extended=counts.get(AuctionStatus.EXTENDED.value, 0),
        ended=counts.get(AuctionStatus.ENDED.value, 0),
        cancelled=counts.get(AuctionStatus.CANCELLED.value, 0),
        suspended=counts.get(AuctionStatus.SUSPENDED.value, 0),
    )


def time_remaining(auction: AuctionSnapshot, now: Optional[datetime] = None) -> timedelta:
    """Time until the effective end, clamped at zero."""
    remaining = auction.effective_end_time - (now or datetime.utcnow())
    return max(remaining, timedelta(0))
