"""
Status sweep: time-driven bulk transitions.

Two set-based conditional updates, each committed on its own:

    SCHEDULED          -> ACTIVE  where start_time <= now
    ACTIVE | EXTENDED  -> ENDED   where effective end time <= now

Both bump the row version, so a bid that read the auction before the sweep
fails its compare-and-set and re-reads the ENDED status. Running the sweep
twice at the same instant changes nothing the second time.
"""
import logging
from datetime import datetime
from typing import Optional
from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session
from database import Auction, AuctionStatus, BIDDABLE_STATUSES
from .events import AuctionEvent, EventType, emit
from .models import SweepResult

logger = logging.getLogger(__name__)


def _effective_end_elapsed(now: datetime):
    return or_(
        and_(Auction.extended_end_time.is_(None), Auction.end_time <= now),
        Auction.extended_end_time <= now,
    )


def start_due_auctions(db: Session, now: datetime):
    """SCHEDULED -> ACTIVE for every auction whose start time has arrived."""
    stmt = (
        update(Auction)
        .where(Auction.status == AuctionStatus.SCHEDULED.value, Auction.start_time <= now)
        .values(
            status=AuctionStatus.ACTIVE.value,
            is_active=True,
            version=Auction.version + 1,
            updated_at=now,
        )
        .returning(Auction.id, Auction.seller_id, Auction.current_price)
        .execution_options(synchronize_session=False)
    )
    try:
        rows = db.execute(stmt).all()
        db.commit()
    except Exception:
        db.rollback()
        raise
    return rows


def end_due_auctions(db: Session, now: datetime):
    """ACTIVE/EXTENDED -> ENDED for every auction whose effective end time has passed."""
    stmt = (
        update(Auction)
        .where(Auction.status.in_(BIDDABLE_STATUSES), _effective_end_elapsed(now))
        .values(
            status=AuctionStatus.ENDED.value,
            is_active=False,
            version=Auction.version + 1,
            updated_at=now,
        )
        .returning(
            Auction.id,
            Auction.seller_id,
            Auction.highest_bidder_id,
            Auction.current_price,
            Auction.reserve_price,
        )
        .execution_options(synchronize_session=False)
    )
    try:
        rows = db.execute(stmt).all()
        db.commit()
    except Exception:
        db.rollback()
        raise
    return rows


def run_status_sweep(db: Session, now: Optional[datetime] = None, publisher=None) -> SweepResult:
    """
    Apply all due time-based transitions.

    Called by the scheduler on every tick and directly for manual recovery.
    """
    now = now or datetime.utcnow()

    started = start_due_auctions(db, now)
    ended = end_due_auctions(db, now)

    logger.info(f"Auction statuses updated at {now.isoformat()} - Started: {len(started)}, Ended: {len(ended)}")

    for row in started:
        emit(publisher, AuctionEvent(
            type=EventType.AUCTION_STARTED,
            auction_id=row.id,
            recipient_id=row.seller_id,
            seller_id=row.seller_id,
            amount=row.current_price,
            occurred_at=now,
        ))

    for row in ended:
        reserve_met = row.reserve_price is None or row.current_price >= row.reserve_price
        emit(publisher, AuctionEvent(
            type=EventType.AUCTION_ENDED,
            auction_id=row.id,
            recipient_id=row.seller_id,
            seller_id=row.seller_id,
            bidder_id=row.highest_bidder_id,
            amount=row.current_price,
            reserve_met=reserve_met,
            occurred_at=now,
        ))
        if row.highest_bidder_id:
            emit(publisher, AuctionEvent(
                type=EventType.AUCTION_WON,
                auction_id=row.id,
                recipient_id=row.highest_bidder_id,
                seller_id=row.seller_id,
                bidder_id=row.highest_bidder_id,
                amount=row.current_price,
                reserve_met=reserve_met,
                occurred_at=now,
            ))

    return SweepResult(
        started=len(started),
        ended=len(ended),
        started_ids=[row.id for row in started],
        ended_ids=[row.id for row in ended],
    )
