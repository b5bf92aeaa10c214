"""
Bid Ledger: append-only record of accepted bids per auction.

Writes happen only through record_winning_bid, called by the bid engine inside
its transaction. Everything else here is read-only.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from database import Bid
from .errors import NotFoundError
from .models import BidSnapshot, BidStatistics


def record_winning_bid(
    db: Session,
    auction_id: str,
    bidder_id: str,
    amount: Decimal,
    is_automatic: bool = False,
    max_amount: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> Bid:
    """
    Flip the current winning bid (if any) and append the new winner.

    Must run inside the caller's transaction, after the auction row has been
    claimed. The flip is issued before the insert so the one-winner index never
    sees two winning rows.
    """
    db.query(Bid).filter(
        Bid.auction_id == auction_id,
        Bid.is_winning.is_(True)
    ).update({"is_winning": False}, synchronize_session=False)

    bid = Bid(
        auction_id=auction_id,
        bidder_id=bidder_id,
        amount=amount,
        max_amount=max_amount,
        is_automatic=is_automatic,
        is_winning=True,
        created_at=now or datetime.utcnow(),
    )
    db.add(bid)
    db.flush()
    return bid


def count_bidder_bids(db: Session, auction_id: str, bidder_id: str) -> int:
    return db.query(func.count(Bid.id)).filter(
        Bid.auction_id == auction_id,
        Bid.bidder_id == bidder_id
    ).scalar()


def count_recent_bidder_bids(db: Session, bidder_id: str, since: datetime) -> int:
    """Accepted bids by bidder_id across all auctions since the given time."""
    return db.query(func.count(Bid.id)).filter(
        Bid.bidder_id == bidder_id,
        Bid.created_at >= since
    ).scalar()


def get_bid(db: Session, bid_id: str) -> BidSnapshot:
    bid = db.query(Bid).filter(Bid.id == bid_id).first()
    if not bid:
        raise NotFoundError(f"Bid with ID {bid_id} not found", {"bid_id": bid_id})
    return BidSnapshot.model_validate(bid)


def get_winning_bid(db: Session, auction_id: str) -> Optional[BidSnapshot]:
    bid = db.query(Bid).filter(Bid.auction_id == auction_id, Bid.is_winning.is_(True)).first()
    return BidSnapshot.model_validate(bid) if bid else None


def list_auction_bids(db: Session, auction_id: str, limit: int = 50, offset: int = 0) -> List[BidSnapshot]:
    """Bids for an auction, highest amount first."""
    bids = (
        db.query(Bid)
        .filter(Bid.auction_id == auction_id)
        .order_by(Bid.amount.desc(), Bid.created_at.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return [BidSnapshot.model_validate(b) for b in bids]


def list_bidder_bids(
    db: Session,
    bidder_id: str,
    auction_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[BidSnapshot]:
    """Bids placed by one bidder, newest first."""
    query = db.query(Bid).filter(Bid.bidder_id == bidder_id)
    if auction_id:
        query = query.filter(Bid.auction_id == auction_id)
    bids = query.order_by(Bid.created_at.desc()).offset(offset).limit(limit).all()
    return [BidSnapshot.model_validate(b) for b in bids]


def get_bid_statistics(db: Session, auction_id: Optional[str] = None) -> BidStatistics:
    query = db.query(func.count(Bid.id), func.max(Bid.amount), func.avg(Bid.amount))
    if auction_id:
        query = query.filter(Bid.auction_id == auction_id)
    total, highest, average = query.one()

    if average is not None:
        average = Decimal(str(average)).quantize(Decimal("0.01"))
    if highest is not None:
        highest = Decimal(str(highest))
    return BidStatistics(total_bids=total or 0, highest_amount=highest, average_amount=average)
