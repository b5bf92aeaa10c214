"""
Bid Acceptance Engine.

place_bid runs one serialized read-validate-write cycle per attempt:

1. Read the auction row (FOR UPDATE on PostgreSQL, BEGIN IMMEDIATE on SQLite).
2. Check the preconditions in their fixed order; any failure rolls back and
   raises before anything is written.
3. Claim the row with a version compare-and-set, flip the previous winning bid,
   append the new winning bid, commit.

A compare-and-set miss means another bid or the status sweep got there first:
the attempt is rolled back and the next one re-reads and re-validates, so a
stale bid fails on the minimum-increment check instead of overwriting a newer
price.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from database import Auction, AuctionStatus, BIDDABLE_STATUSES
from . import settings
from .auctions import load_auction, compare_and_set, to_money
from .errors import AuctionError, InvalidStateError, InvalidArgumentError, ForbiddenError
from .events import AuctionEvent, EventType, emit
from .ledger import record_winning_bid, count_bidder_bids, count_recent_bidder_bids
from .models import BidSnapshot, PlaceBidRequest

logger = logging.getLogger(__name__)


class BidEngine:
    """Accepts or rejects bids against the Auction Store."""

    def __init__(
        self,
        publisher=None,
        max_attempts: int = settings.BID_MAX_ATTEMPTS,
        max_bid_amount: Decimal = settings.BID_MAX_AMOUNT,
        max_bids_per_auction: int = settings.BID_MAX_BIDS_PER_AUCTION,
        rate_limit: int = settings.BID_RATE_LIMIT,
        rate_window_seconds: int = settings.BID_RATE_WINDOW_SECONDS,
    ):
        self.publisher = publisher
        self.max_attempts = max(1, max_attempts)
        self.max_bid_amount = max_bid_amount
        self.max_bids_per_auction = max_bids_per_auction
        self.rate_limit = rate_limit
        self.rate_window = timedelta(seconds=rate_window_seconds)

    def _check_preconditions(
        self,
        db: Session,
        auction: Auction,
        bidder_id: str,
        amount: Decimal,
        max_amount: Optional[Decimal],
        now: datetime,
    ):
        """Raise the first violated rule. Order matters: callers rely on it."""
        if auction.status not in BIDDABLE_STATUSES:
            raise InvalidStateError("Auction is not active", {"status": auction.status})

        # Same boundary as the sweep: at effective_end_time the auction is over
        if now >= auction.effective_end_time:
            raise InvalidStateError(
                "Auction has ended",
                {"effective_end_time": auction.effective_end_time.isoformat()}
            )

        minimum = auction.minimum_next_bid
        if amount < minimum:
            raise InvalidArgumentError(
                f"Minimum bid amount is {minimum}",
                {"minimum_amount": str(minimum), "current_price": str(auction.current_price)}
            )

        if bidder_id == auction.seller_id:
            raise ForbiddenError("Seller cannot bid on their own auction")

        if bidder_id == auction.highest_bidder_id:
            raise InvalidArgumentError("You are already the highest bidder")

        if max_amount is not None and max_amount < amount:
            raise InvalidArgumentError(
                "Maximum amount cannot be lower than the bid amount",
                {"amount": str(amount), "max_amount": str(max_amount)}
            )

        if amount > self.max_bid_amount:
            raise InvalidArgumentError(
                f"Bid amount cannot exceed {self.max_bid_amount}",
                {"max_bid_amount": str(self.max_bid_amount)}
            )

        if count_bidder_bids(db, auction.id, bidder_id) >= self.max_bids_per_auction:
            raise InvalidStateError(
                f"Maximum {self.max_bids_per_auction} bids per auction exceeded",
                {"max_bids_per_auction": self.max_bids_per_auction}
            )

        # A limit of 0 turns the guard off
        if self.rate_limit and count_recent_bidder_bids(db, bidder_id, now - self.rate_window) >= self.rate_limit:
            raise InvalidStateError(
                "Too many bids in a short time period",
                {"rate_limit": self.rate_limit, "window_seconds": int(self.rate_window.total_seconds())}
            )

    def _auction_values(self, auction: Auction, bidder_id: str, amount: Decimal, now: datetime) -> dict:
        values = {
            "current_price": amount,
            "highest_bidder_id": bidder_id,
            "total_bids": Auction.total_bids + 1,
        }
        # Anti-sniping: a bid inside the window pushes the end out, with no cap
        window = timedelta(minutes=auction.auto_extend_minutes)
        if auction.effective_end_time - now < window:
            values["extended_end_time"] = now + window
            values["status"] = AuctionStatus.EXTENDED.value
            values["is_active"] = True
        return values

    def place_bid(
        self,
        db: Session,
        auction_id: str,
        bidder_id: str,
        amount: Decimal,
        is_automatic: bool = False,
        max_amount: Optional[Decimal] = None,
    ) -> BidSnapshot:
        """
        Place a bid. Returns the accepted bid or raises an AuctionError.

        Raises:
            NotFoundError: auction does not exist
            InvalidStateError: auction not ACTIVE/EXTENDED, already ended, bid cap or rate limit reached
            InvalidArgumentError: amount below current price + increment, bidder already winning,
                or amount outside configured limits or with more than two decimal places
            ForbiddenError: seller bidding on their own auction
        """
        amount = to_money("amount", amount)
        if max_amount is not None:
            max_amount = to_money("max_amount", max_amount)

        for attempt in range(self.max_attempts):
            now = datetime.utcnow()
            try:
                auction = load_auction(db, auction_id, for_update=True)
                self._check_preconditions(db, auction, bidder_id, amount, max_amount, now)
            except AuctionError as e:
                db.rollback()
                logger.info(f"Bid of {amount} by {bidder_id} on auction {auction_id} rejected: {e.message}")
                raise

            seller_id = auction.seller_id
            previous_bidder_id = auction.highest_bidder_id
            previous_price = auction.current_price
            values = self._auction_values(auction, bidder_id, amount, now)

            if not compare_and_set(db, auction, values, now=now):
                db.rollback()
                logger.warning(
                    f"Auction {auction_id} changed while placing bid, retrying ({attempt + 1}/{self.max_attempts})"
                )
                continue

            try:
                bid = record_winning_bid(
                    db, auction_id, bidder_id, amount,
                    is_automatic=is_automatic, max_amount=max_amount, now=now
                )
                snapshot = BidSnapshot.model_validate(bid)
                db.commit()
            except IntegrityError:
                # Another winning bid slipped in; treat like a version miss
                db.rollback()
                logger.warning(
                    f"Winning-bid conflict on auction {auction_id}, retrying ({attempt + 1}/{self.max_attempts})"
                )
                continue

            extended_until = values.get("extended_end_time")
            if extended_until:
                logger.info(f"Bid {snapshot.id} accepted on auction {auction_id} at {amount}; extended to {extended_until}")
            else:
                logger.info(f"Bid {snapshot.id} accepted on auction {auction_id} at {amount}")
            self._emit_accepted(seller_id, snapshot, previous_bidder_id, previous_price, extended_until)
            return snapshot

        # Contention outlasted the retries: report the price the caller has to beat now
        current = load_auction(db, auction_id)
        minimum = current.minimum_next_bid
        db.rollback()
        raise InvalidArgumentError(
            f"Minimum bid amount is now {minimum}",
            {"minimum_amount": str(minimum), "current_price": str(current.current_price)}
        )

    def submit(self, db: Session, request: PlaceBidRequest) -> BidSnapshot:
        return self.place_bid(
            db,
            request.auction_id,
            request.bidder_id,
            request.amount,
            is_automatic=request.is_automatic,
            max_amount=request.max_amount,
        )

    def _emit_accepted(
        self,
        seller_id: str,
        bid: BidSnapshot,
        previous_bidder_id: Optional[str],
        previous_price: Decimal,
        extended_until: Optional[datetime],
    ):
        emit(self.publisher, AuctionEvent(
            type=EventType.BID_PLACED,
            auction_id=bid.auction_id,
            recipient_id=bid.bidder_id,
            bidder_id=bid.bidder_id,
            seller_id=seller_id,
            amount=bid.amount,
            previous_amount=previous_price,
        ))
        if previous_bidder_id:
            emit(self.publisher, AuctionEvent(
                type=EventType.OUTBID,
                auction_id=bid.auction_id,
                recipient_id=previous_bidder_id,
                bidder_id=bid.bidder_id,
                seller_id=seller_id,
                amount=bid.amount,
                previous_amount=previous_price,
            ))
        if extended_until:
            emit(self.publisher, AuctionEvent(
                type=EventType.AUCTION_EXTENDED,
                auction_id=bid.auction_id,
                recipient_id=seller_id,
                bidder_id=bid.bidder_id,
                seller_id=seller_id,
                amount=bid.amount,
                extended_end_time=extended_until,
            ))
