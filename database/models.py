import uuid
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, ForeignKey, Text, Index, UniqueConstraint, text
)
from sqlalchemy.orm import declarative_base, relationship
from enum import Enum

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class AuctionStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    EXTENDED = "EXTENDED"
    ENDED = "ENDED"
    CANCELLED = "CANCELLED"
    SUSPENDED = "SUSPENDED"


# Statuses in which bids are accepted
BIDDABLE_STATUSES = [AuctionStatus.ACTIVE.value, AuctionStatus.EXTENDED.value]

# No bids and no scheduler transitions out of these
TERMINAL_STATUSES = [AuctionStatus.ENDED.value, AuctionStatus.CANCELLED.value]

# A vehicle may have at most one auction in any of these
OPEN_STATUSES = [
    AuctionStatus.SCHEDULED.value,
    AuctionStatus.ACTIVE.value,
    AuctionStatus.EXTENDED.value,
    AuctionStatus.SUSPENDED.value,
]

_OPEN_STATUSES_SQL = "status IN ('SCHEDULED', 'ACTIVE', 'EXTENDED', 'SUSPENDED')"


class Auction(Base):
    __tablename__ = "auctions"

    id = Column(String(36), primary_key=True, default=_new_id)
    vehicle_id = Column(String, nullable=False, index=True)
    seller_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False, default="")
    description = Column(Text, nullable=True)

    starting_price = Column(Numeric(12, 2), nullable=False)
    current_price = Column(Numeric(12, 2), nullable=False)
    reserve_price = Column(Numeric(12, 2), nullable=True)
    min_bid_increment = Column(Numeric(12, 2), nullable=False)

    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False, index=True)
    extended_end_time = Column(DateTime, nullable=True, index=True)
    auto_extend_minutes = Column(Integer, nullable=False, default=5)

    status = Column(String, nullable=False, default=AuctionStatus.SCHEDULED.value, index=True)
    is_active = Column(Boolean, nullable=False, default=False)
    is_featured = Column(Boolean, nullable=False, default=False)

    highest_bidder_id = Column(String, nullable=True)
    total_bids = Column(Integer, nullable=False, default=0)
    view_count = Column(Integer, nullable=False, default=0)
    watchlist_count = Column(Integer, nullable=False, default=0)

    # Bumped on every pricing/winner/timing/status change, used for compare-and-set
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    bids = relationship("Bid", back_populates="auction", order_by="Bid.created_at")
    watchlists = relationship("Watchlist", back_populates="auction")

    __table_args__ = (
        Index(
            "uq_auctions_open_vehicle",
            "vehicle_id",
            unique=True,
            sqlite_where=text(_OPEN_STATUSES_SQL),
            postgresql_where=text(_OPEN_STATUSES_SQL),
        ),
    )

    @property
    def effective_end_time(self) -> datetime:
        """extended_end_time when an extension has been recorded, else end_time."""
        return self.extended_end_time or self.end_time

    @property
    def minimum_next_bid(self):
        return self.current_price + self.min_bid_increment


class Bid(Base):
    __tablename__ = "bids"

    id = Column(String(36), primary_key=True, default=_new_id)
    auction_id = Column(String(36), ForeignKey("auctions.id"), nullable=False, index=True)
    bidder_id = Column(String, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    max_amount = Column(Numeric(12, 2), nullable=True)
    is_automatic = Column(Boolean, nullable=False, default=False)
    is_winning = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    auction = relationship("Auction", back_populates="bids")

    __table_args__ = (
        Index(
            "uq_bids_winning_per_auction",
            "auction_id",
            unique=True,
            sqlite_where=text("is_winning = 1"),
            postgresql_where=text("is_winning"),
        ),
    )


class Watchlist(Base):
    __tablename__ = "watchlists"

    id = Column(String(36), primary_key=True, default=_new_id)
    auction_id = Column(String(36), ForeignKey("auctions.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    auction = relationship("Auction", back_populates="watchlists")

    __table_args__ = (UniqueConstraint("auction_id", "user_id", name="uq_watchlists_auction_user"),)
