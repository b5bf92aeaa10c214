from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional, List


class CreateAuctionRequest(BaseModel):
    vehicle_id: str
    seller_id: str
    starting_price: Decimal
    start_time: datetime
    end_time: datetime
    title: str = ""
    description: Optional[str] = None
    reserve_price: Optional[Decimal] = None
    min_bid_increment: Optional[Decimal] = None
    auto_extend_minutes: Optional[int] = None
    is_featured: bool = False


class UpdateAuctionRequest(BaseModel):
    # Prices other than the reserve, and the schedule, are fixed at creation
    title: Optional[str] = None
    description: Optional[str] = None
    reserve_price: Optional[Decimal] = None
    auto_extend_minutes: Optional[int] = None

    model_config = {"extra": "forbid"}


class PlaceBidRequest(BaseModel):
    auction_id: str
    bidder_id: str
    amount: Decimal
    is_automatic: bool = False
    max_amount: Optional[Decimal] = None


class AuctionSnapshot(BaseModel):
    id: str
    vehicle_id: str
    seller_id: str
    title: str
    description: Optional[str]
    starting_price: Decimal
    current_price: Decimal
    reserve_price: Optional[Decimal]
    min_bid_increment: Decimal
    start_time: datetime
    end_time: datetime
    extended_end_time: Optional[datetime]
    effective_end_time: datetime
    auto_extend_minutes: int
    status: str
    is_active: bool
    is_featured: bool
    highest_bidder_id: Optional[str]
    total_bids: int
    view_count: int
    watchlist_count: int

    model_config = {"from_attributes": True}


class BidSnapshot(BaseModel):
    id: str
    auction_id: str
    bidder_id: str
    amount: Decimal
    max_amount: Optional[Decimal]
    is_automatic: bool
    is_winning: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class WatchlistEntry(BaseModel):
    id: str
    auction_id: str
    user_id: str
    created_at: datetime

    model_config = {"from_attributes": True}


class SweepResult(BaseModel):
    started: int = 0
    ended: int = 0
    started_ids: List[str] = []
    ended_ids: List[str] = []


class AuctionStats(BaseModel):
    total: int
    scheduled: int
    active: int
    extended: int
    ended: int
    cancelled: int
    suspended: int


class BidStatistics(BaseModel):
    total_bids: int
    highest_amount: Optional[Decimal]
    average_amount: Optional[Decimal]
