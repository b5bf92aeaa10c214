from .models import (
    Auction, Bid, Watchlist, AuctionStatus, BIDDABLE_STATUSES, TERMINAL_STATUSES, OPEN_STATUSES
)
from .session import init_db, build_engine, configure_sqlite, SessionLocal

__all__ = [
    "Auction", "Bid", "Watchlist", "AuctionStatus",
    "BIDDABLE_STATUSES", "TERMINAL_STATUSES", "OPEN_STATUSES",
    "init_db", "build_engine", "configure_sqlite", "SessionLocal",
]
