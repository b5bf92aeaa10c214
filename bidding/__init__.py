from .errors import (
    AuctionError, NotFoundError, InvalidStateError, InvalidArgumentError, ForbiddenError, ConflictError
)
from .engine import BidEngine
from .sweeper import run_status_sweep
from .scheduler import StatusScheduler

__all__ = [
    "AuctionError", "NotFoundError", "InvalidStateError", "InvalidArgumentError", "ForbiddenError",
    "ConflictError", "BidEngine", "run_status_sweep", "StatusScheduler",
]
