"""
Error taxonomy for auction and bid operations.

Every business-rule failure raised by this package is an AuctionError subclass,
so callers can map them to their own transport (HTTP status, CLI exit code)
without ever seeing a raw database or concurrency error.
"""
from typing import Any, Dict, Optional


class AuctionError(Exception):
    """Base class. `code` is a stable machine-readable kind."""

    code = "error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(AuctionError):
    code = "not_found"


class InvalidStateError(AuctionError):
    code = "invalid_state"


class InvalidArgumentError(AuctionError):
    code = "invalid_argument"


class ForbiddenError(AuctionError):
    code = "forbidden"


class ConflictError(AuctionError):
    code = "conflict"
