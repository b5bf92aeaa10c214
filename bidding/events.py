"""
Fire-and-forget auction events.

Events are emitted only after the transaction that caused them has committed.
Delivery failures are logged and dropped; they never reach the caller of a bid
or sweep operation.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

import requests
from pydantic import BaseModel, Field

from . import settings

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    BID_PLACED = "BID_PLACED"
    OUTBID = "OUTBID"
    AUCTION_EXTENDED = "AUCTION_EXTENDED"
    AUCTION_STARTED = "AUCTION_STARTED"
    AUCTION_ENDED = "AUCTION_ENDED"
    AUCTION_WON = "AUCTION_WON"
    AUCTION_CANCELLED = "AUCTION_CANCELLED"


class AuctionEvent(BaseModel):
    type: EventType
    auction_id: str
    recipient_id: Optional[str] = None
    bidder_id: Optional[str] = None
    seller_id: Optional[str] = None
    amount: Optional[Decimal] = None
    previous_amount: Optional[Decimal] = None
    extended_end_time: Optional[datetime] = None
    reserve_met: Optional[bool] = None
    occurred_at: datetime = Field(default_factory=datetime.utcnow)


class LoggingPublisher:
    """Default publisher: records events in the log only."""

    def publish(self, event: AuctionEvent):
        logger.info(f"Event {event.type.value} for auction {event.auction_id} (recipient {event.recipient_id})")


class HttpNotificationPublisher(LoggingPublisher):
    """POSTs events to the notification service on a background thread pool."""

    def __init__(self, base_url: str, timeout: float = settings.NOTIFICATION_TIMEOUT_SECONDS, max_workers: int = 4):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="auction-events")

    def publish(self, event: AuctionEvent):
        super().publish(event)
        try:
            self._executor.submit(self._deliver, event)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning(f"Dropped event {event.type.value} for auction {event.auction_id}: {e}")

    def _deliver(self, event: AuctionEvent) -> bool:
        try:
            response = requests.post(
                f"{self.base_url}/notifications",
                json=event.model_dump(mode="json"),
                timeout=self.timeout,
            )
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException as e:
            logger.warning(f"Failed to deliver {event.type.value} for auction {event.auction_id}: {e}")
            return False

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)


def get_publisher():
    """Pick a publisher from configuration."""
    if settings.NOTIFICATION_SERVICE_URL:
        return HttpNotificationPublisher(settings.NOTIFICATION_SERVICE_URL)
    return LoggingPublisher()


def emit(publisher, event: AuctionEvent):
    """Hand event to publisher, swallowing publisher failures."""
    if publisher is None:
        return
    try:
        publisher.publish(event)
    except Exception as e:
        logger.warning(f"Publisher failed for {event.type.value} on auction {event.auction_id}: {e}", exc_info=True)
