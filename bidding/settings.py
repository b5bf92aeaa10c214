import os
from decimal import Decimal
from dotenv import load_dotenv

# Load environment variables before reading any settings
load_dotenv()

# Scheduler tick; the status sweep runs once per interval
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))

# Internal retries when two bids race on the same auction
BID_MAX_ATTEMPTS = int(os.getenv("BID_MAX_ATTEMPTS", "3"))

BID_MAX_AMOUNT = Decimal(os.getenv("BID_MAX_AMOUNT", "1000000"))
BID_MAX_BIDS_PER_AUCTION = int(os.getenv("BID_MAX_BIDS_PER_AUCTION", "50"))

# Rapid-fire guard: a bidder with this many accepted bids inside the window is refused
BID_RATE_LIMIT = int(os.getenv("BID_RATE_LIMIT", "3"))
BID_RATE_WINDOW_SECONDS = int(os.getenv("BID_RATE_WINDOW_SECONDS", "60"))

DEFAULT_MIN_BID_INCREMENT = Decimal(os.getenv("DEFAULT_MIN_BID_INCREMENT", "100"))
DEFAULT_AUTO_EXTEND_MINUTES = int(os.getenv("DEFAULT_AUTO_EXTEND_MINUTES", "5"))

# Events are only logged unless a notification service is configured
NOTIFICATION_SERVICE_URL = os.getenv("NOTIFICATION_SERVICE_URL")
NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "5"))
