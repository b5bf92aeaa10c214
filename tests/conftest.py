import pytest
import os
import tempfile
import atexit
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock
from sqlalchemy.orm import sessionmaker

# Point the default engine at a throwaway SQLite file before anything imports database.session
_test_db_file = tempfile.NamedTemporaryFile(delete=False, suffix='.db')
_test_db_file.close()
os.environ["DATABASE_URL"] = f"sqlite:///{_test_db_file.name}"
os.environ.pop("NOTIFICATION_SERVICE_URL", None)


def _cleanup_test_db():
    if os.path.exists(_test_db_file.name):
        os.unlink(_test_db_file.name)


atexit.register(_cleanup_test_db)

from database.models import Base, Auction, AuctionStatus  # noqa: E402
from database.session import build_engine  # noqa: E402


@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """A fresh file-backed SQLite database per test, configured like production SQLite."""
    engine = build_engine(f"sqlite:///{tmp_path / 'auctions.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
        session.rollback()
    finally:
        session.close()


@pytest.fixture
def publisher():
    """Stand-in event publisher that records publish() calls."""
    return MagicMock()


@pytest.fixture
def make_auction(db_session):
    """
    Insert an auction directly, bypassing create-time validation.

    Defaults: ACTIVE, price 75000, increment 1000, 5 minute anti-sniping
    window, ending 10 minutes from now, seller "seller-1".
    """
    def _make(**overrides) -> Auction:
        now = datetime.utcnow()
        status = overrides.pop("status", AuctionStatus.ACTIVE.value)
        starting_price = Decimal(str(overrides.pop("starting_price", "75000.00")))
        values = dict(
            id=str(uuid.uuid4()),
            vehicle_id=f"vehicle-{uuid.uuid4().hex[:8]}",
            seller_id="seller-1",
            title="2019 Toyota Land Cruiser",
            starting_price=starting_price,
            current_price=starting_price,
            min_bid_increment=Decimal("1000.00"),
            start_time=now - timedelta(hours=1),
            end_time=now + timedelta(minutes=10),
            auto_extend_minutes=5,
            status=status,
            is_active=status in (AuctionStatus.ACTIVE.value, AuctionStatus.EXTENDED.value),
            total_bids=0,
            view_count=0,
            watchlist_count=0,
            version=1,
            created_at=now,
            updated_at=now,
        )
        values.update(overrides)
        auction = Auction(**values)
        db_session.add(auction)
        db_session.commit()
        return auction

    return _make


@pytest.fixture
def active_auction(make_auction):
    return make_auction()


@pytest.fixture
def scheduled_auction(make_auction):
    now = datetime.utcnow()
    return make_auction(
        status=AuctionStatus.SCHEDULED.value,
        start_time=now + timedelta(hours=1),
        end_time=now + timedelta(hours=2),
    )
