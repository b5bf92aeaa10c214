import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

from bidding.scheduler import StatusScheduler
from database.models import Auction, AuctionStatus


def test_run_once_applies_sweep(db_session, session_factory, make_auction, publisher):
    now = datetime.utcnow()
    due = make_auction(status=AuctionStatus.SCHEDULED.value, start_time=now - timedelta(minutes=1),
                       end_time=now + timedelta(hours=1))
    over = make_auction(start_time=now - timedelta(hours=2), end_time=now - timedelta(minutes=1))
    due_id, over_id = due.id, over.id
    # Release the SQLite write lock before the scheduler opens its own session
    db_session.rollback()

    result = StatusScheduler(session_factory=session_factory, publisher=publisher).run_once()

    assert result.started_ids == [due_id]
    assert result.ended_ids == [over_id]
    statuses = dict(db_session.query(Auction.id, Auction.status).all())
    assert statuses[due_id] == AuctionStatus.ACTIVE.value
    assert statuses[over_id] == AuctionStatus.ENDED.value


def test_run_once_logs_and_survives_errors(caplog):
    session = MagicMock()
    scheduler = StatusScheduler(session_factory=lambda: session)

    with patch("bidding.scheduler.run_status_sweep", side_effect=Exception("database is locked")):
        assert scheduler.run_once() is None

    session.close.assert_called_once()
    assert "Error in status sweep" in caplog.text


def test_loop_stops_on_request():
    scheduler = StatusScheduler(session_factory=MagicMock(), interval_seconds=0.01)
    ticks = threading.Event()

    def fake_sweep(db, publisher=None):
        ticks.set()

    with patch("bidding.scheduler.run_status_sweep", side_effect=fake_sweep):
        thread = scheduler.start_background()
        assert ticks.wait(timeout=5)
        scheduler.stop()
        thread.join(timeout=5)

    assert not thread.is_alive()
    assert scheduler.running is False


def test_loop_keeps_ticking_after_failure():
    scheduler = StatusScheduler(session_factory=MagicMock(), interval_seconds=0.01)
    calls = []
    second_tick = threading.Event()

    def flaky_sweep(db, publisher=None):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")
        second_tick.set()

    with patch("bidding.scheduler.run_status_sweep", side_effect=flaky_sweep):
        thread = scheduler.start_background()
        assert second_tick.wait(timeout=5)
        scheduler.stop()
        thread.join(timeout=5)

    assert len(calls) >= 2


def test_stop_joins_background_thread():
    scheduler = StatusScheduler(session_factory=MagicMock(), interval_seconds=60)
    ticked = threading.Event()

    with patch("bidding.scheduler.run_status_sweep", side_effect=lambda db, publisher=None: ticked.set()):
        thread = scheduler.start_background()
        assert ticked.wait(timeout=5)
        scheduler.stop(timeout=5)

    # No explicit join here: stop() waits for the loop to exit
    assert not thread.is_alive()


def test_stop_without_background_thread():
    scheduler = StatusScheduler(session_factory=MagicMock())

    scheduler.stop()

    assert scheduler.running is False
