import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch
from freezegun import freeze_time
from sqlalchemy.exc import OperationalError

from bidding.sweeper import run_status_sweep
from bidding.events import EventType
from database.models import Auction, AuctionStatus

T0 = datetime(2026, 3, 1, 12, 0, 0)


def _status(db_session, auction_id):
    return db_session.query(Auction).populate_existing().filter_by(id=auction_id).one()


def test_sweep_starts_and_ends_in_one_pass(db_session, make_auction, publisher):
    """An auction past its end and one whose start just arrived are both moved."""
    with freeze_time(T0):
        ending = make_auction(start_time=T0 - timedelta(hours=2), end_time=T0 - timedelta(seconds=1))
        starting = make_auction(
            status=AuctionStatus.SCHEDULED.value,
            start_time=T0,
            end_time=T0 + timedelta(hours=1),
        )

        result = run_status_sweep(db_session, publisher=publisher)

    assert result.started == 1
    assert result.ended == 1
    assert result.started_ids == [starting.id]
    assert result.ended_ids == [ending.id]

    ended = _status(db_session, ending.id)
    assert ended.status == AuctionStatus.ENDED.value
    assert ended.is_active is False
    assert ended.version == 2

    started = _status(db_session, starting.id)
    assert started.status == AuctionStatus.ACTIVE.value
    assert started.is_active is True


def test_sweep_is_idempotent(db_session, make_auction):
    make_auction(end_time=T0 - timedelta(minutes=1))
    make_auction(status=AuctionStatus.SCHEDULED.value, start_time=T0 - timedelta(minutes=1), end_time=T0 + timedelta(hours=1))

    first = run_status_sweep(db_session, now=T0)
    second = run_status_sweep(db_session, now=T0)

    assert (first.started, first.ended) == (1, 1)
    assert (second.started, second.ended) == (0, 0)


def test_sweep_leaves_future_auctions_alone(db_session, make_auction):
    scheduled = make_auction(
        status=AuctionStatus.SCHEDULED.value,
        start_time=T0 + timedelta(minutes=1),
        end_time=T0 + timedelta(hours=1),
    )
    active = make_auction(end_time=T0 + timedelta(minutes=1))

    result = run_status_sweep(db_session, now=T0)

    assert (result.started, result.ended) == (0, 0)
    assert _status(db_session, scheduled.id).status == AuctionStatus.SCHEDULED.value
    assert _status(db_session, active.id).status == AuctionStatus.ACTIVE.value


def test_sweep_respects_extension(db_session, make_auction):
    """An EXTENDED auction past its original end but inside the extension stays open."""
    extended = make_auction(
        status=AuctionStatus.EXTENDED.value,
        end_time=T0 - timedelta(minutes=2),
        extended_end_time=T0 + timedelta(minutes=3),
    )

    result = run_status_sweep(db_session, now=T0)
    assert result.ended == 0
    assert _status(db_session, extended.id).status == AuctionStatus.EXTENDED.value

    result = run_status_sweep(db_session, now=T0 + timedelta(minutes=3))
    assert result.ended == 1
    assert _status(db_session, extended.id).status == AuctionStatus.ENDED.value


def test_sweep_ends_at_exact_end_time(db_session, make_auction):
    auction = make_auction(end_time=T0)

    run_status_sweep(db_session, now=T0)

    assert _status(db_session, auction.id).status == AuctionStatus.ENDED.value


@pytest.mark.parametrize("status", [
    AuctionStatus.ENDED.value,
    AuctionStatus.CANCELLED.value,
    AuctionStatus.SUSPENDED.value,
])
def test_sweep_ignores_terminal_and_suspended(db_session, make_auction, status):
    auction = make_auction(status=status, start_time=T0 - timedelta(hours=2), end_time=T0 - timedelta(hours=1))

    result = run_status_sweep(db_session, now=T0)

    assert (result.started, result.ended) == (0, 0)
    row = _status(db_session, auction.id)
    assert row.status == status
    assert row.version == 1


def test_sweep_events(db_session, make_auction, publisher):
    sold = make_auction(
        end_time=T0 - timedelta(seconds=5),
        current_price=Decimal("82000"),
        highest_bidder_id="bidder-a",
        reserve_price=Decimal("80000"),
        total_bids=3,
    )
    unsold = make_auction(end_time=T0 - timedelta(seconds=5))
    starting = make_auction(status=AuctionStatus.SCHEDULED.value, start_time=T0, end_time=T0 + timedelta(hours=1))

    run_status_sweep(db_session, now=T0, publisher=publisher)

    events = [c.args[0] for c in publisher.publish.call_args_list]
    by_type = {}
    for event in events:
        by_type.setdefault(event.type, []).append(event)

    assert [e.auction_id for e in by_type[EventType.AUCTION_STARTED]] == [starting.id]
    assert {e.auction_id for e in by_type[EventType.AUCTION_ENDED]} == {sold.id, unsold.id}

    won = by_type[EventType.AUCTION_WON]
    assert len(won) == 1
    assert won[0].auction_id == sold.id
    assert won[0].recipient_id == "bidder-a"
    assert won[0].amount == Decimal("82000")
    assert won[0].reserve_met is True


def test_sweep_reports_reserve_not_met(db_session, make_auction, publisher):
    make_auction(
        end_time=T0 - timedelta(seconds=5),
        current_price=Decimal("76000"),
        highest_bidder_id="bidder-a",
        reserve_price=Decimal("90000"),
        total_bids=1,
    )

    result = run_status_sweep(db_session, now=T0, publisher=publisher)

    # Reserve is informational: the auction still ends
    assert result.ended == 1
    ended_event = next(c.args[0] for c in publisher.publish.call_args_list if c.args[0].type == EventType.AUCTION_ENDED)
    assert ended_event.reserve_met is False


def test_start_commits_even_if_end_step_fails(db_session, make_auction):
    starting = make_auction(status=AuctionStatus.SCHEDULED.value, start_time=T0, end_time=T0 + timedelta(hours=1))

    with patch("bidding.sweeper.end_due_auctions", side_effect=OperationalError("UPDATE", {}, Exception("db gone"))):
        with pytest.raises(OperationalError):
            run_status_sweep(db_session, now=T0)

    assert _status(db_session, starting.id).status == AuctionStatus.ACTIVE.value
    # The next tick finishes the job without repeating the start
    result = run_status_sweep(db_session, now=T0)
    assert (result.started, result.ended) == (0, 0)
