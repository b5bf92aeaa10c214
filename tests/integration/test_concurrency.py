"""
Races between bidders, and between bidders and the status sweep, on one
auction. Each thread gets its own session, the way separate requests would.
"""
import threading
from datetime import datetime, timedelta
from decimal import Decimal

from bidding.engine import BidEngine
from bidding.errors import AuctionError, InvalidArgumentError, InvalidStateError
from bidding.sweeper import run_status_sweep
from database.models import Auction, Bid, AuctionStatus


def _run_threads(targets):
    threads = [threading.Thread(target=t) for t in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    assert not any(thread.is_alive() for thread in threads)


def _final_state(session_factory, auction_id):
    db = session_factory()
    try:
        auction = db.query(Auction).filter_by(id=auction_id).one()
        bids = db.query(Bid).filter_by(auction_id=auction_id).all()
        db.expunge_all()
        return auction, bids
    finally:
        db.rollback()
        db.close()


def test_tied_concurrent_bids_accept_exactly_one(db_session, session_factory, make_auction):
    auction_id = make_auction(starting_price="76000.00").id
    db_session.rollback()

    barrier = threading.Barrier(2)
    outcomes = {}

    def place(bidder_id):
        def run():
            db = session_factory()
            try:
                barrier.wait()
                outcomes[bidder_id] = BidEngine().place_bid(db, auction_id, bidder_id, Decimal("77000"))
            except AuctionError as e:
                outcomes[bidder_id] = e
            finally:
                db.close()
        return run

    _run_threads([place("bidder-b"), place("bidder-c")])

    accepted = [o for o in outcomes.values() if not isinstance(o, AuctionError)]
    rejected = [o for o in outcomes.values() if isinstance(o, AuctionError)]
    assert len(accepted) == 1
    assert len(rejected) == 1
    assert isinstance(rejected[0], InvalidArgumentError)
    assert "78000.00" in rejected[0].message

    auction, bids = _final_state(session_factory, auction_id)
    assert auction.current_price == Decimal("77000")
    assert auction.highest_bidder_id == accepted[0].bidder_id
    assert auction.total_bids == 1
    assert len(bids) == 1


def test_many_concurrent_bidders_keep_ledger_consistent(db_session, session_factory, make_auction):
    auction_id = make_auction(min_bid_increment=Decimal("100.00"), end_time=datetime.utcnow() + timedelta(hours=1)).id
    db_session.rollback()

    bidders = [f"bidder-{i}" for i in range(6)]
    accepted = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(bidders))

    def bidder_loop(bidder_id, offset):
        def run():
            db = session_factory()
            engine = BidEngine(rate_limit=0)
            try:
                barrier.wait()
                for step in range(8):
                    amount = Decimal(75100 + (step * len(bidders) + offset) * 100)
                    try:
                        bid = engine.place_bid(db, auction_id, bidder_id, amount)
                    except AuctionError:
                        continue
                    with lock:
                        accepted.append(bid)
            finally:
                db.close()
        return run

    _run_threads([bidder_loop(b, i) for i, b in enumerate(bidders)])

    auction, bids = _final_state(session_factory, auction_id)
    assert accepted
    assert auction.total_bids == len(accepted) == len(bids)
    assert auction.current_price == max(b.amount for b in accepted)
    winning = [b for b in bids if b.is_winning]
    assert len(winning) == 1
    assert winning[0].bidder_id == auction.highest_bidder_id
    assert winning[0].amount == auction.current_price


def test_bids_racing_the_sweep_never_land_after_close(db_session, session_factory, make_auction):
    auction_id = make_auction(min_bid_increment=Decimal("100.00"), end_time=datetime.utcnow() + timedelta(hours=1)).id
    db_session.rollback()

    sweep_at = datetime.utcnow() + timedelta(hours=2)
    outcomes = []
    started = threading.Event()

    def bidder():
        db = session_factory()
        engine = BidEngine(max_bids_per_auction=100, rate_limit=0)
        try:
            for step in range(40):
                bidder_id = "bidder-a" if step % 2 == 0 else "bidder-b"
                try:
                    outcomes.append(engine.place_bid(db, auction_id, bidder_id, Decimal(75100 + step * 100)))
                except InvalidStateError as e:
                    outcomes.append(e)
                started.set()
        finally:
            db.close()

    def sweeper():
        started.wait(timeout=30)
        db = session_factory()
        try:
            run_status_sweep(db, now=sweep_at)
        finally:
            db.close()

    _run_threads([bidder, sweeper])

    auction, bids = _final_state(session_factory, auction_id)
    assert auction.status == AuctionStatus.ENDED.value

    # Once a bid saw the auction closed, no later bid was accepted
    first_rejection = next((i for i, o in enumerate(outcomes) if isinstance(o, InvalidStateError)), len(outcomes))
    assert all(isinstance(o, InvalidStateError) for o in outcomes[first_rejection:])

    accepted = outcomes[:first_rejection]
    assert auction.total_bids == len(accepted) == len(bids)
    if accepted:
        assert auction.current_price == accepted[-1].amount
        assert auction.highest_bidder_id == accepted[-1].bidder_id
