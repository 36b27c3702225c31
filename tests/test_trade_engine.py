import threading
from contextlib import contextmanager
from datetime import timedelta

import pytest

from models.trade import ACCEPTED, CANCELLED, COMPLETED, DIRECT, PROPOSED, REJECTED, ChainLink
from services.errors import ConflictError, ForbiddenError, InternalError, NotFoundError, ValidationError
from services.trade_service import TradeEngine


class SessionSpy:
    """包一层 session：记录调用，第 fail_on 次调用 fail_method 时抛 InternalError"""

    def __init__(self, session, calls, fail_method=None, fail_on=1):
        self.session = session
        self.calls = calls
        self.fail_method = fail_method
        self.fail_on = fail_on

    def __getattr__(self, name):
        target = getattr(self.session, name)

        def wrapper(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            if name == self.fail_method and sum(1 for c in self.calls if c[0] == name) == self.fail_on:
                raise InternalError("disk full")
            return target(*args, **kwargs)

        return wrapper


class SpyRepository:

    def __init__(self, inner, fail_method=None, fail_on=1):
        self.inner = inner
        self.fail_method = fail_method
        self.fail_on = fail_on
        self.calls = []

    @contextmanager
    def transaction(self):
        with self.inner.transaction() as session:
            yield SessionSpy(session, self.calls, self.fail_method, self.fail_on)


# ---------- propose ----------

def test_propose_creates_proposed_trade_without_locking(engine, repo, proposed):
    assert proposed.status == PROPOSED
    assert proposed.type == DIRECT
    assert proposed.proposer_listing_id == "bike"
    assert proposed.receiver_listing_id == "guitar"
    assert proposed.trade_coin_amount == 10
    assert repo.trade(proposed.id) == proposed
    assert repo.listing("bike").is_available
    assert repo.listing("guitar").is_available


def test_propose_allows_concurrent_proposals_on_same_listing(engine):
    first = engine.propose("alice", "bob", "bike", "guitar")
    second = engine.propose("alice", "bob", "bike", "guitar")
    assert first.id != second.id


def test_propose_rejects_self_trade(engine):
    with pytest.raises(ValidationError):
        engine.propose("alice", "alice", "bike", "bike")


@pytest.mark.parametrize("amount", [-1, 2.5, True, "10"])
def test_propose_rejects_bad_coin_amount(engine, amount):
    with pytest.raises(ValidationError):
        engine.propose("alice", "bob", "bike", "guitar", trade_coin_amount=amount)


def test_propose_missing_listing(engine):
    with pytest.raises(NotFoundError):
        engine.propose("alice", "bob", "bike", "nothing")


def test_propose_wrong_owner(engine):
    with pytest.raises(ForbiddenError):
        engine.propose("alice", "bob", "lamp", "guitar")
    with pytest.raises(ForbiddenError):
        engine.propose("alice", "bob", "bike", "lamp")


def test_propose_unavailable_listing(engine, repo):
    repo.add_listing("sold", "bob", is_available=False)
    with pytest.raises(ConflictError):
        engine.propose("alice", "bob", "bike", "sold")


# ---------- accept ----------

def test_accept_locks_both_listings(engine, repo, proposed, notifier, clock):
    trade = engine.accept(proposed.id, "bob", meetup_location="Library", is_escrow=True)

    assert trade.status == ACCEPTED
    assert trade.meetup_location == "Library"
    assert trade.is_escrow
    assert trade.escrow_release_date == trade.updated_at + timedelta(days=7)
    assert not repo.listing("bike").is_available
    assert not repo.listing("guitar").is_available
    assert repo.trade(proposed.id).status == ACCEPTED
    assert notifier.events == [("trade.accepted", proposed.id)]


def test_accept_without_escrow_has_no_release_date(engine, proposed):
    trade = engine.accept(proposed.id, "bob")
    assert not trade.is_escrow
    assert trade.escrow_release_date is None


def test_accept_only_by_receiver(engine, repo, proposed):
    with pytest.raises(ForbiddenError):
        engine.accept(proposed.id, "alice")
    assert repo.trade(proposed.id).status == PROPOSED
    assert repo.listing("bike").is_available


def test_accept_unknown_trade(engine):
    with pytest.raises(NotFoundError):
        engine.accept("missing", "bob")


def test_accept_twice_conflicts(engine, repo, accepted):
    with pytest.raises(ConflictError):
        engine.accept(accepted.id, "bob")
    assert repo.trade(accepted.id) == accepted


def test_accept_fails_when_listing_taken_by_other_trade(engine, repo):
    first = engine.propose("alice", "bob", "bike", "guitar")
    second = engine.propose("carol", "bob", "lamp", "guitar")
    engine.accept(first.id, "bob")

    with pytest.raises(ConflictError):
        engine.accept(second.id, "bob")

    # 整体回滚：lamp 没被锁，交易仍是 proposed
    assert repo.listing("lamp").is_available
    assert repo.trade(second.id).status == PROPOSED


def test_accept_rolls_back_listing_lock_when_status_write_fails(repo, proposed, notifier, clock):
    failing = TradeEngine(SpyRepository(repo, fail_method="update_trade"), notifier=notifier, clock=clock)

    with pytest.raises(InternalError):
        failing.accept(proposed.id, "bob", is_escrow=True)

    # guard 已经在同一事务里锁了物品，随状态写入一起回滚
    assert repo.listing("bike").is_available
    assert repo.listing("guitar").is_available
    assert repo.trade(proposed.id) == proposed
    assert notifier.events == []


def test_concurrent_accepts_have_one_winner(engine, repo, proposed):
    barrier = threading.Barrier(4)
    results = []

    def worker():
        barrier.wait()
        try:
            engine.accept(proposed.id, "bob")
            results.append("ok")
        except ConflictError:
            results.append("conflict")

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == ["conflict", "conflict", "conflict", "ok"]


# ---------- reject ----------

def test_reject_appends_reason_to_notes(engine, repo, proposed):
    trade = engine.reject(proposed.id, "bob", "Changed my mind")
    assert trade.status == REJECTED
    assert trade.notes == "Can meet downtown\nRejection reason: Changed my mind"
    assert repo.listing("bike").is_available


def test_reject_without_prior_notes(engine):
    trade = engine.propose("alice", "bob", "bike", "guitar")
    rejected = engine.reject(trade.id, "alice", "Too far")
    assert rejected.notes == "Rejection reason: Too far"


def test_reject_by_outsider(engine, proposed):
    with pytest.raises(ForbiddenError):
        engine.reject(proposed.id, "carol", "nope")


def test_reject_accepted_trade_conflicts(engine, repo, accepted):
    with pytest.raises(ConflictError):
        engine.reject(accepted.id, "bob", "late")
    assert repo.trade(accepted.id).notes == accepted.notes
    assert not repo.listing("bike").is_available


# ---------- cancel ----------

def test_cancel_by_proposer(engine, proposed):
    assert engine.cancel(proposed.id, "alice").status == CANCELLED


def test_cancel_by_receiver_forbidden(engine, proposed):
    with pytest.raises(ForbiddenError):
        engine.cancel(proposed.id, "bob")


def test_cancel_accepted_trade_unsupported(engine, repo, accepted):
    with pytest.raises(ConflictError):
        engine.cancel(accepted.id, "alice")
    assert repo.trade(accepted.id).status == ACCEPTED


# ---------- complete ----------

def test_complete_transfers_coins_and_bumps_scores(engine, repo, accepted, notifier):
    trade = engine.complete(accepted.id, "alice")

    assert trade.status == COMPLETED
    assert repo.user("alice").trade_coins == 90
    assert repo.user("bob").trade_coins == 30
    assert repo.user("alice").barter_score == 0.5
    assert repo.user("bob").barter_score == 0.5
    assert not repo.listing("bike").is_available
    assert not repo.listing("guitar").is_available
    assert notifier.events[-1] == ("trade.completed", accepted.id)


def test_complete_without_coins_leaves_balances(engine, repo):
    trade = engine.propose("carol", "dave", "lamp", "skates")
    engine.accept(trade.id, "dave")
    engine.complete(trade.id, "dave")
    assert repo.user("carol").trade_coins == 0
    assert repo.user("dave").trade_coins == 0
    assert repo.user("carol").barter_score == 0.5


def test_complete_rounds_score(engine, repo):
    repo.add_user("erin", barter_score=4.37)
    repo.add_listing("book", "erin")
    trade = engine.propose("erin", "dave", "book", "skates")
    engine.accept(trade.id, "dave")
    engine.complete(trade.id, "erin")
    assert repo.user("erin").barter_score == 4.87


def test_complete_twice_applies_once(engine, repo, completed):
    with pytest.raises(ConflictError):
        engine.complete(completed.id, "bob")
    assert repo.user("alice").trade_coins == 90
    assert repo.user("bob").barter_score == 0.5


def test_complete_requires_accepted(engine, proposed):
    with pytest.raises(ConflictError):
        engine.complete(proposed.id, "alice")


def test_complete_by_outsider(engine, accepted):
    with pytest.raises(ForbiddenError):
        engine.complete(accepted.id, "carol")


def test_concurrent_completes_have_one_winner(engine, repo, accepted):
    barrier = threading.Barrier(2)
    results = []

    def worker(actor):
        barrier.wait()
        try:
            engine.complete(accepted.id, actor)
            results.append("ok")
        except ConflictError:
            results.append("conflict")

    threads = [threading.Thread(target=worker, args=(actor,)) for actor in ("alice", "bob")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == ["conflict", "ok"]
    assert repo.user("alice").trade_coins == 90
    assert repo.user("bob").trade_coins == 30
    assert repo.user("alice").barter_score == 0.5


def test_complete_rolls_back_when_second_user_write_fails(repo, accepted, notifier, clock):
    failing = TradeEngine(SpyRepository(repo, fail_method="update_user", fail_on=2), notifier=notifier, clock=clock)

    with pytest.raises(InternalError):
        failing.complete(accepted.id, "alice")

    # 第一个用户的写入也一起回滚
    assert repo.user("alice").trade_coins == 100
    assert repo.user("bob").trade_coins == 20
    assert repo.user("alice").barter_score == 0.0
    assert repo.user("bob").barter_score == 0.0
    assert repo.trade(accepted.id).status == ACCEPTED
    assert notifier.events == [("trade.accepted", accepted.id)]


def test_complete_rolls_back_when_status_write_fails(repo, accepted, notifier, clock):
    failing = TradeEngine(SpyRepository(repo, fail_method="update_trade"), notifier=notifier, clock=clock)

    with pytest.raises(InternalError):
        failing.complete(accepted.id, "bob")

    assert repo.user("alice").trade_coins == 100
    assert repo.user("bob").trade_coins == 20
    assert repo.user("bob").barter_score == 0.0
    assert repo.trade(accepted.id) == accepted

    # 失败之后仍然可以正常完成
    assert TradeEngine(repo, clock=clock).complete(accepted.id, "bob").status == COMPLETED
    assert repo.user("alice").trade_coins == 90


def test_complete_locks_both_users_in_one_ordered_read(repo, clock):
    spy = SpyRepository(repo)
    engine = TradeEngine(spy, clock=clock)
    forward = engine.propose("alice", "bob", "bike", "guitar")
    engine.accept(forward.id, "bob")
    del spy.calls[:]

    engine.complete(forward.id, "bob")

    names = [name for name, _, _ in spy.calls]
    assert "get_user" not in names
    user_reads = [(args, kwargs) for name, args, kwargs in spy.calls if name == "get_users"]
    assert len(user_reads) == 1
    args, kwargs = user_reads[0]
    assert set(args[0]) == {"alice", "bob"}
    assert kwargs == {"for_update": True}


def test_notifier_failure_does_not_break_accept(repo, clock):
    class Broken:
        def notify(self, event, trade):
            raise RuntimeError("smtp down")

    engine = TradeEngine(repo, notifier=Broken(), clock=clock)
    trade = engine.propose("alice", "bob", "bike", "guitar")
    assert engine.accept(trade.id, "bob").status == ACCEPTED


# ---------- 查询 ----------

def test_get_trade_for_participant_only(engine, proposed):
    assert engine.get_trade(proposed.id, "bob") == proposed
    with pytest.raises(ForbiddenError):
        engine.get_trade(proposed.id, "carol")
    with pytest.raises(NotFoundError):
        engine.get_trade("missing", "bob")


def test_list_trades_filters_and_paginates(engine):
    first = engine.propose("alice", "bob", "bike", "guitar")
    second = engine.propose("bob", "alice", "guitar", "bike")
    engine.propose("carol", "dave", "lamp", "skates")

    result = engine.list_trades("alice")
    assert result["totalTrades"] == 2
    assert [t.id for t in result["trades"]] == [second.id, first.id]

    proposer_only = engine.list_trades("alice", role="proposer")
    assert [t.id for t in proposer_only["trades"]] == [first.id]

    paged = engine.list_trades("alice", page=2, limit=1)
    assert paged["totalPages"] == 2
    assert paged["currentPage"] == 2
    assert [t.id for t in paged["trades"]] == [first.id]

    engine.cancel(first.id, "alice")
    assert engine.list_trades("alice", status=CANCELLED)["totalTrades"] == 1


def test_list_trades_rejects_bad_filters(engine):
    with pytest.raises(ValidationError):
        engine.list_trades("alice", role="admin")
    with pytest.raises(ValidationError):
        engine.list_trades("alice", status="pending")
    with pytest.raises(ValidationError):
        engine.list_trades("alice", page=0)


def test_list_trades_includes_chain_members(engine):
    chain = [
        ChainLink("alice", "bike", "bob"),
        ChainLink("bob", "guitar", "carol"),
        ChainLink("carol", "lamp", "alice"),
    ]
    trade = engine.propose_chain("alice", chain)

    assert [t.id for t in engine.list_trades("carol")["trades"]] == [trade.id]
    assert engine.list_trades("carol", role="proposer")["totalTrades"] == 0
    assert engine.list_trades("dave")["totalTrades"] == 0


def test_find_matches(engine, repo):
    result = engine.find_matches("bike", "alice", category="sports")
    assert result["userListing"].id == "bike"
    assert [l.id for l in result["potentialMatches"]] == ["skates"]

    priced = engine.find_matches("bike", "alice", min_value=50, max_value=140)
    assert {l.id for l in priced["potentialMatches"]} == {"skates"}

    with pytest.raises(ForbiddenError):
        engine.find_matches("bike", "bob")
    with pytest.raises(NotFoundError):
        engine.find_matches("missing", "alice")
