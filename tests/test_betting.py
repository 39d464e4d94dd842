from datetime import timedelta, timezone

import pytest
from sqlmodel import Session

from roundengine.core.errors import InsufficientBalance, InvalidAmount, InvalidBetValue, RoundClosed, RoundNotFound
from roundengine.db import crud
from roundengine.services import betting, ledger
from roundengine.services.scheduler import RoundScheduler
from conftest import T0


@pytest.fixture
def round_id(engine, cfg):
    return RoundScheduler(bind=engine, cfg=cfg, clock=lambda: T0).ensure_open_round("wingo", 1).id


def test_bet_debits_stake(session, cfg, make_user, round_id):
    uid = make_user("a", balance=1000)
    bet = betting.place_bet(session, uid, round_id, "number", "7", 100, now=T0 + timedelta(seconds=10), cfg=cfg)
    assert bet.status == "pending" and bet.amount_cents == 10_000
    assert ledger.balance_of(session, uid) == 90_000
    assert ledger.has_reference(session, f"bet:{bet.id}")
    r = crud.get_round(session, round_id)
    assert (r.total_bets, r.total_amount_cents) == (1, 10_000)


def test_many_bets_same_round(session, cfg, make_user, round_id):
    uid = make_user("a", balance=100)
    now = T0 + timedelta(seconds=5)
    for bt, bv in (("color", "Red"), ("color", "Green"), ("number", "3"), ("bigsmall", "Small")):
        betting.place_bet(session, uid, round_id, bt, bv, 10, now=now, cfg=cfg)
    assert ledger.balance_of(session, uid) == 6_000
    assert len(crud.bets_for_round(session, round_id)) == 4


def test_late_bet_rejected(session, cfg, make_user, round_id):
    uid = make_user("a", balance=100)
    for offset in (60, 61, 3600):
        with pytest.raises(RoundClosed):
            betting.place_bet(session, uid, round_id, "color", "Red", 10, now=T0 + timedelta(seconds=offset), cfg=cfg)
    assert ledger.balance_of(session, uid) == 10_000
    assert crud.bets_for_round(session, round_id) == []


def test_bet_cutoff(session, cfg, make_user, round_id):
    cfg.bet_cutoff_seconds = 10
    uid = make_user("a", balance=100)
    betting.place_bet(session, uid, round_id, "color", "Red", 10, now=T0 + timedelta(seconds=49), cfg=cfg)
    with pytest.raises(RoundClosed):
        betting.place_bet(session, uid, round_id, "color", "Red", 10, now=T0 + timedelta(seconds=50), cfg=cfg)


def test_closed_round_rejected(engine, session, cfg, make_user, round_id):
    uid = make_user("a", balance=100)
    RoundScheduler(bind=engine, cfg=cfg).close_expired(T0 + timedelta(seconds=60))
    with pytest.raises(RoundClosed):
        betting.place_bet(session, uid, round_id, "color", "Red", 10, now=T0 + timedelta(seconds=1), cfg=cfg)


def test_insufficient_balance_leaves_no_trace(session, cfg, make_user, round_id):
    uid = make_user("a", balance=50)
    with pytest.raises(InsufficientBalance):
        betting.place_bet(session, uid, round_id, "color", "Red", 50.01, now=T0, cfg=cfg)
    assert ledger.balance_of(session, uid) == 5_000
    assert crud.bets_for_round(session, round_id) == []
    r = crud.get_round(session, round_id)
    assert (r.total_bets, r.total_amount_cents) == (0, 0)


def test_validation_errors(session, cfg, make_user, round_id):
    uid = make_user("a", balance=50)
    with pytest.raises(InvalidBetValue):
        betting.place_bet(session, uid, round_id, "color", "Blue", 10, now=T0, cfg=cfg)
    with pytest.raises(InvalidBetValue):
        betting.place_bet(session, uid, round_id, "number", "12", 10, now=T0, cfg=cfg)
    with pytest.raises(InvalidAmount):
        betting.place_bet(session, uid, round_id, "color", "Red", 0, now=T0, cfg=cfg)
    with pytest.raises(InvalidAmount):
        betting.place_bet(session, uid, round_id, "color", "Red", -5, now=T0, cfg=cfg)
    with pytest.raises(RoundNotFound):
        betting.place_bet(session, uid, 12345, "color", "Red", 10, now=T0, cfg=cfg)
    assert ledger.balance_of(session, uid) == 5_000


def test_round_stats_recommendation(session, cfg, make_user, round_id):
    uid = make_user("a", balance=1000)
    betting.place_bet(session, uid, round_id, "color", "Red", 100, now=T0, cfg=cfg)
    betting.place_bet(session, uid, round_id, "number", "7", 10, now=T0, cfg=cfg)
    stats = betting.round_stats(session, round_id, cfg)
    assert stats["total_bets"] == 2
    assert stats["buckets"]["color:Red"] == {"count": 1, "total_cents": 10_000, "potential_payout_cents": 20_000}
    assert stats["buckets"]["number:7"]["potential_payout_cents"] == 9_000
    # first zero bucket in key order
    assert stats["recommendation"] == {"bucket": "color:Green", "potential_payout_cents": 0}
    assert stats["liability_by_number"][7] == 9_000
    assert stats["liability_by_number"][0] == 15_000


def test_seconds_remaining(engine, session, cfg, round_id):
    r = crud.get_round(session, round_id)
    assert betting.seconds_remaining(r, T0 + timedelta(seconds=15)) == 45
    assert betting.seconds_remaining(r, T0 + timedelta(seconds=90)) == 0


def test_sub_cent_amount_rejected(session, cfg, make_user, round_id):
    uid = make_user("a", balance=100)
    with pytest.raises(InvalidAmount):
        betting.place_bet(session, uid, round_id, "color", "Red", "10.009", now=T0, cfg=cfg)
    assert ledger.balance_of(session, uid) == 10_000
    bet = betting.place_bet(session, uid, round_id, "color", "Red", "10.010", now=T0, cfg=cfg)
    assert bet.amount_cents == 1_001


def test_times_come_back_as_utc(engine, cfg, make_user, round_id):
    uid = make_user("a", balance=100)
    local = T0.astimezone(timezone(timedelta(hours=7)))
    with Session(engine) as s:
        betting.place_bet(s, uid, round_id, "color", "Red", 10, now=local + timedelta(seconds=5), cfg=cfg)
    with Session(engine) as s:
        r = crud.get_round(s, round_id)
        bet = crud.bets_for_round(s, round_id)[0]
    assert r.close_time == T0 + timedelta(minutes=1)
    assert r.close_time.utcoffset() == timedelta(0)
    assert bet.placed_at == T0 + timedelta(seconds=5)
    assert bet.placed_at.tzinfo is not None
    # compared against the live clock; T0 is long past
    assert betting.seconds_remaining(r) == 0
