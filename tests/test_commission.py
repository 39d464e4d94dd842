import pytest

from roundengine.core.errors import DuplicateReference, InvalidAmount
from roundengine.db import crud
from roundengine.db.models import CommissionRecord
from roundengine.services import commission, ledger, wallet
from sqlmodel import select


def _levels(session, *pcts, inactive=()):
    commission.set_levels(session, [
        {"level": i, "percentage": p, "is_active": i not in inactive} for i, p in enumerate(pcts, start=1)
    ])


def test_cascade_pays_each_level(session, cfg, make_user):
    _levels(session, 5, 2, 1)
    top = make_user("top")
    mid = make_user("mid", referred_by=top)
    src = make_user("src", referred_by=mid)
    paid = commission.cascade(session, src, 10_000, "bet:1", cfg)
    session.commit()
    assert [(r.level, r.beneficiary_id, r.amount_cents) for r in paid] == [(1, mid, 500), (2, top, 200)]
    assert ledger.balance_of(session, mid) == 500
    assert ledger.balance_of(session, top) == 200
    assert crud.get_user(session, mid).total_commission_cents == 500
    assert ledger.verify(session, top)


def test_inactive_level_skipped_walk_continues(session, cfg, make_user):
    _levels(session, 5, 2, inactive=(1,))
    top = make_user("top")
    mid = make_user("mid", referred_by=top)
    src = make_user("src", referred_by=mid)
    commission.cascade(session, src, 10_000, "bet:1", cfg)
    session.commit()
    assert ledger.balance_of(session, mid) == 0
    assert ledger.balance_of(session, top) == 200


def test_depth_cap_and_bound(session, cfg, make_user):
    pcts = [3, 2, 1, 1]
    _levels(session, *pcts)
    cfg.commission_max_depth = 2
    chain = [make_user("u0")]
    for i in range(1, 6):
        chain.append(make_user(f"u{i}", referred_by=chain[-1]))
    paid = commission.cascade(session, chain[-1], 12_345, "bet:9", cfg)
    session.commit()
    assert [r.level for r in paid] == [1, 2]
    assert sum(r.amount_cents for r in paid) <= 12_345 * sum(pcts[:2]) / 100


def test_short_chain_and_no_upline(session, cfg, make_user):
    _levels(session, 5, 2, 1)
    top = make_user("top")
    src = make_user("src", referred_by=top)
    assert len(commission.cascade(session, src, 1_000, "bet:1", cfg)) == 1
    assert commission.cascade(session, top, 1_000, "bet:2", cfg) == []


def test_cycle_never_pays_self(session, cfg, make_user):
    _levels(session, 5, 5, 5)
    a = make_user("a")
    b = make_user("b", referred_by=a)
    user_a = crud.get_user(session, a)
    user_a.referred_by_id = b
    session.add(user_a)
    session.commit()
    paid = commission.cascade(session, a, 10_000, "bet:1", cfg)
    session.commit()
    assert [r.beneficiary_id for r in paid] == [b]
    assert ledger.balance_of(session, a) == 0


def test_same_reference_paid_once(session, cfg, make_user):
    _levels(session, 5)
    top = make_user("top")
    src = make_user("src", referred_by=top)
    commission.cascade(session, src, 10_000, "bet:1", cfg)
    session.commit()
    assert commission.cascade(session, src, 10_000, "bet:1", cfg) == []
    session.commit()
    assert ledger.balance_of(session, top) == 500
    assert len(session.exec(select(CommissionRecord)).all()) == 1


def test_deposit_trigger(session, cfg, make_user):
    _levels(session, 10)
    cfg.commission_trigger = "deposit"
    top = make_user("top")
    src = make_user("src", referred_by=top)
    wallet.deposit(session, src, 250, cfg=cfg)
    assert ledger.balance_of(session, src) == 25_000
    assert ledger.balance_of(session, top) == 2_500


def test_downline(session, make_user):
    top = make_user("top")
    mid = make_user("mid", referred_by=top)
    make_user("leaf", referred_by=mid)
    assert [(d["username"], d["level"]) for d in commission.downline(session, top)] == [("mid", 1), ("leaf", 2)]


def test_repeated_deposit_request_credits_once(session, cfg, make_user):
    _levels(session, 10)
    cfg.commission_trigger = "deposit"
    top = make_user("top")
    src = make_user("src", referred_by=top)
    first = wallet.deposit(session, src, 100, reference="depreq:42", cfg=cfg)
    again = wallet.deposit(session, src, 100, reference="depreq:42", cfg=cfg)
    assert again.id == first.id
    assert ledger.balance_of(session, src) == 10_000
    assert ledger.balance_of(session, top) == 1_000
    assert ledger.verify(session, src) and ledger.verify(session, top)
    with pytest.raises(DuplicateReference):
        wallet.deposit(session, src, 50, reference="depreq:42", cfg=cfg)
    with pytest.raises(DuplicateReference):
        wallet.deposit(session, top, 100, reference="depreq:42", cfg=cfg)
    assert ledger.balance_of(session, src) == 10_000


def test_deposit_with_sub_cent_amount_rejected(session, cfg, make_user):
    src = make_user("src")
    with pytest.raises(InvalidAmount):
        wallet.deposit(session, src, "5.005", cfg=cfg)
    assert ledger.balance_of(session, src) == 0
