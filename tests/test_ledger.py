import pytest

from roundengine.core.errors import InsufficientBalance, UserNotFound
from roundengine.db import crud
from roundengine.services import ledger


def test_credit_debit_keep_ledger_in_step(session):
    uid = crud.create_user(session, "alice").id
    ledger.credit(session, uid, 10_000, "deposit:1")
    e = ledger.debit(session, uid, 2_550, "bet:1")
    session.commit()
    assert e.balance_after_cents == 7_450
    assert ledger.balance_of(session, uid) == 7_450
    assert ledger.ledger_total(session, uid) == 7_450
    assert ledger.verify(session, uid)


def test_debit_never_goes_negative(session):
    uid = crud.create_user(session, "bob").id
    ledger.credit(session, uid, 500, "deposit:1")
    session.commit()
    with pytest.raises(InsufficientBalance):
        ledger.debit(session, uid, 501, "bet:1")
    session.rollback()
    assert ledger.balance_of(session, uid) == 500
    assert len(crud.ledger_entries(session, uid)) == 1


def test_unknown_user(session):
    with pytest.raises(UserNotFound):
        ledger.credit(session, 999, 100, "deposit:x")
    with pytest.raises(UserNotFound):
        ledger.debit(session, 999, 100, "bet:x")
