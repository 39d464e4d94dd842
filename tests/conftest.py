from datetime import datetime, timezone

import pytest
from sqlmodel import Session, create_engine

from roundengine.config import Settings
from roundengine.db import crud
from roundengine.db.base import init_db
from roundengine.services import wallet

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def cfg():
    return Settings(
        streams="wingo:1",
        resolve_grace_seconds=0,
        bet_cutoff_seconds=0,
        resolution_policy="random",
        service_fee_rate=0.0,
        commission_trigger="stake",
        commission_max_depth=10,
        min_bet=1,
        api_key=None,
    )


@pytest.fixture
def make_user(session, cfg):
    def _make(name, balance=0, referred_by=None):
        u = crud.create_user(session, name, referred_by_id=referred_by)
        if balance:
            wallet.deposit(session, u.id, balance, reference=f"seed:{name}", cfg=cfg)
        return u.id
    return _make
