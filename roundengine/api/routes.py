import asyncio
import logging
from fastapi import APIRouter, Depends, HTTPException, Header, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session
from roundengine.api.schemas import (
    BetIn, BetOut, ControlResultIn, ControlResultOut, RoundOut, BetItem, Page, DepositIn, BalanceOut,
    LedgerItem, CommissionLevel,
)
from roundengine.config import settings
from roundengine.core.errors import RoundNotFound, UserNotFound
from roundengine.core.money import from_cents
from roundengine.db import crud
from roundengine.db.models import OPEN, CLOSED, COMPLETED, VOIDED
from roundengine.services import betting, commission, ledger, resolver, wallet
from roundengine.services.publisher import round_payload, result_payload

log = logging.getLogger(__name__)
router = APIRouter()


def get_db(request: Request):
    with Session(request.app.state.engine) as session:
        yield session


def _auth(api_key_header: str | None = Header(default=None, alias="X-API-Key")):
    if settings.api_key and api_key_header != settings.api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


def _user(x_user_id: int | None = Header(default=None, alias="X-User-Id")) -> int:
    # identity is established upstream; the core only reads it
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="X-User-Id required")
    return x_user_id


def _round_out(r) -> dict:
    return result_payload(r) if r.winning_number is not None else round_payload(r)


def _bet_out(b) -> dict:
    return BetItem(
        id=b.id, roundId=b.round_id, userId=b.user_id, betType=b.bet_type, betValue=b.bet_value,
        amount=from_cents(b.amount_cents), multiplier=b.multiplier, status=b.status,
        payout=from_cents(b.payout_cents), placedAt=b.placed_at.isoformat(),
    ).model_dump(mode="json")


@router.post('/bet', response_model=BetOut)
def place_bet(data: BetIn, request: Request, user_id: int = Depends(_user), session: Session = Depends(get_db)):
    bet = betting.place_bet(session, user_id, data.roundId, data.betType, data.betValue, data.amount,
                            multiplier=data.multiplier, cfg=request.app.state.cfg)
    request.app.state.publisher.bet_update(session, bet.round_id, request.app.state.cfg)
    return {'success': True, 'betId': bet.id, 'balance': from_cents(ledger.balance_of(session, user_id))}


@router.post('/admin/control-result', response_model=ControlResultOut)
def control_result(data: ControlResultIn, session: Session = Depends(get_db), ok=Depends(_auth)):
    r = resolver.override(session, data.roundId, data.winningNumber, data.winningColor)
    return {
        'success': True, 'roundId': r.id, 'winningNumber': r.winning_number,
        'winningColor': r.winning_color, 'bigSmall': r.big_small,
    }


@router.get('/rounds', response_model=list[RoundOut])
def rounds(game: str | None = None, status: str = f"{OPEN},{CLOSED}", duration: int | None = None,
           limit: int = 50, session: Session = Depends(get_db)):
    statuses = [s.strip() for s in status.split(",") if s.strip()]
    return [_round_out(r) for r in crud.list_rounds(session, game, statuses, duration, limit)]


@router.get('/rounds/history', response_model=Page)
def rounds_history(game: str, duration: int, page: int = 1, limit: int = 20, session: Session = Depends(get_db)):
    out = crud.round_history(session, game, duration, [COMPLETED, VOIDED], page, limit)
    return {'items': [_round_out(r) for r in out['items']], 'total': out['total'],
            'page': out['page'], 'totalPages': out['total_pages']}


@router.get('/rounds/{round_id}', response_model=RoundOut)
def round_detail(round_id: int, session: Session = Depends(get_db)):
    r = crud.get_round(session, round_id)
    if r is None:
        raise RoundNotFound(f"round {round_id} not found")
    return _round_out(r)


@router.get('/rounds/{round_id}/stats')
def stats(round_id: int, request: Request, session: Session = Depends(get_db)):
    return betting.round_stats(session, round_id, request.app.state.cfg)


@router.get('/history', response_model=Page)
def history(user_id: int | None = None, page: int = 1, limit: int = 20, settled: bool = True,
            x_user_id: int | None = Header(default=None, alias="X-User-Id"),
            x_api_key: str | None = Header(default=None, alias="X-API-Key"),
            session: Session = Depends(get_db)):
    # players see their own bets; the admin key may look at anyone or everyone
    is_admin = settings.api_key is None or x_api_key == settings.api_key
    if not is_admin:
        if x_user_id is None:
            raise HTTPException(status_code=401, detail="X-User-Id required")
        user_id = x_user_id
    elif user_id is None:
        user_id = x_user_id
    out = crud.bet_history(session, user_id, page, limit, settled_only=settled)
    return {'items': [_bet_out(b) for b in out['items']], 'total': out['total'],
            'page': out['page'], 'totalPages': out['total_pages']}


@router.get('/users/{user_id}/balance', response_model=BalanceOut)
def balance(user_id: int, session: Session = Depends(get_db)):
    u = crud.get_user(session, user_id)
    if u is None:
        raise UserNotFound(f"user {user_id} not found")
    return {'userId': u.id, 'balance': from_cents(u.balance_cents),
            'totalCommission': from_cents(u.total_commission_cents)}


@router.get('/users/{user_id}/ledger', response_model=list[LedgerItem])
def user_ledger(user_id: int, limit: int = 100, session: Session = Depends(get_db)):
    return [
        {'id': e.id, 'type': e.type, 'amount': from_cents(e.amount_cents),
         'balanceAfter': from_cents(e.balance_after_cents), 'reference': e.reference,
         'description': e.description, 'createdAt': e.created_at.isoformat()}
        for e in crud.ledger_entries(session, user_id, limit)
    ]


@router.get('/users/{user_id}/referrals')
def referrals(user_id: int, session: Session = Depends(get_db)):
    return {'userId': user_id, 'referrals': commission.downline(session, user_id)}


@router.post('/admin/deposit')
def deposit(data: DepositIn, request: Request, session: Session = Depends(get_db), ok=Depends(_auth)):
    entry = wallet.deposit(session, data.userId, data.amount, data.reference, cfg=request.app.state.cfg)
    return {'success': True, 'entryId': entry.id, 'balance': from_cents(entry.balance_after_cents)}


@router.get('/admin/commission-settings', response_model=list[CommissionLevel])
def commission_settings(session: Session = Depends(get_db), ok=Depends(_auth)):
    return [
        {'level': c.level, 'percentage': c.percentage, 'isActive': c.is_active, 'description': c.description}
        for c in commission.get_levels(session)
    ]


@router.put('/admin/commission-settings', response_model=list[CommissionLevel])
def update_commission_settings(levels: list[CommissionLevel], session: Session = Depends(get_db), ok=Depends(_auth)):
    rows = commission.set_levels(session, [
        {'level': c.level, 'percentage': c.percentage, 'is_active': c.isActive, 'description': c.description}
        for c in levels
    ])
    return [
        {'level': c.level, 'percentage': c.percentage, 'isActive': c.is_active, 'description': c.description}
        for c in rows
    ]


def _snapshot(app) -> dict:
    with Session(app.state.engine) as session:
        return app.state.publisher.rounds_snapshot(session, app.state.cfg)


@router.websocket('/ws')
async def live(websocket: WebSocket):
    await websocket.accept()
    app = websocket.app
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = app.state.publisher.subscribe(lambda ev: loop.call_soon_threadsafe(queue.put_nowait, ev))

    async def pump():
        while True:
            await websocket.send_json(await queue.get())

    sender = asyncio.create_task(pump())
    try:
        await websocket.send_json(await run_in_threadpool(_snapshot, app))
        while True:
            msg = await websocket.receive_json()
            if isinstance(msg, dict) and msg.get('type') == 'getRounds':
                await websocket.send_json(await run_in_threadpool(_snapshot, app))
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
        sender.cancel()
        for res in await asyncio.gather(sender, return_exceptions=True):
            if isinstance(res, Exception):
                log.warning("live feed sender stopped: %r", res)
