import logging
import threading
from typing import Callable

from sqlmodel import Session

from roundengine.config import settings
from roundengine.core.money import from_cents
from roundengine.db import crud
from roundengine.db.models import Round, OPEN
from roundengine.services.betting import round_stats, seconds_remaining

log = logging.getLogger(__name__)

ROUNDS_UPDATE = "roundsUpdate"
BET_UPDATE = "betUpdate"
ROUND_ENDED = "roundEnded"
ROUND_SETTLED = "roundSettled"


def round_payload(r: Round) -> dict:
    return {
        "id": r.id,
        "game": r.game,
        "duration": r.duration,
        "number": r.number,
        "period": r.period,
        "status": r.status,
        "openTime": r.open_time.isoformat(),
        "closeTime": r.close_time.isoformat(),
        "secondsRemaining": seconds_remaining(r),
        "totalBets": r.total_bets,
        "totalAmount": str(from_cents(r.total_amount_cents)),
    }


def result_payload(r: Round) -> dict:
    out = round_payload(r)
    out.update({
        "winningNumber": r.winning_number,
        "winningColor": r.winning_color,
        "bigSmall": r.big_small,
        "totalPayout": str(from_cents(r.total_payout_cents)),
    })
    return out


class StatsPublisher:
    """Fan-out of round/bet events to whatever transport subscribes.

    Subscribers are plain callables taking one event dict. They are called
    on the publishing thread, so an async transport should hand the event
    over with ``loop.call_soon_threadsafe``.
    """

    def __init__(self):
        self._subs: set[Callable[[dict], None]] = set()
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[dict], None]) -> Callable[[], None]:
        with self._lock:
            self._subs.add(callback)

        def unsubscribe():
            with self._lock:
                self._subs.discard(callback)
        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def publish(self, event_type: str, **payload) -> dict:
        event = {"type": event_type, **payload}
        with self._lock:
            subs = list(self._subs)
        for cb in subs:
            try:
                cb(event)
            except Exception:
                # one broken subscriber must not stop the scheduler
                log.exception("subscriber failed on %s", event_type)
        return event

    def rounds_snapshot(self, session: Session, cfg=settings) -> dict:
        rounds = []
        for r in crud.rounds_by_status(session, OPEN):
            item = round_payload(r)
            item["stats"] = round_stats(session, r.id, cfg)
            rounds.append(item)
        return {"type": ROUNDS_UPDATE, "rounds": rounds}

    def rounds_update(self, session: Session, cfg=settings) -> dict:
        snap = self.rounds_snapshot(session, cfg)
        return self.publish(ROUNDS_UPDATE, rounds=snap["rounds"])

    def bet_update(self, session: Session, round_id: int, cfg=settings) -> dict:
        return self.publish(BET_UPDATE, roundId=round_id, stats=round_stats(session, round_id, cfg))

    def round_ended(self, r: Round) -> dict:
        return self.publish(ROUND_ENDED, round=round_payload(r))

    def round_settled(self, r: Round) -> dict:
        return self.publish(ROUND_SETTLED, round=result_payload(r))
