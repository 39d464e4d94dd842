"""Time-driven round lifecycle.

``tick()`` is the single place where rounds move forward in time: it closes
expired rounds, opens their successors straight away, resolves closed rounds
once the override grace window has passed, and settles them. It is meant to
be called periodically by :meth:`RoundScheduler.run_forever` (a thread) or
:meth:`RoundScheduler.run_async` (the API lifespan), never per request.
"""
import asyncio
import logging
import random
import threading
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from roundengine.config import settings
from roundengine.core.errors import ResolutionError, TransientError
from roundengine.db import crud
from roundengine.db.base import engine as default_engine
from roundengine.db.models import Round, OPEN, CLOSED, SETTLING, utcnow
from roundengine.services import resolver
from roundengine.services.publisher import StatsPublisher
from roundengine.services.settlement import settle_round, void_round

log = logging.getLogger(__name__)


class RoundScheduler:
    def __init__(self, bind=None, cfg=settings, publisher: StatsPublisher | None = None,
                 clock: Callable[[], datetime] = utcnow, rng: random.Random | None = None):
        self.bind = bind or default_engine
        self.cfg = cfg
        self.publisher = publisher or StatsPublisher()
        self.clock = clock
        self.rng = rng
        self.streams = cfg.stream_pairs()

    def ensure_open_round(self, game: str, duration: int, now: datetime | None = None) -> Round:
        """Return the open round of a stream, creating it if there is none.

        Two callers racing here both try the insert; the partial unique
        index lets exactly one succeed and the other re-reads the winner.
        """
        now = now or self.clock()
        with Session(self.bind) as session:
            current = crud.open_round(session, game, duration)
            if current is not None:
                return current
            r = Round(
                game=game,
                duration=duration,
                number=crud.last_round_number(session, game, duration) + 1,
                open_time=now,
                close_time=now + timedelta(minutes=duration),
                status=OPEN,
            )
            session.add(r)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                current = crud.open_round(session, game, duration)
                if current is None:
                    raise
                return current
            session.refresh(r)
        log.info("opened %s %sm round #%s (closes %s)", game, duration, r.number, r.close_time)
        return r

    def close_expired(self, now: datetime) -> list[Round]:
        closed = []
        # rows must stay readable after the per-round commits below
        with Session(self.bind, expire_on_commit=False) as session:
            for r in crud.rounds_by_status(session, OPEN):
                if r.close_time > now:
                    continue
                res = session.connection().execute(
                    update(Round).where(Round.id == r.id, Round.status == OPEN).values(status=CLOSED)
                )
                session.commit()
                if res.rowcount == 1:
                    r = crud.get_round(session, r.id)
                    log.info("closed %s %sm round #%s", r.game, r.duration, r.number)
                    closed.append(r)
        return closed

    def finish(self, round_id: int, now: datetime) -> Round | None:
        """Resolve (if due) and settle one closed round; void it when no result can be had."""
        failure = None
        with Session(self.bind) as session:
            r = crud.get_round(session, round_id)
            if r.status == CLOSED and not r.is_resolved:
                if now < r.close_time + timedelta(seconds=self.cfg.resolve_grace_seconds):
                    return None
                try:
                    resolver.resolve(session, round_id, self.cfg, self.rng, now)
                except ResolutionError as e:
                    log.exception("cannot resolve round %s", round_id)
                    failure = str(e)
        if failure is not None:
            return void_round(round_id, failure, bind=self.bind)
        try:
            return settle_round(round_id, bind=self.bind, cfg=self.cfg)
        except ResolutionError as e:
            log.exception("settlement of round %s has no outcome", round_id)
            return void_round(round_id, str(e), bind=self.bind)
        except TransientError:
            log.warning("settlement of round %s deferred to next tick", round_id, exc_info=True)
            return None

    def tick(self, now: datetime | None = None) -> dict:
        now = now or self.clock()
        closed = self.close_expired(now)
        for r in closed:
            if (r.game, r.duration) in self.streams:
                self.ensure_open_round(r.game, r.duration, now)
            else:
                log.info("stream %s %sm is no longer configured, not reopening", r.game, r.duration)
            self.publisher.round_ended(r)

        finished = []
        with Session(self.bind) as session:
            pending = [r.id for r in crud.rounds_by_status(session, CLOSED, SETTLING)]
        for round_id in pending:
            try:
                r = self.finish(round_id, now)
            except Exception:
                # the round stays closed or settling and comes back next tick
                log.exception("finishing round %s failed, will retry next tick", round_id)
                continue
            if r is not None:
                finished.append(r)
                self.publisher.round_settled(r)

        for game, duration in self.streams:
            self.ensure_open_round(game, duration, now)
        if closed or finished:
            with Session(self.bind) as session:
                self.publisher.rounds_update(session, self.cfg)
        return {"closed": [r.id for r in closed], "finished": [r.id for r in finished]}

    def run_forever(self, stop: threading.Event):
        log.info("scheduler started for %s streams", len(self.streams))
        while not stop.is_set():
            try:
                self.tick()
            except Exception:
                log.exception("scheduler tick failed")
            stop.wait(self.cfg.tick_seconds)
        log.info("scheduler stopped")

    async def run_async(self):
        log.info("scheduler started for %s streams", len(self.streams))
        try:
            while True:
                try:
                    await asyncio.to_thread(self.tick)
                except Exception:
                    log.exception("scheduler tick failed")
                await asyncio.sleep(self.cfg.tick_seconds)
        except asyncio.CancelledError:
            log.info("scheduler stopped")
            raise
