import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from roundengine.config import settings
from roundengine.core.errors import EngineError
from roundengine.db.base import engine as default_engine, init_db
from roundengine.api.routes import router
from roundengine.services.publisher import StatsPublisher
from roundengine.services.scheduler import RoundScheduler

log = logging.getLogger(__name__)


def configure_logging(level: str | None = None):
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(bind=None, start_scheduler: bool = True, cfg=settings) -> FastAPI:
    bind = bind or default_engine

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(bind)
        task = None
        if start_scheduler:
            task = asyncio.create_task(app.state.scheduler.run_async())
        yield
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    app = FastAPI(title="Round Engine", lifespan=lifespan)
    app.state.engine = bind
    app.state.cfg = cfg
    app.state.publisher = StatsPublisher()
    app.state.scheduler = RoundScheduler(bind=bind, cfg=cfg, publisher=app.state.publisher)
    app.include_router(router)

    @app.exception_handler(EngineError)
    async def engine_error(request: Request, exc: EngineError):
        if exc.status_code >= 500:
            log.error("%s on %s: %s", exc.code, request.url.path, exc.detail)
        return JSONResponse(status_code=exc.status_code,
                            content={"success": False, "code": exc.code, "detail": exc.detail})

    @app.get("/")
    def home():
        return {"ok": True, "app": "Round Engine"}

    return app


configure_logging()
app = create_app()
