import logging
import os
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .db import create_session_factory
from .routers.material_requests import router as requests_router
from .routers.stock import router as stock_router
from .routers.sync import router as sync_router
from .services.gateway import RemoteSyncGateway
from .services.local_store import LocalStore
from .services.reconciliation import ReconciliationEngine
from .services.scheduler import Scheduler, ThreadScheduler

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_engine(settings: Settings, scheduler: Scheduler) -> ReconciliationEngine:
    store = LocalStore(create_session_factory(settings.database_url), settings.seed_catalog_path)
    gateway = RemoteSyncGateway(
        settings.remote_url,
        pull_timeout_ms=settings.pull_timeout_ms,
        push_timeout_ms=settings.push_timeout_ms,
    )
    if not gateway.configured:
        logger.warning("REMOTE_SYNC_URL not set, running offline against the local store")
    return ReconciliationEngine(
        store,
        gateway,
        scheduler,
        policy=settings.request_policy,
        cooldown_ms=settings.cooldown_ms,
        ledger_enabled=settings.ledger_enabled,
        allowed_vtrs=settings.allowed_vtrs,
    )


def create_app(settings: Optional[Settings] = None, scheduler: Optional[Scheduler] = None) -> FastAPI:
    settings = settings or get_settings()
    scheduler = scheduler or ThreadScheduler()

    app = FastAPI(
        title="Fleet Material Stock",
        description="Local-first consumable stock and material requests for service vehicles",
        version="1.0.0"
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.scheduler = scheduler
    app.state.engine = build_engine(settings, scheduler)

    app.include_router(stock_router)
    app.include_router(requests_router)
    app.include_router(sync_router)

    @app.on_event("startup")
    def on_startup():
        logger.info("Starting background pull every %ss", settings.pull_interval_s)
        app.state.engine.start(settings.pull_interval_s)

    @app.on_event("shutdown")
    def on_shutdown():
        app.state.engine.stop()
        app.state.scheduler.shutdown()

    return app


def get_app() -> FastAPI:
    """Factory for `uvicorn fleet_core.app.main:get_app --factory`"""
    configure_logging()
    return create_app()
