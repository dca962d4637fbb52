from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from common.logger import get_logger
from common.metrics_engine.config import EngineConfig, load_engine_config
from pipelines.change_feed import LocalChangeFeed
from pipelines.record_store import RecordStore, get_record_store
from pipelines.sync import ChangeSyncCoordinator

from .dashboard import router as dashboard_router

logger = get_logger(__name__)


def create_app(
    *,
    store: Optional[RecordStore] = None,
    feed: Optional[LocalChangeFeed] = None,
    config: Optional[EngineConfig] = None,
) -> FastAPI:
    """Build the dashboard API; the record store defaults to DASHBOARD_RECORD_STORE (fixtures|live)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine_config = config or load_engine_config()
        record_store = store or get_record_store(os.getenv("DASHBOARD_RECORD_STORE", "fixtures"))
        change_feed = feed or LocalChangeFeed()
        coordinator = ChangeSyncCoordinator(record_store, change_feed, config=engine_config)
        app.state.change_feed = change_feed
        app.state.coordinator = coordinator
        await coordinator.start()
        logger.info("Dashboard coordinator started (cycle %s).", coordinator.sequence)
        try:
            yield
        finally:
            coordinator.close()
            app.state.coordinator = None
            logger.info("Dashboard coordinator closed.")

    app = FastAPI(title="Operations dashboard metrics", lifespan=lifespan)
    app.include_router(dashboard_router)
    return app
