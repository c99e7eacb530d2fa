"""FastAPI entrypoint for Covey Town."""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from packages.covey_core.town.settings import TownSettings
from packages.covey_core.town.store import TownsStore
from packages.covey_core.video.tokens import video_token_provider_from_env

from .routers.realtime import router as realtime_router
from .routers.towns import router as towns_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("covey_api")


def build_towns_store() -> TownsStore:
    return TownsStore(
        video_tokens=video_token_provider_from_env(),
        settings=TownSettings.from_env(),
    )


app = FastAPI(title="Covey Town API", version="0.1.0")

_cors_origins = [o.strip() for o in os.environ.get("COVEY_CORS_ORIGINS", "*").split(",")]
_cors_allow_credentials = "*" not in _cors_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=_cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(towns_router)
app.include_router(realtime_router)

app.state.towns_store = build_towns_store()


@app.on_event("startup")
def startup() -> None:
    store: TownsStore = app.state.towns_store
    logger.info(
        "[STARTUP] Covey Town API starting up at %s (pet_area_required=%s, capacity=%d)",
        datetime.now(timezone.utc).isoformat(),
        store.settings.require_pet_area_for_followers,
        store.settings.town_capacity,
    )


@app.on_event("shutdown")
def shutdown() -> None:
    store: TownsStore = app.state.towns_store
    logger.info("[SHUTDOWN] Closing %d live towns", len(store))
    store.clear()
