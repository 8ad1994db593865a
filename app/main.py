from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .routers import arb, health
from .services import runtime as runtime_service
from .services.recon_runner import setup_recon_runner
from .util.logging import setup_logging
from .version import APP_VERSION

logger = logging.getLogger("arbdesk.startup")


def create_app() -> FastAPI:
    setup_logging()
    build_version = os.getenv("BUILD_VERSION") or APP_VERSION
    logger.info(
        "arbdesk starting with build_version=%s (app_version=%s)",
        build_version,
        APP_VERSION,
    )
    state = runtime_service.get_state()
    logger.info(
        "runtime ready: symbol=%s trades=%s recon_enabled=%s interval=%ss",
        state.symbol,
        len(state.trades),
        state.config.recon.enabled,
        state.config.recon.interval_sec,
    )

    app = FastAPI(title="Arbdesk API", version=APP_VERSION)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(health.router)
    app.include_router(arb.router, prefix="/api", tags=["arb"])
    setup_recon_runner(app)
    return app
