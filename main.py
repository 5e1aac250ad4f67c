""" main.py: FastAPI application entry point and runtime configuration.

This module builds the ASGI app, wires the model gateways, the session store, the analysis dispatcher
and the chat orchestrator onto `app.state`, mounts the API routers, configures CORS (Cross-Origin
Resource Sharing) and exposes a Prometheus metrics endpoint. It centralizes web-layer wiring so the
rest of the codebase can focus on business logic.

`create_app()` accepts pre-built collaborators so tests can inject an in-memory store and fake
gateways; with no arguments it builds everything from CONFIG. The app's lifespan loads the store's
snapshot and starts the retention scheduler on startup; on shutdown it stops the scheduler and the
store writes a final snapshot. When executed directly, the module starts a Uvicorn server using host/port values from
configuration.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from config import CONFIG
from core.dispatcher import AnalysisDispatcher
from core.orchestrator import ChatOrchestrator
from llm_cloud.provider import build_gateways
from monitoring.metrics import REQUEST_COUNT, REQUEST_LATENCY
from services.persistence import build_snapshot_backend
from services.retention_scheduler import shutdown_retention_scheduler, start_retention_scheduler
from services.session_store import SessionStore
from version import __version__

# --- Router Imports ---
from api import analysis as analysis_router
from api import chat as chat_router
from api import health as health_router
from api import sessions as sessions_router

# Get a logger instance for this module
logger = logging.getLogger(__name__)


def build_store(config: Dict[str, Any]) -> SessionStore:
    store_config = config["session_store"]
    return SessionStore(
        backend=build_snapshot_backend(store_config),
        history_limit=int(store_config.get("history_limit", 50)),
        default_max_age_ms=int(store_config.get("default_max_age_ms", 7 * 24 * 60 * 60 * 1000)),
    )


def create_app(
    store: Optional[SessionStore] = None,
    primary_gateway=None,
    secondary_gateway=None,
    config: Optional[Dict[str, Any]] = None,
    enable_scheduler: bool = True,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        store (SessionStore, optional): Session store; built from config when omitted.
        primary_gateway (ModelGateway, optional): Analysis gateway. When both gateways are omitted
            they are built by `llm_cloud.provider.build_gateways()`.
        secondary_gateway (ModelGateway, optional): Preferred chat gateway (AI gateway route).
        config (Dict[str, Any], optional): Configuration; defaults to CONFIG.
        enable_scheduler (bool): Start the periodic retention job on startup.

    Returns:
        FastAPI: A configured app with CORS, /metrics, /health and the /api routers.
    """
    config = config or CONFIG

    if primary_gateway is None and secondary_gateway is None:
        primary_gateway, secondary_gateway = build_gateways()
    if store is None:
        store = build_store(config)

    dispatcher = AnalysisDispatcher(primary_gateway, store=store, config=config)
    orchestrator = ChatOrchestrator(
        dispatcher=dispatcher,
        store=store,
        chat_gateway=secondary_gateway or primary_gateway,
        config=config,
    )

    @asynccontextmanager
    async def lifespan(app_instance: FastAPI) -> AsyncIterator[None]:
        """Load the session snapshot and start the retention scheduler; undo both on shutdown."""
        await store.init()
        if enable_scheduler:
            interval = int(config["session_store"].get("cleanup_interval_minutes", 60))
            start_retention_scheduler(app_instance, store, interval_minutes=interval)
        try:
            yield
        finally:
            shutdown_retention_scheduler(app_instance)
            await store.shutdown()

    app = FastAPI(title="Code Quality Assistant", version=__version__, lifespan=lifespan)
    app.state.store = store
    app.state.primary_gateway = primary_gateway
    app.state.secondary_gateway = secondary_gateway
    app.state.dispatcher = dispatcher
    app.state.orchestrator = orchestrator

    # Include routers
    app.include_router(health_router.router, tags=["Health"])
    app.include_router(chat_router.router, prefix="/api", tags=["Chat"])
    app.include_router(analysis_router.router, prefix="/api", tags=["Analysis"])
    app.include_router(sessions_router.router, prefix="/api", tags=["Sessions"])

    # Add Prometheus metrics endpoint
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)

    # Configure CORS
    allow_origins = config.get('cors', {}).get('allow_origins', ["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        endpoint = request.url.path
        REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(time.time() - start_time)
        REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=str(response.status_code)).inc()
        return response

    logger.info("Code Quality Assistant app created (version %s)", __version__)
    return app


app = create_app()

# The uvicorn server is used to run the FastAPI application.
if __name__ == '__main__':
    import uvicorn
    logger.info("[__main__] Starting Uvicorn server for main.py\n")
    uvicorn.run(
        app,
        host=CONFIG.get('server', {}).get('host', '0.0.0.0'),
        port=CONFIG.get('server', {}).get('port', 8080)
    )
