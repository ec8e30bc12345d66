"""FastAPI application exposing the Envoy agent over a local JSON API.

The lifespan loads config, initializes the database and builds the agent
components (see envoy.services). Each component is stored on app.state for
the route dependencies. If config cannot be loaded the app still starts so
/api/health can report the problem; agent routes then answer 503.

Usage:
    from envoy.web.app import create_app

    app = create_app()
    # Run with: uvicorn.run(app, host="127.0.0.1", port=8000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from envoy.core.logging import get_logger

logger = get_logger(__name__)

APP_VERSION = "0.1.0"


def _clear_state(app: FastAPI) -> None:
    app.state.config = None
    app.state.store = None
    app.state.orchestrator = None
    app.state.escalation = None
    app.state.services = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize components on startup, release them on shutdown."""
    from envoy.config import get_config
    from envoy.core.errors import EnvoyError
    from envoy.services import build_services

    _clear_state(app)

    try:
        config = get_config()
    except EnvoyError as e:
        logger.error("config_load_failed", error=str(e))
        yield
        return

    app.state.config = config

    try:
        services = await build_services(config)
    except EnvoyError as e:
        logger.error("services_init_failed", error=str(e))
        yield
        return

    app.state.services = services
    app.state.store = services.store
    app.state.orchestrator = services.orchestrator
    app.state.escalation = services.escalation

    yield

    await services.aclose()
    logger.info("services_closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    from envoy.web.routes import api_router

    app = FastAPI(
        title="Envoy",
        description="Personal assistant agent with approval-gated actions",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.include_router(api_router)
    return app
