"""FastAPI application entry point."""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import Settings
from ..engine import ProductionMigrationEngine
from ..errors import InvalidArgumentError, NotInitializedError
from ..services.migration_registry import MigrationRegistry
from ..services.transforms import TransformRegistry
from .models import HealthResponse
from .routes import entities, migrations

logger = logging.getLogger(__name__)


def create_app(
    registry: MigrationRegistry,
    engine: ProductionMigrationEngine,
    transforms: Optional[TransformRegistry] = None,
) -> FastAPI:
    """
    Build the API around an explicit registry and engine.

    Args:
        registry: Migration registry shared with the engine
        engine: Engine controlled by the operator endpoints
        transforms: Named transforms available to API-started runs
    """
    app = FastAPI(
        title="livemigrate API",
        description="Operator and health API for live document migrations",
        version="0.1.0",
    )
    app.state.registry = registry
    app.state.engine = engine
    app.state.transforms = transforms or TransformRegistry()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidArgumentError)
    async def invalid_argument_handler(request: Request, exc: InvalidArgumentError):
        return JSONResponse(status_code=400, content={"detail": exc.message})

    @app.exception_handler(NotInitializedError)
    async def not_initialized_handler(request: Request, exc: NotInitializedError):
        return JSONResponse(status_code=503, content={"detail": exc.message})

    # Include routers
    app.include_router(migrations.router, prefix="/api/migration", tags=["migration"])
    app.include_router(entities.router, prefix="/api", tags=["entities"])

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(status="healthy", registry_initialized=registry.is_initialized())

    return app


def create_app_from_env() -> FastAPI:
    """App factory for ``uvicorn --factory``: store and options from the environment."""
    from ..stores.rest_store import RestDocumentStore

    settings = Settings.from_env()
    if not settings.store_url:
        raise InvalidArgumentError("STORE_URL must be set to serve the API")

    store = RestDocumentStore(settings.store_url, api_key=settings.store_api_key)
    registry = MigrationRegistry()
    registry.initialize(store)
    registry.enable_migration_mode_from_config()
    engine = ProductionMigrationEngine(store, registry, settings.migration_options())
    return create_app(registry, engine)
