"""Migration registry and engine control endpoints."""

import logging
from typing import Any, Callable, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from ...engine import ProductionMigrationEngine
from ...errors import InvalidArgumentError
from ...services.migration_registry import MigrationRegistry
from ...services.transforms import TransformRegistry
from ..models import (
    EmergencyStopRequest,
    EmergencyStopResponse,
    EngineStatusResponse,
    MigrationModeRequest,
    MigrationRunAccepted,
    MigrationRunRequest,
    RegistryStatusResponse,
    ServiceValidationResponse,
    ShutdownResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_registry(request: Request) -> MigrationRegistry:
    return request.app.state.registry


def get_engine(request: Request) -> ProductionMigrationEngine:
    return request.app.state.engine


def get_transforms(request: Request) -> TransformRegistry:
    return request.app.state.transforms


@router.get("/status", response_model=RegistryStatusResponse)
async def registry_status(registry: MigrationRegistry = Depends(get_registry)):
    """Snapshot of the registry flags."""
    return RegistryStatusResponse(**registry.get_status())


@router.post("/validate", response_model=ServiceValidationResponse)
async def validate_services(registry: MigrationRegistry = Depends(get_registry)):
    """Exercise both compatibility services."""
    return ServiceValidationResponse(**await registry.validate_services())


@router.post("/mode", response_model=RegistryStatusResponse)
async def set_migration_mode(data: MigrationModeRequest, registry: MigrationRegistry = Depends(get_registry)):
    """Turn migration mode on or off."""
    registry.set_migration_mode(data.enabled)
    return RegistryStatusResponse(**registry.get_status())


@router.get("/engine", response_model=EngineStatusResponse)
async def engine_status(engine: ProductionMigrationEngine = Depends(get_engine)):
    """Engine state, effective config and the latest run."""
    last = engine.last_result
    return EngineStatusResponse(
        state=engine.get_status().value,
        config=engine.get_config().to_dict(),
        last_result=last.to_dict() if last else None,
    )


@router.post("/engine/run", response_model=MigrationRunAccepted, status_code=202)
async def start_migration(
    data: MigrationRunRequest,
    background_tasks: BackgroundTasks,
    engine: ProductionMigrationEngine = Depends(get_engine),
    transforms: TransformRegistry = Depends(get_transforms),
):
    """Start a migration run in the background."""
    if engine.is_running():
        raise InvalidArgumentError(f"Cannot start a run while the engine is {engine.get_status().value}")

    transform = transforms.get_transform(data.transform)
    options = engine.options.to_dict()
    options.update(data.options)

    background_tasks.add_task(run_migration_task, engine, data.collection, transform, options)
    return MigrationRunAccepted(status="started", collection=data.collection, transform=data.transform)


async def run_migration_task(
    engine: ProductionMigrationEngine,
    collection: str,
    transform: Callable,
    options: Dict[str, Any],
):
    """Background task to run a migration."""
    try:
        result = await engine.execute_migration(collection, transform, options)
        logger.info(f"API-triggered migration of {collection} finished: {result.state.value}")
    except InvalidArgumentError as e:
        logger.error(f"API-triggered migration of {collection} rejected: {e}")


@router.post("/engine/emergency-stop", response_model=EmergencyStopResponse)
async def emergency_stop(data: EmergencyStopRequest, engine: ProductionMigrationEngine = Depends(get_engine)):
    """Halt the current run after its in-flight batches settle."""
    result = await engine.trigger_emergency_stop(data.reason)
    return EmergencyStopResponse(**result.to_dict())


@router.post("/engine/shutdown", response_model=ShutdownResponse)
async def graceful_shutdown(engine: ProductionMigrationEngine = Depends(get_engine)):
    """Stop dispatching and wait for in-flight batches."""
    result = await engine.request_graceful_shutdown()
    return ShutdownResponse(**result.to_dict())
