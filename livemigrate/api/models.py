"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
from datetime import datetime


class EngineStateEnum(str, Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    EMERGENCY_STOPPED = "EMERGENCY_STOPPED"
    ROLLED_BACK = "ROLLED_BACK"
    GRACEFULLY_STOPPED = "GRACEFULLY_STOPPED"
    FAILED = "FAILED"


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Request Models
class MigrationModeRequest(BaseModel):
    enabled: bool


class EmergencyStopRequest(BaseModel):
    reason: str = "MANUAL_INTERVENTION"


class MigrationRunRequest(BaseModel):
    collection: str
    transform: str
    options: Dict[str, Any] = Field(default_factory=dict)


# Response Models
class HealthResponse(BaseModel):
    status: str
    registry_initialized: bool = False


class ServiceFlags(BaseModel):
    trades: bool
    chat: bool


class RegistryStatusResponse(CamelModel):
    initialized: bool
    migration_mode: bool = Field(alias="migrationMode")
    services: ServiceFlags


class ServiceValidationResponse(BaseModel):
    trades: bool
    chat: bool
    errors: List[str] = Field(default_factory=list)


class EngineStatusResponse(CamelModel):
    state: EngineStateEnum
    config: Dict[str, Any]
    last_result: Optional[Dict[str, Any]] = Field(default=None, alias="lastResult")


class EmergencyStopResponse(CamelModel):
    success: bool
    reason: str
    stopped_at: datetime = Field(alias="stoppedAt")
    documents_processed_before_stop: int = Field(alias="documentsProcessedBeforeStop")


class ShutdownResponse(CamelModel):
    success: bool
    graceful_shutdown: bool = Field(alias="gracefulShutdown")
    data_integrity_maintained: bool = Field(alias="dataIntegrityMaintained")
    final_processed_count: int = Field(alias="finalProcessedCount")
    remaining_documents: int = Field(alias="remainingDocuments")


class MigrationRunAccepted(BaseModel):
    status: str
    collection: str
    transform: str


class ReadResultResponse(BaseModel):
    status: str
    doc_id: str
    entity: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class ReadResultListResponse(BaseModel):
    results: List[ReadResultResponse]
    total: int
